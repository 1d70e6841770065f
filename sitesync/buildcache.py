from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .hashing import hash_file, list_files

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    exists: bool
    file_count: int = 0
    size_bytes: int = 0

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


def same_content(src: Path, dest: Path) -> bool:
    if not dest.exists():
        return False
    if src.stat().st_size != dest.stat().st_size:
        return False
    return hash_file(src) == hash_file(dest)


def replace_file(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dest.with_name(dest.name + ".tmp")
    shutil.copy2(src, tmp_path)
    os.replace(tmp_path, dest)


class BuildCache:
    """Rendered pages (and optionally built assets) kept between builds."""

    def __init__(self, cache_dir: Path, output_dir: Path, assets_dir: Optional[str] = None) -> None:
        self.cache_dir = cache_dir
        self.output_dir = output_dir
        self.assets_dir = assets_dir.strip("/") if assets_dir else None
        self.skipped = 0

    def is_cached(self, rel_path: str) -> bool:
        if rel_path.endswith(".html"):
            return True
        return bool(self.assets_dir) and rel_path.startswith(f"{self.assets_dir}/")

    def _entries(self, root: Path) -> dict[str, Path]:
        entries = {}
        for path in list_files(root):
            rel_path = path.relative_to(root).as_posix()
            if self.is_cached(rel_path):
                entries[rel_path] = path
        return entries

    def pages(self, root: Path) -> set[str]:
        return {rel_path for rel_path in self._entries(root) if rel_path.endswith(".html")}

    def _sync(self, source: Path, target: Path) -> int:
        copied = 0
        self.skipped = 0
        for rel_path, path in self._entries(source).items():
            dest = target / rel_path
            if same_content(path, dest):
                self.skipped += 1
                continue
            replace_file(path, dest)
            copied += 1
        return copied

    def restore(self) -> int:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        if not self.cache_dir.exists():
            logger.info("No build cache at %s, starting a fresh build", self.cache_dir)
            self.skipped = 0
            return 0
        copied = self._sync(self.cache_dir, self.output_dir)
        logger.info("Restored %d cached files (%d already up to date)", copied, self.skipped)
        return copied

    def save(self, prune: bool = False) -> int:
        if not self.output_dir.exists():
            logger.warning("No output directory at %s, nothing to cache", self.output_dir)
            self.skipped = 0
            return 0
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        copied = self._sync(self.output_dir, self.cache_dir)
        removed = 0
        if prune:
            built = self._entries(self.output_dir)
            stale = [rel_path for rel_path in self._entries(self.cache_dir) if rel_path not in built]
            removed = self.evict(stale)
        logger.info("Saved %d files to cache (%d unchanged, %d pruned)", copied, self.skipped, removed)
        return copied

    def evict(self, rel_paths: Iterable[str]) -> int:
        removed = 0
        for rel_path in rel_paths:
            path = self.cache_dir / rel_path
            if path.is_file():
                path.unlink()
                removed += 1
        return removed

    def clean(self) -> bool:
        if not self.cache_dir.exists():
            return False
        shutil.rmtree(self.cache_dir)
        return True

    def stats(self) -> CacheStats:
        if not self.cache_dir.exists():
            return CacheStats(exists=False)
        entries = self._entries(self.cache_dir)
        return CacheStats(
            exists=True,
            file_count=len(entries),
            size_bytes=sum(path.stat().st_size for path in entries.values()),
        )
