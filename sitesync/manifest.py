from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import Kind
from .utils import read_json, write_json

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1


def empty_hashes() -> dict[str, dict[str, str]]:
    return {kind.bucket: {} for kind in Kind}


class Manifest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: int = MANIFEST_VERSION
    content_hashes: dict[str, dict[str, str]] = Field(default_factory=empty_hashes, alias="contentHashes")
    changed_routes: list[str] = Field(default_factory=list, alias="changedRoutes")
    full_rebuild_required: bool = Field(default=False, alias="fullRebuildRequired")
    deleted_routes: list[str] = Field(default_factory=list, alias="deletedRoutes")
    failed_routes: list[str] = Field(default_factory=list, alias="failedRoutes")
    routes: list[str] = Field(default_factory=list)
    counts: dict[str, int] = Field(default_factory=dict)
    generated_at: str = Field(default="", alias="generatedAt")

    def hashes(self, kind: Kind) -> dict[str, str]:
        return self.content_hashes.get(kind.bucket, {})

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class ManifestStore:
    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self.path = state_dir / "manifest.json"
        self.pending_path = state_dir / "manifest.pending.json"

    def _read(self, path: Path) -> Optional[Manifest]:
        data = read_json(path)
        if data is None:
            if path.exists():
                logger.warning("Manifest %s is unreadable, ignoring it", path)
            return None
        try:
            return Manifest.model_validate(data)
        except ValidationError as exc:
            logger.warning("Manifest %s is malformed, ignoring it: %s", path, exc.errors()[0]["msg"])
            return None

    def load(self) -> Optional[Manifest]:
        return self._read(self.path)

    def load_pending(self) -> Optional[Manifest]:
        return self._read(self.pending_path)

    def save(self, manifest: Manifest) -> Path:
        write_json(self.path, manifest.to_json())
        return self.path

    def save_pending(self, manifest: Manifest) -> Path:
        write_json(self.pending_path, manifest.to_json())
        return self.pending_path

    def commit(self, failed_routes: Optional[Iterable[str]] = None) -> Optional[Manifest]:
        """Promote the pending manifest after a build; records routes that failed to render."""
        manifest = self.load_pending() or self.load()
        if manifest is None:
            return None
        if failed_routes is not None:
            manifest = manifest.model_copy(update={"failed_routes": sorted(set(failed_routes))})
        self.save(manifest)
        self.pending_path.unlink(missing_ok=True)
        return manifest
