from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from .errors import MissingSourceError
from .models import ChunkDetail, ChunkIndex, ContentRecord, ContentSnapshot, Kind
from .utils import read_json, write_json

logger = logging.getLogger(__name__)

CHUNK_GLOB = "posts-chunk-*.json"
INDEX_NAME = "posts-index.json"
METADATA_NAME = "fetch-metadata.json"
TERM_KINDS = (Kind.CATEGORY, Kind.TAG, Kind.AUTHOR)


def chunk_name(index: int) -> str:
    return f"posts-chunk-{index:04d}.json"


def _dump(records: list[ContentRecord]) -> list[dict]:
    return [record.model_dump(mode="json") for record in records]


def _load_records(path: Path, label: str) -> list[ContentRecord]:
    data = read_json(path)
    if not isinstance(data, list):
        raise MissingSourceError(f"{label} is missing or unreadable: {path}")
    try:
        return [ContentRecord.model_validate(item) for item in data]
    except ValidationError as exc:
        raise MissingSourceError(f"{label} holds malformed records: {path}") from exc


class ChunkedContentStore:
    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.index_path = data_dir / INDEX_NAME
        self.metadata_path = data_dir / METADATA_NAME

    def clear_chunks(self) -> int:
        removed = 0
        for path in self.data_dir.glob(CHUNK_GLOB):
            path.unlink()
            removed += 1
        return removed

    def save(self, posts: list[ContentRecord], chunk_size: int) -> ChunkIndex:
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.data_dir.mkdir(parents=True, exist_ok=True)
        removed = self.clear_chunks()
        if removed:
            logger.debug("Removed %d stale chunk files", removed)

        details = []
        for number, start in enumerate(range(0, len(posts), chunk_size)):
            batch = posts[start : start + chunk_size]
            name = chunk_name(number)
            size = write_json(self.data_dir / name, _dump(batch), indent=None)
            details.append(ChunkDetail(filename=name, post_count=len(batch), size_mb=round(size / (1024 * 1024), 4)))

        index = ChunkIndex(
            chunks=[detail.filename for detail in details],
            total_posts=len(posts),
            posts_per_chunk=chunk_size,
            chunk_details=details,
        )
        write_json(self.index_path, index.model_dump(by_alias=True))
        logger.info("Saved %d posts in %d chunks", len(posts), len(details))
        return index

    def load_index(self) -> ChunkIndex:
        data = read_json(self.index_path)
        if not isinstance(data, dict):
            raise MissingSourceError(f"No content snapshot at {self.index_path}; run `sitesync sync` first")
        try:
            return ChunkIndex.model_validate(data)
        except ValidationError as exc:
            raise MissingSourceError(f"Chunk index is malformed: {self.index_path}") from exc

    def load(self) -> list[ContentRecord]:
        index = self.load_index()
        posts: list[ContentRecord] = []
        for name in index.chunks:
            posts.extend(_load_records(self.data_dir / name, f"Chunk {name}"))
        if len(posts) != index.total_posts:
            raise MissingSourceError(
                f"Chunk index lists {index.total_posts} posts but the chunks hold {len(posts)}"
            )
        return posts

    def save_snapshot(self, snapshot: ContentSnapshot, chunk_size: int) -> ChunkIndex:
        index = self.save(snapshot.posts, chunk_size)
        for kind in TERM_KINDS:
            write_json(self.data_dir / f"{kind.bucket}.json", _dump(snapshot.records(kind)))
        write_json(
            self.metadata_path,
            {
                "fetchedAt": snapshot.fetched_at,
                "counts": snapshot.counts(),
                "chunks": len(index.chunks),
            },
        )
        return index

    def load_snapshot(self) -> ContentSnapshot:
        posts = self.load()
        terms = {
            kind: _load_records(self.data_dir / f"{kind.bucket}.json", kind.bucket.capitalize())
            for kind in TERM_KINDS
        }
        metadata = read_json(self.metadata_path, default={})
        fetched_at = metadata.get("fetchedAt", "") if isinstance(metadata, dict) else ""
        return ContentSnapshot(
            posts=posts,
            categories=terms[Kind.CATEGORY],
            tags=terms[Kind.TAG],
            authors=terms[Kind.AUTHOR],
            fetched_at=fetched_at,
        )
