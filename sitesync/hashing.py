from __future__ import annotations

import hashlib
from collections.abc import Mapping
from pathlib import Path
from typing import Union

from .models import ContentRecord, ContentSnapshot, Kind

FINGERPRINT_LENGTH = 16

TRACKED_FIELDS = (
    "slug",
    "title",
    "body",
    "description",
    "modified",
    "author_id",
    "category_ids",
    "tag_ids",
    "featured_image",
    "avatar",
)


def list_files(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return sorted((path for path in root.rglob("*") if path.is_file()), key=lambda p: p.as_posix())


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_text(text: str) -> str:
    return hash_bytes(text.encode("utf-8"))


def hash_file(path: Path) -> str:
    return hash_bytes(path.read_bytes())


def _field_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ",".join(_field_text(item) for item in value)
    # anything else is malformed input for a tracked field
    return ""


def fingerprint(record: Union[ContentRecord, Mapping]) -> str:
    if isinstance(record, ContentRecord):
        values = [getattr(record, name) for name in TRACKED_FIELDS]
    elif isinstance(record, Mapping):
        values = [record.get(name) for name in TRACKED_FIELDS]
    else:
        values = [None] * len(TRACKED_FIELDS)
    joined = "\0".join(_field_text(value) for value in values)
    return hash_text(joined)[:FINGERPRINT_LENGTH]


def snapshot_fingerprints(snapshot: ContentSnapshot) -> dict[str, dict[str, str]]:
    return {
        kind.bucket: {record.slug: fingerprint(record) for record in snapshot.records(kind)}
        for kind in Kind
    }
