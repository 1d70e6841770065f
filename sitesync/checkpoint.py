from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .utils import read_json, write_json

logger = logging.getLogger(__name__)


class Checkpoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    endpoint: str
    per_page: int = Field(alias="perPage")
    next_page: int = Field(alias="nextPage")
    items: list[dict] = Field(default_factory=list)
    saved_at: float = Field(alias="savedAt")


def checkpoint_key(endpoint: str, params: dict | None = None) -> str:
    parts = [endpoint]
    for key in sorted(params or {}):
        parts.append(f"{key}-{params[key]}")
    return re.sub(r"[^A-Za-z0-9._-]+", "_", "__".join(parts))


class CheckpointStore:
    def __init__(self, root: Path, ttl: float = 600.0, clock: Callable[[], float] = time.time) -> None:
        self.root = root
        self.ttl = ttl
        self.clock = clock

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def load(self, key: str, per_page: int) -> Optional[Checkpoint]:
        path = self.path_for(key)
        data = read_json(path)
        if not isinstance(data, dict):
            return None
        try:
            checkpoint = Checkpoint.model_validate(data)
        except ValidationError:
            logger.warning("Ignoring unreadable checkpoint %s", path)
            return None
        age = self.clock() - checkpoint.saved_at
        if age > self.ttl or age < 0:
            logger.info("Checkpoint %s is stale (%.0fs old), starting over", key, age)
            return None
        if checkpoint.per_page != per_page:
            logger.info("Checkpoint %s used per_page=%s, starting over", key, checkpoint.per_page)
            return None
        return checkpoint

    def save(self, key: str, endpoint: str, per_page: int, next_page: int, items: list[dict]) -> Path:
        path = self.path_for(key)
        checkpoint = Checkpoint(
            endpoint=endpoint,
            per_page=per_page,
            next_page=next_page,
            items=items,
            saved_at=self.clock(),
        )
        write_json(path, checkpoint.model_dump(by_alias=True), indent=None)
        return path

    def clear(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)
