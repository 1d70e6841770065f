from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

ENV_PREFIX = "SITESYNC_"

DEFAULT_NEWS_CATEGORY_SLUGS = [
    "news",
    "breaking-news",
    "breaking",
    "updates",
    "announcements",
    "latest",
]


def load_config(path: Path) -> dict:
    if not path.exists():
        return {}
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix == ".toml":
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in config file {path}: {exc}") from exc
    elif suffix in {".yml", ".yaml"}:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc
        if data is None:
            return {}
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping: {path}")
    return data


class Settings(BaseModel):
    """Every knob of the sync/build pipeline.

    Values resolve as CLI flag > ``SITESYNC_*`` environment variable >
    config file > the defaults below.
    """

    api_url: str = "https://example.com/wp-json/wp/v2"
    site_url: str = "https://example.com"
    site_name: str = "Example Blog"
    site_description: str = "News, tips and reviews."
    default_image: str = ""

    output_dir: Path = Path("dist")
    data_dir: Path = Path("data")
    cache_dir: Path = Path(".build-cache")
    state_dir: Path = Path(".sitesync")
    template_path: Path = Path("templates/base.html")
    assets_dir: Optional[str] = None

    per_page: int = Field(default=50, ge=1, le=100)
    chunk_size: int = Field(default=100, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)
    request_delay: float = Field(default=0.3, ge=0)
    max_attempts: int = Field(default=4, ge=1)
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_max: float = Field(default=30.0, ge=0)
    failure_threshold: int = Field(default=3, ge=1)
    cooldown_seconds: float = Field(default=60.0, ge=0)
    max_health_probes: int = Field(default=3, ge=1)
    checkpoint_every: int = Field(default=5, ge=1)
    checkpoint_ttl: float = Field(default=600.0, ge=0)
    media_batch_size: int = Field(default=100, ge=1, le=100)
    media_concurrency: int = Field(default=4, ge=1)

    render_workers: int = Field(default=0, ge=0)
    render_batch_size: int = Field(default=50, ge=1)
    max_changed_routes: int = Field(default=200, ge=0)
    home_window: int = Field(default=9, ge=0)
    mark_categories: bool = True
    mark_tags: bool = True
    mark_author: bool = True
    mark_term_posts: bool = True

    news_category_slugs: list[str] = Field(default_factory=lambda: list(DEFAULT_NEWS_CATEGORY_SLUGS))
    news_dateline: str = ""
    language: str = "en"
    author_social_links: dict[str, list[str]] = Field(default_factory=dict)
    enable_indexing: bool = False

    @field_validator("api_url", "site_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"expected an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @field_validator("news_category_slugs", mode="before")
    @classmethod
    def split_slugs(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        return value

    @field_validator("author_social_links", mode="before")
    @classmethod
    def parse_links(cls, value: object) -> object:
        if isinstance(value, str):
            return json.loads(value) if value.strip() else {}
        return value

    @property
    def worker_count(self) -> int:
        workers = self.render_workers or os.cpu_count() or 1
        return max(1, min(workers, 32))

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, object] | None = None,
        env: Mapping[str, str] | None = None,
        overrides: Mapping[str, object] | None = None,
    ) -> "Settings":
        values: dict[str, object] = {}
        known = set(cls.model_fields)
        for key, value in (config or {}).items():
            if key in known and value is not None:
                values[key] = value
        for key, value in (env or {}).items():
            if not key.startswith(ENV_PREFIX):
                continue
            name = key[len(ENV_PREFIX) :].lower()
            if name in known:
                values[name] = value
        for key, value in (overrides or {}).items():
            if value is not None:
                values[key] = value
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid settings: {exc}") from exc
