from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Kind(str, enum.Enum):
    POST = "post"
    CATEGORY = "category"
    TAG = "tag"
    AUTHOR = "author"

    @property
    def endpoint(self) -> str:
        return ENDPOINTS[self]

    @property
    def bucket(self) -> str:
        """Key used for this kind in the manifest and snapshot files."""
        return BUCKETS[self]


ENDPOINTS = {
    Kind.POST: "posts",
    Kind.CATEGORY: "categories",
    Kind.TAG: "tags",
    Kind.AUTHOR: "users",
}

BUCKETS = {
    Kind.POST: "posts",
    Kind.CATEGORY: "categories",
    Kind.TAG: "tags",
    Kind.AUTHOR: "authors",
}


class ContentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Kind
    id: int
    slug: str
    title: str = ""
    body: str = ""
    description: str = ""
    date: Optional[str] = None
    modified: Optional[str] = None
    author_id: Optional[int] = None
    category_ids: tuple[int, ...] = ()
    tag_ids: tuple[int, ...] = ()
    featured_media: Optional[int] = None
    featured_image: str = ""
    avatar: str = ""
    # volatile: recomputed upstream on every save, never fingerprinted
    count: int = 0
    link: str = ""


class ContentSnapshot:
    """One consistent view of everything fetched in a sync."""

    def __init__(
        self,
        posts: list[ContentRecord] | None = None,
        categories: list[ContentRecord] | None = None,
        tags: list[ContentRecord] | None = None,
        authors: list[ContentRecord] | None = None,
        fetched_at: str = "",
    ) -> None:
        self.posts = list(posts or [])
        self.categories = list(categories or [])
        self.tags = list(tags or [])
        self.authors = list(authors or [])
        self.fetched_at = fetched_at
        self._by_id = {
            kind: {record.id: record for record in self.records(kind)} for kind in Kind
        }

    def records(self, kind: Kind) -> list[ContentRecord]:
        if kind is Kind.POST:
            return self.posts
        if kind is Kind.CATEGORY:
            return self.categories
        if kind is Kind.TAG:
            return self.tags
        return self.authors

    def get(self, kind: Kind, record_id: Optional[int]) -> Optional[ContentRecord]:
        if record_id is None:
            return None
        return self._by_id[kind].get(record_id)

    def post_categories(self, post: ContentRecord) -> list[ContentRecord]:
        return [c for c in (self.get(Kind.CATEGORY, i) for i in post.category_ids) if c is not None]

    def post_tags(self, post: ContentRecord) -> list[ContentRecord]:
        return [t for t in (self.get(Kind.TAG, i) for i in post.tag_ids) if t is not None]

    def post_author(self, post: ContentRecord) -> Optional[ContentRecord]:
        return self.get(Kind.AUTHOR, post.author_id)

    def posts_for(self, record: ContentRecord) -> list[ContentRecord]:
        """Posts a listing page for ``record`` displays, newest first."""
        if record.kind is Kind.CATEGORY:
            return [post for post in self.posts if record.id in post.category_ids]
        if record.kind is Kind.TAG:
            return [post for post in self.posts if record.id in post.tag_ids]
        if record.kind is Kind.AUTHOR:
            return [post for post in self.posts if post.author_id == record.id]
        return []

    def counts(self) -> dict[str, int]:
        return {kind.bucket: len(self.records(kind)) for kind in Kind}


class ChunkDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    post_count: int = Field(alias="postCount")
    size_mb: float = Field(alias="sizeMB")


class ChunkIndex(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chunks: list[str] = Field(default_factory=list)
    total_posts: int = Field(default=0, alias="totalPosts")
    posts_per_chunk: int = Field(default=0, alias="postsPerChunk")
    chunk_details: list[ChunkDetail] = Field(default_factory=list, alias="chunkDetails")


@dataclass
class PageResult:
    items: list[dict]
    page: int
    total: Optional[int] = None
    total_pages: Optional[int] = None


@dataclass
class SyncState:
    """Mutable counters for one sync run, shared by the endpoint workers."""

    consecutive_failures: int = 0
    requests: int = 0
    retries: int = 0
    cooldowns: int = 0
    last_fetch_at: Optional[float] = None
    pages: dict[str, int] = field(default_factory=dict)
    resumed: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_request(self, when: float) -> None:
        with self._lock:
            self.requests += 1
            self.last_fetch_at = when

    def record_failure(self) -> int:
        with self._lock:
            self.consecutive_failures += 1
            self.retries += 1
            return self.consecutive_failures

    def record_success(self) -> None:
        with self._lock:
            self.consecutive_failures = 0

    def record_cooldown(self) -> None:
        with self._lock:
            self.cooldowns += 1

    def record_page(self, endpoint: str) -> None:
        with self._lock:
            self.pages[endpoint] = self.pages.get(endpoint, 0) + 1

    def record_resume(self, key: str) -> None:
        with self._lock:
            self.resumed.append(key)
