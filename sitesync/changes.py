from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .hashing import snapshot_fingerprints
from .manifest import MANIFEST_VERSION, Manifest
from .models import ContentRecord, ContentSnapshot, Kind
from .routes import derive_routes, has_listing, route_path
from .utils import iso_date, utc_now


@dataclass(frozen=True)
class InvalidationPolicy:
    """Which listing routes a changed post drags along with it."""

    home_window: int = 9
    mark_categories: bool = True
    mark_tags: bool = True
    mark_author: bool = True
    mark_term_posts: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "InvalidationPolicy":
        return cls(
            home_window=settings.home_window,
            mark_categories=settings.mark_categories,
            mark_tags=settings.mark_tags,
            mark_author=settings.mark_author,
            mark_term_posts=settings.mark_term_posts,
        )


@dataclass(frozen=True)
class ChangeSet:
    changed_routes: frozenset[str]
    full_rebuild_required: bool
    deleted_routes: frozenset[str] = frozenset()
    reason: str = ""


class ChangeDetector:
    def __init__(
        self,
        policy: Optional[InvalidationPolicy] = None,
        version: int = MANIFEST_VERSION,
        max_changed_routes: int = 200,
    ) -> None:
        self.policy = policy or InvalidationPolicy()
        self.version = version
        self.max_changed_routes = max_changed_routes

    def _listing_routes(self, snapshot: ContentSnapshot, post: ContentRecord) -> set[str]:
        related: list[ContentRecord] = []
        if self.policy.mark_categories:
            related.extend(snapshot.post_categories(post))
        if self.policy.mark_tags:
            related.extend(snapshot.post_tags(post))
        if self.policy.mark_author:
            author = snapshot.post_author(post)
            if author is not None:
                related.append(author)
        return {route_path(record.kind, record.slug) for record in related if has_listing(record)}

    def diff(self, old: Optional[Manifest], snapshot: ContentSnapshot) -> ChangeSet:
        if old is None:
            return ChangeSet(frozenset(), True, reason="no previous manifest")
        if old.version != self.version:
            return ChangeSet(
                frozenset(),
                True,
                reason=f"manifest version {old.version} does not match {self.version}",
            )

        fingerprints = snapshot_fingerprints(snapshot)
        current_paths = {route.path for route in derive_routes(snapshot)}
        home_slugs = {post.slug for post in snapshot.posts[: self.policy.home_window]}
        changed: set[str] = set()

        for post in snapshot.posts:
            if old.hashes(Kind.POST).get(post.slug) == fingerprints[Kind.POST.bucket][post.slug]:
                continue
            changed.add(route_path(Kind.POST, post.slug))
            changed.update(self._listing_routes(snapshot, post))
            if post.slug in home_slugs:
                changed.add("/")

        for kind in (Kind.CATEGORY, Kind.TAG, Kind.AUTHOR):
            previous = old.hashes(kind)
            for record in snapshot.records(kind):
                if previous.get(record.slug) == fingerprints[kind.bucket][record.slug]:
                    continue
                if has_listing(record):
                    changed.add(route_path(kind, record.slug))
                if self.policy.mark_term_posts:
                    # post pages and cards show term and author names
                    for post in snapshot.posts_for(record):
                        changed.add(route_path(Kind.POST, post.slug))
                        if post.slug in home_slugs:
                            changed.add("/")

        deleted = set(old.routes)
        for kind in Kind:
            current = fingerprints[kind.bucket]
            for slug in old.hashes(kind):
                if slug not in current:
                    deleted.add(route_path(kind, slug))
        deleted -= current_paths
        if deleted:
            changed.add("/")

        changed.update(path for path in old.failed_routes if path in current_paths)

        if len(changed) > self.max_changed_routes:
            return ChangeSet(
                frozenset(changed),
                True,
                frozenset(deleted),
                reason=f"{len(changed)} changed routes exceed the limit of {self.max_changed_routes}",
            )
        return ChangeSet(frozenset(changed), False, frozenset(deleted))


def build_manifest(
    snapshot: ContentSnapshot,
    change_set: ChangeSet,
    version: int = MANIFEST_VERSION,
    generated_at: Optional[str] = None,
) -> Manifest:
    return Manifest(
        version=version,
        content_hashes=snapshot_fingerprints(snapshot),
        changed_routes=sorted(change_set.changed_routes),
        full_rebuild_required=change_set.full_rebuild_required,
        deleted_routes=sorted(change_set.deleted_routes),
        routes=[route.path for route in derive_routes(snapshot)],
        counts=snapshot.counts(),
        generated_at=generated_at or iso_date(utc_now()),
    )
