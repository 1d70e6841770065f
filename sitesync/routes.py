from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Optional

from .models import ContentRecord, ContentSnapshot, Kind

HOME = "home"

ROUTE_PREFIXES = {
    Kind.POST: "",
    Kind.CATEGORY: "category",
    Kind.TAG: "tag",
    Kind.AUTHOR: "author",
}


@dataclass(frozen=True)
class Route:
    path: str
    kind: str = field(compare=False)
    record: Optional[ContentRecord] = field(default=None, compare=False, hash=False)

    @property
    def output_path(self) -> str:
        return output_path_for(self.path)


def route_path(kind: Kind, slug: str) -> str:
    prefix = ROUTE_PREFIXES[kind]
    if prefix:
        return f"/{prefix}/{slug}"
    return f"/{slug}"


def output_path_for(path: str) -> str:
    """Relative output file for a route path: ``/`` is ``index.html``, ``/x/y`` is ``x/y.html``."""
    clean = path.strip("/")
    if not clean:
        return "index.html"
    return PurePosixPath(f"{clean}.html").as_posix()


def has_listing(record: ContentRecord) -> bool:
    if record.kind in (Kind.CATEGORY, Kind.TAG):
        return record.count > 0
    return True


def route_for(record: ContentRecord) -> Route:
    return Route(route_path(record.kind, record.slug), record.kind.value, record)


def home_route() -> Route:
    return Route("/", HOME)


def derive_routes(snapshot: ContentSnapshot) -> list[Route]:
    """Every route the site has, home first, then posts, categories, tags, authors."""
    routes = [home_route()]
    seen = {"/"}
    for kind in (Kind.POST, Kind.CATEGORY, Kind.TAG, Kind.AUTHOR):
        for record in snapshot.records(kind):
            if not has_listing(record):
                continue
            route = route_for(record)
            if route.path in seen:
                continue
            seen.add(route.path)
            routes.append(route)
    return routes
