from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Callable, Optional

import pytest
from requests.structures import CaseInsensitiveDict

from sitesync.config import Settings
from sitesync.models import ContentRecord, ContentSnapshot, Kind

API_URL = "https://cms.test/wp-json/wp/v2"
SITE_URL = "https://blog.test"
TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "templates" / "base.html"


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        payload: object = None,
        text: Optional[str] = None,
        headers: Optional[dict] = None,
    ) -> None:
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload if payload is not None else [])
        self.headers = CaseInsensitiveDict(headers or {})


class FakeSession:
    """Stands in for ``requests.Session``; every GET goes to ``handler(url, params)``."""

    def __init__(self, handler: Callable[[str, dict], object]) -> None:
        self.handler = handler
        self.calls: list[tuple[str, dict]] = []
        self.headers: dict = {}

    def get(self, url: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> FakeResponse:
        params = dict(params or {})
        self.calls.append((url, params))
        result = self.handler(url, params)
        if isinstance(result, BaseException):
            raise result
        return result

    def close(self) -> None:
        pass

    def pages_requested(self, endpoint: str) -> list[int]:
        return [params["page"] for url, params in self.calls if url.endswith(f"/{endpoint}")]


class FakeWordPress:
    """Paginated in-memory API with the WordPress header conventions."""

    def __init__(self, data: dict[str, list[dict]], api_url: str = API_URL) -> None:
        self.data = data
        self.api_url = api_url

    def __call__(self, url: str, params: dict) -> FakeResponse:
        endpoint = url[len(self.api_url) :].strip("/")
        if not endpoint:
            return FakeResponse(200, {"name": "Fake CMS"})
        items = list(self.data.get(endpoint, []))
        if "include" in params:
            wanted = {int(value) for value in str(params["include"]).split(",")}
            items = [item for item in items if item["id"] in wanted]
        if "modified_after" in params:
            items = [item for item in items if item.get("modified", "") > params["modified_after"]]
        per_page = int(params.get("per_page", 10))
        page = int(params.get("page", 1))
        total_pages = max(1, math.ceil(len(items) / per_page))
        if page > total_pages:
            return FakeResponse(400, {"code": "rest_post_invalid_page_number"})
        start = (page - 1) * per_page
        return FakeResponse(
            200,
            items[start : start + per_page],
            headers={"X-WP-Total": str(len(items)), "X-WP-TotalPages": str(total_pages)},
        )


def no_sleep(seconds: float) -> None:
    pass


def raw_post(
    post_id: int,
    slug: str,
    title: str = "",
    categories: tuple[int, ...] = (),
    tags: tuple[int, ...] = (),
    author: int = 0,
    date: str = "2026-01-01T10:00:00",
    modified: Optional[str] = None,
    featured_media: int = 0,
) -> dict:
    return {
        "id": post_id,
        "slug": slug,
        "date": date,
        "modified": modified or date,
        "title": {"rendered": title or slug.replace("-", " ").title()},
        "content": {"rendered": f"<p>Body of {slug}.</p>"},
        "excerpt": {"rendered": f"<p>Summary of {slug}.</p>"},
        "author": author,
        "categories": list(categories),
        "tags": list(tags),
        "featured_media": featured_media,
        "link": f"https://cms.test/{slug}/",
    }


def raw_term(term_id: int, slug: str, name: str = "", count: int = 1) -> dict:
    return {"id": term_id, "slug": slug, "name": name or slug.title(), "description": "", "count": count}


def raw_user(user_id: int, slug: str, name: str = "") -> dict:
    return {
        "id": user_id,
        "slug": slug,
        "name": name or slug.title(),
        "description": "",
        "avatar_urls": {"24": "https://cms.test/a24.png", "96": f"https://cms.test/{slug}-96.png"},
    }


def make_post(
    post_id: int,
    slug: str,
    title: str = "",
    categories: tuple[int, ...] = (),
    tags: tuple[int, ...] = (),
    author: Optional[int] = None,
    date: str = "2026-01-01T10:00:00",
    modified: Optional[str] = None,
) -> ContentRecord:
    return ContentRecord(
        kind=Kind.POST,
        id=post_id,
        slug=slug,
        title=title or slug,
        body=f"<p>Body of {slug}.</p>",
        description=f"<p>Summary of {slug}.</p>",
        date=date,
        modified=modified or date,
        author_id=author,
        category_ids=categories,
        tag_ids=tags,
    )


def make_term(kind: Kind, term_id: int, slug: str, count: int = 1) -> ContentRecord:
    return ContentRecord(kind=kind, id=term_id, slug=slug, title=slug.title(), count=count)


def make_snapshot(posts: list[ContentRecord], terms: Optional[list[ContentRecord]] = None) -> ContentSnapshot:
    terms = terms or []
    return ContentSnapshot(
        posts=posts,
        categories=[term for term in terms if term.kind is Kind.CATEGORY],
        tags=[term for term in terms if term.kind is Kind.TAG],
        authors=[term for term in terms if term.kind is Kind.AUTHOR],
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        api_url=API_URL,
        site_url=SITE_URL,
        site_name="Test Blog",
        site_description="Tests all the way down.",
        output_dir=tmp_path / "dist",
        data_dir=tmp_path / "data",
        cache_dir=tmp_path / ".build-cache",
        state_dir=tmp_path / ".sitesync",
        template_path=TEMPLATE_PATH,
        per_page=2,
        request_delay=0,
        backoff_base=0,
        backoff_max=0,
        cooldown_seconds=0,
        render_workers=2,
    )
