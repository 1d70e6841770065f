from __future__ import annotations

import html as html_lib
import logging
import re
from collections.abc import Mapping
from typing import Optional

from .models import ContentRecord, ContentSnapshot, Kind

logger = logging.getLogger(__name__)

TAG_RE = re.compile(r"<[^>]+>")
SPACE_RE = re.compile(r"\s+")
WORD_RE = re.compile(r"[A-Za-z0-9]+(?:'[A-Za-z0-9]+)?")


def slugify(text: str) -> str:
    text = text.lower()
    text = re.sub(r"[^\w]+", "-", text, flags=re.UNICODE)
    text = text.strip("-_").replace("_", "-")
    return text or "post"


def strip_html(html_text: Optional[str]) -> str:
    if not html_text:
        return ""
    text = TAG_RE.sub("", html_text)
    text = html_lib.unescape(text)
    return SPACE_RE.sub(" ", text).strip()


def summarize(html_text: Optional[str], limit: int = 160) -> str:
    text = strip_html(html_text)
    if len(text) <= limit:
        return text
    return text[:limit].rstrip()


def count_words(html_text: Optional[str]) -> int:
    return len(WORD_RE.findall(strip_html(html_text)))


def rendered(value: object) -> str:
    if isinstance(value, Mapping):
        value = value.get("rendered", "")
    if value is None:
        return ""
    return str(value)


def _as_int(value: object) -> Optional[int]:
    if isinstance(value, Mapping):
        value = value.get("id")
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _text_or_none(value: object) -> Optional[str]:
    text = rendered(value).strip()
    return text or None


def _id_list(value: object) -> tuple[int, ...]:
    if not isinstance(value, list):
        return ()
    ids = []
    for item in value:
        item_id = _as_int(item)
        if item_id is not None and item_id not in ids:
            ids.append(item_id)
    return tuple(ids)


def media_url(media: Optional[Mapping]) -> str:
    if not media:
        return ""
    url = media.get("source_url")
    if url:
        return str(url)
    sizes = (media.get("media_details") or {}).get("sizes") or {}
    for size in ("large", "full", "medium"):
        candidate = (sizes.get(size) or {}).get("source_url")
        if candidate:
            return str(candidate)
    return ""


def _embedded_media(raw: Mapping) -> Optional[Mapping]:
    embedded = raw.get("_embedded") or {}
    items = embedded.get("wp:featuredmedia") or []
    if items and isinstance(items[0], Mapping):
        return items[0]
    return None


def normalize_post(raw: Mapping, media: Mapping[int, Mapping] | None = None) -> Optional[ContentRecord]:
    post_id = _as_int(raw.get("id"))
    if post_id is None:
        logger.warning("Skipping post without an id: %r", raw.get("slug"))
        return None
    title = rendered(raw.get("title"))
    featured_media = _as_int(raw.get("featured_media")) or None
    media_item = (media or {}).get(featured_media) if featured_media else None
    if media_item is None:
        media_item = _embedded_media(raw)
    return ContentRecord(
        kind=Kind.POST,
        id=post_id,
        slug=str(raw.get("slug") or slugify(strip_html(title)) or post_id),
        title=title,
        body=rendered(raw.get("content")),
        description=rendered(raw.get("excerpt")),
        date=_text_or_none(raw.get("date")),
        modified=_text_or_none(raw.get("modified")) or _text_or_none(raw.get("date")),
        author_id=_as_int(raw.get("author")),
        category_ids=_id_list(raw.get("categories")),
        tag_ids=_id_list(raw.get("tags")),
        featured_media=featured_media,
        featured_image=media_url(media_item),
        link=str(raw.get("link") or ""),
    )


def normalize_term(kind: Kind, raw: Mapping) -> Optional[ContentRecord]:
    term_id = _as_int(raw.get("id"))
    if term_id is None:
        logger.warning("Skipping %s without an id: %r", kind.value, raw.get("slug"))
        return None
    name = rendered(raw.get("name"))
    avatar = ""
    if kind is Kind.AUTHOR:
        avatars = raw.get("avatar_urls") or {}
        avatar = str(avatars.get("96") or avatars.get("48") or "")
    count = _as_int(raw.get("count")) or 0
    return ContentRecord(
        kind=kind,
        id=term_id,
        slug=str(raw.get("slug") or slugify(name) or term_id),
        title=name,
        description=rendered(raw.get("description")),
        avatar=avatar,
        count=count,
        link=str(raw.get("link") or ""),
    )


def _post_sort_key(post: ContentRecord) -> tuple[str, int]:
    return (post.date or "", post.id)


def _dedupe(records: list[ContentRecord]) -> list[ContentRecord]:
    seen: set[str] = set()
    unique = []
    for record in records:
        if record.slug in seen:
            logger.warning("Duplicate %s slug %r (id %s) dropped", record.kind.value, record.slug, record.id)
            continue
        seen.add(record.slug)
        unique.append(record)
    return unique


def normalize_snapshot(
    raw: Mapping[Kind, list[Mapping]],
    media: Mapping[int, Mapping] | None = None,
    fetched_at: str = "",
) -> ContentSnapshot:
    """Turn raw API payloads into the canonical snapshot every later stage reads."""
    posts = [p for p in (normalize_post(item, media) for item in raw.get(Kind.POST, [])) if p]
    posts.sort(key=_post_sort_key, reverse=True)
    terms = {}
    for kind in (Kind.CATEGORY, Kind.TAG, Kind.AUTHOR):
        records = [r for r in (normalize_term(kind, item) for item in raw.get(kind, [])) if r]
        terms[kind] = _dedupe(records)
    return ContentSnapshot(
        posts=_dedupe(posts),
        categories=terms[Kind.CATEGORY],
        tags=terms[Kind.TAG],
        authors=terms[Kind.AUTHOR],
        fetched_at=fetched_at,
    )
