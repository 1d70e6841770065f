from __future__ import annotations

import html
from pathlib import Path

from .config import Settings
from .content import count_words, strip_html, summarize
from .errors import MissingSourceError
from .models import ContentRecord, ContentSnapshot, Kind
from .routes import HOME, Route, route_path
from .utils import parse_iso


def render_template(template: str, **context: str) -> str:
    output = template
    late_keys = {"content"}
    for key, value in context.items():
        if key in late_keys:
            continue
        output = output.replace(f"{{{{{key}}}}}", value)
    for key in late_keys:
        if key in context:
            output = output.replace(f"{{{{{key}}}}}", context[key])
    return output


def read_template(path: Path) -> str:
    if not path.is_file():
        raise MissingSourceError(f"Template not found: {path}")
    return path.read_text(encoding="utf-8")


def display_date(value: str | None) -> str:
    parsed = parse_iso(value)
    if parsed is None:
        return ""
    return parsed.date().isoformat()


class HtmlRenderer:
    """Default body renderer: plain semantic markup for every route kind."""

    def __init__(self, snapshot: ContentSnapshot, settings: Settings) -> None:
        self.snapshot = snapshot
        self.settings = settings

    def __call__(self, route: Route) -> str:
        if route.kind == HOME:
            return self.render_home()
        record = route.record
        if record is None:
            raise ValueError(f"route {route.path} has no content record")
        if record.kind is Kind.POST:
            return self.render_post(record)
        return self.render_listing(record)

    def chips(self, records: list[ContentRecord]) -> str:
        return " ".join(
            f'<a class="chip" href="{route_path(record.kind, record.slug)}">{html.escape(strip_html(record.title))}</a>'
            for record in records
        )

    def post_cards(self, posts: list[ContentRecord]) -> str:
        cards = []
        for post in posts:
            url = route_path(Kind.POST, post.slug)
            cards.append(
                '<article class="post-card">'
                '<div class="post-meta">'
                f'<span class="post-date">{display_date(post.date)}</span>'
                f'<div class="post-tags">{self.chips(self.snapshot.post_categories(post))}</div>'
                "</div>"
                f'<h2 class="post-title"><a href="{url}">{html.escape(strip_html(post.title))}</a></h2>'
                f'<p class="post-summary">{html.escape(summarize(post.description or post.body))}</p>'
                "</article>"
            )
        if not cards:
            return '<p class="empty">No posts yet.</p>'
        return "\n".join(cards)

    def render_home(self) -> str:
        posts = self.snapshot.posts[: max(self.settings.home_window, 1)]
        return (
            '<div class="section-head">'
            f"<h1>{html.escape(self.settings.site_name)}</h1>"
            f"<p>{html.escape(self.settings.site_description)}</p>"
            "</div>"
            f'<div class="post-grid">{self.post_cards(posts)}</div>'
        )

    def render_post(self, post: ContentRecord) -> str:
        author = self.snapshot.post_author(post)
        byline = ""
        if author is not None:
            byline = (
                f'<a class="post-author" href="{route_path(Kind.AUTHOR, author.slug)}">'
                f"{html.escape(strip_html(author.title))}</a>"
            )
        figure = ""
        if post.featured_image:
            figure = (
                f'<figure class="post-image"><img src="{html.escape(post.featured_image)}" '
                f'alt="{html.escape(strip_html(post.title))}" loading="eager" /></figure>'
            )
        tags = self.snapshot.post_tags(post)
        tag_html = f'<div class="post-tags">{self.chips(tags)}</div>' if tags else ""
        return (
            '<article class="post">'
            '<div class="post-meta">'
            f'<span class="post-date">{display_date(post.date)}</span>'
            f"{byline}"
            f'<span class="post-words">{count_words(post.body)} words</span>'
            f'<div class="post-tags">{self.chips(self.snapshot.post_categories(post))}</div>'
            "</div>"
            f'<h1 class="post-title">{html.escape(strip_html(post.title))}</h1>'
            f"{figure}"
            f'<div class="post-content">{post.body}</div>'
            f"{tag_html}"
            '<div class="post-footer"><a href="/">Back to home</a></div>'
            "</article>"
        )

    def render_listing(self, record: ContentRecord) -> str:
        name = html.escape(strip_html(record.title))
        if record.kind is Kind.AUTHOR:
            heading = f"Articles by {name}"
        elif record.kind is Kind.TAG:
            heading = f"Tagged: {name}"
        else:
            heading = name
        intro = ""
        if record.description:
            intro = f"<p>{html.escape(strip_html(record.description))}</p>"
        avatar = ""
        if record.avatar:
            avatar = f'<img class="avatar" src="{html.escape(record.avatar)}" alt="{name}" />'
        return (
            '<div class="section-head">'
            f"{avatar}<h1>{heading}</h1>{intro}"
            "</div>"
            f'<div class="post-grid">{self.post_cards(self.snapshot.posts_for(record))}</div>'
        )
