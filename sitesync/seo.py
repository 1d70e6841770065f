from __future__ import annotations

import html
import json
import re
from collections.abc import Callable
from typing import Optional

from .config import Settings
from .content import strip_html, summarize
from .models import ContentRecord, ContentSnapshot, Kind
from .routes import HOME, Route, route_path
from .utils import iso_date, parse_iso

SEO_PLACEHOLDER = "<!--seo-head-->"
APP_PLACEHOLDER = "<!--app-html-->"

METADATA_PATTERNS = [
    re.compile(r"[ \t]*<title\b[^>]*>.*?</title>[ \t]*\n?", re.IGNORECASE | re.DOTALL),
    re.compile(
        r'[ \t]*<meta\s[^>]*?(?:name|property)\s*=\s*"(?:description|robots|og:[^"]*|twitter:[^"]*|article:[^"]*)"[^>]*>[ \t]*\n?',
        re.IGNORECASE,
    ),
    re.compile(r'[ \t]*<link\s[^>]*?rel\s*=\s*"canonical"[^>]*>[ \t]*\n?', re.IGNORECASE),
    re.compile(
        r'[ \t]*<script\s[^>]*?type\s*=\s*"application/ld\+json"[^>]*>.*?</script>[ \t]*\n?',
        re.IGNORECASE | re.DOTALL,
    ),
]
HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
BODY_CLOSE_RE = re.compile(r"</body\s*>", re.IGNORECASE)

DESCRIPTION_LIMIT = 160


def strip_metadata(document: str) -> str:
    for pattern in METADATA_PATTERNS:
        document = pattern.sub("", document)
    return document


def json_ld(data: dict) -> str:
    payload = json.dumps(data, ensure_ascii=False, separators=(",", ":")).replace("</", "<\\/")
    return f'<script type="application/ld+json">{payload}</script>'


def meta_name(name: str, content: str) -> str:
    return f'<meta name="{name}" content="{html.escape(content)}" />'


def meta_property(prop: str, content: str) -> str:
    return f'<meta property="{prop}" content="{html.escape(content)}" />'


def schema_date(value: Optional[str]) -> str:
    parsed = parse_iso(value)
    return iso_date(parsed) if parsed else ""


class SeoInjector:
    def __init__(self, settings: Settings, snapshot: ContentSnapshot) -> None:
        self.settings = settings
        self.snapshot = snapshot
        self.site_url = settings.site_url
        self.news_slugs = {slug.lower() for slug in settings.news_category_slugs}

    @property
    def robots(self) -> str:
        return "index, follow" if self.settings.enable_indexing else "noindex, nofollow"

    def canonical(self, path: str) -> str:
        if path == "/":
            return f"{self.site_url}/"
        return f"{self.site_url}{path}"

    def is_news(self, post: ContentRecord) -> bool:
        return any(category.slug.lower() in self.news_slugs for category in self.snapshot.post_categories(post))

    def same_as(self, author: Optional[ContentRecord]) -> list[str]:
        if author is None:
            return []
        return list(self.settings.author_social_links.get(author.slug, []))

    def _common(self, title: str, description: str, url: str, og_type: str, card: str) -> list[str]:
        return [
            f"<title>{html.escape(title)}</title>",
            meta_name("description", description),
            meta_name("robots", self.robots),
            f'<link rel="canonical" href="{html.escape(url)}" />',
            meta_property("og:type", og_type),
            meta_property("og:title", title),
            meta_property("og:description", description),
            meta_property("og:url", url),
            meta_property("og:site_name", self.settings.site_name),
            meta_name("twitter:card", card),
            meta_name("twitter:title", title),
            meta_name("twitter:description", description),
        ]

    def head_for(self, route: Route) -> str:
        record = route.record
        if route.kind == HOME or record is None:
            return self.home_head()
        if record.kind is Kind.POST:
            return self.post_head(record)
        if record.kind is Kind.AUTHOR:
            return self.author_head(record)
        return self.collection_head(record)

    def home_head(self) -> str:
        url = self.canonical("/")
        description = self.settings.site_description
        tags = self._common(
            f"{self.settings.site_name} - {description}" if description else self.settings.site_name,
            description,
            url,
            "website",
            "summary_large_image",
        )
        if self.settings.default_image:
            tags.append(meta_property("og:image", self.settings.default_image))
        tags.append(
            json_ld(
                {
                    "@context": "https://schema.org",
                    "@type": "WebSite",
                    "name": self.settings.site_name,
                    "url": self.site_url,
                    "potentialAction": {
                        "@type": "SearchAction",
                        "target": f"{self.site_url}/?s={{search_term_string}}",
                        "query-input": "required name=search_term_string",
                    },
                }
            )
        )
        return "\n".join(tags)

    def post_head(self, post: ContentRecord) -> str:
        title = strip_html(post.title) or post.slug
        description = summarize(post.description or post.body, DESCRIPTION_LIMIT)
        url = self.canonical(route_path(Kind.POST, post.slug))
        image = post.featured_image or self.settings.default_image
        published = schema_date(post.date)
        modified = schema_date(post.modified) or published
        categories = [strip_html(category.title) for category in self.snapshot.post_categories(post)]
        author = self.snapshot.post_author(post)

        tags = self._common(f"{title} - {self.settings.site_name}", description, url, "article", "summary_large_image")
        if image:
            tags.append(meta_property("og:image", image))
            tags.append(meta_name("twitter:image", image))
        if published:
            tags.append(meta_property("article:published_time", published))
        if modified:
            tags.append(meta_property("article:modified_time", modified))
        if categories:
            tags.append(meta_property("article:section", categories[0]))

        news = self.is_news(post)
        person: dict = {"@type": "Person", "name": self.settings.site_name}
        if author is not None:
            person = {
                "@type": "Person",
                "name": strip_html(author.title) or author.slug,
                "url": self.canonical(route_path(Kind.AUTHOR, author.slug)),
            }
            same_as = self.same_as(author)
            if same_as:
                person["sameAs"] = same_as
        schema: dict = {
            "@context": "https://schema.org",
            "@type": "NewsArticle" if news else "BlogPosting",
            "headline": title,
            "description": description,
            "author": person,
            "publisher": {"@type": "Organization", "name": self.settings.site_name, "url": self.site_url},
            "mainEntityOfPage": {"@type": "WebPage", "@id": url},
        }
        if image:
            schema["image"] = {"@type": "ImageObject", "url": image}
        if self.settings.default_image:
            schema["publisher"]["logo"] = {"@type": "ImageObject", "url": self.settings.default_image}
        if published:
            schema["datePublished"] = published
        if modified:
            schema["dateModified"] = modified
        if categories:
            schema["keywords"] = ", ".join(categories)
        if news and self.settings.news_dateline:
            schema["dateline"] = self.settings.news_dateline
        tags.append(json_ld(schema))
        return "\n".join(tags)

    def collection_head(self, record: ContentRecord) -> str:
        name = strip_html(record.title) or record.slug
        if record.kind is Kind.TAG:
            title = f"{name} - {self.settings.site_name}"
            fallback = f"Browse articles tagged {name}"
        else:
            title = f"{name} Archives - {self.settings.site_name}"
            fallback = f"Browse {name} articles"
        description = summarize(record.description or fallback, DESCRIPTION_LIMIT)
        url = self.canonical(route_path(record.kind, record.slug))
        tags = self._common(title, description, url, "website", "summary")
        tags.append(
            json_ld(
                {
                    "@context": "https://schema.org",
                    "@type": "CollectionPage",
                    "name": name,
                    "description": description,
                    "url": url,
                    "isPartOf": {"@type": "WebSite", "name": self.settings.site_name, "url": self.site_url},
                }
            )
        )
        return "\n".join(tags)

    def author_head(self, author: ContentRecord) -> str:
        name = strip_html(author.title) or author.slug
        description = summarize(author.description or f"Articles by {name}", DESCRIPTION_LIMIT)
        url = self.canonical(route_path(Kind.AUTHOR, author.slug))
        tags = self._common(f"{name} - {self.settings.site_name}", description, url, "profile", "summary")
        if author.avatar:
            tags.append(meta_property("og:image", author.avatar))
        person: dict = {"@type": "Person", "@id": f"{url}#person", "name": name, "url": url}
        if author.avatar:
            person["image"] = author.avatar
        if author.description:
            person["description"] = strip_html(author.description)
        same_as = self.same_as(author)
        if same_as:
            person["sameAs"] = same_as
        tags.append(
            json_ld(
                {
                    "@context": "https://schema.org",
                    "@type": "ProfilePage",
                    "mainEntity": person,
                    "name": f"{name} - Author Profile",
                    "description": description,
                    "url": url,
                }
            )
        )
        return "\n".join(tags)

    def inject(self, template: str, head: str, body: str) -> str:
        document = strip_metadata(template)
        if SEO_PLACEHOLDER in document:
            document = document.replace(SEO_PLACEHOLDER, head, 1)
        else:
            match = HEAD_CLOSE_RE.search(document)
            if match:
                document = f"{document[: match.start()]}{head}\n{document[match.start():]}"
            else:
                document = f"{head}\n{document}"
        if APP_PLACEHOLDER in document:
            return document.replace(APP_PLACEHOLDER, body, 1)
        match = BODY_CLOSE_RE.search(document)
        if match:
            return f"{document[: match.start()]}{body}\n{document[match.start():]}"
        return f"{document}{body}"


class Prerenderer:
    def __init__(self, template: str, renderer: Callable[[Route], str], injector: SeoInjector) -> None:
        self.template = template
        self.renderer = renderer
        self.injector = injector

    def render(self, route: Route) -> str:
        body = self.renderer(route)
        head = self.injector.head_for(route)
        return self.injector.inject(self.template, head, body)
