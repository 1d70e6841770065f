from __future__ import annotations

import datetime as dt
from collections.abc import Iterable
from xml.sax.saxutils import escape

from .content import strip_html
from .models import Kind
from .routes import HOME, Route
from .utils import iso_date, parse_iso

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
NEWS_NS = "http://www.google.com/schemas/sitemap-news/0.9"
NEWS_LIMIT = 1000

# kind -> (priority, changefreq)
SITEMAP_POLICY = {
    HOME: ("1.0", "daily"),
    Kind.POST.value: ("0.8", "weekly"),
    Kind.CATEGORY.value: ("0.6", "weekly"),
    Kind.TAG.value: ("0.5", "weekly"),
    Kind.AUTHOR.value: ("0.5", "monthly"),
}
DEFAULT_POLICY = ("0.5", "monthly")


def location(site_url: str, route: Route) -> str:
    if route.path == "/":
        return f"{site_url}/"
    return f"{site_url}{route.path}"


def lastmod_for(route: Route) -> str:
    if route.kind != Kind.POST.value or route.record is None:
        return ""
    parsed = parse_iso(route.record.modified or route.record.date)
    return iso_date(parsed) if parsed else ""


def emit_sitemap(routes: Iterable[Route], site_url: str) -> str:
    site_url = site_url.rstrip("/")
    items = []
    for route in routes:
        priority, changefreq = SITEMAP_POLICY.get(route.kind, DEFAULT_POLICY)
        lines = ["<url>", f"<loc>{escape(location(site_url, route))}</loc>"]
        lastmod = lastmod_for(route)
        if lastmod:
            lines.append(f"<lastmod>{lastmod}</lastmod>")
        lines.append(f"<changefreq>{changefreq}</changefreq>")
        lines.append(f"<priority>{priority}</priority>")
        lines.append("</url>")
        items.append("\n".join(lines))
    return "\n".join(
        [
            '<?xml version="1.0" encoding="UTF-8"?>',
            f'<urlset xmlns="{SITEMAP_NS}">',
            *items,
            "</urlset>",
            "",
        ]
    )


def emit_news_sitemap(
    routes: Iterable[Route],
    site_url: str,
    site_name: str,
    now: dt.datetime,
    window_days: int = 2,
    language: str = "en",
) -> str:
    """Posts published within ``window_days`` of ``now``, capped at the news sitemap limit."""
    site_url = site_url.rstrip("/")
    cutoff = now - dt.timedelta(days=window_days)
    items = []
    for route in routes:
        if route.kind != Kind.POST.value or route.record is None:
            continue
        published = parse_iso(route.record.date)
        if published is None or published < cutoff:
            continue
        items.append(
            "\n".join(
                [
                    "<url>",
                    f"<loc>{escape(location(site_url, route))}</loc>",
                    "<news:news>",
                    "<news:publication>",
                    f"<news:name>{escape(site_name)}</news:name>",
                    f"<news:language>{escape(language)}</news:language>",
                    "</news:publication>",
                    f"<news:publication_date>{iso_date(published)}</news:publication_date>",
                    f"<news:title>{escape(strip_html(route.record.title))}</news:title>",
                    "</news:news>",
                    "</url>",
                ]
            )
        )
        if len(items) >= NEWS_LIMIT:
            break
    return "\n".join(
        [
            '<?xml version="1.0" encoding="UTF-8"?>',
            f'<urlset xmlns="{SITEMAP_NS}" xmlns:news="{NEWS_NS}">',
            *items,
            "</urlset>",
            "",
        ]
    )


def emit_robots(site_url: str, enable_indexing: bool) -> str:
    if not enable_indexing:
        return "# Indexing disabled\nUser-agent: *\nDisallow: /\n"
    site_url = site_url.rstrip("/")
    return "\n".join(
        [
            "User-agent: *",
            "Allow: /",
            "",
            "User-agent: Google-Extended",
            "Disallow: /",
            "",
            "User-agent: CCBot",
            "Disallow: /",
            "",
            f"Sitemap: {site_url}/sitemap.xml",
            f"Sitemap: {site_url}/sitemap-news.xml",
            "",
        ]
    )
