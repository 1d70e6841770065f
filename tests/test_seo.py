from __future__ import annotations

import json
import re

from sitesync.models import ContentRecord, Kind
from sitesync.render import HtmlRenderer, read_template, render_template
from sitesync.routes import derive_routes, home_route, route_for
from sitesync.seo import Prerenderer, SeoInjector, json_ld, strip_metadata

from conftest import TEMPLATE_PATH, make_post, make_snapshot, make_term

LD_RE = re.compile(r'<script type="application/ld\+json">(.*?)</script>', re.DOTALL)


def sample_snapshot():
    jane = make_term(Kind.AUTHOR, 4, "jane")
    news = make_term(Kind.CATEGORY, 1, "news", count=1)
    guides = make_term(Kind.CATEGORY, 2, "guides", count=1)
    tips = make_term(Kind.TAG, 3, "tips", count=1)
    posts = [
        make_post(10, "breaking", title="Breaking &amp; big", categories=(1,), author=4, date="2026-03-02T08:00:00"),
        make_post(11, "how-to", categories=(2,), tags=(3,), author=4, date="2026-03-01T08:00:00"),
    ]
    return make_snapshot(posts, [jane, news, guides, tips])


def base_template(settings) -> str:
    return render_template(
        read_template(TEMPLATE_PATH),
        site_name=settings.site_name,
        site_description=settings.site_description,
        lang=settings.language,
    )


def structured_data(document: str) -> list[dict]:
    return [json.loads(block.replace("<\\/", "</")) for block in LD_RE.findall(document)]


def prerender(settings, snapshot, route) -> str:
    injector = SeoInjector(settings, snapshot)
    return Prerenderer(base_template(settings), HtmlRenderer(snapshot, settings), injector).render(route)


def test_every_route_has_single_title_description_and_canonical(settings) -> None:
    snapshot = sample_snapshot()
    for route in derive_routes(snapshot):
        document = prerender(settings, snapshot, route)
        assert document.count("<title>") == 1, route.path
        assert document.count('name="description"') == 1, route.path
        assert document.count('rel="canonical"') == 1, route.path
        assert document.count('name="robots"') == 1, route.path
        assert "<!--seo-head-->" not in document
        assert "<!--app-html-->" not in document


def test_injection_is_idempotent(settings) -> None:
    snapshot = sample_snapshot()
    injector = SeoInjector(settings, snapshot)
    head = injector.home_head()
    once = injector.inject(base_template(settings), head, "<p>hi</p>")
    twice = injector.inject(once, head, "")
    assert twice.count("<title>") == 1
    assert twice.count('rel="canonical"') == 1
    assert len(structured_data(twice)) == 1


def test_news_category_post_is_news_article(settings) -> None:
    snapshot = sample_snapshot()
    document = prerender(settings, snapshot, route_for(snapshot.posts[0]))
    schema = structured_data(document)[0]

    assert schema["@type"] == "NewsArticle"
    assert schema["headline"] == "Breaking & big"
    assert schema["author"]["url"] == "https://blog.test/author/jane"
    assert schema["datePublished"] == "2026-03-02T08:00:00Z"
    assert "dateline" not in schema
    assert '<link rel="canonical" href="https://blog.test/breaking" />' in document
    assert "<title>Breaking &amp; big - Test Blog</title>" in document


def test_dateline_and_author_links_come_from_settings(settings) -> None:
    settings = settings.model_copy(
        update={"news_dateline": "Berlin", "author_social_links": {"jane": ["https://social.test/jane"]}}
    )
    snapshot = sample_snapshot()
    schema = structured_data(prerender(settings, snapshot, route_for(snapshot.posts[0])))[0]
    assert schema["dateline"] == "Berlin"
    assert schema["author"]["sameAs"] == ["https://social.test/jane"]


def test_regular_post_is_blog_posting(settings) -> None:
    snapshot = sample_snapshot()
    document = prerender(settings, snapshot, route_for(snapshot.posts[1]))
    schema = structured_data(document)[0]
    assert schema["@type"] == "BlogPosting"
    assert schema["keywords"] == "Guides"
    assert 'property="article:section" content="Guides"' in document


def test_listing_and_author_pages(settings) -> None:
    snapshot = sample_snapshot()
    category = prerender(settings, snapshot, route_for(snapshot.categories[0]))
    assert "<title>News Archives - Test Blog</title>" in category
    assert structured_data(category)[0]["@type"] == "CollectionPage"

    tag = prerender(settings, snapshot, route_for(snapshot.tags[0]))
    assert "<title>Tips - Test Blog</title>" in tag
    assert "Tagged: Tips" in tag

    author = prerender(settings, snapshot, route_for(snapshot.authors[0]))
    schema = structured_data(author)[0]
    assert schema["@type"] == "ProfilePage"
    assert schema["mainEntity"]["url"] == "https://blog.test/author/jane"
    assert "Articles by Jane" in author


def test_home_page_falls_back_to_site_metadata(settings) -> None:
    snapshot = sample_snapshot()
    document = prerender(settings, snapshot, home_route())
    schema = structured_data(document)[0]
    assert schema["@type"] == "WebSite"
    assert '<link rel="canonical" href="https://blog.test/" />' in document
    assert 'content="noindex, nofollow"' in document
    assert '<html lang="en">' in document


def test_indexing_flag_changes_robots(settings) -> None:
    settings = settings.model_copy(update={"enable_indexing": True})
    document = prerender(settings, sample_snapshot(), home_route())
    assert 'content="index, follow"' in document


def test_strip_metadata_leaves_other_tags() -> None:
    head = (
        '<meta charset="utf-8" />\n'
        "<title>Old</title>\n"
        '<meta property="og:title" content="Old" />\n'
        '<link rel="canonical" href="https://old.test/" />\n'
        '<link rel="stylesheet" href="/s.css" />\n'
    )
    assert strip_metadata(head) == '<meta charset="utf-8" />\n<link rel="stylesheet" href="/s.css" />\n'


def test_json_ld_escapes_closing_tags() -> None:
    assert "</script><" not in json_ld({"headline": "</script><b>"})


def test_inject_without_placeholders(settings) -> None:
    injector = SeoInjector(settings, make_snapshot([]))
    document = injector.inject("<html><head></head><body></body></html>", "<title>T</title>", "<p>B</p>")
    assert document == "<html><head><title>T</title>\n</head><body><p>B</p>\n</body></html>"


def test_post_without_author_uses_site_as_person(settings) -> None:
    post = ContentRecord(kind=Kind.POST, id=1, slug="lonely", title="Lonely", body="<p>x</p>")
    snapshot = make_snapshot([post])
    schema = structured_data(SeoInjector(settings, snapshot).post_head(post))[0]
    assert schema["author"] == {"@type": "Person", "name": "Test Blog"}
    assert "datePublished" not in schema
