from __future__ import annotations

from sitesync.changes import ChangeDetector, InvalidationPolicy, build_manifest
from sitesync.manifest import Manifest
from sitesync.models import Kind

from conftest import make_post, make_snapshot, make_term


def base_snapshot(title: str = "First post"):
    posts = [make_post(10, "first-post", title=title, categories=(1,), date="2026-03-02T10:00:00")]
    posts += [
        make_post(i, f"older-{i}", categories=(2,), date=f"2026-01-{i:02d}T10:00:00") for i in range(1, 6)
    ]
    terms = [make_term(Kind.CATEGORY, 1, "news", count=1), make_term(Kind.CATEGORY, 2, "guides", count=5)]
    return make_snapshot(posts, terms)


def committed(snapshot) -> Manifest:
    detector = ChangeDetector()
    return build_manifest(snapshot, detector.diff(None, snapshot))


def test_missing_manifest_forces_full_rebuild_with_empty_set() -> None:
    change_set = ChangeDetector().diff(None, base_snapshot())
    assert change_set.full_rebuild_required is True
    assert change_set.changed_routes == frozenset()


def test_unchanged_content_marks_nothing() -> None:
    snapshot = base_snapshot()
    change_set = ChangeDetector().diff(committed(snapshot), base_snapshot())
    assert change_set.full_rebuild_required is False
    assert change_set.changed_routes == frozenset()
    assert change_set.deleted_routes == frozenset()


def test_title_change_marks_post_category_and_home() -> None:
    old = committed(base_snapshot())
    change_set = ChangeDetector(InvalidationPolicy(home_window=3)).diff(old, base_snapshot(title="Retitled"))
    assert change_set.full_rebuild_required is False
    assert change_set.changed_routes == {"/first-post", "/category/news", "/"}


def test_change_outside_home_window_leaves_home_alone() -> None:
    old = committed(base_snapshot())
    snapshot = base_snapshot()
    snapshot.posts[-1] = snapshot.posts[-1].model_copy(update={"title": "Edited"})
    edited = make_snapshot(snapshot.posts, snapshot.categories)
    change_set = ChangeDetector(InvalidationPolicy(home_window=2)).diff(old, edited)
    assert change_set.changed_routes == {"/older-5", "/category/guides"}


def test_tags_and_author_follow_the_policy() -> None:
    terms = [make_term(Kind.TAG, 7, "tips"), make_term(Kind.AUTHOR, 8, "jane")]
    before = make_snapshot([make_post(1, "p", tags=(7,), author=8)], terms)
    after = make_snapshot([make_post(1, "p", title="new", tags=(7,), author=8)], terms)
    old = committed(before)

    everything = ChangeDetector().diff(old, after)
    assert everything.changed_routes == {"/p", "/tag/tips", "/author/jane", "/"}

    narrow = ChangeDetector(InvalidationPolicy(home_window=0, mark_tags=False, mark_author=False)).diff(old, after)
    assert narrow.changed_routes == {"/p"}


def test_version_bump_forces_full_rebuild() -> None:
    snapshot = base_snapshot()
    old = committed(snapshot)
    assert old.version == 1
    change_set = ChangeDetector(version=2).diff(old, snapshot)
    assert change_set.full_rebuild_required is True
    assert change_set.changed_routes == frozenset()


def test_too_many_changes_forces_full_rebuild() -> None:
    before = make_snapshot([make_post(i, f"post-{i}") for i in range(60)])
    after = make_snapshot([make_post(i, f"post-{i}", title=f"changed {i}") for i in range(60)])
    change_set = ChangeDetector(max_changed_routes=50).diff(committed(before), after)
    assert change_set.full_rebuild_required is True
    assert len(change_set.changed_routes) > 50


def test_deleted_post_is_reported_and_marks_home() -> None:
    before = make_snapshot([make_post(1, "stays"), make_post(2, "goes")])
    after = make_snapshot([make_post(1, "stays")])
    change_set = ChangeDetector(InvalidationPolicy(home_window=0)).diff(committed(before), after)
    assert change_set.deleted_routes == {"/goes"}
    assert change_set.changed_routes == {"/"}


def test_new_category_listing_is_marked() -> None:
    before = make_snapshot([make_post(1, "a")])
    after = make_snapshot([make_post(1, "a")], [make_term(Kind.CATEGORY, 5, "fresh")])
    change_set = ChangeDetector().diff(committed(before), after)
    assert change_set.changed_routes == {"/category/fresh"}


def test_previous_failures_are_retried() -> None:
    snapshot = base_snapshot()
    old = committed(snapshot).model_copy(update={"failed_routes": ["/older-2", "/vanished"]})
    change_set = ChangeDetector().diff(old, snapshot)
    assert change_set.changed_routes == {"/older-2"}


def test_diff_is_pure() -> None:
    old = committed(base_snapshot())
    new = base_snapshot(title="Again")
    detector = ChangeDetector()
    assert detector.diff(old, new) == detector.diff(old, new)
    assert old == committed(base_snapshot()).model_copy(update={"generated_at": old.generated_at})


def test_build_manifest_records_counts_and_routes() -> None:
    snapshot = base_snapshot()
    old = committed(snapshot)
    change_set = ChangeDetector().diff(old, base_snapshot(title="x"))
    manifest = build_manifest(base_snapshot(title="x"), change_set, generated_at="2026-03-03T00:00:00Z")
    assert manifest.changed_routes == sorted(change_set.changed_routes)
    assert manifest.counts == {"posts": 6, "categories": 2, "tags": 0, "authors": 0}
    data = manifest.to_json()
    assert data["contentHashes"]["posts"]["first-post"] != old.content_hashes["posts"]["first-post"]
    assert data["fullRebuildRequired"] is False
    assert data["generatedAt"] == "2026-03-03T00:00:00Z"


def test_renamed_category_marks_the_posts_showing_it() -> None:
    old = committed(base_snapshot())
    snapshot = base_snapshot()
    news, guides = snapshot.categories
    renamed = make_snapshot(snapshot.posts, [news.model_copy(update={"title": "Breaking Stories"}), guides])

    change_set = ChangeDetector(InvalidationPolicy(home_window=3)).diff(old, renamed)
    assert change_set.changed_routes == {"/category/news", "/first-post", "/"}

    narrow = ChangeDetector(InvalidationPolicy(home_window=3, mark_term_posts=False)).diff(old, renamed)
    assert narrow.changed_routes == {"/category/news"}


def test_emptied_category_listing_is_deleted() -> None:
    before = make_snapshot([make_post(1, "a", categories=(5,))], [make_term(Kind.CATEGORY, 5, "news", count=1)])
    after = make_snapshot([make_post(1, "a")], [make_term(Kind.CATEGORY, 5, "news", count=0)])

    change_set = ChangeDetector().diff(committed(before), after)

    assert change_set.deleted_routes == {"/category/news"}
    assert change_set.changed_routes == {"/a", "/"}


def test_manifest_records_current_routes() -> None:
    manifest = committed(base_snapshot())
    assert manifest.routes[0] == "/"
    assert {"/first-post", "/category/news", "/category/guides"} <= set(manifest.routes)
