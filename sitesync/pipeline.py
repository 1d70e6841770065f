from __future__ import annotations

import html
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import requests

from .buildcache import BuildCache
from .changes import ChangeDetector, ChangeSet, InvalidationPolicy, build_manifest
from .chunks import ChunkedContentStore
from .config import Settings
from .content import normalize_snapshot
from .fetcher import ContentFetcher
from .manifest import MANIFEST_VERSION, Manifest, ManifestStore
from .metrics import BuildMetrics, MetricsStore
from .models import ChunkIndex, ContentSnapshot, Kind, SyncState
from .pages import RenderReport, render_routes
from .render import HtmlRenderer, read_template, render_template
from .routes import Route, derive_routes, output_path_for
from .seo import Prerenderer, SeoInjector
from .sitemap import emit_news_sitemap, emit_robots, emit_sitemap
from .utils import iso_date, read_json, utc_now, write_json, write_text

logger = logging.getLogger(__name__)

# Each sync stage reads what the stages before it produced.
SYNC_STAGES = ("fetch_content", "fetch_media", "normalize", "detect_changes", "store_snapshot")
BUILD_STAGES = (
    "load_snapshot",
    "restore_cache",
    "plan_routes",
    "render_routes",
    "remove_stale",
    "save_cache",
    "emit_seo_files",
    "commit_manifest",
)

RendererFactory = Callable[[ContentSnapshot, Settings], Callable[[Route], str]]


@dataclass
class SyncContext:
    state: SyncState = field(default_factory=SyncState)
    raw: dict[Kind, list[dict]] = field(default_factory=dict)
    media: dict[int, dict] = field(default_factory=dict)
    snapshot: Optional[ContentSnapshot] = None
    change_set: Optional[ChangeSet] = None
    manifest: Optional[Manifest] = None
    chunk_index: Optional[ChunkIndex] = None

    def summary(self) -> list[str]:
        counts = self.snapshot.counts() if self.snapshot else {}
        lines = [
            "Fetched: " + ", ".join(f"{count} {bucket}" for bucket, count in counts.items()),
            f"Requests: {self.state.requests} ({self.state.retries} failed attempts, {self.state.cooldowns} cooldowns)",
        ]
        if self.change_set is not None:
            lines.append(f"Routes changed: {len(self.change_set.changed_routes)}")
            lines.append(f"Routes deleted: {len(self.change_set.deleted_routes)}")
            if self.change_set.full_rebuild_required:
                lines.append(f"Full rebuild required: {self.change_set.reason}")
        if self.chunk_index is not None:
            lines.append(f"Chunks written: {len(self.chunk_index.chunks)}")
        return lines


@dataclass
class BuildContext:
    full: bool = False
    full_reason: str = ""
    snapshot: Optional[ContentSnapshot] = None
    template: str = ""
    manifest: Optional[Manifest] = None
    routes: list[Route] = field(default_factory=list)
    targets: list[Route] = field(default_factory=list)
    report: RenderReport = field(default_factory=RenderReport)
    restored: int = 0
    saved: int = 0
    removed: int = 0

    def summary(self) -> list[str]:
        mode = f"full ({self.full_reason})" if self.full else "partial"
        lines = [
            f"Build mode: {mode}",
            f"Routes: {len(self.routes)} total, {len(self.targets)} scheduled",
            f"Pages rendered: {len(self.report.rendered)}",
            f"Errors: {len(self.report.failed)}",
            f"Cache: {self.restored} restored, {self.saved} saved",
        ]
        if self.removed:
            lines.append(f"Stale pages removed: {self.removed}")
        for path, error in sorted(self.report.failed.items()):
            lines.append(f"  failed {path}: {error}")
        return lines


@dataclass
class CheckResult:
    since: str
    modified: int


class Pipeline:
    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        renderer_factory: Optional[RendererFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.session = session
        self.renderer_factory = renderer_factory or HtmlRenderer
        self.sleep = sleep
        self.clock = clock
        self.manifests = ManifestStore(settings.state_dir)
        self.chunks = ChunkedContentStore(settings.data_dir)
        self.cache = BuildCache(settings.cache_dir, settings.output_dir, settings.assets_dir)
        self.metrics = MetricsStore(settings.state_dir / "build-metrics.json")
        self.detector = ChangeDetector(
            InvalidationPolicy.from_settings(settings),
            version=MANIFEST_VERSION,
            max_changed_routes=settings.max_changed_routes,
        )
        self._fetcher: Optional[ContentFetcher] = None

    def fetcher(self, state: SyncState, resume: bool = True) -> ContentFetcher:
        return ContentFetcher(
            self.settings,
            session=self.session,
            state=state,
            sleep=self.sleep,
            clock=self.clock,
            resume=resume,
        )

    def _run_stages(self, stages: tuple[str, ...], context: object, metrics: BuildMetrics) -> None:
        for name in stages:
            started = metrics.clock()
            logger.debug("Stage %s", name)
            getattr(self, f"_{name}")(context)
            metrics.record_timing(name, started)

    # sync

    def sync(self, fresh: bool = False) -> SyncContext:
        context = SyncContext()
        metrics = BuildMetrics("sync")
        self._fetcher = self.fetcher(context.state, resume=not fresh)
        try:
            self._run_stages(SYNC_STAGES, context, metrics)
        finally:
            self._fetcher.close()
            self._fetcher = None
        if context.snapshot is not None:
            metrics.record_stat("totalPosts", len(context.snapshot.posts))
        metrics.record_stat("requests", context.state.requests)
        metrics.record_stat("failedAttempts", context.state.retries)
        if context.change_set is not None:
            metrics.record_stat("routesChanged", len(context.change_set.changed_routes))
        self.metrics.record(metrics.finalize())
        return context

    def _fetch_content(self, context: SyncContext) -> None:
        context.raw = self._fetcher.fetch_all([Kind.CATEGORY, Kind.TAG, Kind.AUTHOR, Kind.POST])

    def _fetch_media(self, context: SyncContext) -> None:
        ids = []
        for post in context.raw.get(Kind.POST, []):
            if (post.get("_embedded") or {}).get("wp:featuredmedia"):
                continue
            media_id = post.get("featured_media")
            if isinstance(media_id, int) and media_id > 0:
                ids.append(media_id)
        context.media = self._fetcher.fetch_media(ids)

    def _normalize(self, context: SyncContext) -> None:
        context.snapshot = normalize_snapshot(context.raw, context.media, fetched_at=iso_date(utc_now()))

    def _detect_changes(self, context: SyncContext) -> None:
        old = self.manifests.load()
        context.change_set = self.detector.diff(old, context.snapshot)
        context.manifest = build_manifest(context.snapshot, context.change_set, version=MANIFEST_VERSION)
        if context.change_set.full_rebuild_required:
            logger.info("Full rebuild required: %s", context.change_set.reason)
        else:
            logger.info("%d routes changed", len(context.change_set.changed_routes))

    def _store_snapshot(self, context: SyncContext) -> None:
        context.chunk_index = self.chunks.save_snapshot(context.snapshot, self.settings.chunk_size)
        self.manifests.save_pending(context.manifest)

    # build

    def build(self, full: bool = False) -> BuildContext:
        context = BuildContext(full=full, full_reason="requested" if full else "")
        metrics = BuildMetrics("build")
        self._run_stages(BUILD_STAGES, context, metrics)
        posts_scheduled = sum(1 for route in context.targets if route.kind == Kind.POST.value)
        metrics.record_stat("totalPosts", len(context.snapshot.posts) if context.snapshot else 0)
        metrics.record_stat("postsModified", posts_scheduled)
        metrics.record_stat("filesWritten", len(context.report.rendered))
        metrics.record_stat("filesSkipped", len(context.routes) - len(context.targets))
        metrics.record_stat("renderErrors", len(context.report.failed))
        metrics.record_stat("fullRebuild", context.full)
        self.metrics.record(metrics.finalize())
        return context

    def _load_snapshot(self, context: BuildContext) -> None:
        context.snapshot = self.chunks.load_snapshot()
        template = read_template(self.settings.template_path)
        context.template = render_template(
            template,
            site_name=html.escape(self.settings.site_name),
            site_description=html.escape(self.settings.site_description),
            lang=self.settings.language,
        )

    def _restore_cache(self, context: BuildContext) -> None:
        context.restored = self.cache.restore()

    def _plan_routes(self, context: BuildContext) -> None:
        context.routes = derive_routes(context.snapshot)
        pending = self.manifests.load_pending()
        manifest = pending or self.manifests.load()
        context.manifest = manifest
        if not context.full:
            if manifest is None:
                context.full, context.full_reason = True, "no manifest"
            elif manifest.version != MANIFEST_VERSION:
                context.full, context.full_reason = True, f"manifest version {manifest.version}"
            elif pending is not None and pending.full_rebuild_required:
                context.full, context.full_reason = True, "flagged by sync"
        if context.full:
            context.targets = list(context.routes)
            return
        wanted = set(manifest.changed_routes if pending is not None else []) | set(manifest.failed_routes)
        output_dir = self.settings.output_dir
        context.targets = [
            route
            for route in context.routes
            if route.path in wanted or not (output_dir / route.output_path).exists()
        ]

    def _render_routes(self, context: BuildContext) -> None:
        renderer = self.renderer_factory(context.snapshot, self.settings)
        prerenderer = Prerenderer(context.template, renderer, SeoInjector(self.settings, context.snapshot))
        context.report = render_routes(
            context.targets,
            prerenderer,
            self.settings.output_dir,
            workers=self.settings.worker_count,
            batch_size=self.settings.render_batch_size,
        )

    def _remove_stale(self, context: BuildContext) -> None:
        output_dir = self.settings.output_dir
        live = {route.output_path for route in context.routes}
        stale: set[str] = set()
        if context.manifest is not None:
            stale.update(output_path_for(path) for path in context.manifest.deleted_routes)
        if context.full:
            # without a usable manifest the diff cannot name deletions
            stale.update(self.cache.pages(output_dir))
            stale.update(self.cache.pages(self.settings.cache_dir))
        stale -= live
        for rel_path in sorted(stale):
            path = output_dir / rel_path
            if path.is_file():
                path.unlink()
                context.removed += 1
                logger.info("Removed stale page %s", rel_path)
        self.cache.evict(stale)

    def _save_cache(self, context: BuildContext) -> None:
        context.saved = self.cache.save(prune=context.full)

    def _emit_seo_files(self, context: BuildContext) -> None:
        output_dir = self.settings.output_dir
        write_text(output_dir / "sitemap.xml", emit_sitemap(context.routes, self.settings.site_url))
        write_text(
            output_dir / "sitemap-news.xml",
            emit_news_sitemap(
                context.routes,
                self.settings.site_url,
                self.settings.site_name,
                utc_now(),
                language=self.settings.language,
            ),
        )
        write_text(output_dir / "robots.txt", emit_robots(self.settings.site_url, self.settings.enable_indexing))

    def _commit_manifest(self, context: BuildContext) -> None:
        self.manifests.commit(failed_routes=context.report.failed.keys())

    # run / check

    def run(self, full: bool = False, fresh: bool = False) -> tuple[SyncContext, BuildContext]:
        synced = self.sync(fresh=fresh)
        built = self.build(full=full)
        return synced, built

    def check(self, since: Optional[str] = None) -> CheckResult:
        path: Path = self.settings.state_dir / "last-check.json"
        if since is None:
            previous = read_json(path, default={})
            if isinstance(previous, dict):
                since = previous.get("lastCheck")
        if since is None:
            manifest = self.manifests.load()
            since = manifest.generated_at if manifest and manifest.generated_at else "1970-01-01T00:00:00Z"
        checked_at = iso_date(utc_now())
        fetcher = self.fetcher(SyncState())
        try:
            modified = fetcher.count_modified_since(since)
        finally:
            fetcher.close()
        write_json(path, {"lastCheck": checked_at, "since": since, "modified": modified})
        return CheckResult(since=since, modified=modified)
