from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

import requests

from .checkpoint import CheckpointStore, checkpoint_key
from .config import Settings
from .errors import FetchError, TransientUpstreamError
from .models import Kind, PageResult, SyncState
from .retry import RetryPolicy
from .utils import join_url, parse_int

logger = logging.getLogger(__name__)

USER_AGENT = "sitesync/0.1"
# bracket offsets tried when a notice precedes the JSON body
MAX_PAYLOAD_STARTS = 50

ENDPOINT_PARAMS = {
    Kind.POST: {"orderby": "date", "order": "desc"},
    Kind.CATEGORY: {},
    Kind.TAG: {},
    Kind.AUTHOR: {},
}


def decode_payload(text: str) -> object:
    """Parse a response body, tolerating notices printed ahead of the JSON."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    decoder = json.JSONDecoder()
    starts = (index for index, char in enumerate(text) if char in "[{")
    for index in itertools.islice(starts, MAX_PAYLOAD_STARTS):
        try:
            value, end = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        if not text[end:].strip():
            return value
    raise ValueError("no JSON payload found in response body")


def header_int(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    number = parse_int(value, -1)
    return number if number >= 0 else None


class ContentFetcher:
    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        state: Optional[SyncState] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        checkpoints: Optional[CheckpointStore] = None,
        retry: Optional[RetryPolicy] = None,
        resume: bool = True,
    ) -> None:
        self.settings = settings
        self._owns_session = session is None
        self.session = session or requests.Session()
        if self._owns_session:
            self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
        self.state = state or SyncState()
        self.sleep = sleep
        self.clock = clock
        self.retry = retry or RetryPolicy(
            max_attempts=settings.max_attempts,
            base_delay=settings.backoff_base,
            max_delay=settings.backoff_max,
        )
        self.checkpoints = checkpoints or CheckpointStore(
            settings.state_dir / "checkpoints", ttl=settings.checkpoint_ttl, clock=clock
        )
        self.resume = resume
        self._health_lock = threading.Lock()

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def url_for(self, endpoint: str) -> str:
        return join_url(self.settings.api_url, endpoint)

    def probe(self) -> bool:
        try:
            response = self.session.get(self.settings.api_url, timeout=self.settings.request_timeout)
        except requests.RequestException as exc:
            logger.warning("Health probe failed: %s", exc)
            return False
        return response.status_code < 500

    def ensure_healthy(self) -> None:
        threshold = self.settings.failure_threshold
        if self.state.consecutive_failures < threshold:
            return
        with self._health_lock:
            probes = 0
            while self.state.consecutive_failures >= threshold:
                if probes >= self.settings.max_health_probes:
                    raise FetchError(
                        f"API still unhealthy after {probes} health probes "
                        f"({self.state.consecutive_failures} consecutive failures)"
                    )
                probes += 1
                self.state.record_cooldown()
                logger.warning(
                    "%d consecutive failures, cooling down for %.0fs before probing %s",
                    self.state.consecutive_failures,
                    self.settings.cooldown_seconds,
                    self.settings.api_url,
                )
                self.sleep(self.settings.cooldown_seconds)
                if self.probe():
                    logger.info("API healthy again, resuming")
                    self.state.record_success()

    def _attempt(self, url: str, params: dict) -> requests.Response:
        self.ensure_healthy()
        self.state.record_request(self.clock())
        try:
            response = self.session.get(url, params=params, timeout=self.settings.request_timeout)
        except (requests.Timeout, requests.ConnectionError):
            self.state.record_failure()
            raise
        if self.retry.is_retryable_status(response.status_code):
            self.state.record_failure()
            raise TransientUpstreamError(response.status_code, url)
        self.state.record_success()
        return response

    def fetch_page(
        self,
        endpoint: str,
        page: int,
        per_page: Optional[int] = None,
        params: Optional[Mapping[str, object]] = None,
    ) -> Optional[PageResult]:
        per_page = per_page or self.settings.per_page
        query = dict(params or {})
        query.update(page=page, per_page=per_page)
        url = self.url_for(endpoint)
        try:
            response = self.retry.call(self._attempt, url, query, sleep=self.sleep)
        except TransientUpstreamError as exc:
            raise FetchError(
                f"{endpoint} page {page}: giving up after {self.retry.max_attempts} attempts ({exc})",
                endpoint=endpoint,
                page=page,
                status=exc.status,
            ) from exc
        except requests.RequestException as exc:
            raise FetchError(
                f"{endpoint} page {page}: giving up after {self.retry.max_attempts} attempts ({exc})",
                endpoint=endpoint,
                page=page,
            ) from exc

        status = response.status_code
        if 400 <= status < 500:
            if page > 1:
                logger.info("%s: HTTP %s at page %d, no more pages", endpoint, status, page)
                return None
            raise FetchError(f"{endpoint}: HTTP {status} on the first page", endpoint=endpoint, page=page, status=status)
        if status >= 300:
            raise FetchError(f"{endpoint} page {page}: HTTP {status}", endpoint=endpoint, page=page, status=status)

        try:
            payload = decode_payload(response.text)
        except ValueError as exc:
            raise FetchError(f"{endpoint} page {page}: {exc}", endpoint=endpoint, page=page, status=status) from exc
        if not isinstance(payload, list):
            raise FetchError(
                f"{endpoint} page {page}: expected a JSON array, got {type(payload).__name__}",
                endpoint=endpoint,
                page=page,
                status=status,
            )
        self.state.record_page(endpoint)
        return PageResult(
            items=[item for item in payload if isinstance(item, dict)],
            page=page,
            total=header_int(response.headers, "X-WP-Total"),
            total_pages=header_int(response.headers, "X-WP-TotalPages"),
        )

    def paginate(
        self,
        endpoint: str,
        params: Optional[Mapping[str, object]] = None,
        per_page: Optional[int] = None,
    ) -> list[dict]:
        per_page = per_page or self.settings.per_page
        key = checkpoint_key(endpoint, dict(params or {}))
        items: list[dict] = []
        page = 1

        checkpoint = self.checkpoints.load(key, per_page) if self.resume else None
        if checkpoint is not None:
            items = list(checkpoint.items)
            page = checkpoint.next_page
            self.state.record_resume(key)
            logger.info("%s: resuming at page %d with %d items from checkpoint", endpoint, page, len(items))

        expected_total = None
        fetched = 0
        while True:
            if fetched and self.settings.request_delay:
                self.sleep(self.settings.request_delay)
            result = self.fetch_page(endpoint, page, per_page, params)
            if result is None:
                break
            fetched += 1
            items.extend(result.items)
            if result.total is not None:
                expected_total = result.total
            if result.total_pages:
                logger.info("%s: page %d/%d (%d items)", endpoint, page, result.total_pages, len(items))
            else:
                logger.info("%s: page %d (%d items)", endpoint, page, len(items))
            if len(result.items) < per_page:
                break
            if result.total_pages is not None and page >= result.total_pages:
                break
            page += 1
            if fetched % self.settings.checkpoint_every == 0:
                self.checkpoints.save(key, endpoint, per_page, page, items)
                logger.debug("%s: checkpoint saved before page %d", endpoint, page)

        self.checkpoints.clear(key)
        if expected_total is not None and expected_total != len(items):
            logger.warning("%s: API reported %d items but %d were fetched", endpoint, expected_total, len(items))
        return items

    def fetch_all(self, kinds: Iterable[Kind] | None = None) -> dict[Kind, list[dict]]:
        kinds = list(kinds or Kind)
        if not kinds:
            return {}
        results: dict[Kind, list[dict]] = {}
        with ThreadPoolExecutor(max_workers=len(kinds)) as executor:
            futures = {
                executor.submit(self.paginate, kind.endpoint, ENDPOINT_PARAMS.get(kind)): kind for kind in kinds
            }
            for future in as_completed(futures):
                kind = futures[future]
                results[kind] = future.result()
                logger.info("Fetched %d %s", len(results[kind]), kind.endpoint)
        return {kind: results[kind] for kind in kinds}

    def _fetch_media_batch(self, batch: list[int]) -> list[dict]:
        params = {"include": ",".join(str(media_id) for media_id in batch)}
        result = self.fetch_page("media", 1, len(batch), params)
        return result.items if result is not None else []

    def fetch_media(self, ids: Iterable[Optional[int]]) -> dict[int, dict]:
        unique = sorted({media_id for media_id in ids if media_id})
        if not unique:
            return {}
        size = self.settings.media_batch_size
        batches = [unique[start : start + size] for start in range(0, len(unique), size)]
        workers = min(self.settings.media_concurrency, len(batches))
        media: dict[int, dict] = {}
        with ThreadPoolExecutor(max_workers=workers) as executor:
            for items in executor.map(self._fetch_media_batch, batches):
                for item in items:
                    media_id = item.get("id")
                    if isinstance(media_id, int):
                        media[media_id] = item
        missing = len(unique) - len(media)
        if missing:
            logger.warning("%d of %d media items were not returned by the API", missing, len(unique))
        return media

    def count_modified_since(self, since: str) -> int:
        result = self.fetch_page("posts", 1, 1, {"modified_after": since})
        if result is None:
            return 0
        if result.total is not None:
            return result.total
        return len(result.items)
