from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import TransientUpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


class RetryPolicy:
    """Bounded exponential backoff shared by every request the fetcher makes."""

    def __init__(
        self,
        max_attempts: int = 4,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        retry_statuses: Iterable[int] = DEFAULT_RETRY_STATUSES,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retry_statuses = frozenset(retry_statuses)

    def is_retryable_status(self, status: int) -> bool:
        return status in self.retry_statuses

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, TransientUpstreamError):
            return self.is_retryable_status(exc.status)
        return isinstance(exc, (requests.Timeout, requests.ConnectionError))

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Callable[[BaseException], None] | None = None,
        **kwargs: Any,
    ) -> T:
        def before_sleep(retry_state) -> None:
            before_sleep_log(logger, logging.WARNING)(retry_state)
            if on_retry is not None and retry_state.outcome is not None:
                on_retry(retry_state.outcome.exception())

        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(self.is_retryable),
            before_sleep=before_sleep,
            sleep=sleep,
            reraise=True,
        )
        return retryer(fn, *args, **kwargs)
