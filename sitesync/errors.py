from __future__ import annotations

from typing import Optional


class SiteSyncError(Exception):
    """Base class for errors that abort a pipeline stage."""


class ConfigError(SiteSyncError):
    pass


class MissingSourceError(SiteSyncError):
    pass


class FetchError(SiteSyncError):
    def __init__(
        self,
        message: str,
        endpoint: str = "",
        page: Optional[int] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.page = page
        self.status = status


class TransientUpstreamError(Exception):
    """Gateway-class failure worth retrying. Never escapes the fetcher."""

    def __init__(self, status: int, url: str) -> None:
        super().__init__(f"HTTP {status} from {url}")
        self.status = status
        self.url = url
