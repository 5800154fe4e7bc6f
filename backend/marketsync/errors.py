"""Failure taxonomy shared by the fetcher, the cache layer and the proxy."""

from __future__ import annotations


class MarketSyncError(Exception):
    """Base class for upstream failures surfaced by the sync layer."""


class NetworkError(MarketSyncError):
    """Raised when a request fails in transport or exceeds its timeout."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class UpstreamError(MarketSyncError):
    """Raised when the upstream answers with a non-2xx status."""

    def __init__(self, status_code: int, *, url: str | None = None, message: str | None = None) -> None:
        super().__init__(message or f"Upstream returned HTTP {status_code}")
        self.status_code = status_code
        self.url = url


class RateLimitError(UpstreamError):
    """HTTP 429; callers should back off for ``retry_after`` seconds."""

    def __init__(self, retry_after: float, *, url: str | None = None) -> None:
        super().__init__(
            429,
            url=url,
            message=f"Upstream rate limited the request; retry after {retry_after:g}s",
        )
        self.retry_after = retry_after


class ParseError(MarketSyncError):
    """Raised when a response body is not the JSON shape we expect."""


class CacheMiss(LookupError):
    """Control-flow signal: nothing usable is cached for ``key``."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key


__all__ = [
    "CacheMiss",
    "MarketSyncError",
    "NetworkError",
    "ParseError",
    "RateLimitError",
    "UpstreamError",
]
