from typing import Any

from pydantic import BaseModel, Field


class SnapshotEnvelope(BaseModel):
    """Durable snapshot format: the dataset items plus their write time."""

    items: Any
    timestamp: float = Field(description="Epoch seconds when the items were fetched")


class ProxyError(BaseModel):
    error: str
    url: str | None = None
    message: str | None = None


class RateLimited(BaseModel):
    error: str = "rate_limited"
    retry_after: float = Field(description="Seconds to wait before retrying")
    url: str | None = None


class CacheStats(BaseModel):
    size: int
    stale: int
    max_entries: int
    evictions: int
    in_flight: int
    catalog_size: int
    prefetched: int
