from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    gamma_base_url: AnyUrl = Field(
        default="https://gamma-api.polymarket.com",
        description="Catalog/listing namespace (market metadata, prices, volumes)",
    )
    clob_base_url: AnyUrl = Field(
        default="https://clob.polymarket.com",
        description="Order-book/pricing namespace (bids, asks, spread)",
    )
    data_base_url: AnyUrl = Field(
        default="https://data-api.polymarket.com",
        description="Portfolio/activity namespace (trades, holders, traders)",
    )
    proxy_base_url: AnyUrl | None = Field(
        default=None,
        description="Route upstream calls through the reverse proxy at this base URL",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Fixed per-request timeout applied to every upstream call",
        gt=0,
    )
    egress_proxies: list[str] | str = Field(
        default_factory=list,
        description="Optional egress proxy URLs rotated round-robin by the reverse proxy",
    )
    cache_max_entries: int = Field(
        default=1000,
        description="Upper bound on in-memory cache entries before LRU eviction",
        ge=1,
    )

    ttl_market_list: float = Field(15.0, description="Seconds a market list stays fresh", gt=0)
    ttl_market_detail: float = Field(60.0, description="Seconds a market detail stays fresh", gt=0)
    ttl_order_book: float = Field(5.0, description="Seconds an order book stays fresh", gt=0)
    ttl_trades: float = Field(30.0, description="Seconds recent trades stay fresh", gt=0)
    ttl_price_history: float = Field(60.0, description="Seconds price history stays fresh", gt=0)
    ttl_outcomes: float = Field(60.0, description="Seconds an outcomes list stays fresh", gt=0)
    ttl_outcome_detail: float = Field(30.0, description="Seconds a priced outcome stays fresh", gt=0)
    ttl_holders: float = Field(
        60.0, description="Seconds holder and trader statistics stay fresh", gt=0
    )
    ttl_catalog: float = Field(
        1800.0, description="Seconds the full search catalog stays fresh", gt=0
    )
    ttl_remote_search: float = Field(15.0, description="Seconds upstream search results stay fresh", gt=0)

    snapshot_ttl_market_list: float = Field(
        600.0, description="Expiry window for persisted market list snapshots", gt=0
    )
    snapshot_ttl_catalog: float = Field(
        7200.0, description="Expiry window for the persisted search catalog", gt=0
    )
    snapshot_ttl_market_detail: float = Field(
        300.0, description="Expiry window for persisted market detail snapshots", gt=0
    )
    snapshot_database_url: str = Field(
        default="sqlite:///../data/marketsync.db",
        description="SQLAlchemy URL of the durable snapshot store",
    )

    search_history_limit: int = Field(
        default=5,
        description="Number of recently opened markets remembered in search history",
        ge=5,
        le=10,
    )
    search_default_limit: int = Field(50, description="Default number of search hits", ge=1)
    catalog_page_size: int = Field(500, description="Page size used when paginating the catalog", ge=1)
    catalog_max_offset: int = Field(
        10000, description="Safety limit on catalog pagination offset", ge=0
    )
    prefetch_hover_delay_seconds: float = Field(
        0.1,
        description="Pointer must rest this long on a market before it is prefetched",
        ge=0,
    )
    detail_trades_limit: int = Field(10, description="Trades loaded for a detail view", ge=1)
    holders_limit: int = Field(20, description="Top holders/traders loaded for a detail view", ge=1)

    @field_validator("egress_proxies", mode="after")
    @classmethod
    def _parse_egress_proxies(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            candidate = value.strip()
            if not candidate:
                return []
            return [
                item for item in (part.strip() for part in candidate.split(",")) if item
            ]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        raise ValueError(
            "EGRESS_PROXIES must be provided as a list or comma-separated string"
        )

    def namespace_base_url(self, namespace: str) -> str:
        bases = {
            "gamma": self.gamma_base_url,
            "clob": self.clob_base_url,
            "data": self.data_base_url,
        }
        try:
            return str(bases[namespace]).rstrip("/")
        except KeyError as exc:
            raise ValueError(f"Unknown upstream namespace '{namespace}'") from exc


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
