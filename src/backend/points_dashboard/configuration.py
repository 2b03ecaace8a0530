"""
Runtime configuration for the points dashboard.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel

from .exceptions import ConfigError
from .models import TRANSACTION_TYPES, JoinPolicy

MAX_PAGE_SIZE = 100


# ========== 1. Remote service ==========

class FetcherConfig(BaseModel):
    base_url: Optional[str] = None
    """Root URL of the points service; the HTTP fetcher is disabled without it"""

    token: Optional[str] = None
    """Bearer token sent with every request"""

    timeout_seconds: float = 30.0

    max_retries: int = 3
    """Retries on connection errors and 429/5xx answers"""

    page_size: int = MAX_PAGE_SIZE
    """Rows requested per page when draining a paginated query (service caps this at 100)"""


# ========== 2. Aggregation ==========

class AggregationConfig(BaseModel):
    timezone: str = "UTC"
    """Timezone used to cut calendar days"""

    points_trend_days: int = 30
    manager_trend_days: int = 14
    cashier_trend_days: int = 7

    recent_transactions: int = 5
    top_users: int = 10
    top_events: int = 5
    top_promotions: int = 5

    default_transaction_type: str = "purchase"
    """Reported as the most common type when there are no transactions, and preferred on ties"""

    join_policy: JoinPolicy = JoinPolicy.FAIL_FAST
    """fail_fast withholds the whole manager snapshot when any facet fails"""

    def tzinfo(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown timezone: {self.timezone}") from exc


# ========== 3. Combined ==========

class DashboardConfig(BaseModel):
    """Configuration for the points dashboard."""

    fetcher: FetcherConfig = FetcherConfig()
    aggregation: AggregationConfig = AggregationConfig()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _join_policy(raw: Any) -> JoinPolicy:
    try:
        return JoinPolicy(raw)
    except ValueError as exc:
        raise ConfigError(f"Unknown join policy: {raw}") from exc


def load_dashboard_config(overrides: Optional[Mapping[str, Any]] = None) -> DashboardConfig:
    """
    Build the configuration from defaults, then ``overrides``, then the
    environment (environment variables win).
    """

    cfg = DashboardConfig()
    overrides = overrides or {}

    fetcher_cfg: Dict[str, Any] = dict(overrides.get("fetcher", {}))
    cfg.fetcher = FetcherConfig(
        base_url=os.getenv("POINTS_API_URL", fetcher_cfg.get("base_url", cfg.fetcher.base_url)),
        token=os.getenv("POINTS_API_TOKEN", fetcher_cfg.get("token", cfg.fetcher.token)),
        timeout_seconds=_env_float(
            "POINTS_API_TIMEOUT", fetcher_cfg.get("timeout_seconds", cfg.fetcher.timeout_seconds)
        ),
        max_retries=_env_int("POINTS_API_RETRIES", fetcher_cfg.get("max_retries", cfg.fetcher.max_retries)),
        page_size=_env_int("POINTS_PAGE_SIZE", fetcher_cfg.get("page_size", cfg.fetcher.page_size)),
    )

    agg_cfg: Dict[str, Any] = dict(overrides.get("aggregation", {}))
    agg_cfg["timezone"] = os.getenv("DASHBOARD_TIMEZONE", agg_cfg.get("timezone", cfg.aggregation.timezone))
    agg_cfg["join_policy"] = _join_policy(
        os.getenv("DASHBOARD_JOIN_POLICY", agg_cfg.get("join_policy", cfg.aggregation.join_policy))
    )
    agg_cfg["default_transaction_type"] = os.getenv(
        "DASHBOARD_DEFAULT_TX_TYPE",
        agg_cfg.get("default_transaction_type", cfg.aggregation.default_transaction_type),
    )
    cfg.aggregation = AggregationConfig(**agg_cfg)

    validate_config(cfg)
    return cfg


def validate_config(cfg: DashboardConfig) -> None:
    if not 1 <= cfg.fetcher.page_size <= MAX_PAGE_SIZE:
        raise ConfigError(f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {cfg.fetcher.page_size}")
    if cfg.fetcher.timeout_seconds <= 0:
        raise ConfigError("timeout_seconds must be positive")
    if cfg.aggregation.default_transaction_type not in TRANSACTION_TYPES:
        raise ConfigError(f"Unknown transaction type: {cfg.aggregation.default_transaction_type}")
    cfg.aggregation.tzinfo()
