"""
Points dashboard aggregation engine.

Turns the flat transaction, event, promotion and user records served by the
points service into the role-specific snapshots rendered by the dashboard:
windowed sums, daily trend series, categorical breakdowns and top-K
rankings for regular members, cashiers and managers.
"""

from .configuration import (  # noqa: F401
    AggregationConfig,
    DashboardConfig,
    FetcherConfig,
    load_dashboard_config,
)
from .exceptions import (  # noqa: F401
    ConfigError,
    DashboardError,
    FacetError,
    FetchError,
    SnapshotUnavailable,
)
from .fetcher import (  # noqa: F401
    HTTPRecordFetcher,
    InMemoryRecordFetcher,
    Page,
    RecordFetcher,
    build_fetcher_from_config,
)
from .models import (  # noqa: F401
    DashboardSnapshot,
    Event,
    JoinPolicy,
    Promotion,
    PromotionStatus,
    Role,
    Transaction,
    TrendPoint,
    User,
    ViewerContext,
    promotion_status,
)
from .service import DashboardService, DashboardSession, SessionState  # noqa: F401
