from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple


TRANSACTION_TYPES: Tuple[str, ...] = ("purchase", "redemption", "event", "adjustment", "transfer")
EARNED_TYPES = frozenset({"purchase", "event", "adjustment"})
SPENT_TYPES = frozenset({"redemption"})
PROMOTION_TYPES: Tuple[str, ...] = ("automatic", "onetime")


class Role(str, Enum):
    REGULAR = "regular"
    CASHIER = "cashier"
    MANAGER = "manager"
    SUPERUSER = "superuser"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]

    def has_role(self, required: "Role") -> bool:
        """
        Mirror the service's role hierarchy: a superuser can do anything a
        manager can, a manager anything a cashier can, and so on.
        """

        return self.rank >= required.rank


_ROLE_RANKS = {
    Role.REGULAR: 0,
    Role.CASHIER: 1,
    Role.MANAGER: 2,
    Role.SUPERUSER: 3,
}


class PromotionStatus(str, Enum):
    ACTIVE = "Active"
    UPCOMING = "Upcoming"
    EXPIRED = "Expired"


class JoinPolicy(str, Enum):
    FAIL_FAST = "fail_fast"
    BEST_EFFORT = "best_effort"


@dataclass(frozen=True)
class Transaction:
    """
    A single points movement as returned by the remote service.

    ``amount`` carries the direction in its sign; redemptions are stored as
    deductions. ``spent`` is the money paid for a purchase and is ``None``
    for every other type.
    """

    id: int
    type: str
    amount: int
    created_at: datetime
    processed: bool = False
    user_id: Optional[int] = None
    spent: Optional[float] = None
    suspicious: bool = False
    promotion_ids: Tuple[int, ...] = ()
    created_by: Optional[str] = None
    remark: str = ""


@dataclass(frozen=True)
class Event:
    id: int
    name: str
    start_time: datetime
    end_time: datetime
    capacity: Optional[int] = None
    published: bool = False
    guest_count: int = 0
    points_allocated: int = 0
    points_remain: int = 0
    location: str = ""


@dataclass(frozen=True)
class Promotion:
    id: int
    name: str
    type: str
    start_time: datetime
    end_time: datetime
    usage_count: int = 0
    description: str = ""


@dataclass(frozen=True)
class User:
    """
    Member account summary. Managers aggregate over these; the other roles
    only ever see their own.
    """

    id: int
    name: str
    utorid: str
    points: int = 0
    verified: bool = False
    role: Optional[str] = None
    suspicious: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ViewerContext:
    """
    Who the dashboard is rendered for. ``now`` pins the aggregation anchor;
    when omitted the service uses the current time.
    """

    user: User
    role: Role
    now: Optional[datetime] = None


def promotion_status(promotion: Promotion, now: datetime) -> PromotionStatus:
    if promotion.start_time <= now <= promotion.end_time:
        return PromotionStatus.ACTIVE
    if promotion.start_time > now:
        return PromotionStatus.UPCOMING
    return PromotionStatus.EXPIRED


@dataclass(frozen=True)
class TrendPoint:
    """
    One calendar day of a trend series. ``values`` holds one entry per
    bucket (``earned``/``spent`` or ``count``).
    """

    day: date
    values: Mapping[str, int]


@dataclass(frozen=True)
class PointsActivity:
    earned_week: int
    spent_week: int
    net_week: int
    earned_month: int
    spent_month: int
    net_month: int
    trend: Sequence[TrendPoint] = field(default_factory=list)


@dataclass(frozen=True)
class TransactionInsights:
    month_count: int
    average_value: int
    most_common_type: str
    type_breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Engagement:
    upcoming_events: int
    active_promotions: int
    events_attended: int


@dataclass(frozen=True)
class OverviewFacet:
    total_points_in_circulation: int
    points_flow: Dict[str, Dict[str, int]]
    user_growth: Dict[str, int]
    transaction_volume: Dict[str, int]
    user_growth_trend: Sequence[TrendPoint]
    points_distribution: Dict[str, int]


@dataclass(frozen=True)
class UsersFacet:
    new_users: Dict[str, int]
    verified: Dict[str, int]
    suspicious: int
    total: int
    top_users_by_points: List[Dict[str, Any]]
    top_users_by_transaction_count: List[Dict[str, Any]]


@dataclass(frozen=True)
class TransactionsFacet:
    volume: Dict[str, int]
    type_breakdown: Dict[str, int]
    suspicious: int
    average_transaction_value: int
    volume_trend: Sequence[TrendPoint]
    points_flow: Sequence[TrendPoint]
    total_points_volume: int


@dataclass(frozen=True)
class EventsFacet:
    total: int
    published: int
    unpublished: int
    upcoming: int
    attendance_data: List[Dict[str, Any]]
    popular_events: List[Dict[str, Any]]
    total_points_allocated: int
    total_points_remaining: int


@dataclass(frozen=True)
class PromotionsFacet:
    active: int
    total: int
    promotion_usage: List[Dict[str, Any]]
    effective_promotions: List[Dict[str, Any]]
    type_breakdown: Dict[str, int]
    total_points_awarded: int


@dataclass(frozen=True)
class FinancialFacet:
    total_spent: Dict[str, float]
    average_spending_per_transaction: float
    points_per_dollar_ratio: float


@dataclass(frozen=True)
class DashboardSnapshot:
    """
    Everything one role sees for one render cycle.

    ``facets`` is keyed by the facet names the frontend reads
    (``pointsActivity``, ``overview``, ``financial`` ...). A facet that could
    not be built is simply missing from the mapping.
    """

    role: Role
    generated_at: datetime
    facets: Dict[str, Any] = field(default_factory=dict)

    def facet(self, name: str) -> Optional[Any]:
        return self.facets.get(name)

    def as_dict(self) -> Dict[str, Any]:
        """
        Convert the snapshot into a JSON-serialisable mapping with camelCase
        keys, ready to ship to the UI.
        """

        payload: Dict[str, Any] = {
            "role": self.role.value,
            "generatedAt": self.generated_at.isoformat(),
        }
        for name, value in self.facets.items():
            payload[name] = _serialize(value)
        return payload


_CAMEL_RE = re.compile(r"_([a-z0-9])")


def _camel(name: str) -> str:
    return _CAMEL_RE.sub(lambda match: match.group(1).upper(), name)


def _serialize(obj: Any) -> Any:
    if isinstance(obj, TrendPoint):
        return {"date": obj.day.isoformat(), **{key: value for key, value in obj.values.items()}}
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return {_camel(item.name): _serialize(getattr(obj, item.name)) for item in fields(obj)}
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Mapping):
        return {key: _serialize(value) for key, value in obj.items()}
    if isinstance(obj, Iterable) and not isinstance(obj, (str, bytes)):
        return [_serialize(item) for item in obj]
    return obj
