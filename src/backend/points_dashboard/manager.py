"""
Manager view: six independent facets over the whole system.

Each facet fetches its own records and reduces them with the shared
primitives. Facets are built concurrently; how a single failure affects the
others is decided by the configured :class:`JoinPolicy`.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .aggregation import (
    abs_amount,
    build_trend,
    count_bucket,
    count_weight,
    earned_bucket,
    filter_by_window,
    flow_spent_bucket,
    promotion_status_at,
    reduce_by_category,
    round_half_up,
    top_k,
    zero_fill,
)
from .configuration import AggregationConfig
from .exceptions import FacetError
from .fetcher import RecordFetcher
from .models import (
    PROMOTION_TYPES,
    TRANSACTION_TYPES,
    Event,
    EventsFacet,
    FinancialFacet,
    JoinPolicy,
    OverviewFacet,
    Promotion,
    PromotionStatus,
    PromotionsFacet,
    Transaction,
    TransactionsFacet,
    User,
    UsersFacet,
)
from .windows import DateRanges, normalize_datetime

logger = logging.getLogger(__name__)

POINTS_DISTRIBUTION_BUCKETS: Tuple[Tuple[str, int, Optional[int]], ...] = (
    ("0-100", 0, 100),
    ("100-500", 100, 500),
    ("500-1000", 500, 1000),
    ("1000+", 1000, None),
)


def _window_counts(records: Sequence[Any], field: str, ranges: DateRanges, names: Sequence[str]) -> Dict[str, int]:
    starts = {"today": ranges.today, "week": ranges.week_ago, "month": ranges.month_ago}
    return {name: len(filter_by_window(records, field, starts[name], ranges.now)) for name in names}


def _points_flow(transactions: Sequence[Transaction], start: datetime, end: datetime) -> Dict[str, int]:
    window = filter_by_window(transactions, "created_at", start, end)
    earned = earned_bucket(window)
    spent = flow_spent_bucket(window)
    return {"earned": earned, "spent": spent, "net": earned - spent}


def points_distribution(users: Sequence[User]) -> Dict[str, int]:
    distribution: Dict[str, int] = {}
    for label, low, high in POINTS_DISTRIBUTION_BUCKETS:
        distribution[label] = sum(
            1 for user in users if user.points >= low and (high is None or user.points < high)
        )
    return distribution


def build_overview(
    users: Sequence[User],
    transactions: Sequence[Transaction],
    ranges: DateRanges,
    trend_days: int = 14,
) -> OverviewFacet:
    user_growth = _window_counts(users, "created_at", ranges, ("week", "month"))
    user_growth["total"] = len(users)
    return OverviewFacet(
        total_points_in_circulation=sum(user.points for user in users),
        points_flow={
            "week": _points_flow(transactions, ranges.week_ago, ranges.now),
            "month": _points_flow(transactions, ranges.month_ago, ranges.now),
        },
        user_growth=user_growth,
        transaction_volume=_window_counts(transactions, "created_at", ranges, ("today", "week", "month")),
        user_growth_trend=build_trend(users, "created_at", trend_days, ranges.today, {"count": count_bucket}),
        points_distribution=points_distribution(users),
    )


def build_users(
    users: Sequence[User],
    transactions: Sequence[Transaction],
    ranges: DateRanges,
    limit: int = 10,
) -> UsersFacet:
    verified = sum(1 for user in users if user.verified)
    by_points = [
        {"id": user.id, "name": user.name, "utorid": user.utorid, "points": user.points, "verified": user.verified}
        for user in top_k(users, lambda user: user.points, limit)
    ]

    tx_counts = reduce_by_category(transactions, lambda tx: tx.user_id, weight=count_weight)
    users_by_id = {user.id: user for user in users}
    by_tx_count: List[Dict[str, Any]] = []
    for user_id, count in top_k(list(tx_counts.items()), lambda item: item[1], limit):
        user = users_by_id.get(user_id)
        by_tx_count.append(
            {
                "userId": user_id,
                "name": user.name if user else "Unknown",
                "utorid": user.utorid if user else "Unknown",
                "points": user.points if user else 0,
                "transactionCount": count,
            }
        )

    return UsersFacet(
        new_users=_window_counts(users, "created_at", ranges, ("week", "month")),
        verified={"verified": verified, "unverified": len(users) - verified},
        suspicious=sum(1 for user in users if user.suspicious),
        total=len(users),
        top_users_by_points=by_points,
        top_users_by_transaction_count=by_tx_count,
    )


def build_transactions(
    transactions: Sequence[Transaction],
    ranges: DateRanges,
    trend_days: int = 14,
) -> TransactionsFacet:
    type_counts = reduce_by_category(transactions, lambda tx: tx.type, weight=count_weight)
    if transactions:
        mean_amount = sum(tx.amount for tx in transactions) / len(transactions)
        average = int(round_half_up(abs(mean_amount)))
    else:
        average = 0
    return TransactionsFacet(
        volume=_window_counts(transactions, "created_at", ranges, ("today", "week", "month")),
        type_breakdown=zero_fill(type_counts, TRANSACTION_TYPES),
        suspicious=sum(1 for tx in transactions if tx.suspicious),
        average_transaction_value=average,
        volume_trend=build_trend(transactions, "created_at", trend_days, ranges.today, {"count": count_bucket}),
        points_flow=build_trend(
            transactions,
            "created_at",
            trend_days,
            ranges.today,
            {"earned": earned_bucket, "spent": flow_spent_bucket},
        ),
        total_points_volume=abs(sum(tx.amount for tx in transactions)),
    )


def attendance_rate(event: Event) -> Optional[float]:
    if not event.capacity:
        return None
    return round_half_up(event.guest_count / event.capacity * 100, 1)


def build_events(events: Sequence[Event], ranges: DateRanges, limit: int = 5) -> EventsFacet:
    published = sum(1 for event in events if event.published)
    attendance = [
        {
            "eventId": event.id,
            "name": event.name,
            "capacity": event.capacity,
            "guestsRegistered": event.guest_count,
            "attendanceRate": attendance_rate(event),
        }
        for event in events
    ]
    popular = [
        {"eventId": event.id, "name": event.name, "guestCount": event.guest_count, "capacity": event.capacity}
        for event in top_k(events, lambda event: event.guest_count, limit)
    ]
    return EventsFacet(
        total=len(events),
        published=published,
        unpublished=len(events) - published,
        upcoming=sum(1 for event in events if normalize_datetime(event.start_time, ranges.tz) >= ranges.now),
        attendance_data=attendance,
        popular_events=popular,
        total_points_allocated=sum(event.points_allocated for event in events),
        total_points_remaining=sum(event.points_remain for event in events),
    )


def build_promotions(
    promotions: Sequence[Promotion],
    transactions: Sequence[Transaction],
    ranges: DateRanges,
    limit: int = 5,
) -> PromotionsFacet:
    usage = [
        {"promotionId": promo.id, "name": promo.name, "type": promo.type, "usageCount": promo.usage_count}
        for promo in promotions
    ]
    type_counts = reduce_by_category(promotions, lambda promo: promo.type, weight=count_weight)
    return PromotionsFacet(
        active=sum(1 for promo in promotions if promotion_status_at(promo, ranges) is PromotionStatus.ACTIVE),
        total=len(promotions),
        promotion_usage=usage,
        effective_promotions=top_k(usage, lambda row: row["usageCount"], limit),
        type_breakdown=zero_fill(type_counts, PROMOTION_TYPES),
        total_points_awarded=sum(tx.amount for tx in transactions if tx.promotion_ids and tx.amount > 0),
    )


def _money(transactions: Sequence[Transaction]) -> float:
    return round(sum(tx.spent or 0.0 for tx in transactions), 2)


def build_financial(transactions: Sequence[Transaction], ranges: DateRanges) -> FinancialFacet:
    purchases = [tx for tx in transactions if tx.type == "purchase"]
    total_spent = _money(purchases)
    total_points = sum(abs_amount(tx) for tx in purchases)
    average = round_half_up(total_spent / len(purchases), 2) if purchases else 0.0
    ratio = round_half_up(total_points / total_spent, 2) if total_spent > 0 else 0.0
    return FinancialFacet(
        total_spent={
            "week": _money(filter_by_window(purchases, "created_at", ranges.week_ago, ranges.now)),
            "month": _money(filter_by_window(purchases, "created_at", ranges.month_ago, ranges.now)),
            "allTime": total_spent,
        },
        average_spending_per_transaction=float(average),
        points_per_dollar_ratio=float(ratio),
    )


FacetBuilder = Callable[[RecordFetcher, DateRanges, AggregationConfig], Awaitable[Any]]


async def _fetch(fetcher: RecordFetcher, *resources: str) -> List[List[Any]]:
    return list(await asyncio.gather(*(fetcher.fetch_all(resource) for resource in resources)))


async def overview_facet(fetcher: RecordFetcher, ranges: DateRanges, config: AggregationConfig) -> OverviewFacet:
    users, transactions = await _fetch(fetcher, "users", "transactions")
    return build_overview(users, transactions, ranges, config.manager_trend_days)


async def users_facet(fetcher: RecordFetcher, ranges: DateRanges, config: AggregationConfig) -> UsersFacet:
    users, transactions = await _fetch(fetcher, "users", "transactions")
    return build_users(users, transactions, ranges, config.top_users)


async def transactions_facet(
    fetcher: RecordFetcher, ranges: DateRanges, config: AggregationConfig
) -> TransactionsFacet:
    (transactions,) = await _fetch(fetcher, "transactions")
    return build_transactions(transactions, ranges, config.manager_trend_days)


async def events_facet(fetcher: RecordFetcher, ranges: DateRanges, config: AggregationConfig) -> EventsFacet:
    (events,) = await _fetch(fetcher, "events")
    return build_events(events, ranges, config.top_events)


async def promotions_facet(fetcher: RecordFetcher, ranges: DateRanges, config: AggregationConfig) -> PromotionsFacet:
    promotions, transactions = await _fetch(fetcher, "promotions", "transactions")
    return build_promotions(promotions, transactions, ranges, config.top_promotions)


async def financial_facet(fetcher: RecordFetcher, ranges: DateRanges, config: AggregationConfig) -> FinancialFacet:
    (transactions,) = await _fetch(fetcher, "transactions")
    return build_financial(transactions, ranges)


MANAGER_FACETS: Dict[str, FacetBuilder] = {
    "overview": overview_facet,
    "users": users_facet,
    "transactions": transactions_facet,
    "events": events_facet,
    "promotions": promotions_facet,
    "financial": financial_facet,
}


async def _run_facet(
    name: str,
    builder: FacetBuilder,
    fetcher: RecordFetcher,
    ranges: DateRanges,
    config: AggregationConfig,
) -> Any:
    try:
        return await builder(fetcher, ranges, config)
    except FacetError:
        raise
    except Exception as exc:
        raise FacetError(name, exc) from exc


async def build_manager_facets(
    fetcher: RecordFetcher,
    ranges: DateRanges,
    config: Optional[AggregationConfig] = None,
) -> Dict[str, Any]:
    """
    Build all six facets concurrently and join them.

    Under ``fail_fast`` the first facet failure propagates as
    :class:`FacetError` and nothing is returned. Under ``best_effort`` failed
    facets are logged and left out.
    """

    config = config or AggregationConfig()
    names = list(MANAGER_FACETS)
    runs = [_run_facet(name, MANAGER_FACETS[name], fetcher, ranges, config) for name in names]

    if config.join_policy is JoinPolicy.FAIL_FAST:
        results = await asyncio.gather(*runs)
        return dict(zip(names, results))

    facets: Dict[str, Any] = {}
    for name, result in zip(names, await asyncio.gather(*runs, return_exceptions=True)):
        if isinstance(result, BaseException):
            logger.warning("Dropping manager facet %s: %s", name, result)
            continue
        facets[name] = result
    return facets
