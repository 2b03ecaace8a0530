"""
Regular-member view: the member's own points activity, transaction habits
and engagement with events and promotions.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from .aggregation import (
    abs_amount,
    build_trend,
    count_weight,
    earned_bucket,
    filter_by_window,
    most_common_category,
    promotion_status_at,
    reduce_by_category,
    round_half_up,
    spent_bucket,
    top_k,
)
from .configuration import AggregationConfig
from .models import (
    TRANSACTION_TYPES,
    Engagement,
    Event,
    PointsActivity,
    Promotion,
    PromotionStatus,
    Transaction,
    TransactionInsights,
    User,
)
from .windows import DateRanges, normalize_datetime


def build_points_activity(
    transactions: Sequence[Transaction],
    ranges: DateRanges,
    trend_days: int = 30,
) -> PointsActivity:
    week = filter_by_window(transactions, "created_at", ranges.week_ago, ranges.now)
    month = filter_by_window(transactions, "created_at", ranges.month_ago, ranges.now)
    earned_week, spent_week = earned_bucket(week), spent_bucket(week)
    earned_month, spent_month = earned_bucket(month), spent_bucket(month)
    trend = build_trend(
        transactions,
        "created_at",
        trend_days,
        ranges.today,
        {"earned": earned_bucket, "spent": spent_bucket},
    )
    return PointsActivity(
        earned_week=earned_week,
        spent_week=spent_week,
        net_week=earned_week - spent_week,
        earned_month=earned_month,
        spent_month=spent_month,
        net_month=earned_month - spent_month,
        trend=trend,
    )


def build_transaction_insights(
    transactions: Sequence[Transaction],
    ranges: DateRanges,
    default_type: str = "purchase",
) -> TransactionInsights:
    month = filter_by_window(transactions, "created_at", ranges.month_ago, ranges.now)
    type_counts = reduce_by_category(month, lambda tx: tx.type, weight=count_weight)
    average = round_half_up(sum(abs_amount(tx) for tx in month) / len(month)) if month else 0
    return TransactionInsights(
        month_count=len(month),
        average_value=int(average),
        most_common_type=most_common_category(type_counts, default_type, order=TRANSACTION_TYPES),
        type_breakdown=type_counts,
    )


def build_engagement(
    transactions: Sequence[Transaction],
    events: Sequence[Event],
    promotions: Sequence[Promotion],
    ranges: DateRanges,
) -> Engagement:
    tz = ranges.tz
    upcoming = sum(1 for event in events if normalize_datetime(event.start_time, tz) > ranges.now)
    active = sum(1 for promo in promotions if promotion_status_at(promo, ranges) is PromotionStatus.ACTIVE)
    month = filter_by_window(transactions, "created_at", ranges.month_ago, ranges.now)
    attended = sum(1 for tx in month if tx.type == "event")
    return Engagement(upcoming_events=upcoming, active_promotions=active, events_attended=attended)


def recent_transactions(transactions: Sequence[Transaction], ranges: DateRanges, limit: int = 5) -> List[Transaction]:
    return top_k(transactions, lambda tx: normalize_datetime(tx.created_at, ranges.tz), limit)


def transaction_row(tx: Transaction) -> Dict[str, Any]:
    """Row for the recent-transactions table, with the sign the member sees."""

    return {
        "id": tx.id,
        "type": tx.type,
        "amount": abs(tx.amount),
        "sign": "-" if tx.type == "redemption" else "+",
        "createdAt": tx.created_at.isoformat(),
        "processed": tx.processed,
    }


def build_regular_facets(
    user: Optional[User],
    transactions: Sequence[Transaction],
    events: Sequence[Event],
    promotions: Sequence[Promotion],
    ranges: DateRanges,
    config: Optional[AggregationConfig] = None,
) -> Dict[str, Any]:
    config = config or AggregationConfig()
    return {
        "pointsBalance": user.points if user is not None else 0,
        "pointsActivity": build_points_activity(transactions, ranges, config.points_trend_days),
        "transactionInsights": build_transaction_insights(
            transactions, ranges, config.default_transaction_type
        ),
        "engagement": build_engagement(transactions, events, promotions, ranges),
        "recentTransactions": [
            transaction_row(tx) for tx in recent_transactions(transactions, ranges, config.recent_transactions)
        ],
    }
