"""
Cashier view. Most cashier metrics come precomputed from the service's
analytics endpoint; the dashboard itself owns the pending-redemption count
and the recent-transaction slice.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from .configuration import AggregationConfig
from .models import Transaction, User
from .regular import recent_transactions, transaction_row
from .windows import DateRanges


def count_pending_redemptions(transactions: Sequence[Transaction]) -> int:
    return sum(1 for tx in transactions if tx.type == "redemption" and not tx.processed)


def build_cashier_facets(
    user: Optional[User],
    transactions: Sequence[Transaction],
    ranges: DateRanges,
    pending_redemptions: Optional[int] = None,
    cashier_stats: Optional[Mapping[str, Any]] = None,
    config: Optional[AggregationConfig] = None,
) -> Dict[str, Any]:
    """
    ``pending_redemptions`` is the service-side count when it is known;
    otherwise unprocessed redemptions in ``transactions`` are counted.
    """

    config = config or AggregationConfig()
    if pending_redemptions is None:
        pending_redemptions = count_pending_redemptions(transactions)
    facets: Dict[str, Any] = {
        "pointsBalance": user.points if user is not None else 0,
        "pendingRedemptions": pending_redemptions,
        "recentTransactions": [
            transaction_row(tx) for tx in recent_transactions(transactions, ranges, config.recent_transactions)
        ],
    }
    if cashier_stats is not None:
        facets["cashierStats"] = dict(cashier_stats)
    return facets
