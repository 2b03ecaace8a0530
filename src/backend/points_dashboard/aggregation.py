"""
Reusable reduction primitives shared by the regular, cashier and manager
pipelines.

Everything here is pure: inputs are never mutated or reordered and no state
survives between calls, so running the same reduction twice over the same
records and anchor yields identical output.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, TypeVar

from .models import EARNED_TYPES, SPENT_TYPES, Promotion, PromotionStatus, TrendPoint, promotion_status
from .windows import DateRanges, day_windows, normalize_datetime

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

BucketFn = Callable[[Sequence[Any]], int]


def abs_amount(record: Any) -> int:
    return abs(getattr(record, "amount", 0) or 0)


def count_weight(record: Any) -> int:
    return 1


def filter_by_window(records: Iterable[T], field: str, start: datetime, end: datetime) -> List[T]:
    """
    Return the records whose ``field`` timestamp falls in ``[start, end)``.

    Records without a value for ``field`` are skipped. Naive timestamps are
    read in the timezone of ``start``.
    """

    tz = start.tzinfo
    selected: List[T] = []
    for record in records:
        value = getattr(record, field, None)
        if value is None:
            continue
        if tz is not None:
            value = normalize_datetime(value, tz)
        if start <= value < end:
            selected.append(record)
    return selected


def reduce_by_category(
    records: Iterable[T],
    classify: Callable[[T], Optional[K]],
    weight: Callable[[T], int] = abs_amount,
) -> Dict[K, int]:
    """
    Sum ``weight`` per category. Records classified as ``None`` are skipped
    and categories with no records are left out of the result.
    """

    totals: Dict[K, int] = defaultdict(int)
    for record in records:
        key = classify(record)
        if key is None:
            continue
        totals[key] += weight(record)
    return dict(totals)


def zero_fill(mapping: Mapping[K, int], keys: Iterable[K]) -> Dict[K, int]:
    return {key: mapping.get(key, 0) for key in keys}


def most_common_category(counts: Mapping[K, int], fallback: K, order: Sequence[K] = ()) -> K:
    """
    Pick the category with the strictly greatest count.

    No data yields ``fallback``. On a tie ``fallback`` wins if it is one of
    the leaders, otherwise the leader listed first in ``order`` (then in
    sorted key order).
    """

    if not counts:
        return fallback
    best = max(counts.values())
    leaders = [key for key, value in counts.items() if value == best]
    if len(leaders) == 1:
        return leaders[0]
    if fallback in leaders:
        return fallback
    ranked = [key for key in order if key in leaders]
    if ranked:
        return ranked[0]
    return sorted(leaders, key=str)[0]


def build_trend(
    records: Sequence[T],
    field: str,
    horizon_days: int,
    today: datetime,
    bucket_fns: Mapping[str, BucketFn],
) -> List[TrendPoint]:
    """
    Build one point per calendar day, oldest first, ending with ``today``.

    The series always has ``horizon_days`` entries; days without records get
    zero for every bucket.
    """

    points: List[TrendPoint] = []
    for day_start, day_end in day_windows(today, horizon_days):
        bucket = filter_by_window(records, field, day_start, day_end)
        values = {name: fn(bucket) for name, fn in bucket_fns.items()}
        points.append(TrendPoint(day=day_start.date(), values=values))
    return points


def top_k(records: Iterable[T], score: Callable[[T], Any], k: int) -> List[T]:
    """Rank by ``score`` descending; equal scores keep their input order."""

    if k <= 0:
        return []
    return sorted(records, key=score, reverse=True)[:k]


def count_bucket(records: Sequence[Any]) -> int:
    return len(records)


def earned_bucket(records: Sequence[Any]) -> int:
    return sum(abs_amount(tx) for tx in records if tx.type in EARNED_TYPES)


def spent_bucket(records: Sequence[Any]) -> int:
    return sum(abs_amount(tx) for tx in records if tx.type in SPENT_TYPES)


def is_outgoing_transfer(tx: Any) -> bool:
    return tx.type == "transfer" and tx.amount < 0


def flow_spent_bucket(records: Sequence[Any]) -> int:
    """Spent points system-wide: redemptions plus the sending side of transfers."""

    return sum(abs_amount(tx) for tx in records if tx.type in SPENT_TYPES or is_outgoing_transfer(tx))


def promotion_status_at(promotion: Promotion, ranges: DateRanges) -> PromotionStatus:
    localized = replace(
        promotion,
        start_time=normalize_datetime(promotion.start_time, ranges.tz),
        end_time=normalize_datetime(promotion.end_time, ranges.tz),
    )
    return promotion_status(localized, ranges.now)


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round like the UI does (``Math.round``): halves go up, not to even.
    """

    factor = 10 ** digits
    scaled = value * factor
    floor = int(scaled // 1)
    rounded = floor + 1 if scaled - floor >= 0.5 else floor
    return rounded / factor if digits else rounded
