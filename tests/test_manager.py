import asyncio
import logging
from datetime import timedelta

import pytest

from backend.points_dashboard.configuration import AggregationConfig
from backend.points_dashboard.exceptions import FacetError, FetchError
from backend.points_dashboard.fetcher import InMemoryRecordFetcher
from backend.points_dashboard.manager import (
    MANAGER_FACETS,
    attendance_rate,
    build_events,
    build_financial,
    build_manager_facets,
    build_overview,
    build_promotions,
    build_transactions,
    build_users,
    points_distribution,
)
from backend.points_dashboard.models import JoinPolicy
from factories import NOW, days_ago, event, promotion, tx, user


def test_points_distribution_buckets():
    users = [user(points=points) for points in (0, 99, 100, 499, 500, 999, 1000, 5000)]

    assert points_distribution(users) == {"0-100": 2, "100-500": 2, "500-1000": 2, "1000+": 2}


def test_overview(ranges):
    users = [
        user(points=300, created_at=days_ago(2)),
        user(points=700, created_at=days_ago(20)),
        user(points=50, created_at=days_ago(90)),
    ]
    transactions = [
        tx("purchase", 100, created_at=days_ago(0, hours=2)),
        tx("redemption", -40, created_at=days_ago(3)),
        tx("transfer", -10, created_at=days_ago(3)),
        tx("transfer", 10, created_at=days_ago(3)),
        tx("event", 25, created_at=days_ago(20)),
    ]

    overview = build_overview(users, transactions, ranges)

    assert overview.total_points_in_circulation == 1050
    assert overview.points_flow["week"] == {"earned": 100, "spent": 50, "net": 50}
    assert overview.points_flow["month"] == {"earned": 125, "spent": 50, "net": 75}
    assert overview.user_growth == {"week": 1, "month": 2, "total": 3}
    assert overview.transaction_volume == {"today": 1, "week": 4, "month": 5}
    assert len(overview.user_growth_trend) == 14
    assert overview.points_distribution["500-1000"] == 1


def test_users_facet_rankings(ranges):
    alice = user("Alice", points=900, verified=True, id=1)
    bob = user("Bob", points=200, suspicious=True, id=2)
    carol = user("Carol", points=500, verified=True, id=3)
    transactions = [tx(user_id=2), tx(user_id=2), tx(user_id=3), tx(user_id=42)]

    facet = build_users([alice, bob, carol], transactions, ranges, limit=2)

    assert [row["name"] for row in facet.top_users_by_points] == ["Alice", "Carol"]
    assert facet.top_users_by_transaction_count[0] == {
        "userId": 2,
        "name": "Bob",
        "utorid": bob.utorid,
        "points": 200,
        "transactionCount": 2,
    }
    assert len(facet.top_users_by_transaction_count) == 2
    assert facet.verified == {"verified": 2, "unverified": 1}
    assert facet.suspicious == 1
    assert facet.total == 3


def test_users_facet_names_unknown_users(ranges):
    facet = build_users([], [tx(user_id=42)], ranges)

    assert facet.top_users_by_transaction_count[0]["name"] == "Unknown"
    assert facet.top_users_by_transaction_count[0]["points"] == 0


def test_transactions_facet(ranges):
    transactions = [
        tx("purchase", 50, created_at=days_ago(1)),
        tx("redemption", -20, created_at=days_ago(2), suspicious=True),
        tx("purchase", 30, created_at=days_ago(40)),
    ]

    facet = build_transactions(transactions, ranges)

    assert facet.type_breakdown == {"purchase": 2, "redemption": 1, "event": 0, "adjustment": 0, "transfer": 0}
    assert facet.suspicious == 1
    assert facet.average_transaction_value == 20
    assert facet.volume == {"today": 0, "week": 2, "month": 2}
    assert len(facet.volume_trend) == 14
    assert len(facet.points_flow) == 14
    assert facet.total_points_volume == 60


def test_transactions_facet_empty(ranges):
    facet = build_transactions([], ranges, trend_days=7)

    assert facet.average_transaction_value == 0
    assert len(facet.volume_trend) == 7
    assert set(facet.type_breakdown.values()) == {0}


def test_attendance_rate():
    assert attendance_rate(event(capacity=3, guest_count=2)) == pytest.approx(66.7)
    assert attendance_rate(event(capacity=None, guest_count=2)) is None
    assert attendance_rate(event(capacity=0, guest_count=2)) is None


def test_events_facet(ranges):
    events = [
        event(
            "Gala",
            start=NOW + timedelta(days=3),
            published=True,
            guest_count=40,
            capacity=50,
            points_allocated=100,
            points_remain=30,
        ),
        event("Talk", start=NOW, guest_count=10, points_allocated=20, points_remain=20),
        event("Past", start=NOW - timedelta(days=3), published=True, guest_count=70),
    ]

    facet = build_events(events, ranges, limit=2)

    assert facet.total == 3
    assert facet.published == 2
    assert facet.unpublished == 1
    assert facet.upcoming == 2
    assert [row["name"] for row in facet.popular_events] == ["Past", "Gala"]
    assert facet.attendance_data[0]["attendanceRate"] == 80.0
    assert facet.total_points_allocated == 120
    assert facet.total_points_remaining == 50


def test_promotions_facet(ranges):
    promotions = [
        promotion("Spring", usage_count=5),
        promotion("Later", start=NOW + timedelta(days=2), end=NOW + timedelta(days=4), type_="onetime", usage_count=0),
        promotion("Old", start=NOW - timedelta(days=9), end=NOW - timedelta(days=4), usage_count=12),
    ]
    transactions = [
        tx("purchase", 40, promotion_ids=(1,)),
        tx("purchase", 15, promotion_ids=(1, 2)),
        tx("purchase", 99),
        tx("adjustment", -5, promotion_ids=(1,)),
    ]

    facet = build_promotions(promotions, transactions, ranges, limit=2)

    assert facet.active == 1
    assert facet.total == 3
    assert facet.type_breakdown == {"automatic": 2, "onetime": 1}
    assert [row["name"] for row in facet.effective_promotions] == ["Old", "Spring"]
    assert facet.total_points_awarded == 55


def test_financial_facet(ranges):
    transactions = [
        tx("purchase", 40, created_at=days_ago(1), spent=10.0),
        tx("purchase", 100, created_at=days_ago(20), spent=25.5),
        tx("purchase", 8, created_at=days_ago(100), spent=2.0),
        tx("redemption", -40, created_at=days_ago(1)),
    ]

    facet = build_financial(transactions, ranges)

    assert facet.total_spent == {"week": 10.0, "month": 35.5, "allTime": 37.5}
    assert facet.average_spending_per_transaction == pytest.approx(12.5)
    assert facet.points_per_dollar_ratio == pytest.approx(3.95)


def test_financial_facet_without_purchases(ranges):
    facet = build_financial([tx("redemption", -10)], ranges)

    assert facet.total_spent["allTime"] == 0
    assert facet.average_spending_per_transaction == 0.0
    assert facet.points_per_dollar_ratio == 0.0


def _fetcher(**kwargs):
    return InMemoryRecordFetcher(
        transactions=[tx("purchase", 20, created_at=days_ago(1), user_id=1, spent=5.0)],
        events=[event()],
        promotions=[promotion()],
        users=[user(points=20, id=1, created_at=days_ago(1))],
        **kwargs,
    )


def test_manager_facets_all_present(ranges):
    facets = asyncio.run(build_manager_facets(_fetcher(), ranges, AggregationConfig()))

    assert list(facets) == list(MANAGER_FACETS)


def test_fail_fast_returns_nothing_when_one_facet_fails(ranges):
    fetcher = _fetcher(failures={"events": FetchError("boom", resource="events")})

    with pytest.raises(FacetError) as excinfo:
        asyncio.run(build_manager_facets(fetcher, ranges, AggregationConfig()))

    assert excinfo.value.facet == "events"
    assert excinfo.value.resource == "events"


def test_best_effort_drops_only_the_failed_facet(ranges, caplog):
    fetcher = _fetcher(failures={"events": FetchError("boom", resource="events")})
    config = AggregationConfig(join_policy=JoinPolicy.BEST_EFFORT)

    with caplog.at_level(logging.WARNING):
        facets = asyncio.run(build_manager_facets(fetcher, ranges, config))

    assert "events" not in facets
    assert set(facets) == set(MANAGER_FACETS) - {"events"}
    assert "events" in caplog.text


def test_unexpected_errors_are_wrapped_per_facet(ranges):
    fetcher = _fetcher(failures={"promotions": RuntimeError("bad row")})

    with pytest.raises(FacetError) as excinfo:
        asyncio.run(build_manager_facets(fetcher, ranges))

    assert excinfo.value.facet == "promotions"
    assert isinstance(excinfo.value.cause, RuntimeError)
