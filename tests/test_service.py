import asyncio

import pytest

from backend.points_dashboard.configuration import AggregationConfig, DashboardConfig
from backend.points_dashboard.exceptions import FetchError, SnapshotUnavailable
from backend.points_dashboard.fetcher import InMemoryRecordFetcher
from backend.points_dashboard.manager import MANAGER_FACETS
from backend.points_dashboard.models import DashboardSnapshot, JoinPolicy, Role, ViewerContext
from backend.points_dashboard.service import DashboardService, DashboardSession, SessionState
from factories import NOW, days_ago, event, promotion, tx, user


def _fetcher(**kwargs):
    return InMemoryRecordFetcher(
        transactions=[
            tx("purchase", 50, created_at=days_ago(2), user_id=1),
            tx("redemption", -20, created_at=days_ago(2), user_id=1, processed=False),
            tx("redemption", -5, created_at=days_ago(3), user_id=1, processed=True),
        ],
        events=[event()],
        promotions=[promotion()],
        users=[user(points=120, id=1, created_at=days_ago(5))],
        **kwargs,
    )


def _context(role, points=120, uid=1):
    return ViewerContext(user=user(points=points, id=uid), role=role, now=NOW)


def test_regular_snapshot():
    snapshot = asyncio.run(DashboardService(_fetcher()).build(_context(Role.REGULAR)))

    assert snapshot.role is Role.REGULAR
    assert snapshot.generated_at == NOW
    assert snapshot.facet("pointsBalance") == 120
    activity = snapshot.facet("pointsActivity")
    assert (activity.earned_week, activity.spent_week, activity.net_week) == (50, 25, 25)
    assert snapshot.facet("engagement").upcoming_events == 1


def test_cashier_snapshot_counts_pending_redemptions_remotely():
    fetcher = _fetcher(cashier_stats={"transactionsToday": 4})

    snapshot = asyncio.run(DashboardService(fetcher).build(_context(Role.CASHIER)))

    assert snapshot.facet("pendingRedemptions") == 1
    assert snapshot.facet("cashierStats") == {"transactionsToday": 4}
    rows = snapshot.facet("recentTransactions")
    assert [(row["sign"], row["amount"]) for row in rows] == [("+", 50), ("-", 20), ("-", 5)]
    assert set(rows[0]) == {"id", "type", "amount", "sign", "createdAt", "processed"}
    assert "redemptions" in fetcher.calls
    assert snapshot.facet("overview") is None


def test_cashier_stats_failure_aborts_the_cycle():
    fetcher = _fetcher(failures={"cashier_stats": FetchError("down", resource="cashier_stats")})

    with pytest.raises(SnapshotUnavailable):
        asyncio.run(DashboardService(fetcher).build(_context(Role.CASHIER)))


@pytest.mark.parametrize("role", [Role.MANAGER, Role.SUPERUSER])
def test_manager_and_superuser_see_manager_facets(role):
    snapshot = asyncio.run(DashboardService(_fetcher()).build(_context(role)))

    assert set(snapshot.facets) == set(MANAGER_FACETS)
    assert snapshot.facet("pointsActivity") is None


def test_fetch_failure_yields_no_snapshot():
    fetcher = _fetcher(failures={"my_transactions": FetchError("timeout", resource="my_transactions")})

    with pytest.raises(SnapshotUnavailable):
        asyncio.run(DashboardService(fetcher).build(_context(Role.REGULAR)))


def test_manager_fail_fast_yields_no_snapshot():
    fetcher = _fetcher(failures={"events": FetchError("boom", resource="events")})

    with pytest.raises(SnapshotUnavailable):
        asyncio.run(DashboardService(fetcher).build(_context(Role.MANAGER)))


def test_manager_best_effort_yields_partial_snapshot():
    fetcher = _fetcher(failures={"events": FetchError("boom", resource="events")})
    config = DashboardConfig(aggregation=AggregationConfig(join_policy=JoinPolicy.BEST_EFFORT))

    snapshot = asyncio.run(DashboardService(fetcher, config).build(_context(Role.MANAGER)))

    assert snapshot.facet("events") is None
    assert snapshot.facet("overview") is not None


def test_session_keeps_snapshot_and_clears_it_on_error():
    fetcher = _fetcher()
    session = DashboardSession(DashboardService(fetcher))
    assert session.state is SessionState.IDLE

    first = asyncio.run(session.refresh(_context(Role.REGULAR)))
    assert session.state is SessionState.READY
    assert session.snapshot is first

    fetcher.failures["my_transactions"] = FetchError("offline", resource="my_transactions")
    assert asyncio.run(session.refresh(_context(Role.REGULAR))) is None
    assert session.state is SessionState.ERROR
    assert session.snapshot is None
    assert isinstance(session.error, SnapshotUnavailable)


def test_unexpected_fetch_error_settles_session_in_error_state():
    fetcher = _fetcher()
    session = DashboardSession(DashboardService(fetcher))
    asyncio.run(session.refresh(_context(Role.REGULAR)))

    fetcher.failures["my_transactions"] = ValueError("could not convert string to float: 'n/a'")
    assert asyncio.run(session.refresh(_context(Role.REGULAR))) is None

    assert session.state is SessionState.ERROR
    assert session.snapshot is None
    assert isinstance(session.error, SnapshotUnavailable)
    assert isinstance(session.error.__cause__, ValueError)


class _BrokenService:
    async def build(self, context):
        raise RuntimeError("service misconfigured")


def test_session_leaves_loading_when_build_raises_anything_else():
    session = DashboardSession(_BrokenService())

    with pytest.raises(RuntimeError):
        asyncio.run(session.refresh(_context(Role.REGULAR)))

    assert session.state is SessionState.ERROR
    assert session.snapshot is None


class _GatedService:
    """Builds instantly, except for user 1 whose build waits for ``release``."""

    def __init__(self, fail_slow=False):
        self.release = asyncio.Event()
        self.fail_slow = fail_slow

    async def build(self, context):
        if context.user.id == 1:
            await self.release.wait()
            if self.fail_slow:
                raise SnapshotUnavailable("slow build failed")
        return DashboardSnapshot(role=context.role, generated_at=NOW, facets={"viewer": context.user.id})


@pytest.mark.parametrize("fail_slow", [False, True])
def test_session_discards_results_of_superseded_refresh(fail_slow):
    async def scenario():
        service = _GatedService(fail_slow=fail_slow)
        session = DashboardSession(service)
        slow = asyncio.create_task(session.refresh(_context(Role.REGULAR, uid=1)))
        await asyncio.sleep(0)
        fresh = await session.refresh(_context(Role.REGULAR, uid=2))
        service.release.set()
        stale = await slow
        return session, fresh, stale

    session, fresh, stale = asyncio.run(scenario())

    assert stale is None
    assert fresh is not None
    assert session.generation == 2
    assert session.state is SessionState.READY
    assert session.snapshot.facet("viewer") == 2
    assert session.error is None
