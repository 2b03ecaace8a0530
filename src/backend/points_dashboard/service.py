from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .cashier import build_cashier_facets
from .configuration import DashboardConfig
from .exceptions import FetchError, SnapshotUnavailable
from .fetcher import RecordFetcher
from .manager import build_manager_facets
from .models import DashboardSnapshot, Role, ViewerContext
from .regular import build_regular_facets
from .windows import DateRanges

logger = logging.getLogger(__name__)


class DashboardService:
    """
    Entry point of the aggregation engine: fetch what the viewer's role needs,
    reduce it, and return a fresh :class:`DashboardSnapshot`.

    The viewer is always passed in explicitly; nothing here reads session or
    request state.
    """

    def __init__(self, fetcher: RecordFetcher, config: Optional[DashboardConfig] = None) -> None:
        self.fetcher = fetcher
        self.config = config or DashboardConfig()

    async def build(self, context: ViewerContext) -> DashboardSnapshot:
        tz = self.config.aggregation.tzinfo()
        ranges = DateRanges.from_now(context.now or datetime.now(tz), tz)
        try:
            if context.role.has_role(Role.MANAGER):
                facets = await build_manager_facets(self.fetcher, ranges, self.config.aggregation)
            elif context.role is Role.CASHIER:
                facets = await self._build_cashier(context, ranges)
            else:
                facets = await self._build_regular(context, ranges)
        except FetchError as exc:
            logger.error("Dashboard for user %s (%s) could not be loaded: %s", context.user.id, context.role.value, exc)
            raise SnapshotUnavailable(str(exc)) from exc
        except Exception as exc:
            logger.exception(
                "Dashboard for user %s (%s) failed while aggregating", context.user.id, context.role.value
            )
            raise SnapshotUnavailable(str(exc)) from exc
        return DashboardSnapshot(role=context.role, generated_at=ranges.now, facets=facets)

    async def _build_regular(self, context: ViewerContext, ranges: DateRanges) -> Dict[str, Any]:
        transactions, events, promotions = await asyncio.gather(
            self.fetcher.fetch_all("my_transactions"),
            self.fetcher.fetch_all("events"),
            self.fetcher.fetch_all("promotions"),
        )
        return build_regular_facets(context.user, transactions, events, promotions, ranges, self.config.aggregation)

    async def _build_cashier(self, context: ViewerContext, ranges: DateRanges) -> Dict[str, Any]:
        transactions, pending, stats = await asyncio.gather(
            self.fetcher.fetch_all("my_transactions"),
            self.fetcher.count("redemptions", processed=False),
            self.fetcher.fetch_document("cashier_stats"),
        )
        return build_cashier_facets(
            context.user,
            transactions,
            ranges,
            pending_redemptions=pending,
            cashier_stats=stats,
            config=self.config.aggregation,
        )


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class DashboardSession:
    """
    Holds the snapshot currently on screen for one viewer.

    Every :meth:`refresh` takes a new generation token. A build that settles
    after a newer refresh has started is discarded, so an older, slower fetch
    can never overwrite a newer snapshot.
    """

    def __init__(self, service: DashboardService) -> None:
        self.service = service
        self.state = SessionState.IDLE
        self.snapshot: Optional[DashboardSnapshot] = None
        self.error: Optional[Exception] = None
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    async def refresh(self, context: ViewerContext) -> Optional[DashboardSnapshot]:
        self._generation += 1
        token = self._generation
        self.state = SessionState.LOADING

        try:
            snapshot = await self.service.build(context)
        except SnapshotUnavailable as exc:
            if token != self._generation:
                logger.debug("Ignoring failure of superseded refresh %s", token)
                return None
            self.state = SessionState.ERROR
            self.snapshot = None
            self.error = exc
            return None
        except Exception as exc:
            if token == self._generation:
                self.state = SessionState.ERROR
                self.snapshot = None
                self.error = exc
            raise

        if token != self._generation:
            logger.debug("Discarding stale snapshot from refresh %s (current %s)", token, self._generation)
            return None
        self.state = SessionState.READY
        self.snapshot = snapshot
        self.error = None
        return snapshot
