from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .configuration import DashboardConfig, load_dashboard_config
from .exceptions import SnapshotUnavailable
from .fetcher import (
    InMemoryRecordFetcher,
    RecordFetcher,
    build_fetcher_from_config,
    row_to_event,
    row_to_promotion,
    row_to_transaction,
    row_to_user,
)
from .models import JoinPolicy, Role, ViewerContext
from .service import DashboardService

load_dotenv()

app = FastAPI(title="Points Dashboard API", version="0.1.0")
config: DashboardConfig = load_dashboard_config()
record_fetcher: Optional[RecordFetcher] = build_fetcher_from_config(config.fetcher)


class DashboardRequest(BaseModel):
    role: Role
    user: Dict[str, Any]
    now: Optional[datetime] = None
    join_policy: Optional[JoinPolicy] = Field(default=None, alias="joinPolicy")
    # Inline rows use the service's own JSON shape and go through the same
    # converters as HTTP pages, so unreadable optional fields fall back to defaults.
    transactions: Optional[List[Dict[str, Any]]] = None
    events: Optional[List[Dict[str, Any]]] = None
    promotions: Optional[List[Dict[str, Any]]] = None
    users: Optional[List[Dict[str, Any]]] = None
    cashier_stats: Optional[Dict[str, Any]] = Field(default=None, alias="cashierStats")

    model_config = {"populate_by_name": True}

    def has_inline_records(self) -> bool:
        return any(
            rows is not None for rows in (self.transactions, self.events, self.promotions, self.users)
        )


class DashboardResponse(BaseModel):
    data: Dict[str, Any]
    source: str


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/dashboard", response_model=DashboardResponse)
async def dashboard_endpoint(request: DashboardRequest) -> DashboardResponse:
    user = row_to_user(request.user)
    if user is None:
        raise HTTPException(status_code=400, detail="user.id is required.")

    fetcher, source = _resolve_fetcher(request)
    service = DashboardService(fetcher, _effective_config(request))
    context = ViewerContext(user=user, role=request.role, now=request.now)
    try:
        snapshot = await service.build(context)
    except SnapshotUnavailable:
        raise HTTPException(status_code=503, detail="Could not load dashboard.")
    return DashboardResponse(data=snapshot.as_dict(), source=source)


def _effective_config(request: DashboardRequest) -> DashboardConfig:
    if request.join_policy is None:
        return config
    aggregation = config.aggregation.model_copy(update={"join_policy": request.join_policy})
    return config.model_copy(update={"aggregation": aggregation})


def _resolve_fetcher(request: DashboardRequest) -> Tuple[RecordFetcher, str]:
    if record_fetcher is not None:
        return record_fetcher, "remote"

    if not request.has_inline_records():
        raise HTTPException(
            status_code=500,
            detail=(
                "POINTS_API_URL is not configured; "
                "supply transactions/events/promotions/users in the request body for ad-hoc queries."
            ),
        )

    return (
        InMemoryRecordFetcher(
            transactions=_convert_rows(request.transactions, row_to_transaction),
            events=_convert_rows(request.events, row_to_event),
            promotions=_convert_rows(request.promotions, row_to_promotion),
            users=_convert_rows(request.users, row_to_user),
            cashier_stats=request.cashier_stats,
        ),
        "inline",
    )


def _convert_rows(
    rows: Optional[Sequence[Dict[str, Any]]],
    converter: Callable[[Dict[str, Any]], Any],
) -> Tuple[Any, ...]:
    if not rows:
        return ()
    return tuple(record for record in (converter(row) for row in rows) if record is not None)
