from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .configuration import FetcherConfig
from .exceptions import FetchError
from .models import Event, Promotion, Transaction, User

logger = logging.getLogger(__name__)

RESOURCE_ENDPOINTS: Dict[str, str] = {
    "my_transactions": "/users/me/transactions",
    "transactions": "/transactions",
    "redemptions": "/transactions/redemptions",
    "events": "/events",
    "promotions": "/promotions",
    "users": "/users",
    "cashier_stats": "/analytics/cashier/stats",
}


@dataclass(frozen=True)
class Page:
    results: Sequence[Any]
    count: int


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _pick(row: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    return default


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def row_to_transaction(row: Mapping[str, Any]) -> Optional[Transaction]:
    created_at = _parse_datetime(_pick(row, "createdAt", "created_at"))
    if row.get("id") is None or created_at is None:
        return None
    promotion_ids = _pick(row, "promotionIds", "promotion_ids", default=())
    if not isinstance(promotion_ids, (list, tuple)):
        promotion_ids = ()
    user_id = _pick(row, "userId", "user_id")
    return Transaction(
        id=_as_int(row["id"]),
        type=str(row.get("type") or "adjustment"),
        amount=_as_int(row.get("amount")),
        created_at=created_at,
        processed=bool(row.get("processed", False)),
        user_id=None if user_id is None else _as_int(user_id),
        spent=_as_float(row.get("spent")),
        suspicious=bool(row.get("suspicious", False)),
        promotion_ids=tuple(_as_int(pid) for pid in promotion_ids),
        created_by=_pick(row, "createdBy", "created_by"),
        remark=str(row.get("remark") or ""),
    )


def row_to_event(row: Mapping[str, Any]) -> Optional[Event]:
    start_time = _parse_datetime(_pick(row, "startTime", "start_time"))
    end_time = _parse_datetime(_pick(row, "endTime", "end_time"))
    if row.get("id") is None or start_time is None:
        return None
    guests = row.get("guests")
    guest_count = _pick(row, "guestCount", "guest_count", "numGuests")
    if guest_count is None and isinstance(guests, list):
        guest_count = len(guests)
    capacity = row.get("capacity")
    return Event(
        id=_as_int(row["id"]),
        name=str(row.get("name") or ""),
        start_time=start_time,
        end_time=end_time or start_time,
        capacity=None if capacity is None else _as_int(capacity),
        published=bool(row.get("published", False)),
        guest_count=_as_int(guest_count),
        points_allocated=_as_int(_pick(row, "pointsAllocated", "points_allocated")),
        points_remain=_as_int(_pick(row, "pointsRemain", "points_remain")),
        location=str(row.get("location") or ""),
    )


def row_to_promotion(row: Mapping[str, Any]) -> Optional[Promotion]:
    start_time = _parse_datetime(_pick(row, "startTime", "start_time"))
    end_time = _parse_datetime(_pick(row, "endTime", "end_time"))
    if row.get("id") is None or start_time is None or end_time is None:
        return None
    return Promotion(
        id=_as_int(row["id"]),
        name=str(row.get("name") or ""),
        type=str(row.get("type") or "automatic"),
        start_time=start_time,
        end_time=end_time,
        usage_count=_as_int(_pick(row, "usageCount", "usage_count")),
        description=str(row.get("description") or ""),
    )


def row_to_user(row: Mapping[str, Any]) -> Optional[User]:
    if row.get("id") is None:
        return None
    return User(
        id=_as_int(row["id"]),
        name=str(row.get("name") or ""),
        utorid=str(row.get("utorid") or ""),
        points=_as_int(row.get("points")),
        verified=bool(row.get("verified", False)),
        role=row.get("role"),
        suspicious=bool(row.get("suspicious", False)),
        created_at=_parse_datetime(_pick(row, "createdAt", "created_at")),
    )


ROW_CONVERTERS: Dict[str, Callable[[Mapping[str, Any]], Any]] = {
    "my_transactions": row_to_transaction,
    "transactions": row_to_transaction,
    "redemptions": row_to_transaction,
    "events": row_to_event,
    "promotions": row_to_promotion,
    "users": row_to_user,
}


class RecordFetcher:
    """
    Interface for loading dashboard records from the points service.

    Implementations only provide :meth:`fetch_page` and
    :meth:`fetch_document`; paging and row conversion are shared. Retries,
    if any, belong to the implementation, never to the aggregation code.
    """

    page_size: int = 100

    async def fetch_page(self, resource: str, *, page: int = 1, limit: int = 10, **filters: Any) -> Page:
        raise NotImplementedError

    async def fetch_document(self, resource: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def fetch_all(self, resource: str, **filters: Any) -> List[Any]:
        """
        Drain every page of ``resource`` and convert the rows to records.

        Stops when ``count`` rows have been seen or the service returns a
        short page. Rows that cannot be converted are skipped with a warning.
        """

        converter = ROW_CONVERTERS.get(resource)
        if converter is None:
            raise FetchError(f"Unknown resource: {resource}", resource=resource)

        records: List[Any] = []
        seen = 0
        page_number = 1
        while True:
            page = await self.fetch_page(resource, page=page_number, limit=self.page_size, **filters)
            for row in page.results:
                record = converter(row) if isinstance(row, Mapping) else row
                if record is None:
                    logger.warning("Skipping malformed %s row: %s", resource, row)
                    continue
                records.append(record)
            seen += len(page.results)
            if seen >= page.count or len(page.results) < self.page_size or not page.results:
                break
            page_number += 1
        return records

    async def count(self, resource: str, **filters: Any) -> int:
        page = await self.fetch_page(resource, page=1, limit=1, **filters)
        return page.count


class HTTPRecordFetcher(RecordFetcher):
    """
    Talk to the points service over HTTP.

    ``requests`` is blocking, so every call runs in a worker thread to keep
    the event loop free while the manager facets fetch concurrently.
    """

    def __init__(self, config: FetcherConfig, session: Optional[requests.Session] = None):
        if not config.base_url:
            raise FetchError("POINTS_API_URL is not configured")
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.page_size = config.page_size
        self.session = session or make_session(config)

    async def fetch_page(self, resource: str, *, page: int = 1, limit: int = 10, **filters: Any) -> Page:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        for key, value in filters.items():
            params[key] = str(value).lower() if isinstance(value, bool) else value
        payload = await asyncio.to_thread(self._get_json, resource, params)
        if not isinstance(payload, Mapping) or "results" not in payload:
            raise FetchError(f"Unexpected payload for {resource}", resource=resource)
        results = payload.get("results") or []
        return Page(results=list(results), count=_as_int(payload.get("count"), default=len(results)))

    async def fetch_document(self, resource: str) -> Optional[Dict[str, Any]]:
        payload = await asyncio.to_thread(self._get_json, resource, None)
        return dict(payload) if isinstance(payload, Mapping) else None

    def _get_json(self, resource: str, params: Optional[Dict[str, Any]]) -> Any:
        endpoint = RESOURCE_ENDPOINTS.get(resource)
        if endpoint is None:
            raise FetchError(f"Unknown resource: {resource}", resource=resource)
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.get(url, params=params, timeout=self.config.timeout_seconds)
        except requests.RequestException as exc:
            raise FetchError(f"Request to {url} failed: {exc}", resource=resource) from exc
        if not (200 <= response.status_code < 300):
            raise FetchError(
                f"{url} answered HTTP {response.status_code}: {response.text[:200]}",
                resource=resource,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(f"{url} did not return JSON", resource=resource) from exc


def make_session(config: FetcherConfig) -> requests.Session:
    """
    Create a session with the bearer token and a retry adapter for
    connection errors, 429 and 5xx answers.
    """

    session = requests.Session()
    session.headers.update({"Content-Type": "application/json"})
    if config.token:
        session.headers["Authorization"] = f"Bearer {config.token}"
    retry = Retry(
        total=config.max_retries,
        connect=config.max_retries,
        read=config.max_retries,
        status=config.max_retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


@dataclass
class InMemoryRecordFetcher(RecordFetcher):
    """
    Serve records that are already loaded, e.g. posted inline to the API.

    Supports the same paging and the filters the dashboard uses
    (``processed`` on redemptions). ``failures`` maps a resource to an
    exception raised whenever that resource is queried.
    """

    transactions: Sequence[Transaction] = ()
    events: Sequence[Event] = ()
    promotions: Sequence[Promotion] = ()
    users: Sequence[User] = ()
    cashier_stats: Optional[Dict[str, Any]] = None
    page_size: int = 100
    failures: Dict[str, BaseException] = field(default_factory=dict)
    calls: List[str] = field(default_factory=list)

    def _records_for(self, resource: str, filters: Mapping[str, Any]) -> List[Any]:
        if resource in ("my_transactions", "transactions"):
            return list(self.transactions)
        if resource == "redemptions":
            redemptions = [tx for tx in self.transactions if tx.type == "redemption"]
            if "processed" in filters:
                redemptions = [tx for tx in redemptions if tx.processed == bool(filters["processed"])]
            return redemptions
        if resource == "events":
            return list(self.events)
        if resource == "promotions":
            return list(self.promotions)
        if resource == "users":
            return list(self.users)
        raise FetchError(f"Unknown resource: {resource}", resource=resource)

    async def fetch_page(self, resource: str, *, page: int = 1, limit: int = 10, **filters: Any) -> Page:
        self.calls.append(resource)
        if resource in self.failures:
            raise self.failures[resource]
        records = self._records_for(resource, filters)
        offset = (page - 1) * limit
        return Page(results=records[offset:offset + limit], count=len(records))

    async def fetch_document(self, resource: str) -> Optional[Dict[str, Any]]:
        self.calls.append(resource)
        if resource in self.failures:
            raise self.failures[resource]
        if resource == "cashier_stats":
            return self.cashier_stats
        raise FetchError(f"Unknown resource: {resource}", resource=resource)


def build_fetcher_from_config(config: FetcherConfig) -> Optional[RecordFetcher]:
    if config.base_url:
        return HTTPRecordFetcher(config)
    return None
