from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import cmp_to_key
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

ASC = "asc"
DESC = "desc"

_NUMERIC_TEXT_RE = re.compile(r"^\s*(-?)\s*[$€£¥]?\s*(-?[\d,]*\.?\d+)\s*(%|[A-Za-z]{1,5})?\s*$")


@dataclass(frozen=True)
class SortColumn:
    """
    How to sort one column. ``accessor`` pulls the value out of a row;
    ``compare`` replaces the default ordering entirely.
    """

    accessor: Optional[Callable[[Any], Any]] = None
    compare: Optional[Callable[[Any, Any], int]] = None


@dataclass(frozen=True)
class SortState:
    key: Optional[str] = None
    direction: str = ASC


def numeric_value(value: Any) -> Optional[float]:
    """
    Numbers, and strings that read as one (``"$1,200.50"``, ``"75%"``,
    ``"100 pts"``), as a float; anything else as ``None``.
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    match = _NUMERIC_TEXT_RE.match(value)
    if match is None:
        return None
    sign, number, _ = match.groups()
    try:
        parsed = float(number.replace(",", ""))
    except ValueError:
        return None
    return -parsed if sign else parsed


def _temporal_value(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and len(value) >= 10 and value[4:5] == "-":
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


def _sign(result: float) -> int:
    return (result > 0) - (result < 0)


def default_compare(a: Any, b: Any) -> int:
    a_num, b_num = numeric_value(a), numeric_value(b)
    if a_num is not None and b_num is not None:
        return _sign(a_num - b_num)

    a_time, b_time = _temporal_value(a), _temporal_value(b)
    if a_time is not None and b_time is not None:
        try:
            return _sign((a_time - b_time).total_seconds())
        except TypeError:
            pass

    a_str, b_str = str(a).lower(), str(b).lower()
    if a_str < b_str:
        return -1
    if a_str > b_str:
        return 1
    return 0


def _cell(row: Any, key: str, column: Optional[SortColumn]) -> Any:
    if column is not None and column.accessor is not None:
        return column.accessor(row)
    if isinstance(row, Mapping):
        return row.get(key)
    return getattr(row, key, None)


def sort_rows(
    rows: Sequence[Any],
    state: SortState,
    columns: Optional[Mapping[str, SortColumn]] = None,
) -> List[Any]:
    """
    Return a sorted copy of ``rows``. Missing values always sort last,
    whatever the direction; equal rows keep their order.
    """

    if state.key is None or not rows:
        return list(rows)
    key = state.key
    column = (columns or {}).get(key)
    flip = -1 if state.direction == DESC else 1

    def compare(a: Any, b: Any) -> int:
        if column is not None and column.compare is not None:
            return flip * column.compare(a, b)
        a_value, b_value = _cell(a, key, column), _cell(b, key, column)
        if a_value is None and b_value is None:
            return 0
        if a_value is None:
            return 1
        if b_value is None:
            return -1
        return flip * default_compare(a_value, b_value)

    return sorted(rows, key=cmp_to_key(compare))


@dataclass
class TableSorter:
    """
    Sort state for one table. Selecting the active column again flips the
    direction; selecting another column starts ascending.
    """

    columns: Dict[str, SortColumn] = field(default_factory=dict)
    manual: bool = False
    state: SortState = field(default_factory=SortState)

    def sort(self, key: str) -> SortState:
        if self.state.key == key:
            direction = DESC if self.state.direction == ASC else ASC
            self.state = SortState(key=key, direction=direction)
        else:
            self.state = SortState(key=key, direction=ASC)
        return self.state

    def apply(self, rows: Sequence[Any]) -> List[Any]:
        """Rows in display order; with ``manual`` the caller already sorted them."""

        if self.manual:
            return list(rows)
        return sort_rows(rows, self.state, self.columns)
