import os

import pytest

# The server builds its fetcher at import time; keep tests on inline data.
os.environ.pop("POINTS_API_URL", None)
os.environ.pop("DASHBOARD_JOIN_POLICY", None)

from zoneinfo import ZoneInfo  # noqa: E402

from backend.points_dashboard.windows import DateRanges  # noqa: E402
from factories import NOW  # noqa: E402


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def ranges():
    return DateRanges.from_now(NOW, ZoneInfo("UTC"))
