"""Domain-specific exceptions for the points dashboard.

All exceptions inherit from DashboardError so callers can catch any
dashboard failure in one place.
"""

from __future__ import annotations

from typing import Optional


class DashboardError(Exception):
    """Base exception for all points dashboard errors."""

    pass


class ConfigError(DashboardError):
    """Raised when there is a configuration error.

    This exception is raised when:
    - An unknown timezone, role or join policy is requested
    - Numeric settings are out of range (page size, timeouts)
    """

    pass


class FetchError(DashboardError):
    """Raised when the remote points service cannot be queried.

    This exception is raised when:
    - The network connection fails or times out
    - The service answers with a non-2xx status
    - The response body is not the expected JSON shape
    """

    def __init__(self, message: str, resource: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.resource = resource
        self.status_code = status_code


class FacetError(FetchError):
    """Raised when one manager facet could not be built."""

    def __init__(self, facet: str, cause: BaseException):
        super().__init__(
            f"Facet '{facet}' failed: {cause}",
            resource=getattr(cause, "resource", None),
            status_code=getattr(cause, "status_code", None),
        )
        self.facet = facet
        self.cause = cause


class SnapshotUnavailable(DashboardError):
    """Raised when a render cycle is aborted and no snapshot can be shown.

    The dashboard falls back to its "could not load" state; partial
    snapshots are never produced from an aborted cycle.
    """

    pass
