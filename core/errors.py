"""
Error taxonomy for NYC Open Data queries.

Validation failures are not exceptions: validators return tagged results
(see core.validation). The exceptions below cover what can go wrong once a
query is on its way to, or coming back from, the Socrata API.
"""

from typing import Any, Dict, List, Optional


class OpenDataError(Exception):
    """Base class for errors raised by the data layer."""


class UpstreamError(OpenDataError):
    """
    Non-2xx response from the open-data API.

    Attributes:
        status_code: HTTP status returned by Socrata
        payload: Decoded error body when the API sent one
    """

    def __init__(self, status_code: int, message: str, payload: Optional[Any] = None):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.payload = payload

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or 500 <= self.status_code < 600


class TransientFailure(OpenDataError):
    """Network-level failure with no HTTP status (timeout, reset, DNS)."""

    status_code = None


class RateLimitExceeded(OpenDataError):
    """Query parameters exceed a configured hard cap; no request was sent."""

    def __init__(self, violations: List[Dict[str, Any]]):
        params = ", ".join(v["param"] for v in violations)
        super().__init__(f"Hard cap exceeded for: {params}")
        self.violations = violations
