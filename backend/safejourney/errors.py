from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "provider_unavailable",
        "provider_bad_response",
        "routing_no_routes",
        "gps_permission_denied",
        "gps_position_unavailable",
        "gps_timeout",
        "route_unavailable",
        "reroute_attempts_exhausted",
        "reroute_no_routes",
        "reroute_request_failed",
        "internal_error",
    }
)


@dataclass
class SafeJourneyError(Exception):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class ProviderError(SafeJourneyError):
    """A routing, incident, POI or traffic collaborator failed."""


class NavigationError(SafeJourneyError):
    """Terminal for the session (GPS failure or unusable route)."""


class RerouteFailedError(SafeJourneyError):
    """One reroute attempt failed; the coordinator may try again."""


class ReroutingExhaustedError(SafeJourneyError):
    """Max reroute attempts used up. Recoverable: the caller may reset and retry."""


def normalize_reason_code(reason_code: str, *, default: str = "internal_error") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
