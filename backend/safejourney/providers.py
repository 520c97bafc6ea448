"""Collaborator contracts and the call-site fallbacks the core applies to them.

Providers may raise whatever they like; the core never lets a collaborator
failure abort a pipeline. Each ``safe_fetch_*`` helper logs the failure and
substitutes the documented default.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from .logging_utils import log_event
from .models import POI, BoundingBox, Incident, RawRoute, TrafficFlowSample


@runtime_checkable
class RoutingProvider(Protocol):
    async def fetch_routes(
        self,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
    ) -> list[RawRoute]: ...


@runtime_checkable
class IncidentFeed(Protocol):
    async def fetch_incidents(self, bbox: BoundingBox) -> list[Incident]: ...


@runtime_checkable
class POISearch(Protocol):
    async def fetch_pois(self, lat: float, lon: float, radius_m: float) -> list[POI]: ...


@runtime_checkable
class TrafficFlowSource(Protocol):
    async def fetch_traffic_flow(self, lat: float, lon: float) -> TrafficFlowSample | None: ...


def _log_fallback(source: str, exc: Exception, **fields: object) -> None:
    log_event(
        "provider_fallback",
        level=logging.WARNING,
        source=source,
        error_type=type(exc).__name__,
        error=str(exc),
        **fields,
    )


async def safe_fetch_routes(
    provider: RoutingProvider | None,
    origin_lat: float,
    origin_lon: float,
    dest_lat: float,
    dest_lon: float,
) -> list[RawRoute]:
    if provider is None:
        return []
    try:
        return list(await provider.fetch_routes(origin_lat, origin_lon, dest_lat, dest_lon))
    except Exception as exc:
        _log_fallback("routing", exc)
        return []


async def safe_fetch_incidents(feed: IncidentFeed | None, bbox: BoundingBox | None) -> list[Incident]:
    if feed is None or bbox is None:
        return []
    try:
        return list(await feed.fetch_incidents(bbox))
    except Exception as exc:
        _log_fallback("incidents", exc)
        return []


async def safe_fetch_pois(search: POISearch | None, lat: float, lon: float, radius_m: float) -> list[POI]:
    if search is None:
        return []
    try:
        return list(await search.fetch_pois(lat, lon, radius_m))
    except Exception as exc:
        _log_fallback("pois", exc)
        return []


async def safe_fetch_traffic_flow(
    source: TrafficFlowSource | None,
    lat: float,
    lon: float,
) -> TrafficFlowSample | None:
    if source is None:
        return None
    try:
        return await source.fetch_traffic_flow(lat, lon)
    except Exception as exc:
        _log_fallback("traffic_flow", exc, lat=round(lat, 5), lon=round(lon, 5))
        return None
