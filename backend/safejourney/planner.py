from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime

from .geometry import bounding_box, haversine_m
from .logging_utils import log_event
from .models import BoundingBox, RawRoute, Route
from .providers import (
    IncidentFeed,
    POISearch,
    RoutingProvider,
    TrafficFlowSource,
    safe_fetch_incidents,
    safe_fetch_pois,
    safe_fetch_routes,
)
from .route_geometry import normalize_geometry
from .scoring import dedupe_raw_routes, score_routes
from .settings import settings


def routes_bounding_box(raw_routes: Sequence[RawRoute]) -> BoundingBox | None:
    bounds = bounding_box(
        point.as_tuple() for raw in raw_routes for point in normalize_geometry(raw.geometry)
    )
    if bounds is None:
        return None
    min_lat, min_lon, max_lat, max_lon = bounds
    return BoundingBox(min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon)


def poi_search_radius_m(bbox: BoundingBox) -> float:
    """Radius around the bbox centre that covers the whole box plus the POI match radius."""
    center = bbox.center
    half_diagonal = haversine_m(center.lat, center.lon, bbox.max_lat, bbox.max_lon)
    return min(half_diagonal + settings.poi_search_radius_m, settings.poi_max_radius_m)


class RoutePlanner:
    """Fetches candidate routes plus risk context and returns them scored, safest first.

    Every collaborator is optional and every collaborator failure degrades to
    its default, so the only way to get no routes is for routing itself to
    come back empty.
    """

    def __init__(
        self,
        *,
        routing: RoutingProvider | None,
        incidents: IncidentFeed | None = None,
        pois: POISearch | None = None,
        traffic: TrafficFlowSource | None = None,
    ) -> None:
        self.routing = routing
        self.incidents = incidents
        self.pois = pois
        self.traffic = traffic

    async def plan(
        self,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
        *,
        now: datetime | None = None,
    ) -> list[Route]:
        raw_routes = await safe_fetch_routes(self.routing, origin_lat, origin_lon, dest_lat, dest_lon)
        if not raw_routes:
            log_event("plan_no_routes", origin_lat=origin_lat, origin_lon=origin_lon)
            return []

        unique = dedupe_raw_routes(raw_routes)
        bbox = routes_bounding_box(unique)
        if bbox is None:
            incidents, pois = [], []
        else:
            center = bbox.center
            incidents, pois = await asyncio.gather(
                safe_fetch_incidents(self.incidents, bbox),
                safe_fetch_pois(self.pois, center.lat, center.lon, poi_search_radius_m(bbox)),
            )

        log_event(
            "plan_context",
            raw_route_count=len(raw_routes),
            unique_route_count=len(unique),
            incident_count=len(incidents),
            poi_count=len(pois),
        )
        return await score_routes(unique, incidents, pois, traffic=self.traffic, now=now)

    async def request_routes(
        self,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
    ) -> list[Route]:
        return await self.plan(origin_lat, origin_lon, dest_lat, dest_lon)
