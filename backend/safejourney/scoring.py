from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable, Sequence
from datetime import datetime

from .features import extract_features
from .flow_cache import TrafficFlowCache
from .logging_utils import log_event
from .models import POI, Incident, RawRoute, Route, RouteSummary, TrafficFlowSample
from .providers import TrafficFlowSource, safe_fetch_traffic_flow
from .risk_model import RiskWeights, rank_routes, score_segment
from .route_geometry import normalize_geometry
from .segmenter import split_into_segments, total_length_m
from .settings import settings
from .time_of_day import time_of_day_score

FlowLookup = Callable[[float, float], TrafficFlowSample | None]


def _half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def route_signature(raw: RawRoute) -> str:
    # Alternatives that differ by <100 m and <10 s are the same route for the traveler.
    return f"{_half_up(raw.distance_m / 100.0)}_{_half_up(raw.duration_s / 10.0)}"


def dedupe_raw_routes(raw_routes: Sequence[RawRoute]) -> list[RawRoute]:
    seen: set[str] = set()
    unique: list[RawRoute] = []
    for raw in raw_routes:
        sig = route_signature(raw)
        if sig in seen:
            continue
        seen.add(sig)
        unique.append(raw)
    return unique


def build_route(
    raw: RawRoute,
    *,
    incidents: Sequence[Incident] | None = None,
    pois: Sequence[POI] | None = None,
    flow_lookup: FlowLookup | None = None,
    time_score: float | None = None,
    now: datetime | None = None,
    weights: RiskWeights | None = None,
    source_index: int = 0,
) -> Route:
    """Normalise, segment and score one route synchronously.

    Flow samples must already be resolved; `flow_lookup` is only read here.
    """
    points = normalize_geometry(raw.geometry)
    segments = split_into_segments(points)
    tod = time_score if time_score is not None else time_of_day_score(now)
    w = weights if weights is not None else RiskWeights.from_settings()

    scored = []
    for segment in segments:
        mid = segment.midpoint
        flow = flow_lookup(mid.lat, mid.lon) if flow_lookup is not None else None
        features = extract_features(
            segment,
            incidents=incidents,
            pois=pois,
            flow=flow,
            time_score=tod,
        )
        scored.append(score_segment(segment, features, weights=w))

    distance_m = raw.distance_m if raw.distance_m > 0 else total_length_m(scored)
    return Route(
        segments=tuple(scored),
        points=points,
        summary=RouteSummary(distance_m=distance_m, duration_s=raw.duration_s),
        source_index=source_index,
    )


async def _prefetch_flows(
    raw_routes: Sequence[RawRoute],
    cache: TrafficFlowCache,
) -> None:
    midpoints: list[tuple[float, float]] = []
    for raw in raw_routes:
        for segment in split_into_segments(normalize_geometry(raw.geometry)):
            mid = segment.midpoint
            midpoints.append((mid.lat, mid.lon))
    if not midpoints:
        return

    sem = asyncio.Semaphore(max(1, int(settings.traffic_flow_concurrency)))

    async def _one(lat: float, lon: float) -> None:
        async with sem:
            await cache.get(lat, lon)

    await asyncio.gather(*(_one(lat, lon) for lat, lon in midpoints))


async def score_routes(
    raw_routes: Sequence[RawRoute],
    incidents: Sequence[Incident] | None,
    pois: Sequence[POI] | None,
    *,
    traffic: TrafficFlowSource | None = None,
    now: datetime | None = None,
    weights: RiskWeights | None = None,
) -> list[Route]:
    """Score every raw route and return them safest first.

    Traffic flow for segment midpoints is fetched concurrently through a cache
    that lives only for this call. Routes whose geometry cannot be used still
    come back, scored at maximum risk.
    """
    started = time.perf_counter()
    incident_list = list(incidents or [])
    poi_list = list(pois or [])
    tod = time_of_day_score(now)
    w = weights if weights is not None else RiskWeights.from_settings()

    cache = TrafficFlowCache(lambda lat, lon: safe_fetch_traffic_flow(traffic, lat, lon))
    if traffic is not None:
        await _prefetch_flows(raw_routes, cache)

    routes = [
        build_route(
            raw,
            incidents=incident_list,
            pois=poi_list,
            flow_lookup=cache.peek,
            time_score=tod,
            weights=w,
            source_index=idx,
        )
        for idx, raw in enumerate(raw_routes)
    ]
    ranked = rank_routes(routes)

    log_event(
        "routes_scored",
        route_count=len(ranked),
        unscoreable_routes=sum(1 for route in ranked if not route.segments),
        segment_count=sum(len(route.segments) for route in ranked),
        incident_count=len(incident_list),
        poi_count=len(poi_list),
        time_of_day_score=tod,
        flow_cache=cache.snapshot(),
        risks=[round(route.aggregate_risk, 4) for route in ranked],
        elapsed_ms=round((time.perf_counter() - started) * 1000.0, 2),
    )
    return ranked
