from __future__ import annotations

from collections.abc import Sequence

from .geometry import haversine_m, project_onto_segment
from .models import RouteMatch, RoutePoint


def match_position(points: Sequence[RoutePoint], lat: float, lon: float) -> RouteMatch | None:
    """Snap a live position to the nearest point on the route polyline.

    Uses clamped projection onto every edge, so a position beyond either end of
    an edge matches that edge's endpoint. Progress is by vertex index:
    ``(edge_index + fraction_along_edge) / (N - 1)``.
    """
    n = len(points)
    if n < 2:
        return None

    best_distance = float("inf")
    best_index = 0
    best_t = 0.0
    best_lat = points[0].lat
    best_lon = points[0].lon

    for idx in range(n - 1):
        a = points[idx]
        b = points[idx + 1]
        distance_m, t, p_lat, p_lon = project_onto_segment(lat, lon, a.lat, a.lon, b.lat, b.lon)
        if distance_m < best_distance:
            best_distance = distance_m
            best_index = idx
            best_t = t
            best_lat = p_lat
            best_lon = p_lon

    progress = (best_index / (n - 1)) + (best_t / (n - 1))
    return RouteMatch(
        distance_m=best_distance,
        segment_index=best_index,
        matched_point=RoutePoint(lat=best_lat, lon=best_lon),
        fraction=max(0.0, min(1.0, best_t)),
        progress=max(0.0, min(1.0, progress)),
    )


def distance_along_m(
    points: Sequence[RoutePoint],
    match: RouteMatch,
    to_index: int | None = None,
) -> float:
    """Along-route distance from the matched point to vertex `to_index` (default: the end).

    Returns 0 when the target vertex is at or behind the matched edge start.
    """
    if len(points) < 2:
        return 0.0
    last = len(points) - 1
    target = last if to_index is None else max(0, min(int(to_index), last))
    next_idx = match.segment_index + 1
    if target < next_idx:
        return 0.0

    here = match.matched_point
    nxt = points[next_idx]
    total = haversine_m(here.lat, here.lon, nxt.lat, nxt.lon)
    for idx in range(next_idx, target):
        a = points[idx]
        b = points[idx + 1]
        total += haversine_m(a.lat, a.lon, b.lat, b.lon)
    return total


def polyline_length_m(points: Sequence[RoutePoint]) -> float:
    total = 0.0
    for idx in range(1, len(points)):
        a = points[idx - 1]
        b = points[idx]
        total += haversine_m(a.lat, a.lon, b.lat, b.lon)
    return total
