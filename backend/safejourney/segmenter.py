from __future__ import annotations

from collections.abc import Sequence

from .geometry import haversine_m
from .models import RoutePoint, Segment
from .settings import settings


def split_into_segments(
    points: Sequence[RoutePoint],
    *,
    target_m: float | None = None,
) -> list[Segment]:
    """Walk the polyline and close a segment each time the running length reaches the target.

    A segment always ends on an input vertex, so sparse input yields segments
    longer than the target rather than zero-length ones. The trailing partial
    segment is closed at the last point whatever its length.
    """
    if len(points) < 2:
        return []

    target = float(target_m if target_m is not None else settings.segment_target_m)
    segments: list[Segment] = []
    start = points[0]
    running_m = 0.0
    last_idx = len(points) - 1

    for idx in range(1, len(points)):
        prev = points[idx - 1]
        current = points[idx]
        running_m += haversine_m(prev.lat, prev.lon, current.lat, current.lon)
        if running_m >= target or idx == last_idx:
            segments.append(Segment(start=start, end=current, length_m=running_m))
            start = current
            running_m = 0.0

    return segments


def total_length_m(segments: Sequence[Segment]) -> float:
    return sum(seg.length_m for seg in segments)
