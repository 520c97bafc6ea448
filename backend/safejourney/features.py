from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from .geometry import haversine_m
from .models import POI, Incident, RoutePoint, Segment, SegmentFeatures, TrafficFlowSample
from .settings import settings
from .time_of_day import time_of_day_score


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _near_segment(segment: Segment, point: RoutePoint, radius_m: float) -> bool:
    return (
        haversine_m(segment.start.lat, segment.start.lon, point.lat, point.lon) < radius_m
        or haversine_m(segment.end.lat, segment.end.lon, point.lat, point.lon) < radius_m
    )


def nearby_poi_count(segment: Segment, pois: Iterable[POI] | None, *, radius_m: float | None = None) -> int:
    if not pois:
        return 0
    radius = float(radius_m if radius_m is not None else settings.poi_search_radius_m)
    return sum(1 for poi in pois if _near_segment(segment, poi.position, radius))


def poi_safety_score(segment: Segment, pois: Sequence[POI] | None) -> float:
    """More POIs around the segment means safer; saturates at POI_SATURATION_COUNT."""
    count = nearby_poi_count(segment, pois)
    return min(count / float(settings.poi_saturation_count), 1.0)


def lighting_score(segment: Segment, pois: Sequence[POI] | None) -> float:
    # No street-lighting feed; POI density stands in for it.
    return poi_safety_score(segment, pois)


def isolation_score(segment: Segment, pois: Sequence[POI] | None) -> float:
    return 1.0 - poi_safety_score(segment, pois)


def incident_score(segment: Segment, incidents: Sequence[Incident] | None) -> float:
    if not incidents:
        return 0.0
    radius = settings.incident_search_radius_m
    total_severity = 0
    count = 0
    for incident in incidents:
        if _near_segment(segment, incident.position, radius):
            total_severity += int(incident.severity)
            count += 1
    if count == 0:
        return 0.0
    return _clamp01(total_severity / float(count * settings.incident_max_severity))


def traffic_flow_score(sample: TrafficFlowSample | None) -> float:
    """Speed depression relative to free flow; slower traffic scores riskier."""
    if sample is None or not sample.current_speed:
        return settings.traffic_default_score
    free_flow = sample.free_flow_speed or settings.traffic_default_free_flow_kph
    return _clamp01(max(0.0, 1.0 - (float(sample.current_speed) / float(free_flow))))


def extract_features(
    segment: Segment,
    *,
    incidents: Sequence[Incident] | None = None,
    pois: Sequence[POI] | None = None,
    flow: TrafficFlowSample | None = None,
    now: datetime | None = None,
    time_score: float | None = None,
) -> SegmentFeatures:
    return SegmentFeatures(
        lighting=lighting_score(segment, pois),
        incident=incident_score(segment, incidents),
        poi_safety=poi_safety_score(segment, pois),
        traffic=traffic_flow_score(flow),
        isolation=isolation_score(segment, pois),
        time_of_day=time_score if time_score is not None else time_of_day_score(now),
    )
