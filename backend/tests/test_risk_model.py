from __future__ import annotations

from datetime import datetime

import pytest

from safejourney.features import (
    extract_features,
    incident_score,
    nearby_poi_count,
    traffic_flow_score,
)
from safejourney.geometry import destination_point
from safejourney.models import POI, Incident, Route, RoutePoint, Segment, SegmentFeatures, TrafficFlowSample
from safejourney.risk_model import RiskWeights, rank_routes, route_risk, score_segment, segment_risk
from safejourney.time_of_day import is_night, time_of_day_score

START = RoutePoint(lat=51.5, lon=-0.1)
_END_LAT, _END_LON = destination_point(START.lat, START.lon, 90.0, 100.0)
SEGMENT = Segment(start=START, end=RoutePoint(lat=_END_LAT, lon=_END_LON), length_m=100.0)


def _pois(count: int, *, offset_m: float = 20.0) -> list[POI]:
    lat, lon = destination_point(START.lat, START.lon, 0.0, offset_m)
    return [POI(position=RoutePoint(lat=lat, lon=lon), category="police") for _ in range(count)]


def _scored(length_m: float, risk: float | None) -> Segment:
    return Segment(start=START, end=SEGMENT.end, length_m=length_m, risk_score=risk)


def test_segment_without_context_uses_neutral_defaults() -> None:
    features = extract_features(SEGMENT, time_score=0.2)
    assert features == SegmentFeatures(
        lighting=0.0, incident=0.0, poi_safety=0.0, traffic=0.5, isolation=1.0, time_of_day=0.2
    )
    # 0.25 (dark) + 0.20 (no POIs) + 0.15 * 0.5 (unknown traffic) + 0.10 (isolated) + 0.05 * 0.2
    assert segment_risk(features, RiskWeights()) == pytest.approx(0.635)


def test_more_pois_lower_risk() -> None:
    none = segment_risk(extract_features(SEGMENT, pois=[], time_score=0.2), RiskWeights())
    some = segment_risk(extract_features(SEGMENT, pois=_pois(5), time_score=0.2), RiskWeights())
    many = segment_risk(extract_features(SEGMENT, pois=_pois(10), time_score=0.2), RiskWeights())
    assert many < some < none
    assert some == pytest.approx(0.36)
    assert many == pytest.approx(0.085)


def test_poi_radius_is_strict_and_measured_from_either_endpoint() -> None:
    assert nearby_poi_count(SEGMENT, _pois(3, offset_m=150.0)) == 3
    assert nearby_poi_count(SEGMENT, _pois(3, offset_m=250.0)) == 0
    end_lat, end_lon = destination_point(SEGMENT.end.lat, SEGMENT.end.lon, 90.0, 150.0)
    near_end = [POI(position=RoutePoint(lat=end_lat, lon=end_lon), category="hospital")]
    assert nearby_poi_count(SEGMENT, near_end) == 1


def test_incident_score_averages_nearby_severity() -> None:
    near = RoutePoint(lat=START.lat, lon=START.lon)
    lat, lon = destination_point(START.lat, START.lon, 0.0, 500.0)
    far = RoutePoint(lat=lat, lon=lon)
    incidents = [
        Incident(position=near, severity=4),
        Incident(position=near, severity=2),
        Incident(position=far, severity=4),
    ]
    assert incident_score(SEGMENT, incidents) == pytest.approx(0.75)
    assert incident_score(SEGMENT, [Incident(position=far, severity=4)]) == 0.0
    assert incident_score(SEGMENT, None) == 0.0


@pytest.mark.parametrize(
    ("sample", "expected"),
    [
        (None, 0.5),
        (TrafficFlowSample(current_speed=0.0, free_flow_speed=60.0), 0.5),
        (TrafficFlowSample(current_speed=None, free_flow_speed=60.0), 0.5),
        (TrafficFlowSample(current_speed=30.0, free_flow_speed=60.0), 0.5),
        (TrafficFlowSample(current_speed=45.0, free_flow_speed=None), 0.25),
        (TrafficFlowSample(current_speed=80.0, free_flow_speed=60.0), 0.0),
    ],
)
def test_traffic_flow_score(sample: TrafficFlowSample | None, expected: float) -> None:
    assert traffic_flow_score(sample) == pytest.approx(expected)


def test_segment_risk_is_clamped_to_unit_interval() -> None:
    heavy = RiskWeights(lighting=1, incident=1, poi_safety=1, traffic=1, isolation=1, time_of_day=1)
    worst = SegmentFeatures(lighting=0, incident=1, poi_safety=0, traffic=1, isolation=1, time_of_day=1)
    best = SegmentFeatures(lighting=1, incident=0, poi_safety=1, traffic=0, isolation=0, time_of_day=0)
    assert segment_risk(worst, heavy) == 1.0
    assert segment_risk(best, heavy) == 0.0


def test_score_segment_attaches_features() -> None:
    features = extract_features(SEGMENT, time_score=0.8)
    scored = score_segment(SEGMENT, features, weights=RiskWeights())
    assert scored.features == features
    assert scored.risk_score == pytest.approx(0.665)
    assert SEGMENT.risk_score is None


def test_route_risk_is_length_weighted() -> None:
    assert route_risk([_scored(100.0, 0.2), _scored(300.0, 0.6)]) == pytest.approx(0.5)


def test_route_risk_unscoreable_is_maximum() -> None:
    assert route_risk([]) == 1.0
    assert route_risk([_scored(0.0, 0.1)]) == 1.0
    assert route_risk([_scored(100.0, None), _scored(100.0, 0.0)]) == pytest.approx(0.5)


def test_aggregate_risk_is_derived_from_segments() -> None:
    route = Route(segments=(_scored(100.0, 0.2), _scored(300.0, 0.6)))
    assert route.aggregate_risk == pytest.approx(0.5)
    assert Route().aggregate_risk == 1.0


def test_rank_routes_ascending_and_stable_for_ties() -> None:
    safe = Route(segments=(_scored(100.0, 0.1),), source_index=2)
    tie_a = Route(segments=(_scored(100.0, 0.4),), source_index=0)
    tie_b = Route(segments=(_scored(100.0, 0.4),), source_index=1)
    empty = Route(source_index=3)
    ranked = rank_routes([empty, tie_b, safe, tie_a])
    assert [r.source_index for r in ranked] == [2, 0, 1, 3]


@pytest.mark.parametrize(
    ("hour", "night"),
    [(0, True), (4, True), (5, False), (12, False), (20, False), (21, True), (23, True)],
)
def test_night_bands(hour: int, night: bool) -> None:
    assert is_night(hour) is night
    expected = 0.8 if night else 0.2
    assert time_of_day_score(datetime(2024, 3, 1, hour, 30)) == expected
