from __future__ import annotations

from collections.abc import Iterable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .models import Route, Segment, SegmentFeatures
from .settings import settings


class RiskWeights(BaseModel):
    """Linear segment-risk weights. Defaults sum to 1.0."""

    model_config = ConfigDict(frozen=True)

    lighting: float = Field(default=0.25, ge=0.0)
    incident: float = Field(default=0.25, ge=0.0)
    poi_safety: float = Field(default=0.20, ge=0.0)
    traffic: float = Field(default=0.15, ge=0.0)
    isolation: float = Field(default=0.10, ge=0.0)
    time_of_day: float = Field(default=0.05, ge=0.0)

    @classmethod
    def from_settings(cls) -> "RiskWeights":
        return cls(
            lighting=settings.risk_weight_lighting,
            incident=settings.risk_weight_incident,
            poi_safety=settings.risk_weight_poi_safety,
            traffic=settings.risk_weight_traffic,
            isolation=settings.risk_weight_isolation,
            time_of_day=settings.risk_weight_time_of_day,
        )


def segment_risk(features: SegmentFeatures, weights: RiskWeights | None = None) -> float:
    w = weights if weights is not None else RiskWeights.from_settings()
    raw = (
        (w.lighting * (1.0 - features.lighting))
        + (w.incident * features.incident)
        + (w.poi_safety * (1.0 - features.poi_safety))
        + (w.traffic * features.traffic)
        + (w.isolation * features.isolation)
        + (w.time_of_day * features.time_of_day)
    )
    return max(0.0, min(1.0, raw))


def score_segment(
    segment: Segment,
    features: SegmentFeatures,
    *,
    weights: RiskWeights | None = None,
) -> Segment:
    return segment.model_copy(
        update={"risk_score": segment_risk(features, weights), "features": features}
    )


def route_risk(segments: Iterable[Segment]) -> float:
    """Length-weighted mean segment risk in [0, 1].

    Unscoreable input (no segments, zero total length) is reported as maximum
    risk so it can never rank as the safest option. An unscored segment
    counts as maximum risk for the same reason.
    """
    weighted = 0.0
    total_length = 0.0
    for segment in segments:
        risk = 1.0 if segment.risk_score is None else float(segment.risk_score)
        length = max(0.0, float(segment.length_m))
        weighted += risk * length
        total_length += length
    if total_length <= 0.0:
        return 1.0
    return max(0.0, min(1.0, weighted / total_length))


def rank_routes(routes: Sequence[Route]) -> list[Route]:
    """Ascending by aggregate risk; ties keep provider order."""
    return sorted(routes, key=lambda route: (route.aggregate_risk, route.source_index))
