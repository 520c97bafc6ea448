from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class RoutePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lon)


class BoundingBox(BaseModel):
    min_lat: float = Field(..., ge=-90, le=90)
    min_lon: float = Field(..., ge=-180, le=180)
    max_lat: float = Field(..., ge=-90, le=90)
    max_lon: float = Field(..., ge=-180, le=180)

    @property
    def center(self) -> RoutePoint:
        return RoutePoint(
            lat=(self.min_lat + self.max_lat) / 2.0,
            lon=(self.min_lon + self.max_lon) / 2.0,
        )


class SegmentFeatures(BaseModel):
    """Per-extractor scores behind one segment risk, all in [0, 1]."""

    model_config = ConfigDict(frozen=True)

    lighting: float = Field(..., ge=0.0, le=1.0)
    incident: float = Field(..., ge=0.0, le=1.0)
    poi_safety: float = Field(..., ge=0.0, le=1.0)
    traffic: float = Field(..., ge=0.0, le=1.0)
    isolation: float = Field(..., ge=0.0, le=1.0)
    time_of_day: float = Field(..., ge=0.0, le=1.0)


class Segment(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: RoutePoint
    end: RoutePoint
    length_m: float = Field(..., ge=0.0)
    risk_score: float | None = Field(default=None, ge=0.0, le=1.0)
    features: SegmentFeatures | None = None

    @property
    def midpoint(self) -> RoutePoint:
        return RoutePoint(
            lat=(self.start.lat + self.end.lat) / 2.0,
            lon=(self.start.lon + self.end.lon) / 2.0,
        )


class RouteSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    distance_m: float = Field(default=0.0, ge=0.0)
    duration_s: float = Field(default=0.0, ge=0.0)


class Route(BaseModel):
    """A scored route. `aggregate_risk` is always derived from `segments`."""

    model_config = ConfigDict(frozen=True)

    segments: tuple[Segment, ...] = ()
    points: tuple[RoutePoint, ...] = ()
    summary: RouteSummary = Field(default_factory=RouteSummary)
    source_index: int = Field(default=0, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def aggregate_risk(self) -> float:
        from .risk_model import route_risk

        return route_risk(self.segments)

    def navigation_points(self) -> tuple[RoutePoint, ...]:
        if self.points:
            return self.points
        if not self.segments:
            return ()
        return (self.segments[0].start, *(seg.end for seg in self.segments))


class RawRoute(BaseModel):
    """A provider route before scoring; geometry may be any accepted shape."""

    distance_m: float = Field(default=0.0, ge=0.0)
    duration_s: float = Field(default=0.0, ge=0.0)
    geometry: Any = None


class Incident(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: RoutePoint
    severity: int = Field(default=1, ge=1, le=4)
    description: str | None = None


class POI(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: RoutePoint
    category: str = "unknown"
    name: str | None = None


class TrafficFlowSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_speed: float | None = Field(default=None, ge=0.0)
    free_flow_speed: float | None = Field(default=None, ge=0.0)


class NavigationState(str, Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    REROUTING = "rerouting"
    ARRIVED = "arrived"
    ERROR = "error"


TERMINAL_STATES: frozenset[NavigationState] = frozenset({NavigationState.ARRIVED, NavigationState.ERROR})


class InstructionType(str, Enum):
    START = "start"
    CONTINUE = "continue"
    TURN_LEFT = "turn-left"
    TURN_RIGHT = "turn-right"
    U_TURN = "u-turn"
    ARRIVE = "arrive"


class Instruction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: InstructionType
    anchor: RoutePoint
    point_index: int = Field(..., ge=0)
    distance_m: float = Field(default=0.0, ge=0.0)
    text: str
    angle_deg: float | None = None


class RouteMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    distance_m: float = Field(..., ge=0.0)
    segment_index: int = Field(..., ge=0)
    matched_point: RoutePoint
    fraction: float = Field(default=0.0, ge=0.0, le=1.0)
    progress: float = Field(..., ge=0.0, le=1.0)


class GpsErrorReason(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"


class GpsFix(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0.0)
    timestamp: datetime | None = None


class NavigationUpdate(BaseModel):
    state: NavigationState
    deviated: bool = False
    needs_reroute: bool = False
    distance_from_route_m: float | None = None
    instruction: Instruction | None = None
    distance_to_instruction_m: float | None = None
    distance_remaining_m: float = 0.0
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    error: str | None = None


class SafeRoutesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    safest_route_index: int = Field(alias="safestRouteIndex")
    routes: list[Route]


class InstructionsRequest(BaseModel):
    points: list[RoutePoint] | None = None
    geometry: Any = None


class InstructionsResponse(BaseModel):
    instructions: list[Instruction]


class RerouteResponse(BaseModel):
    route: Route
