from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _running_in_docker() -> bool:
    """Best-effort check for container execution.

    Used only to pick sensible defaults. Environment variables always win.
    """
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_osrm_base_url() -> str:
    # The public OSRM demo server is the fallback when no local OSRM is configured.
    return "http://osrm:5000" if _running_in_docker() else "https://router.project-osrm.org"


def _default_out_dir() -> str:
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping tuning constants out of code."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    osrm_base_url: str = Field(default_factory=_default_osrm_base_url, alias="OSRM_BASE_URL")
    osrm_profile: str = Field(default="driving", alias="OSRM_PROFILE")
    tomtom_api_key: str = Field(default="", alias="TOMTOM_API_KEY")
    tomtom_base_url: str = Field(default="https://api.tomtom.com", alias="TOMTOM_BASE_URL")
    overpass_url: str = Field(
        default="https://overpass-api.de/api/interpreter",
        alias="OVERPASS_URL",
    )
    provider_timeout_s: float = Field(default=15.0, ge=1.0, le=120.0, alias="PROVIDER_TIMEOUT_S")
    user_agent: str = Field(default="SafeJourneyApp/1.0", alias="USER_AGENT")

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Segment risk weights. Hand-tuned; kept transparent so each score is explainable.
    risk_weight_lighting: float = Field(default=0.25, ge=0.0, alias="RISK_WEIGHT_LIGHTING")
    risk_weight_incident: float = Field(default=0.25, ge=0.0, alias="RISK_WEIGHT_INCIDENT")
    risk_weight_poi_safety: float = Field(default=0.20, ge=0.0, alias="RISK_WEIGHT_POI_SAFETY")
    risk_weight_traffic: float = Field(default=0.15, ge=0.0, alias="RISK_WEIGHT_TRAFFIC")
    risk_weight_isolation: float = Field(default=0.10, ge=0.0, alias="RISK_WEIGHT_ISOLATION")
    risk_weight_time_of_day: float = Field(default=0.05, ge=0.0, alias="RISK_WEIGHT_TIME_OF_DAY")

    # Feature extractor constants
    segment_target_m: float = Field(default=50.0, gt=0.0, alias="SEGMENT_TARGET_M")
    poi_search_radius_m: float = Field(default=200.0, gt=0.0, alias="POI_SEARCH_RADIUS_M")
    poi_saturation_count: int = Field(default=10, ge=1, alias="POI_SATURATION_COUNT")
    incident_search_radius_m: float = Field(default=100.0, gt=0.0, alias="INCIDENT_SEARCH_RADIUS_M")
    incident_max_severity: int = Field(default=4, ge=1, alias="INCIDENT_MAX_SEVERITY")
    traffic_default_score: float = Field(default=0.5, ge=0.0, le=1.0, alias="TRAFFIC_DEFAULT_SCORE")
    traffic_default_free_flow_kph: float = Field(default=60.0, gt=0.0, alias="TRAFFIC_DEFAULT_FREE_FLOW_KPH")
    night_after_hour: int = Field(default=20, ge=0, le=23, alias="NIGHT_AFTER_HOUR")
    night_before_hour: int = Field(default=5, ge=0, le=23, alias="NIGHT_BEFORE_HOUR")
    night_score: float = Field(default=0.8, ge=0.0, le=1.0, alias="NIGHT_SCORE")
    day_score: float = Field(default=0.2, ge=0.0, le=1.0, alias="DAY_SCORE")

    # Scoring request controls
    traffic_flow_concurrency: int = Field(default=8, ge=1, le=64, alias="TRAFFIC_FLOW_CONCURRENCY")
    poi_max_radius_m: float = Field(default=5000.0, gt=0.0, alias="POI_MAX_RADIUS_M")

    # Navigation thresholds
    deviation_threshold_m: float = Field(default=50.0, gt=0.0, alias="DEVIATION_THRESHOLD_M")
    arrival_threshold_m: float = Field(default=30.0, gt=0.0, alias="ARRIVAL_THRESHOLD_M")
    route_start_leniency_m: float = Field(default=200.0, ge=0.0, alias="ROUTE_START_LENIENCY_M")
    turn_min_angle_deg: float = Field(default=15.0, ge=0.0, le=180.0, alias="TURN_MIN_ANGLE_DEG")
    uturn_min_angle_deg: float = Field(default=165.0, ge=0.0, le=180.0, alias="UTURN_MIN_ANGLE_DEG")

    # Rerouting
    reroute_debounce_s: float = Field(default=2.0, ge=0.0, alias="REROUTE_DEBOUNCE_S")
    reroute_max_attempts: int = Field(default=3, ge=1, le=20, alias="REROUTE_MAX_ATTEMPTS")

    @model_validator(mode="after")
    def _check_turn_angles(self) -> "Settings":
        if self.uturn_min_angle_deg <= self.turn_min_angle_deg:
            raise ValueError("UTURN_MIN_ANGLE_DEG must exceed TURN_MIN_ANGLE_DEG")
        return self


settings = Settings()
