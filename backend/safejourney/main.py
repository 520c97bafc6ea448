from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from .errors import SafeJourneyError
from .instructions import generate_instructions
from .live_data_sources import OverpassPOIClient, TomTomTrafficClient
from .logging_utils import log_event
from .models import (
    InstructionsRequest,
    InstructionsResponse,
    RerouteResponse,
    Route,
    SafeRoutesResponse,
)
from .planner import RoutePlanner
from .route_geometry import normalize_geometry
from .routing_osrm import OSRMClient


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.osrm = OSRMClient()
    app.state.tomtom = TomTomTrafficClient()
    app.state.overpass = OverpassPOIClient()
    if not app.state.tomtom.api_key:
        log_event("tomtom_key_missing", level=logging.WARNING)
    app.state.planner = RoutePlanner(
        routing=app.state.osrm,
        incidents=app.state.tomtom,
        pois=app.state.overpass,
        traffic=app.state.tomtom,
    )
    yield
    await app.state.osrm.aclose()
    await app.state.tomtom.aclose()
    await app.state.overpass.aclose()


app = FastAPI(title="Safe Journey Router", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def route_planner(request: Request) -> RoutePlanner:
    planner: RoutePlanner | None = getattr(request.app.state, "planner", None)  # type: ignore[attr-defined]
    if planner is None:
        raise HTTPException(status_code=503, detail="route planner not initialised")
    return planner


PlannerDep = Annotated[RoutePlanner, Depends(route_planner)]


def _check_coordinates(**coords: float) -> None:
    for name, value in coords.items():
        limit = 90.0 if name.endswith("Lat") else 180.0
        if not (-limit <= value <= limit):
            raise HTTPException(status_code=400, detail=f"{name} out of range: {value}")


async def _plan_or_raise(
    planner: RoutePlanner,
    origin_lat: float,
    origin_lon: float,
    dest_lat: float,
    dest_lon: float,
) -> list[Route]:
    try:
        routes = await planner.plan(origin_lat, origin_lon, dest_lat, dest_lon)
    except SafeJourneyError as e:
        log_event("plan_failed", level=logging.WARNING, reason_code=e.reason_code, error=e.message)
        raise HTTPException(status_code=502, detail={"reason_code": e.reason_code, "message": e.message}) from e
    if not routes:
        raise HTTPException(status_code=404, detail="No routes found")
    return routes


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/safe-routes", response_model=SafeRoutesResponse)
async def safe_routes(
    planner: PlannerDep,
    origin_lat: Annotated[float, Query(alias="originLat")],
    origin_lon: Annotated[float, Query(alias="originLon")],
    dest_lat: Annotated[float, Query(alias="destLat")],
    dest_lon: Annotated[float, Query(alias="destLon")],
) -> SafeRoutesResponse:
    _check_coordinates(originLat=origin_lat, originLon=origin_lon, destLat=dest_lat, destLon=dest_lon)
    routes = await _plan_or_raise(planner, origin_lat, origin_lon, dest_lat, dest_lon)
    log_event(
        "safe_routes_served",
        route_count=len(routes),
        safest_risk=round(routes[0].aggregate_risk, 4),
    )
    # Ranked ascending by risk, so the safest is always first.
    return SafeRoutesResponse(safest_route_index=0, routes=routes)


@app.post("/navigation/instructions", response_model=InstructionsResponse)
async def navigation_instructions(req: InstructionsRequest) -> InstructionsResponse:
    if req.points:
        points = normalize_geometry([p.as_tuple() for p in req.points])
    else:
        points = normalize_geometry(req.geometry)
    if len(points) < 2:
        raise HTTPException(status_code=400, detail="route geometry needs at least two distinct points")
    return InstructionsResponse(instructions=list(generate_instructions(points)))


@app.get("/navigation/reroute", response_model=RerouteResponse)
async def navigation_reroute(
    planner: PlannerDep,
    current_lat: Annotated[float, Query(alias="currentLat")],
    current_lon: Annotated[float, Query(alias="currentLon")],
    dest_lat: Annotated[float, Query(alias="destLat")],
    dest_lon: Annotated[float, Query(alias="destLon")],
) -> RerouteResponse:
    _check_coordinates(currentLat=current_lat, currentLon=current_lon, destLat=dest_lat, destLon=dest_lon)
    routes = await _plan_or_raise(planner, current_lat, current_lon, dest_lat, dest_lon)
    return RerouteResponse(route=routes[0])
