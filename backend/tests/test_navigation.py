from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from safejourney.geometry import destination_point
from safejourney.models import (
    GpsErrorReason,
    GpsFix,
    Instruction,
    InstructionType,
    NavigationState,
    Route,
    RoutePoint,
)
from safejourney.navigation import NavigationSession


def _offset(point: RoutePoint, bearing: float, distance_m: float) -> RoutePoint:
    lat, lon = destination_point(point.lat, point.lon, bearing, distance_m)
    return RoutePoint(lat=lat, lon=lon)


A = RoutePoint(lat=51.5, lon=-0.1)
B = _offset(A, 90.0, 300.0)
C = _offset(B, 90.0, 300.0)
ROUTE = Route(points=(A, B, C))


def _started(route: Route = ROUTE) -> NavigationSession:
    session = NavigationSession()
    session.start(route)
    return session


def test_first_fix_moves_idle_to_navigating() -> None:
    states: list[NavigationState] = []
    session = NavigationSession()
    session.start(ROUTE, on_state_change=states.append)
    assert session.state == NavigationState.IDLE

    update = session.update_position(A.lat, A.lon)
    assert update.state == NavigationState.NAVIGATING
    assert states == [NavigationState.NAVIGATING]
    assert update.deviated is False
    assert update.distance_remaining_m == pytest.approx(600.0, abs=1.0)
    assert update.instruction is not None
    assert update.instruction.type == InstructionType.ARRIVE
    assert update.distance_to_instruction_m == pytest.approx(600.0, abs=1.0)


def test_deviation_threshold() -> None:
    session = _started()
    session.update_position(A.lat, A.lon)

    off = _offset(B, 0.0, 60.0)
    update = session.update_position(off.lat, off.lon)
    assert update.deviated is True
    assert update.needs_reroute is True
    assert update.instruction is None
    assert update.distance_from_route_m == pytest.approx(60.0, abs=1.0)

    near = _offset(B, 0.0, 10.0)
    update = session.update_position(near.lat, near.lon)
    assert update.deviated is False
    assert update.needs_reroute is False
    assert update.instruction is not None


@pytest.mark.parametrize(("distance_m", "arrived"), [(29.0, True), (31.0, False)])
def test_arrival_threshold(distance_m: float, arrived: bool) -> None:
    session = _started()
    here = _offset(C, 270.0, distance_m)
    update = session.update_position(here.lat, here.lon)
    expected = NavigationState.ARRIVED if arrived else NavigationState.NAVIGATING
    assert update.state == expected
    assert session.state == expected


def test_arrival_is_terminal() -> None:
    session = _started()
    session.update_position(C.lat, C.lon)
    assert session.state == NavigationState.ARRIVED
    assert session.current_instruction is not None
    assert session.current_instruction.type == InstructionType.ARRIVE

    update = session.update_position(A.lat, A.lon)
    assert update.state == NavigationState.ARRIVED
    assert update.progress == 1.0


def test_start_leniency_window() -> None:
    session = _started()
    # Off route but still near the start: waiting to reach the route.
    waiting = _offset(A, 0.0, 150.0)
    assert session.update_position(waiting.lat, waiting.lon).deviated is False

    far = _offset(A, 0.0, 250.0)
    assert session.update_position(far.lat, far.lon).deviated is True


def test_leniency_ends_once_on_route() -> None:
    session = _started()
    session.update_position(A.lat, A.lon)
    off = _offset(A, 0.0, 150.0)
    assert session.update_position(off.lat, off.lon).deviated is True


@pytest.mark.parametrize(
    ("reason", "code"),
    [
        (GpsErrorReason.PERMISSION_DENIED, "gps_permission_denied"),
        (GpsErrorReason.POSITION_UNAVAILABLE, "gps_position_unavailable"),
        (GpsErrorReason.TIMEOUT, "gps_timeout"),
    ],
)
def test_gps_errors_are_terminal(reason: GpsErrorReason, code: str) -> None:
    session = _started()
    session.update_position(A.lat, A.lon)
    update = session.report_gps_error(reason)
    assert update.state == NavigationState.ERROR
    assert update.error == code
    assert session.update_position(B.lat, B.lon).state == NavigationState.ERROR


def test_route_without_geometry_fails_on_start() -> None:
    session = _started(Route(points=(A,)))
    assert session.state == NavigationState.ERROR
    assert session.last_error is not None
    assert session.last_error.reason_code == "route_unavailable"


def test_stop_returns_to_idle_and_ignores_fixes() -> None:
    session = _started()
    session.update_position(A.lat, A.lon)
    generation = session.generation
    session.stop()
    assert session.state == NavigationState.IDLE
    assert session.generation > generation
    assert session.update_position(B.lat, B.lon).state == NavigationState.IDLE
    assert session.current_position is None


def test_instruction_callback_fires_on_change_only() -> None:
    c = _offset(B, 180.0, 300.0)
    seen: list[Instruction] = []
    session = NavigationSession()
    session.start(Route(points=(A, B, c)), on_instruction_change=seen.append)

    session.update_position(A.lat, A.lon)
    mid = _offset(A, 90.0, 100.0)
    session.update_position(mid.lat, mid.lon)
    assert [i.type for i in seen] == [InstructionType.TURN_RIGHT]

    after_turn = _offset(B, 180.0, 100.0)
    update = session.update_position(after_turn.lat, after_turn.lon)
    assert update.instruction is not None and update.instruction.type == InstructionType.ARRIVE
    assert [i.type for i in seen] == [InstructionType.TURN_RIGHT, InstructionType.ARRIVE]


def test_failing_callback_does_not_break_updates() -> None:
    def boom(_: NavigationState) -> None:
        raise RuntimeError("ui gone")

    session = NavigationSession()
    session.start(ROUTE, on_state_change=boom)
    update = session.update_position(A.lat, A.lon)
    assert update.state == NavigationState.NAVIGATING


def test_replace_route_rejects_stale_generation() -> None:
    session = _started()
    session.update_position(A.lat, A.lon)
    other = Route(points=(B, C))
    assert session.replace_route(other, generation=session.generation - 1) is False
    assert session.route == ROUTE
    assert session.replace_route(other, generation=session.generation) is True
    assert session.points == (B, C)


def test_run_consumes_stream_until_arrival() -> None:
    fixes = [GpsFix(lat=p.lat, lon=p.lon) for p in (A, _offset(A, 90.0, 150.0), B, C, A)]

    async def _stream() -> AsyncIterator[GpsFix | GpsErrorReason]:
        for fix in fixes:
            yield fix

    session = _started()
    assert asyncio.run(session.run(_stream())) == NavigationState.ARRIVED
    assert session.current_position == RoutePoint(lat=C.lat, lon=C.lon)
