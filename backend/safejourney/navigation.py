from __future__ import annotations

import logging
from collections.abc import AsyncIterable, Callable
from typing import TYPE_CHECKING, Any

from .errors import NavigationError
from .geometry import haversine_m
from .instructions import generate_instructions, next_instruction
from .logging_utils import log_event
from .models import (
    TERMINAL_STATES,
    GpsErrorReason,
    GpsFix,
    Instruction,
    NavigationState,
    NavigationUpdate,
    Route,
    RoutePoint,
)
from .route_matcher import distance_along_m, match_position, polyline_length_m
from .settings import settings

if TYPE_CHECKING:
    from .rerouting import RerouteCoordinator

StateCallback = Callable[[NavigationState], Any]
InstructionCallback = Callable[[Instruction], Any]

_GPS_REASON_CODES: dict[GpsErrorReason, str] = {
    GpsErrorReason.PERMISSION_DENIED: "gps_permission_denied",
    GpsErrorReason.POSITION_UNAVAILABLE: "gps_position_unavailable",
    GpsErrorReason.TIMEOUT: "gps_timeout",
}

_GPS_MESSAGES: dict[GpsErrorReason, str] = {
    GpsErrorReason.PERMISSION_DENIED: "Location permission denied",
    GpsErrorReason.POSITION_UNAVAILABLE: "Location information unavailable",
    GpsErrorReason.TIMEOUT: "Location request timed out",
}


class NavigationSession:
    """Tracks one traveler along one active route.

    Owns the navigation state, the active route and its instructions. Updates
    are processed one at a time to completion; feed them in arrival order
    (``run`` does this for an async stream of fixes). Rerouting, when a
    coordinator is attached, runs on the same event loop and swaps the route
    through :meth:`replace_route`.
    """

    def __init__(
        self,
        *,
        rerouter: RerouteCoordinator | None = None,
        deviation_threshold_m: float | None = None,
        arrival_threshold_m: float | None = None,
        start_leniency_m: float | None = None,
    ) -> None:
        self.deviation_threshold_m = float(
            deviation_threshold_m if deviation_threshold_m is not None else settings.deviation_threshold_m
        )
        self.arrival_threshold_m = float(
            arrival_threshold_m if arrival_threshold_m is not None else settings.arrival_threshold_m
        )
        self.start_leniency_m = float(
            start_leniency_m if start_leniency_m is not None else settings.route_start_leniency_m
        )
        self.rerouter = rerouter

        self.state = NavigationState.IDLE
        self.route: Route | None = None
        self.points: tuple[RoutePoint, ...] = ()
        self.instructions: tuple[Instruction, ...] = ()
        self.total_distance_m = 0.0
        self.destination: RoutePoint | None = None
        self.current_position: RoutePoint | None = None
        self.current_instruction: Instruction | None = None
        self.last_error: NavigationError | None = None

        self._has_been_on_route = False
        self._active = False
        self._generation = 0
        self._on_state_change: StateCallback | None = None
        self._on_instruction_change: InstructionCallback | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def active(self) -> bool:
        return self._active

    # lifecycle

    def start(
        self,
        route: Route,
        on_instruction_change: InstructionCallback | None = None,
        on_state_change: StateCallback | None = None,
    ) -> None:
        if self._active:
            self.stop()
        self._generation += 1
        self._active = True
        self._on_instruction_change = on_instruction_change
        self._on_state_change = on_state_change
        self.state = NavigationState.IDLE
        self.current_position = None
        self.last_error = None
        self._load_route(route)
        self.destination = self.points[-1] if self.points else None

        if self.rerouter is not None:
            self.rerouter.attach(self)

        if len(self.points) < 2:
            self._fail(NavigationError("route_unavailable", "Route has no usable geometry"))
            return
        log_event(
            "navigation_started",
            generation=self._generation,
            point_count=len(self.points),
            instruction_count=len(self.instructions),
            total_distance_m=round(self.total_distance_m, 1),
        )

    def stop(self) -> None:
        if self.rerouter is not None:
            self.rerouter.cancel()
        self._generation += 1
        was_active = self._active
        self._active = False
        self._set_state(NavigationState.IDLE)
        self.current_position = None
        self.current_instruction = None
        self._has_been_on_route = False
        if was_active:
            log_event("navigation_stopped", generation=self._generation)

    def _load_route(self, route: Route) -> None:
        self.route = route
        self.points = route.navigation_points()
        self.instructions = generate_instructions(self.points)
        self.total_distance_m = polyline_length_m(self.points)
        self.current_instruction = None
        self._has_been_on_route = False

    # updates

    def update_position(self, lat: float, lon: float) -> NavigationUpdate:
        if not self._active:
            return NavigationUpdate(state=self.state)

        self.current_position = RoutePoint(lat=lat, lon=lon)
        if self.state in TERMINAL_STATES:
            return self._terminal_update()

        if self.state == NavigationState.IDLE:
            self._set_state(NavigationState.NAVIGATING)

        dest = self.points[-1]
        if haversine_m(lat, lon, dest.lat, dest.lon) < self.arrival_threshold_m:
            if self.rerouter is not None:
                self.rerouter.cancel()
            self._set_state(NavigationState.ARRIVED)
            if self.instructions:
                self._set_instruction(self.instructions[-1])
            return self._terminal_update()

        match = match_position(self.points, lat, lon)
        if match is None:
            return NavigationUpdate(state=self.state)

        on_route = match.distance_m <= self.deviation_threshold_m
        if on_route:
            self._has_been_on_route = True
        start = self.points[0]
        near_start = haversine_m(lat, lon, start.lat, start.lon) < self.start_leniency_m
        # Before the traveler first reaches the route, the leniency window around
        # the start absorbs an off-route starting position.
        deviated = not on_route and (self._has_been_on_route or not near_start)

        instruction = next_instruction(self.instructions, match.segment_index)
        to_instruction = (
            distance_along_m(self.points, match, instruction.point_index) if instruction is not None else None
        )
        update = NavigationUpdate(
            state=self.state,
            deviated=deviated,
            needs_reroute=deviated,
            distance_from_route_m=match.distance_m,
            instruction=None if deviated else instruction,
            distance_to_instruction_m=None if deviated else to_instruction,
            distance_remaining_m=distance_along_m(self.points, match),
            progress=match.progress,
        )

        if deviated:
            log_event(
                "navigation_deviation",
                level=logging.DEBUG,
                distance_from_route_m=round(match.distance_m, 1),
                segment_index=match.segment_index,
            )
        elif instruction is not None:
            self._set_instruction(instruction)

        if self.rerouter is not None:
            self.rerouter.on_update(update)
        return update

    def report_gps_error(self, reason: GpsErrorReason) -> NavigationUpdate:
        """GPS failures are terminal for the session."""
        if not self._active:
            return NavigationUpdate(state=self.state)
        if self.state in TERMINAL_STATES:
            return self._terminal_update()
        if self.rerouter is not None:
            self.rerouter.cancel()
        self._fail(NavigationError(_GPS_REASON_CODES[reason], _GPS_MESSAGES[reason], {"reason": reason.value}))
        return self._terminal_update()

    async def run(self, fixes: AsyncIterable[GpsFix | GpsErrorReason]) -> NavigationState:
        """Consume an ordered stream of fixes until it ends, the session stops or a terminal state."""
        async for item in fixes:
            if not self._active:
                break
            if isinstance(item, GpsErrorReason):
                self.report_gps_error(item)
            else:
                self.update_position(item.lat, item.lon)
            if self.state in TERMINAL_STATES:
                break
        return self.state

    # rerouting hooks

    def is_current(self, generation: int) -> bool:
        return self._active and generation == self._generation and self.state not in TERMINAL_STATES

    def begin_rerouting(self, generation: int) -> bool:
        if not self.is_current(generation):
            return False
        self._set_state(NavigationState.REROUTING)
        return True

    def end_rerouting(self, generation: int) -> None:
        if self.is_current(generation) and self.state == NavigationState.REROUTING:
            self._set_state(NavigationState.NAVIGATING)

    def replace_route(self, route: Route, *, generation: int) -> bool:
        """Swap in a new route and regenerate instructions. Stale generations are discarded."""
        if not self.is_current(generation):
            log_event("reroute_discarded", generation=generation, current_generation=self._generation)
            return False
        if len(route.navigation_points()) < 2:
            return False
        self._load_route(route)
        if self.state == NavigationState.REROUTING:
            self._set_state(NavigationState.NAVIGATING)
        if len(self.instructions) > 1:
            self._set_instruction(self.instructions[1])
        log_event(
            "route_replaced",
            generation=generation,
            point_count=len(self.points),
            aggregate_risk=round(route.aggregate_risk, 4),
        )
        return True

    # internals

    def _terminal_update(self) -> NavigationUpdate:
        arrived = self.state == NavigationState.ARRIVED
        return NavigationUpdate(
            state=self.state,
            instruction=self.current_instruction if arrived else None,
            distance_remaining_m=0.0,
            progress=1.0 if arrived else 0.0,
            error=self.last_error.reason_code if self.last_error is not None else None,
        )

    def _fail(self, error: NavigationError) -> None:
        self.last_error = error
        log_event("navigation_error", level=logging.WARNING, reason_code=error.reason_code, error=error.message)
        self._set_state(NavigationState.ERROR)

    def _set_state(self, new_state: NavigationState) -> None:
        if self.state == new_state:
            return
        old_state = self.state
        self.state = new_state
        log_event("navigation_state", previous=old_state.value, state=new_state.value)
        if self._on_state_change is not None:
            self._notify(self._on_state_change, new_state)

    def _set_instruction(self, instruction: Instruction) -> None:
        if self.current_instruction == instruction:
            return
        self.current_instruction = instruction
        if self._on_instruction_change is not None:
            self._notify(self._on_instruction_change, instruction)

    @staticmethod
    def _notify(callback: Callable[[Any], Any], value: Any) -> None:
        try:
            callback(value)
        except Exception as exc:
            # A broken UI callback must not derail position processing.
            log_event(
                "navigation_callback_failed",
                level=logging.ERROR,
                error_type=type(exc).__name__,
                error=str(exc),
            )
