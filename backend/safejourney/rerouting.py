from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from .errors import RerouteFailedError, ReroutingExhaustedError
from .logging_utils import log_event
from .models import NavigationUpdate, Route
from .settings import settings

if TYPE_CHECKING:
    from .navigation import NavigationSession


class RouteRequester(Protocol):
    async def request_routes(
        self,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
    ) -> list[Route]: ...


RerouteCallback = Callable[[Route], Any]
RerouteErrorCallback = Callable[[Exception], Any]


class RerouteCoordinator:
    """Debounces deviation signals and fetches a replacement route.

    One coordinator serves one session. A deviation (re)starts the debounce
    timer; if the traveler is still off-route when it fires, a new route is
    requested from their latest position to the original destination. At most
    one request is outstanding at a time and attempts are capped; running out
    of attempts is reported, not raised, and :meth:`reset` re-arms it.

    Must be driven from inside a running event loop.
    """

    def __init__(
        self,
        requester: RouteRequester,
        *,
        debounce_s: float | None = None,
        max_attempts: int | None = None,
        on_reroute: RerouteCallback | None = None,
        on_reroute_error: RerouteErrorCallback | None = None,
    ) -> None:
        self._requester = requester
        self.debounce_s = float(debounce_s if debounce_s is not None else settings.reroute_debounce_s)
        self.max_attempts = int(max_attempts if max_attempts is not None else settings.reroute_max_attempts)
        self.on_reroute = on_reroute
        self.on_reroute_error = on_reroute_error

        self.attempts = 0
        self.exhausted = False
        self.last_error: Exception | None = None

        self._session: NavigationSession | None = None
        self._deviating = False
        self._in_flight = False
        self._task: asyncio.Task[None] | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def attach(self, session: NavigationSession) -> None:
        self.reset()
        self._session = session

    def on_update(self, update: NavigationUpdate) -> None:
        if self._session is None:
            return

        if not update.deviated:
            self._deviating = False
            if not self._in_flight:
                self._cancel_task()
                self.attempts = 0
                self.exhausted = False
            return

        self._deviating = True
        if self._in_flight or self.exhausted:
            return
        self._cancel_task()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._debounce_then_reroute(self._session.generation))

    def cancel(self) -> None:
        self._cancel_task()
        self._in_flight = False
        self._deviating = False

    def reset(self) -> None:
        self.cancel()
        self.attempts = 0
        self.exhausted = False
        self.last_error = None

    def _cancel_task(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _debounce_then_reroute(self, generation: int) -> None:
        await asyncio.sleep(self.debounce_s)

        session = self._session
        if session is None or not self._deviating or session.generation != generation:
            return

        if self.attempts >= self.max_attempts:
            self.exhausted = True
            self._report_error(
                ReroutingExhaustedError(
                    "reroute_attempts_exhausted",
                    "Max reroute attempts reached",
                    {"max_attempts": self.max_attempts},
                )
            )
            return

        position = session.current_position
        destination = session.destination
        if position is None or destination is None:
            return

        if not session.begin_rerouting(generation):
            return
        self.attempts += 1
        self._in_flight = True
        log_event(
            "reroute_attempt",
            attempt=self.attempts,
            max_attempts=self.max_attempts,
            origin_lat=round(position.lat, 6),
            origin_lon=round(position.lon, 6),
        )

        try:
            routes = await self._requester.request_routes(
                position.lat, position.lon, destination.lat, destination.lon
            )
            if not routes:
                raise RerouteFailedError("reroute_no_routes", "No routes found for re-routing")
            new_route = next((r for r in routes if len(r.navigation_points()) >= 2), None)
            if new_route is None:
                raise RerouteFailedError(
                    "reroute_no_routes",
                    "No route with usable geometry found for re-routing",
                    {"route_count": len(routes)},
                )
        except asyncio.CancelledError:
            raise
        except RerouteFailedError as exc:
            self._finish_failed(session, generation, exc)
            return
        except Exception as exc:
            self._finish_failed(
                session,
                generation,
                RerouteFailedError(
                    "reroute_request_failed",
                    f"Re-routing request failed: {exc}",
                    {"error_type": type(exc).__name__},
                ),
            )
            return
        finally:
            self._in_flight = False

        if not session.replace_route(new_route, generation=generation):
            self._finish_failed(
                session,
                generation,
                RerouteFailedError("reroute_no_routes", "Session rejected the replacement route"),
            )
            return
        self.attempts = 0
        self.last_error = None
        log_event("reroute_succeeded", aggregate_risk=round(new_route.aggregate_risk, 4))
        if self.on_reroute is not None:
            self._notify(self.on_reroute, new_route)

    def _finish_failed(self, session: NavigationSession, generation: int, error: RerouteFailedError) -> None:
        if not session.is_current(generation):
            return
        session.end_rerouting(generation)
        self._report_error(error)

    def _report_error(self, error: Exception) -> None:
        self.last_error = error
        log_event(
            "reroute_failed",
            level=logging.WARNING,
            reason_code=getattr(error, "reason_code", None),
            error=str(error),
            attempts=self.attempts,
        )
        if self.on_reroute_error is not None:
            self._notify(self.on_reroute_error, error)

    @staticmethod
    def _notify(callback: Callable[[Any], Any], value: Any) -> None:
        try:
            callback(value)
        except Exception as exc:
            # Called from an unawaited task.
            log_event(
                "reroute_callback_failed",
                level=logging.ERROR,
                error_type=type(exc).__name__,
                error=str(exc),
            )
