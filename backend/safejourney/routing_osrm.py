from __future__ import annotations

from typing import Any

import httpx

from .errors import ProviderError
from .models import RawRoute
from .settings import settings


def _format_osrm_error(resp: httpx.Response) -> str:
    """Best-effort decode of OSRM JSON error payloads."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            code = data.get("code")
            message = data.get("message")
            if code and message:
                return f"OSRM {resp.status_code} {code}: {message}"
            if code:
                return f"OSRM {resp.status_code} {code}"
            if message:
                return f"OSRM {resp.status_code}: {message}"
    except ValueError:
        # not JSON; fall through to text
        pass

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    if body:
        return f"OSRM {resp.status_code}: {body}"
    return f"OSRM HTTP {resp.status_code}"


def raw_route_from_osrm(route: dict[str, Any]) -> RawRoute:
    return RawRoute(
        distance_m=max(0.0, float(route.get("distance") or 0.0)),
        duration_s=max(0.0, float(route.get("duration") or 0.0)),
        geometry=route.get("geometry"),
    )


class OSRMClient:
    """Routing provider backed by an OSRM ``route/v1`` endpoint.

    One attempt per call; failures raise :class:`ProviderError` and the core
    decides what to fall back to.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        profile: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url).rstrip("/")
        self.profile = profile or settings.osrm_profile
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.provider_timeout_s, connect=5.0),
            headers={"accept": "application/json", "user-agent": settings.user_agent},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_routes(
        self,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
    ) -> list[RawRoute]:
        # OSRM wants lon,lat order.
        coords = f"{origin_lon},{origin_lat};{dest_lon},{dest_lat}"
        url = f"{self.base_url}/route/v1/{self.profile}/{coords}"
        params = {
            "overview": "full",
            "geometries": "geojson",
            "alternatives": "true",
        }

        try:
            resp = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise ProviderError(
                "provider_unavailable",
                f"OSRM request failed (base={self.base_url}): {type(exc).__name__}: {exc}",
            ) from exc

        if resp.status_code >= 400:
            raise ProviderError("provider_unavailable", _format_osrm_error(resp), {"status": resp.status_code})

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError("provider_bad_response", "OSRM returned non-JSON body") from exc

        if data.get("code") != "Ok":
            raise ProviderError(
                "provider_bad_response",
                f"OSRM error code={data.get('code')} message={data.get('message')}",
            )

        routes = data.get("routes", [])
        if not isinstance(routes, list) or not routes:
            raise ProviderError("routing_no_routes", "OSRM returned no routes")
        return [raw_route_from_osrm(route) for route in routes if isinstance(route, dict)]
