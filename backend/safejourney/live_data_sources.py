"""HTTP clients for the live risk context: TomTom traffic and OpenStreetMap POIs.

Clients raise :class:`ProviderError` on any failure. The scoring core wraps
every call in a fallback (see ``providers``), so nothing here retries.
"""

from __future__ import annotations

from typing import Any

import httpx

from .errors import ProviderError
from .models import POI, BoundingBox, Incident, RoutePoint, TrafficFlowSample
from .settings import settings

_POI_AMENITIES: tuple[str, ...] = ("police", "hospital", "fuel")


def _safe_float(value: Any) -> float | None:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if out == out else None


def _point_or_none(lat: Any, lon: Any) -> RoutePoint | None:
    lat_f = _safe_float(lat)
    lon_f = _safe_float(lon)
    if lat_f is None or lon_f is None:
        return None
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0):
        return None
    return RoutePoint(lat=lat_f, lon=lon_f)


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.provider_timeout_s, connect=5.0),
        headers={"accept": "application/json", "user-agent": settings.user_agent},
    )


async def _get_json(client: httpx.AsyncClient, url: str, *, source: str, **kwargs: Any) -> Any:
    try:
        resp = await client.get(url, **kwargs)
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPStatusError as exc:
        raise ProviderError(
            "provider_unavailable",
            f"{source} HTTP {exc.response.status_code}",
            {"status": exc.response.status_code},
        ) from exc
    except httpx.HTTPError as exc:
        raise ProviderError("provider_unavailable", f"{source} request failed: {type(exc).__name__}: {exc}") from exc
    except ValueError as exc:
        raise ProviderError("provider_bad_response", f"{source} returned non-JSON body") from exc


def parse_tomtom_incident(raw: dict[str, Any]) -> Incident | None:
    geometry = raw.get("geometry") or {}
    coords = geometry.get("coordinates")
    if not isinstance(coords, list) or not coords:
        return None
    if geometry.get("type") == "Point" or not isinstance(coords[0], list):
        position = coords
    else:
        # LineString incidents are located by their middle vertex.
        position = coords[len(coords) // 2]
    if not isinstance(position, list) or len(position) < 2:
        return None
    point = _point_or_none(position[1], position[0])
    if point is None:
        return None

    props = raw.get("properties") or {}
    severity_raw = props.get("magnitudeOfDelay", raw.get("severity"))
    severity_f = _safe_float(severity_raw)
    severity = int(severity_f) if severity_f is not None else 1
    events = props.get("events") or []
    description = None
    if isinstance(events, list) and events and isinstance(events[0], dict):
        description = events[0].get("description")
    return Incident(position=point, severity=max(1, min(4, severity)), description=description)


def parse_overpass_element(element: dict[str, Any]) -> POI | None:
    position = element.get("center") or element
    point = _point_or_none(position.get("lat"), position.get("lon"))
    if point is None:
        return None
    tags = element.get("tags") or {}
    return POI(
        position=point,
        category=str(tags.get("amenity") or "unknown"),
        name=tags.get("name") or tags.get("name:en"),
    )


def overpass_query(lat: float, lon: float, radius_m: float) -> str:
    radius = int(max(1.0, radius_m))
    clauses = "".join(
        f'{kind}["amenity"="{amenity}"](around:{radius},{lat},{lon});'
        for amenity in _POI_AMENITIES
        for kind in ("node", "way")
    )
    return f"[out:json][timeout:10];({clauses});out center;"


class TomTomTrafficClient:
    """Incident feed and traffic flow source backed by the TomTom Traffic APIs."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.tomtom_api_key
        self.base_url = (base_url or settings.tomtom_base_url).rstrip("/")
        self._owns_client = client is None
        self._client = client or _default_client()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _require_key(self) -> str:
        if not self.api_key or self.api_key == "YOUR_KEY":
            raise ProviderError("provider_unavailable", "TOMTOM_API_KEY is not configured")
        return self.api_key

    async def fetch_incidents(self, bbox: BoundingBox) -> list[Incident]:
        key = self._require_key()
        data = await _get_json(
            self._client,
            f"{self.base_url}/traffic/services/5/incidentDetails",
            source="TomTom incidents",
            params={
                "bbox": f"{bbox.min_lon},{bbox.min_lat},{bbox.max_lon},{bbox.max_lat}",
                "key": key,
            },
        )
        raw_incidents = data.get("incidents") if isinstance(data, dict) else None
        if not isinstance(raw_incidents, list):
            return []
        out: list[Incident] = []
        for raw in raw_incidents:
            if isinstance(raw, dict):
                incident = parse_tomtom_incident(raw)
                if incident is not None:
                    out.append(incident)
        return out

    async def fetch_traffic_flow(self, lat: float, lon: float) -> TrafficFlowSample | None:
        key = self._require_key()
        data = await _get_json(
            self._client,
            f"{self.base_url}/traffic/services/4/flowSegmentData/absolute/10/json",
            source="TomTom flow",
            params={"point": f"{lat},{lon}", "key": key},
        )
        flow = data.get("flowSegmentData") if isinstance(data, dict) else None
        if not isinstance(flow, dict):
            return None
        current = _safe_float(flow.get("currentSpeed"))
        free_flow = _safe_float(flow.get("freeFlowSpeed"))
        return TrafficFlowSample(
            current_speed=max(0.0, current) if current is not None else None,
            free_flow_speed=max(0.0, free_flow) if free_flow is not None else None,
        )


class OverpassPOIClient:
    """POI search for safety-relevant amenities (police, hospitals, fuel) via Overpass."""

    def __init__(self, *, url: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.url = url or settings.overpass_url
        self._owns_client = client is None
        self._client = client or _default_client()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_pois(self, lat: float, lon: float, radius_m: float) -> list[POI]:
        data = await _get_json(
            self._client,
            self.url,
            source="Overpass",
            params={"data": overpass_query(lat, lon, radius_m)},
        )
        elements = data.get("elements") if isinstance(data, dict) else None
        if not isinstance(elements, list):
            return []
        out: list[POI] = []
        for element in elements:
            if isinstance(element, dict):
                poi = parse_overpass_element(element)
                if poi is not None:
                    out.append(poi)
        return out
