"""Route geometry normalisation.

Every route shape the providers hand us (point lists, encoded polylines,
``"lat,lon|lat,lon"`` strings, provider payloads with legs/sections/GeoJSON)
collapses here into one canonical tuple of :class:`RoutePoint`. Nothing
downstream branches on input shape.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from typing import Any

import polyline

from .models import RoutePoint

# Encoded polylines only use characters 63..126, so a string made purely of
# digits, signs, dots, commas and pipes is always the delimited form.
_DELIMITED_RE = re.compile(r"^[\s\d.,+\-|]+$")


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        out = float(value)
    elif isinstance(value, str):
        try:
            out = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return out if math.isfinite(out) else None


def _make_point(lat: Any, lon: Any) -> RoutePoint | None:
    lat_f = _finite_number(lat)
    lon_f = _finite_number(lon)
    if lat_f is None or lon_f is None:
        return None
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0):
        return None
    return RoutePoint(lat=lat_f, lon=lon_f)


def _coerce_point(item: Any) -> RoutePoint | None:
    if isinstance(item, RoutePoint):
        return item
    if isinstance(item, Mapping):
        if "lat" in item and "lon" in item:
            return _make_point(item["lat"], item["lon"])
        if "latitude" in item and "longitude" in item:
            return _make_point(item["latitude"], item["longitude"])
        if "lat" in item and "lng" in item:
            return _make_point(item["lat"], item["lng"])
        return None
    if isinstance(item, Sequence) and not isinstance(item, (str, bytes)) and len(item) >= 2:
        return _make_point(item[0], item[1])
    return None


def _parse_delimited(text: str) -> list[RoutePoint | None]:
    out: list[RoutePoint | None] = []
    for part in text.split("|"):
        pieces = part.split(",")
        if len(pieces) != 2:
            out.append(None)
            continue
        out.append(_make_point(pieces[0], pieces[1]))
    return out


def _decode_polyline(text: str) -> list[RoutePoint | None]:
    try:
        decoded = polyline.decode(text)
    except (ValueError, IndexError, TypeError):
        return []
    return [_make_point(lat, lon) for lat, lon in decoded]


def _from_geojson_coordinates(coords: Any) -> list[RoutePoint | None]:
    # GeoJSON positions are [lon, lat].
    if not isinstance(coords, Sequence) or isinstance(coords, (str, bytes)):
        return []
    out: list[RoutePoint | None] = []
    for pos in coords:
        if isinstance(pos, Sequence) and not isinstance(pos, (str, bytes)) and len(pos) >= 2:
            out.append(_make_point(pos[1], pos[0]))
        else:
            out.append(None)
    return out


def _finalize(candidates: Sequence[RoutePoint | None]) -> tuple[RoutePoint, ...]:
    points: list[RoutePoint] = []
    for point in candidates:
        if point is None:
            continue
        if points and points[-1] == point:
            continue
        points.append(point)
    if len(points) < 2:
        return ()
    return tuple(points)


def _raw_candidates(raw: Any) -> list[RoutePoint | None]:
    if raw is None:
        return []
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        if _DELIMITED_RE.match(text):
            return _parse_delimited(text)
        return _decode_polyline(text)
    if isinstance(raw, Mapping):
        return list(_payload_candidates(raw))
    if isinstance(raw, Sequence) and not isinstance(raw, bytes):
        return [_coerce_point(item) for item in raw]
    return []


def _points_list(container: Any) -> list[RoutePoint | None]:
    if not isinstance(container, Sequence) or isinstance(container, (str, bytes)):
        return []
    return [_coerce_point(item) for item in container]


def _payload_candidates(payload: Mapping[str, Any]) -> list[RoutePoint | None]:
    for container_key in ("legs", "sections"):
        parts = payload.get(container_key)
        if isinstance(parts, Sequence) and not isinstance(parts, (str, bytes)):
            collected: list[RoutePoint | None] = []
            for part in parts:
                if isinstance(part, Mapping):
                    collected.extend(_points_list(part.get("points")))
            if any(p is not None for p in collected):
                return collected

    direct = _points_list(payload.get("points"))
    if any(p is not None for p in direct):
        return direct

    if payload.get("type") == "LineString" or (
        "coordinates" in payload and "geometry" not in payload
    ):
        return _from_geojson_coordinates(payload.get("coordinates"))

    geometry = payload.get("geometry")
    if isinstance(geometry, str):
        return _raw_candidates(geometry)
    if isinstance(geometry, Mapping):
        return _payload_candidates(geometry)

    encoded = payload.get("polyline")
    if isinstance(encoded, str):
        return _raw_candidates(encoded)
    return []


def normalize_geometry(raw: Any) -> tuple[RoutePoint, ...]:
    """Return the canonical point sequence for any accepted geometry shape.

    Unusable points are dropped and consecutive duplicates collapsed. Fewer
    than two usable points yields an empty tuple, which callers treat as
    "cannot score / cannot navigate". Never raises on bad input.
    """
    return _finalize(_raw_candidates(raw))


def extract_route_points(payload: Mapping[str, Any]) -> tuple[RoutePoint, ...]:
    """Canonical points from a provider route payload (legs, sections, points or GeoJSON)."""
    if not isinstance(payload, Mapping):
        return ()
    return _finalize(_payload_candidates(payload))


def encode_points(points: Sequence[RoutePoint]) -> str:
    return polyline.encode([(p.lat, p.lon) for p in points])
