from __future__ import annotations

import math
from collections.abc import Iterable

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle initial bearing from point 1 to point 2, in [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlambda = math.radians(lon2 - lon1)
    x = math.sin(dlambda) * math.cos(phi2)
    y = (math.cos(phi1) * math.sin(phi2)) - (math.sin(phi1) * math.cos(phi2) * math.cos(dlambda))
    if abs(x) <= 1e-15 and abs(y) <= 1e-15:
        return 0.0
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


def signed_bearing_delta_deg(from_deg: float, to_deg: float) -> float:
    """Signed turn from one bearing to another, normalised to (-180, 180].

    Positive is clockwise (a right turn).
    """
    delta = (float(to_deg) - float(from_deg)) % 360.0
    if delta > 180.0:
        delta -= 360.0
    return delta


def destination_point(lat: float, lon: float, bearing_deg: float, distance_m: float) -> tuple[float, float]:
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)
    theta = math.radians(bearing_deg)
    delta = float(distance_m) / EARTH_RADIUS_M
    phi2 = math.asin(
        (math.sin(phi1) * math.cos(delta)) + (math.cos(phi1) * math.sin(delta) * math.cos(theta))
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - (math.sin(phi1) * math.sin(phi2)),
    )
    lon2 = ((math.degrees(lambda2) + 540.0) % 360.0) - 180.0
    return math.degrees(phi2), lon2


def project_onto_segment(
    lat: float,
    lon: float,
    a_lat: float,
    a_lon: float,
    b_lat: float,
    b_lon: float,
) -> tuple[float, float, float, float]:
    """Clamped projection of P onto segment AB.

    Works in a local equirectangular plane centred on A, which is accurate to
    well under a metre for the few-hundred-metre edges a route polyline has.

    Returns (distance_m, t, projected_lat, projected_lon) where t in [0, 1] is
    the fraction along AB.
    """
    m_per_deg_lat = math.radians(1.0) * EARTH_RADIUS_M
    m_per_deg_lon = m_per_deg_lat * math.cos(math.radians(a_lat))

    px = (lon - a_lon) * m_per_deg_lon
    py = (lat - a_lat) * m_per_deg_lat
    bx = (b_lon - a_lon) * m_per_deg_lon
    by = (b_lat - a_lat) * m_per_deg_lat

    len_sq = (bx * bx) + (by * by)
    t = 0.0
    if len_sq > 0.0:
        t = max(0.0, min(1.0, ((px * bx) + (py * by)) / len_sq))

    qx = t * bx
    qy = t * by
    distance_m = math.hypot(px - qx, py - qy)
    return distance_m, t, a_lat + (t * (b_lat - a_lat)), a_lon + (t * (b_lon - a_lon))


def bounding_box(points: Iterable[tuple[float, float]]) -> tuple[float, float, float, float] | None:
    """(min_lat, min_lon, max_lat, max_lon) of (lat, lon) pairs, or None if empty."""
    min_lat = min_lon = math.inf
    max_lat = max_lon = -math.inf
    seen = False
    for lat, lon in points:
        seen = True
        min_lat = min(min_lat, lat)
        min_lon = min(min_lon, lon)
        max_lat = max(max_lat, lat)
        max_lon = max(max_lon, lon)
    if not seen:
        return None
    return min_lat, min_lon, max_lat, max_lon
