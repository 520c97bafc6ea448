from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from safejourney.errors import ProviderError
from safejourney.live_data_sources import (
    OverpassPOIClient,
    TomTomTrafficClient,
    overpass_query,
    parse_tomtom_incident,
)
from safejourney.models import BoundingBox
from safejourney.route_geometry import normalize_geometry
from safejourney.routing_osrm import OSRMClient

BBOX = BoundingBox(min_lat=51.49, min_lon=-0.12, max_lat=51.51, max_lon=-0.08)


def _run_with(handler: Any, call: Any) -> Any:
    async def _go() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await call(client)

    return asyncio.run(_go())


def test_osrm_fetch_routes_parses_alternatives() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "code": "Ok",
                "routes": [
                    {
                        "distance": 1234.5,
                        "duration": 200.0,
                        "geometry": {"type": "LineString", "coordinates": [[-0.1, 51.5], [-0.09, 51.505]]},
                    },
                    {
                        "distance": 1500.0,
                        "duration": 240.0,
                        "geometry": {"type": "LineString", "coordinates": [[-0.1, 51.5], [-0.09, 51.51]]},
                    },
                ],
            },
        )

    routes = _run_with(
        handler,
        lambda client: OSRMClient(base_url="http://osrm.test", client=client).fetch_routes(51.5, -0.1, 51.505, -0.09),
    )
    assert [r.distance_m for r in routes] == [1234.5, 1500.0]
    assert normalize_geometry(routes[0].geometry)[0].as_tuple() == (51.5, -0.1)
    request = seen[0]
    assert request.url.path.startswith("/route/v1/driving/")
    assert request.url.params["alternatives"] == "true"
    assert request.url.params["geometries"] == "geojson"
    assert request.url.params["overview"] == "full"


def test_osrm_http_error_is_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": "InvalidQuery", "message": "Query string malformed"})

    with pytest.raises(ProviderError) as excinfo:
        _run_with(handler, lambda client: OSRMClient(base_url="http://osrm.test", client=client).fetch_routes(1, 2, 3, 4))
    assert excinfo.value.reason_code == "provider_unavailable"
    assert "InvalidQuery" in str(excinfo.value)


def test_osrm_no_route_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "NoRoute", "message": "Impossible route"})

    with pytest.raises(ProviderError) as excinfo:
        _run_with(handler, lambda client: OSRMClient(base_url="http://osrm.test", client=client).fetch_routes(1, 2, 3, 4))
    assert excinfo.value.reason_code == "provider_bad_response"


def test_osrm_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError) as excinfo:
        _run_with(handler, lambda client: OSRMClient(base_url="http://osrm.test", client=client).fetch_routes(1, 2, 3, 4))
    assert excinfo.value.reason_code == "provider_unavailable"


def test_tomtom_incidents() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "incidents": [
                    {
                        "type": "Feature",
                        "properties": {"magnitudeOfDelay": 3, "events": [{"description": "Queuing traffic"}]},
                        "geometry": {"type": "Point", "coordinates": [-0.1, 51.5]},
                    },
                    {
                        "type": "Feature",
                        "properties": {"magnitudeOfDelay": 0},
                        "geometry": {
                            "type": "LineString",
                            "coordinates": [[-0.11, 51.49], [-0.1, 51.495], [-0.09, 51.5]],
                        },
                    },
                    {"type": "Feature", "properties": {}, "geometry": {"type": "Point", "coordinates": []}},
                ]
            },
        )

    incidents = _run_with(
        handler,
        lambda client: TomTomTrafficClient(api_key="k", base_url="http://tomtom.test", client=client).fetch_incidents(BBOX),
    )
    assert [(i.position.lat, i.position.lon, i.severity) for i in incidents] == [
        (51.5, -0.1, 3),
        (51.495, -0.1, 1),
    ]
    assert incidents[0].description == "Queuing traffic"
    assert seen[0].url.params["bbox"] == "-0.12,51.49,-0.08,51.51"
    assert seen[0].url.params["key"] == "k"


def test_tomtom_flow_sample() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["point"] == "51.5,-0.1"
        return httpx.Response(200, json={"flowSegmentData": {"currentSpeed": 30, "freeFlowSpeed": 60}})

    sample = _run_with(
        handler,
        lambda client: TomTomTrafficClient(api_key="k", base_url="http://tomtom.test", client=client).fetch_traffic_flow(
            51.5, -0.1
        ),
    )
    assert sample is not None
    assert (sample.current_speed, sample.free_flow_speed) == (30.0, 60.0)


def test_tomtom_without_key_fails_fast() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ProviderError):
        _run_with(handler, lambda client: TomTomTrafficClient(api_key="", client=client).fetch_incidents(BBOX))


def test_tomtom_server_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="busy")

    with pytest.raises(ProviderError) as excinfo:
        _run_with(
            handler,
            lambda client: TomTomTrafficClient(api_key="k", base_url="http://tomtom.test", client=client).fetch_traffic_flow(
                51.5, -0.1
            ),
        )
    assert excinfo.value.details == {"status": 503}


def test_overpass_pois_nodes_and_ways() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert "around:300" in request.url.params["data"]
        return httpx.Response(
            200,
            json={
                "elements": [
                    {"type": "node", "lat": 51.5, "lon": -0.1, "tags": {"amenity": "police", "name": "Station"}},
                    {"type": "way", "center": {"lat": 51.501, "lon": -0.101}, "tags": {"amenity": "hospital"}},
                    {"type": "way", "tags": {"amenity": "fuel"}},
                ]
            },
        )

    pois = _run_with(
        handler,
        lambda client: OverpassPOIClient(url="http://overpass.test/api", client=client).fetch_pois(51.5, -0.1, 300.0),
    )
    assert [(p.category, p.name) for p in pois] == [("police", "Station"), ("hospital", None)]


def test_overpass_query_covers_each_amenity() -> None:
    query = overpass_query(51.5, -0.1, 250.0)
    for amenity in ("police", "hospital", "fuel"):
        assert f'node["amenity"="{amenity}"]' in query
        assert f'way["amenity"="{amenity}"]' in query
    assert query.endswith("out center;")


def test_parse_incident_clamps_severity() -> None:
    raw = {"properties": {"magnitudeOfDelay": 9}, "geometry": {"type": "Point", "coordinates": [-0.1, 51.5]}}
    incident = parse_tomtom_incident(raw)
    assert incident is not None
    assert incident.severity == 4
