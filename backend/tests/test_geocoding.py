"""Tests for the geocoding fallback chain (HTTP faked with MockTransport)."""

import httpx
import pytest

from dispatch_worker.schemas import GeoPoint
from dispatch_worker.services.geocoding import (
    SERVICE_AREA,
    GeocodingProvider,
    GeocodingResolver,
    MapsCoProvider,
    NominatimProvider,
)

IN_AREA = [{"lat": "30.2672", "lon": "-97.7431"}]
OUT_OF_AREA = [{"lat": "40.7128", "lon": "-74.0060"}]


def mock_client(routes, seen=None):
    """``routes`` maps host -> handler(request) returning an httpx.Response."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return routes[request.url.host](request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def respond(payload, status=200):
    return lambda request: httpx.Response(status, json=payload)


def resolver(*providers):
    return GeocodingResolver(list(providers))


def nominatim():
    return NominatimProvider(min_interval_ms=0)


def maps_co(key="k1"):
    return MapsCoProvider(key, name=f"maps.co ({key})", min_interval_ms=0)


# ── Bounding box ──

class TestServiceArea:
    def test_inclusive_edges(self):
        assert SERVICE_AREA.contains(GeoPoint(longitude=-98.2, latitude=30.0))
        assert SERVICE_AREA.contains(GeoPoint(longitude=-97.4, latitude=30.6))

    def test_outside(self):
        assert not SERVICE_AREA.contains(GeoPoint(longitude=-97.3, latitude=30.3))
        assert not SERVICE_AREA.contains(GeoPoint(longitude=0.0, latitude=0.0))


# ── Requests ──

class TestProviderRequests:
    def test_base_provider_is_abstract(self):
        with pytest.raises(TypeError):
            GeocodingProvider(min_interval_ms=0)

    @pytest.mark.asyncio
    async def test_nominatim_bounded_search(self):
        seen = []
        async with mock_client({"nominatim.openstreetmap.org": respond(IN_AREA)}, seen) as client:
            point = await nominatim().geocode(client, "123 Main St")

        assert point == GeoPoint(longitude=-97.7431, latitude=30.2672)
        params = seen[0].url.params
        assert params["q"] == "123 Main St"
        assert params["limit"] == "1"
        assert params["bounded"] == "1"
        assert params["countrycodes"] == "us"
        assert params["viewbox"] == "-98.2,30.0,-97.4,30.6"
        assert seen[0].headers["User-Agent"]

    @pytest.mark.asyncio
    async def test_maps_co_query_suffixed_with_locality(self):
        seen = []
        async with mock_client({"geocode.maps.co": respond(IN_AREA)}, seen) as client:
            await maps_co("secret").geocode(client, "123 Main St")

        params = seen[0].url.params
        assert params["q"] == "123 Main St, Austin, Travis County, Texas"
        assert params["api_key"] == "secret"

    @pytest.mark.asyncio
    async def test_http_error_is_empty_result(self):
        async with mock_client({"nominatim.openstreetmap.org": respond({"error": "x"}, status=500)}) as client:
            assert await nominatim().geocode(client, "123 Main St") is None

    @pytest.mark.asyncio
    async def test_rate_limited_is_empty_result(self):
        async with mock_client({"nominatim.openstreetmap.org": respond([], status=429)}) as client:
            assert await nominatim().geocode(client, "123 Main St") is None

    @pytest.mark.asyncio
    async def test_malformed_body_is_empty_result(self):
        routes = {"nominatim.openstreetmap.org": lambda r: httpx.Response(200, text="<html>")}
        async with mock_client(routes) as client:
            assert await nominatim().geocode(client, "123 Main St") is None

    @pytest.mark.asyncio
    async def test_transport_error_is_empty_result(self):
        def boom(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with mock_client({"nominatim.openstreetmap.org": boom}) as client:
            assert await nominatim().geocode(client, "123 Main St") is None


# ── Fallback chain ──

class TestGeocodingResolver:
    @pytest.mark.asyncio
    async def test_first_in_area_hit_wins(self):
        seen = []
        routes = {
            "nominatim.openstreetmap.org": respond(IN_AREA),
            "geocode.maps.co": respond(IN_AREA),
        }
        async with mock_client(routes, seen) as client:
            point = await resolver(nominatim(), maps_co()).resolve(client, ["123 Main St"])

        assert point == GeoPoint(longitude=-97.7431, latitude=30.2672)
        assert [r.url.host for r in seen] == ["nominatim.openstreetmap.org"]

    @pytest.mark.asyncio
    async def test_out_of_area_hit_discarded(self):
        seen = []
        routes = {
            "nominatim.openstreetmap.org": respond(OUT_OF_AREA),
            "geocode.maps.co": respond(IN_AREA),
        }
        async with mock_client(routes, seen) as client:
            point = await resolver(nominatim(), maps_co()).resolve(client, ["123 Main St"])

        assert point == GeoPoint(longitude=-97.7431, latitude=30.2672)
        assert [r.url.host for r in seen] == ["nominatim.openstreetmap.org", "geocode.maps.co"]

    @pytest.mark.asyncio
    async def test_variants_tried_in_order(self):
        seen = []

        def nominatim_route(request):
            if request.url.params["q"] == "123 Main Street":
                return httpx.Response(200, json=IN_AREA)
            return httpx.Response(200, json=[])

        async with mock_client({"nominatim.openstreetmap.org": nominatim_route}, seen) as client:
            point = await resolver(nominatim()).resolve(client, ["123 Main St", "123 Main Street"])

        assert point is not None
        assert [r.url.params["q"] for r in seen] == ["123 Main St", "123 Main Street"]

    @pytest.mark.asyncio
    async def test_no_location_when_everything_fails(self):
        routes = {
            "nominatim.openstreetmap.org": respond([]),
            "geocode.maps.co": respond(OUT_OF_AREA),
        }
        async with mock_client(routes) as client:
            point = await resolver(nominatim(), maps_co("k1"), maps_co("k2")).resolve(
                client, ["123 Main St", "123 Main Street"]
            )

        assert point is None

    @pytest.mark.asyncio
    async def test_blank_variants_skipped(self):
        seen = []
        async with mock_client({"nominatim.openstreetmap.org": respond([])}, seen) as client:
            point = await resolver(nominatim()).resolve(client, ["", "   "])

        assert point is None
        assert seen == []
