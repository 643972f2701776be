"""
Medlink Triage - Geocoding Tests

Tests for the OpenStreetMap geocoder against a mocked HTTP transport,
plus the pure distance and ETA helpers.

Run with: pytest tests/test_geocoding.py -v
"""

from typing import List

import httpx
import pytest

from medlink.core.exceptions import GeocodingError
from medlink.core.types import FacilityKind, Location, UrgencyTier
from medlink.services.geocoding import (
    OsmGeocoder,
    build_overpass_query,
    calculate_eta,
    format_osm_address,
    haversine_km,
)

PARIS = Location(lat=48.8566, lng=2.3522)


def hospital_elements() -> List[dict]:
    return [
        {"type": "node", "id": 1, "lat": 48.9066, "lon": 2.3522,
         "tags": {"name": "Hôpital Lointain"}},
        {"type": "node", "id": 2, "lat": 48.8666, "lon": 2.3522,
         "tags": {"name": "Hôpital Proche", "addr:housenumber": "1",
                  "addr:street": "rue de la Santé", "addr:postcode": "75014",
                  "addr:city": "Paris"}},
        {"type": "way", "id": 3, "center": {"lat": 48.8766, "lon": 2.3522}, "tags": {}},
        {"type": "way", "id": 4, "tags": {"name": "Sans coordonnées"}},
    ]


def fire_station_elements() -> List[dict]:
    return [
        {"type": "node", "id": 10 + i, "lat": 48.8566 + 0.01 * (5 - i), "lon": 2.3522}
        for i in range(5)
    ]


class FakeOsm:
    """Records requests and answers like Nominatim / Overpass."""

    def __init__(self, search_status: int = 200, search_body=None, overpass_status: int = 200):
        self.search_status = search_status
        self.search_body = search_body if search_body is not None else [
            {"lat": "48.8566", "lon": "2.3522", "display_name": "Paris, Île-de-France, France"},
        ]
        self.overpass_status = overpass_status
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/search":
            return httpx.Response(self.search_status, json=self.search_body)

        if self.overpass_status != 200:
            return httpx.Response(self.overpass_status, text="busy")
        body = request.content.decode()
        if "hospital" in body:
            return httpx.Response(200, json={"elements": hospital_elements()})
        return httpx.Response(200, json={"elements": fire_station_elements()})


def make_geocoder(fake: FakeOsm) -> OsmGeocoder:
    return OsmGeocoder(
        nominatim_url="https://nominatim.test/search",
        overpass_url="https://overpass.test/api/interpreter",
        user_agent="Medlink-Test/1.0",
        transport=httpx.MockTransport(fake),
    )


class TestLocate:
    """Tests for Nominatim address search."""

    @pytest.mark.asyncio
    async def test_locate(self):
        fake = FakeOsm()
        geocoder = make_geocoder(fake)

        location = await geocoder.locate("25 rue Victor Hugo, Paris")

        assert location == Location(lat=48.8566, lng=2.3522, address="Paris, Île-de-France, France")
        request = fake.requests[0]
        assert request.url.params["q"] == "25 rue Victor Hugo, Paris"
        assert request.url.params["countrycodes"] == "fr"
        assert request.url.params["limit"] == "1"
        assert request.headers["User-Agent"] == "Medlink-Test/1.0"
        await geocoder.aclose()

    @pytest.mark.asyncio
    async def test_short_address_skips_lookup(self):
        fake = FakeOsm()
        geocoder = make_geocoder(fake)

        assert await geocoder.locate("abc") is None
        assert fake.requests == []
        await geocoder.aclose()

    @pytest.mark.asyncio
    async def test_no_results(self):
        geocoder = make_geocoder(FakeOsm(search_body=[]))
        assert await geocoder.locate("1 rue Introuvable") is None
        await geocoder.aclose()

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        geocoder = make_geocoder(FakeOsm(search_status=500))
        with pytest.raises(GeocodingError):
            await geocoder.locate("25 rue Victor Hugo, Paris")
        await geocoder.aclose()

    @pytest.mark.asyncio
    async def test_malformed_result_raises(self):
        geocoder = make_geocoder(FakeOsm(search_body=[{"display_name": "Paris"}]))
        with pytest.raises(GeocodingError):
            await geocoder.locate("25 rue Victor Hugo, Paris")
        await geocoder.aclose()


class TestNearestFacilities:
    """Tests for Overpass facility lookup."""

    @pytest.mark.asyncio
    async def test_hospitals_sorted_by_distance(self):
        geocoder = make_geocoder(FakeOsm())

        hospitals = await geocoder.nearest_facilities(PARIS, 15, FacilityKind.HOSPITAL)

        assert [h.id for h in hospitals] == ["osm-hospital-2", "osm-hospital-3", "osm-hospital-1"]
        assert hospitals[0].name == "Hôpital Proche"
        assert hospitals[0].address == "1 rue de la Santé 75014 Paris"
        assert hospitals[0].distance_km == 1.1
        assert hospitals[1].name == "Hôpital"
        assert hospitals[1].address == "Adresse inconnue"
        assert all(h.kind == FacilityKind.HOSPITAL for h in hospitals)
        await geocoder.aclose()

    @pytest.mark.asyncio
    async def test_fire_stations_limited_to_three(self):
        geocoder = make_geocoder(FakeOsm())

        stations = await geocoder.nearest_facilities(PARIS, 15, FacilityKind.FIRE_STATION)

        assert len(stations) == 3
        assert stations[0].name == "Caserne de Pompiers"
        distances = [s.distance_km for s in stations]
        assert distances == sorted(distances)
        await geocoder.aclose()

    @pytest.mark.asyncio
    async def test_overpass_error_raises(self):
        geocoder = make_geocoder(FakeOsm(overpass_status=504))
        with pytest.raises(GeocodingError) as exc_info:
            await geocoder.nearest_facilities(PARIS, 15, FacilityKind.HOSPITAL)
        assert exc_info.value.details["kind"] == "hospital"
        await geocoder.aclose()

    def test_overpass_query(self):
        query = build_overpass_query(FacilityKind.FIRE_STATION, PARIS, 15)
        assert '"amenity"="fire_station"' in query
        assert "(around:15000,48.8566,2.3522);" in query
        assert query.startswith("[out:json]")


class TestHelpers:
    """Tests for distance, ETA and address formatting."""

    def test_haversine_zero(self):
        assert haversine_km(48.8566, 2.3522, 48.8566, 2.3522) == 0.0

    def test_haversine_paris_lyon(self):
        assert 388 < haversine_km(48.8566, 2.3522, 45.7640, 4.8357) < 396

    @pytest.mark.parametrize("tier,expected", [
        (UrgencyTier.IMMEDIATE, 12),
        (UrgencyTier.POTENTIAL, 14),
        (UrgencyTier.RELATIVE, 17),
        (UrgencyTier.MINOR, 22),
        (UrgencyTier.ADVICE_ONLY, 22),
    ])
    def test_eta_for_10_km(self, tier, expected):
        assert calculate_eta(10, tier) == expected

    def test_eta_rounds_up(self):
        assert calculate_eta(0.1, UrgencyTier.IMMEDIATE) == 3

    def test_format_address_fallbacks(self):
        assert format_osm_address(None) == "Adresse inconnue"
        assert format_osm_address({"addr:full": "Place X"}) == "Place X"
