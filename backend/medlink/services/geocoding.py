"""
Medlink Triage - Geocoding and Facility Lookup

Turns a caller address into coordinates and finds the nearest hospitals
and fire stations, using OpenStreetMap services (Nominatim + Overpass).
No API key is required.

ETA model:
    minutes = ceil(distance_km * 60 / speed_kmh) + 2
with per-tier average urban speeds and a fixed 2-minute mobilization.
"""

from __future__ import annotations

import logging
import math
from abc import abstractmethod
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from medlink.core.exceptions import GeocodingError
from medlink.core.types import Facility, FacilityKind, Location, UrgencyTier

logger = logging.getLogger(__name__)


EARTH_RADIUS_KM = 6371.0
MOBILIZATION_MINUTES = 2
MIN_ADDRESS_LENGTH = 5

SPEED_KMH_BY_TIER: Dict[UrgencyTier, float] = {
    UrgencyTier.IMMEDIATE: 60.0,
    UrgencyTier.POTENTIAL: 50.0,
    UrgencyTier.RELATIVE: 40.0,
    UrgencyTier.MINOR: 30.0,
    UrgencyTier.ADVICE_ONLY: 30.0,
}

# Results kept per facility kind
FACILITY_LIMITS: Dict[FacilityKind, int] = {
    FacilityKind.HOSPITAL: 5,
    FacilityKind.FIRE_STATION: 3,
}

_DEFAULT_FACILITY_NAMES: Dict[FacilityKind, str] = {
    FacilityKind.HOSPITAL: "Hôpital",
    FacilityKind.FIRE_STATION: "Caserne de Pompiers",
}

_OVERPASS_SELECTORS: Dict[FacilityKind, List[str]] = {
    FacilityKind.HOSPITAL: [
        'node["amenity"="hospital"]',
        'way["amenity"="hospital"]',
        'node["healthcare"="hospital"]',
    ],
    FacilityKind.FIRE_STATION: [
        'node["amenity"="fire_station"]',
        'way["amenity"="fire_station"]',
    ],
}


# =============================================================================
# Pure helpers
# =============================================================================

def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km, rounded to 0.1 km."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 1)


def calculate_eta(distance_km: float, tier: UrgencyTier) -> int:
    """Estimated arrival in minutes, rounded up, mobilization included."""
    speed = SPEED_KMH_BY_TIER[tier]
    return math.ceil(distance_km * 60 / speed) + MOBILIZATION_MINUTES


def format_osm_address(tags: Optional[Dict[str, Any]]) -> str:
    if not tags:
        return "Adresse inconnue"
    parts = [
        tags[key]
        for key in ("addr:housenumber", "addr:street", "addr:postcode", "addr:city")
        if tags.get(key)
    ]
    if parts:
        return " ".join(str(p) for p in parts)
    return tags.get("addr:full") or "Adresse inconnue"


def build_overpass_query(kind: FacilityKind, location: Location, radius_km: float) -> str:
    radius_m = int(radius_km * 1000)
    around = f"(around:{radius_m},{location.lat},{location.lng});"
    selectors = "\n".join(f"  {s}{around}" for s in _OVERPASS_SELECTORS[kind])
    return f"[out:json][timeout:10];\n(\n{selectors}\n);\nout center;"


# =============================================================================
# Protocol
# =============================================================================

@runtime_checkable
class Geocoder(Protocol):
    """
    Protocol for address geocoding and facility lookup.

    locate() returns None when the address is unknown; transport or
    parsing failures raise GeocodingError.
    """

    @abstractmethod
    async def locate(self, address: str) -> Optional[Location]:
        ...

    @abstractmethod
    async def nearest_facilities(
        self,
        location: Location,
        radius_km: float,
        kind: FacilityKind,
    ) -> List[Facility]:
        """Facilities of the given kind, ordered by distance."""
        ...

    def estimate_arrival(self, distance_km: float, tier: UrgencyTier) -> int:
        ...


# =============================================================================
# OpenStreetMap Implementation
# =============================================================================

class OsmGeocoder:
    """
    Nominatim search (France only, first result) and Overpass `around:`
    queries for facilities.

    Usage:
        geocoder = OsmGeocoder()
        location = await geocoder.locate("25 rue Victor Hugo, Paris")
        hospitals = await geocoder.nearest_facilities(location, 15, FacilityKind.HOSPITAL)
        await geocoder.aclose()
    """

    def __init__(
        self,
        nominatim_url: str = "https://nominatim.openstreetmap.org/search",
        overpass_url: str = "https://overpass-api.de/api/interpreter",
        user_agent: str = "Medlink-SAMU/1.0",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.nominatim_url = nominatim_url
        self.overpass_url = overpass_url
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"User-Agent": user_agent},
            transport=transport,
        )

    async def locate(self, address: str) -> Optional[Location]:
        if not address or len(address.strip()) < MIN_ADDRESS_LENGTH:
            return None

        try:
            resp = await self._client.get(
                self.nominatim_url,
                params={"q": address, "format": "json", "limit": 1, "countrycodes": "fr"},
            )
            resp.raise_for_status()
            results = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GeocodingError(f"Nominatim lookup failed: {e}") from e

        if not results:
            logger.warning("Address not found (%d chars)", len(address))
            return None

        first = results[0]
        try:
            location = Location(
                lat=float(first["lat"]),
                lng=float(first["lon"]),
                address=first.get("display_name"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingError(f"Malformed Nominatim result: {e}") from e

        logger.debug("Geocoded address -> %.4f, %.4f", location.lat, location.lng)
        return location

    async def nearest_facilities(
        self,
        location: Location,
        radius_km: float,
        kind: FacilityKind,
    ) -> List[Facility]:
        query = build_overpass_query(kind, location, radius_km)
        try:
            resp = await self._client.post(self.overpass_url, data={"data": query})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GeocodingError(
                f"Overpass lookup failed: {e}",
                details={"kind": kind.value},
            ) from e

        facilities = []
        for element in data.get("elements", []):
            center = element.get("center") or {}
            lat = element.get("lat") or center.get("lat")
            lng = element.get("lon") or center.get("lon")
            if lat is None or lng is None:
                continue
            tags = element.get("tags") or {}
            facilities.append(Facility(
                id=f"osm-{kind.value}-{element.get('id')}",
                name=tags.get("name") or _DEFAULT_FACILITY_NAMES[kind],
                address=format_osm_address(tags),
                lat=float(lat),
                lng=float(lng),
                distance_km=haversine_km(location.lat, location.lng, float(lat), float(lng)),
                kind=kind,
            ))

        facilities.sort(key=lambda f: f.distance_km)
        facilities = facilities[:FACILITY_LIMITS[kind]]

        logger.info("Found %d %s within %skm", len(facilities), kind.value, radius_km)
        return facilities

    def estimate_arrival(self, distance_km: float, tier: UrgencyTier) -> int:
        return calculate_eta(distance_km, tier)

    async def aclose(self) -> None:
        await self._client.aclose()
