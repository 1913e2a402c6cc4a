# dispatch_worker/services/geocoding.py

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx

from .. import config
from ..schemas import GeoPoint
from .rate_limiter import RateLimiter

log = logging.getLogger(__name__)

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
MAPS_CO_URL = "https://geocode.maps.co/search"


@dataclass(frozen=True)
class BoundingBox:
    south: float
    north: float
    west: float
    east: float

    def contains(self, point: GeoPoint) -> bool:
        return (
            self.south <= point.latitude <= self.north
            and self.west <= point.longitude <= self.east
        )

    def viewbox(self) -> str:
        # any two opposite corners, as lon,lat,lon,lat
        return f"{self.west},{self.south},{self.east},{self.north}"


# Austin / Travis County
SERVICE_AREA = BoundingBox(south=30.0, north=30.6, west=-98.2, east=-97.4)


def _first_point(data) -> Optional[GeoPoint]:
    if not isinstance(data, list) or not data:
        return None
    result = data[0]
    try:
        return GeoPoint(longitude=float(result["lon"]), latitude=float(result["lat"]))
    except (KeyError, TypeError, ValueError):
        return None


class GeocodingProvider(ABC):
    """
    One search endpoint behind its own rate limiter.

    ``geocode`` returns the top hit or None. HTTP errors, timeouts and
    unparseable bodies are logged and reported as None; nothing is retried.
    """

    name = "provider"

    def __init__(
        self,
        min_interval_ms: int = config.GEOCODER_MIN_INTERVAL_MS,
        timeout: float = config.GEOCODER_TIMEOUT_SECONDS,
        limiter: Optional[RateLimiter] = None,
    ):
        self.min_interval_ms = min_interval_ms
        self.timeout = timeout
        self.limiter = limiter or RateLimiter(self.name)

    @abstractmethod
    def build_request(self, query: str) -> dict:
        """Keyword arguments for ``client.get``: url, params, headers."""

    async def geocode(self, client: httpx.AsyncClient, query: str) -> Optional[GeoPoint]:
        await self.limiter.acquire(self.min_interval_ms)

        try:
            resp = await client.get(timeout=self.timeout, **self.build_request(query))
        except httpx.HTTPError as exc:
            log.info("%s failed for %r: %s", self.name, query, exc)
            return None

        if resp.status_code == 429:
            log.info("%s rate limited (429) for %r", self.name, query)
            return None
        if resp.status_code >= 400:
            log.info("%s HTTP %s for %r", self.name, resp.status_code, query)
            return None

        try:
            point = _first_point(resp.json())
        except ValueError:
            log.info("%s returned a non-JSON body for %r", self.name, query)
            return None

        if point is not None:
            log.info("%s hit for %r: [%s, %s]", self.name, query, point.longitude, point.latitude)
        return point


class NominatimProvider(GeocodingProvider):
    name = "nominatim"

    def __init__(self, area: BoundingBox = SERVICE_AREA, user_agent: str = config.NOMINATIM_USER_AGENT, **kwargs):
        self.area = area
        self.user_agent = user_agent
        super().__init__(**kwargs)

    def build_request(self, query: str) -> dict:
        return {
            "url": NOMINATIM_URL,
            "params": {
                "q": query,
                "format": "json",
                "limit": 1,
                "countrycodes": "us",
                "viewbox": self.area.viewbox(),
                "bounded": 1,
            },
            "headers": {"User-Agent": self.user_agent},
        }


class MapsCoProvider(GeocodingProvider):
    """geocode.maps.co; one instance (and one limiter) per API key."""

    def __init__(
        self,
        api_key: str,
        name: str = "maps.co",
        locality: str = "Austin, Travis County, Texas",
        **kwargs,
    ):
        self.api_key = api_key
        self.name = name
        self.locality = locality
        super().__init__(**kwargs)

    def build_request(self, query: str) -> dict:
        return {
            "url": MAPS_CO_URL,
            "params": {"q": f"{query}, {self.locality}", "api_key": self.api_key},
        }


class GeocodingResolver:
    """
    Address variants -> one in-area GeoPoint, or None.

    Variants are tried in order; for each variant the providers are tried in
    priority order. The first hit inside ``area`` wins. Hits outside the
    area are discarded and the search continues.
    """

    def __init__(self, providers: Sequence[GeocodingProvider], area: BoundingBox = SERVICE_AREA):
        self.providers = list(providers)
        self.area = area

    @classmethod
    def from_config(cls) -> "GeocodingResolver":
        providers: List[GeocodingProvider] = [NominatimProvider()]
        if config.GEOCODING_API_KEY:
            providers.append(MapsCoProvider(config.GEOCODING_API_KEY, name="maps.co (key 1)"))
        if config.GEOCODING_API_KEY_2:
            providers.append(MapsCoProvider(config.GEOCODING_API_KEY_2, name="maps.co (key 2)"))
        return cls(providers)

    async def resolve(self, client: httpx.AsyncClient, variants: Sequence[str]) -> Optional[GeoPoint]:
        log.info("Trying %d address variants with fallback geocoding", len(variants))

        for query in variants:
            if not query or not query.strip():
                continue
            for provider in self.providers:
                point = await provider.geocode(client, query)
                if point is None:
                    continue
                if self.area.contains(point):
                    return point
                log.info(
                    "Discarding %s hit [%s, %s] outside the service area",
                    provider.name,
                    point.longitude,
                    point.latitude,
                )

        log.info("All geocoding attempts failed for %d variants", len(variants))
        return None
