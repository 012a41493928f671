"""
Reverse geocoding facade: coordinate in, "<Name>, <CC>" out.

Composes the country cache and the nearest-neighbor engine. A lookup miss
(nothing within the radius, empty data, or no country data available at all)
is a normal "Unknown" result; only bad input raises InvalidRequest.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache, partial
from typing import Optional

from local_geocoder.cache import CountryCache
from local_geocoder.config import get_settings
from local_geocoder.errors import DataUnavailable, InvalidRequest
from local_geocoder.gazetteer import City, CityCollection, normalize_country_code
from local_geocoder.loader import LoadPolicy, load_country
from local_geocoder.nearest import find_nearest_within_radius

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown"


@dataclass(frozen=True)
class LookupResult:
    latitude: float
    longitude: float
    city: Optional[City] = None
    distance_km: Optional[float] = None

    @property
    def found(self) -> bool:
        return self.city is not None

    @property
    def label(self) -> str:
        return self.city.label if self.city is not None else UNKNOWN_LOCATION


class ReverseGeocodingService:
    def __init__(
        self,
        cache: CountryCache,
        default_countries: Iterable[str],
        default_radius_km: float = 50.0,
        max_radius_km: float = 500.0,
        priority_countries: Iterable[str] = (),
        background_workers: int = 4,
    ):
        self.cache = cache
        self.default_countries = tuple(self._normalize_countries(default_countries))
        self.priority_countries = tuple(self._normalize_countries(priority_countries))
        self.default_radius_km = default_radius_km
        self.max_radius_km = max_radius_km
        self._background_workers = max(1, background_workers)
        self._executor: Optional[ThreadPoolExecutor] = None

    # ── Queries ───────────────────────────────────────────────────────

    def resolve(
        self,
        lat: float,
        lon: float,
        countries: Optional[Iterable[str]] = None,
        max_radius_km: Optional[float] = None,
    ) -> str:
        """Return "<Name>, <CC>" for the nearest city, or "Unknown"."""
        return self.lookup(lat, lon, countries, max_radius_km).label

    def lookup(
        self,
        lat: float,
        lon: float,
        countries: Optional[Iterable[str]] = None,
        max_radius_km: Optional[float] = None,
    ) -> LookupResult:
        radius = self._validate(lat, lon, max_radius_km)
        codes = self._resolve_countries(countries)

        try:
            collection = self._collection_for(codes)
        except DataUnavailable as e:
            logger.warning("No data for lookup (%.4f, %.4f): %s", lat, lon, e)
            return LookupResult(latitude=lat, longitude=lon)

        nearest = find_nearest_within_radius(collection, lat, lon, radius)
        if nearest is None:
            logger.debug("No city within %.1f km of (%.4f, %.4f)", radius, lat, lon)
            return LookupResult(latitude=lat, longitude=lon)
        return LookupResult(
            latitude=lat,
            longitude=lon,
            city=nearest.city,
            distance_km=nearest.distance_km,
        )

    def city_count(self) -> int:
        return self.cache.city_count()

    # ── Startup loading ───────────────────────────────────────────────

    def warm_up(self, background: bool = True) -> None:
        """
        Load priority countries now and the remaining defaults afterwards.
        Requests arriving mid-load wait on the in-flight parse rather than
        starting their own.
        """
        for code in self.priority_countries:
            try:
                collection = self.cache.get_or_load(code)
                logger.info("Loaded %d cities from %s", len(collection), code)
            except DataUnavailable as e:
                logger.error("Failed to load priority country %s: %s", code, e)
            except Exception as e:
                logger.error("Failed to load priority country %s: %s", code, e, exc_info=True)

        rest = [c for c in self.default_countries if c not in self.priority_countries]
        if not rest:
            return
        if not background:
            for code in rest:
                self._load_quietly(code)
            return

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._background_workers, thread_name_prefix="warm-up"
            )
        logger.info("Loading %d additional countries in background...", len(rest))
        for code in rest:
            self._executor.submit(self._load_quietly, code)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _load_quietly(self, code: str) -> None:
        """Background job wrapper: failures are logged, never raised."""
        try:
            collection = self.cache.get_or_load(code)
            logger.info("Background loaded %d cities from %s", len(collection), code)
        except DataUnavailable as e:
            logger.warning("Background load failed for %s: %s", code, e)
        except Exception as e:
            logger.error("Background load failed for %s: %s", code, e, exc_info=True)

    # ── Helpers ───────────────────────────────────────────────────────

    def _validate(self, lat: float, lon: float, max_radius_km: Optional[float]) -> float:
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise InvalidRequest("Coordinates must be finite numbers")
        if not -90.0 <= lat <= 90.0:
            raise InvalidRequest(f"Latitude must be between -90 and 90, got {lat}")
        if not -180.0 <= lon <= 180.0:
            raise InvalidRequest(f"Longitude must be between -180 and 180, got {lon}")

        radius = self.default_radius_km if max_radius_km is None else max_radius_km
        if not math.isfinite(radius) or radius < 0:
            raise InvalidRequest("radius_km must be a non-negative number")
        if radius > self.max_radius_km:
            raise InvalidRequest(f"radius_km must be <= {self.max_radius_km}")
        return radius

    def _resolve_countries(self, countries: Optional[Iterable[str]]) -> tuple[str, ...]:
        if countries is None:
            return self.default_countries
        codes = tuple(self._normalize_countries(countries, strict=True))
        return codes or self.default_countries

    @staticmethod
    def _normalize_countries(countries: Iterable[str], strict: bool = False) -> list[str]:
        codes: list[str] = []
        for raw in countries:
            if not raw or not raw.strip():
                continue
            code = normalize_country_code(raw)
            if code is None:
                if strict:
                    raise InvalidRequest(f"Invalid country code: {raw!r}")
                logger.warning("Ignoring invalid country code %r", raw)
                continue
            if code not in codes:
                codes.append(code)
        return codes

    def _collection_for(self, codes: tuple[str, ...]) -> CityCollection:
        # Any per-country load failure surfaces as DataUnavailable
        return self.cache.get_or_load_many(codes)


def build_service() -> ReverseGeocodingService:
    """Construct a service wired to the configured data directory and policy."""
    settings = get_settings()
    loader = partial(
        load_country,
        data_dir=settings.gazetteer.data_dir,
        policy=LoadPolicy.from_settings(),
    )
    cache = CountryCache(
        loader,
        max_workers=settings.gazetteer.load_workers,
        retry_after_s=settings.gazetteer.failure_retry_s,
    )
    return ReverseGeocodingService(
        cache,
        default_countries=settings.gazetteer.countries,
        default_radius_km=settings.api.default_radius_km,
        max_radius_km=settings.api.max_radius_km,
        priority_countries=settings.gazetteer.priority_countries,
        background_workers=settings.gazetteer.load_workers,
    )


@lru_cache(maxsize=1)
def get_service() -> ReverseGeocodingService:
    """Process-wide service used by the API and CLI."""
    return build_service()
