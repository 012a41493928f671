"""
Nearest-neighbor search over a CityCollection.

Exhaustive haversine scan (spherical Earth, R = 6371 km, float64), vectorised
with numpy over the collection's pre-computed radian arrays. The minimum wins;
ties go to the first city in collection order, which for a single country is
alphabetical.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from local_geocoder.gazetteer import City, CityCollection

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class NearestResult:
    city: City
    distance_km: float


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km between two points given in degrees."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_km_many(lat: float, lon: float, lats_rad: np.ndarray, lons_rad: np.ndarray) -> np.ndarray:
    """Distances in km from one point (degrees) to many points (radians)."""
    lat_r = math.radians(lat)
    lon_r = math.radians(lon)
    d_lat = lats_rad - lat_r
    d_lon = lons_rad - lon_r
    a = np.sin(d_lat / 2) ** 2 + math.cos(lat_r) * np.cos(lats_rad) * np.sin(d_lon / 2) ** 2
    # Rounding can push a marginally outside [0, 1]
    a = np.clip(a, 0.0, 1.0)
    return EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def find_nearest(collection: CityCollection, lat: float, lon: float) -> Optional[NearestResult]:
    """Return the closest city, or None for an empty collection."""
    if len(collection) == 0:
        return None

    distances = haversine_km_many(lat, lon, collection.latitudes_rad, collection.longitudes_rad)
    # argmin returns the first index on ties
    idx = int(np.argmin(distances))
    return NearestResult(city=collection[idx], distance_km=float(distances[idx]))


def find_nearest_within_radius(
    collection: CityCollection,
    lat: float,
    lon: float,
    max_km: float,
) -> Optional[NearestResult]:
    """
    The unconditional nearest city if it lies within max_km, else None.
    There is no fallback to a farther candidate.
    """
    nearest = find_nearest(collection, lat, lon)
    if nearest is None or nearest.distance_km > max_km:
        return None
    return nearest
