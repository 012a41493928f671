"""
Gazetteer record model.

A City keeps only what a reverse lookup needs (name, country, coordinates);
population and feature codes are consumed by the loader's filter and then
dropped to keep per-record memory small.

A CityCollection is the immutable, name-ordered set of cities for one country.
It also holds the coordinates as read-only numpy arrays (radians) so the
nearest-neighbor scan can run vectorised without rebuilding them per query.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, overload

import numpy as np

if TYPE_CHECKING:
    from local_geocoder.loader import LoadStats

_COUNTRY_CODE_RE = re.compile(r"[A-Za-z]{2}")


def normalize_country_code(code: str) -> Optional[str]:
    """Return the upper-case ISO alpha-2 code, or None if it is not two letters."""
    code = (code or "").strip()
    if not _COUNTRY_CODE_RE.fullmatch(code):
        return None
    return code.upper()


@dataclass(frozen=True)
class City:
    name: str
    country: str      # ISO-3166 alpha-2, e.g. "DE"
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("City name must not be empty")
        if not _COUNTRY_CODE_RE.fullmatch(self.country or ""):
            raise ValueError(f"Invalid country code: {self.country!r}")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")

    @property
    def label(self) -> str:
        return f"{self.name}, {self.country}"


class CityCollection(Sequence):
    """Ordered, read-only sequence of City values."""

    def __init__(
        self,
        cities: Iterable[City] = (),
        country: Optional[str] = None,
        stats: Optional["LoadStats"] = None,
        sort: bool = True,
    ):
        items = list(cities)
        if sort:
            items.sort(key=lambda c: (c.name, c.latitude, c.longitude))
        self._cities: tuple[City, ...] = tuple(items)
        self.country = country
        self.stats = stats

        self._lat_rad = np.radians(np.fromiter((c.latitude for c in items), dtype=np.float64, count=len(items)))
        self._lon_rad = np.radians(np.fromiter((c.longitude for c in items), dtype=np.float64, count=len(items)))
        self._lat_rad.flags.writeable = False
        self._lon_rad.flags.writeable = False

    @classmethod
    def merge(cls, collections: Iterable["CityCollection"]) -> "CityCollection":
        """Concatenate collections in the given order, keeping each one's ordering."""
        collections = list(collections)
        merged: list[City] = []
        for col in collections:
            merged.extend(col)
        country = collections[0].country if len(collections) == 1 else None
        return cls(merged, country=country, sort=False)

    @property
    def latitudes_rad(self) -> np.ndarray:
        return self._lat_rad

    @property
    def longitudes_rad(self) -> np.ndarray:
        return self._lon_rad

    @property
    def countries(self) -> set[str]:
        return {c.country for c in self._cities}

    @overload
    def __getitem__(self, index: int) -> City: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[City, ...]: ...

    def __getitem__(self, index):
        return self._cities[index]

    def __len__(self) -> int:
        return len(self._cities)

    def __iter__(self) -> Iterator[City]:
        return iter(self._cities)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CityCollection):
            return NotImplemented
        return self._cities == other._cities

    def __repr__(self) -> str:
        return f"CityCollection(country={self.country!r}, size={len(self._cities)})"
