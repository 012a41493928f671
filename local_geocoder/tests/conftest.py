"""
Shared fixtures: small GeoNames-format dumps written to a temp data dir.
Rows use the real 19-column layout so the loader sees production-shaped input.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from local_geocoder.cache import CountryCache
from local_geocoder.loader import LoadPolicy, load_country
from local_geocoder.service import ReverseGeocodingService


def make_row(
    name: str,
    lat: float | str,
    lon: float | str,
    feature_code: str = "PPL",
    population: int | str = 5000,
    ascii_name: str | None = None,
    feature_class: str = "P",
    country: str = "DE",
    geoname_id: int = 1,
) -> str:
    cols = [
        str(geoname_id),
        name,
        name if ascii_name is None else ascii_name,
        "",                     # alternatenames
        str(lat),
        str(lon),
        feature_class,
        feature_code,
        country,
        "", "", "", "", "",     # cc2, admin1-4
        str(population),
        "",                     # elevation
        "34",                   # dem
        "Europe/Berlin",
        "2024-01-01",
    ]
    return "\t".join(cols)


GERMAN_ROWS = [
    make_row("Berlin", 52.52437, 13.41053, "PPLC", 3426354, geoname_id=2950159),
    make_row("Potsdam", 52.39886, 13.06566, "PPLA", 140000, geoname_id=2852458),
    make_row("Hamburg", 53.57532, 10.01534, "PPLA", 1739117, geoname_id=2911298),
    make_row("München", 48.13743, 11.57549, "PPLA", 1260391, ascii_name="Munich", geoname_id=2867714),
    make_row("Köln", 50.93333, 6.95, "PPLA2", 963395, ascii_name="", geoname_id=2886242),
    make_row("Kleindorf", 51.0, 10.0, "PPL", 200, geoname_id=10),
    make_row("Amtshausen", 51.5, 9.5, "PPLA2", "", geoname_id=11),
    make_row("Bayern", 49.0, 11.5, "ADM1", 13000000, feature_class="A", geoname_id=12),
    "2950160\tKurzzeile\tKurzzeile\t\t52.5",
    make_row("Fehlerstadt", "abc", 13.0, "PPL", 9000, geoname_id=13),
    make_row("Sankt " + "x" * 60, 50.0, 8.0, "PPL", 9000, geoname_id=14),
    make_row("Berlin", 52.52437, 13.41053, "PPLC", 3426354, geoname_id=2950159),
]

FRENCH_ROWS = [
    make_row("Paris", 48.85341, 2.3488, "PPLC", 2138551, country="FR", geoname_id=2988507),
    make_row("Lyon", 45.74846, 4.84671, "PPLA", 472317, country="FR", geoname_id=2996944),
    make_row("Marseille", 43.29695, 5.38107, "PPLA", 870731, country="FR", geoname_id=2995469),
    make_row("Strasbourg", 48.58392, 7.74553, "PPLA", 274845, country="FR", geoname_id=2973783),
    make_row("Nice", 43.70313, 7.26608, "PPLA2", 342669, country="FR", geoname_id=2990440),
]


def write_country(data_dir: Path, code: str, rows: list[str]) -> Path:
    path = data_dir / f"{code}.txt"
    path.write_text("\n".join(rows) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    write_country(tmp_path, "DE", GERMAN_ROWS)
    write_country(tmp_path, "FR", FRENCH_ROWS)
    return tmp_path


@pytest.fixture
def policy() -> LoadPolicy:
    return LoadPolicy()


class CountingLoader:
    """Loader double that counts how often each country is parsed."""

    def __init__(self, data_dir: Path, policy: LoadPolicy | None = None):
        self.data_dir = data_dir
        self.policy = policy or LoadPolicy()
        self.calls: dict[str, int] = {}

    def __call__(self, code: str):
        self.calls[code] = self.calls.get(code, 0) + 1
        return load_country(code, data_dir=self.data_dir, policy=self.policy)


@pytest.fixture
def counting_loader(data_dir: Path) -> CountingLoader:
    return CountingLoader(data_dir)


@pytest.fixture
def service(counting_loader: CountingLoader) -> ReverseGeocodingService:
    cache = CountryCache(counting_loader, max_workers=2)
    return ReverseGeocodingService(
        cache,
        default_countries=["DE", "FR"],
        default_radius_km=50.0,
        max_radius_km=500.0,
        priority_countries=["DE"],
        background_workers=1,
    )
