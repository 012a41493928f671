"""
GeoNames per-country dump loader.

Turns `<DATA_DIR>/<CC>.txt` (tab-separated, 19 columns, no header) into a
filtered CityCollection. Rules, applied per row:
  1. At least 15 columns, otherwise skipped silently (partial rows are routine)
  2. Feature class must be "P" (populated place)
  3. Feature code must be in the policy allow-list
  4. Name is the ascii-name column, falling back to the native name; rows whose
     name is non-ASCII (when ascii_only) or too long are skipped, not truncated
  5. Latitude/longitude must parse and be in range; blank population means 0
  6. Kept if population >= min_population or the code is administrative
A bad row only ever removes that row from the result.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from local_geocoder.config import get_settings
from local_geocoder.errors import DataUnavailable, MalformedSource
from local_geocoder.gazetteer import City, CityCollection, normalize_country_code

logger = logging.getLogger(__name__)

# ── GeoNames dump layout ──────────────────────────────────────────────

COL_NAME = 1
COL_ASCII_NAME = 2
COL_LATITUDE = 4
COL_LONGITUDE = 5
COL_FEATURE_CLASS = 6
COL_FEATURE_CODE = 7
COL_POPULATION = 14
MIN_COLUMNS = 15

POPULATED_PLACE = "P"

# Kept regardless of population
ADMINISTRATIVE_CODES = frozenset({"PPLC", "PPLA", "PPLA2"})


@dataclass(frozen=True)
class LoadPolicy:
    """Memory-optimized filtering thresholds."""
    min_population: int = 1000
    feature_codes: frozenset[str] = frozenset({"PPLC", "PPLA", "PPLA2", "PPLA3", "PPLA4", "PPL", "PPLF"})
    ascii_only: bool = True
    max_name_length: int = 50

    @classmethod
    def from_settings(cls) -> "LoadPolicy":
        cfg = get_settings().gazetteer
        return cls(
            min_population=cfg.min_population,
            feature_codes=frozenset(cfg.feature_codes),
            ascii_only=cfg.ascii_only,
            max_name_length=cfg.max_name_length,
        )


@dataclass
class LoadStats:
    total_rows: int = 0
    short: int = 0          # fewer than MIN_COLUMNS
    malformed: int = 0      # unparsable or out-of-range numbers
    filtered: int = 0       # wrong class/code or below population threshold
    non_ascii: int = 0
    too_long: int = 0
    duplicates: int = 0
    kept: int = 0

    @property
    def skipped(self) -> int:
        return self.total_rows - self.kept

    def as_dict(self) -> dict:
        data = asdict(self)
        data["skipped"] = self.skipped
        return data


def _pick_name(parts: list[str]) -> str:
    return parts[COL_ASCII_NAME].strip() or parts[COL_NAME].strip()


def parse_rows(
    lines: Iterable[str],
    country_code: str,
    policy: Optional[LoadPolicy] = None,
) -> CityCollection:
    """
    Apply the row-acceptance rules to raw dump lines.

    Raises MalformedSource when not a single line has the minimum column count.
    """
    policy = policy or LoadPolicy()
    stats = LoadStats()
    cities: list[City] = []
    seen: set[tuple[str, float, float]] = set()
    wide_rows = 0

    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            continue
        stats.total_rows += 1

        parts = line.split("\t")
        if len(parts) < MIN_COLUMNS:
            stats.short += 1
            continue
        wide_rows += 1

        if parts[COL_FEATURE_CLASS] != POPULATED_PLACE:
            stats.filtered += 1
            continue
        feature_code = parts[COL_FEATURE_CODE]
        if feature_code not in policy.feature_codes:
            stats.filtered += 1
            continue

        name = _pick_name(parts)
        if not name:
            stats.malformed += 1
            continue
        if policy.ascii_only and not name.isascii():
            stats.non_ascii += 1
            continue
        if len(name) > policy.max_name_length:
            stats.too_long += 1
            continue

        try:
            lat = float(parts[COL_LATITUDE])
            lon = float(parts[COL_LONGITUDE])
            raw_pop = parts[COL_POPULATION].strip()
            population = int(raw_pop) if raw_pop else 0
            city = City(name=name, country=country_code, latitude=lat, longitude=lon)
        except ValueError:
            stats.malformed += 1
            continue

        if population < policy.min_population and feature_code not in ADMINISTRATIVE_CODES:
            stats.filtered += 1
            continue

        key = (city.name, city.latitude, city.longitude)
        if key in seen:
            stats.duplicates += 1
            continue
        seen.add(key)
        cities.append(city)

    if wide_rows == 0:
        raise MalformedSource(
            f"GeoNames data for {country_code} has no rows with at least {MIN_COLUMNS} columns"
        )

    stats.kept = len(cities)
    return CityCollection(cities, country=country_code, stats=stats)


def source_path(country_code: str, data_dir: Optional[str | Path] = None) -> Path:
    base = Path(data_dir if data_dir is not None else get_settings().gazetteer.data_dir)
    return base / f"{country_code}.txt"


def load_country(
    country_code: str,
    data_dir: Optional[str | Path] = None,
    policy: Optional[LoadPolicy] = None,
) -> CityCollection:
    """
    Load one country's cities from `<data_dir>/<CC>.txt`.

    Raises DataUnavailable if the file does not exist and MalformedSource if it
    holds no usable rows. Storing the result is the caller's job.
    """
    code = normalize_country_code(country_code)
    if code is None:
        raise DataUnavailable(f"Not a country code: {country_code!r}", (str(country_code),))

    path = source_path(code, data_dir)
    if not path.is_file():
        raise DataUnavailable(f"GeoNames data not found for country {code} at {path}", (code,))

    policy = policy or LoadPolicy.from_settings()
    with path.open("r", encoding="utf-8", errors="replace") as f:
        collection = parse_rows(f, code, policy)

    stats = collection.stats
    logger.info(
        "Loaded %d cities from %s (%d/%d rows skipped, %d malformed, min pop: %d)",
        stats.kept, code, stats.skipped, stats.total_rows,
        stats.malformed + stats.short, policy.min_population,
    )
    return collection
