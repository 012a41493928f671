"""
Central configuration loaded from environment variables with sensible defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip().upper() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class GazetteerConfig:
    data_dir: str = os.getenv("GEONAMES_DATA_DIR", "data/geonames")
    # Rows below this population are dropped unless administrative
    min_population: int = int(os.getenv("GEONAMES_MIN_POPULATION", "1000"))
    feature_codes: tuple[str, ...] = _env_list(
        "GEONAMES_FEATURE_CODES", "PPLC,PPLA,PPLA2,PPLA3,PPLA4,PPL,PPLF"
    )
    ascii_only: bool = os.getenv("GEONAMES_ASCII_ONLY", "true").lower() == "true"
    max_name_length: int = int(os.getenv("GEONAMES_MAX_NAME_LENGTH", "50"))
    # Countries served when a request names none (must match prepared data)
    countries: tuple[str, ...] = _env_list(
        "GEONAMES_COUNTRIES", "DE,US,GB,FR,IT,ES,NL,BE,AT,CH,DK,SE,NO,FI,PL"
    )
    # Loaded synchronously at startup, the rest follow in the background
    priority_countries: tuple[str, ...] = _env_list("GEONAMES_PRIORITY_COUNTRIES", "DE,FR")
    load_workers: int = int(os.getenv("GEONAMES_LOAD_WORKERS", "4"))
    # Missing country files are retried after this many seconds; malformed ones never
    failure_retry_s: float = float(os.getenv("GEONAMES_FAILURE_RETRY_S", "60"))


@dataclass(frozen=True)
class DownloadConfig:
    base_url: str = os.getenv("GEONAMES_BASE_URL", "https://download.geonames.org/export/dump")
    request_timeout: float = float(os.getenv("GEONAMES_DOWNLOAD_TIMEOUT", "60"))
    max_retries: int = int(os.getenv("GEONAMES_DOWNLOAD_RETRIES", "3"))
    backoff_base: float = float(os.getenv("GEONAMES_DOWNLOAD_BACKOFF", "2.0"))
    # Archives younger than this are reused instead of re-downloaded
    max_age_days: int = int(os.getenv("GEONAMES_MAX_AGE_DAYS", "7"))
    chunk_size: int = 64 * 1024


@dataclass(frozen=True)
class APIConfig:
    host: str = os.getenv("API_HOST", "0.0.0.0")
    port: int = int(os.getenv("API_PORT", "8090"))
    default_radius_km: float = float(os.getenv("API_DEFAULT_RADIUS_KM", "50.0"))
    max_radius_km: float = float(os.getenv("API_MAX_RADIUS_KM", "500.0"))
    preload_on_startup: bool = os.getenv("API_PRELOAD", "true").lower() == "true"


@dataclass(frozen=True)
class Settings:
    gazetteer: GazetteerConfig = field(default_factory=GazetteerConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    env: str = os.getenv("APP_ENV", "development")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
