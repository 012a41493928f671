"""Exception hierarchy shared by the loader, cache, service and API layers."""

from __future__ import annotations


class GeocoderError(Exception):
    """Base exception for reverse geocoder failures."""


class DataUnavailable(GeocoderError):
    """Raised when the gazetteer source for a country cannot be located."""

    def __init__(self, message: str, countries: tuple[str, ...] = ()):
        super().__init__(message)
        self.countries = countries


class MalformedSource(GeocoderError):
    """Raised when a source file exists but cannot be read as GeoNames data."""


class InvalidRequest(GeocoderError):
    """Raised for caller mistakes: missing, non-numeric or out-of-range input."""


class DownloadCancelled(GeocoderError):
    """Raised when a data download is cancelled before it completes."""
