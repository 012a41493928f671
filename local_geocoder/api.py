"""
FastAPI service exposing the local reverse geocoder.

Endpoints:
  GET /api/reverse-geocode  - Nearest known place for a lat/lon
  GET /health               - Liveness check
  GET /                     - Human-readable service info
Anything else under /api/ answers 404 {"error": "Endpoint not found"}.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse

from local_geocoder.config import get_settings
from local_geocoder.errors import InvalidRequest
from local_geocoder.models import Coordinates, ErrorResponse, HealthResponse, ReverseGeocodeResponse
from local_geocoder.service import ReverseGeocodingService, get_service

logger = logging.getLogger(__name__)

DEFAULT_METHOD = "geonames"


# ── Lifespan ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load priority countries, queue the rest. Shutdown: stop loaders."""
    logger.info("Starting Reverse Geocoder Service...")
    service = get_service()
    if get_settings().api.preload_on_startup:
        # Priority countries parse synchronously; keep that off the event loop
        await asyncio.to_thread(service.warm_up)
        logger.info("Geocoder ready with %d cities", service.city_count())
    yield
    service.shutdown()
    logger.info("Reverse Geocoder Service stopped.")


# ── App ───────────────────────────────────────────────────────────────

app = FastAPI(
    title="Reverse Geocoder",
    description="Offline reverse geocoding against bundled GeoNames data",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(InvalidRequest)
async def invalid_request_handler(request: Request, exc: InvalidRequest):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Error processing %s: %s", request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ── Helpers ───────────────────────────────────────────────────────────

def _parse_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise InvalidRequest("Invalid coordinate format") from None


def _split_countries(raw: Optional[str]) -> Optional[list[str]]:
    if raw is None:
        return None
    return [c for c in raw.split(",") if c.strip()]


# ══════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ══════════════════════════════════════════════════════════════════════

@app.get(
    "/api/reverse-geocode",
    response_model=ReverseGeocodeResponse,
    responses={400: {"model": ErrorResponse}},
)
def reverse_geocode(
    lat: Optional[str] = Query(None, description="Latitude in decimal degrees"),
    lon: Optional[str] = Query(None, description="Longitude in decimal degrees"),
    method: str = Query(DEFAULT_METHOD, description="geonames | hybrid (both use local data)"),
    countries: Optional[str] = Query(None, description="Comma-separated ISO country codes"),
    radius_km: Optional[str] = Query(None, description="Maximum distance to the matched place"),
    service: ReverseGeocodingService = Depends(get_service),
):
    """
    Resolve a coordinate to "<Name>, <CC>".

    Query values arrive as strings and are parsed here; bad input answers
    400 {"error": ...}. A miss is a 200 with location "Unknown".
    """
    if lat is None or lon is None:
        raise InvalidRequest("Missing required parameters: lat, lon")

    latitude = _parse_float(lat)
    longitude = _parse_float(lon)
    radius = _parse_float(radius_km) if radius_km is not None else None

    location = service.resolve(
        latitude,
        longitude,
        countries=_split_countries(countries),
        max_radius_km=radius,
    )

    return ReverseGeocodeResponse(
        location=location,
        method=method,
        coordinates=Coordinates(latitude=round(latitude, 6), longitude=round(longitude, 6)),
    )


@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(timestamp=datetime.now(timezone.utc).isoformat())


@app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
               include_in_schema=False)
async def api_not_found(path: str):
    return JSONResponse(status_code=404, content={"error": "Endpoint not found"})


_ROOT_PAGE = """<!DOCTYPE html>
<html>
<head>
    <title>Reverse Geocoder Service</title>
</head>
<body>
    <h1>Reverse Geocoder Service</h1>
    <p>Offline reverse geocoding for cluster nodes</p>

    <h2>API Endpoints:</h2>
    <ul>
        <li><code>/health</code> - Health check</li>
        <li><code>/api/reverse-geocode?lat=&lt;lat&gt;&amp;lon=&lt;lon&gt;&amp;method=&lt;method&gt;</code> - Reverse geocoding</li>
    </ul>

    <h2>Example:</h2>
    <p><a href="/api/reverse-geocode?lat=51.5074&amp;lon=-0.1278&amp;method=geonames">
        /api/reverse-geocode?lat=51.5074&amp;lon=-0.1278&amp;method=geonames
    </a></p>

    <h2>Methods:</h2>
    <ul>
        <li><code>geonames</code> - Use local GeoNames data (default)</li>
        <li><code>hybrid</code> - Same as geonames (for compatibility)</li>
    </ul>
</body>
</html>
"""


@app.get("/", response_class=HTMLResponse, include_in_schema=False)
async def root():
    return _ROOT_PAGE
