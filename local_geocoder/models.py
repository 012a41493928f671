"""
Pydantic models for the HTTP contract.
Field names and shapes are fixed by existing cluster clients.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class ReverseGeocodeResponse(BaseModel):
    location: str = Field(..., description="'<Name>, <CC>' or 'Unknown'")
    method: str = "geonames"
    coordinates: Coordinates


class HealthResponse(BaseModel):
    status: str = "healthy"
    service: str = "reverse-geocoder"
    timestamp: str


class ErrorResponse(BaseModel):
    error: str
