"""Shared Pydantic schemas for Felicity-Engine."""

from typing import Any

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "felicity-engine"


class ErrorResponse(BaseModel):
    kind: str
    message: str
    details: list[dict[str, Any]] = []
