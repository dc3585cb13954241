# src/shared/models/common.py
"""
Models shared by every service.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API payloads: snake_case in Python, camelCase on the wire."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class ErrorResponse(CamelModel):
    """Standard error body."""

    error_code: str
    message: str
    details: dict[str, Any] | None = None


class HealthStatus(BaseModel):
    """Service health."""

    service: str
    status: str = "healthy"  # healthy or unhealthy, follows PostgreSQL
    version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
    # e.g. {"postgres": "healthy", "rabbitmq": "unavailable"}
