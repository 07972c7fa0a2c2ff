"""Health check models."""

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="healthy", description="healthy, or degraded when a dependency is down")
    version: str = Field(default="1.0.0", description="API version")
    search_backend: bool = Field(default=True, description="Search backend liveness")
    breakers: dict[str, dict[str, Any]] = Field(default_factory=dict, description="Circuit breaker snapshots")
    cache: dict[str, Any] = Field(default_factory=dict, description="Cache region statistics")
    errors: dict[str, dict[str, Any]] = Field(default_factory=dict, description="Rolling error counts")
