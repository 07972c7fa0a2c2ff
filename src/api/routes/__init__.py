"""API routes."""

from src.api.routes.health import router as health_router
from src.api.routes.search_stream import router as search_stream_router

__all__ = [
    "health_router",
    "search_stream_router",
]
