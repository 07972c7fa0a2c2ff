"""API request and response models."""

from src.api.models.health import HealthResponse
from src.api.models.search import HistoryMessage, ModeInfo, SearchStreamRequest

__all__ = [
    # Health
    "HealthResponse",
    # Search
    "HistoryMessage",
    "ModeInfo",
    "SearchStreamRequest",
]
