"""API module with FastAPI application."""

from src.api.app import app, create_app

__all__ = ["app", "create_app"]

