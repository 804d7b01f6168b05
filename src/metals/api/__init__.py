"""HTTP surface: FastAPI app factory and JSON routes."""

from metals.api.app import create_app

__all__ = ["create_app"]
