"""Health link FastAPI application."""

from .main import create_app
from .settings import HealthLinkSettings

__all__ = ["create_app", "HealthLinkSettings"]
