"""Endpoints HTTP del gateway de ingesta."""

from .events import router as events_router
from .health import router as health_router

__all__ = [
    "events_router",
    "health_router",
]
