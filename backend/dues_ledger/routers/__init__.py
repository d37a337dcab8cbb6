"""Routers package."""

from .payments import router as payments_router
from .units import router as units_router

__all__ = ["payments_router", "units_router"]
