"""API package for MenuMiner."""

from .routes import router

__all__ = ["router"]
