# src/gitdrop/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import commands_router

__all__ = ["commands_router"]
