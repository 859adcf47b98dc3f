# src/gitdrop/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .commands import router as commands_router

__all__ = ["commands_router"]
