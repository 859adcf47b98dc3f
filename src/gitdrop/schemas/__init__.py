# src/gitdrop/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .commands import Attachment, CommandResponse, LoginRequest, UploadRequest

__all__ = ["Attachment", "CommandResponse", "LoginRequest", "UploadRequest"]
