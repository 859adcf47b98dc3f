# src/gitdrop/schemas/commands.py
"""Command request and response schemas."""

from pydantic import BaseModel, Field, HttpUrl


class LoginRequest(BaseModel):
    """Schema for submitting an access token."""

    token: str = Field(..., min_length=1, description="GitHub personal access token")
    in_direct_message: bool = Field(
        True,
        description="False when the command was sent in a public channel",
    )


class Attachment(BaseModel):
    """A chat attachment referenced by URL."""

    url: HttpUrl
    filename: str = Field(..., min_length=1)


class UploadRequest(BaseModel):
    """Schema for uploading a ZIP attachment into a repository."""

    repository: str = Field(..., min_length=1, max_length=100)
    folder: str | None = Field(None, description="Target folder; repository root when empty")
    attachment: Attachment
    author_label: str | None = Field(
        None,
        description="Display name used in commit messages; defaults to the identity",
    )


class CommandResponse(BaseModel):
    """Text reply rendered for the chat surface."""

    ok: bool
    message: str
