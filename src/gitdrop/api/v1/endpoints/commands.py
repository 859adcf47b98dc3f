# src/gitdrop/api/v1/endpoints/commands.py
"""Chat command endpoints for the gitdrop API."""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status

from gitdrop.core.errors import (
    ConflictError,
    DecryptionError,
    DownloadFailedError,
    DownloadTimeoutError,
    DownloadTooLargeError,
    GitdropError,
    HostingError,
    LockTimeoutError,
    MissingScopeError,
    NotFoundError,
    SaltUnavailableError,
    ValidationError,
)
from gitdrop.schemas.commands import CommandResponse, LoginRequest, UploadRequest
from gitdrop.services.commands import (
    CommandContext,
    CommandReply,
    dispatch,
    get_command_context,
)

router = APIRouter(prefix="/commands", tags=["commands"])

ContextDep = Annotated[CommandContext, Depends(get_command_context)]
IdentityDep = Annotated[
    str,
    Header(alias="X-Chat-Identity", min_length=1, max_length=128),
]

_ERROR_STATUS: tuple[tuple[type[GitdropError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (MissingScopeError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (DownloadTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (DownloadTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (DownloadFailedError, status.HTTP_502_BAD_GATEWAY),
    (LockTimeoutError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (SaltUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DecryptionError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def _status_for(error: GitdropError) -> int:
    if isinstance(error, HostingError):
        if error.status_code == status.HTTP_401_UNAUTHORIZED:
            return status.HTTP_401_UNAUTHORIZED
        return status.HTTP_502_BAD_GATEWAY
    for error_type, code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _to_response(reply: CommandReply) -> CommandResponse:
    if reply.retry_after_seconds is not None:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=reply.text,
            headers={"Retry-After": str(reply.retry_after_seconds)},
        )
    if reply.error is not None:
        raise HTTPException(status_code=_status_for(reply.error), detail=reply.text)
    return CommandResponse(ok=reply.ok, message=reply.text)


@router.post("/login", response_model=CommandResponse)
async def login(payload: LoginRequest, identity: IdentityDep, ctx: ContextDep) -> CommandResponse:
    """Verify and store an access token for the calling identity."""
    reply = await dispatch(
        ctx,
        identity,
        "login",
        token=payload.token,
        in_direct_message=payload.in_direct_message,
    )
    return _to_response(reply)


@router.post("/logout", response_model=CommandResponse)
async def logout(identity: IdentityDep, ctx: ContextDep) -> CommandResponse:
    """Remove the calling identity's stored token."""
    return _to_response(await dispatch(ctx, identity, "logout"))


@router.get("/whoami", response_model=CommandResponse)
async def whoami(identity: IdentityDep, ctx: ContextDep) -> CommandResponse:
    return _to_response(await dispatch(ctx, identity, "whoami"))


@router.get("/repos", response_model=CommandResponse)
async def list_repositories(identity: IdentityDep, ctx: ContextDep) -> CommandResponse:
    """List the most recently updated repositories of the calling identity."""
    return _to_response(await dispatch(ctx, identity, "repos"))


@router.post("/upload", response_model=CommandResponse)
async def upload(payload: UploadRequest, identity: IdentityDep, ctx: ContextDep) -> CommandResponse:
    """Extract a ZIP attachment into a repository."""
    reply = await dispatch(
        ctx,
        identity,
        "upload",
        repository=payload.repository,
        attachment_url=str(payload.attachment.url),
        attachment_name=payload.attachment.filename,
        folder=payload.folder,
        author_label=payload.author_label,
    )
    return _to_response(reply)


@router.get("/help", response_model=CommandResponse)
async def show_help(identity: IdentityDep, ctx: ContextDep) -> CommandResponse:
    return _to_response(await dispatch(ctx, identity, "help"))
