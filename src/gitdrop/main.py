# src/gitdrop/main.py
"""Main entry point for the gitdrop application."""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gitdrop.api.v1 import commands_router
from gitdrop.core.settings import settings
from gitdrop.services.commands import get_command_context

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="gitdrop API",
    description="Publish ZIP attachments from chat into GitHub repositories",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Include API routers
app.include_router(commands_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    context = get_command_context()
    stop_event = asyncio.Event()
    app.state.sweeper_stop = stop_event
    app.state.sweeper_task = asyncio.create_task(context.governor.run_sweeper(stop_event))
    logger.info(
        "%s %s started; data directory %s",
        settings.app_name,
        settings.app_version,
        settings.data_dir,
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "sweeper_stop", None)
    task: asyncio.Task[None] | None = getattr(app.state, "sweeper_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        await task


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Publish ZIP attachments from chat into GitHub repositories",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("gitdrop.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
