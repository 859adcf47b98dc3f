"""Bounded download of chat attachments."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from gitdrop.core.errors import (
    DownloadFailedError,
    DownloadTimeoutError,
    DownloadTooLargeError,
)
from gitdrop.core.settings import Settings, settings

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class DownloadConfig:
    """Immutable limits for attachment downloads."""

    max_bytes: int = 50 * 1024 * 1024
    timeout_seconds: float = 60.0


def load_download_config(source: Settings | None = None) -> DownloadConfig:
    """Build configuration object from global settings."""
    cfg = source or settings
    return DownloadConfig(
        max_bytes=cfg.download_max_bytes,
        timeout_seconds=cfg.download_timeout_seconds,
    )


def is_zip_filename(name: str | None) -> bool:
    return bool(name) and name.lower().endswith(".zip")


def _too_large(config: DownloadConfig) -> DownloadTooLargeError:
    limit_mb = config.max_bytes // (1024 * 1024)
    return DownloadTooLargeError(f"Attachment is larger than {limit_mb} MB")


async def _fetch(
    url: str,
    config: DownloadConfig,
    transport: httpx.AsyncBaseTransport | None,
) -> bytes:
    async with httpx.AsyncClient(transport=transport, follow_redirects=True) as client:
        async with client.stream("GET", url) as response:
            if response.status_code != 200:
                raise DownloadFailedError(
                    f"Failed to download file: {response.status_code}"
                )

            declared = response.headers.get("Content-Length")
            if declared is not None and declared.isdigit() and int(declared) > config.max_bytes:
                raise _too_large(config)

            buffer = bytearray()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > config.max_bytes:
                    raise _too_large(config)
            return bytes(buffer)


async def download_attachment(
    url: str,
    config: DownloadConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bytes:
    """Download ``url`` into memory within the configured size and time bounds.

    Raises:
        DownloadFailedError: Unsupported URL, non-200 status, or transport failure.
        DownloadTooLargeError: The body exceeds ``config.max_bytes``.
        DownloadTimeoutError: The transfer did not finish in time.
    """
    config = config or load_download_config()
    if urlparse(url).scheme.lower() not in ALLOWED_SCHEMES:
        raise DownloadFailedError("Attachment URL must use http or https")

    try:
        data = await asyncio.wait_for(_fetch(url, config, transport), config.timeout_seconds)
    except TimeoutError as err:
        raise DownloadTimeoutError(
            f"Download did not finish within {config.timeout_seconds:g} seconds"
        ) from err
    except httpx.TimeoutException as err:
        raise DownloadTimeoutError("Download timed out") from err
    except httpx.HTTPError as err:
        raise DownloadFailedError(f"Failed to download file: {type(err).__name__}") from err

    logger.debug("Downloaded attachment of %d bytes", len(data))
    return data
