"""ZIP archive inspection.

Validation is one pass over the central directory metadata. No entry content is
decompressed until the whole archive has passed every bound, so hostile inputs
are rejected cheaply.
"""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Final

from gitdrop.core.errors import (
    ArchiveBombError,
    ArchiveTooLargeError,
    InvalidArchiveError,
    TooManyEntriesError,
)
from gitdrop.core.settings import Settings, settings
from gitdrop.utils.paths import normalize, strip_common_root

MIB: Final[int] = 1024 * 1024
RESOURCE_FORK_PREFIX: Final[str] = "__MACOSX/"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveLimits:
    """Bounds applied to an archive before any content is read."""

    max_total_uncompressed: int = 500 * MIB
    max_compression_ratio: float = 100.0
    max_entries: int = 10_000


def load_archive_limits(source: Settings | None = None) -> ArchiveLimits:
    """Build configuration object from global settings."""
    cfg = source or settings
    return ArchiveLimits(
        max_total_uncompressed=cfg.archive_max_total_bytes,
        max_compression_ratio=cfg.archive_max_ratio,
        max_entries=cfg.archive_max_entries,
    )


@dataclass(frozen=True)
class ArchiveEntry:
    """A file entry of an upload; lives only for one upload operation."""

    raw_path: str
    uncompressed_size: int
    compressed_size: int
    normalized_path: str | None = None
    info: zipfile.ZipInfo | None = field(default=None, compare=False, repr=False)

    def with_path(self, normalized_path: str) -> ArchiveEntry:
        return replace(self, normalized_path=normalized_path)


def _is_skipped(info: zipfile.ZipInfo) -> bool:
    return info.is_dir() or info.filename.startswith(RESOURCE_FORK_PREFIX)


@contextmanager
def open_archive(buffer: bytes) -> Iterator[zipfile.ZipFile]:
    """Open an in-memory ZIP buffer."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(buffer))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as err:
        raise InvalidArchiveError(f"Not a readable ZIP archive: {err}") from err
    try:
        yield archive
    finally:
        archive.close()


def inspect_archive(archive: zipfile.ZipFile, limits: ArchiveLimits) -> list[ArchiveEntry]:
    """Validate an opened archive's metadata and return its file entries.

    Raises:
        TooManyEntriesError: More file entries than ``limits.max_entries``.
        ArchiveTooLargeError: Total uncompressed size above the cap.
        ArchiveBombError: An entry whose compression ratio exceeds the cap.
    """
    entries: list[ArchiveEntry] = []
    total_uncompressed = 0

    for info in archive.infolist():
        if _is_skipped(info):
            continue

        if len(entries) + 1 > limits.max_entries:
            raise TooManyEntriesError(
                f"Archive has more than {limits.max_entries} files"
            )

        uncompressed, compressed = info.file_size, info.compress_size
        total_uncompressed += uncompressed
        if total_uncompressed > limits.max_total_uncompressed:
            raise ArchiveTooLargeError(
                "Archive expands to more than "
                f"{limits.max_total_uncompressed // MIB} MiB"
            )

        if not (uncompressed == 0 and compressed == 0):
            if compressed == 0 or uncompressed / compressed > limits.max_compression_ratio:
                raise ArchiveBombError(
                    f"Entry {info.filename!r} exceeds the "
                    f"{limits.max_compression_ratio:g}:1 compression ratio limit"
                )

        entries.append(
            ArchiveEntry(
                raw_path=info.filename,
                uncompressed_size=uncompressed,
                compressed_size=compressed,
                info=info,
            )
        )

    logger.debug(
        "Archive passed inspection: %d files, %d bytes uncompressed",
        len(entries),
        total_uncompressed,
    )
    return entries


def inspect(buffer: bytes, limits: ArchiveLimits | None = None) -> list[ArchiveEntry]:
    """Validate an archive buffer and return its file entries."""
    with open_archive(buffer) as archive:
        return inspect_archive(archive, limits or ArchiveLimits())


def read_entry(archive: zipfile.ZipFile, entry: ArchiveEntry) -> bytes:
    """Read one validated entry, refusing data beyond its declared size.

    Entries produced by inspection are opened through their own ``ZipInfo``,
    so duplicate names resolve to the inspected entry.
    """
    member = entry.info if entry.info is not None else entry.raw_path
    with archive.open(member) as handle:
        data = handle.read(entry.uncompressed_size + 1)
    if len(data) > entry.uncompressed_size:
        raise ArchiveBombError(
            f"Entry {entry.raw_path!r} holds more data than its header declares"
        )
    return data


def sanitize_entries(
    entries: list[ArchiveEntry],
) -> tuple[list[ArchiveEntry], list[tuple[str, str]]]:
    """Normalize entry paths and strip a shared top-level directory.

    Any unsafe path rejects the whole archive before anything is published.

    Returns the publishable entries and ``(raw_path, reason)`` failures for
    entries dropped after stripping.

    Raises:
        InvalidPathError: If any entry path is unsafe.
    """
    failures: list[tuple[str, str]] = []
    accepted = [(entry, normalize(entry.raw_path)) for entry in entries]

    stripped, root = strip_common_root(path for _, path in accepted)
    if root:
        logger.debug("Stripping shared archive root %r", root)

    sanitized: list[ArchiveEntry] = []
    seen: set[str] = set()
    for entry, path in accepted:
        final_path = stripped[path]
        if final_path is None:
            failures.append((entry.raw_path, "Path is empty after removing the shared folder"))
            continue
        if final_path in seen:
            failures.append((entry.raw_path, "Duplicate path in archive"))
            continue
        seen.add(final_path)
        sanitized.append(entry.with_path(final_path))
    return sanitized, failures
