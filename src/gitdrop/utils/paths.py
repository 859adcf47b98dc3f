"""Normalization and validation of archive entry paths.

Rejected outright: ``..`` segments (literal or percent-encoded, including
double encoding), NUL and other control bytes, absolute or drive-letter paths,
and backslashes. Accepted paths have leading slashes, repeated slashes, and
``.`` segments removed.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Final
from urllib.parse import unquote

from gitdrop.core.errors import InvalidPathError, InvalidRepositoryNameError

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")
_REPOSITORY_NAME = re.compile(r"^[A-Za-z0-9._-]{1,100}$")
DECODE_ROUNDS: Final[int] = 2


def _decoded_forms(raw_path: str) -> list[str]:
    forms = [raw_path]
    current = raw_path
    for _ in range(DECODE_ROUNDS):
        decoded = unquote(current)
        if decoded == current:
            break
        forms.append(decoded)
        current = decoded
    return forms


def _rejection_reason(candidate: str) -> str | None:
    if _CONTROL_CHARS.search(candidate):
        return "contains control characters"
    if "\\" in candidate:
        return "contains a backslash"
    if candidate.startswith("/") or _DRIVE_LETTER.match(candidate):
        return "is absolute"
    if ".." in candidate.split("/"):
        return "contains a parent-directory segment"
    return None


def normalize(raw_path: str) -> str:
    """Return the sanitized relative form of ``raw_path``.

    Raises:
        InvalidPathError: If the path is empty or unsafe.
    """
    if not isinstance(raw_path, str) or not raw_path:
        raise InvalidPathError(str(raw_path), "is empty")

    for candidate in _decoded_forms(raw_path):
        reason = _rejection_reason(candidate)
        if reason:
            raise InvalidPathError(raw_path, reason)

    segments = [segment for segment in raw_path.split("/") if segment not in ("", ".")]
    if not segments:
        raise InvalidPathError(raw_path, "has no file name")
    return "/".join(segments)


def join_remote(folder: str | None, path: str) -> str:
    """Join an optional target folder with an entry path and re-normalize."""
    if folder:
        folder = folder.strip("/")
    joined = f"{folder}/{path}" if folder else path
    return normalize(joined)


def common_root(paths: Iterable[str]) -> str | None:
    """Return the leading directory segments shared by every path.

    The final segment of a path is its file name and never counts as part of
    the shared root. Paths sharing a prefix are contiguous in sorted order,
    so comparing the first and last paths is enough.
    """
    ordered = sorted(paths)
    if not ordered:
        return None

    first = ordered[0].split("/")[:-1]
    last = ordered[-1].split("/")[:-1]
    shared: list[str] = []
    for left, right in zip(first, last):
        if left != right:
            break
        shared.append(left)
    return "/".join(shared) or None


def strip_common_root(paths: Iterable[str]) -> tuple[dict[str, str | None], str | None]:
    """Strip the shared leading directory from normalized paths.

    Returns a mapping of original path to stripped path (``None`` when nothing
    remains) and the root that was removed.
    """
    materialized = list(paths)
    root = common_root(materialized)
    if root is None:
        return {path: path for path in materialized}, None

    cut = len(root) + 1
    stripped: dict[str, str | None] = {}
    for path in materialized:
        remainder = path[cut:]
        stripped[path] = remainder or None
    return stripped, root


def validate_folder(folder: str | None) -> str | None:
    """Return the normalized target folder, or None for the repository root."""
    if folder is None or not folder.strip() or folder.strip() == "/":
        return None
    return normalize(folder.strip().strip("/"))


def validate_repository_name(name: str) -> str:
    """Return ``name`` if it is a plausible repository name."""
    if not name or not _REPOSITORY_NAME.match(name) or name in (".", ".."):
        raise InvalidRepositoryNameError(
            f"Invalid repository name {name!r}: use letters, digits, '.', '-' or '_'"
        )
    return name
