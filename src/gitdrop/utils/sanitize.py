"""Redaction of credential-shaped text before it reaches a user-visible surface."""

from __future__ import annotations

import re
from typing import Final

MAX_MESSAGE_LENGTH: Final[int] = 500
TRUNCATION_MARKER: Final[str] = "... [truncated]"
UNKNOWN_ERROR: Final[str] = "Unknown error"

_REDACTED_TOKEN: Final[str] = "[REDACTED_TOKEN]"
_PATH_PLACEHOLDER: Final[str] = "[PATH]"

# Hosting-service personal access tokens (classic, OAuth, user-to-server, ...)
_HOSTING_TOKEN = re.compile(r"(?:gh[pousr]_|github_pat_)[A-Za-z0-9_]{36,}")
# Chat-platform bot tokens: three dot-separated base64url segments
_BOT_TOKEN = re.compile(r"[A-Za-z0-9_-]{24,}\.[A-Za-z0-9_-]{6}\.[A-Za-z0-9_-]{27,}")
_KEY_VALUE = re.compile(r"(secret|key|password)(\s*[=:]\s*)[^\s]+", re.IGNORECASE)
_POSIX_HOME_PATH = re.compile(r"(?<![\w./-])/(?:home|Users|root)(?=[/\s'\"]|$)[^\s'\"]*")
_WINDOWS_HOME_PATH = re.compile(r"[A-Za-z]:\\Users\\[^\s'\"]*", re.IGNORECASE)


def _coerce(error: object) -> str:
    if isinstance(error, BaseException):
        text = str(error)
        return text or type(error).__name__
    return str(error)


def sanitize(error: object) -> str:
    """Return a message derived from ``error`` that is safe to display.

    The function is pure and never raises: tokens, ``key=value`` secrets and
    home-directory paths are redacted and the result is capped at
    ``MAX_MESSAGE_LENGTH`` characters.
    """
    if error is None:
        return UNKNOWN_ERROR

    try:
        message = _coerce(error)
    except Exception:  # __str__ of arbitrary objects can fail
        return UNKNOWN_ERROR

    message = _HOSTING_TOKEN.sub(_REDACTED_TOKEN, message)
    message = _BOT_TOKEN.sub(_REDACTED_TOKEN, message)
    message = _KEY_VALUE.sub(
        lambda match: f"{match.group(1)}{match.group(2)}[REDACTED]", message
    )
    message = _POSIX_HOME_PATH.sub(_PATH_PLACEHOLDER, message)
    message = _WINDOWS_HOME_PATH.sub(_PATH_PLACEHOLDER, message)

    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + TRUNCATION_MARKER
    return message
