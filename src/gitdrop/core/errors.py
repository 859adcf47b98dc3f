"""Exception hierarchy shared by the gitdrop services.

Every error carries a ``user_message``: text that is safe to show on a chat
surface once it has been passed through the error sanitizer.
"""

from __future__ import annotations


class GitdropError(RuntimeError):
    """Base exception raised for gitdrop failures."""

    default_user_message = "Something went wrong while processing your command."
    expose_message = True

    def __init__(self, message: str | None = None, *, user_message: str | None = None) -> None:
        super().__init__(message or self.default_user_message)
        self._user_message = user_message

    @property
    def user_message(self) -> str:
        """Return the text shown to the caller."""
        if self._user_message:
            return self._user_message
        return str(self) if self.expose_message else self.default_user_message


# --- Validation -----------------------------------------------------------------


class ValidationError(GitdropError):
    """Raised for bad input. Never retried automatically."""

    default_user_message = "The request is invalid."


class InvalidPathError(ValidationError):
    """Raised when an archive entry or folder path is unsafe."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Invalid path {path!r}: {reason}")
        self.path = path
        self.reason = reason


class InvalidArchiveError(ValidationError):
    """Raised when the uploaded buffer is not a readable ZIP archive."""

    default_user_message = "The attachment is not a valid ZIP archive."


class ArchiveTooLargeError(ValidationError):
    """Raised when the total uncompressed size exceeds the configured cap."""


class ArchiveBombError(ValidationError):
    """Raised when an entry expands disproportionately to its compressed size."""


class TooManyEntriesError(ValidationError):
    """Raised when an archive holds more files than allowed."""


class InvalidTokenFormatError(ValidationError):
    """Raised when a submitted access token cannot possibly be valid."""

    default_user_message = "That does not look like a valid access token."


class InvalidRepositoryNameError(ValidationError):
    """Raised when a repository name contains disallowed characters."""


# --- Remote state ---------------------------------------------------------------


class ConflictError(GitdropError):
    """Raised when the remote file changed between read and write."""

    default_user_message = "The remote file changed while it was being updated."


class NotFoundError(GitdropError):
    """Raised when a remote resource does not exist."""

    default_user_message = "The requested resource was not found."


class RepositoryNotFoundError(NotFoundError):
    """Raised when the target repository does not exist."""

    def __init__(self, owner: str, repo: str) -> None:
        super().__init__(f"Repository {owner}/{repo} not found")
        self.owner = owner
        self.repo = repo


class HostingError(GitdropError):
    """Raised for unexpected responses from the hosting service."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MissingScopeError(GitdropError):
    """Raised when a token lacks scopes the service requires."""

    def __init__(self, missing: list[str]) -> None:
        joined = ", ".join(missing)
        super().__init__(f"Token is missing scope: {joined}")
        self.missing = missing


# --- Attachment download --------------------------------------------------------


class DownloadError(GitdropError):
    """Base class for attachment download failures. Never retried."""


class DownloadTimeoutError(DownloadError):
    """Raised when the attachment took too long to download."""


class DownloadTooLargeError(DownloadError):
    """Raised when the attachment exceeds the size cap."""


class DownloadFailedError(DownloadError):
    """Raised for non-200 responses or transport failures."""


# --- Local state ----------------------------------------------------------------


class LockTimeoutError(GitdropError):
    """Raised when the credential store lock could not be acquired in time."""

    default_user_message = "The credential store is busy. Please try again in a moment."
    expose_message = False


class DecryptionError(GitdropError):
    """Raised when a stored credential cannot be decrypted."""

    default_user_message = "Your stored credential is unreadable. Please log in again."
    expose_message = False


class SaltUnavailableError(GitdropError):
    """Raised when the cipher is asked to operate without a loaded salt."""

    default_user_message = "Credential encryption is not available right now."
    expose_message = False
