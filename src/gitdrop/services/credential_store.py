"""Encrypted per-identity credential storage.

All records live in one JSON map file. Mutations take the exclusive store
lock, rewrite the whole map to a temporary file, and atomically rename it into
place; reads are lock-free because the rename is atomic.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from gitdrop.core.errors import DecryptionError, GitdropError
from gitdrop.services.cipher import CredentialCipher
from gitdrop.utils.locking import LockConfig, StoreLock

STORE_FILE_MODE = 0o600

logger = logging.getLogger(__name__)


class CredentialStoreError(GitdropError):
    """Raised when the store file cannot be read or written."""

    default_user_message = "The credential store is unavailable right now."
    expose_message = False


@dataclass(frozen=True)
class CredentialRecord:
    """One persisted credential. ``encrypted_secret`` is never plaintext."""

    identity: str
    encrypted_secret: str
    display_name: str | None
    registered_at: str

    @property
    def registered_at_datetime(self) -> datetime:
        return datetime.fromisoformat(self.registered_at)

    @classmethod
    def from_mapping(cls, payload: dict[str, Any]) -> CredentialRecord:
        return cls(
            identity=str(payload["identity"]),
            encrypted_secret=str(payload["encrypted_secret"]),
            display_name=payload.get("display_name"),
            registered_at=str(payload["registered_at"]),
        )


class CredentialStore:
    """Stores one encrypted access token per chat identity."""

    def __init__(
        self,
        path: Path,
        cipher: CredentialCipher,
        lock_config: LockConfig | None = None,
    ) -> None:
        self.path = Path(path)
        self.cipher = cipher
        self.lock_config = lock_config or LockConfig()

    # --- Persistence ----------------------------------------------------------------

    def _load(self) -> dict[str, dict[str, Any]]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as err:
            raise CredentialStoreError(f"Could not read credential store: {err}") from err

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as err:
            raise CredentialStoreError("Credential store is not valid JSON") from err
        if not isinstance(data, dict):
            raise CredentialStoreError("Credential store has an unexpected layout")
        return data

    def _write(self, records: dict[str, dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(records, handle, indent=2, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            os.chmod(self.path, STORE_FILE_MODE)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def _lock(self) -> StoreLock:
        return StoreLock(self.path, self.lock_config)

    # --- Operations -----------------------------------------------------------------

    def save(self, identity: str, token: str, display_name: str | None = None) -> CredentialRecord:
        """Encrypt ``token`` and replace any prior record for ``identity``."""
        record = CredentialRecord(
            identity=identity,
            encrypted_secret=self.cipher.encrypt(token),
            display_name=display_name,
            registered_at=datetime.now(UTC).isoformat(),
        )
        with self._lock():
            records = self._load()
            records[identity] = asdict(record)
            self._write(records)
        logger.info("Stored credential for identity %s", identity)
        return record

    def get_record(self, identity: str) -> CredentialRecord | None:
        """Return the stored record without decrypting it."""
        payload = self._load().get(identity)
        if payload is None:
            return None
        try:
            return CredentialRecord.from_mapping(payload)
        except (KeyError, TypeError):
            logger.warning("Ignoring malformed credential record for identity %s", identity)
            return None

    def get_decrypted(self, identity: str) -> str | None:
        """Return the plaintext token, or None if absent or unreadable.

        Decryption failures are logged but not distinguished from absence.
        """
        record = self.get_record(identity)
        if record is None:
            return None
        try:
            return self.cipher.decrypt(record.encrypted_secret)
        except DecryptionError as err:
            logger.warning(
                "Could not decrypt credential for identity %s (%s)",
                identity,
                type(err).__name__,
            )
            return None

    def remove(self, identity: str) -> bool:
        """Delete the record for ``identity``; return True if one existed."""
        with self._lock():
            records = self._load()
            if identity not in records:
                return False
            del records[identity]
            self._write(records)
        logger.info("Removed credential for identity %s", identity)
        return True

    def exists(self, identity: str) -> bool:
        return identity in self._load()

    # --- Async facade ---------------------------------------------------------------

    async def asave(
        self, identity: str, token: str, display_name: str | None = None
    ) -> CredentialRecord:
        return await asyncio.to_thread(self.save, identity, token, display_name)

    async def aget_record(self, identity: str) -> CredentialRecord | None:
        return await asyncio.to_thread(self.get_record, identity)

    async def aget_decrypted(self, identity: str) -> str | None:
        return await asyncio.to_thread(self.get_decrypted, identity)

    async def aremove(self, identity: str) -> bool:
        return await asyncio.to_thread(self.remove, identity)

    async def aexists(self, identity: str) -> bool:
        return await asyncio.to_thread(self.exists, identity)
