"""Authenticated encryption for stored access tokens.

Tokens are encrypted with AES-256-GCM under a key derived by PBKDF2-HMAC-SHA256
from the deployment secret and an installation-unique random salt. The stored
blob is ``nonce_hex:tag_hex:ciphertext_hex``; hex never contains the ``:``
delimiter.
"""

from __future__ import annotations

import logging
import os
import secrets
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from gitdrop.core.errors import DecryptionError, SaltUnavailableError
from gitdrop.core.settings import Settings, settings

NONCE_LENGTH_BYTES: Final[int] = 16
TAG_LENGTH_BYTES: Final[int] = 16
KEY_LENGTH_BYTES: Final[int] = 32
SALT_LENGTH_BYTES: Final[int] = 64
DEFAULT_ITERATIONS: Final[int] = 100_000
BLOB_DELIMITER: Final[str] = ":"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CipherConfig:
    """Immutable configuration for credential encryption."""

    secret: str
    salt_path: Path
    iterations: int = DEFAULT_ITERATIONS


def load_cipher_config(source: Settings | None = None) -> CipherConfig:
    """Build configuration object from global settings."""
    cfg = source or settings
    return CipherConfig(
        secret=cfg.encryption_secret,
        salt_path=cfg.salt_path,
        iterations=cfg.kdf_iterations,
    )


def _require_salt(salt: bytes | None) -> bytes:
    if not salt:
        raise SaltUnavailableError("Installation salt is not loaded")
    return salt


def derive_key(secret: str, salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytes:
    """Derive a 256-bit key from ``secret`` and ``salt``."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH_BYTES,
        salt=_require_salt(salt),
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


def _encrypt_with_key(plaintext: str, key: bytes) -> str:
    nonce = secrets.token_bytes(NONCE_LENGTH_BYTES)
    # AESGCM appends the tag to the ciphertext; the blob stores it separately.
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH_BYTES], sealed[-TAG_LENGTH_BYTES:]
    return BLOB_DELIMITER.join((nonce.hex(), tag.hex(), ciphertext.hex()))


def _decrypt_with_key(blob: str, key: bytes) -> str:
    parts = blob.split(BLOB_DELIMITER) if isinstance(blob, str) else []
    if len(parts) != 3:
        raise DecryptionError("Malformed credential blob")

    try:
        nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
    except ValueError as err:
        raise DecryptionError("Malformed credential blob") from err

    if len(nonce) != NONCE_LENGTH_BYTES or len(tag) != TAG_LENGTH_BYTES:
        raise DecryptionError("Malformed credential blob")

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as err:
        raise DecryptionError("Credential failed authentication") from err

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as err:  # pragma: no cover - tag already verified
        raise DecryptionError("Credential is not valid text") from err


def encrypt(
    plaintext: str, secret: str, salt: bytes, *, iterations: int = DEFAULT_ITERATIONS
) -> str:
    """Encrypt ``plaintext`` and return the hex blob."""
    return _encrypt_with_key(plaintext, derive_key(secret, salt, iterations))


def decrypt(blob: str, secret: str, salt: bytes, *, iterations: int = DEFAULT_ITERATIONS) -> str:
    """Decrypt a blob produced by :func:`encrypt`.

    Raises:
        DecryptionError: If the blob is malformed or fails authentication.
        SaltUnavailableError: If no salt is supplied.
    """
    return _decrypt_with_key(blob, derive_key(secret, salt, iterations))


class InstallationSalt:
    """Loads, or creates once, the installation salt file."""

    def __init__(self, path: Path, length: int = SALT_LENGTH_BYTES) -> None:
        self.path = Path(path)
        self.length = length
        self._cached: bytes | None = None
        self._lock = threading.Lock()

    def load_or_create(self) -> bytes:
        """Return the salt, creating the file with owner-only permissions if needed."""
        with self._lock:
            if self._cached is None:
                self._cached = self._load_or_create()
            return self._cached

    def _load_or_create(self) -> bytes:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            salt = self._read_existing()
        else:
            salt = secrets.token_bytes(self.length)
            with os.fdopen(fd, "wb") as handle:
                handle.write(salt)
                handle.flush()
                os.fsync(handle.fileno())
            logger.info("Generated new installation salt at %s", self.path)
        return salt

    def _read_existing(self) -> bytes:
        try:
            salt = self.path.read_bytes()
        except OSError as err:
            raise SaltUnavailableError("Installation salt could not be read") from err
        if len(salt) != self.length:
            raise SaltUnavailableError(
                f"Installation salt has unexpected length ({len(salt)} bytes)"
            )
        return salt


class CredentialCipher:
    """Encrypts and decrypts credentials for one deployment.

    The derived key is computed once per salt; PBKDF2 at this iteration count
    is deliberately slow.
    """

    def __init__(self, config: CipherConfig, salt: InstallationSalt | None = None) -> None:
        self.config = config
        self._salt = salt or InstallationSalt(config.salt_path)
        self._key: bytes | None = None
        self._key_salt: bytes | None = None

    def _key_for_current_salt(self) -> bytes:
        salt = _require_salt(self._salt.load_or_create())
        if self._key is None or self._key_salt != salt:
            self._key = derive_key(self.config.secret, salt, self.config.iterations)
            self._key_salt = salt
        return self._key

    def encrypt(self, plaintext: str) -> str:
        return _encrypt_with_key(plaintext, self._key_for_current_salt())

    def decrypt(self, blob: str) -> str:
        return _decrypt_with_key(blob, self._key_for_current_salt())
