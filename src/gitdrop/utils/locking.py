"""Advisory locking for the credential store file.

Two strategies are available:

- ``fcntl.flock`` on a sidecar ``.lock`` file where the platform supports it;
- a portable create-and-check-age fallback: exclusive creation of the lock
  file, with locks older than ``stale_seconds`` treated as abandoned.

Both poll until ``timeout_seconds`` and then raise ``LockTimeoutError``.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

from gitdrop.core.errors import LockTimeoutError
from gitdrop.core.settings import Settings, settings

try:  # pragma: no cover - platform dependent
    import fcntl
except ImportError:  # pragma: no cover - Windows
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockConfig:
    """Immutable configuration for store locking."""

    timeout_seconds: float = 5.0
    stale_seconds: float = 5.0
    retry_delay_seconds: float = 0.05
    use_native: bool = True


def load_lock_config(source: Settings | None = None) -> LockConfig:
    """Build configuration object from global settings."""
    cfg = source or settings
    return LockConfig(
        timeout_seconds=cfg.lock_timeout_seconds,
        stale_seconds=cfg.lock_stale_seconds,
        retry_delay_seconds=cfg.lock_retry_delay_seconds,
        use_native=cfg.lock_use_native,
    )


def native_locking_available() -> bool:
    """Return True when ``fcntl.flock`` can be used."""
    return fcntl is not None


class StoreLock:
    """Exclusive advisory lock scoped to one store file.

    Usage::

        with StoreLock(path, config):
            ...  # read-modify-write
    """

    def __init__(
        self,
        target: Path,
        config: LockConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.target = Path(target)
        self.lock_path = self.target.with_name(self.target.name + ".lock")
        self.config = config or LockConfig()
        self._clock = clock
        self._sleep = sleep
        self._fd: int | None = None
        self._native = self.config.use_native and native_locking_available()

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        deadline = self._clock() + self.config.timeout_seconds
        attempt = self._try_native if self._native else self._try_exclusive_create
        while not attempt():
            if self._clock() >= deadline:
                raise LockTimeoutError(
                    f"Timed out after {self.config.timeout_seconds}s waiting for {self.lock_path}"
                )
            self._sleep(self.config.retry_delay_seconds)

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            if self._native:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
            if not self._native:
                try:
                    os.unlink(self.lock_path)
                except FileNotFoundError:
                    logger.warning("Lock file %s vanished before release", self.lock_path)

    def __enter__(self) -> StoreLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    # --- Strategies -----------------------------------------------------------------

    def _try_native(self) -> bool:
        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        except BaseException:
            os.close(fd)
            raise
        self._fd = fd
        return True

    def _try_exclusive_create(self) -> bool:
        try:
            fd = os.open(self.lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            self._break_if_stale()
            return False
        os.write(fd, f"{os.getpid()} {time.time():.3f}\n".encode())
        self._fd = fd
        return True

    def _break_if_stale(self) -> None:
        try:
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self.config.stale_seconds:
            logger.warning(
                "Removing abandoned lock %s (age %.1fs)", self.lock_path, age
            )
            try:
                os.unlink(self.lock_path)
            except FileNotFoundError:
                pass
