"""Publish validated archive entries to a repository.

Entries are written in sequential batches; the entries of one batch run
concurrently, and the next batch starts only after every entry of the current
batch has settled. A failure is recorded against its entry and never stops the
remaining entries.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from gitdrop.core.errors import ConflictError, GitdropError
from gitdrop.core.settings import Settings, settings
from gitdrop.services.archive import ArchiveEntry
from gitdrop.utils.paths import join_remote
from gitdrop.utils.retry import RetryPolicy, linear_backoff
from gitdrop.utils.sanitize import sanitize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishConfig:
    """Immutable tuning for the publish pipeline."""

    batch_size: int = 5
    max_attempts: int = 3
    backoff_base_seconds: float = 0.5
    progress_min_interval_seconds: float = 1.0

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff=linear_backoff(self.backoff_base_seconds),
            retry_on=(ConflictError,),
        )


def load_publish_config(source: Settings | None = None) -> PublishConfig:
    """Build configuration object from global settings."""
    cfg = source or settings
    return PublishConfig(
        batch_size=max(1, cfg.publish_batch_size),
        max_attempts=max(1, cfg.publish_max_attempts),
        backoff_base_seconds=cfg.publish_backoff_base_seconds,
        progress_min_interval_seconds=cfg.progress_min_interval_seconds,
    )


class RepositoryWriter(Protocol):
    """The hosting capabilities the pipeline needs."""

    async def repository_is_empty(self, owner: str, repo: str) -> bool: ...

    async def bootstrap_empty_repo(self, owner: str, repo: str) -> None: ...

    async def get_file_metadata(self, owner: str, repo: str, path: str) -> str | None: ...

    async def create_or_update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content_b64: str,
        message: str,
        sha: str | None = None,
    ) -> None: ...


@dataclass
class UploadOutcome:
    """Aggregate result of one publish run."""

    total_entries: int
    succeeded_count: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


# --- Progress ---------------------------------------------------------------------


@dataclass(frozen=True)
class ProgressEvent:
    """Snapshot of publish progress."""

    completed: int
    total: int
    current_path: str | None
    succeeded: int
    failed: int
    final: bool = False

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return int(self.completed * 100 / self.total)


ProgressSubscriber = Callable[[ProgressEvent], Awaitable[None]]


class ProgressReporter:
    """Forwards progress events to a subscriber at a bounded rate.

    Non-final events arriving less than ``min_interval`` seconds after the
    previously delivered one are dropped. Final events are always delivered.
    """

    def __init__(
        self,
        subscriber: ProgressSubscriber,
        min_interval: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._subscriber = subscriber
        self._min_interval = min_interval
        self._clock = clock
        self._last_emitted: float | None = None

    async def emit(self, event: ProgressEvent) -> bool:
        """Deliver ``event`` unless throttled. Returns whether it was delivered."""
        now = self._clock()
        if (
            not event.final
            and self._last_emitted is not None
            and now - self._last_emitted < self._min_interval
        ):
            return False

        self._last_emitted = now
        try:
            await self._subscriber(event)
        except Exception:
            logger.warning("Progress subscriber failed", exc_info=True)
        return True


class ProgressStream:
    """Queue-backed progress subscriber that can be consumed with ``async for``.

    Iteration ends after a final event has been yielded or after ``close()``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._finished = False

    async def __call__(self, event: ProgressEvent) -> None:
        await self._queue.put(event)

    def close(self) -> None:
        self._queue.put_nowait(None)

    def __aiter__(self) -> ProgressStream:
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            self._finished = True
            raise StopAsyncIteration
        if item.final:
            self._finished = True
        return item


# --- Pipeline ---------------------------------------------------------------------


def commit_message(path: str, author_label: str) -> str:
    return f"Upload: {path} (sent by {author_label})"


def _failure_reason(error: Exception) -> str:
    if isinstance(error, GitdropError):
        return sanitize(error.user_message)
    return sanitize(error)


async def publish(
    client: RepositoryWriter,
    owner: str,
    repo: str,
    folder: str | None,
    entries: Sequence[ArchiveEntry],
    author_label: str,
    *,
    read_content: Callable[[ArchiveEntry], bytes],
    progress: ProgressReporter | None = None,
    config: PublishConfig | None = None,
    retry: RetryPolicy | None = None,
) -> UploadOutcome:
    """Write every entry to ``owner/repo`` under ``folder``.

    An empty repository is bootstrapped first. Each entry reads its version
    marker and writes its content; conflicts are retried with a fresh marker.
    Any other per-entry error is recorded in the outcome.

    Raises:
        RepositoryNotFoundError: The repository does not exist.
        HostingError: The repository state could not be determined.
    """
    config = config or load_publish_config()
    retry = retry or config.retry_policy()
    outcome = UploadOutcome(total_entries=len(entries))
    completed = 0

    if await client.repository_is_empty(owner, repo):
        await client.bootstrap_empty_repo(owner, repo)

    async def _write(entry: ArchiveEntry, remote_path: str) -> None:
        content_b64 = base64.b64encode(read_content(entry)).decode("ascii")
        message = commit_message(remote_path, author_label)

        async def _attempt(attempt: int) -> None:
            sha = await client.get_file_metadata(owner, repo, remote_path)
            if attempt > 1:
                logger.debug("Retrying %s with marker %s (attempt %d)", remote_path, sha, attempt)
            await client.create_or_update_file(
                owner, repo, remote_path, content_b64, message, sha
            )

        await retry.run(_attempt)

    async def _publish_entry(entry: ArchiveEntry) -> None:
        nonlocal completed
        display_path = entry.normalized_path or entry.raw_path
        try:
            remote_path = join_remote(folder, entry.normalized_path or entry.raw_path)
            display_path = remote_path
            await _write(entry, remote_path)
        except Exception as err:
            reason = _failure_reason(err)
            outcome.failures.append((display_path, reason))
            logger.warning("Failed to publish %s: %s", display_path, reason, exc_info=True)
        else:
            outcome.succeeded_count += 1
        finally:
            completed += 1

        if progress is not None:
            await progress.emit(
                ProgressEvent(
                    completed=completed,
                    total=outcome.total_entries,
                    current_path=display_path,
                    succeeded=outcome.succeeded_count,
                    failed=outcome.failed_count,
                )
            )

    batch_size = max(1, config.batch_size)
    for start in range(0, len(entries), batch_size):
        batch = entries[start : start + batch_size]
        await asyncio.gather(*(_publish_entry(entry) for entry in batch))

    if progress is not None:
        await progress.emit(
            ProgressEvent(
                completed=completed,
                total=outcome.total_entries,
                current_path=None,
                succeeded=outcome.succeeded_count,
                failed=outcome.failed_count,
                final=True,
            )
        )

    logger.info(
        "Published %d/%d entries to %s/%s",
        outcome.succeeded_count,
        outcome.total_entries,
        owner,
        repo,
    )
    return outcome
