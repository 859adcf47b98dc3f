"""In-memory per-identity command throttling."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from gitdrop.core.settings import Settings, settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable throttling parameters."""

    cooldown_seconds: float = 2.0
    window_seconds: float = 60.0
    max_commands: int = 10
    sweep_interval_seconds: float = 300.0


def load_rate_limit_config(source: Settings | None = None) -> RateLimitConfig:
    """Build configuration object from global settings."""
    cfg = source or settings
    return RateLimitConfig(
        cooldown_seconds=cfg.rate_cooldown_seconds,
        window_seconds=cfg.rate_window_seconds,
        max_commands=cfg.rate_max_commands,
        sweep_interval_seconds=cfg.rate_sweep_interval_seconds,
    )


@dataclass
class RateLimitEntry:
    last_command_at: float
    count_in_window: int
    window_reset_at: float


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after_seconds: int = 0


class RateGovernor:
    """Cooldown plus fixed-window cap, tracked per identity.

    ``check`` never awaits, so under asyncio each check-and-update is atomic.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def check(self, identity: str) -> RateDecision:
        """Decide whether ``identity`` may run a command now and record it."""
        now = self._clock()
        entry = self._entries.get(identity)

        if entry is None or now > entry.window_reset_at:
            self._entries[identity] = RateLimitEntry(
                last_command_at=now,
                count_in_window=1,
                window_reset_at=now + self.config.window_seconds,
            )
            return RateDecision(allowed=True)

        since_last = now - entry.last_command_at
        if since_last < self.config.cooldown_seconds:
            return RateDecision(
                allowed=False,
                retry_after_seconds=math.ceil(self.config.cooldown_seconds - since_last),
            )

        if entry.count_in_window >= self.config.max_commands:
            return RateDecision(
                allowed=False,
                retry_after_seconds=math.ceil(entry.window_reset_at - now),
            )

        entry.count_in_window += 1
        entry.last_command_at = now
        return RateDecision(allowed=True)

    def sweep(self, now: float | None = None) -> int:
        """Evict entries whose window ended more than one window ago."""
        now = self._clock() if now is None else now
        horizon = now - self.config.window_seconds
        expired = [
            identity
            for identity, entry in self._entries.items()
            if entry.window_reset_at < horizon
        ]
        for identity in expired:
            del self._entries[identity]
        if expired:
            logger.debug("Evicted %d idle rate-limit entries", len(expired))
        return len(expired)

    async def run_sweeper(self, stop_event: asyncio.Event) -> None:
        """Sweep periodically until ``stop_event`` is set."""
        interval = self.config.sweep_interval_seconds
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                self.sweep()
