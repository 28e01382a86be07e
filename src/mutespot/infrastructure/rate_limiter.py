"""
Per-provider quota window rate limiter.

Hey future me - this is the ONE limiter every outbound call goes through (scanner reads,
executor writes, rollback compensations). It tracks the provider's quota window:

    remaining  - calls we may still make in the current window
    reset_at   - unix time when the window refills to the configured quota

acquire() waits until remaining > 0 or the window resets, then takes one slot. The
check-and-decrement happens under an asyncio.Lock so two concurrent verb groups can
never both take the last slot. While waiting we RELEASE the lock (same trick as the
token bucket we used to have) so status() readers and update_from_response() aren't
stuck behind a sleeper.

Providers that send rate-limit headers feed them back via update_from_response().
A 429 calls record_rate_limited(retry_after), which forces remaining = 0 until
now + retry_after - every other caller of the same provider waits too.

USAGE:
    limiter = ProviderRateLimiter.for_spotify(settings.rate_limit)
    await limiter.acquire()
    response = await client.execute(...)
    limiter.update_from_response(response.remaining, response.reset_at)

Clock and sleep are injectable so tests can run a fake clock instead of real time.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from mutespot.config.settings import RateLimitSettings
from mutespot.domain.entities import RateLimitStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class RateLimiterConfig:
    """Quota window of one provider."""

    requests_per_window: int = 100
    window_seconds: float = 30.0
    # Used when a 429 arrives without a Retry-After header
    default_retry_after: float = 1.0

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> "RateLimiterConfig":
        return cls(
            requests_per_window=settings.requests_per_window,
            window_seconds=settings.window_seconds,
            default_retry_after=settings.base_delay_seconds,
        )


@dataclass
class ProviderRateLimiter:
    """Quota-window limiter shared by every call to one provider."""

    name: str = "default"
    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    clock: Clock = time.time
    sleep: Sleeper = asyncio.sleep

    # Internal state (not in __init__ signature)
    _remaining: int | None = field(default=None, init=False)
    _reset_at: float | None = field(default=None, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @classmethod
    def for_spotify(
        cls,
        settings: RateLimitSettings | None = None,
        clock: Clock = time.time,
        sleep: Sleeper = asyncio.sleep,
    ) -> "ProviderRateLimiter":
        """Limiter for the Spotify Web API.

        Hey future me - Spotify doesn't publish a hard number, it's a rolling 30s window.
        ~100 calls per 30s has been safe in practice; 429s still happen under load and
        their Retry-After is authoritative.
        """
        return cls(
            name="spotify",
            config=RateLimiterConfig.from_settings(settings or RateLimitSettings()),
            clock=clock,
            sleep=sleep,
        )

    def _refill_if_due(self, now: float) -> float:
        """Open a fresh window once the current one is over. Returns its reset time."""
        reset_at = self._reset_at
        if reset_at is None or now >= reset_at:
            self._remaining = self.config.requests_per_window
            reset_at = now + self.config.window_seconds
            self._reset_at = reset_at
        return reset_at

    async def acquire(self) -> float:
        """Take one call slot, waiting for the window to reset if it's used up.

        Returns:
            Seconds spent waiting (0.0 when a slot was free)
        """
        waited = 0.0
        async with self._lock:
            while True:
                now = self.clock()
                reset_at = self._refill_if_due(now)
                if self._remaining is not None and self._remaining > 0:
                    self._remaining -= 1
                    return waited

                wait_time = max(0.0, reset_at - now)
                logger.warning(
                    f"RateLimiter[{self.name}]: quota used up, waiting {wait_time:.2f}s "
                    f"for window reset"
                )

                # Release lock while waiting
                self._lock.release()
                try:
                    await self.sleep(wait_time)
                finally:
                    await self._lock.acquire()
                waited += wait_time

    def update_from_response(
        self, remaining: int | None, reset_at: float | None
    ) -> None:
        """Adopt the provider's own view of the quota (from response headers)."""
        if remaining is not None:
            self._remaining = max(0, remaining)
        if reset_at is not None:
            self._reset_at = reset_at

    def record_rate_limited(self, retry_after: float | None = None) -> None:
        """Provider said 429 - nobody calls it again before now + retry_after."""
        delay = retry_after if retry_after is not None else self.config.default_retry_after
        self._remaining = 0
        self._reset_at = self.clock() + max(0.0, delay)
        logger.warning(
            f"RateLimiter[{self.name}]: 429 Rate Limited! Blocking calls for {delay:.1f}s"
        )

    def status(self) -> RateLimitStatus:
        """Snapshot for progress reporting."""
        now = self.clock()
        remaining = self._remaining
        if remaining is None or (self._reset_at is not None and now >= self._reset_at):
            remaining = self.config.requests_per_window
        delay_ms = 0
        if remaining == 0 and self._reset_at is not None:
            delay_ms = int(max(0.0, self._reset_at - now) * 1000)
        reset_at = (
            datetime.fromtimestamp(self._reset_at, tz=UTC)
            if self._reset_at is not None
            else None
        )
        return RateLimitStatus(
            provider=self.name,
            requests_remaining=remaining,
            reset_at=reset_at,
            current_delay_ms=delay_ms,
        )


class RateLimiterRegistry:
    """One limiter per provider, shared by scanner, executor and rollback.

    Hey future me - always get limiters from here (the app holds one registry). Two
    limiters for the same provider would each think they own the full quota.
    """

    def __init__(
        self,
        settings: RateLimitSettings | None = None,
        clock: Clock = time.time,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._settings = settings or RateLimitSettings()
        self._clock = clock
        self._sleep = sleep
        self._limiters: dict[str, ProviderRateLimiter] = {}

    def get(self, provider: str) -> ProviderRateLimiter:
        limiter = self._limiters.get(provider)
        if limiter is None:
            if provider == "spotify":
                limiter = ProviderRateLimiter.for_spotify(
                    self._settings, clock=self._clock, sleep=self._sleep
                )
            else:
                limiter = ProviderRateLimiter(
                    name=provider,
                    config=RateLimiterConfig.from_settings(self._settings),
                    clock=self._clock,
                    sleep=self._sleep,
                )
            self._limiters[provider] = limiter
        return limiter

    def status(self, provider: str) -> RateLimitStatus:
        return self.get(provider).status()


__all__ = [
    "ProviderRateLimiter",
    "RateLimiterConfig",
    "RateLimiterRegistry",
]
