"""Retry-with-backoff wrapper for provider calls.

Hey future me - call_with_backoff() is the ONLY place that retries provider calls!
Clients must not retry themselves (retries would multiply) and services must not
sleep on their own. Flow per attempt:

1. limiter.acquire()             - wait for a quota slot
2. await call()                  - one HTTP request
3a. success → feed rate-limit headers back to the limiter, return
3b. ProviderCallError:
    - 429 → limiter.record_rate_limited(retry_after) so EVERY caller backs off
    - permanent (404, 400, 401...) → raise immediately, no retry
    - recoverable and attempts left → sleep, try again
    - recoverable but out of attempts → raise with retry_count set

Delay before retry n (1-based):
    delay = min(max_delay, base_delay * 2**(n-1))
    delay += uniform(0, delay / 4)          # jitter
    delay = max(delay, retry_after)         # never earlier than the provider asked
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from mutespot.config.settings import RateLimitSettings
from mutespot.domain.exceptions import ProviderCallError
from mutespot.domain.ports import ProviderResponse
from mutespot.infrastructure.rate_limiter import ProviderRateLimiter, Sleeper

logger = logging.getLogger(__name__)


@dataclass
class BackoffPolicy:
    """Retry policy for recoverable provider failures."""

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    max_attempts: int = 5

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> "BackoffPolicy":
        return cls(
            base_delay_seconds=settings.base_delay_seconds,
            max_delay_seconds=settings.max_delay_seconds,
            max_attempts=settings.max_attempts,
        )

    def delay_for(
        self,
        attempt: int,
        retry_after: float | None = None,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        delay = min(self.max_delay_seconds, self.base_delay_seconds * 2 ** (attempt - 1))
        delay += jitter(0.0, delay / 4)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay


@dataclass
class CallStats:
    """Accounting for one or more wrapped calls. Mutable so callers can accumulate."""

    api_calls: int = 0
    retries: int = 0
    rate_limit_retries: int = 0
    delay_ms: int = 0

    def merge(self, other: "CallStats") -> None:
        self.api_calls += other.api_calls
        self.retries += other.retries
        self.rate_limit_retries += other.rate_limit_retries
        self.delay_ms += other.delay_ms


async def call_with_backoff(
    limiter: ProviderRateLimiter,
    call: Callable[[], Awaitable[ProviderResponse]],
    policy: BackoffPolicy | None = None,
    *,
    stats: CallStats | None = None,
    sleep: Sleeper = asyncio.sleep,
    jitter: Callable[[float, float], float] = random.uniform,
) -> tuple[ProviderResponse, CallStats]:
    """Run one provider call under the limiter with retries on recoverable failures.

    Args:
        limiter: Shared limiter of the provider being called
        call: Zero-arg coroutine factory doing exactly one request
        policy: Retry policy (defaults: 1s base, 60s cap, 5 attempts)
        stats: Existing CallStats to accumulate into (a fresh one if None)
        sleep: Sleep function (injectable for tests)
        jitter: uniform(a, b) source (injectable for tests)

    Returns:
        The successful response and the accumulated call stats

    Raises:
        ProviderCallError: Permanent failure, or recoverable failure after the last
            attempt. error.retry_count says how many retries were spent.
    """
    policy = policy or BackoffPolicy()
    stats = stats if stats is not None else CallStats()
    attempt = 0

    while True:
        attempt += 1
        waited = await limiter.acquire()
        stats.delay_ms += int(waited * 1000)
        stats.api_calls += 1

        try:
            response = await call()
        except ProviderCallError as e:
            if e.is_rate_limited:
                limiter.record_rate_limited(e.retry_after)
            else:
                limiter.update_from_response(e.remaining, e.reset_at)

            if not e.recoverable or attempt >= policy.max_attempts:
                e.retry_count = attempt - 1
                if e.recoverable:
                    logger.warning(
                        f"Provider call to {limiter.name} gave up after {attempt} attempts: "
                        f"{e.error_code} ({e.message})"
                    )
                raise

            delay = policy.delay_for(attempt, e.retry_after, jitter)
            stats.retries += 1
            if e.is_rate_limited:
                stats.rate_limit_retries += 1
            logger.warning(
                f"Provider call to {limiter.name} failed with {e.error_code} "
                f"(attempt {attempt}/{policy.max_attempts}), retrying in {delay:.2f}s"
            )
            await sleep(delay)
            stats.delay_ms += int(delay * 1000)
            continue

        limiter.update_from_response(response.remaining, response.reset_at)
        return response, stats


__all__ = ["BackoffPolicy", "CallStats", "call_with_backoff"]
