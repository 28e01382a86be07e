"""Unit tests for the per-provider quota window limiter."""

import pytest

from mutespot.config import RateLimitSettings
from mutespot.infrastructure.rate_limiter import (
    ProviderRateLimiter,
    RateLimiterConfig,
    RateLimiterRegistry,
)


class FakeTime:
    """Clock plus sleep that advances the clock instead of waiting."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def limiter(fake_time: FakeTime) -> ProviderRateLimiter:
    return ProviderRateLimiter(
        name="spotify",
        config=RateLimiterConfig(requests_per_window=3, window_seconds=30, default_retry_after=2),
        clock=fake_time.clock,
        sleep=fake_time.sleep,
    )


class TestProviderRateLimiter:
    """Tests for acquire() and the quota window."""

    @pytest.mark.asyncio
    async def test_calls_within_quota_do_not_wait(self, limiter, fake_time) -> None:
        for _ in range(3):
            assert await limiter.acquire() == 0.0
        assert fake_time.sleeps == []
        assert limiter.status().requests_remaining == 0

    @pytest.mark.asyncio
    async def test_waits_for_window_reset(self, limiter, fake_time) -> None:
        """Test that the fourth call waits out the rest of the 30s window."""
        for _ in range(3):
            await limiter.acquire()
        fake_time.now += 10

        waited = await limiter.acquire()

        assert waited == pytest.approx(20.0)
        assert fake_time.sleeps == [pytest.approx(20.0)]
        # Fresh window, one slot taken
        assert limiter.status().requests_remaining == 2

    @pytest.mark.asyncio
    async def test_rate_limited_blocks_for_retry_after(self, limiter, fake_time) -> None:
        """Test that a 429 empties the window until now + retry_after."""
        await limiter.acquire()
        limiter.record_rate_limited(5.0)

        status = limiter.status()
        assert status.requests_remaining == 0
        assert status.current_delay_ms == 5000

        assert await limiter.acquire() == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_rate_limited_without_retry_after_uses_default(self, limiter) -> None:
        limiter.record_rate_limited(None)
        assert limiter.status().current_delay_ms == 2000

    @pytest.mark.asyncio
    async def test_update_from_response(self, limiter, fake_time) -> None:
        """Test that provider headers override our own bookkeeping."""
        await limiter.acquire()
        limiter.update_from_response(remaining=0, reset_at=fake_time.now + 7)

        assert await limiter.acquire() == pytest.approx(7.0)

    @pytest.mark.asyncio
    async def test_exhausted_quota_lets_one_full_window_through(
        self, limiter, fake_time
    ) -> None:
        """Test that after reset exactly requests_per_window calls pass before blocking."""
        reset = fake_time.now + 10
        limiter.update_from_response(remaining=0, reset_at=reset)

        waits = [await limiter.acquire() for _ in range(3)]

        assert waits == [pytest.approx(10.0), 0.0, 0.0]
        assert fake_time.now == pytest.approx(reset)
        assert limiter.status().requests_remaining == 0

        # The fourth call has to wait for the next full window
        assert await limiter.acquire() == pytest.approx(30.0)
        assert fake_time.now == pytest.approx(reset + 30)

    def test_status_before_first_call(self, limiter) -> None:
        status = limiter.status()
        assert status.provider == "spotify"
        assert status.requests_remaining == 3
        assert status.reset_at is None
        assert status.current_delay_ms == 0

    @pytest.mark.asyncio
    async def test_status_reset_at_is_utc_datetime(self, limiter, fake_time) -> None:
        await limiter.acquire()
        reset_at = limiter.status().reset_at
        assert reset_at is not None
        assert reset_at.timestamp() == pytest.approx(fake_time.now + 30)
        assert reset_at.tzinfo is not None


class TestRateLimiterRegistry:
    """Tests for one-limiter-per-provider."""

    def test_same_provider_same_limiter(self) -> None:
        registry = RateLimiterRegistry(RateLimitSettings(requests_per_window=7))
        limiter = registry.get("spotify")

        assert registry.get("spotify") is limiter
        assert limiter.name == "spotify"
        assert limiter.config.requests_per_window == 7

    def test_other_providers_get_their_own(self) -> None:
        registry = RateLimiterRegistry()
        assert registry.get("tidal") is not registry.get("spotify")
        assert registry.status("tidal").provider == "tidal"
