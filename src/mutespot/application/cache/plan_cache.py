"""Cache for enforcement plans between the "plan" and "execute" calls."""

import logging
import time
from collections.abc import Callable

from mutespot.application.cache.base_cache import InMemoryCache
from mutespot.config.settings import EnforcementSettings
from mutespot.domain.entities import EnforcementPlan

logger = logging.getLogger(__name__)


class PlanCache:
    """Plans keyed by plan id, expiring after plan_ttl_seconds.

    Hey future me - a plan is a snapshot of the user's library at scan time. After an
    hour the library has likely changed, so an expired plan must be re-created rather
    than executed against stale positions and snapshot ids.
    """

    def __init__(
        self,
        settings: EnforcementSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = (settings or EnforcementSettings()).plan_ttl_seconds
        self._cache: InMemoryCache[str, EnforcementPlan] = InMemoryCache(clock=clock)

    async def put(self, plan: EnforcementPlan) -> None:
        await self._cache.set(plan.id, plan, ttl_seconds=self._ttl)
        logger.debug(f"Cached plan {plan.id} for {self._ttl}s")

    async def get(self, plan_id: str) -> EnforcementPlan | None:
        return await self._cache.get(plan_id)

    async def discard(self, plan_id: str) -> bool:
        return await self._cache.delete(plan_id)

    async def cleanup_expired(self) -> int:
        removed = await self._cache.cleanup_expired()
        if removed:
            logger.debug(f"Evicted {removed} expired plans")
        return removed
