"""Application caches."""

from mutespot.application.cache.base_cache import BaseCache, CacheEntry, InMemoryCache
from mutespot.application.cache.plan_cache import PlanCache

__all__ = ["BaseCache", "CacheEntry", "InMemoryCache", "PlanCache"]
