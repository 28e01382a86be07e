"""Enforcement batch worker - runs deferred batches and resumes interrupted ones.

Hey future me - two kinds of batches end up here:
1. Deferred: submitted with execute_immediately=False, still PENDING
2. Interrupted: the process died mid-run, still IN_PROGRESS with some items settled

Both look the same to the executor: run every item that isn't settled yet. Settled
items are never re-sent, so picking up an interrupted batch is safe.

Only batches with a connection id (or dry runs) are picked up, see
EnforcementService.resumable_batches. Each cycle also drops expired plans from the
plan cache.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from mutespot.application.services.enforcement_service import EnforcementService

logger = logging.getLogger(__name__)


class EnforcementBatchWorker:
    """Polls for unfinished batches and runs them.

    Lifecycle:
    - Created in the app lifespan
    - Runs as asyncio task via start()
    - Stopped via stop() during shutdown
    """

    def __init__(
        self,
        service: EnforcementService,
        check_interval: float = 5.0,
        max_batches_per_cycle: int = 5,
    ) -> None:
        self._service = service
        self._check_interval = check_interval
        self._max_batches_per_cycle = max_batches_per_cycle
        self._running = False
        self._stats: dict[str, Any] = {
            "batches_run": 0,
            "batches_errored": 0,
            "last_check_at": None,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict[str, Any]:
        return dict(self._stats)

    async def start(self) -> None:
        """Run cycles until stop() is called."""
        self._running = True
        logger.info(
            f"EnforcementBatchWorker started (check_interval={self._check_interval}s, "
            f"max_per_cycle={self._max_batches_per_cycle})"
        )

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                # Log but don't crash - we'll try again next cycle
                logger.exception(f"EnforcementBatchWorker error: {e}")

            await asyncio.sleep(self._check_interval)

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        logger.info("EnforcementBatchWorker stopping...")

    async def run_once(self) -> int:
        """One polling cycle. Returns how many batches were run to the end."""
        self._stats["last_check_at"] = datetime.now(UTC)
        expired = await self._service.cleanup_expired_plans()
        if expired:
            logger.info(f"Dropped {expired} expired plans")
        batches = await self._service.resumable_batches(self._max_batches_per_cycle)
        if not batches:
            logger.debug("No unfinished batches")
            return 0

        logger.info(f"Found {len(batches)} unfinished batches")
        ran = 0
        for batch in batches:
            # One broken batch (revoked token, DB hiccup) must not starve the others
            try:
                result = await self._service.resume_batch(batch)
            except Exception as e:
                self._stats["batches_errored"] += 1
                logger.exception(f"Failed to run batch {batch.id}: {e}")
                continue
            ran += 1
            logger.info(f"Worker finished batch {batch.id} ({result.status})")
        self._stats["batches_run"] += ran
        return ran
