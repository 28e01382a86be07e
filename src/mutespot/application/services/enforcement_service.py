"""Enforcement service - the four operations callers use.

    create_plan         scan the library, build a plan, cache it
    execute_batch       submit a plan as a durable batch (now or deferred)
    get_batch_progress  counts + current item + ETA + limiter status
    rollback_batch      compensate a finished batch

Hey future me - this is a FACADE. It owns no logic of its own besides token
resolution and plan lookup; scanning, planning, execution and rollback each live in
their own service. The API router and the worker only ever talk to this class.
"""

import logging
from collections.abc import Mapping

from mutespot.application.cache.plan_cache import PlanCache
from mutespot.application.services.batch_executor import (
    BatchExecutor,
    build_result,
    default_idempotency_key,
)
from mutespot.application.services.library_scanner import LibraryScanner
from mutespot.application.services.plan_generator import EnforcementPlanner
from mutespot.application.services.rollback_service import RollbackService
from mutespot.config.settings import EnforcementSettings
from mutespot.domain.entities import (
    ActionBatch,
    ActionItemStatus,
    BatchExecutionResult,
    BatchProgress,
    EnforcementOptions,
    EnforcementPlan,
    RollbackInfo,
)
from mutespot.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    ValidationException,
)
from mutespot.domain.ports import IEnforcementStore, ITokenProvider
from mutespot.infrastructure.rate_limiter import RateLimiterRegistry

logger = logging.getLogger(__name__)


class EnforcementService:
    """Entry point for planning, executing, tracking and rolling back enforcement."""

    def __init__(
        self,
        store: IEnforcementStore,
        scanners: Mapping[str, LibraryScanner],
        planner: EnforcementPlanner,
        executor: BatchExecutor,
        rollback_service: RollbackService,
        plan_cache: PlanCache,
        limiters: RateLimiterRegistry,
        settings: EnforcementSettings | None = None,
        token_provider: ITokenProvider | None = None,
    ) -> None:
        self._store = store
        self._scanners = scanners
        self._planner = planner
        self._executor = executor
        self._rollback = rollback_service
        self._plans = plan_cache
        self._limiters = limiters
        self._settings = settings or EnforcementSettings()
        self._token_provider = token_provider

    async def _resolve_token(
        self, access_token: str | None, connection_id: str | None
    ) -> str:
        if access_token:
            return access_token
        if connection_id and self._token_provider is not None:
            return await self._token_provider.get_decrypted_access_token(connection_id)
        raise ValidationException("Either an access token or a connection id is required")

    async def create_plan(
        self,
        user_id: str,
        provider: str,
        blocked_artist_ids: list[str],
        options: EnforcementOptions | None = None,
        access_token: str | None = None,
        connection_id: str | None = None,
    ) -> EnforcementPlan:
        """Scan the user's library and build (and cache) an enforcement plan.

        Raises:
            ValidationException: Empty block list, or no way to get a token
            ConfigurationError: Provider not configured
        """
        options = options or EnforcementOptions()
        if not any(blocked_artist_ids):
            raise ValidationException("At least one blocked artist id is required")
        scanner = self._scanners.get(provider)
        if scanner is None:
            raise ConfigurationError(f"No library scanner configured for provider '{provider}'")

        token = await self._resolve_token(access_token, connection_id)
        scan = await scanner.scan(user_id, token)
        plan = self._planner.create_plan(
            user_id, provider, blocked_artist_ids, options, scan.snapshot
        )
        plan.connection_id = connection_id
        plan.scan_failures = dict(scan.failed)
        plan.warnings = list(scan.warnings)
        await self._plans.put(plan)
        return plan

    async def get_plan(self, plan_id: str) -> EnforcementPlan:
        """Raises EntityNotFoundException when the plan is unknown or expired."""
        plan = await self._plans.get(plan_id)
        if plan is None:
            raise EntityNotFoundException("EnforcementPlan", plan_id)
        return plan

    async def execute_batch(
        self,
        plan: EnforcementPlan | str,
        idempotency_key: str | None = None,
        execute_immediately: bool = True,
        batch_size: int | None = None,
        access_token: str | None = None,
    ) -> BatchExecutionResult:
        """Submit a plan (or a cached plan id) for execution.

        With execute_immediately=False the batch is only persisted; the worker runs
        it later and needs the plan's connection id to get a token.

        A plan is consumed by its first successful submission and dropped from the
        cache. Retrying with the same plan id and idempotency key still finds the batch
        it produced; a fresh key for a consumed plan is an unknown plan.

        Raises:
            EntityNotFoundException: Plan id not in the cache
            ValidationException: Deferred execution without a connection id, bad batch_size
        """
        if isinstance(plan, str):
            cached = await self._plans.get(plan)
            if cached is None:
                return await self._batch_of_consumed_plan(
                    plan, idempotency_key, execute_immediately, access_token
                )
            plan = cached
        if not execute_immediately and not plan.options.dry_run and not plan.connection_id:
            raise ValidationException(
                "Deferred execution needs a plan created with a connection id"
            )
        result = await self._executor.submit(
            plan,
            idempotency_key=idempotency_key,
            access_token=access_token,
            execute_immediately=execute_immediately,
            batch_size=batch_size,
            connection_id=plan.connection_id,
        )
        if await self._plans.discard(plan.id):
            logger.debug(f"Plan {plan.id} consumed by batch {result.batch_id}")
        return result

    async def _batch_of_consumed_plan(
        self,
        plan_id: str,
        idempotency_key: str | None,
        execute_immediately: bool,
        access_token: str | None,
    ) -> BatchExecutionResult:
        key = idempotency_key or default_idempotency_key(plan_id)
        batch = await self._store.get_batch_by_idempotency_key(key)
        if batch is None or batch.options.get("plan_id") != plan_id:
            raise EntityNotFoundException("EnforcementPlan", plan_id)
        logger.info(f"Plan {plan_id} was already submitted as batch {batch.id}")
        items = await self._store.list_items(batch.id)
        if batch.status.is_terminal or (not execute_immediately and not batch.dry_run):
            return build_result(batch, items)
        return await self._executor.run(batch, access_token, items)

    async def cleanup_expired_plans(self) -> int:
        return await self._plans.cleanup_expired()

    async def _get_batch_or_raise(self, batch_id: str) -> ActionBatch:
        batch = await self._store.get_batch(batch_id)
        if batch is None:
            raise EntityNotFoundException("ActionBatch", batch_id)
        return batch

    async def get_batch(self, batch_id: str) -> BatchExecutionResult:
        batch = await self._get_batch_or_raise(batch_id)
        items = await self._store.list_items(batch_id)
        return build_result(batch, items)

    async def get_batch_progress(self, batch_id: str) -> BatchProgress:
        """Live counts of a batch.

        estimated_remaining_ms is remaining items x estimated_call_ms - an upper bound
        since bulk calls settle up to 100 items at once.
        """
        batch = await self._get_batch_or_raise(batch_id)
        counts = await self._store.count_items_by_status(batch_id)
        total = sum(counts.values())
        completed = counts[ActionItemStatus.COMPLETED] + counts[ActionItemStatus.ROLLED_BACK]
        failed = counts[ActionItemStatus.FAILED]
        skipped = counts[ActionItemStatus.SKIPPED]
        remaining = max(0, total - completed - failed - skipped)

        current_item = None
        if counts[ActionItemStatus.IN_PROGRESS]:
            items = await self._store.list_items(batch_id)
            in_progress = next(
                (i for i in items if i.status == ActionItemStatus.IN_PROGRESS), None
            )
            if in_progress is not None:
                current_item = f"{in_progress.entity_type}:{in_progress.entity_id}"

        return BatchProgress(
            batch_id=batch.id,
            status=batch.status,
            total=total,
            completed=completed,
            failed=failed,
            skipped=skipped,
            current_item=current_item,
            estimated_remaining_ms=remaining * self._settings.estimated_call_ms,
            rate_limit_status=self._limiters.status(batch.provider),
        )

    async def rollback_batch(
        self,
        batch_id: str,
        action_ids: list[str] | None = None,
        reason: str = "",
        access_token: str | None = None,
    ) -> RollbackInfo:
        return await self._rollback.rollback_batch(
            batch_id, action_ids=action_ids, reason=reason, access_token=access_token
        )

    async def resumable_batches(self, limit: int = 10) -> list[ActionBatch]:
        """Pending and in-progress batches that can run without a caller.

        Hey future me - live batches need a connection id in their options to get a
        token. Anything else was submitted with a raw access token that we never stored,
        so it stays unfinished until its owner re-submits the same idempotency key.
        """
        batches = []
        for batch in await self._store.list_unfinished_batches(limit):
            if not batch.dry_run and not batch.options.get("connection_id"):
                logger.debug(f"Batch {batch.id} has no connection id, not resumable")
                continue
            batches.append(batch)
        return batches

    async def resume_batch(self, batch: ActionBatch) -> BatchExecutionResult:
        """Run an unfinished batch; a finished rollback batch also updates its original."""
        result = await self._executor.run(batch)
        if batch.is_rollback and result.status.is_terminal:
            await self._rollback.finalize(result)
        return result
