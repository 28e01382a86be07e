"""Batch executor - runs action items against a provider as a durable state machine.

Hey future me - this is THE place where remote state changes. Read this before touching it!

LIFECYCLE
    submit(plan)            materialize batch + items (before_state included) in ONE commit
    run(batch)              execute every item that isn't settled yet
    submit(same key again)  returns the existing batch; resumes it if it never finished

DURABILITY
    Every item transition is committed BEFORE the next provider call:
        pending → in_progress   (committed, then the HTTP call happens)
        in_progress → completed | failed   (committed right after the call)
    A crash between the two leaves items in_progress. On resume those are executed
    again - the provider verbs are all idempotent (removing an already-removed track
    is a no-op at Spotify), so this is safe. Completed/failed/skipped items are never
    sent again.

GROUPING
    Items are grouped by (verb, playlist_id). Groups run concurrently (asyncio.gather),
    chunks inside a group run one after the other. Chunk size is
    min(batch_size, provider bulk limit). One call per chunk: the whole chunk
    completes or fails together.

STATUS
    completed            nothing failed (includes "everything skipped")
    partially_completed  ≥1 completed and ≥1 failed
    failed               0 completed and ≥1 failed
Item failures never abort the batch. Only infrastructure errors (DB down) propagate,
once every group has settled, and then the batch stays in_progress for the worker
to resume. Its summary keeps the API calls made so far, so the next run adds to them.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from mutespot.config.settings import EnforcementSettings
from mutespot.domain.entities import (
    SETTLED_ITEM_STATUSES,
    ActionBatch,
    ActionBatchStatus,
    ActionItem,
    ActionItemStatus,
    BatchExecutionResult,
    BatchSummary,
    EnforcementErrorCode,
    EnforcementPlan,
)
from mutespot.domain.exceptions import (
    ConfigurationError,
    DuplicateEntityException,
    ProviderCallError,
    ValidationException,
)
from mutespot.domain.ports import IEnforcementStore, IProviderActionClient, ITokenProvider
from mutespot.domain.value_objects import EntityType, spec_for
from mutespot.infrastructure.backoff import BackoffPolicy, CallStats, call_with_backoff
from mutespot.infrastructure.observability.logging import reset_batch_id, set_batch_id
from mutespot.infrastructure.rate_limiter import RateLimiterRegistry

logger = logging.getLogger(__name__)

GroupKey = tuple[str, str | None]


def default_idempotency_key(plan_id: str) -> str:
    """Key used when the caller doesn't pass one: resubmitting a plan is a no-op."""
    return f"enforce_{plan_id}"


def build_result(batch: ActionBatch, items: list[ActionItem]) -> BatchExecutionResult:
    """Split a batch's items by outcome."""
    result = BatchExecutionResult(batch=batch)
    for item in items:
        if item.status in (ActionItemStatus.COMPLETED, ActionItemStatus.ROLLED_BACK):
            result.completed_actions.append(item)
        elif item.status == ActionItemStatus.FAILED:
            result.failed_actions.append(item)
        elif item.status == ActionItemStatus.SKIPPED:
            result.skipped_actions.append(item)
        else:
            result.pending_actions.append(item)
    return result


class BatchExecutor:
    """Executes enforcement (and rollback) batches."""

    def __init__(
        self,
        store: IEnforcementStore,
        clients: Mapping[str, IProviderActionClient],
        limiters: RateLimiterRegistry,
        backoff_policy: BackoffPolicy | None = None,
        settings: EnforcementSettings | None = None,
        token_provider: ITokenProvider | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._clients = clients
        self._limiters = limiters
        self._policy = backoff_policy or BackoffPolicy()
        self._settings = settings or EnforcementSettings()
        self._token_provider = token_provider
        self._clock = clock
        # Batches currently executing in this process
        self._active: set[str] = set()

    def _client_for(self, provider: str) -> IProviderActionClient:
        client = self._clients.get(provider)
        if client is None:
            raise ConfigurationError(f"No action client configured for provider '{provider}'")
        return client

    # =========================================================================
    # Submission
    # =========================================================================

    def materialize(
        self,
        plan: EnforcementPlan,
        idempotency_key: str,
        batch_size: int | None = None,
        connection_id: str | None = None,
    ) -> tuple[ActionBatch, list[ActionItem]]:
        """Turn a plan into a batch and its items (not persisted yet)."""
        options: dict[str, Any] = plan.options.to_dict()
        options.update(
            {
                "plan_id": plan.id,
                "blocked_artist_ids": list(plan.blocked_artist_ids),
                "batch_size": batch_size,
                "connection_id": connection_id,
            }
        )
        batch = ActionBatch.create(
            user_id=plan.user_id,
            provider=plan.provider,
            idempotency_key=idempotency_key,
            dry_run=plan.options.dry_run,
            options=options,
        )
        items: list[ActionItem] = []
        keys: set[str] = set()
        for action in plan.actions:
            item = ActionItem.create(
                batch.id,
                action.entity_type,
                action.entity_id,
                str(action.verb),
                action.before_state(),
            )
            if item.idempotency_key in keys:
                continue
            keys.add(item.idempotency_key)
            items.append(item)
        return batch, items

    async def submit(
        self,
        plan: EnforcementPlan,
        idempotency_key: str | None = None,
        access_token: str | None = None,
        execute_immediately: bool = True,
        batch_size: int | None = None,
        connection_id: str | None = None,
    ) -> BatchExecutionResult:
        """Create (or find) the batch for a plan and optionally run it."""
        if batch_size is not None and batch_size < 1:
            raise ValidationException("batch_size must be at least 1")
        key = idempotency_key or default_idempotency_key(plan.id)
        batch, items = self.materialize(plan, key, batch_size, connection_id)
        return await self.submit_batch(batch, items, access_token, execute_immediately)

    async def submit_batch(
        self,
        batch: ActionBatch,
        items: list[ActionItem],
        access_token: str | None = None,
        execute_immediately: bool = True,
    ) -> BatchExecutionResult:
        """Persist a materialized batch exactly once, then run it.

        Hey future me - idempotency is two-layered: a lookup first (the common case of a
        client retrying a request), then the UNIQUE constraint for the race where two
        requests pass the lookup at the same time. Either way the caller gets the batch
        that actually exists.
        """
        existing = await self._store.get_batch_by_idempotency_key(batch.idempotency_key)
        if existing is None:
            try:
                await self._store.create_batch(batch, items)
                logger.info(
                    f"Created batch {batch.id} ({len(items)} items, dry_run={batch.dry_run}, "
                    f"key={batch.idempotency_key})"
                )
            except DuplicateEntityException:
                existing = await self._store.get_batch_by_idempotency_key(
                    batch.idempotency_key
                )
                if existing is None:
                    raise
                logger.info(
                    f"Batch key {batch.idempotency_key} was created concurrently, "
                    f"using batch {existing.id}"
                )

        if existing is not None:
            logger.info(
                f"Idempotency key {batch.idempotency_key} already used by batch "
                f"{existing.id} ({existing.status})"
            )
            batch = existing
            items = await self._store.list_items(batch.id)
            if batch.status.is_terminal:
                return build_result(batch, items)

        # Dry runs never touch the provider, so there's nothing to defer
        if not execute_immediately and not batch.dry_run:
            return build_result(batch, items)
        return await self.run(batch, access_token, items)

    # =========================================================================
    # Execution
    # =========================================================================

    async def _resolve_token(self, batch: ActionBatch, access_token: str | None) -> str:
        if access_token:
            return access_token
        connection_id = batch.options.get("connection_id")
        if connection_id and self._token_provider is not None:
            return await self._token_provider.get_decrypted_access_token(connection_id)
        raise ValidationException(
            f"Batch {batch.id} needs an access token or a connection id to execute"
        )

    async def run(
        self,
        batch: ActionBatch,
        access_token: str | None = None,
        items: list[ActionItem] | None = None,
    ) -> BatchExecutionResult:
        """Execute every unsettled item of a batch and close it."""
        if items is None:
            items = await self._store.list_items(batch.id)
        if batch.status.is_terminal:
            return build_result(batch, items)
        if batch.id in self._active:
            logger.info(f"Batch {batch.id} is already running, not starting it twice")
            return build_result(batch, items)

        self._active.add(batch.id)
        token = set_batch_id(batch.id)
        try:
            if batch.dry_run:
                return await self._run_dry(batch, items)
            return await self._run_live(batch, items, access_token)
        finally:
            reset_batch_id(token)
            self._active.discard(batch.id)

    async def _run_dry(self, batch: ActionBatch, items: list[ActionItem]) -> BatchExecutionResult:
        pending = [item for item in items if item.status == ActionItemStatus.PENDING]
        for item in pending:
            item.skip()
        await self._store.save_items(pending)
        batch.finish(BatchSummary.from_items(items))
        await self._store.save_batch(batch)
        logger.info(f"Dry run batch {batch.id} finished: {len(items)} items skipped")
        return build_result(batch, items)

    async def _run_live(
        self, batch: ActionBatch, items: list[ActionItem], access_token: str | None
    ) -> BatchExecutionResult:
        runnable = [item for item in items if item.status not in SETTLED_ITEM_STATUSES]
        token = await self._resolve_token(batch, access_token) if runnable else ""

        resumed = batch.status == ActionBatchStatus.IN_PROGRESS
        batch.start()
        await self._store.save_batch(batch)
        logger.info(
            f"{'Resuming' if resumed else 'Starting'} batch {batch.id}: "
            f"{len(runnable)}/{len(items)} items to execute"
        )

        started = self._clock()
        stats = CallStats()
        previous = batch.summary
        groups = self._group(runnable)
        # Every group settles before an error propagates, otherwise the batch would
        # leave _active while sibling groups are still calling the provider
        outcomes = await asyncio.gather(
            *(
                self._run_group(batch, verb, playlist_id, group_items, token, stats)
                for (verb, playlist_id), group_items in groups.items()
            ),
            return_exceptions=True,
        )

        # Calls made by earlier (interrupted) runs of this batch count too
        summary = BatchSummary.from_items(
            items,
            execution_time_ms=previous.execution_time_ms
            + int((self._clock() - started) * 1000),
            api_calls_made=previous.api_calls_made + stats.api_calls,
            rate_limit_delays_ms=previous.rate_limit_delays_ms + stats.delay_ms,
        )
        errors = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
        if errors:
            logger.error(
                f"Batch {batch.id}: {len(errors)} of {len(groups)} action groups failed "
                f"with {type(errors[0]).__name__}: {errors[0]}. Batch stays "
                f"{batch.status} for resume"
            )
            batch.summary = summary
            await self._store.save_batch(batch)
            raise errors[0]

        batch.finish(summary)
        await self._store.save_batch(batch)
        logger.info(
            f"Batch {batch.id} {batch.status}: {summary.completed_actions} completed, "
            f"{summary.failed_actions} failed, {summary.skipped_actions} skipped, "
            f"{summary.api_calls_made} API calls in {summary.execution_time_ms}ms"
        )
        return build_result(batch, items)

    @staticmethod
    def _group(items: list[ActionItem]) -> dict[GroupKey, list[ActionItem]]:
        groups: dict[GroupKey, list[ActionItem]] = {}
        for item in items:
            spec = spec_for(item.action)
            playlist_id = item.playlist_id if spec is not None and spec.playlist_scoped else None
            groups.setdefault((item.action, playlist_id), []).append(item)
        return groups

    def chunk_size_for(self, batch: ActionBatch, client: IProviderActionClient, verb: str) -> int:
        """min(batch_size, configured chunk, provider bulk limit); 1 without a bulk primitive."""
        limit = client.bulk_limit(verb)
        if limit is None:
            return 1
        spec = spec_for(verb)
        if spec is not None:
            limit = min(limit, self._configured_chunk(spec.entity_type))
        if batch.batch_size:
            return max(1, min(limit, batch.batch_size))
        return limit

    def _configured_chunk(self, entity_type: EntityType) -> int:
        return {
            EntityType.TRACK: self._settings.liked_songs_chunk,
            EntityType.ALBUM: self._settings.albums_chunk,
            EntityType.ARTIST: self._settings.follows_chunk,
            EntityType.PLAYLIST_TRACK: self._settings.playlist_tracks_chunk,
        }[entity_type]

    async def _run_group(
        self,
        batch: ActionBatch,
        verb: str,
        playlist_id: str | None,
        items: list[ActionItem],
        access_token: str,
        stats: CallStats,
    ) -> None:
        if spec_for(verb) is None:
            # Unknown verb (stored by a newer version, or garbage) - fail, never guess
            for item in items:
                item.fail(
                    EnforcementErrorCode.UNSUPPORTED_ACTION,
                    f"Unknown action '{verb}'",
                )
            await self._store.save_items(items)
            logger.warning(f"Batch {batch.id}: {len(items)} items with unknown action {verb}")
            return

        client = self._client_for(batch.provider)
        size = self.chunk_size_for(batch, client, verb)
        context: dict[str, Any] = {"playlist_id": playlist_id} if playlist_id else {}
        for start in range(0, len(items), size):
            await self._run_chunk(
                batch, client, verb, items[start : start + size], access_token, context, stats
            )

    async def _run_chunk(
        self,
        batch: ActionBatch,
        client: IProviderActionClient,
        verb: str,
        chunk: list[ActionItem],
        access_token: str,
        context: dict[str, Any],
        stats: CallStats,
    ) -> None:
        for item in chunk:
            item.start()
        await self._store.save_items(chunk)

        entity_ids = [item.entity_id for item in chunk]
        limiter = self._limiters.get(batch.provider)
        try:
            response, _ = await call_with_backoff(
                limiter,
                lambda: client.execute(verb, entity_ids, access_token, context),
                self._policy,
                stats=stats,
            )
        except ProviderCallError as e:
            for item in chunk:
                item.fail(e.error_code, e.message, e.retry_count)
            await self._store.save_items(chunk)
            logger.warning(
                f"Batch {batch.id}: chunk of {len(chunk)} {verb} failed with {e.error_code}: "
                f"{e.message}"
            )
            return

        executed_at = datetime.now(UTC).isoformat()
        for item in chunk:
            item.complete(
                {
                    "entity_id": item.entity_id,
                    "entity_type": item.entity_type,
                    "playlist_id": context.get("playlist_id"),
                    "snapshot_id": response.correlation_token,
                    "executed_at": executed_at,
                    "chunk_size": len(chunk),
                }
            )
        await self._store.save_items(chunk)

