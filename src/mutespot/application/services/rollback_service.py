"""Rollback service - compensates a finished batch by issuing inverse actions.

Hey future me - rollback is NOT an undo button on the DB. It creates a brand new batch
(options.rollback_of = original id) whose items are the inverse verbs, and pushes it
through the same BatchExecutor as any enforcement run: same limiter, same chunking,
same durability. The original batch status never changes; its successfully
compensated items move COMPLETED → ROLLED_BACK and its summary is recounted.

Every caller error (unknown batch, wrong status, dry run, rollback of a rollback, bad
action ids) is raised BEFORE anything is persisted or sent to the provider.
"""

import hashlib
import logging
from typing import Any

from mutespot.application.services.batch_executor import BatchExecutor
from mutespot.domain.entities import (
    ActionBatch,
    ActionBatchStatus,
    ActionItem,
    ActionItemStatus,
    BatchExecutionResult,
    BatchSummary,
    RollbackInfo,
    RollbackItemOutcome,
)
from mutespot.domain.exceptions import EntityNotFoundException, InvalidStateException
from mutespot.domain.ports import IEnforcementStore
from mutespot.domain.value_objects import inverse_of

logger = logging.getLogger(__name__)

_ROLLBACKABLE_STATUSES = (ActionBatchStatus.COMPLETED, ActionBatchStatus.PARTIALLY_COMPLETED)


def rollback_idempotency_key(batch_id: str, action_ids: list[str]) -> str:
    """Same original batch + same selected items → same rollback batch."""
    digest = hashlib.sha256(",".join(sorted(action_ids)).encode()).hexdigest()[:16]
    return f"rollback_{batch_id}_{digest}"


class RollbackService:
    """Builds and runs compensation batches."""

    def __init__(self, store: IEnforcementStore, executor: BatchExecutor) -> None:
        self._store = store
        self._executor = executor

    async def _load_rollbackable(self, batch_id: str) -> ActionBatch:
        batch = await self._store.get_batch(batch_id)
        if batch is None:
            raise EntityNotFoundException("ActionBatch", batch_id)
        if batch.status not in _ROLLBACKABLE_STATUSES:
            raise InvalidStateException(
                f"Batch {batch_id} is {batch.status}, only completed or partially "
                f"completed batches can be rolled back"
            )
        if batch.dry_run:
            raise InvalidStateException(f"Batch {batch_id} is a dry run, nothing to roll back")
        if batch.is_rollback:
            raise InvalidStateException(
                f"Batch {batch_id} is itself a rollback of {batch.rollback_of}"
            )
        return batch

    @staticmethod
    def _select(items: list[ActionItem], action_ids: list[str] | None) -> list[ActionItem]:
        if action_ids is None:
            return [
                item
                for item in items
                if item.status == ActionItemStatus.COMPLETED and item.before_state is not None
            ]

        by_id = {item.id: item for item in items}
        selected: list[ActionItem] = []
        for action_id in dict.fromkeys(action_ids):
            item = by_id.get(action_id)
            if item is None:
                raise InvalidStateException(f"Action {action_id} does not belong to this batch")
            if item.status != ActionItemStatus.COMPLETED:
                raise InvalidStateException(
                    f"Action {action_id} is {item.status}, only completed actions can be "
                    f"rolled back"
                )
            if item.before_state is None:
                raise InvalidStateException(f"Action {action_id} has no recorded before-state")
            selected.append(item)
        return selected

    @staticmethod
    def _inverse_state(item: ActionItem) -> dict[str, Any]:
        # Start from what the provider looked like AFTER the removal, keep the
        # playlist scope of the original and remember which item we compensate
        state: dict[str, Any] = dict(item.after_state or {})
        state.setdefault("entity_id", item.entity_id)
        playlist_id = item.playlist_id
        if playlist_id is not None:
            state["playlist_id"] = playlist_id
        state["original_action_id"] = item.id
        return state

    async def rollback_batch(
        self,
        batch_id: str,
        action_ids: list[str] | None = None,
        reason: str = "",
        access_token: str | None = None,
    ) -> RollbackInfo:
        """Compensate the completed items of a batch.

        Args:
            batch_id: Batch to roll back
            action_ids: Only these items (all completed items when None)
            reason: Free text stored on the rollback batch
            access_token: Token for the provider; resolved through the original
                batch's connection id when omitted

        Returns:
            RollbackInfo with per-item outcomes

        Raises:
            EntityNotFoundException: Unknown batch
            InvalidStateException: Batch or selected actions cannot be rolled back
        """
        original = await self._load_rollbackable(batch_id)
        items = await self._store.list_items(batch_id)
        selected = self._select(items, action_ids)

        reversible: list[tuple[ActionItem, str]] = []
        irreversible: list[ActionItem] = []
        for item in selected:
            verb = inverse_of(item.action)
            if verb is None:
                irreversible.append(item)
            else:
                reversible.append((item, str(verb)))

        rollback_batch = ActionBatch.create(
            user_id=original.user_id,
            provider=original.provider,
            idempotency_key=rollback_idempotency_key(
                batch_id, [item.id for item in selected]
            ),
            dry_run=False,
            options={
                "rollback_of": batch_id,
                "reason": reason,
                "action_ids": [item.id for item in selected],
                "connection_id": original.options.get("connection_id"),
                "batch_size": original.batch_size,
            },
        )
        inverse_items: list[ActionItem] = []
        for item, verb in reversible:
            inverse_items.append(
                ActionItem.create(
                    rollback_batch.id,
                    item.entity_type,
                    item.entity_id,
                    verb,
                    self._inverse_state(item),
                )
            )

        logger.info(
            f"Rolling back batch {batch_id}: {len(inverse_items)} inverse actions, "
            f"{len(irreversible)} without inverse (reason: {reason or '-'})"
        )
        result = await self._executor.submit_batch(rollback_batch, inverse_items, access_token)
        return await self.finalize(result)

    async def finalize(self, result: BatchExecutionResult) -> RollbackInfo:
        """Apply a rollback batch's outcome to the batch it compensates.

        Hey future me - this runs after EVERY run of a rollback batch, not only the
        first one. A rollback interrupted mid-way is finished by the worker through
        BatchExecutor.run, and that run must still flip the originals to ROLLED_BACK.
        Marking is idempotent: only originals that are still COMPLETED move.
        """
        rollback_batch = result.batch
        batch_id = rollback_batch.rollback_of
        if batch_id is None:
            raise InvalidStateException(f"Batch {rollback_batch.id} is not a rollback batch")
        original = await self._store.get_batch(batch_id)
        if original is None:
            raise EntityNotFoundException("ActionBatch", batch_id)
        items = await self._store.list_items(batch_id)
        by_id = {item.id: item for item in items}
        selected = [
            by_id[action_id]
            for action_id in rollback_batch.options.get("action_ids", [])
            if action_id in by_id
        ]
        rollback_items = (
            result.completed_actions
            + result.failed_actions
            + result.skipped_actions
            + result.pending_actions
        )

        # Originals whose compensation went through become ROLLED_BACK
        compensated: set[str] = set()
        reversed_originals: list[ActionItem] = []
        outcomes: list[RollbackItemOutcome] = []
        for rollback_item in rollback_items:
            original_id = (rollback_item.before_state or {}).get("original_action_id")
            original_item = by_id.get(original_id) if original_id else None
            if original_item is None:
                continue
            compensated.add(original_item.id)
            if rollback_item.status == ActionItemStatus.COMPLETED:
                if original_item.status == ActionItemStatus.COMPLETED:
                    original_item.mark_rolled_back()
                    reversed_originals.append(original_item)
                status = "rolled_back"
            elif rollback_item.status == ActionItemStatus.FAILED:
                status = "failed"
            else:
                status = str(rollback_item.status)
            outcomes.append(
                RollbackItemOutcome(
                    original_action_id=original_item.id,
                    rollback_action_id=rollback_item.id,
                    verb=rollback_item.action,
                    entity_id=rollback_item.entity_id,
                    status=status,
                    error=rollback_item.error_message,
                )
            )
        for item in selected:
            if item.id in compensated:
                continue
            outcomes.append(
                RollbackItemOutcome(
                    original_action_id=item.id,
                    rollback_action_id=None,
                    verb=None,
                    entity_id=item.entity_id,
                    status="skipped",
                    error=f"No inverse for action '{item.action}'",
                )
            )

        await self._store.save_items(reversed_originals)
        if reversed_originals:
            previous = original.summary
            original.summary = BatchSummary.from_items(
                items,
                execution_time_ms=previous.execution_time_ms,
                api_calls_made=previous.api_calls_made,
                rate_limit_delays_ms=previous.rate_limit_delays_ms,
            )
            await self._store.save_batch(original)

        completed = sum(1 for o in outcomes if o.status == "rolled_back")
        failed = sum(1 for o in outcomes if o.status == "failed")
        skipped = sum(1 for o in outcomes if o.status == "skipped")
        still_completed = any(i.status == ActionItemStatus.COMPLETED for i in items)
        info = RollbackInfo(
            rollback_batch_id=result.batch_id,
            original_batch_id=batch_id,
            status=result.status,
            partial_rollback=failed > 0 or skipped > 0 or still_completed,
            items=outcomes,
            completed=completed,
            failed=failed,
            skipped=skipped,
            summary=result.summary,
        )
        logger.info(
            f"Rollback {info.rollback_batch_id} of batch {batch_id} {info.status}: "
            f"{completed} reversed, {failed} failed, {skipped} skipped"
        )
        return info
