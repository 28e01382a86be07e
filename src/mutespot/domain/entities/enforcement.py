"""Enforcement batch entities - the persisted record of what the engine did.

Hey future me - ActionBatch and ActionItem are DOMAIN entities, not DB models! The
repositories translate them to/from ActionBatchModel/ActionItemModel. Use the transition
methods (start, complete, fail, skip, mark_rolled_back) instead of poking status directly -
they enforce the state machine and bump updated_at:

    Item:  PENDING → IN_PROGRESS → COMPLETED | FAILED
           PENDING → SKIPPED                (dry run)
           COMPLETED → ROLLED_BACK          (after a successful compensation)
    Batch: PENDING → IN_PROGRESS → COMPLETED | PARTIALLY_COMPLETED | FAILED
           PENDING → COMPLETED              (dry run / empty batch)

Invalid transitions raise ValueError, same as Download.start() et al.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from mutespot.domain.entities.error_codes import EnforcementErrorCode, is_recoverable_error
from mutespot.domain.value_objects.action_verbs import (
    EntityType,
    inverse_of,
    is_playlist_scoped,
)


class ActionBatchStatus(StrEnum):
    """Lifecycle status of a batch."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ActionBatchStatus.COMPLETED,
            ActionBatchStatus.PARTIALLY_COMPLETED,
            ActionBatchStatus.FAILED,
        )


class ActionItemStatus(StrEnum):
    """Lifecycle status of a single action item."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"


# Items in these states are never sent to the provider again (resume skips them)
SETTLED_ITEM_STATUSES: frozenset[ActionItemStatus] = frozenset(
    {
        ActionItemStatus.COMPLETED,
        ActionItemStatus.FAILED,
        ActionItemStatus.SKIPPED,
        ActionItemStatus.ROLLED_BACK,
    }
)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class BatchError:
    """One failed item as reported in the batch summary."""

    action_id: str
    entity_type: str
    entity_id: str
    error_code: str
    error_message: str
    retry_count: int = 0
    is_recoverable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_id": self.action_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "is_recoverable": self.is_recoverable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchError":
        return cls(
            action_id=data["action_id"],
            entity_type=data["entity_type"],
            entity_id=data["entity_id"],
            error_code=data["error_code"],
            error_message=data.get("error_message", ""),
            retry_count=data.get("retry_count", 0),
            is_recoverable=data.get("is_recoverable", False),
        )


@dataclass
class BatchSummary:
    """Counts and timings for a batch, recomputed from its items.

    Hey future me - never increment these counters by hand! BatchSummary.from_items()
    derives them from the persisted item statuses, so a resumed batch gets a correct
    summary even though half of its items were finished by a previous process.
    """

    total_actions: int = 0
    completed_actions: int = 0
    failed_actions: int = 0
    skipped_actions: int = 0
    rolled_back_actions: int = 0
    execution_time_ms: int = 0
    api_calls_made: int = 0
    rate_limit_delays_ms: int = 0
    all_skipped: bool = False
    errors: list[BatchError] = field(default_factory=list)

    @classmethod
    def from_items(
        cls,
        items: list["ActionItem"],
        *,
        execution_time_ms: int = 0,
        api_calls_made: int = 0,
        rate_limit_delays_ms: int = 0,
    ) -> "BatchSummary":
        counts = dict.fromkeys(ActionItemStatus, 0)
        errors: list[BatchError] = []
        for item in items:
            counts[item.status] += 1
            if item.status == ActionItemStatus.FAILED:
                code = item.error_code or EnforcementErrorCode.BAD_RESPONSE
                errors.append(
                    BatchError(
                        action_id=item.id,
                        entity_type=item.entity_type,
                        entity_id=item.entity_id,
                        error_code=code,
                        error_message=item.error_message or "",
                        retry_count=item.retry_count,
                        is_recoverable=is_recoverable_error(code),
                    )
                )

        total = len(items)
        skipped = counts[ActionItemStatus.SKIPPED]
        return cls(
            total_actions=total,
            # ROLLED_BACK items were completed first, they still count as completed work
            completed_actions=counts[ActionItemStatus.COMPLETED]
            + counts[ActionItemStatus.ROLLED_BACK],
            failed_actions=counts[ActionItemStatus.FAILED],
            skipped_actions=skipped,
            rolled_back_actions=counts[ActionItemStatus.ROLLED_BACK],
            execution_time_ms=execution_time_ms,
            api_calls_made=api_calls_made,
            rate_limit_delays_ms=rate_limit_delays_ms,
            all_skipped=skipped == total,
            errors=errors,
        )

    def derive_status(self) -> ActionBatchStatus:
        """Final batch status from the counts.

        completed iff nothing failed (this covers the all-skipped case),
        partially_completed iff some completed and some failed,
        failed iff nothing completed and something failed.
        """
        if self.failed_actions == 0:
            return ActionBatchStatus.COMPLETED
        if self.completed_actions > 0:
            return ActionBatchStatus.PARTIALLY_COMPLETED
        return ActionBatchStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_actions": self.total_actions,
            "completed_actions": self.completed_actions,
            "failed_actions": self.failed_actions,
            "skipped_actions": self.skipped_actions,
            "rolled_back_actions": self.rolled_back_actions,
            "execution_time_ms": self.execution_time_ms,
            "api_calls_made": self.api_calls_made,
            "rate_limit_delays_ms": self.rate_limit_delays_ms,
            "all_skipped": self.all_skipped,
            "errors": [error.to_dict() for error in self.errors],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BatchSummary":
        if not data:
            return cls()
        return cls(
            total_actions=data.get("total_actions", 0),
            completed_actions=data.get("completed_actions", 0),
            failed_actions=data.get("failed_actions", 0),
            skipped_actions=data.get("skipped_actions", 0),
            rolled_back_actions=data.get("rolled_back_actions", 0),
            execution_time_ms=data.get("execution_time_ms", 0),
            api_calls_made=data.get("api_calls_made", 0),
            rate_limit_delays_ms=data.get("rate_limit_delays_ms", 0),
            all_skipped=data.get("all_skipped", False),
            errors=[BatchError.from_dict(e) for e in data.get("errors", [])],
        )


def build_item_idempotency_key(
    batch_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    playlist_id: str | None = None,
) -> str:
    """Idempotency key of one item: unique per (batch, entity, verb[, playlist]).

    The same track can sit in three playlists, so playlist-scoped verbs need the
    playlist id in the key or the second and third removal would collide.
    """
    key = f"{batch_id}:{entity_type}:{entity_id}:{action}"
    if playlist_id is not None and is_playlist_scoped(action):
        key = f"{key}:{playlist_id}"
    return key


@dataclass
class ActionItem:
    """One remote mutation inside a batch."""

    id: str
    batch_id: str
    entity_type: str
    entity_id: str
    action: str
    idempotency_key: str
    before_state: dict[str, Any] | None = None
    after_state: dict[str, Any] | None = None
    status: ActionItemStatus = ActionItemStatus.PENDING
    error_message: str | None = None
    error_code: str | None = None
    retry_count: int = 0
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @classmethod
    def create(
        cls,
        batch_id: str,
        entity_type: EntityType | str,
        entity_id: str,
        action: str,
        before_state: dict[str, Any] | None = None,
    ) -> "ActionItem":
        """Build a fresh PENDING item with its idempotency key filled in."""
        playlist_id = (before_state or {}).get("playlist_id")
        return cls(
            id=str(uuid.uuid4()),
            batch_id=batch_id,
            entity_type=str(entity_type),
            entity_id=entity_id,
            action=action,
            idempotency_key=build_item_idempotency_key(
                batch_id, str(entity_type), entity_id, action, playlist_id
            ),
            before_state=before_state,
        )

    @property
    def playlist_id(self) -> str | None:
        return (self.before_state or {}).get("playlist_id")

    @property
    def can_rollback(self) -> bool:
        """Completed, has a before-state and a verb with an inverse."""
        return (
            self.status == ActionItemStatus.COMPLETED
            and self.before_state is not None
            and inverse_of(self.action) is not None
        )

    def start(self) -> None:
        # IN_PROGRESS → IN_PROGRESS is allowed: that's a stale item being resumed
        if self.status not in (ActionItemStatus.PENDING, ActionItemStatus.IN_PROGRESS):
            raise ValueError(f"Cannot start action item in status {self.status}")
        self.status = ActionItemStatus.IN_PROGRESS
        self.updated_at = _now()

    def complete(self, after_state: dict[str, Any] | None = None) -> None:
        if self.status != ActionItemStatus.IN_PROGRESS:
            raise ValueError(f"Cannot complete action item in status {self.status}")
        self.status = ActionItemStatus.COMPLETED
        self.after_state = after_state
        self.error_message = None
        self.error_code = None
        self.updated_at = _now()

    def fail(self, error_code: str, error_message: str, retry_count: int = 0) -> None:
        if self.status not in (ActionItemStatus.PENDING, ActionItemStatus.IN_PROGRESS):
            raise ValueError(f"Cannot fail action item in status {self.status}")
        self.status = ActionItemStatus.FAILED
        self.error_code = str(error_code)
        self.error_message = error_message
        self.retry_count = retry_count
        self.updated_at = _now()

    def skip(self) -> None:
        if self.status != ActionItemStatus.PENDING:
            raise ValueError(f"Cannot skip action item in status {self.status}")
        self.status = ActionItemStatus.SKIPPED
        self.updated_at = _now()

    def mark_rolled_back(self) -> None:
        if self.status != ActionItemStatus.COMPLETED:
            raise ValueError(f"Cannot roll back action item in status {self.status}")
        self.status = ActionItemStatus.ROLLED_BACK
        self.updated_at = _now()


@dataclass
class ActionBatch:
    """A submitted enforcement plan (or rollback) and its outcome."""

    id: str
    user_id: str
    provider: str
    idempotency_key: str
    dry_run: bool = False
    status: ActionBatchStatus = ActionBatchStatus.PENDING
    options: dict[str, Any] = field(default_factory=dict)
    summary: BatchSummary = field(default_factory=BatchSummary)
    created_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.idempotency_key:
            raise ValueError("Batch idempotency key cannot be empty")

    @classmethod
    def create(
        cls,
        user_id: str,
        provider: str,
        idempotency_key: str,
        dry_run: bool = False,
        options: dict[str, Any] | None = None,
    ) -> "ActionBatch":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            provider=provider,
            idempotency_key=idempotency_key,
            dry_run=dry_run,
            options=dict(options or {}),
        )

    @property
    def is_rollback(self) -> bool:
        return self.rollback_of is not None

    @property
    def rollback_of(self) -> str | None:
        return self.options.get("rollback_of")

    @property
    def batch_size(self) -> int | None:
        return self.options.get("batch_size")

    def start(self) -> None:
        if self.status not in (ActionBatchStatus.PENDING, ActionBatchStatus.IN_PROGRESS):
            raise ValueError(f"Cannot start batch in status {self.status}")
        self.status = ActionBatchStatus.IN_PROGRESS

    def finish(self, summary: BatchSummary) -> None:
        """Close the batch with its final summary; status is derived from the counts."""
        if self.status.is_terminal:
            raise ValueError(f"Batch {self.id} is already {self.status}")
        self.summary = summary
        self.status = summary.derive_status()
        self.completed_at = _now()
