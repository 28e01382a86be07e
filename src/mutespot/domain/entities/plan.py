"""Enforcement plan entities - what WOULD happen, before anything is executed.

Plans are ephemeral (kept in the PlanCache between "plan" and "execute" calls), so
unlike ActionBatch they have no DB model.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from mutespot.domain.entities.enforcement import (
    ActionBatch,
    ActionBatchStatus,
    ActionItem,
    BatchSummary,
)
from mutespot.domain.value_objects.action_verbs import ActionVerb, EntityType


class AggressivenessLevel(StrEnum):
    """How eagerly non-primary credits count as a match.

    CONSERVATIVE: only the primary artist counts.
    MODERATE: other roles count when the detection confidence is >= 0.7.
    AGGRESSIVE: every enabled role counts regardless of confidence.
    """

    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class BlockReason(StrEnum):
    """Why an item was selected. Declared in priority order."""

    EXACT_MATCH = "exact_match"
    FEATURING = "featuring"
    COLLABORATION = "collaboration"
    SONGWRITER_ONLY = "songwriter_only"


@dataclass
class EnforcementOptions:
    """User-facing knobs for one enforcement run."""

    aggressiveness: AggressivenessLevel = AggressivenessLevel.MODERATE
    block_featuring: bool = True
    block_collaborations: bool = True
    block_songwriter_only: bool = False
    preserve_user_playlists: bool = True
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "aggressiveness": str(self.aggressiveness),
            "block_featuring": self.block_featuring,
            "block_collaborations": self.block_collaborations,
            "block_songwriter_only": self.block_songwriter_only,
            "preserve_user_playlists": self.preserve_user_playlists,
            "dry_run": self.dry_run,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EnforcementOptions":
        data = data or {}
        return cls(
            aggressiveness=AggressivenessLevel(
                data.get("aggressiveness", AggressivenessLevel.MODERATE)
            ),
            block_featuring=data.get("block_featuring", True),
            block_collaborations=data.get("block_collaborations", True),
            block_songwriter_only=data.get("block_songwriter_only", False),
            preserve_user_playlists=data.get("preserve_user_playlists", True),
            dry_run=data.get("dry_run", False),
        )


@dataclass
class PlannedAction:
    """One action the plan proposes.

    context carries what the executor needs besides entity_id (playlist_id and the
    playlist snapshot_id for playlist tracks). It becomes the item's before_state.
    """

    verb: ActionVerb
    entity_type: EntityType
    entity_id: str
    entity_name: str
    reason: BlockReason
    confidence: float = 1.0
    blocked_artist_ids: list[str] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def playlist_id(self) -> str | None:
        return self.context.get("playlist_id")

    def before_state(self) -> dict[str, Any]:
        state: dict[str, Any] = {
            "entity_id": self.entity_id,
            "entity_type": str(self.entity_type),
            "entity_name": self.entity_name,
        }
        state.update(self.context)
        return state

    def dedup_key(self) -> tuple[str, str, str | None]:
        return (str(self.verb), self.entity_id, self.playlist_id)


@dataclass
class CollectionImpact:
    total: int = 0
    to_remove: int = 0


@dataclass
class PlaylistImpactDetail:
    """What happens to one playlist."""

    playlist_id: str
    playlist_name: str
    is_user_owned: bool
    is_collaborative: bool
    total_tracks: int
    tracks_to_remove: int
    preserved: bool


@dataclass
class EnforcementImpact:
    """Pre-execution impact analysis of a plan."""

    liked_songs: CollectionImpact = field(default_factory=CollectionImpact)
    playlist_tracks: CollectionImpact = field(default_factory=CollectionImpact)
    followed_artists: CollectionImpact = field(default_factory=CollectionImpact)
    saved_albums: CollectionImpact = field(default_factory=CollectionImpact)
    playlists: list[PlaylistImpactDetail] = field(default_factory=list)
    actions_by_verb: dict[str, int] = field(default_factory=dict)
    actions_by_reason: dict[str, int] = field(default_factory=dict)
    total_items_affected: int = 0
    # Removed tracks x 3.5 minutes (average track length)
    estimated_time_saved_hours: float = 0.0

    @property
    def playlists_modified(self) -> int:
        return sum(1 for p in self.playlists if p.tracks_to_remove > 0 and not p.preserved)

    @property
    def playlists_preserved(self) -> int:
        return sum(1 for p in self.playlists if p.preserved)


@dataclass
class EnforcementPlan:
    """An ordered list of actions plus their impact, ready to be executed."""

    user_id: str
    provider: str
    blocked_artist_ids: list[str]
    options: EnforcementOptions
    actions: list[PlannedAction] = field(default_factory=list)
    impact: EnforcementImpact = field(default_factory=EnforcementImpact)
    estimated_duration_seconds: float = 0.0
    # Token source for deferred execution and rollback
    connection_id: str | None = None
    # Collections the scan could not read (collection -> error), plus scan warnings
    scan_failures: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def actions_for(self, verb: ActionVerb) -> list[PlannedAction]:
        return [action for action in self.actions if action.verb == verb]


@dataclass
class RollbackItemOutcome:
    """Result of compensating one original item."""

    original_action_id: str
    rollback_action_id: str | None
    verb: str | None
    entity_id: str
    status: str
    error: str | None = None


@dataclass
class RollbackInfo:
    """Result of a rollback request."""

    rollback_batch_id: str
    original_batch_id: str
    status: ActionBatchStatus
    partial_rollback: bool
    items: list[RollbackItemOutcome] = field(default_factory=list)
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    summary: BatchSummary = field(default_factory=BatchSummary)


@dataclass
class RateLimitStatus:
    """Snapshot of a provider limiter."""

    provider: str
    requests_remaining: int
    reset_at: datetime | None
    current_delay_ms: int = 0


@dataclass
class BatchProgress:
    """Live progress of a batch, for polling clients."""

    batch_id: str
    status: ActionBatchStatus
    total: int
    completed: int
    failed: int
    skipped: int
    current_item: str | None = None
    estimated_remaining_ms: int = 0
    rate_limit_status: RateLimitStatus | None = None

    @property
    def percent_complete(self) -> float:
        if self.total == 0:
            return 100.0
        return round((self.completed + self.failed + self.skipped) / self.total * 100, 1)


@dataclass
class BatchExecutionResult:
    """What execute_batch hands back: the batch plus its items split by outcome."""

    batch: ActionBatch
    completed_actions: list[ActionItem] = field(default_factory=list)
    failed_actions: list[ActionItem] = field(default_factory=list)
    skipped_actions: list[ActionItem] = field(default_factory=list)
    pending_actions: list[ActionItem] = field(default_factory=list)
    rollback_info: RollbackInfo | None = None

    @property
    def batch_id(self) -> str:
        return self.batch.id

    @property
    def status(self) -> ActionBatchStatus:
        return self.batch.status

    @property
    def summary(self) -> BatchSummary:
        return self.batch.summary
