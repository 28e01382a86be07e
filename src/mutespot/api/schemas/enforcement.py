"""API schemas for enforcement plans, batches and rollbacks."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from mutespot.domain.entities import (
    ActionItem,
    AggressivenessLevel,
    BatchExecutionResult,
    BatchProgress,
    BatchSummary,
    EnforcementImpact,
    EnforcementOptions,
    EnforcementPlan,
    PlannedAction,
    RateLimitStatus,
    RollbackInfo,
)

# =============================================================================
# REQUESTS
# =============================================================================


class EnforcementOptionsSchema(BaseModel):
    """User-facing enforcement knobs."""

    aggressiveness: AggressivenessLevel = Field(
        default=AggressivenessLevel.MODERATE,
        description="conservative: primary only, moderate: confidence >= 0.7, aggressive: all",
    )
    block_featuring: bool = Field(default=True, description="Block tracks featuring the artist")
    block_collaborations: bool = Field(default=True, description="Block collaborations")
    block_songwriter_only: bool = Field(
        default=False, description="Block tracks the artist only wrote or produced"
    )
    preserve_user_playlists: bool = Field(
        default=True, description="Never touch playlists the user owns"
    )
    dry_run: bool = Field(default=False, description="Plan and record, but change nothing")

    def to_domain(self) -> EnforcementOptions:
        return EnforcementOptions(
            aggressiveness=self.aggressiveness,
            block_featuring=self.block_featuring,
            block_collaborations=self.block_collaborations,
            block_songwriter_only=self.block_songwriter_only,
            preserve_user_playlists=self.preserve_user_playlists,
            dry_run=self.dry_run,
        )


class CreatePlanRequest(BaseModel):
    """Request schema for planning an enforcement run."""

    user_id: str = Field(..., min_length=1)
    provider: str = Field(default="spotify")
    blocked_artist_ids: list[str] = Field(..., min_length=1)
    options: EnforcementOptionsSchema = Field(default_factory=EnforcementOptionsSchema)
    connection_id: str | None = Field(
        default=None, description="Provider connection to fetch tokens for"
    )


class ExecuteBatchRequest(BaseModel):
    """Request schema for executing a cached plan."""

    plan_id: str
    idempotency_key: str | None = Field(
        default=None, max_length=255, description="Defaults to one key per plan"
    )
    execute_immediately: bool = True
    batch_size: int | None = Field(default=None, ge=1, le=100)


class RollbackRequest(BaseModel):
    """Request schema for rolling back a batch."""

    action_ids: list[str] | None = Field(
        default=None, description="Only these actions (all completed actions if omitted)"
    )
    reason: str = Field(default="", max_length=500)


# =============================================================================
# RESPONSES
# =============================================================================


class PlannedActionResponse(BaseModel):
    id: str
    verb: str
    entity_type: str
    entity_id: str
    entity_name: str
    reason: str
    confidence: float
    blocked_artist_ids: list[str]
    playlist_id: str | None = None

    @classmethod
    def from_entity(cls, action: PlannedAction) -> "PlannedActionResponse":
        return cls(
            id=action.id,
            verb=str(action.verb),
            entity_type=str(action.entity_type),
            entity_id=action.entity_id,
            entity_name=action.entity_name,
            reason=str(action.reason),
            confidence=action.confidence,
            blocked_artist_ids=action.blocked_artist_ids,
            playlist_id=action.playlist_id,
        )


class CollectionImpactResponse(BaseModel):
    total: int
    to_remove: int


class PlaylistImpactResponse(BaseModel):
    playlist_id: str
    playlist_name: str
    is_user_owned: bool
    is_collaborative: bool
    total_tracks: int
    tracks_to_remove: int
    preserved: bool


class ImpactResponse(BaseModel):
    liked_songs: CollectionImpactResponse
    playlist_tracks: CollectionImpactResponse
    followed_artists: CollectionImpactResponse
    saved_albums: CollectionImpactResponse
    playlists: list[PlaylistImpactResponse]
    playlists_modified: int
    playlists_preserved: int
    actions_by_verb: dict[str, int]
    actions_by_reason: dict[str, int]
    total_items_affected: int
    estimated_time_saved_hours: float

    @classmethod
    def from_entity(cls, impact: EnforcementImpact) -> "ImpactResponse":
        def collection(c: Any) -> CollectionImpactResponse:
            return CollectionImpactResponse(total=c.total, to_remove=c.to_remove)

        return cls(
            liked_songs=collection(impact.liked_songs),
            playlist_tracks=collection(impact.playlist_tracks),
            followed_artists=collection(impact.followed_artists),
            saved_albums=collection(impact.saved_albums),
            playlists=[
                PlaylistImpactResponse(
                    playlist_id=p.playlist_id,
                    playlist_name=p.playlist_name,
                    is_user_owned=p.is_user_owned,
                    is_collaborative=p.is_collaborative,
                    total_tracks=p.total_tracks,
                    tracks_to_remove=p.tracks_to_remove,
                    preserved=p.preserved,
                )
                for p in impact.playlists
            ],
            playlists_modified=impact.playlists_modified,
            playlists_preserved=impact.playlists_preserved,
            actions_by_verb=impact.actions_by_verb,
            actions_by_reason=impact.actions_by_reason,
            total_items_affected=impact.total_items_affected,
            estimated_time_saved_hours=impact.estimated_time_saved_hours,
        )


class PlanResponse(BaseModel):
    """Response schema for a created plan."""

    plan_id: str
    user_id: str
    provider: str
    blocked_artist_ids: list[str]
    dry_run: bool
    actions: list[PlannedActionResponse]
    impact: ImpactResponse
    estimated_duration_seconds: float
    scan_failures: dict[str, str]
    warnings: list[str]
    created_at: datetime

    @classmethod
    def from_entity(cls, plan: EnforcementPlan) -> "PlanResponse":
        return cls(
            plan_id=plan.id,
            user_id=plan.user_id,
            provider=plan.provider,
            blocked_artist_ids=plan.blocked_artist_ids,
            dry_run=plan.options.dry_run,
            actions=[PlannedActionResponse.from_entity(a) for a in plan.actions],
            impact=ImpactResponse.from_entity(plan.impact),
            estimated_duration_seconds=plan.estimated_duration_seconds,
            scan_failures=plan.scan_failures,
            warnings=plan.warnings,
            created_at=plan.created_at,
        )


class ActionItemResponse(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    action: str
    status: str
    error_code: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    before_state: dict[str, Any] | None = None
    after_state: dict[str, Any] | None = None

    @classmethod
    def from_entity(cls, item: ActionItem) -> "ActionItemResponse":
        return cls(
            id=item.id,
            entity_type=item.entity_type,
            entity_id=item.entity_id,
            action=item.action,
            status=str(item.status),
            error_code=item.error_code,
            error_message=item.error_message,
            retry_count=item.retry_count,
            before_state=item.before_state,
            after_state=item.after_state,
        )


class BatchSummaryResponse(BaseModel):
    total_actions: int
    completed_actions: int
    failed_actions: int
    skipped_actions: int
    rolled_back_actions: int
    execution_time_ms: int
    api_calls_made: int
    rate_limit_delays_ms: int
    all_skipped: bool
    errors: list[dict[str, Any]]

    @classmethod
    def from_entity(cls, summary: BatchSummary) -> "BatchSummaryResponse":
        data = summary.to_dict()
        return cls(**data)


class BatchResponse(BaseModel):
    """Response schema for a batch and its items."""

    batch_id: str
    user_id: str
    provider: str
    idempotency_key: str
    status: str
    dry_run: bool
    rollback_of: str | None = None
    summary: BatchSummaryResponse
    completed_actions: list[ActionItemResponse]
    failed_actions: list[ActionItemResponse]
    skipped_actions: list[ActionItemResponse]
    pending_actions: list[ActionItemResponse]
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_result(cls, result: BatchExecutionResult) -> "BatchResponse":
        batch = result.batch
        return cls(
            batch_id=batch.id,
            user_id=batch.user_id,
            provider=batch.provider,
            idempotency_key=batch.idempotency_key,
            status=str(batch.status),
            dry_run=batch.dry_run,
            rollback_of=batch.rollback_of,
            summary=BatchSummaryResponse.from_entity(batch.summary),
            completed_actions=[ActionItemResponse.from_entity(i) for i in result.completed_actions],
            failed_actions=[ActionItemResponse.from_entity(i) for i in result.failed_actions],
            skipped_actions=[ActionItemResponse.from_entity(i) for i in result.skipped_actions],
            pending_actions=[ActionItemResponse.from_entity(i) for i in result.pending_actions],
            created_at=batch.created_at,
            completed_at=batch.completed_at,
        )


class RateLimitStatusResponse(BaseModel):
    provider: str
    requests_remaining: int
    reset_at: datetime | None = None
    current_delay_ms: int

    @classmethod
    def from_entity(cls, status: RateLimitStatus) -> "RateLimitStatusResponse":
        return cls(
            provider=status.provider,
            requests_remaining=status.requests_remaining,
            reset_at=status.reset_at,
            current_delay_ms=status.current_delay_ms,
        )


class BatchProgressResponse(BaseModel):
    batch_id: str
    status: str
    total: int
    completed: int
    failed: int
    skipped: int
    percent_complete: float
    current_item: str | None = None
    estimated_remaining_ms: int
    rate_limit_status: RateLimitStatusResponse | None = None

    @classmethod
    def from_entity(cls, progress: BatchProgress) -> "BatchProgressResponse":
        return cls(
            batch_id=progress.batch_id,
            status=str(progress.status),
            total=progress.total,
            completed=progress.completed,
            failed=progress.failed,
            skipped=progress.skipped,
            percent_complete=progress.percent_complete,
            current_item=progress.current_item,
            estimated_remaining_ms=progress.estimated_remaining_ms,
            rate_limit_status=(
                RateLimitStatusResponse.from_entity(progress.rate_limit_status)
                if progress.rate_limit_status
                else None
            ),
        )


class RollbackItemResponse(BaseModel):
    original_action_id: str
    rollback_action_id: str | None = None
    verb: str | None = None
    entity_id: str
    status: str
    error: str | None = None


class RollbackResponse(BaseModel):
    rollback_batch_id: str
    original_batch_id: str
    status: str
    partial_rollback: bool
    completed: int
    failed: int
    skipped: int
    items: list[RollbackItemResponse]
    summary: BatchSummaryResponse

    @classmethod
    def from_entity(cls, info: RollbackInfo) -> "RollbackResponse":
        return cls(
            rollback_batch_id=info.rollback_batch_id,
            original_batch_id=info.original_batch_id,
            status=str(info.status),
            partial_rollback=info.partial_rollback,
            completed=info.completed,
            failed=info.failed,
            skipped=info.skipped,
            items=[
                RollbackItemResponse(
                    original_action_id=o.original_action_id,
                    rollback_action_id=o.rollback_action_id,
                    verb=o.verb,
                    entity_id=o.entity_id,
                    status=o.status,
                    error=o.error,
                )
                for o in info.items
            ],
            summary=BatchSummaryResponse.from_entity(info.summary),
        )
