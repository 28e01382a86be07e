"""Domain entities."""

from mutespot.domain.entities.enforcement import (
    SETTLED_ITEM_STATUSES,
    ActionBatch,
    ActionBatchStatus,
    ActionItem,
    ActionItemStatus,
    BatchError,
    BatchSummary,
    build_item_idempotency_key,
)
from mutespot.domain.entities.error_codes import (
    PERMANENT_ERRORS,
    RECOVERABLE_ERRORS,
    EnforcementErrorCode,
    error_code_for_status,
    get_error_description,
    is_recoverable_error,
)
from mutespot.domain.entities.library import (
    SONGWRITER_ROLES,
    ArtistCredit,
    CreditRole,
    FollowedArtist,
    LibraryAlbum,
    LibraryCollection,
    LibraryPlaylist,
    LibrarySnapshot,
    LibraryTrack,
    ScanResult,
)
from mutespot.domain.entities.plan import (
    AggressivenessLevel,
    BatchExecutionResult,
    BatchProgress,
    BlockReason,
    CollectionImpact,
    EnforcementImpact,
    EnforcementOptions,
    EnforcementPlan,
    PlannedAction,
    PlaylistImpactDetail,
    RateLimitStatus,
    RollbackInfo,
    RollbackItemOutcome,
)

__all__ = [
    "SETTLED_ITEM_STATUSES",
    "SONGWRITER_ROLES",
    "PERMANENT_ERRORS",
    "RECOVERABLE_ERRORS",
    "ActionBatch",
    "ActionBatchStatus",
    "ActionItem",
    "ActionItemStatus",
    "AggressivenessLevel",
    "ArtistCredit",
    "BatchError",
    "BatchExecutionResult",
    "BatchProgress",
    "BatchSummary",
    "BlockReason",
    "CollectionImpact",
    "CreditRole",
    "EnforcementErrorCode",
    "EnforcementImpact",
    "EnforcementOptions",
    "EnforcementPlan",
    "FollowedArtist",
    "LibraryAlbum",
    "LibraryCollection",
    "LibraryPlaylist",
    "LibrarySnapshot",
    "LibraryTrack",
    "PlannedAction",
    "PlaylistImpactDetail",
    "RateLimitStatus",
    "RollbackInfo",
    "RollbackItemOutcome",
    "ScanResult",
    "build_item_idempotency_key",
    "error_code_for_status",
    "get_error_description",
    "is_recoverable_error",
]
