"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from mutespot.domain.entities import (
    ActionBatch,
    ActionItem,
    ActionItemStatus,
    FollowedArtist,
    LibraryAlbum,
    LibraryPlaylist,
    LibraryTrack,
)

T = TypeVar("T")


@dataclass
class ProviderResponse:
    """Successful provider call, normalized.

    Hey future me - remaining/reset_at come from rate-limit headers when the provider
    sends them (Spotify mostly doesn't, it only sends Retry-After on 429). reset_at is a
    unix timestamp. correlation_token is whatever identifies the resulting state at the
    provider - for Spotify playlist calls that's the new snapshot_id.
    payload holds the parsed body for reads (a LibraryPage, a profile id...).
    """

    status_code: int
    correlation_token: str | None = None
    retry_after: float | None = None
    remaining: int | None = None
    reset_at: float | None = None
    payload: Any = None


@dataclass
class LibraryPage(Generic[T]):
    """One page of a paginated collection.

    Offset-paged collections set next_offset, cursor-paged ones (followed artists)
    set next_cursor. Both None means this was the last page.
    """

    items: list[T] = field(default_factory=list)
    next_offset: int | None = None
    next_cursor: str | None = None
    total: int | None = None

    @property
    def has_more(self) -> bool:
        return self.next_offset is not None or self.next_cursor is not None


# Hey future me, IActionBatchRepository is a PORT! Services depend on this ABC, the
# SQLAlchemy implementation lives in infrastructure.persistence.repositories. add()
# must raise DuplicateEntityException when the idempotency key is taken - the executor
# relies on that to resolve two concurrent submissions of the same plan.
class IActionBatchRepository(ABC):
    """Repository interface for ActionBatch entities."""

    @abstractmethod
    async def add(self, batch: ActionBatch) -> None:
        """Insert a batch. Raises DuplicateEntityException on idempotency key clash."""
        pass

    @abstractmethod
    async def get_by_id(self, batch_id: str) -> ActionBatch | None:
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, idempotency_key: str) -> ActionBatch | None:
        pass

    @abstractmethod
    async def update(self, batch: ActionBatch) -> None:
        """Persist status, summary and completed_at."""
        pass

    @abstractmethod
    async def list_unfinished(self, limit: int = 10) -> list[ActionBatch]:
        """Pending or in-progress batches, oldest first (for the worker)."""
        pass


class IActionItemRepository(ABC):
    """Repository interface for ActionItem entities."""

    @abstractmethod
    async def add_many(self, items: list[ActionItem]) -> None:
        pass

    @abstractmethod
    async def get_by_id(self, item_id: str) -> ActionItem | None:
        pass

    @abstractmethod
    async def list_by_batch(self, batch_id: str) -> list[ActionItem]:
        """All items of a batch in creation order."""
        pass

    @abstractmethod
    async def update_many(self, items: list[ActionItem]) -> None:
        """Persist status, states, error fields and retry count of the given items."""
        pass

    @abstractmethod
    async def count_by_status(self, batch_id: str) -> dict[ActionItemStatus, int]:
        pass


# Hey future me - the repositories above share the caller's session (one transaction).
# The executor needs the opposite: EVERY item transition committed on its own before the
# next provider call, so a crash mid-batch leaves an exact record. IEnforcementStore is
# that seam - each method is its own committed transaction.
class IEnforcementStore(ABC):
    """Durable, per-operation-committed storage for batches and items."""

    @abstractmethod
    async def create_batch(self, batch: ActionBatch, items: list[ActionItem]) -> None:
        """Insert a batch and all of its items atomically.

        Raises:
            DuplicateEntityException: The batch idempotency key is already taken.
        """
        pass

    @abstractmethod
    async def get_batch(self, batch_id: str) -> ActionBatch | None:
        pass

    @abstractmethod
    async def get_batch_by_idempotency_key(self, idempotency_key: str) -> ActionBatch | None:
        pass

    @abstractmethod
    async def save_batch(self, batch: ActionBatch) -> None:
        pass

    @abstractmethod
    async def list_items(self, batch_id: str) -> list[ActionItem]:
        pass

    @abstractmethod
    async def save_items(self, items: list[ActionItem]) -> None:
        pass

    @abstractmethod
    async def count_items_by_status(self, batch_id: str) -> dict[ActionItemStatus, int]:
        pass

    @abstractmethod
    async def list_unfinished_batches(self, limit: int = 10) -> list[ActionBatch]:
        pass


# Yo, this is the seam to the streaming service for WRITES. One call = one chunk.
# execute() returns a ProviderResponse on 2xx and raises ProviderCallError for
# everything else (including timeouts and connection errors). It must NOT retry or
# sleep itself - that's call_with_backoff's job, otherwise retries multiply.
class IProviderActionClient(ABC):
    """Executes action verbs against one provider."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    def bulk_limit(self, verb: str) -> int | None:
        """Max ids per call for a verb, None when the verb has no bulk primitive."""
        pass

    @abstractmethod
    async def execute(
        self,
        verb: str,
        entity_ids: list[str],
        access_token: str,
        context: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        pass


class ILibraryReader(ABC):
    """Paginated reads of a user's library on one provider.

    Same error contract as IProviderActionClient: ProviderResponse with a LibraryPage
    (or the profile id) in payload, or ProviderCallError.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def get_profile_id(self, access_token: str) -> ProviderResponse:
        """payload: the user's id at the provider."""
        pass

    @abstractmethod
    async def get_liked_tracks(
        self, access_token: str, offset: int = 0, limit: int = 50
    ) -> ProviderResponse:
        """payload: LibraryPage[LibraryTrack]."""
        pass

    @abstractmethod
    async def get_playlists(
        self, access_token: str, offset: int = 0, limit: int = 50
    ) -> ProviderResponse:
        """payload: LibraryPage[LibraryPlaylist] (tracks not filled in)."""
        pass

    @abstractmethod
    async def get_playlist_tracks(
        self, access_token: str, playlist_id: str, offset: int = 0, limit: int = 100
    ) -> ProviderResponse:
        """payload: LibraryPage[LibraryTrack]."""
        pass

    @abstractmethod
    async def get_followed_artists(
        self, access_token: str, after: str | None = None, limit: int = 50
    ) -> ProviderResponse:
        """payload: LibraryPage[FollowedArtist] (cursor paged)."""
        pass

    @abstractmethod
    async def get_saved_albums(
        self, access_token: str, offset: int = 0, limit: int = 50
    ) -> ProviderResponse:
        """payload: LibraryPage[LibraryAlbum]."""
        pass


class ITokenProvider(ABC):
    """Hands out decrypted access tokens. Storage and refresh live elsewhere.

    Implementations raise ProviderCallError when the token cannot be produced, which
    the API answers with 502 (429 plus Retry-After when the vault is throttling).
    """

    @abstractmethod
    async def get_decrypted_access_token(self, connection_id: str) -> str:
        pass


__all__ = [
    "FollowedArtist",
    "IActionBatchRepository",
    "IActionItemRepository",
    "IEnforcementStore",
    "ILibraryReader",
    "IProviderActionClient",
    "ITokenProvider",
    "LibraryAlbum",
    "LibraryPage",
    "LibraryPlaylist",
    "LibraryTrack",
    "ProviderResponse",
]
