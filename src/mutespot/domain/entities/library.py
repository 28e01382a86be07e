"""Library snapshot entities - what the scanner saw in a user's streaming account.

Hey future me - these are provider-neutral! The Spotify client maps its JSON into these,
and the plan generator only ever looks at these. A track doesn't have "artists", it has
CREDITS: who is on it and in which role. That's what lets the planner decide whether a
blocked artist being "featured" on a track is enough to remove it.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class CreditRole(StrEnum):
    """Role an artist holds on a track or album."""

    PRIMARY = "primary"
    FEATURED = "featured"
    COLLABORATOR = "collaborator"
    COMPOSER = "composer"
    PRODUCER = "producer"
    WRITER = "writer"


SONGWRITER_ROLES: frozenset[CreditRole] = frozenset(
    {CreditRole.COMPOSER, CreditRole.PRODUCER, CreditRole.WRITER}
)


class LibraryCollection(StrEnum):
    """The four collections the scanner reads."""

    LIKED_TRACKS = "liked_tracks"
    PLAYLISTS = "playlists"
    FOLLOWED_ARTISTS = "followed_artists"
    SAVED_ALBUMS = "saved_albums"


@dataclass(frozen=True)
class ArtistCredit:
    """One artist credit with the confidence of the detection that produced it."""

    artist_id: str
    name: str
    role: CreditRole = CreditRole.PRIMARY
    confidence: float = 1.0


@dataclass
class LibraryTrack:
    """A track as found in liked songs or a playlist."""

    id: str
    name: str
    credits: list[ArtistCredit] = field(default_factory=list)
    album_id: str | None = None
    duration_ms: int = 0

    @property
    def artist_names(self) -> list[str]:
        return [credit.name for credit in self.credits]


@dataclass
class LibraryAlbum:
    """A saved album."""

    id: str
    name: str
    credits: list[ArtistCredit] = field(default_factory=list)
    total_tracks: int = 0


@dataclass
class LibraryPlaylist:
    """A playlist with its full track listing (in playlist order)."""

    id: str
    name: str
    owner_id: str | None = None
    collaborative: bool = False
    snapshot_id: str | None = None
    tracks: list[LibraryTrack] = field(default_factory=list)

    @property
    def total_tracks(self) -> int:
        return len(self.tracks)


@dataclass(frozen=True)
class FollowedArtist:
    """An artist the user follows."""

    id: str
    name: str


@dataclass
class LibrarySnapshot:
    """Best-effort picture of one user's library on one provider.

    provider_user_id is the user's id AT THE PROVIDER (not ours). It's what playlist
    owner ids are compared against for preserve_user_playlists. None means the profile
    call failed and we can't tell which playlists are the user's own.
    """

    user_id: str
    provider: str
    provider_user_id: str | None = None
    liked_tracks: list[LibraryTrack] = field(default_factory=list)
    playlists: list[LibraryPlaylist] = field(default_factory=list)
    followed_artists: list[FollowedArtist] = field(default_factory=list)
    saved_albums: list[LibraryAlbum] = field(default_factory=list)
    scanned_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ScanResult:
    """Outcome of a library scan, including which collections made it."""

    snapshot: LibrarySnapshot
    succeeded: list[LibraryCollection] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    api_calls: int = 0
    rate_limit_retries: int = 0

    @property
    def is_complete(self) -> bool:
        return not self.failed
