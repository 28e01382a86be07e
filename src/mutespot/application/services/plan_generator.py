"""Enforcement plan generator - turns a library snapshot into an ordered action list.

Hey future me - this is PURE. No I/O, no clock reads besides created_at, no provider
calls. Give it a snapshot and a block list, get a plan. That's what makes the
"featured artist on a liked track" scenarios testable without any HTTP mocking.

MATCHING (per credit of a blocked artist):
- PRIMARY       → exact_match      (always)
- FEATURED      → featuring        (only if block_featuring)
- COLLABORATOR  → collaboration    (only if block_collaborations)
- COMPOSER / PRODUCER / WRITER → songwriter_only (only if block_songwriter_only)

AGGRESSIVENESS then filters the matches:
- conservative → only exact_match survives
- moderate     → non-primary matches need confidence >= 0.7
- aggressive   → everything that matched survives

If several credits of one item match, the reason that comes first in BlockReason wins
(exact_match > featuring > collaboration > songwriter_only).

ORDER of the resulting actions: liked songs, playlist tracks (playlist by playlist, in
playlist order), follows, saved albums.
"""

import logging
import math
from collections import Counter
from collections.abc import Iterable

from mutespot.config.settings import EnforcementSettings
from mutespot.domain.entities import (
    SONGWRITER_ROLES,
    AggressivenessLevel,
    ArtistCredit,
    BlockReason,
    CollectionImpact,
    CreditRole,
    EnforcementImpact,
    EnforcementOptions,
    EnforcementPlan,
    LibraryPlaylist,
    LibrarySnapshot,
    PlannedAction,
    PlaylistImpactDetail,
)
from mutespot.domain.exceptions import ValidationException
from mutespot.domain.value_objects import ActionVerb, EntityType

logger = logging.getLogger(__name__)

MODERATE_MIN_CONFIDENCE = 0.7
AVERAGE_TRACK_MINUTES = 3.5

# Estimated wall time of one provider call per verb (one call per chunk)
ESTIMATED_CALL_MS: dict[ActionVerb, int] = {
    ActionVerb.REMOVE_LIKED_SONG: 500,
    ActionVerb.REMOVE_PLAYLIST_TRACK: 750,
    ActionVerb.UNFOLLOW_ARTIST: 300,
    ActionVerb.REMOVE_SAVED_ALBUM: 400,
}

_REASON_PRIORITY = list(BlockReason)


class CreditMatch:
    """Outcome of matching one item's credits against the block list."""

    __slots__ = ("reason", "confidence", "artist_ids")

    def __init__(self, reason: BlockReason, confidence: float, artist_ids: list[str]) -> None:
        self.reason = reason
        self.confidence = confidence
        self.artist_ids = artist_ids


def _reason_for(credit: ArtistCredit, options: EnforcementOptions) -> BlockReason | None:
    if credit.role == CreditRole.PRIMARY:
        return BlockReason.EXACT_MATCH
    if credit.role == CreditRole.FEATURED and options.block_featuring:
        return BlockReason.FEATURING
    if credit.role == CreditRole.COLLABORATOR and options.block_collaborations:
        return BlockReason.COLLABORATION
    if credit.role in SONGWRITER_ROLES and options.block_songwriter_only:
        return BlockReason.SONGWRITER_ONLY
    return None


def _passes_aggressiveness(
    reason: BlockReason, confidence: float, level: AggressivenessLevel
) -> bool:
    if reason == BlockReason.EXACT_MATCH:
        return True
    if level == AggressivenessLevel.CONSERVATIVE:
        return False
    if level == AggressivenessLevel.MODERATE:
        return confidence >= MODERATE_MIN_CONFIDENCE
    return True


def match_credits(
    credits: Iterable[ArtistCredit],
    blocked_artist_ids: set[str],
    options: EnforcementOptions,
) -> CreditMatch | None:
    """Decide whether an item's credits make it blocked, and why.

    Returns:
        The winning reason with its best confidence and every qualifying blocked
        artist id, or None when nothing qualifies.
    """
    qualifying: list[tuple[BlockReason, ArtistCredit]] = []
    for credit in credits:
        if credit.artist_id not in blocked_artist_ids:
            continue
        reason = _reason_for(credit, options)
        if reason is None:
            continue
        if not _passes_aggressiveness(reason, credit.confidence, options.aggressiveness):
            continue
        qualifying.append((reason, credit))

    if not qualifying:
        return None

    best_reason = min((r for r, _ in qualifying), key=_REASON_PRIORITY.index)
    confidence = max(c.confidence for r, c in qualifying if r == best_reason)
    artist_ids: list[str] = []
    for _, credit in qualifying:
        if credit.artist_id not in artist_ids:
            artist_ids.append(credit.artist_id)
    return CreditMatch(best_reason, confidence, artist_ids)


def is_playlist_preserved(
    playlist: LibraryPlaylist, snapshot: LibrarySnapshot, options: EnforcementOptions
) -> bool:
    """User-owned playlists are left alone when preserve_user_playlists is on.

    Hey future me - if the profile call failed we DON'T know which playlists are the
    user's, so with preserve on we keep all of them. Removing tracks from a playlist
    the user curated by hand is the one thing we must never get wrong.
    """
    if not options.preserve_user_playlists:
        return False
    if snapshot.provider_user_id is None:
        return True
    return playlist.owner_id == snapshot.provider_user_id


class EnforcementPlanner:
    """Builds EnforcementPlans from library snapshots."""

    def __init__(self, settings: EnforcementSettings | None = None) -> None:
        self.settings = settings or EnforcementSettings()

    def chunk_size(self, verb: ActionVerb) -> int:
        return {
            ActionVerb.REMOVE_LIKED_SONG: self.settings.liked_songs_chunk,
            ActionVerb.REMOVE_SAVED_ALBUM: self.settings.albums_chunk,
            ActionVerb.UNFOLLOW_ARTIST: self.settings.follows_chunk,
            ActionVerb.REMOVE_PLAYLIST_TRACK: self.settings.playlist_tracks_chunk,
        }.get(verb, 1)

    def create_plan(
        self,
        user_id: str,
        provider: str,
        blocked_artist_ids: list[str],
        options: EnforcementOptions,
        snapshot: LibrarySnapshot,
    ) -> EnforcementPlan:
        """Create an enforcement plan.

        Raises:
            ValidationException: Empty block list
        """
        blocked = {artist_id for artist_id in blocked_artist_ids if artist_id}
        if not blocked:
            raise ValidationException("At least one blocked artist id is required")

        impact = EnforcementImpact()
        actions: list[PlannedAction] = []
        seen: set[tuple[str, str, str | None]] = set()

        def add(action: PlannedAction) -> bool:
            key = action.dedup_key()
            if key in seen:
                return False
            seen.add(key)
            actions.append(action)
            return True

        # 1. Liked songs
        impact.liked_songs = CollectionImpact(total=len(snapshot.liked_tracks))
        for track in snapshot.liked_tracks:
            match = match_credits(track.credits, blocked, options)
            if match is None:
                continue
            if add(
                PlannedAction(
                    verb=ActionVerb.REMOVE_LIKED_SONG,
                    entity_type=EntityType.TRACK,
                    entity_id=track.id,
                    entity_name=track.name,
                    reason=match.reason,
                    confidence=match.confidence,
                    blocked_artist_ids=match.artist_ids,
                )
            ):
                impact.liked_songs.to_remove += 1

        # 2. Playlist tracks
        impact.playlist_tracks = CollectionImpact(
            total=sum(p.total_tracks for p in snapshot.playlists)
        )
        playlist_chunks = 0
        for playlist in snapshot.playlists:
            preserved = is_playlist_preserved(playlist, snapshot, options)
            matching = 0
            added = 0
            for position, track in enumerate(playlist.tracks):
                match = match_credits(track.credits, blocked, options)
                if match is None:
                    continue
                matching += 1
                if preserved:
                    continue
                if add(
                    PlannedAction(
                        verb=ActionVerb.REMOVE_PLAYLIST_TRACK,
                        entity_type=EntityType.PLAYLIST_TRACK,
                        entity_id=track.id,
                        entity_name=track.name,
                        reason=match.reason,
                        confidence=match.confidence,
                        blocked_artist_ids=match.artist_ids,
                        context={
                            "playlist_id": playlist.id,
                            "playlist_name": playlist.name,
                            "snapshot_id": playlist.snapshot_id,
                            "position": position,
                        },
                    )
                ):
                    added += 1
            if matching:
                impact.playlists.append(
                    PlaylistImpactDetail(
                        playlist_id=playlist.id,
                        playlist_name=playlist.name,
                        is_user_owned=snapshot.provider_user_id is not None
                        and playlist.owner_id == snapshot.provider_user_id,
                        is_collaborative=playlist.collaborative,
                        total_tracks=playlist.total_tracks,
                        tracks_to_remove=added,
                        preserved=preserved,
                    )
                )
            impact.playlist_tracks.to_remove += added
            playlist_chunks += math.ceil(
                added / self.chunk_size(ActionVerb.REMOVE_PLAYLIST_TRACK)
            )

        # 3. Followed artists - following IS the credit, no role rules apply
        impact.followed_artists = CollectionImpact(total=len(snapshot.followed_artists))
        for artist in snapshot.followed_artists:
            if artist.id not in blocked:
                continue
            if add(
                PlannedAction(
                    verb=ActionVerb.UNFOLLOW_ARTIST,
                    entity_type=EntityType.ARTIST,
                    entity_id=artist.id,
                    entity_name=artist.name,
                    reason=BlockReason.EXACT_MATCH,
                    blocked_artist_ids=[artist.id],
                )
            ):
                impact.followed_artists.to_remove += 1

        # 4. Saved albums
        impact.saved_albums = CollectionImpact(total=len(snapshot.saved_albums))
        for album in snapshot.saved_albums:
            match = match_credits(album.credits, blocked, options)
            if match is None:
                continue
            if add(
                PlannedAction(
                    verb=ActionVerb.REMOVE_SAVED_ALBUM,
                    entity_type=EntityType.ALBUM,
                    entity_id=album.id,
                    entity_name=album.name,
                    reason=match.reason,
                    confidence=match.confidence,
                    blocked_artist_ids=match.artist_ids,
                )
            ):
                impact.saved_albums.to_remove += 1

        impact.actions_by_verb = dict(Counter(str(a.verb) for a in actions))
        impact.actions_by_reason = dict(Counter(str(a.reason) for a in actions))
        impact.total_items_affected = len(actions)
        removed_tracks = impact.liked_songs.to_remove + impact.playlist_tracks.to_remove
        impact.estimated_time_saved_hours = round(
            removed_tracks * AVERAGE_TRACK_MINUTES / 60, 2
        )

        chunks = {
            ActionVerb.REMOVE_LIKED_SONG: math.ceil(
                impact.liked_songs.to_remove / self.chunk_size(ActionVerb.REMOVE_LIKED_SONG)
            ),
            ActionVerb.REMOVE_PLAYLIST_TRACK: playlist_chunks,
            ActionVerb.UNFOLLOW_ARTIST: math.ceil(
                impact.followed_artists.to_remove
                / self.chunk_size(ActionVerb.UNFOLLOW_ARTIST)
            ),
            ActionVerb.REMOVE_SAVED_ALBUM: math.ceil(
                impact.saved_albums.to_remove / self.chunk_size(ActionVerb.REMOVE_SAVED_ALBUM)
            ),
        }
        estimated_ms = sum(ESTIMATED_CALL_MS[verb] * count for verb, count in chunks.items())

        plan = EnforcementPlan(
            user_id=user_id,
            provider=provider,
            blocked_artist_ids=list(blocked_artist_ids),
            options=options,
            actions=actions,
            impact=impact,
            estimated_duration_seconds=estimated_ms / 1000,
        )
        logger.info(
            f"Created enforcement plan {plan.id} for user {user_id} on {provider}: "
            f"{len(actions)} actions ({impact.actions_by_verb}), "
            f"~{plan.estimated_duration_seconds:.1f}s"
        )
        return plan
