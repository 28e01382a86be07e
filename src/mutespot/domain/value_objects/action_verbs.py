"""Action verbs - the single table of what the engine can do to a remote collection.

Hey future me - this is THE source of truth for verbs! Every verb knows:
- which entity type it acts on
- its inverse (what rollback issues) - only the forward "remove" verbs have one
- whether it is scoped to a playlist (needs playlist_id in its state)

Don't add per-verb if/elif chains anywhere else. If you need to know something about a
verb, add a field to VerbSpec and read it from VERB_SPECS.

The add_* verbs are compensations: they exist so rollback can undo a removal. They have
no inverse themselves because we never roll back a rollback.
"""

from dataclasses import dataclass
from enum import StrEnum


class EntityType(StrEnum):
    """Kind of remote entity an action item touches."""

    TRACK = "track"
    ARTIST = "artist"
    ALBUM = "album"
    PLAYLIST_TRACK = "playlist_track"


class ActionVerb(StrEnum):
    """Mutations the batch engine knows how to plan, execute and reverse."""

    REMOVE_LIKED_SONG = "remove_liked_song"
    ADD_LIKED_SONG = "add_liked_song"
    UNFOLLOW_ARTIST = "unfollow_artist"
    FOLLOW_ARTIST = "follow_artist"
    REMOVE_PLAYLIST_TRACK = "remove_playlist_track"
    ADD_PLAYLIST_TRACK = "add_playlist_track"
    REMOVE_SAVED_ALBUM = "remove_saved_album"
    ADD_SAVED_ALBUM = "add_saved_album"


@dataclass(frozen=True)
class VerbSpec:
    """Static facts about one verb."""

    verb: ActionVerb
    entity_type: EntityType
    inverse: ActionVerb | None = None
    playlist_scoped: bool = False
    is_compensation: bool = False


VERB_SPECS: dict[ActionVerb, VerbSpec] = {
    ActionVerb.REMOVE_LIKED_SONG: VerbSpec(
        ActionVerb.REMOVE_LIKED_SONG,
        EntityType.TRACK,
        inverse=ActionVerb.ADD_LIKED_SONG,
    ),
    ActionVerb.UNFOLLOW_ARTIST: VerbSpec(
        ActionVerb.UNFOLLOW_ARTIST,
        EntityType.ARTIST,
        inverse=ActionVerb.FOLLOW_ARTIST,
    ),
    ActionVerb.REMOVE_PLAYLIST_TRACK: VerbSpec(
        ActionVerb.REMOVE_PLAYLIST_TRACK,
        EntityType.PLAYLIST_TRACK,
        inverse=ActionVerb.ADD_PLAYLIST_TRACK,
        playlist_scoped=True,
    ),
    ActionVerb.REMOVE_SAVED_ALBUM: VerbSpec(
        ActionVerb.REMOVE_SAVED_ALBUM,
        EntityType.ALBUM,
        inverse=ActionVerb.ADD_SAVED_ALBUM,
    ),
    ActionVerb.ADD_LIKED_SONG: VerbSpec(
        ActionVerb.ADD_LIKED_SONG, EntityType.TRACK, is_compensation=True
    ),
    ActionVerb.FOLLOW_ARTIST: VerbSpec(
        ActionVerb.FOLLOW_ARTIST, EntityType.ARTIST, is_compensation=True
    ),
    ActionVerb.ADD_PLAYLIST_TRACK: VerbSpec(
        ActionVerb.ADD_PLAYLIST_TRACK,
        EntityType.PLAYLIST_TRACK,
        playlist_scoped=True,
        is_compensation=True,
    ),
    ActionVerb.ADD_SAVED_ALBUM: VerbSpec(
        ActionVerb.ADD_SAVED_ALBUM, EntityType.ALBUM, is_compensation=True
    ),
}


def parse_verb(action: str) -> ActionVerb | None:
    """Map a stored action string to a known verb, or None for foreign verbs."""
    try:
        return ActionVerb(action)
    except ValueError:
        return None


def spec_for(action: str) -> VerbSpec | None:
    """Get the VerbSpec for an action string (None if the verb is unknown)."""
    verb = parse_verb(action)
    return VERB_SPECS.get(verb) if verb is not None else None


def inverse_of(action: str) -> ActionVerb | None:
    """Get the compensating verb for an action, or None if it cannot be reversed."""
    spec = spec_for(action)
    return spec.inverse if spec is not None else None


def is_playlist_scoped(action: str) -> bool:
    """True if the verb needs a playlist_id to be executed."""
    spec = spec_for(action)
    return spec is not None and spec.playlist_scoped
