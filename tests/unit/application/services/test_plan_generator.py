"""Unit tests for EnforcementPlanner.

Hey future me - the planner is pure, so these tests build LibrarySnapshots by hand.
The central scenario: blocked artist X is FEATURED on a liked track and sits in one of
the user's own playlists plus one editorial playlist. With the defaults the liked song
goes, the editorial playlist loses the track, the user's own playlist is untouched.
"""

import pytest

from mutespot.application.services.plan_generator import (
    EnforcementPlanner,
    is_playlist_preserved,
    match_credits,
)
from mutespot.domain.entities import (
    AggressivenessLevel,
    ArtistCredit,
    BlockReason,
    CreditRole,
    EnforcementOptions,
    FollowedArtist,
    LibraryAlbum,
    LibraryPlaylist,
    LibrarySnapshot,
    LibraryTrack,
)
from mutespot.domain.exceptions import ValidationException
from mutespot.domain.value_objects import ActionVerb

BLOCKED = "artist-x"


def credit(artist_id: str, role: CreditRole = CreditRole.PRIMARY, confidence: float = 1.0):
    return ArtistCredit(artist_id, f"Name {artist_id}", role, confidence)


def track(track_id: str, *credits: ArtistCredit) -> LibraryTrack:
    return LibraryTrack(id=track_id, name=f"Track {track_id}", credits=list(credits))


@pytest.fixture
def featured_track() -> LibraryTrack:
    return track(
        "t-feat", credit("artist-a"), credit(BLOCKED, CreditRole.FEATURED, 0.9)
    )


@pytest.fixture
def snapshot(featured_track: LibraryTrack) -> LibrarySnapshot:
    clean = track("t-clean", credit("artist-a"))
    return LibrarySnapshot(
        user_id="user-1",
        provider="spotify",
        provider_user_id="me",
        liked_tracks=[featured_track, clean],
        playlists=[
            LibraryPlaylist(
                id="own", name="Mine", owner_id="me", tracks=[clean, featured_track]
            ),
            LibraryPlaylist(
                id="editorial",
                name="Top Hits",
                owner_id="spotify",
                snapshot_id="ed-v1",
                tracks=[clean, featured_track],
            ),
        ],
        followed_artists=[FollowedArtist(BLOCKED, "X"), FollowedArtist("artist-a", "A")],
        saved_albums=[
            LibraryAlbum("album-x", "By X", credits=[credit(BLOCKED)]),
            LibraryAlbum("album-a", "By A", credits=[credit("artist-a")]),
        ],
    )


class TestMatchCredits:
    """Tests for match_credits()."""

    def test_primary_is_exact_match(self) -> None:
        """Test that a primary credit always matches, even conservatively."""
        options = EnforcementOptions(aggressiveness=AggressivenessLevel.CONSERVATIVE)
        match = match_credits([credit(BLOCKED)], {BLOCKED}, options)
        assert match is not None
        assert match.reason == BlockReason.EXACT_MATCH

    def test_conservative_ignores_featuring(self) -> None:
        options = EnforcementOptions(aggressiveness=AggressivenessLevel.CONSERVATIVE)
        assert (
            match_credits([credit(BLOCKED, CreditRole.FEATURED, 0.9)], {BLOCKED}, options)
            is None
        )

    def test_moderate_needs_confidence(self) -> None:
        """Test that moderate drops non-primary credits below 0.7."""
        options = EnforcementOptions(aggressiveness=AggressivenessLevel.MODERATE)
        assert (
            match_credits([credit(BLOCKED, CreditRole.COLLABORATOR, 0.6)], {BLOCKED}, options)
            is None
        )
        match = match_credits(
            [credit(BLOCKED, CreditRole.COLLABORATOR, 0.7)], {BLOCKED}, options
        )
        assert match is not None
        assert match.reason == BlockReason.COLLABORATION

    def test_aggressive_ignores_confidence(self) -> None:
        options = EnforcementOptions(aggressiveness=AggressivenessLevel.AGGRESSIVE)
        match = match_credits([credit(BLOCKED, CreditRole.FEATURED, 0.1)], {BLOCKED}, options)
        assert match is not None
        assert match.reason == BlockReason.FEATURING

    def test_disabled_roles_do_not_match(self) -> None:
        """Test that block_featuring=False and songwriter default off are honored."""
        options = EnforcementOptions(
            aggressiveness=AggressivenessLevel.AGGRESSIVE, block_featuring=False
        )
        assert match_credits([credit(BLOCKED, CreditRole.FEATURED)], {BLOCKED}, options) is None
        assert match_credits([credit(BLOCKED, CreditRole.WRITER)], {BLOCKED}, options) is None

        options.block_songwriter_only = True
        match = match_credits([credit(BLOCKED, CreditRole.PRODUCER)], {BLOCKED}, options)
        assert match is not None
        assert match.reason == BlockReason.SONGWRITER_ONLY

    def test_highest_priority_reason_wins(self) -> None:
        """Test that exact_match beats featuring when two blocked artists match."""
        match = match_credits(
            [credit("other", CreditRole.FEATURED, 0.9), credit(BLOCKED)],
            {BLOCKED, "other"},
            EnforcementOptions(),
        )
        assert match is not None
        assert match.reason == BlockReason.EXACT_MATCH
        assert match.confidence == 1.0
        assert match.artist_ids == ["other", BLOCKED]


class TestPlaylistPreservation:
    """Tests for is_playlist_preserved()."""

    def test_unknown_profile_preserves_everything(self) -> None:
        """Test that without a profile id no playlist is touched."""
        snapshot = LibrarySnapshot(user_id="u", provider="spotify", provider_user_id=None)
        playlist = LibraryPlaylist(id="p", name="P", owner_id="someone")
        assert is_playlist_preserved(playlist, snapshot, EnforcementOptions())

    def test_preserve_off_touches_own_playlists(self) -> None:
        snapshot = LibrarySnapshot(user_id="u", provider="spotify", provider_user_id="me")
        playlist = LibraryPlaylist(id="p", name="P", owner_id="me")
        options = EnforcementOptions(preserve_user_playlists=False)
        assert not is_playlist_preserved(playlist, snapshot, options)


class TestEnforcementPlanner:
    """Tests for EnforcementPlanner.create_plan()."""

    @pytest.fixture
    def planner(self) -> EnforcementPlanner:
        return EnforcementPlanner()

    def test_featured_artist_scenario(
        self, planner: EnforcementPlanner, snapshot: LibrarySnapshot
    ) -> None:
        """Test the featured-on-a-liked-track scenario with default options."""
        plan = planner.create_plan(
            "user-1", "spotify", [BLOCKED], EnforcementOptions(), snapshot
        )

        liked = plan.actions_for(ActionVerb.REMOVE_LIKED_SONG)
        assert [a.entity_id for a in liked] == ["t-feat"]
        assert liked[0].reason == BlockReason.FEATURING
        assert liked[0].confidence == 0.9

        playlist_actions = plan.actions_for(ActionVerb.REMOVE_PLAYLIST_TRACK)
        assert [(a.playlist_id, a.entity_id) for a in playlist_actions] == [
            ("editorial", "t-feat")
        ]
        assert playlist_actions[0].context["snapshot_id"] == "ed-v1"
        assert playlist_actions[0].context["position"] == 1

        assert [a.entity_id for a in plan.actions_for(ActionVerb.UNFOLLOW_ARTIST)] == [BLOCKED]
        assert [a.entity_id for a in plan.actions_for(ActionVerb.REMOVE_SAVED_ALBUM)] == [
            "album-x"
        ]

    def test_actions_are_ordered_by_collection(
        self, planner: EnforcementPlanner, snapshot: LibrarySnapshot
    ) -> None:
        """Test liked songs → playlist tracks → follows → albums ordering."""
        plan = planner.create_plan(
            "user-1", "spotify", [BLOCKED], EnforcementOptions(), snapshot
        )
        assert [a.verb for a in plan.actions] == [
            ActionVerb.REMOVE_LIKED_SONG,
            ActionVerb.REMOVE_PLAYLIST_TRACK,
            ActionVerb.UNFOLLOW_ARTIST,
            ActionVerb.REMOVE_SAVED_ALBUM,
        ]

    def test_impact(self, planner: EnforcementPlanner, snapshot: LibrarySnapshot) -> None:
        """Test the impact counters including preserved playlists."""
        plan = planner.create_plan(
            "user-1", "spotify", [BLOCKED], EnforcementOptions(), snapshot
        )
        impact = plan.impact

        assert (impact.liked_songs.total, impact.liked_songs.to_remove) == (2, 1)
        assert (impact.playlist_tracks.total, impact.playlist_tracks.to_remove) == (4, 1)
        assert (impact.followed_artists.total, impact.followed_artists.to_remove) == (2, 1)
        assert (impact.saved_albums.total, impact.saved_albums.to_remove) == (2, 1)
        assert impact.playlists_modified == 1
        assert impact.playlists_preserved == 1
        own = next(p for p in impact.playlists if p.playlist_id == "own")
        assert own.preserved and own.is_user_owned and own.tracks_to_remove == 0
        assert impact.total_items_affected == 4
        assert impact.actions_by_verb["remove_playlist_track"] == 1
        assert impact.actions_by_reason == {"featuring": 2, "exact_match": 2}
        # 2 removed tracks x 3.5 minutes
        assert impact.estimated_time_saved_hours == round(7 / 60, 2)
        # One chunk per verb: 500 + 750 + 300 + 400 ms
        assert plan.estimated_duration_seconds == pytest.approx(1.95)

    def test_preserve_off_removes_from_own_playlist(
        self, planner: EnforcementPlanner, snapshot: LibrarySnapshot
    ) -> None:
        options = EnforcementOptions(preserve_user_playlists=False)
        plan = planner.create_plan("user-1", "spotify", [BLOCKED], options, snapshot)
        playlists = {a.playlist_id for a in plan.actions_for(ActionVerb.REMOVE_PLAYLIST_TRACK)}
        assert playlists == {"own", "editorial"}

    def test_conservative_keeps_featured_track(
        self, planner: EnforcementPlanner, snapshot: LibrarySnapshot
    ) -> None:
        """Test that conservative only acts on primary credits and follows."""
        options = EnforcementOptions(aggressiveness=AggressivenessLevel.CONSERVATIVE)
        plan = planner.create_plan("user-1", "spotify", [BLOCKED], options, snapshot)
        assert plan.actions_for(ActionVerb.REMOVE_LIKED_SONG) == []
        assert plan.actions_for(ActionVerb.REMOVE_PLAYLIST_TRACK) == []
        assert len(plan.actions_for(ActionVerb.UNFOLLOW_ARTIST)) == 1
        assert len(plan.actions_for(ActionVerb.REMOVE_SAVED_ALBUM)) == 1

    def test_duplicate_liked_tracks_are_planned_once(self, planner: EnforcementPlanner) -> None:
        blocked_track = track("t1", credit(BLOCKED))
        snapshot = LibrarySnapshot(
            user_id="u", provider="spotify", liked_tracks=[blocked_track, blocked_track]
        )
        plan = planner.create_plan("u", "spotify", [BLOCKED], EnforcementOptions(), snapshot)
        assert len(plan.actions) == 1

    def test_empty_block_list_rejected(
        self, planner: EnforcementPlanner, snapshot: LibrarySnapshot
    ) -> None:
        with pytest.raises(ValidationException):
            planner.create_plan("u", "spotify", [""], EnforcementOptions(), snapshot)

    def test_nothing_to_do(self, planner: EnforcementPlanner) -> None:
        """Test that an empty library gives an empty plan, not an error."""
        snapshot = LibrarySnapshot(user_id="u", provider="spotify")
        plan = planner.create_plan("u", "spotify", [BLOCKED], EnforcementOptions(), snapshot)
        assert plan.actions == []
        assert plan.estimated_duration_seconds == 0
