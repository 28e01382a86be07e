"""Unit tests for SpotifyClient (HTTP mocked with httpx.MockTransport)."""

import json
from collections.abc import Callable

import httpx
import pytest

from mutespot.domain.entities import CreditRole, EnforcementErrorCode
from mutespot.domain.exceptions import ProviderCallError
from mutespot.domain.value_objects import ActionVerb
from mutespot.infrastructure.integrations.spotify_client import (
    SpotifyClient,
    featured_text,
    parse_album_credits,
    parse_track_credits,
)

TOKEN = "access-token"


class Recorder:
    """MockTransport handler that records requests and answers with a canned response."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.respond = respond or (lambda request: httpx.Response(200))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> dict:
        return json.loads(self.last.content)


def _client(recorder: Recorder) -> SpotifyClient:
    return SpotifyClient(transport=httpx.MockTransport(recorder))


def _track(track_id: str, name: str, *artists: tuple[str, str], album_artists=()) -> dict:
    return {
        "id": track_id,
        "name": name,
        "duration_ms": 1000,
        "artists": [{"id": a, "name": n} for a, n in artists],
        "album": {
            "id": f"alb-{track_id}",
            "artists": [{"id": a, "name": n} for a, n in album_artists],
        },
    }


class TestExecute:
    """Tests for the write endpoints behind execute()."""

    @pytest.mark.asyncio
    async def test_remove_liked_songs(self) -> None:
        recorder = Recorder()
        async with _client(recorder) as client:
            response = await client.execute(ActionVerb.REMOVE_LIKED_SONG, ["t1", "t2"], TOKEN)

        assert response.status_code == 200
        assert recorder.last.method == "DELETE"
        assert recorder.last.url.path == "/v1/me/tracks"
        assert recorder.last.headers["Authorization"] == f"Bearer {TOKEN}"
        assert recorder.last_json() == {"ids": ["t1", "t2"]}

    @pytest.mark.asyncio
    async def test_save_album(self) -> None:
        recorder = Recorder()
        async with _client(recorder) as client:
            await client.execute("add_saved_album", ["al1"], TOKEN)

        assert recorder.last.method == "PUT"
        assert recorder.last.url.path == "/v1/me/albums"
        assert recorder.last_json() == {"ids": ["al1"]}

    @pytest.mark.asyncio
    async def test_unfollow_uses_query_params(self) -> None:
        """Test that follow endpoints send ids as a comma separated query param."""
        recorder = Recorder(lambda request: httpx.Response(204))
        async with _client(recorder) as client:
            await client.execute(ActionVerb.UNFOLLOW_ARTIST, ["a1", "a2"], TOKEN)

        assert recorder.last.method == "DELETE"
        assert recorder.last.url.path == "/v1/me/following"
        assert recorder.last.url.params["type"] == "artist"
        assert recorder.last.url.params["ids"] == "a1,a2"

    @pytest.mark.asyncio
    async def test_remove_playlist_tracks_returns_snapshot(self) -> None:
        """Test that the new snapshot_id becomes the correlation token."""
        recorder = Recorder(lambda request: httpx.Response(200, json={"snapshot_id": "snap-2"}))
        async with _client(recorder) as client:
            response = await client.execute(
                ActionVerb.REMOVE_PLAYLIST_TRACK, ["t1"], TOKEN, {"playlist_id": "p1"}
            )

        assert recorder.last.url.path == "/v1/playlists/p1/tracks"
        assert recorder.last_json() == {"tracks": [{"uri": "spotify:track:t1"}]}
        assert response.correlation_token == "snap-2"

    @pytest.mark.asyncio
    async def test_add_playlist_tracks(self) -> None:
        recorder = Recorder(lambda request: httpx.Response(201, json={"snapshot_id": "snap-3"}))
        async with _client(recorder) as client:
            response = await client.execute(
                ActionVerb.ADD_PLAYLIST_TRACK, ["t1", "t2"], TOKEN, {"playlist_id": "p1"}
            )

        assert recorder.last.method == "POST"
        assert recorder.last_json() == {"uris": ["spotify:track:t1", "spotify:track:t2"]}
        assert response.correlation_token == "snap-3"

    @pytest.mark.asyncio
    async def test_playlist_verb_without_playlist_id(self) -> None:
        recorder = Recorder()
        async with _client(recorder) as client:
            with pytest.raises(ProviderCallError) as exc_info:
                await client.execute(ActionVerb.REMOVE_PLAYLIST_TRACK, ["t1"], TOKEN)

        assert exc_info.value.error_code == EnforcementErrorCode.VALIDATION_FAILED
        assert recorder.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, 51])
    async def test_chunk_size_is_validated(self, count: int) -> None:
        """Test that empty and oversized chunks never reach the network."""
        recorder = Recorder()
        async with _client(recorder) as client:
            with pytest.raises(ProviderCallError) as exc_info:
                await client.execute(
                    ActionVerb.REMOVE_LIKED_SONG, [f"t{i}" for i in range(count)], TOKEN
                )

        assert exc_info.value.error_code == EnforcementErrorCode.VALIDATION_FAILED
        assert not exc_info.value.recoverable
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_unknown_verb(self) -> None:
        async with _client(Recorder()) as client:
            with pytest.raises(ProviderCallError) as exc_info:
                await client.execute("block_artist", ["a1"], TOKEN)
        assert exc_info.value.error_code == EnforcementErrorCode.UNSUPPORTED_ACTION

    def test_bulk_limits(self) -> None:
        client = SpotifyClient()
        assert client.bulk_limit("remove_liked_song") == 50
        assert client.bulk_limit("remove_playlist_track") == 100
        assert client.bulk_limit("block_artist") is None


class TestErrorMapping:
    """Tests for translating HTTP failures into ProviderCallError."""

    @pytest.mark.asyncio
    async def test_rate_limited_carries_headers(self) -> None:
        recorder = Recorder(
            lambda request: httpx.Response(
                429,
                headers={
                    "Retry-After": "7",
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": "1700000000",
                },
                json={"error": {"status": 429, "message": "API rate limit exceeded"}},
            )
        )
        async with _client(recorder) as client:
            with pytest.raises(ProviderCallError) as exc_info:
                await client.execute(ActionVerb.REMOVE_LIKED_SONG, ["t1"], TOKEN)

        error = exc_info.value
        assert error.error_code == EnforcementErrorCode.RATE_LIMITED
        assert error.is_rate_limited
        assert error.status_code == 429
        assert error.retry_after == 7.0
        assert error.remaining == 0
        assert error.reset_at == 1_700_000_000.0
        assert "API rate limit exceeded" in str(error)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "code"),
        [
            (500, EnforcementErrorCode.SERVER_ERROR),
            (503, EnforcementErrorCode.SERVER_ERROR),
            (404, EnforcementErrorCode.NOT_FOUND),
            (401, EnforcementErrorCode.UNAUTHORIZED),
            (403, EnforcementErrorCode.FORBIDDEN),
            (400, EnforcementErrorCode.VALIDATION_FAILED),
        ],
    )
    async def test_status_codes(self, status: int, code: EnforcementErrorCode) -> None:
        recorder = Recorder(lambda request: httpx.Response(status, text="nope"))
        async with _client(recorder) as client:
            with pytest.raises(ProviderCallError) as exc_info:
                await client.execute(ActionVerb.ADD_LIKED_SONG, ["t1"], TOKEN)
        assert exc_info.value.error_code == code

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def raise_timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(Recorder(raise_timeout)) as client:
            with pytest.raises(ProviderCallError) as exc_info:
                await client.execute(ActionVerb.ADD_LIKED_SONG, ["t1"], TOKEN)
        assert exc_info.value.error_code == EnforcementErrorCode.TIMEOUT
        assert exc_info.value.recoverable

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(Recorder(refuse)) as client:
            with pytest.raises(ProviderCallError) as exc_info:
                await client.get_profile_id(TOKEN)
        assert exc_info.value.error_code == EnforcementErrorCode.CONNECTION_ERROR

    @pytest.mark.asyncio
    async def test_non_json_success_body(self) -> None:
        recorder = Recorder(lambda request: httpx.Response(200, text="<html>"))
        async with _client(recorder) as client:
            with pytest.raises(ProviderCallError) as exc_info:
                await client.get_profile_id(TOKEN)
        assert exc_info.value.error_code == EnforcementErrorCode.BAD_RESPONSE


class TestLibraryReads:
    """Tests for the paginated read endpoints."""

    @pytest.mark.asyncio
    async def test_profile_id(self) -> None:
        recorder = Recorder(lambda request: httpx.Response(200, json={"id": "spotify-user"}))
        async with _client(recorder) as client:
            response = await client.get_profile_id(TOKEN)
        assert response.payload == "spotify-user"
        assert recorder.last.url.path == "/v1/me"

    @pytest.mark.asyncio
    async def test_liked_tracks_page(self) -> None:
        """Test that local files are dropped and the next offset follows the raw count."""
        body = {
            "items": [
                {"track": _track("t1", "One", ("a1", "A"))},
                {"track": {"id": None, "name": "local file"}},
            ],
            "next": "https://api.spotify.com/v1/me/tracks?offset=12",
            "total": 40,
        }
        recorder = Recorder(lambda request: httpx.Response(200, json=body))
        async with _client(recorder) as client:
            response = await client.get_liked_tracks(TOKEN, offset=10, limit=500)

        page = response.payload
        assert [t.id for t in page.items] == ["t1"]
        assert page.next_offset == 12
        assert page.total == 40
        assert recorder.last.url.params["limit"] == "50"
        assert recorder.last.url.params["offset"] == "10"

    @pytest.mark.asyncio
    async def test_last_page_has_no_next_offset(self) -> None:
        body = {"items": [{"track": _track("t1", "One", ("a1", "A"))}], "next": None}
        async with _client(Recorder(lambda r: httpx.Response(200, json=body))) as client:
            response = await client.get_playlist_tracks(TOKEN, "p1")
        assert response.payload.next_offset is None
        assert not response.payload.has_more

    @pytest.mark.asyncio
    async def test_playlists(self) -> None:
        body = {
            "items": [
                {
                    "id": "p1",
                    "name": "Mine",
                    "owner": {"id": "me"},
                    "collaborative": False,
                    "snapshot_id": "s1",
                }
            ],
            "next": None,
        }
        async with _client(Recorder(lambda r: httpx.Response(200, json=body))) as client:
            response = await client.get_playlists(TOKEN)

        playlist = response.payload.items[0]
        assert (playlist.id, playlist.owner_id, playlist.snapshot_id) == ("p1", "me", "s1")

    @pytest.mark.asyncio
    async def test_followed_artists_cursor(self) -> None:
        """Test that follows are cursor paged via 'after'."""
        body = {
            "artists": {
                "items": [{"id": "a1", "name": "A1"}],
                "next": "https://api.spotify.com/v1/me/following?after=a1",
                "cursors": {"after": "a1"},
                "total": 2,
            }
        }
        recorder = Recorder(lambda r: httpx.Response(200, json=body))
        async with _client(recorder) as client:
            response = await client.get_followed_artists(TOKEN, after="a0")

        assert recorder.last.url.params["after"] == "a0"
        assert recorder.last.url.params["type"] == "artist"
        assert response.payload.next_cursor == "a1"
        assert response.payload.next_offset is None

    @pytest.mark.asyncio
    async def test_saved_albums(self) -> None:
        body = {
            "items": [
                {
                    "album": {
                        "id": "al1",
                        "name": "Album",
                        "total_tracks": 9,
                        "artists": [{"id": "a1", "name": "A1"}, {"id": "a2", "name": "A2"}],
                    }
                }
            ],
            "next": None,
        }
        async with _client(Recorder(lambda r: httpx.Response(200, json=body))) as client:
            response = await client.get_saved_albums(TOKEN)

        album = response.payload.items[0]
        assert album.total_tracks == 9
        assert [c.role for c in album.credits] == [CreditRole.PRIMARY, CreditRole.COLLABORATOR]


class TestCreditParsing:
    """Tests for role tagging of track and album credits."""

    def test_featured_text(self) -> None:
        assert featured_text("Song (feat. Guest & Other)") == "guest & other"
        assert featured_text("Song [with Pal]") == "pal"
        assert featured_text("Dance With Me") == ""

    def test_track_roles(self) -> None:
        track = _track(
            "t1",
            "Hit (feat. Guest)",
            ("a1", "Main"),
            ("a2", "Guest"),
            ("a3", "Producer"),
            album_artists=[("a1", "Main"), ("a4", "Label Artist")],
        )

        credits = {c.artist_id: (c.role, c.confidence) for c in parse_track_credits(track)}

        assert credits == {
            "a1": (CreditRole.PRIMARY, 1.0),
            "a2": (CreditRole.FEATURED, 0.9),
            "a3": (CreditRole.COLLABORATOR, 0.7),
            "a4": (CreditRole.COLLABORATOR, 0.6),
        }

    def test_album_without_artists(self) -> None:
        assert parse_album_credits({"id": "al1"}) == []
