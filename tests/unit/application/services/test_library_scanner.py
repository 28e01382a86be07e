"""Unit tests for LibraryScanner."""

from typing import Any

import pytest

from mutespot.application.services.library_scanner import LibraryScanner
from mutespot.domain.entities import (
    EnforcementErrorCode,
    FollowedArtist,
    LibraryAlbum,
    LibraryCollection,
    LibraryPlaylist,
    LibraryTrack,
)
from mutespot.domain.exceptions import ProviderCallError
from mutespot.domain.ports import ILibraryReader, LibraryPage, ProviderResponse


def _ok(page: Any) -> ProviderResponse:
    return ProviderResponse(status_code=200, payload=page)


class FakeLibraryReader(ILibraryReader):
    """In-memory library served in pages of `page_size`."""

    def __init__(self, page_size: int = 2) -> None:
        self.page_size = page_size
        self.liked = [LibraryTrack(id=f"t{i}", name=f"T{i}") for i in range(5)]
        self.playlists = [LibraryPlaylist(id="p1", name="P1", owner_id="me")]
        self.playlist_tracks = {"p1": [LibraryTrack(id="pt1", name="PT1")]}
        self.follows = [FollowedArtist("a1", "A1"), FollowedArtist("a2", "A2")]
        self.albums = [LibraryAlbum("al1", "AL1")]
        self.failing: dict[str, EnforcementErrorCode] = {}
        self.requests: list[tuple[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "spotify"

    def _maybe_fail(self, name: str) -> None:
        code = self.failing.get(name)
        if code is not None:
            raise ProviderCallError(f"{name} broke", code)

    def _page(self, name: str, items: list[Any], offset: int) -> ProviderResponse:
        self.requests.append((name, offset))
        self._maybe_fail(name)
        chunk = items[offset : offset + self.page_size]
        next_offset = offset + self.page_size if offset + self.page_size < len(items) else None
        return _ok(LibraryPage(items=chunk, next_offset=next_offset, total=len(items)))

    async def get_profile_id(self, access_token: str) -> ProviderResponse:
        self._maybe_fail("profile")
        return _ok("me")

    async def get_liked_tracks(self, access_token, offset=0, limit=50) -> ProviderResponse:
        return self._page("liked", self.liked, offset)

    async def get_playlists(self, access_token, offset=0, limit=50) -> ProviderResponse:
        return self._page("playlists", self.playlists, offset)

    async def get_playlist_tracks(
        self, access_token, playlist_id, offset=0, limit=100
    ) -> ProviderResponse:
        return self._page(f"playlist:{playlist_id}", self.playlist_tracks[playlist_id], offset)

    async def get_followed_artists(self, access_token, after=None, limit=50) -> ProviderResponse:
        self.requests.append(("follows", after))
        self._maybe_fail("follows")
        if after is None:
            return _ok(LibraryPage(items=self.follows[:1], next_cursor="a1"))
        return _ok(LibraryPage(items=self.follows[1:]))

    async def get_saved_albums(self, access_token, offset=0, limit=50) -> ProviderResponse:
        return self._page("albums", self.albums, offset)


@pytest.fixture
def reader() -> FakeLibraryReader:
    return FakeLibraryReader()


@pytest.fixture
def scanner(reader, limiters, backoff_policy) -> LibraryScanner:
    return LibraryScanner(reader, limiters.get("spotify"), backoff_policy)


class TestLibraryScanner:
    """Tests for scan()."""

    @pytest.mark.asyncio
    async def test_full_scan_paginates_everything(self, scanner, reader) -> None:
        """Test that offset and cursor pages are followed to the end."""
        result = await scanner.scan("user-1", "token")

        snapshot = result.snapshot
        assert result.is_complete
        assert snapshot.provider_user_id == "me"
        assert [t.id for t in snapshot.liked_tracks] == ["t0", "t1", "t2", "t3", "t4"]
        assert [o for name, o in reader.requests if name == "liked"] == [0, 2, 4]
        assert [a.id for a in snapshot.followed_artists] == ["a1", "a2"]
        assert [o for name, o in reader.requests if name == "follows"] == [None, "a1"]
        assert [t.id for t in snapshot.playlists[0].tracks] == ["pt1"]
        assert [a.id for a in snapshot.saved_albums] == ["al1"]
        assert set(result.succeeded) == set(LibraryCollection)
        # profile + 3 liked + 1 playlists + 1 playlist tracks + 2 follows + 1 albums
        assert result.api_calls == 9

    @pytest.mark.asyncio
    async def test_one_failing_collection_does_not_fail_scan(self, scanner, reader) -> None:
        """Test that a permanent error on albums leaves the rest intact."""
        reader.failing["albums"] = EnforcementErrorCode.FORBIDDEN

        result = await scanner.scan("user-1", "token")

        assert not result.is_complete
        assert result.failed.keys() == {"saved_albums"}
        assert result.failed["saved_albums"].startswith("forbidden:")
        assert result.snapshot.saved_albums == []
        assert len(result.snapshot.liked_tracks) == 5
        assert LibraryCollection.SAVED_ALBUMS not in result.succeeded

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried_until_exhausted(self, scanner, reader) -> None:
        reader.failing["follows"] = EnforcementErrorCode.SERVER_ERROR

        result = await scanner.scan("user-1", "token")

        assert "followed_artists" in result.failed
        # max_attempts=3 in the conftest policy
        assert len([r for r in reader.requests if r[0] == "follows"]) == 3

    @pytest.mark.asyncio
    async def test_profile_failure_becomes_warning(self, scanner, reader) -> None:
        """Test that without a profile the scan goes on, unowned."""
        reader.failing["profile"] = EnforcementErrorCode.UNAUTHORIZED

        result = await scanner.scan("user-1", "token")

        assert result.snapshot.provider_user_id is None
        assert len(result.warnings) == 1
        assert "unauthorized" in result.warnings[0]
        assert result.is_complete

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, scanner, reader) -> None:
        """Test that bugs are not swallowed as collection failures."""
        reader.playlist_tracks = {}

        with pytest.raises(KeyError):
            await scanner.scan("user-1", "token")
