"""Library scanner - builds a LibrarySnapshot from the provider's paginated reads.

Hey future me - the scan is BEST EFFORT. The four collections are fetched concurrently
and each one fails on its own: if /me/albums keeps returning 500 the plan still covers
liked songs, playlists and follows, and ScanResult.failed says what's missing. The
only thing that's fetched first is the profile id, because playlist ownership (and
therefore preserve_user_playlists) depends on it.

Every page goes through call_with_backoff, so reads share the same limiter as the
executor's writes. One CallStats is shared by all collections for the totals.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mutespot.config.settings import SpotifySettings
from mutespot.domain.entities import (
    FollowedArtist,
    LibraryAlbum,
    LibraryCollection,
    LibraryPlaylist,
    LibrarySnapshot,
    LibraryTrack,
    ScanResult,
)
from mutespot.domain.exceptions import ProviderCallError
from mutespot.domain.ports import ILibraryReader, LibraryPage, ProviderResponse
from mutespot.infrastructure.backoff import BackoffPolicy, CallStats, call_with_backoff
from mutespot.infrastructure.rate_limiter import ProviderRateLimiter

logger = logging.getLogger(__name__)

# Upper bound on pages per collection, guards against a provider that never stops paging
MAX_PAGES = 1000


class LibraryScanner:
    """Reads a user's library through an ILibraryReader."""

    def __init__(
        self,
        reader: ILibraryReader,
        limiter: ProviderRateLimiter,
        backoff_policy: BackoffPolicy | None = None,
        settings: SpotifySettings | None = None,
    ) -> None:
        self._reader = reader
        self._limiter = limiter
        self._policy = backoff_policy or BackoffPolicy()
        self._settings = settings or SpotifySettings()

    async def _call(
        self, call: Callable[[], Awaitable[ProviderResponse]], stats: CallStats
    ) -> ProviderResponse:
        response, _ = await call_with_backoff(self._limiter, call, self._policy, stats=stats)
        return response

    async def _paginate_offset(
        self,
        fetch: Callable[[int], Awaitable[ProviderResponse]],
        stats: CallStats,
    ) -> list[Any]:
        items: list[Any] = []
        offset = 0
        for _ in range(MAX_PAGES):
            response = await self._call(lambda: fetch(offset), stats)
            page: LibraryPage[Any] = response.payload
            items.extend(page.items)
            if page.next_offset is None:
                break
            offset = page.next_offset
        return items

    async def _liked_tracks(self, access_token: str, stats: CallStats) -> list[LibraryTrack]:
        limit = self._settings.page_size
        return await self._paginate_offset(
            lambda offset: self._reader.get_liked_tracks(access_token, offset, limit), stats
        )

    async def _saved_albums(self, access_token: str, stats: CallStats) -> list[LibraryAlbum]:
        limit = self._settings.page_size
        return await self._paginate_offset(
            lambda offset: self._reader.get_saved_albums(access_token, offset, limit), stats
        )

    async def _followed_artists(
        self, access_token: str, stats: CallStats
    ) -> list[FollowedArtist]:
        limit = self._settings.page_size
        artists: list[FollowedArtist] = []
        after: str | None = None
        for _ in range(MAX_PAGES):
            response = await self._call(
                lambda: self._reader.get_followed_artists(access_token, after, limit), stats
            )
            page: LibraryPage[FollowedArtist] = response.payload
            artists.extend(page.items)
            if page.next_cursor is None:
                break
            after = page.next_cursor
        return artists

    async def _playlists(self, access_token: str, stats: CallStats) -> list[LibraryPlaylist]:
        limit = self._settings.page_size
        track_limit = self._settings.playlist_page_size
        playlists: list[LibraryPlaylist] = await self._paginate_offset(
            lambda offset: self._reader.get_playlists(access_token, offset, limit), stats
        )
        # Playlists one after the other - they share the limiter anyway
        for playlist in playlists:
            playlist.tracks = await self._paginate_offset(
                lambda offset, playlist_id=playlist.id: self._reader.get_playlist_tracks(
                    access_token, playlist_id, offset, track_limit
                ),
                stats,
            )
        return playlists

    async def scan(self, user_id: str, access_token: str) -> ScanResult:
        """Scan all four collections.

        Never raises for provider failures: a failed collection ends up in
        ScanResult.failed, a failed profile call in ScanResult.warnings.
        """
        stats = CallStats()
        snapshot = LibrarySnapshot(user_id=user_id, provider=self._reader.provider_name)
        result = ScanResult(snapshot=snapshot)

        try:
            profile = await self._call(lambda: self._reader.get_profile_id(access_token), stats)
            snapshot.provider_user_id = profile.payload
        except ProviderCallError as e:
            message = f"Could not read provider profile ({e.error_code}): {e.message}"
            result.warnings.append(message)
            logger.warning(f"Library scan for user {user_id}: {message}")

        collections: dict[LibraryCollection, Awaitable[list[Any]]] = {
            LibraryCollection.LIKED_TRACKS: self._liked_tracks(access_token, stats),
            LibraryCollection.PLAYLISTS: self._playlists(access_token, stats),
            LibraryCollection.FOLLOWED_ARTISTS: self._followed_artists(access_token, stats),
            LibraryCollection.SAVED_ALBUMS: self._saved_albums(access_token, stats),
        }
        outcomes = await asyncio.gather(*collections.values(), return_exceptions=True)

        for collection, outcome in zip(collections, outcomes, strict=True):
            if isinstance(outcome, ProviderCallError):
                message = f"{outcome.error_code}: {outcome.message}"
                result.failed[str(collection)] = message
                logger.warning(
                    f"Library scan for user {user_id}: {collection} failed ({message}), "
                    f"continuing with the other collections"
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            setattr(snapshot, str(collection), outcome)
            result.succeeded.append(collection)

        result.api_calls = stats.api_calls
        result.rate_limit_retries = stats.rate_limit_retries
        logger.info(
            f"Scanned library of user {user_id} on {snapshot.provider}: "
            f"{len(snapshot.liked_tracks)} liked, {len(snapshot.playlists)} playlists, "
            f"{len(snapshot.followed_artists)} follows, {len(snapshot.saved_albums)} albums "
            f"({result.api_calls} API calls, {len(result.failed)} collections failed)"
        )
        return result
