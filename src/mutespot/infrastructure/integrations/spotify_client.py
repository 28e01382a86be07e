"""Spotify Web API client for enforcement actions and library reads."""

import logging
import re
from collections.abc import Callable
from typing import Any

import httpx

from mutespot.config.settings import SpotifySettings
from mutespot.domain.entities import (
    ArtistCredit,
    CreditRole,
    EnforcementErrorCode,
    FollowedArtist,
    LibraryAlbum,
    LibraryPlaylist,
    LibraryTrack,
    error_code_for_status,
)
from mutespot.domain.exceptions import ProviderCallError
from mutespot.domain.ports import (
    ILibraryReader,
    IProviderActionClient,
    LibraryPage,
    ProviderResponse,
)
from mutespot.domain.value_objects import ActionVerb, parse_verb

logger = logging.getLogger(__name__)

# Hey future me - Spotify puts featured artists in the TITLE, not in a separate field:
# "Song (feat. X)", "Song - ft. X & Y", "Song [with X]". The artists array just lists
# everyone. We use the title to tell a featured guest apart from a genuine collaborator.
# "with" only counts inside brackets, otherwise "Dance With Me" would match.
_FEATURING_RE = re.compile(r"\b(?:feat\.?|ft\.?|featuring)\s+(?P<names>[^)\]]+)", re.IGNORECASE)
_WITH_RE = re.compile(r"[(\[]\s*with\s+(?P<names>[^)\]]+)", re.IGNORECASE)

FEATURED_CONFIDENCE = 0.9
COLLABORATOR_CONFIDENCE = 0.7
ALBUM_ARTIST_CONFIDENCE = 0.6


def featured_text(title: str) -> str:
    """All 'feat.' segments of a title, lowercased and joined ('' if none)."""
    segments = [m.group("names") for m in _FEATURING_RE.finditer(title)]
    segments += [m.group("names") for m in _WITH_RE.finditer(title)]
    return " ".join(segments).lower()


def parse_track_credits(track: dict[str, Any]) -> list[ArtistCredit]:
    """Turn a Spotify track object into role-tagged credits.

    - artists[0] → PRIMARY (1.0)
    - other artists named in a feat. segment of the title → FEATURED (0.9)
    - other artists → COLLABORATOR (0.7)
    - album artists not on the track itself → COLLABORATOR (0.6)
    """
    credits: list[ArtistCredit] = []
    seen: set[str] = set()
    feat = featured_text(track.get("name") or "")

    for index, artist in enumerate(track.get("artists") or []):
        artist_id = artist.get("id")
        if not artist_id or artist_id in seen:
            continue
        seen.add(artist_id)
        name = artist.get("name") or ""
        if index == 0:
            credits.append(ArtistCredit(artist_id, name, CreditRole.PRIMARY, 1.0))
        elif feat and name and name.lower() in feat:
            credits.append(
                ArtistCredit(artist_id, name, CreditRole.FEATURED, FEATURED_CONFIDENCE)
            )
        else:
            credits.append(
                ArtistCredit(artist_id, name, CreditRole.COLLABORATOR, COLLABORATOR_CONFIDENCE)
            )

    album = track.get("album") or {}
    for artist in album.get("artists") or []:
        artist_id = artist.get("id")
        if not artist_id or artist_id in seen:
            continue
        seen.add(artist_id)
        credits.append(
            ArtistCredit(
                artist_id,
                artist.get("name") or "",
                CreditRole.COLLABORATOR,
                ALBUM_ARTIST_CONFIDENCE,
            )
        )
    return credits


def parse_album_credits(album: dict[str, Any]) -> list[ArtistCredit]:
    """artists[0] is the primary artist, everybody else on the album collaborated."""
    credits: list[ArtistCredit] = []
    for index, artist in enumerate(album.get("artists") or []):
        artist_id = artist.get("id")
        if not artist_id:
            continue
        role = CreditRole.PRIMARY if index == 0 else CreditRole.COLLABORATOR
        confidence = 1.0 if index == 0 else COLLABORATOR_CONFIDENCE
        credits.append(ArtistCredit(artist_id, artist.get("name") or "", role, confidence))
    return credits


def _parse_track(track: dict[str, Any] | None) -> LibraryTrack | None:
    # Local files and podcast episodes show up with id None - nothing we can act on
    if not track or not track.get("id"):
        return None
    return LibraryTrack(
        id=track["id"],
        name=track.get("name") or "",
        credits=parse_track_credits(track),
        album_id=(track.get("album") or {}).get("id"),
        duration_ms=track.get("duration_ms") or 0,
    )


def _next_offset(data: dict[str, Any], offset: int, count: int) -> int | None:
    if not data.get("next") or count == 0:
        return None
    return offset + count


def _parse_float_header(headers: httpx.Headers, name: str) -> float | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class SpotifyClient(IProviderActionClient, ILibraryReader):
    """HTTP client for Spotify enforcement actions and library scans.

    Hey future me - this client does exactly ONE request per method call and never
    retries or sleeps. Every non-2xx becomes a ProviderCallError with the error code
    already classified; call_with_backoff() decides what to do with it. If you add a
    retry loop here, 429s get retried 5x5 = 25 times.
    """

    PROVIDER_NAME = "spotify"

    # Documented Spotify maximum ids per request
    BULK_LIMITS: dict[ActionVerb, int] = {
        ActionVerb.REMOVE_LIKED_SONG: 50,
        ActionVerb.ADD_LIKED_SONG: 50,
        ActionVerb.REMOVE_SAVED_ALBUM: 50,
        ActionVerb.ADD_SAVED_ALBUM: 50,
        ActionVerb.UNFOLLOW_ARTIST: 50,
        ActionVerb.FOLLOW_ARTIST: 50,
        ActionVerb.REMOVE_PLAYLIST_TRACK: 100,
        ActionVerb.ADD_PLAYLIST_TRACK: 100,
    }

    # Hey future me, same as always: DON'T create the httpx client here. It's lazy-loaded
    # in _get_client() so it's created inside the running event loop. transport is only
    # for tests (httpx.MockTransport).
    def __init__(
        self,
        settings: SpotifySettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or SpotifySettings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._actions: dict[ActionVerb, Callable[..., Any]] = {
            ActionVerb.REMOVE_LIKED_SONG: self._remove_liked_songs,
            ActionVerb.ADD_LIKED_SONG: self._add_liked_songs,
            ActionVerb.REMOVE_SAVED_ALBUM: self._remove_saved_albums,
            ActionVerb.ADD_SAVED_ALBUM: self._add_saved_albums,
            ActionVerb.UNFOLLOW_ARTIST: self._unfollow_artists,
            ActionVerb.FOLLOW_ARTIST: self._follow_artists,
            ActionVerb.REMOVE_PLAYLIST_TRACK: self._remove_playlist_tracks,
            ActionVerb.ADD_PLAYLIST_TRACK: self._add_playlist_tracks,
        }

    @property
    def provider_name(self) -> str:
        return self.PROVIDER_NAME

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client (30s timeout - big playlists are slow)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.api_base_url,
                timeout=self.settings.request_timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> tuple[httpx.Response, dict[str, Any]]:
        """One request, translated into either (response, body) or ProviderCallError."""
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            response = await client.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.TimeoutException as e:
            raise ProviderCallError(
                f"Spotify request timed out: {method} {path}",
                EnforcementErrorCode.TIMEOUT,
            ) from e
        except httpx.TransportError as e:
            raise ProviderCallError(
                f"Could not reach Spotify: {method} {path}: {e}",
                EnforcementErrorCode.CONNECTION_ERROR,
            ) from e

        retry_after = _parse_float_header(response.headers, "Retry-After")
        remaining = _parse_float_header(response.headers, "X-RateLimit-Remaining")
        reset_at = _parse_float_header(response.headers, "X-RateLimit-Reset")

        if not response.is_success:
            message = f"Spotify API error {response.status_code} on {method} {path}"
            try:
                error = response.json().get("error")
                if isinstance(error, dict) and error.get("message"):
                    message = f"{message}: {error['message']}"
            except ValueError:
                pass  # Non-JSON error body, status code is enough
            raise ProviderCallError(
                message,
                error_code_for_status(response.status_code),
                status_code=response.status_code,
                retry_after=retry_after,
                remaining=int(remaining) if remaining is not None else None,
                reset_at=reset_at,
            )

        body: dict[str, Any] = {}
        if response.content:
            try:
                parsed = response.json()
            except ValueError as e:
                raise ProviderCallError(
                    f"Spotify returned non-JSON body on {method} {path}",
                    EnforcementErrorCode.BAD_RESPONSE,
                    status_code=response.status_code,
                ) from e
            if isinstance(parsed, dict):
                body = parsed
        return response, body

    @staticmethod
    def _to_provider_response(
        response: httpx.Response,
        payload: Any = None,
        correlation_token: str | None = None,
    ) -> ProviderResponse:
        remaining = _parse_float_header(response.headers, "X-RateLimit-Remaining")
        return ProviderResponse(
            status_code=response.status_code,
            correlation_token=correlation_token,
            retry_after=_parse_float_header(response.headers, "Retry-After"),
            remaining=int(remaining) if remaining is not None else None,
            reset_at=_parse_float_header(response.headers, "X-RateLimit-Reset"),
            payload=payload,
        )

    # =========================================================================
    # IProviderActionClient
    # =========================================================================

    def bulk_limit(self, verb: str) -> int | None:
        parsed = parse_verb(verb)
        return self.BULK_LIMITS.get(parsed) if parsed is not None else None

    async def execute(
        self,
        verb: str,
        entity_ids: list[str],
        access_token: str,
        context: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        """Execute one verb for a chunk of entity ids.

        Raises:
            ProviderCallError: UNSUPPORTED_ACTION for unknown verbs, VALIDATION_FAILED
                for an oversized chunk or a playlist verb without playlist_id, and
                whatever the HTTP call fails with.
        """
        parsed = parse_verb(verb)
        handler = self._actions.get(parsed) if parsed is not None else None
        if handler is None:
            raise ProviderCallError(
                f"Spotify does not support action '{verb}'",
                EnforcementErrorCode.UNSUPPORTED_ACTION,
            )
        limit = self.BULK_LIMITS[parsed]
        if not entity_ids or len(entity_ids) > limit:
            raise ProviderCallError(
                f"{verb} needs 1..{limit} ids per call, got {len(entity_ids)}",
                EnforcementErrorCode.VALIDATION_FAILED,
            )
        result: ProviderResponse = await handler(entity_ids, access_token, context or {})
        return result

    async def _remove_liked_songs(
        self, ids: list[str], access_token: str, context: dict[str, Any]
    ) -> ProviderResponse:
        response, _ = await self._request("DELETE", "/me/tracks", access_token, json={"ids": ids})
        return self._to_provider_response(response)

    async def _add_liked_songs(
        self, ids: list[str], access_token: str, context: dict[str, Any]
    ) -> ProviderResponse:
        response, _ = await self._request("PUT", "/me/tracks", access_token, json={"ids": ids})
        return self._to_provider_response(response)

    async def _remove_saved_albums(
        self, ids: list[str], access_token: str, context: dict[str, Any]
    ) -> ProviderResponse:
        response, _ = await self._request("DELETE", "/me/albums", access_token, json={"ids": ids})
        return self._to_provider_response(response)

    async def _add_saved_albums(
        self, ids: list[str], access_token: str, context: dict[str, Any]
    ) -> ProviderResponse:
        response, _ = await self._request("PUT", "/me/albums", access_token, json={"ids": ids})
        return self._to_provider_response(response)

    # Follow endpoints take the ids as a comma separated query param, NOT a JSON body
    async def _unfollow_artists(
        self, ids: list[str], access_token: str, context: dict[str, Any]
    ) -> ProviderResponse:
        response, _ = await self._request(
            "DELETE",
            "/me/following",
            access_token,
            params={"type": "artist", "ids": ",".join(ids)},
        )
        return self._to_provider_response(response)

    async def _follow_artists(
        self, ids: list[str], access_token: str, context: dict[str, Any]
    ) -> ProviderResponse:
        response, _ = await self._request(
            "PUT",
            "/me/following",
            access_token,
            params={"type": "artist", "ids": ",".join(ids)},
        )
        return self._to_provider_response(response)

    @staticmethod
    def _playlist_id(context: dict[str, Any]) -> str:
        playlist_id = context.get("playlist_id")
        if not playlist_id:
            raise ProviderCallError(
                "Playlist action without playlist_id",
                EnforcementErrorCode.VALIDATION_FAILED,
            )
        return str(playlist_id)

    # Hey future me - removing by URI removes EVERY occurrence of the track in the
    # playlist. That's what we want for enforcement. The new snapshot_id comes back
    # in the body and becomes the correlation token of the whole chunk.
    async def _remove_playlist_tracks(
        self, ids: list[str], access_token: str, context: dict[str, Any]
    ) -> ProviderResponse:
        playlist_id = self._playlist_id(context)
        response, body = await self._request(
            "DELETE",
            f"/playlists/{playlist_id}/tracks",
            access_token,
            json={"tracks": [{"uri": f"spotify:track:{track_id}"} for track_id in ids]},
        )
        return self._to_provider_response(response, correlation_token=body.get("snapshot_id"))

    async def _add_playlist_tracks(
        self, ids: list[str], access_token: str, context: dict[str, Any]
    ) -> ProviderResponse:
        playlist_id = self._playlist_id(context)
        response, body = await self._request(
            "POST",
            f"/playlists/{playlist_id}/tracks",
            access_token,
            json={"uris": [f"spotify:track:{track_id}" for track_id in ids]},
        )
        return self._to_provider_response(response, correlation_token=body.get("snapshot_id"))

    # =========================================================================
    # ILibraryReader
    # =========================================================================

    async def get_profile_id(self, access_token: str) -> ProviderResponse:
        response, body = await self._request("GET", "/me", access_token)
        user_id = body.get("id")
        if not user_id:
            raise ProviderCallError(
                "Spotify profile has no id", EnforcementErrorCode.BAD_RESPONSE
            )
        return self._to_provider_response(response, payload=user_id)

    async def get_liked_tracks(
        self, access_token: str, offset: int = 0, limit: int = 50
    ) -> ProviderResponse:
        limit = min(limit, 50)
        response, body = await self._request(
            "GET", "/me/tracks", access_token, params={"limit": limit, "offset": offset}
        )
        raw_items = body.get("items") or []
        tracks = [t for t in (_parse_track(i.get("track")) for i in raw_items) if t]
        page = LibraryPage(
            items=tracks,
            next_offset=_next_offset(body, offset, len(raw_items)),
            total=body.get("total"),
        )
        return self._to_provider_response(response, payload=page)

    async def get_playlists(
        self, access_token: str, offset: int = 0, limit: int = 50
    ) -> ProviderResponse:
        limit = min(limit, 50)
        response, body = await self._request(
            "GET", "/me/playlists", access_token, params={"limit": limit, "offset": offset}
        )
        raw_items = body.get("items") or []
        playlists = [
            LibraryPlaylist(
                id=item["id"],
                name=item.get("name") or "",
                owner_id=(item.get("owner") or {}).get("id"),
                collaborative=bool(item.get("collaborative")),
                snapshot_id=item.get("snapshot_id"),
            )
            for item in raw_items
            if item and item.get("id")
        ]
        page = LibraryPage(
            items=playlists,
            next_offset=_next_offset(body, offset, len(raw_items)),
            total=body.get("total"),
        )
        return self._to_provider_response(response, payload=page)

    async def get_playlist_tracks(
        self, access_token: str, playlist_id: str, offset: int = 0, limit: int = 100
    ) -> ProviderResponse:
        limit = min(limit, 100)
        response, body = await self._request(
            "GET",
            f"/playlists/{playlist_id}/tracks",
            access_token,
            params={"limit": limit, "offset": offset},
        )
        raw_items = body.get("items") or []
        tracks = [t for t in (_parse_track(i.get("track")) for i in raw_items) if t]
        page = LibraryPage(
            items=tracks,
            next_offset=_next_offset(body, offset, len(raw_items)),
            total=body.get("total"),
        )
        return self._to_provider_response(response, payload=page)

    # /me/following is CURSOR paged (after = last artist id), not offset paged
    async def get_followed_artists(
        self, access_token: str, after: str | None = None, limit: int = 50
    ) -> ProviderResponse:
        params: dict[str, str | int] = {"type": "artist", "limit": min(limit, 50)}
        if after:
            params["after"] = after
        response, body = await self._request("GET", "/me/following", access_token, params=params)
        artists = body.get("artists") or {}
        items = [
            FollowedArtist(id=a["id"], name=a.get("name") or "")
            for a in artists.get("items") or []
            if a and a.get("id")
        ]
        cursor = (artists.get("cursors") or {}).get("after")
        page = LibraryPage(
            items=items,
            next_cursor=cursor if artists.get("next") and items else None,
            total=artists.get("total"),
        )
        return self._to_provider_response(response, payload=page)

    async def get_saved_albums(
        self, access_token: str, offset: int = 0, limit: int = 50
    ) -> ProviderResponse:
        limit = min(limit, 50)
        response, body = await self._request(
            "GET", "/me/albums", access_token, params={"limit": limit, "offset": offset}
        )
        raw_items = body.get("items") or []
        albums = []
        for item in raw_items:
            album = (item or {}).get("album")
            if not album or not album.get("id"):
                continue
            albums.append(
                LibraryAlbum(
                    id=album["id"],
                    name=album.get("name") or "",
                    credits=parse_album_credits(album),
                    total_tracks=album.get("total_tracks") or 0,
                )
            )
        page = LibraryPage(
            items=albums,
            next_offset=_next_offset(body, offset, len(raw_items)),
            total=body.get("total"),
        )
        return self._to_provider_response(response, payload=page)

    async def __aenter__(self) -> "SpotifyClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
