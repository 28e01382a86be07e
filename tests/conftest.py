"""Shared fixtures: a throwaway SQLite store, a recording fake provider, plan builders.

Hey future me - nothing here talks to Spotify or sleeps for real. The limiter registry
gets a no-op sleep and the backoff policy uses millisecond delays, so a test that hits
the retry path still finishes instantly.
"""

import json
from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from mutespot.application.services.batch_executor import BatchExecutor
from mutespot.config import DatabaseSettings, EnforcementSettings, RateLimitSettings, Settings
from mutespot.domain.entities import (
    BlockReason,
    EnforcementErrorCode,
    EnforcementOptions,
    EnforcementPlan,
    PlannedAction,
)
from mutespot.domain.exceptions import ProviderCallError
from mutespot.domain.ports import IProviderActionClient, ProviderResponse
from mutespot.domain.value_objects import ActionVerb, is_playlist_scoped, spec_for
from mutespot.infrastructure.backoff import BackoffPolicy
from mutespot.infrastructure.persistence import Database, SqlAlchemyEnforcementStore
from mutespot.infrastructure.rate_limiter import RateLimiterRegistry
from mutespot.main import create_app


async def no_sleep(_seconds: float) -> None:
    return None


class FakeActionClient(IProviderActionClient):
    """Records every execute() call. Failures are configured per verb.

    fail_verbs[verb] = error code -> every call for that verb raises
    fail_next = [codes]            -> the next calls raise these codes, in order
    """

    def __init__(
        self,
        provider: str = "spotify",
        bulk_limits: dict[str, int | None] | None = None,
    ) -> None:
        self._provider = provider
        if bulk_limits is None:
            bulk_limits = {
                str(verb): 100 if is_playlist_scoped(verb) else 50 for verb in ActionVerb
            }
        self.bulk_limits = bulk_limits
        self.calls: list[tuple[str, list[str], dict[str, Any]]] = []
        self.fail_verbs: dict[str, EnforcementErrorCode] = {}
        self.fail_next: list[EnforcementErrorCode] = []

    @property
    def provider_name(self) -> str:
        return self._provider

    def bulk_limit(self, verb: str) -> int | None:
        return self.bulk_limits.get(verb)

    async def execute(
        self,
        verb: str,
        entity_ids: list[str],
        access_token: str,
        context: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        context = dict(context or {})
        self.calls.append((verb, list(entity_ids), context))
        if self.fail_next:
            code = self.fail_next.pop(0)
            raise ProviderCallError(f"{verb} failed with {code}", code)
        code = self.fail_verbs.get(verb)
        if code is not None:
            raise ProviderCallError(f"{verb} failed with {code}", code)
        snapshot = f"snap-{len(self.calls)}" if context.get("playlist_id") else None
        return ProviderResponse(status_code=200, correlation_token=snapshot)

    def calls_for(self, verb: str) -> list[tuple[str, list[str], dict[str, Any]]]:
        return [call for call in self.calls if call[0] == verb]


def planned(
    verb: ActionVerb,
    entity_id: str,
    playlist_id: str | None = None,
    reason: BlockReason = BlockReason.EXACT_MATCH,
) -> PlannedAction:
    """A PlannedAction with the entity type taken from the verb table."""
    spec = spec_for(verb)
    assert spec is not None
    context: dict[str, Any] = {}
    if playlist_id is not None:
        context = {"playlist_id": playlist_id, "snapshot_id": f"{playlist_id}-v1"}
    return PlannedAction(
        verb=verb,
        entity_type=spec.entity_type,
        entity_id=entity_id,
        entity_name=f"name of {entity_id}",
        reason=reason,
        blocked_artist_ids=["blocked-1"],
        context=context,
    )


def make_plan(
    actions: list[PlannedAction],
    dry_run: bool = False,
    connection_id: str | None = None,
) -> EnforcementPlan:
    return EnforcementPlan(
        user_id="user-1",
        provider="spotify",
        blocked_artist_ids=["blocked-1"],
        options=EnforcementOptions(dry_run=dry_run),
        actions=actions,
        connection_id=connection_id,
    )


@pytest.fixture
def plan_factory() -> Callable[..., EnforcementPlan]:
    return make_plan


@pytest.fixture
def action_factory() -> Callable[..., PlannedAction]:
    return planned


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Fresh SQLite database per test with all tables created."""
    db = Database(DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/test.db"))
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def store(database: Database) -> SqlAlchemyEnforcementStore:
    return SqlAlchemyEnforcementStore(database)


@pytest.fixture
def client_factory() -> type[FakeActionClient]:
    return FakeActionClient


@pytest.fixture
def fake_client() -> FakeActionClient:
    return FakeActionClient()


@pytest.fixture
def limiters() -> RateLimiterRegistry:
    return RateLimiterRegistry(
        RateLimitSettings(requests_per_window=10_000, base_delay_seconds=0.001), sleep=no_sleep
    )


@pytest.fixture
def backoff_policy() -> BackoffPolicy:
    return BackoffPolicy(base_delay_seconds=0.001, max_delay_seconds=0.005, max_attempts=3)


@pytest.fixture
def executor(
    store: SqlAlchemyEnforcementStore,
    fake_client: FakeActionClient,
    limiters: RateLimiterRegistry,
    backoff_policy: BackoffPolicy,
) -> BatchExecutor:
    return BatchExecutor(
        store=store,
        clients={"spotify": fake_client},
        limiters=limiters,
        backoff_policy=backoff_policy,
        settings=EnforcementSettings(),
    )


# =============================================================================
# Fake Spotify Web API (for tests that go through the real SpotifyClient)
# =============================================================================

BLOCKED_ARTIST = "artist-b"


def _artist(artist_id: str) -> dict[str, str]:
    return {"id": artist_id, "name": artist_id.replace("-", " ").title()}


def _spotify_track(track_id: str, name: str, *artist_ids: str) -> dict[str, Any]:
    return {
        "id": track_id,
        "name": name,
        "duration_ms": 200_000,
        "artists": [_artist(a) for a in artist_ids],
        "album": {"id": f"album-of-{track_id}", "artists": [_artist(artist_ids[0])]},
    }


class FakeSpotifyApi:
    """Stateful stand-in for the Spotify endpoints SpotifyClient talks to.

    Library of user "me" (blocked artist: artist-b):
        liked:     t1 by artist-b, t2 by artist-a feat. artist-b, t3 by artist-a
        playlists: p1 owned by "curator" (t1, t3), p2 owned by "me" (t1)
        follows:   artist-b, artist-a
        albums:    al1 by artist-b, al2 by artist-a

    Writes change the state, so a rollback can be checked against it.
    fail[(method, path)] = status makes that endpoint answer with the status.
    `attempts` records every write request, `writes` only the ones that succeeded.
    """

    def __init__(self) -> None:
        self.tracks = {
            "t1": _spotify_track("t1", "Blocked Song", BLOCKED_ARTIST),
            "t2": _spotify_track("t2", "Duet (feat. Artist B)", "artist-a", BLOCKED_ARTIST),
            "t3": _spotify_track("t3", "Clean Song", "artist-a"),
        }
        self.liked = ["t1", "t2", "t3"]
        self.playlists = {
            "p1": {"owner": "curator", "tracks": ["t1", "t3"], "version": 1},
            "p2": {"owner": "me", "tracks": ["t1"], "version": 1},
        }
        self.follows = [BLOCKED_ARTIST, "artist-a"]
        self.albums = {
            "al1": {
                "id": "al1",
                "name": "Blocked Album",
                "total_tracks": 10,
                "artists": [_artist(BLOCKED_ARTIST)],
            },
            "al2": {
                "id": "al2",
                "name": "Clean Album",
                "total_tracks": 8,
                "artists": [_artist("artist-a")],
            },
        }
        self.saved_albums = ["al1", "al2"]
        self.fail: dict[tuple[str, str], int] = {}
        self.writes: list[tuple[str, str]] = []
        self.attempts: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1")
        method = request.method
        if method != "GET":
            self.attempts.append((method, path))
        status = self.fail.get((method, path))
        if status is not None:
            return httpx.Response(
                status, json={"error": {"status": status, "message": "injected failure"}}
            )
        if method != "GET":
            self.writes.append((method, path))
        body = json.loads(request.content) if request.content else {}
        params = request.url.params

        if path == "/me":
            return httpx.Response(200, json={"id": "me"})
        if path == "/me/tracks":
            return self._liked(method, body)
        if path == "/me/playlists":
            items = [
                {
                    "id": pid,
                    "name": pid.upper(),
                    "owner": {"id": p["owner"]},
                    "collaborative": False,
                    "snapshot_id": f"{pid}-v{p['version']}",
                }
                for pid, p in self.playlists.items()
            ]
            return httpx.Response(200, json={"items": items, "next": None, "total": len(items)})
        if path.startswith("/playlists/") and path.endswith("/tracks"):
            return self._playlist_tracks(method, path.split("/")[2], body)
        if path == "/me/following":
            return self._following(method, params)
        if path == "/me/albums":
            return self._albums(method, body)
        return httpx.Response(404, json={"error": {"status": 404, "message": "no route"}})

    def _liked(self, method: str, body: dict[str, Any]) -> httpx.Response:
        if method == "GET":
            items = [{"track": self.tracks[t]} for t in self.liked]
            return httpx.Response(200, json={"items": items, "next": None, "total": len(items)})
        if method == "DELETE":
            self.liked = [t for t in self.liked if t not in body["ids"]]
        else:
            self.liked += [t for t in body["ids"] if t not in self.liked]
        return httpx.Response(200)

    def _playlist_tracks(
        self, method: str, playlist_id: str, body: dict[str, Any]
    ) -> httpx.Response:
        playlist = self.playlists[playlist_id]
        if method == "GET":
            items = [{"track": self.tracks[t]} for t in playlist["tracks"]]
            return httpx.Response(200, json={"items": items, "next": None, "total": len(items)})
        if method == "DELETE":
            uris = {t["uri"] for t in body["tracks"]}
            playlist["tracks"] = [
                t for t in playlist["tracks"] if f"spotify:track:{t}" not in uris
            ]
        else:
            playlist["tracks"] += [uri.rsplit(":", 1)[1] for uri in body["uris"]]
        playlist["version"] += 1
        return httpx.Response(200, json={"snapshot_id": f"{playlist_id}-v{playlist['version']}"})

    def _following(self, method: str, params: httpx.QueryParams) -> httpx.Response:
        if method == "GET":
            items = [_artist(a) for a in self.follows]
            return httpx.Response(
                200,
                json={"artists": {"items": items, "next": None, "cursors": {"after": None}}},
            )
        ids = params["ids"].split(",")
        if method == "DELETE":
            self.follows = [a for a in self.follows if a not in ids]
        else:
            self.follows += [a for a in ids if a not in self.follows]
        return httpx.Response(204)

    def _albums(self, method: str, body: dict[str, Any]) -> httpx.Response:
        if method == "GET":
            items = [{"album": self.albums[a]} for a in self.saved_albums]
            return httpx.Response(200, json={"items": items, "next": None, "total": len(items)})
        if method == "DELETE":
            self.saved_albums = [a for a in self.saved_albums if a not in body["ids"]]
        else:
            self.saved_albums += [a for a in body["ids"] if a not in self.saved_albums]
        return httpx.Response(200)


@pytest.fixture
def fake_spotify() -> FakeSpotifyApi:
    return FakeSpotifyApi()


@pytest.fixture
def app_settings(tmp_path: Path) -> Settings:
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/api.db"),
        rate_limit=RateLimitSettings(
            base_delay_seconds=0.001, max_delay_seconds=0.005, max_attempts=2
        ),
    )


@pytest.fixture
def api_client(
    app_settings: Settings, fake_spotify: FakeSpotifyApi
) -> Generator[TestClient, None, None]:
    """TestClient with the lifespan running against the fake Spotify API."""
    app = create_app(
        app_settings,
        spotify_transport=httpx.MockTransport(fake_spotify),
        start_worker=False,
    )
    with TestClient(app, headers={"Authorization": "Bearer test-token"}) as client:
        yield client
