"""FastAPI application factory."""

import httpx
from fastapi import FastAPI

from mutespot import __version__
from mutespot.api.exception_handlers import register_exception_handlers
from mutespot.api.routers import enforcement_router
from mutespot.config import Settings, get_settings
from mutespot.domain.ports import ITokenProvider
from mutespot.infrastructure.lifecycle import lifespan
from mutespot.infrastructure.observability import RequestLoggingMiddleware


def create_app(
    settings: Settings | None = None,
    token_provider: ITokenProvider | None = None,
    spotify_transport: httpx.AsyncBaseTransport | None = None,
    start_worker: bool = True,
) -> FastAPI:
    """Create the application.

    Args:
        settings: Settings to use (environment via get_settings() when None)
        token_provider: Resolves connection ids to access tokens; without one every
            request must carry the provider token in its Authorization header
        spotify_transport: httpx transport for the Spotify client (tests)
        start_worker: Run the background batch worker
    """
    app = FastAPI(
        title="MuteSpot",
        version=__version__,
        description="Enforce artist blocks across a streaming account, with rollback",
        lifespan=lifespan,
    )
    app.state.settings = settings or get_settings()
    app.state.token_provider = token_provider
    app.state.spotify_transport = spotify_transport
    app.state.start_worker = start_worker

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(enforcement_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app
