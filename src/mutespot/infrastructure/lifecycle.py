"""Application lifecycle: wiring at startup, cleanup at shutdown.

Hey future me - build_enforcement_service() is THE composition root. Everything that
shares state must be built exactly once here: ONE RateLimiterRegistry (scanner,
executor and rollback must see the same quota), ONE store, ONE executor (its in-process
"already running" guard only works if the worker and the API share it).
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

from fastapi import FastAPI

from mutespot.application.cache import PlanCache
from mutespot.application.services import (
    BatchExecutor,
    EnforcementPlanner,
    EnforcementService,
    LibraryScanner,
    RollbackService,
)
from mutespot.application.workers import EnforcementBatchWorker
from mutespot.config import Settings
from mutespot.domain.ports import ITokenProvider
from mutespot.infrastructure.backoff import BackoffPolicy
from mutespot.infrastructure.integrations import SpotifyClient
from mutespot.infrastructure.observability import configure_logging
from mutespot.infrastructure.persistence import Database, SqlAlchemyEnforcementStore
from mutespot.infrastructure.rate_limiter import RateLimiterRegistry

logger = logging.getLogger(__name__)


@dataclass
class EnforcementComponents:
    """Everything the lifespan hangs on app.state."""

    service: EnforcementService
    executor: BatchExecutor
    store: SqlAlchemyEnforcementStore
    limiters: RateLimiterRegistry
    spotify_client: SpotifyClient


def build_enforcement_service(
    settings: Settings,
    database: Database,
    spotify_client: SpotifyClient,
    token_provider: ITokenProvider | None = None,
    limiters: RateLimiterRegistry | None = None,
) -> EnforcementComponents:
    """Wire store, limiter registry, scanner, planner, executor and rollback together."""
    limiters = limiters or RateLimiterRegistry(settings.rate_limit)
    policy = BackoffPolicy.from_settings(settings.rate_limit)
    store = SqlAlchemyEnforcementStore(database)
    provider = spotify_client.provider_name

    executor = BatchExecutor(
        store=store,
        clients={provider: spotify_client},
        limiters=limiters,
        backoff_policy=policy,
        settings=settings.enforcement,
        token_provider=token_provider,
    )
    scanner = LibraryScanner(
        reader=spotify_client,
        limiter=limiters.get(provider),
        backoff_policy=policy,
        settings=settings.spotify,
    )
    service = EnforcementService(
        store=store,
        scanners={provider: scanner},
        planner=EnforcementPlanner(settings.enforcement),
        executor=executor,
        rollback_service=RollbackService(store, executor),
        plan_cache=PlanCache(settings.enforcement),
        limiters=limiters,
        settings=settings.enforcement,
        token_provider=token_provider,
    )
    return EnforcementComponents(
        service=service,
        executor=executor,
        store=store,
        limiters=limiters,
        spotify_client=spotify_client,
    )


# Listen future me, everything before `yield` runs at STARTUP, everything after at
# SHUTDOWN. create_app() puts settings (and optional test overrides) on app.state
# before the server calls this.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start database, service and worker; stop them again on shutdown."""
    settings: Settings = app.state.settings

    configure_logging(
        log_level=settings.observability.log_level,
        json_format=settings.observability.json_logs,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    worker: EnforcementBatchWorker | None = None
    worker_task: asyncio.Task[None] | None = None
    database = Database(settings.database)
    app.state.db = database
    try:
        await database.create_tables()
        logger.info("Database initialized: %s", settings.database.url)

        spotify_client = SpotifyClient(
            settings.spotify, transport=getattr(app.state, "spotify_transport", None)
        )
        components = build_enforcement_service(
            settings,
            database,
            spotify_client,
            token_provider=getattr(app.state, "token_provider", None),
        )
        app.state.enforcement_service = components.service
        app.state.spotify_client = spotify_client

        if getattr(app.state, "start_worker", True):
            worker = EnforcementBatchWorker(
                components.service,
                check_interval=settings.enforcement.worker_interval_seconds,
            )
            worker_task = asyncio.create_task(worker.start())
            app.state.enforcement_worker = worker
            logger.info("Enforcement batch worker started")

        yield
    finally:
        logger.info("Shutting down application")

        if worker is not None and worker_task is not None:
            worker.stop()
            worker_task.cancel()
            with suppress(asyncio.CancelledError):
                await worker_task
            logger.info("Enforcement batch worker stopped")

        client = getattr(app.state, "spotify_client", None)
        if client is not None:
            try:
                await client.close()
            except Exception as e:
                logger.exception("Error closing Spotify client: %s", e)

        try:
            await database.close()
            logger.info("Database connection closed")
        except Exception as e:
            logger.exception("Error closing database: %s", e)
