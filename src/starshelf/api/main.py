"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

from starshelf.api.routes import releases, repos, sync as sync_routes
from starshelf.config import Settings, get_settings
from starshelf.db.engine import get_engine
from starshelf.github.client import GitHubClient
from starshelf.scheduler.jobs import start_schedulers
from starshelf.services.release_service import ReleaseService
from starshelf.services.sync_service import StarSyncService

logger = logging.getLogger(__name__)


def create_app(
    engine=None,
    settings: Optional[Settings] = None,
    client_factory: Optional[Callable[..., GitHubClient]] = None,
) -> FastAPI:
    """Build and return the FastAPI app.

    Args:
        engine: Overrides get_engine() (tests pass an in-memory engine).
        settings: Overrides get_settings().
        client_factory: Overrides GitHubClient (tests pass a mock factory).
    """
    settings = settings or get_settings()
    client_factory = client_factory or GitHubClient

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = engine if engine is not None else get_engine()
        release_service = ReleaseService(db, client_factory=client_factory, settings=settings)
        sync_service = StarSyncService(
            db,
            client_factory=client_factory,
            release_service=release_service,
            settings=settings,
        )
        app.state.release_service = release_service
        app.state.sync_service = sync_service

        scheduler = None
        if settings.scheduler_enabled:
            scheduler = start_schedulers(db, sync_service, release_service, settings=settings)
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop()
            await sync_service.wait_for_background()
            logger.info("Shutdown complete")

    app = FastAPI(
        title="starshelf",
        description="GitHub stars organizer and release tracker",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(repos.router, prefix="/repos", tags=["repos"])
    app.include_router(releases.router, prefix="/releases", tags=["releases"])

    return app


# Module-level app instance for uvicorn
app = create_app()
