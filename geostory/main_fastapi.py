from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import Response

from geostory.config import Settings, get_settings
from geostory.db.base import Database
from geostory.jobs.sweeper import ExpirySweeper
from geostory.middleware.error_handler import ErrorHandlerMiddleware, setup_exception_handlers
from geostory.middleware.rate_limiter import FixedWindowCounter
from geostory.repositories.story_repository import StoryRepository
from geostory.routers.health import router as health_router
from geostory.routers.stories import router as stories_router
from geostory.services.story_service import StoryService
from geostory.utils.logger import log_info


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    # A store that cannot open is fatal; let the exception stop startup.
    await app.state.database.init()
    if settings.SWEEP_ENABLED:
        app.state.sweeper.start()
    log_info(
        "Editor/API is accessible on the network (ALLOW_EDITOR_NETWORK=1)."
        if settings.ALLOW_EDITOR_NETWORK
        else "Editor/API is locked to localhost (only this machine)."
    )
    try:
        yield
    finally:
        log_info("Shutting down...")
        await app.state.sweeper.stop()
        await app.state.database.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="GeoStory API",
        description="Publish and share immutable map stories by short link",
        version="1.0.0",
        lifespan=lifespan,
    )

    database = Database(settings)
    repository = StoryRepository(database, settings)
    limiter = FixedWindowCounter(
        window_size=settings.RATE_WINDOW_SECONDS,
        max_requests=settings.RATE_MAX_REQUESTS,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.story_service = StoryService(repository, settings, limiter=limiter)
    app.state.sweeper = ExpirySweeper(repository, settings)

    # Error handler should be outermost to catch all errors
    app.add_middleware(ErrorHandlerMiddleware, debug=settings.DEBUG)
    setup_exception_handlers(app)

    app.include_router(health_router)  # Health checks at root level
    app.include_router(stories_router, prefix="/api")

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        """Return empty response for favicon to prevent 404 errors."""
        return Response(status_code=204)

    return app


def get_app() -> FastAPI:
    return create_app()
