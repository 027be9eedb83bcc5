"""
Study Buddy Matchmaker - Main Entry Point

FastAPI application that pairs users by shared study tags and relays chat
and video signaling over WebSocket or HTTP polling.
"""

import asyncio
import logging
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from study_buddy import __version__
from study_buddy.config import Settings, settings as default_settings
from study_buddy.database import create_db_engine, create_session_factory
from study_buddy.dependencies import rate_limit
from study_buddy.errors import BackendUnavailable
from study_buddy.logging_setup import configure_logging
from study_buddy.models import Base
from study_buddy.routes import abuse, archive, health, polling, ws
from study_buddy.services import rate_limiter
from study_buddy.services.container import Services, build_services
from study_buddy.services.report_archive import ReportArchiveService
from study_buddy.store import resolve_store

logger = logging.getLogger(__name__)


async def run_maintenance(services: Services) -> None:
    """
    Periodic housekeeping: close idle polling connections, purge expired
    in-memory entries, and copy new reports into the archive.
    """
    settings = services.settings
    interval = settings.MAINTENANCE_INTERVAL_SECONDS
    since_archive = 0.0

    while True:
        await asyncio.sleep(interval)
        try:
            for state in services.registry.idle_connections("poll", settings.POLL_IDLE_TIMEOUT_SECONDS):
                logger.info("Closing idle polling connection %s", state.connection_id)
                await services.sessions.disconnect(state.connection_id)

            await services.store.purge_expired()

            since_archive += interval
            if settings.ARCHIVE_INTERVAL_SECONDS and since_archive >= settings.ARCHIVE_INTERVAL_SECONDS:
                since_archive = 0.0
                db = services.db_sessions()
                try:
                    await ReportArchiveService(db, services.store).archive_batch(settings.ARCHIVE_BATCH_SIZE)
                finally:
                    db.close()
        except BackendUnavailable as e:
            logger.error("Maintenance pass failed: %s", e)


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or default_settings
    configure_logging(app_settings)

    # Initialize FastAPI app
    app = FastAPI(
        title=app_settings.APP_NAME,
        description="Tag-based matchmaking and session signaling",
        version=__version__,
    )
    app.state.settings = app_settings

    # Security middleware
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=app_settings.ALLOWED_HOSTS,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers; /api routes apply their own rate-limit policies
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(abuse.router, prefix="/api", tags=["abuse"])
    app.include_router(polling.match_router, prefix="/api", tags=["polling"])
    app.include_router(polling.router, prefix="/api", tags=["polling"])
    app.include_router(
        archive.router,
        prefix="/archive",
        tags=["archive"],
        dependencies=[Depends(rate_limit(rate_limiter.API))],
    )
    app.include_router(ws.router, tags=["websocket"])

    @app.exception_handler(BackendUnavailable)
    async def backend_unavailable_handler(request: Request, exc: BackendUnavailable):
        logger.error("Storage failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})

    @app.on_event("startup")
    async def startup_event():
        """Choose the storage backend once and wire services"""
        logger.info("%s starting...", app_settings.APP_NAME)
        engine = create_db_engine(app_settings.DATABASE_URL, echo=app_settings.DEBUG)
        Base.metadata.create_all(bind=engine)
        store = await resolve_store(app_settings)
        services = build_services(app_settings, store, create_session_factory(engine))
        app.state.db_engine = engine
        app.state.services = services
        app.state.maintenance = None
        if app_settings.MAINTENANCE_INTERVAL_SECONDS > 0:
            app.state.maintenance = asyncio.create_task(run_maintenance(services))
        logger.info("Storage backend: %s", store.name)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        logger.info("%s shutting down...", app_settings.APP_NAME)
        services: Services = app.state.services
        if app.state.maintenance is not None:
            app.state.maintenance.cancel()
            try:
                await app.state.maintenance
            except asyncio.CancelledError:
                pass
        await services.sessions.shutdown()
        await services.store.close()
        app.state.db_engine.dispose()

    return app


app = create_app()


def run() -> None:
    uvicorn.run(
        "study_buddy.main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        reload=default_settings.DEBUG,
    )


if __name__ == "__main__":
    run()
