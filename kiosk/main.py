"""Kiosk instance entry point (kiosk display, admin console or report viewer)."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI

from kiosk.api import routes
from kiosk.api.errors import register_error_handlers
from kiosk.config import Settings, get_settings
from kiosk.services.config_feed import apply_config_feed
from kiosk.services.db import create_db_engine, create_session_factory, init_db
from kiosk.services.kiosk_service import KioskService
from kiosk.services.logging import setup_server_logging
from kiosk.services.state_store import SqlStateStore, StateStore
from kiosk.services.sync_service import StateSynchronizer

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[StateStore] = None) -> FastAPI:
    """Build the FastAPI application for one instance.

    Args:
        settings: Application settings (default: from environment)
        store: Shared state store (default: SQL store at settings.database_url)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Hydrate state on startup, stop listening on shutdown."""
        state_store = store
        engine = None
        if state_store is None:
            engine = create_db_engine(settings.database_url, settings.database_echo)
            init_db(engine)
            state_store = SqlStateStore(
                create_session_factory(engine), settings.notification_retention_seconds
            )
            logger.info("State tables initialized")

        synchronizer = StateSynchronizer(
            state_store, topic=settings.broadcast_topic, bucket_count=settings.bucket_count
        )
        service = KioskService(synchronizer)
        synchronizer.start()
        app.state.masjid = apply_config_feed(
            synchronizer, settings.config_feed_url, settings.masjid_slug
        )
        app.state.kiosk_service = service
        yield
        synchronizer.close()
        if engine is not None:
            engine.dispose()
        logger.info("Application shutting down")

    app = FastAPI(
        title=settings.api_title,
        description="Donation kiosk allocation and state synchronization API",
        version=settings.api_version,
        lifespan=lifespan,
    )
    register_error_handlers(app)
    app.include_router(routes.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    return app


def main() -> None:
    """Run one instance with uvicorn."""
    import uvicorn

    load_dotenv()
    settings = get_settings()
    setup_server_logging(settings.log_file, settings.log_level, settings.instance_name)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
