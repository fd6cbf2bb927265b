"""FastAPI application entrypoint and configuration.

This module provides the application factory that sets up logging and
CORS middleware, includes the processing, upload, tileset and tile
routers, and exposes a health check endpoint for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn tileserver.main:app --reload

    Or imported and used programmatically:
        >>> from tileserver.main import app
        >>> # Use app in ASGI server
"""

import logging
import time
from typing import Any

import fastapi
from fastapi.middleware import cors

from tileserver.api import processing, tiles, tilesets, uploads
from tileserver.core import config, log_setup
from tileserver.db import models as db_models

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures the ``tileserver`` logger from settings, sets up CORS, mounts
    the processing, upload, tileset and tile routers and adds a health
    check endpoint.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    log_setup.configure_logging(settings.log_level)
    started = time.monotonic()
    app = fastapi.FastAPI(title="Tile Server", version=VERSION)

    for module in (processing, uploads, tilesets, tiles):
        app.include_router(module.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:  # type: ignore[misc]
        """Liveness probe with version, current time and uptime.

        Returns:
            Dictionary with status "ok", the service version, an ISO-8601
            timestamp and the uptime in seconds.
        """
        return {
            "status": "ok",
            "version": VERSION,
            "timestamp": db_models.utc_now_iso(),
            "uptime": round(time.monotonic() - started, 3),
        }

    logger.info(
        "Tile server %s ready: data in %s, tiles in %s",
        VERSION,
        settings.data_dir,
        settings.tiles_dir,
    )
    return app


app = create_app()
