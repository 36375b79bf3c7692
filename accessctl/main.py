"""
Main FastAPI application entry point.

This module initializes the access-control service with configuration,
logging, storage and the background expiry sweep, and mounts the v1 API.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from accessctl import __version__
from accessctl.api.v1.router import api_router
from accessctl.config import get_policies_config, reload_config
from accessctl.config.logging import setup_logging
from accessctl.config.settings import get_settings
from accessctl.core.service import AccessControlService
from accessctl.storage import create_store

logger = logging.getLogger(__name__)


def _bootstrap(app: FastAPI) -> AccessControlService:
    settings = get_settings()
    config = reload_config(
        environment=settings.environment,
        config_dir=Path(settings.config_dir) if settings.config_dir else None
    )

    # Environment overrides win over YAML
    if settings.storage_backend:
        config.storage.backend = settings.storage_backend
    if settings.data_dir:
        config.storage.data_dir = settings.data_dir
    if settings.log_level:
        config.server.log_level = settings.log_level
    if settings.log_format:
        config.server.log_format = settings.log_format

    app.state.settings = settings
    app.state.config = config

    setup_logging(
        log_level=config.server.log_level.upper(),
        log_format=config.server.log_format,
        log_file=config.server.log_file,
        enable_access_log=config.server.access_log
    )

    store = create_store(
        config.storage.backend,
        data_dir=config.storage.data_dir,
        compact_threshold=config.storage.compact_threshold,
        fsync=config.storage.fsync
    )
    service = AccessControlService(config.access_control, store)
    service.init(get_policies_config())
    logger.info(
        f"Access control service started ({settings.environment}, "
        f"storage={config.storage.backend})"
    )
    return service


def create_app(service: Optional[AccessControlService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: An already initialized service. When omitted the lifespan
                 loads configuration and builds one from settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        owned = service is None
        active = _bootstrap(app) if owned else service
        app.state.access_control = active

        if owned and app.state.settings.sweep_enabled:
            await active.start_sweeper()

        yield

        if owned:
            await active.shutdown()
            logger.info("Access control service stopped")

    app = FastAPI(
        title="accessctl",
        description="Role-based access-control authorization engine",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    if service is not None:
        app.state.access_control = service

    app.include_router(api_router)

    @app.get("/")
    async def read_root():
        return {"message": "accessctl authorization engine", "version": __version__}

    return app


app = create_app()
