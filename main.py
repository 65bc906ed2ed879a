import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from plugin_server.config import settings
from plugin_server.database import create_tables, engine
from plugin_server.exception_handlers import register_exception_handlers
from plugin_server.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from plugin_server.plugins.backend import BackendPluginClient
from plugin_server.plugins.registry import create_plugin_registry
from plugin_server.routes import dashboards, plugins

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Tasks to run at application startup and shutdown."""
    logger.info("Starting %s v%s (%s)", settings.app_name, settings.app_version, settings.environment)

    if settings.auto_create_tables:
        await create_tables()

    registry = create_plugin_registry(settings)
    await registry.load_all()
    if settings.check_for_plugin_updates:
        await registry.refresh_catalog_versions()

    app.state.plugin_registry = registry
    app.state.backend_client = BackendPluginClient(
        settings.backend_plugin_addresses,
        timeout=settings.plugin_request_timeout,
    )

    yield

    logger.info("Shutting down the application...")
    await engine.dispose()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    setup_structured_logging(
        log_level=settings.log_level,
        json_format=settings.log_json,
        log_file=settings.log_file,
    )

    app = FastAPI(
        title=settings.app_name,
        description="Plugin management and backend plugin gateway",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.add_middleware(StructuredLoggingMiddleware)

    app.include_router(plugins.router)
    app.include_router(plugins.public_router)
    app.include_router(dashboards.router)

    if settings.debug:
        logger.info("Running in %s mode", settings.environment)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.is_development)
