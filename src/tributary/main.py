"""FastAPI application factory and lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from tributary.config import Settings, settings
from tributary.db.engine import create_db_engine, create_session_factory
from tributary.integrations.bootstrap import build_registry
from tributary.logging_config import configure_logging
from tributary.services.connection_service import ConnectionService
from tributary.services.ingestion_pipeline import IngestionPipeline
from tributary.services.sync_orchestrator import SyncOrchestrator
from tributary.services.webhook_receiver import WebhookReceiver

configure_logging(log_level=settings.log_level, json_output=not settings.local_mode)

logger = logging.getLogger(__name__)


async def _create_sqlite_schema(engine: AsyncEngine) -> None:
    from tributary.db.base import Base
    import tributary.db.models  # noqa: F401  register all ORM models

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("SQLite tables created (local mode)")


def _wire_services(app: FastAPI, engine: AsyncEngine, app_settings: Settings) -> None:
    """One registry and one pipeline shared by every service on ``app.state``."""
    session_factory = create_session_factory(engine)
    registry = build_registry(app_settings)
    pipeline = IngestionPipeline()

    app.state.settings = app_settings
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    app.state.registry = registry
    app.state.orchestrator = SyncOrchestrator(registry, session_factory, app_settings, pipeline)
    app.state.connections = ConnectionService(registry, session_factory, app_settings)
    app.state.webhook_receiver = WebhookReceiver(registry, session_factory, app_settings, pipeline)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_url = settings.effective_database_url
    is_sqlite = "sqlite" in db_url
    engine = create_db_engine(db_url)
    if is_sqlite:
        await _create_sqlite_schema(engine)

    _wire_services(app, engine, settings)

    app.state.scheduler_task = None
    if settings.scheduler_enabled:
        from tributary.workers.scheduler import run_scheduler
        app.state.scheduler_task = asyncio.create_task(run_scheduler(app))

    logger.info(
        "Tributary API started (db=%s, providers=%d, scheduler=%s)",
        "sqlite" if is_sqlite else "postgresql",
        len(app.state.registry),
        "on" if app.state.scheduler_task else "off",
    )
    yield

    if app.state.scheduler_task is not None:
        app.state.scheduler_task.cancel()
        await asyncio.gather(app.state.scheduler_task, return_exceptions=True)
    await engine.dispose()
    logger.info("Tributary API shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Tributary API",
        version="0.1.0",
        description="Sync engine connecting third-party services to a single ingestion pipeline.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from tributary.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(TraceIdMiddleware)

    from tributary.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    from tributary.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
