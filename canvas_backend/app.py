"""
Canvas backend application.

FastAPI application wiring: settings, logging, database, tool registry and
the streaming services, all owned by the lifespan and stored on ``app.state``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from . import __version__
from .api import router as api_router
from .core.exceptions import setup_exception_handlers
from .core.logging import get_logger, setup_logging
from .core.middleware import RequestContextMiddleware
from .core.settings import Settings, get_settings
from .db.migrations import run_data_migrations
from .db.session import create_tables, make_engine, make_session_factory
from .services import AgentPermissionService, ArtifactPipeline, ArtifactStore, ToolRunService
from .tools import InvocationTracker, McpToolProvider, ToolExecutor, ToolProvider, ToolRegistry
from .tools.builtin import build_artifact_provider

logger = get_logger(__name__)


def _build_providers(settings: Settings, extra: Iterable[ToolProvider]):
    artifact_provider, handlers = build_artifact_provider(timeout_s=settings.tool_timeout_seconds)
    providers: list[ToolProvider] = [artifact_provider]
    for server in settings.mcp_servers_list:
        providers.append(
            McpToolProvider(server["id"], server["url"], timeout=settings.provider_timeout_seconds)
        )
    providers.extend(extra)
    return providers, handlers


def _make_lifespan(extra_providers: Iterable[ToolProvider]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        settings: Settings = app.state.settings

        # Startup
        setup_logging(
            level=settings.log_level,
            json_output=settings.log_json,
            log_file=settings.log_file or None,
        )
        logger.info(
            "Starting canvas backend",
            data={
                "environment": settings.environment,
                "cors_origins": settings.cors_origins_list,
                "mcp_servers": [s["id"] for s in settings.mcp_servers_list],
            },
        )

        engine = make_engine(settings.database_url, echo=settings.database_echo)
        if settings.auto_create_tables:
            await create_tables(engine)
            logger.info("Database tables created")

        # Enable WAL for SQLite
        if settings.database_url.startswith("sqlite") and ":memory:" not in settings.database_url:
            async with engine.begin() as conn:
                await conn.execute(text("PRAGMA journal_mode=WAL"))

        session_factory = make_session_factory(engine)
        if settings.run_data_migrations:
            await run_data_migrations(session_factory)

        providers, handlers = _build_providers(settings, extra_providers)
        registry = ToolRegistry(
            providers,
            cache_ttl_s=settings.registry_cache_ttl_seconds,
            provider_timeout_s=settings.provider_timeout_seconds,
        )
        await registry.start()

        executor = ToolExecutor(
            default_timeout_s=settings.tool_timeout_seconds,
            per_event_timeout=settings.tool_per_event_timeout,
            cleanup_grace_s=settings.tool_cleanup_grace_seconds,
        )
        tracker = InvocationTracker()
        store = ArtifactStore(
            session_factory,
            max_attempts=settings.version_write_attempts,
            backoff_seconds=settings.version_write_backoff_seconds,
        )
        permissions = AgentPermissionService(session_factory, readonly_shared=settings.readonly_agents_shared)

        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.tool_registry = registry
        app.state.invocation_tracker = tracker
        app.state.artifact_store = store
        app.state.agent_permissions = permissions
        app.state.tool_runs = ToolRunService(session_factory, registry, executor, tracker, store, permissions)
        app.state.artifact_pipeline = ArtifactPipeline(store, registry, executor, tracker, handlers)
        app.state.start_time = datetime.now(UTC)

        yield

        # Shutdown
        logger.info("Shutting down canvas backend")
        await tracker.drain(settings.shutdown_drain_seconds)
        await registry.aclose()
        await engine.dispose()
        logger.info("Database engine disposed")

    return lifespan


def create_app(settings: Settings | None = None, extra_providers: Iterable[ToolProvider] = ()) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Canvas Backend",
        description="Artifact documents, tool execution and agent sharing over SSE",
        version=__version__,
        lifespan=_make_lifespan(list(extra_providers)),
    )
    app.state.settings = settings

    # Setup exception handlers (must be before middleware)
    setup_exception_handlers(app)

    # Raw ASGI middleware only: BaseHTTPMiddleware buffers SSE bodies
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Last-Event-ID", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    app.include_router(api_router)
    return app
