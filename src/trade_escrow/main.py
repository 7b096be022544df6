"""FastAPI application for the Trade Escrow service.

One Uvicorn process serves:
    /api/v1/escrow     REST lifecycle, chat, mediation and change stream
    /api/v1/assistant  quick advice
    /mcp               the same escrow operations as MCP tools
    /health            database and Redis probes

Startup order matters: logging first so every later step is traced, then the
database (tables are created if missing), then Redis. Redis is optional; if it
cannot be reached the service keeps mediation state in-process and skips
change notifications, and /health reports "degraded".

Run with:
    uv run uvicorn trade_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from trade_escrow.config import get_settings
from trade_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from trade_escrow.config import Settings

APP_VERSION = "0.1.0"

logger = get_logger(__name__)


async def _connect_redis(settings: Settings) -> bool:
    from trade_escrow.infrastructure.redis_client import init_redis

    if not settings.redis_enabled:
        logger.info("app.redis_disabled", fallback="in-process")
        return False
    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc), fallback="in-process")
        return False
    return True


def _log_escrow_terms(settings: Settings) -> None:
    logger.info(
        "app.escrow_terms",
        commission_rate=str(settings.commission_rate),
        currency=settings.currency,
        delivery_confirmation=settings.escrow_require_delivery_confirmation,
        mediation_model=settings.litellm_model,
        mediation_timeout_seconds=settings.mediation_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Bring up logging, the database and Redis; tear them down in reverse."""
    from trade_escrow.infrastructure.database.engine import close_db, init_db
    from trade_escrow.infrastructure.redis_client import close_redis

    settings = get_settings()
    setup_logging(settings)
    logger.info("app.starting", env=settings.app_env, version=APP_VERSION)
    _log_escrow_terms(settings)

    await init_db()
    redis_ready = await _connect_redis(settings)

    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        notifications=redis_ready,
    )
    yield

    logger.info("app.shutting_down")
    await close_redis()
    await close_db()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Build the app: middleware, REST routers, then the MCP sub-application."""
    from trade_escrow.api.middleware import setup_middleware
    from trade_escrow.api.routes.assistant import router as assistant_router
    from trade_escrow.api.routes.escrow import router as escrow_router
    from trade_escrow.api.routes.health import router as health_router
    from trade_escrow.mcp_server.tools import mcp

    settings = get_settings()
    docs_enabled = settings.is_development

    app = FastAPI(
        title="Trade Escrow",
        description=(
            "Two-party trade escrow: the buyer's payment is held until the seller "
            "delivers, with per-transaction chat and AI-assisted dispute mediation."
        ),
        version=APP_VERSION,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
    )

    setup_middleware(app)

    for router in (health_router, escrow_router, assistant_router):
        app.include_router(router)

    # Tools share the service layer with the REST routes
    app.mount("/mcp", mcp.sse_app())

    return app


app = create_app()
