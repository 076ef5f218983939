"""Pulse Insights — FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from pulse import __version__
from pulse.config import get_config
from pulse.db.engine import Database
from pulse.insights.gateway import InsightGateway
from pulse.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)

    logger.info(
        "pulse.starting",
        version=__version__,
        model=config.llm.model,
        ai_enabled=bool(config.llm.api_key),
    )

    # Local invocation log store, only when configured
    db = None
    if config.ai_log.database_path and not config.ai_log.rest_enabled:
        db = Database(config.ai_log.database_path)
        await db.initialize()

    insights = InsightGateway.from_config(config, db=db)

    app.state.config = config
    app.state.db = db
    app.state.insights = insights

    logger.info(
        "pulse.ready",
        digest_cache_ttl_s=config.insights.digest_cache_ttl_s,
        audit_log=insights.audit.enabled,
    )

    yield

    logger.info("pulse.shutting_down")
    if db is not None:
        await db.close()
    logger.info("pulse.stopped")


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="Pulse Insights",
        version=__version__,
        description="AI digests, next steps and contact summaries for Pulse CRM.",
        lifespan=lifespan,
    )

    from pulse.api.routes.health import router as health_router
    from pulse.api.routes.insights import router as insights_router

    app.include_router(health_router, tags=["health"])
    app.include_router(insights_router, tags=["insights"])

    return app


app = create_app()


def main() -> None:
    """Run the server directly."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)
    uvicorn.run(
        "pulse.main:app",
        host=config.host,
        port=config.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
