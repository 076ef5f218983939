"""Health check endpoint."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from pulse import __version__

router = APIRouter()

_start_time = time.time()


@router.get("/health")
async def health(request: Request) -> dict:
    """Health check — returns status, uptime, model and cache info."""
    config = request.app.state.config
    insights = request.app.state.insights

    return {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round(time.time() - _start_time, 1),
        "model": config.llm.model,
        "ai_enabled": bool(config.llm.api_key),
        "llm_stats": insights.client.stats,
        "digest_cache": {
            "enabled": insights.cache.enabled,
            "ttl_seconds": insights.cache.ttl_seconds,
            "entries": len(insights.cache),
        },
        "audit_log_enabled": insights.audit.enabled,
    }
