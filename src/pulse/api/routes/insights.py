"""Insight endpoints consumed by the CRM dashboard."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from pulse.api.middleware.auth import verify_api_key
from pulse.insights.models import ContactSummaryRequest, DigestRequest, NextStepRequest

router = APIRouter(prefix="/api/ai")


@router.post("/digest")
async def digest(
    request: Request,
    body: DigestRequest,
    _api_key: str | None = Depends(verify_api_key),
) -> dict[str, Any]:
    """Pipeline digest for a timeframe. Falls back to ``fallbackText``."""
    result = await request.app.state.insights.generate_digest(body)
    return {"success": True, "digest": result.model_dump(by_alias=True)}


@router.post("/next-step")
async def next_step(
    request: Request,
    body: NextStepRequest,
    _api_key: str | None = Depends(verify_api_key),
) -> dict[str, Any]:
    result = await request.app.state.insights.generate_next_step(body)
    return {"success": True, "suggestion": result.model_dump(by_alias=True)}


@router.post("/contact-summary")
async def contact_summary(
    request: Request,
    body: ContactSummaryRequest,
    _api_key: str | None = Depends(verify_api_key),
) -> dict[str, Any]:
    result = await request.app.state.insights.generate_contact_summary(body)
    return {"success": True, "summary": result.model_dump(by_alias=True)}
