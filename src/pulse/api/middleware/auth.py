"""Optional shared-key protection for the insight endpoints."""

from __future__ import annotations

import secrets

import structlog
from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

logger = structlog.get_logger()

API_KEY_HEADER = "X-API-Key"

_api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def verify_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str | None:
    """Reject the request unless it carries ``PULSE_API_KEY``.

    With no key configured the CRM frontend calls the gateway directly and
    every request passes.
    """
    expected = request.app.state.config.api_key
    if not expected:
        return None

    client = request.client.host if request.client else None
    if not api_key:
        logger.warning("auth.missing_key", path=request.url.path, client=client)
        raise HTTPException(status_code=401, detail=f"Missing API key. Provide the {API_KEY_HEADER} header.")

    if not secrets.compare_digest(api_key.encode(), expected.encode()):
        logger.warning("auth.invalid_key", path=request.url.path, client=client)
        raise HTTPException(status_code=403, detail="Invalid API key.")

    return api_key
