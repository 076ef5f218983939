"""Invocation audit log — one best-effort record per gateway call."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

import httpx
import structlog

from pulse.config import AILogConfig
from pulse.db.engine import Database

logger = structlog.get_logger()

LogStatus = Literal["success", "fallback", "error", "cache-hit"]


@dataclass
class InvocationLogRecord:
    """Write-once audit row. The gateway never reads these back."""

    job: str
    status: LogStatus
    provider: str | None = None
    elapsed_ms: int | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    used_fallback: bool | None = None
    payload_hash: str | None = None
    metadata: dict[str, Any] | None = None
    error_message: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


class LogSink(Protocol):
    async def write(self, row: dict[str, Any]) -> None: ...


class SqliteLogSink:
    """Appends rows to the local ``ai_logs`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def write(self, row: dict[str, Any]) -> None:
        await self.db.ai_log_insert(row)


class RestLogSink:
    """Inserts rows through a PostgREST endpoint (e.g. Supabase)."""

    def __init__(self, *, url: str, service_key: str, table: str = "ai_logs", timeout_s: float = 5.0) -> None:
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self.service_key = service_key
        self.timeout_s = timeout_s

    async def write(self, row: dict[str, Any]) -> None:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Prefer": "return=minimal",
        }
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_s)) as client:
            response = await client.post(self.endpoint, json=row, headers=headers)
            response.raise_for_status()


def build_log_sink(config: AILogConfig, db: Database | None = None) -> LogSink | None:
    """Pick the configured sink. ``None`` means logging is disabled."""
    if config.rest_enabled:
        return RestLogSink(
            url=config.rest_url,
            service_key=config.rest_service_key,
            table=config.table,
            timeout_s=config.timeout_s,
        )
    if db is not None:
        return SqliteLogSink(db)
    return None


class InvocationLogger:
    """Best-effort writer: never raises, never changes the caller's result."""

    def __init__(self, sink: LogSink | None = None, *, timeout_s: float = 5.0) -> None:
        self.sink = sink
        self.timeout_s = timeout_s

    @property
    def enabled(self) -> bool:
        return self.sink is not None

    async def record(self, record: InvocationLogRecord) -> None:
        if self.sink is None:
            return
        try:
            await asyncio.wait_for(self.sink.write(record.to_row()), timeout=self.timeout_s)
        except Exception as exc:
            logger.warning(
                "ai.log.persist_failed",
                job=record.job,
                status=record.status,
                error=str(exc) or type(exc).__name__,
            )
