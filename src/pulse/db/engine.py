"""SQLite async database — local store for AI invocation logs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

logger = structlog.get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS ai_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job TEXT NOT NULL,
    status TEXT NOT NULL,
    provider TEXT,
    elapsed_ms INTEGER,
    prompt_tokens INTEGER,
    completion_tokens INTEGER,
    total_tokens INTEGER,
    used_fallback INTEGER,
    payload_hash TEXT,
    metadata TEXT,
    error_message TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ai_logs_job ON ai_logs(job);
CREATE INDEX IF NOT EXISTS idx_ai_logs_created_at ON ai_logs(created_at);
"""

_AI_LOG_COLUMNS = (
    "job",
    "status",
    "provider",
    "elapsed_ms",
    "prompt_tokens",
    "completion_tokens",
    "total_tokens",
    "used_fallback",
    "payload_hash",
    "metadata",
    "error_message",
    "created_at",
)


class Database:
    """Async SQLite database for Pulse Insights."""

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        if not db_path:
            raise ValueError("Database path is required")
        self.db_path = Path(db_path)
        self.busy_timeout_ms = int(busy_timeout_ms)
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create the database file and tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row

        # WAL may fail on network filesystems; DELETE mode still works there.
        try:
            await self._conn.execute("PRAGMA journal_mode=WAL")
        except Exception as exc:
            logger.warning("db.wal_unavailable_fallback", path=str(self.db_path), error=str(exc))
            await self._conn.execute("PRAGMA journal_mode=DELETE")

        await self._conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()

        logger.info("db.initialized", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("db.closed")

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        assert self._conn, "Database not initialized"
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Fetch all rows."""
        assert self._conn, "Database not initialized"
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    # ── AI invocation logs ──────────────────────────────────────────

    async def ai_log_insert(self, row: dict[str, Any]) -> None:
        """Append one invocation log row. Unknown keys are ignored."""
        values = []
        for column in _AI_LOG_COLUMNS:
            value = row.get(column)
            if column == "metadata" and value is not None:
                value = json.dumps(value, ensure_ascii=False, default=str)
            elif column == "used_fallback" and value is not None:
                value = 1 if value else 0
            values.append(value)
        placeholders = ", ".join("?" for _ in _AI_LOG_COLUMNS)
        await self.execute(
            f"INSERT INTO ai_logs ({', '.join(_AI_LOG_COLUMNS)}) VALUES ({placeholders})",
            tuple(values),
        )

    async def ai_log_list(self, job: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        """Most recent invocation logs, newest first."""
        if job:
            return await self.fetch_all(
                "SELECT * FROM ai_logs WHERE job = ? ORDER BY id DESC LIMIT ?",
                (job, int(limit)),
            )
        return await self.fetch_all("SELECT * FROM ai_logs ORDER BY id DESC LIMIT ?", (int(limit),))
