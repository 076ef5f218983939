"""Digest fingerprinting and the in-process TTL cache."""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from pulse.insights.models import DigestRequest, DigestResult

logger = structlog.get_logger()


def _digest_projection(payload: DigestRequest) -> dict[str, Any]:
    """Only the fields that end up in the rendered prompt."""
    return {
        "timeframe": payload.timeframe,
        "stats": {
            "hotDeals": payload.stats.hot_deals,
            "riskDeals": payload.stats.risk_deals,
            "overdueTasks": payload.stats.overdue_tasks,
        },
        "topDeals": [
            {
                "id": deal.id,
                "stage": deal.stage,
                "priority": deal.priority,
                "risk": deal.risk,
                "amount": deal.amount,
                "nextStep": deal.next_step,
                "targetCloseDate": deal.target_close_date,
            }
            for deal in payload.top_deals
        ],
        "alerts": [
            {
                "id": alert.id,
                "severity": alert.severity,
                "priority": alert.priority,
                "message": alert.message,
            }
            for alert in payload.alerts
        ],
    }


def canonical_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def digest_fingerprint(payload: DigestRequest) -> str:
    """SHA-1 of the canonical prompt-relevant projection."""
    return hashlib.sha1(canonical_json(_digest_projection(payload)).encode("utf-8")).hexdigest()


def digest_cache_key(payload: DigestRequest) -> tuple[str, str]:
    """Return ``(cache_key, payload_hash)``; the key is ``timeframe:hash``."""
    payload_hash = digest_fingerprint(payload)
    return f"{payload.timeframe}:{payload_hash}", payload_hash


@dataclass(frozen=True)
class CacheEntry:
    response: DigestResult
    expires_at: float
    payload_hash: str


class DigestCache:
    """Process-lifetime digest cache with lazy expiry.

    Entries are immutable; a store replaces the whole entry under the lock.
    ``ttl_seconds <= 0`` disables the cache: ``get`` always misses and ``put``
    is a no-op.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, key: str) -> CacheEntry | None:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                logger.debug("ai.cache.expired", key=key)
                return None
        return CacheEntry(
            response=entry.response.model_copy(deep=True),
            expires_at=entry.expires_at,
            payload_hash=entry.payload_hash,
        )

    def put(self, key: str, response: DigestResult, payload_hash: str) -> None:
        if not self.enabled:
            return
        entry = CacheEntry(
            response=response.model_copy(deep=True),
            expires_at=self._clock() + self.ttl_seconds,
            payload_hash=payload_hash,
        )
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
