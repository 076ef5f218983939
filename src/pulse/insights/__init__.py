"""Insight generation: digests, next steps and contact summaries."""

from pulse.insights.cache import DigestCache, digest_cache_key, digest_fingerprint
from pulse.insights.client import CompletionClient
from pulse.insights.gateway import InsightGateway
from pulse.insights.models import (
    ContactSummaryRequest,
    ContactSummaryResult,
    DigestRequest,
    DigestResult,
    NextStepRequest,
    NextStepResult,
)

__all__ = [
    "CompletionClient",
    "ContactSummaryRequest",
    "ContactSummaryResult",
    "DigestCache",
    "DigestRequest",
    "DigestResult",
    "InsightGateway",
    "NextStepRequest",
    "NextStepResult",
    "digest_cache_key",
    "digest_fingerprint",
]
