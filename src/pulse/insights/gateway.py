"""Insight gateway — cache, completion call, normalization and fallbacks.

Every public method is total: whatever happens upstream, the caller gets a
typed result carrying displayable content. Degraded answers are flagged
through ``used_fallback``/``provider``/``error``, never raised.

    cache check -> (hit) return cached
                -> (miss) call -> normalize -> (ok) store + return
                                            -> (fail) fallback
"""

from __future__ import annotations

from typing import Any

import structlog

from pulse.config import InsightsConfig, PulseConfig
from pulse.db.engine import Database
from pulse.insights.audit import InvocationLogger, InvocationLogRecord, LogStatus, build_log_sink
from pulse.insights.cache import DigestCache, digest_cache_key
from pulse.insights.client import CompletionClient, build_messages
from pulse.insights.errors import ContentEmptyError, ContentError, MissingCredential, UpstreamError
from pulse.insights.fallback import (
    contact_summary_fallback_text,
    digest_fallback_text,
    next_step_fallback_text,
)
from pulse.insights.models import (
    CompletionRequest,
    CompletionResult,
    ContactSummaryRequest,
    ContactSummaryResult,
    DigestRequest,
    DigestResult,
    NextStepRequest,
    NextStepResult,
)
from pulse.insights.normalizers import (
    flatten_digest,
    normalize_contact_summary,
    normalize_digest,
    normalize_next_step,
)
from pulse.insights.prompts import (
    CONTACT_SUMMARY_SYSTEM_PROMPT,
    DIGEST_SYSTEM_PROMPT,
    NEXT_STEP_SYSTEM_PROMPT,
    build_contact_summary_prompt,
    build_digest_prompt,
    build_next_step_prompt,
)

logger = structlog.get_logger()

PROVIDER_FALLBACK = "fallback"
PROVIDER_FALLBACK_ERROR = "fallback-error"


def _classify_failure(exc: Exception) -> tuple[str, LogStatus]:
    """Missing key and unusable content are plain fallbacks; the rest are errors."""
    if isinstance(exc, (MissingCredential, ContentError)):
        return PROVIDER_FALLBACK, "fallback"
    return PROVIDER_FALLBACK_ERROR, "error"


class InsightGateway:
    """Generates digests, next steps and contact summaries for the CRM."""

    def __init__(
        self,
        *,
        client: CompletionClient,
        audit: InvocationLogger | None = None,
        cache: DigestCache | None = None,
        config: InsightsConfig | None = None,
        model: str = "openai/gpt-4o-mini",
        max_tokens: int = 700,
    ) -> None:
        self.config = config or InsightsConfig()
        self.client = client
        self.audit = audit or InvocationLogger()
        self.cache = cache if cache is not None else DigestCache(self.config.digest_cache_ttl_s)
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_config(cls, config: PulseConfig, db: Database | None = None) -> InsightGateway:
        """Wire client, cache and audit log from the root configuration."""
        sink = build_log_sink(config.ai_log, db)
        return cls(
            client=CompletionClient(config.llm),
            audit=InvocationLogger(sink, timeout_s=config.ai_log.timeout_s),
            cache=DigestCache(config.insights.digest_cache_ttl_s),
            config=config.insights,
            model=config.llm.model,
            max_tokens=config.llm.max_tokens,
        )

    # ── Digest ──────────────────────────────────────────────────────

    async def generate_digest(self, payload: DigestRequest) -> DigestResult:
        cache_key, payload_hash = digest_cache_key(payload)
        metadata = {"timeframe": payload.timeframe}

        logger.info(
            "ai.digest.start",
            timeframe=payload.timeframe,
            deals=len(payload.top_deals),
            alerts=len(payload.alerts),
        )

        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info("ai.digest.cache_hit", timeframe=payload.timeframe, payload_hash=payload_hash)
            await self._record(
                InvocationLogRecord(
                    job="digest",
                    status="cache-hit",
                    provider=cached.response.provider,
                    used_fallback=cached.response.used_fallback,
                    payload_hash=payload_hash,
                    metadata=metadata,
                )
            )
            return cached.response

        try:
            result = await self._complete(
                job="digest",
                system=DIGEST_SYSTEM_PROMPT,
                prompt=build_digest_prompt(payload, max_items=self.config.prompt_max_items),
                temperature=self.config.digest_temperature,
                metadata=metadata,
            )
            fields = normalize_digest(result.content)
            content = fields.content or flatten_digest(fields)
            if not content.strip():
                raise ContentEmptyError("Model returned no displayable digest content")
        except Exception as exc:
            provider, error = await self._fail("digest", exc, payload_hash, metadata)
            return DigestResult(
                content=digest_fallback_text(payload),
                provider=provider,
                used_fallback=True,
                error=error,
            )

        response = DigestResult(
            headline=fields.headline,
            summary=fields.summary,
            actions=fields.actions,
            content=content,
            provider=result.model or self.model,
            used_fallback=False,
        )
        self.cache.put(cache_key, response, payload_hash)

        await self._record_success(
            "digest",
            result,
            response.provider,
            payload_hash,
            {**metadata, "deals": len(payload.top_deals), "alerts": len(payload.alerts)},
        )
        return response

    # ── Next step ───────────────────────────────────────────────────

    async def generate_next_step(self, payload: NextStepRequest) -> NextStepResult:
        deal = payload.deal
        metadata = {"deal_id": deal.id, "stage": deal.stage, "risk": deal.risk}

        try:
            result = await self._complete(
                job="next-step",
                system=NEXT_STEP_SYSTEM_PROMPT,
                prompt=build_next_step_prompt(payload),
                temperature=self.config.next_step_temperature,
                metadata=metadata,
            )
            fields = normalize_next_step(result.content)
        except Exception as exc:
            provider, error = await self._fail("next-step", exc, deal.id, metadata)
            text = next_step_fallback_text(payload)
            return NextStepResult(
                next_step=text,
                content=text,
                provider=provider,
                used_fallback=True,
                error=error,
            )

        response = NextStepResult(
            next_step=fields.next_step,
            rationale=fields.rationale,
            content="\n".join([fields.next_step, *(fields.rationale or [])]),
            provider=result.model or self.model,
            used_fallback=False,
        )
        await self._record_success("next-step", result, response.provider, deal.id, metadata)
        return response

    # ── Contact summary ─────────────────────────────────────────────

    async def generate_contact_summary(self, payload: ContactSummaryRequest) -> ContactSummaryResult:
        contact = payload.contact
        metadata = {"contact_id": contact.id, "company": contact.company}

        try:
            result = await self._complete(
                job="contact-summary",
                system=CONTACT_SUMMARY_SYSTEM_PROMPT,
                prompt=build_contact_summary_prompt(payload),
                temperature=self.config.contact_summary_temperature,
                metadata=metadata,
            )
            fields = normalize_contact_summary(result.content)
        except Exception as exc:
            provider, error = await self._fail("contact-summary", exc, contact.id, metadata)
            text = contact_summary_fallback_text(payload)
            return ContactSummaryResult(
                highlights=[text],
                content=text,
                provider=provider,
                used_fallback=True,
                error=error,
            )

        lines = [fields.headline, *(fields.highlights or [])]
        response = ContactSummaryResult(
            headline=fields.headline,
            highlights=fields.highlights,
            content="\n".join(line for line in lines if line),
            provider=result.model or self.model,
            used_fallback=False,
        )
        await self._record_success("contact-summary", result, response.provider, contact.id, metadata)
        return response

    # ── Internals ───────────────────────────────────────────────────

    async def _complete(
        self,
        *,
        job: str,
        system: str,
        prompt: str,
        temperature: float,
        metadata: dict[str, Any],
    ) -> CompletionResult:
        request = CompletionRequest(
            messages=build_messages(system, prompt),
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=temperature,
            response_format="json",
            metadata={"job": job, **metadata},
        )
        return await self.client.call(request)

    async def _fail(
        self,
        job: str,
        exc: Exception,
        payload_hash: str,
        metadata: dict[str, Any],
    ) -> tuple[str, str]:
        """Log the failure, write the audit record, return (provider, error)."""
        provider, status = _classify_failure(exc)
        message = str(exc) or type(exc).__name__

        if isinstance(exc, MissingCredential):
            logger.warning(f"ai.{job}.missing_key")
        elif isinstance(exc, ContentError):
            logger.warning(f"ai.{job}.unusable_content", error=message)
        elif isinstance(exc, UpstreamError):
            logger.error(f"ai.{job}.request_error", error=message, status=exc.status)
        else:
            logger.error(f"ai.{job}.error", error=message, exc_info=exc)

        await self._record(
            InvocationLogRecord(
                job=job,
                status=status,
                provider=provider,
                used_fallback=True,
                payload_hash=payload_hash,
                metadata=metadata,
                error_message=message,
            )
        )
        return provider, message

    async def _record_success(
        self,
        job: str,
        result: CompletionResult,
        provider: str,
        payload_hash: str,
        metadata: dict[str, Any],
    ) -> None:
        usage = result.usage
        await self._record(
            InvocationLogRecord(
                job=job,
                status="success",
                provider=provider,
                elapsed_ms=result.elapsed_ms,
                prompt_tokens=usage.prompt_tokens if usage else None,
                completion_tokens=usage.completion_tokens if usage else None,
                total_tokens=usage.total_tokens if usage else None,
                used_fallback=False,
                payload_hash=payload_hash,
                metadata=metadata,
            )
        )

    async def _record(self, record: InvocationLogRecord) -> None:
        try:
            await self.audit.record(record)
        except Exception as exc:
            logger.warning("ai.log.record_failed", job=record.job, error=str(exc))
