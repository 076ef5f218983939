"""Insight gateway data model.

Completion plumbing uses plain dataclasses; the request/result payloads that
cross the HTTP boundary are pydantic models with camelCase aliases, matching
what the CRM client sends (``fallbackText``, ``topDeals``, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ChatRole = Literal["system", "user", "assistant"]
ResponseFormat = Literal["json", "text"]
DigestTimeframe = Literal["today", "week", "month"]


# ── Completion plumbing ─────────────────────────────────────────────


@dataclass(frozen=True)
class ChatMessage:
    """A single message sent verbatim to the upstream model."""

    role: ChatRole
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class CompletionRequest:
    """One completion call. Built per call, never mutated."""

    messages: tuple[ChatMessage, ...]
    model: str
    max_tokens: int
    temperature: float = 0.4
    response_format: ResponseFormat = "json"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenUsage:
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass
class CompletionResult:
    """Outcome of one successful upstream call."""

    content: str | None
    raw: Any
    usage: TokenUsage | None
    elapsed_ms: int
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def model(self) -> str | None:
        """Model identifier reported by the upstream, if any."""
        value = getattr(self.raw, "model", None)
        if value is None and isinstance(self.raw, dict):
            value = self.raw.get("model")
        return value if isinstance(value, str) and value else None


# ── API payloads ────────────────────────────────────────────────────


class CamelModel(BaseModel):
    """Base for payloads exchanged with the CRM client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DigestStats(CamelModel):
    hot_deals: int = Field(default=0, ge=0)
    risk_deals: int = Field(default=0, ge=0)
    overdue_tasks: int = Field(default=0, ge=0)


class DigestDealSnapshot(CamelModel):
    id: str
    title: str
    company: str | None = None
    amount: float | None = None
    stage: str
    priority: str
    risk: str
    next_step: str | None = None
    target_close_date: str | None = None


class DigestAlertSnapshot(CamelModel):
    id: str
    message: str
    recommended_action: str = ""
    severity: str
    priority: str


class DigestRequest(CamelModel):
    timeframe: DigestTimeframe
    stats: DigestStats
    top_deals: list[DigestDealSnapshot] = Field(default_factory=list)
    alerts: list[DigestAlertSnapshot] = Field(default_factory=list)
    fallback_text: str


class DigestResult(CamelModel):
    headline: str | None = None
    summary: list[str] | None = None
    actions: list[str] | None = None
    content: str | None = None
    provider: str
    used_fallback: bool
    error: str | None = None


class NextStepDealSnapshot(CamelModel):
    id: str
    title: str
    company: str | None = None
    stage: str
    probability: float | None = None
    priority: str | None = None
    risk: str | None = None
    amount: float | None = None
    next_step: str | None = None
    last_activity: str | None = None
    target_close_date: str | None = None


class NextStepContext(CamelModel):
    reasons: list[str] = Field(default_factory=list)
    inactivity_days: int | None = None
    owner: str | None = None


class NextStepRequest(CamelModel):
    deal: NextStepDealSnapshot
    context: NextStepContext | None = None
    fallback_text: str


class NextStepResult(CamelModel):
    next_step: str | None = None
    rationale: list[str] | None = None
    content: str | None = None
    provider: str
    used_fallback: bool
    error: str | None = None


class ContactDealSnapshot(CamelModel):
    id: str
    title: str
    stage: str
    status: str
    amount: float | None = None
    priority: str | None = None
    last_activity: str | None = None


class ContactSnapshot(CamelModel):
    id: str
    name: str
    company: str | None = None
    role: str | None = None
    last_activity: str | None = None
    owner: str | None = None
    deals: list[ContactDealSnapshot] = Field(default_factory=list)


class ContactSummaryRequest(CamelModel):
    contact: ContactSnapshot
    fallback_text: str


class ContactSummaryResult(CamelModel):
    headline: str | None = None
    highlights: list[str] | None = None
    content: str | None = None
    provider: str
    used_fallback: bool
    error: str | None = None
