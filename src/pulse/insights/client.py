"""Completion client — one LiteLLM call per invocation, no retries."""

from __future__ import annotations

import time
from typing import Any

import litellm
import structlog

from pulse.config import LLMConfig
from pulse.insights.errors import MissingCredential, UpstreamError
from pulse.insights.models import ChatMessage, CompletionRequest, CompletionResult, TokenUsage

logger = structlog.get_logger()

# Suppress litellm's noisy logging
litellm.suppress_debug_info = True
litellm.drop_params = True

_RESPONSE_FORMATS = {
    "json": {"type": "json_object"},
    "text": {"type": "text"},
}


def build_messages(system: str, user: str) -> tuple[ChatMessage, ...]:
    """System + user pair used by every insight job."""
    return (
        ChatMessage(role="system", content=system),
        ChatMessage(role="user", content=user),
    )


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _first_content(response: Any) -> str | None:
    choices = _field(response, "choices") or []
    if not choices:
        return None
    message = _field(choices[0], "message")
    content = _field(message, "content") if message is not None else None
    return content if isinstance(content, str) else None


def _usage(response: Any) -> TokenUsage | None:
    usage = _field(response, "usage")
    if not usage:
        return None
    return TokenUsage(
        prompt_tokens=_field(usage, "prompt_tokens"),
        completion_tokens=_field(usage, "completion_tokens"),
        total_tokens=_field(usage, "total_tokens"),
    )


class CompletionClient:
    """Issues chat completions against an OpenAI-compatible endpoint."""

    def __init__(self, config: LLMConfig) -> None:
        self.config = config
        self.total_tokens_used = 0
        self.request_count = 0

    @property
    def has_credential(self) -> bool:
        return bool(self.config.api_key)

    async def call(self, request: CompletionRequest) -> CompletionResult:
        """Send one completion request.

        Raises ``MissingCredential`` before any network activity when no API key
        is configured, and ``UpstreamError`` when the call fails. A response
        without content is returned as ``content=None``.
        """
        if not self.config.api_key:
            raise MissingCredential()

        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": [message.to_dict() for message in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "response_format": _RESPONSE_FORMATS[request.response_format],
            "api_key": self.config.api_key,
            "api_base": self.config.api_base,
            "timeout": self.config.timeout_s,
            "num_retries": 0,
            "max_retries": 0,
        }

        start = time.monotonic()
        self.request_count += 1
        request_id = self.request_count

        logger.info(
            "llm.request",
            request_id=request_id,
            model=request.model,
            message_count=len(request.messages),
            **request.metadata,
        )

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            status = getattr(e, "status_code", None)
            logger.error(
                "llm.error",
                request_id=request_id,
                model=request.model,
                status=status,
                body=str(e)[:500],
                **request.metadata,
            )
            label = f"status {status}" if status else type(e).__name__
            raise UpstreamError(f"Completion request failed: {label}", status=status) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        usage = _usage(response)
        if usage and usage.total_tokens:
            self.total_tokens_used += usage.total_tokens

        logger.info(
            "llm.response",
            request_id=request_id,
            tokens=usage.total_tokens if usage else None,
            duration=f"{elapsed_ms / 1000:.2f}s",
        )

        return CompletionResult(
            content=_first_content(response),
            raw=response,
            usage=usage,
            elapsed_ms=elapsed_ms,
            metadata=dict(request.metadata),
        )

    @property
    def stats(self) -> dict[str, Any]:
        """Return usage statistics."""
        return {
            "total_tokens": self.total_tokens_used,
            "request_count": self.request_count,
            "model": self.config.model,
        }
