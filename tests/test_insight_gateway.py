import asyncio

import litellm
import pytest

from pulse.config import InsightsConfig, LLMConfig
from pulse.insights.audit import InvocationLogger
from pulse.insights.cache import DigestCache
from pulse.insights.client import CompletionClient
from pulse.insights.errors import MissingCredential, UpstreamError
from pulse.insights.gateway import InsightGateway
from pulse.insights.models import (
    CompletionResult,
    ContactSummaryRequest,
    DigestRequest,
    NextStepRequest,
    TokenUsage,
)

DIGEST_JSON = (
    '{"headline": "Semana para cerrar", "summary": "Dos deals calientes.", '
    '"actions": ["Llamar a Acme", {"accion": "Enviar propuesta", "prioridad": "alta"}, "Revisar tareas"]}'
)


class _FakeClient:
    def __init__(self, content: str | None = None, *, error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.calls = []

    async def call(self, request):
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        return CompletionResult(
            content=self.content,
            raw={"model": "gpt-4o-mini-2024-07-18"},
            usage=TokenUsage(prompt_tokens=300, completion_tokens=90, total_tokens=390),
            elapsed_ms=850,
        )


class _MemorySink:
    def __init__(self) -> None:
        self.rows: list[dict] = []

    async def write(self, row: dict) -> None:
        self.rows.append(row)


class _BrokenSink:
    async def write(self, row: dict) -> None:
        raise RuntimeError("log table missing")


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _digest(**overrides) -> DigestRequest:
    data = {
        "timeframe": "today",
        "stats": {"hotDeals": 2, "riskDeals": 1, "overdueTasks": 3},
        "topDeals": [
            {"id": "d1", "title": "Licencias", "amount": 50000, "stage": "Propuesta", "priority": "Hot", "risk": "Bajo"},
            {"id": "d2", "title": "Renovación", "stage": "Demo", "priority": "Warm", "risk": "Alto"},
        ],
        "alerts": [
            {"id": "d2", "message": "Sin actividad", "recommendedAction": "Llamar", "severity": "high", "priority": "alta"}
        ],
        "fallbackText": "Resumen estándar",
    }
    data.update(overrides)
    return DigestRequest.model_validate(data)


def _gateway(client, sink=None, *, ttl: float = 300, clock=None) -> InsightGateway:
    cache = DigestCache(ttl, clock=clock) if clock else DigestCache(ttl)
    return InsightGateway(
        client=client,
        audit=InvocationLogger(sink),
        cache=cache,
        config=InsightsConfig(digest_cache_ttl_s=ttl),
        model="openai/gpt-4o-mini",
        max_tokens=700,
    )


@pytest.mark.asyncio
async def test_digest_without_credential_returns_fallback_without_upstream_call(monkeypatch) -> None:
    async def fail_if_called(**kwargs):
        raise AssertionError("upstream must not be called")

    monkeypatch.setattr(litellm, "acompletion", fail_if_called)
    sink = _MemorySink()
    gateway = _gateway(CompletionClient(LLMConfig(api_key="")), sink)

    result = await gateway.generate_digest(_digest())

    assert result.provider == "fallback"
    assert result.used_fallback is True
    assert result.content == "Resumen estándar"
    assert result.headline is None
    assert result.summary is None
    assert result.actions is None
    assert [row["status"] for row in sink.rows] == ["fallback"]
    assert sink.rows[0]["error_message"]


@pytest.mark.asyncio
async def test_digest_success_normalizes_and_flattens_content() -> None:
    sink = _MemorySink()
    client = _FakeClient(DIGEST_JSON)
    gateway = _gateway(client, sink)

    result = await gateway.generate_digest(_digest())

    assert result.used_fallback is False
    assert result.provider == "gpt-4o-mini-2024-07-18"
    assert result.headline == "Semana para cerrar"
    assert result.summary == ["Dos deals calientes."]
    assert result.actions == ["Llamar a Acme", "Enviar propuesta (Prioridad alta)", "Revisar tareas"]
    assert result.content == (
        "Semana para cerrar\nDos deals calientes.\nLlamar a Acme\nEnviar propuesta (Prioridad alta)\nRevisar tareas"
    )
    assert result.error is None

    request = client.calls[0]
    assert request.temperature == 0.4
    assert request.max_tokens == 700
    assert request.response_format == "json"
    assert request.metadata["job"] == "digest"

    row = sink.rows[0]
    assert row["status"] == "success"
    assert row["total_tokens"] == 390
    assert row["elapsed_ms"] == 850
    assert row["metadata"] == {"timeframe": "today", "deals": 2, "alerts": 1}


@pytest.mark.asyncio
async def test_digest_keeps_model_content_field() -> None:
    gateway = _gateway(_FakeClient('{"headline": "Titular", "content": "Texto completo"}'))

    result = await gateway.generate_digest(_digest())

    assert result.content == "Texto completo"
    assert result.headline == "Titular"


@pytest.mark.asyncio
async def test_identical_digest_within_ttl_hits_cache() -> None:
    sink = _MemorySink()
    client = _FakeClient(DIGEST_JSON)
    gateway = _gateway(client, sink)

    first = await gateway.generate_digest(_digest())
    second = await gateway.generate_digest(_digest(fallbackText="Otro texto"))

    assert len(client.calls) == 1
    assert second == first
    assert [row["status"] for row in sink.rows] == ["success", "cache-hit"]
    assert sink.rows[1]["provider"] == first.provider
    assert sink.rows[1]["payload_hash"] == sink.rows[0]["payload_hash"]


@pytest.mark.asyncio
async def test_different_stats_do_not_share_cache_entry() -> None:
    client = _FakeClient(DIGEST_JSON)
    gateway = _gateway(client)

    await gateway.generate_digest(_digest())
    await gateway.generate_digest(_digest(stats={"hotDeals": 5, "riskDeals": 1, "overdueTasks": 3}))

    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_cache_entry_expires_after_ttl() -> None:
    clock = _Clock()
    client = _FakeClient(DIGEST_JSON)
    gateway = _gateway(client, ttl=300, clock=clock)

    await gateway.generate_digest(_digest())
    clock.now = 299
    await gateway.generate_digest(_digest())
    assert len(client.calls) == 1

    clock.now = 300
    await gateway.generate_digest(_digest())
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_zero_ttl_bypasses_cache() -> None:
    client = _FakeClient(DIGEST_JSON)
    gateway = _gateway(client, ttl=0)

    await gateway.generate_digest(_digest())
    await gateway.generate_digest(_digest())

    assert len(client.calls) == 2
    assert len(gateway.cache) == 0


@pytest.mark.asyncio
async def test_all_null_json_falls_back_and_is_not_cached() -> None:
    sink = _MemorySink()
    client = _FakeClient('{"headline": null, "summary": null, "actions": null}')
    gateway = _gateway(client, sink)

    result = await gateway.generate_digest(_digest())
    await gateway.generate_digest(_digest())

    assert result.used_fallback is True
    assert result.provider == "fallback"
    assert result.content == "Resumen estándar"
    assert result.error
    assert len(client.calls) == 2
    assert [row["status"] for row in sink.rows] == ["fallback", "fallback"]


@pytest.mark.asyncio
async def test_invalid_json_falls_back() -> None:
    result = await _gateway(_FakeClient("not json at all")).generate_digest(_digest())

    assert result.used_fallback is True
    assert result.provider == "fallback"
    assert result.content == "Resumen estándar"


@pytest.mark.asyncio
async def test_missing_content_falls_back() -> None:
    result = await _gateway(_FakeClient(None)).generate_digest(_digest())

    assert result.used_fallback is True
    assert result.content == "Resumen estándar"


@pytest.mark.asyncio
async def test_upstream_error_falls_back_with_error_provider() -> None:
    sink = _MemorySink()
    client = _FakeClient(error=UpstreamError("Completion request failed: status 503", status=503))

    result = await _gateway(client, sink).generate_digest(_digest())

    assert result.provider == "fallback-error"
    assert result.used_fallback is True
    assert result.content == "Resumen estándar"
    assert result.error == "Completion request failed: status 503"
    assert sink.rows[0]["status"] == "error"
    assert sink.rows[0]["error_message"] == result.error


@pytest.mark.asyncio
async def test_unexpected_error_never_reaches_caller() -> None:
    client = _FakeClient(error=KeyError("choices"))

    result = await _gateway(client).generate_digest(_digest())

    assert result.provider == "fallback-error"
    assert result.used_fallback is True
    assert result.error


@pytest.mark.asyncio
async def test_log_failure_does_not_change_result() -> None:
    gateway = _gateway(_FakeClient(DIGEST_JSON), _BrokenSink())

    result = await gateway.generate_digest(_digest())

    assert result.used_fallback is False
    assert result.headline == "Semana para cerrar"


@pytest.mark.asyncio
async def test_blank_fallback_text_is_derived_from_stats() -> None:
    client = _FakeClient(error=MissingCredential())

    result = await _gateway(client).generate_digest(_digest(fallbackText="  "))

    assert result.used_fallback is True
    assert "• Deals Hot abiertos: 2" in result.content
    assert "• Tareas vencidas: 3" in result.content
    assert "Sin actividad (Llamar)" in result.content
    assert "Mayor oportunidad abierta: Licencias (Sin empresa) por €50.000" in result.content


@pytest.mark.asyncio
async def test_prompt_item_limit_comes_from_config() -> None:
    client = _FakeClient(DIGEST_JSON)
    gateway = InsightGateway(client=client, config=InsightsConfig(prompt_max_items=1))

    await gateway.generate_digest(_digest())

    prompt = client.calls[0].messages[1].content
    assert "1. Licencias" in prompt
    assert "Renovación" not in prompt


def _next_step() -> NextStepRequest:
    return NextStepRequest.model_validate(
        {
            "deal": {"id": "d9", "title": "Expansión", "stage": "Negociación", "risk": "Alto"},
            "context": {"reasons": ["Cierre vencido"], "inactivityDays": 9},
            "fallbackText": "Agenda una llamada con el decisor",
        }
    )


@pytest.mark.asyncio
async def test_next_step_success() -> None:
    sink = _MemorySink()
    client = _FakeClient('{"next_step": "Llamar al CFO para cerrar condiciones", "rationale": ["a", "b"]}')

    result = await _gateway(client, sink).generate_next_step(_next_step())

    assert result.used_fallback is False
    assert result.next_step == "Llamar al CFO para cerrar condiciones"
    assert result.rationale == ["a", "b"]
    assert result.content == "Llamar al CFO para cerrar condiciones\na\nb"
    assert client.calls[0].temperature == 0.5
    assert sink.rows[0]["status"] == "success"
    assert sink.rows[0]["payload_hash"] == "d9"


@pytest.mark.asyncio
async def test_next_step_is_not_cached() -> None:
    client = _FakeClient('{"next_step": "Llamar"}')
    gateway = _gateway(client)

    await gateway.generate_next_step(_next_step())
    await gateway.generate_next_step(_next_step())

    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_next_step_fallback_without_credential() -> None:
    sink = _MemorySink()
    client = _FakeClient(error=MissingCredential())

    result = await _gateway(client, sink).generate_next_step(_next_step())

    assert result.used_fallback is True
    assert result.provider == "fallback"
    assert result.next_step == "Agenda una llamada con el decisor"
    assert result.content == "Agenda una llamada con el decisor"
    assert result.rationale is None
    assert sink.rows[0]["status"] == "fallback"
    assert sink.rows[0]["payload_hash"] == "d9"


@pytest.mark.asyncio
async def test_next_step_without_step_field_falls_back() -> None:
    client = _FakeClient('{"rationale": ["solo motivos"]}')

    result = await _gateway(client).generate_next_step(_next_step())

    assert result.used_fallback is True
    assert result.next_step == "Agenda una llamada con el decisor"


def _contact() -> ContactSummaryRequest:
    return ContactSummaryRequest.model_validate(
        {
            "contact": {"id": "c1", "name": "Ana Pérez", "company": "Acme"},
            "fallbackText": "Ana Pérez, sin actividad reciente",
        }
    )


@pytest.mark.asyncio
async def test_contact_summary_success() -> None:
    client = _FakeClient('{"headline": "Reactivar a Ana", "highlights": ["Sin deals abiertos", "Owner: Luis"]}')

    result = await _gateway(client).generate_contact_summary(_contact())

    assert result.used_fallback is False
    assert result.headline == "Reactivar a Ana"
    assert result.highlights == ["Sin deals abiertos", "Owner: Luis"]
    assert result.content == "Reactivar a Ana\nSin deals abiertos\nOwner: Luis"


@pytest.mark.asyncio
async def test_contact_summary_upstream_error_falls_back() -> None:
    sink = _MemorySink()
    client = _FakeClient(error=UpstreamError("Completion request failed: status 500", status=500))

    result = await _gateway(client, sink).generate_contact_summary(_contact())

    assert result.used_fallback is True
    assert result.provider == "fallback-error"
    assert result.headline is None
    assert result.highlights == ["Ana Pérez, sin actividad reciente"]
    assert result.content == "Ana Pérez, sin actividad reciente"
    assert sink.rows[0]["status"] == "error"
    assert sink.rows[0]["payload_hash"] == "c1"


class _YieldingClient(_FakeClient):
    async def call(self, request):
        await asyncio.sleep(0)
        return await super().call(request)


@pytest.mark.asyncio
async def test_digest_with_backticks_in_model_text_is_not_a_fallback() -> None:
    client = _FakeClient('{"summary": "Nota: usa ```json``` en plantillas", "actions": ["Llamar"]}')

    result = await _gateway(client).generate_digest(_digest())

    assert result.used_fallback is False
    assert result.summary == ["Nota: usa ```json``` en plantillas"]
    assert result.actions == ["Llamar"]


@pytest.mark.asyncio
async def test_concurrent_digests_share_cache_safely() -> None:
    client = _YieldingClient(DIGEST_JSON)
    gateway = _gateway(client)
    week = _digest(timeframe="week")
    busy = _digest(stats={"hotDeals": 9, "riskDeals": 0, "overdueTasks": 0})

    results = await asyncio.gather(
        gateway.generate_digest(_digest()),
        gateway.generate_digest(_digest()),
        gateway.generate_digest(_digest()),
        gateway.generate_digest(week),
        gateway.generate_digest(week),
        gateway.generate_digest(busy),
    )

    assert all(result.used_fallback is False for result in results)
    assert all(result.headline == "Semana para cerrar" for result in results)
    assert len(gateway.cache) == 3

    calls = len(client.calls)
    assert 3 <= calls <= 6
    await gateway.generate_digest(_digest())
    await gateway.generate_digest(week)
    assert len(client.calls) == calls
