"""Heuristic text used when the caller's fallback text is blank."""

from __future__ import annotations

from pulse.insights.models import ContactSummaryRequest, DigestRequest, NextStepRequest
from pulse.insights.prompts import format_amount

DEFAULT_NEXT_STEP = "Agenda una llamada de seguimiento para confirmar el próximo paso del deal."


def digest_fallback_text(payload: DigestRequest) -> str:
    """Caller's text when present, otherwise a stats-based digest."""
    if payload.fallback_text.strip():
        return payload.fallback_text

    stats = payload.stats
    lines = [
        "Resumen del pipeline",
        f"• Deals Hot abiertos: {stats.hot_deals}",
        f"• Deals en riesgo alto: {stats.risk_deals}",
        f"• Tareas vencidas: {stats.overdue_tasks}",
    ]

    if payload.alerts:
        lines.append("• Alertas prioritarias:")
        for alert in payload.alerts[:3]:
            suffix = f" ({alert.recommended_action})" if alert.recommended_action else ""
            lines.append(f"   → {alert.message}{suffix}")
        if len(payload.alerts) > 3:
            lines.append(f"   … y {len(payload.alerts) - 3} alertas adicionales.")
    else:
        lines.append("• No hay alertas críticas registradas.")

    top_deal = max(payload.top_deals, key=lambda deal: deal.amount or 0, default=None)
    if top_deal is not None:
        lines.append(
            f"• Mayor oportunidad abierta: {top_deal.title} ({top_deal.company or 'Sin empresa'})"
            f" por €{format_amount(top_deal.amount or 0)}"
        )

    return "\n".join(lines)


def next_step_fallback_text(payload: NextStepRequest) -> str:
    return payload.fallback_text if payload.fallback_text.strip() else DEFAULT_NEXT_STEP


def contact_summary_fallback_text(payload: ContactSummaryRequest) -> str:
    if payload.fallback_text.strip():
        return payload.fallback_text
    contact = payload.contact
    company = f" ({contact.company})" if contact.company else ""
    return f"{contact.name}{company}: {len(contact.deals)} deals vinculados."
