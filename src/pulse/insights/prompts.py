"""Prompt builders, one per insight job.

Builders are pure: same payload, same prompt. Optional fields are skipped
when absent and nothing here raises.
"""

from __future__ import annotations

from pulse.insights.models import ContactSummaryRequest, DigestRequest, NextStepRequest

DEFAULT_MAX_ITEMS = 5

DIGEST_SYSTEM_PROMPT = (
    "Eres un experto en operaciones comerciales. "
    "Devuelve únicamente JSON válido con la estructura solicitada."
)
NEXT_STEP_SYSTEM_PROMPT = (
    "Eres un asistente comercial senior. Devuelve JSON válido con la estructura solicitada."
)
CONTACT_SUMMARY_SYSTEM_PROMPT = "Eres un analista comercial. Devuelve exclusivamente JSON válido."

_TIMEFRAME_LABELS = {
    "today": "hoy",
    "week": "esta semana",
    "month": "este mes",
}


def format_amount(amount: float) -> str:
    """Render an amount with Spanish digit grouping (125000 -> 125.000)."""
    if float(amount).is_integer():
        return f"{int(amount):,}".replace(",", ".")
    grouped = f"{amount:,.2f}"
    return grouped.replace(",", "_").replace(".", ",").replace("_", ".")


def build_digest_prompt(payload: DigestRequest, *, max_items: int = DEFAULT_MAX_ITEMS) -> str:
    """Render the digest instruction for the payload's timeframe."""
    stats = payload.stats
    timeframe_label = _TIMEFRAME_LABELS.get(payload.timeframe, "este mes")

    stats_lines = [
        f"• Deals Hot abiertos: {stats.hot_deals}",
        f"• Deals en riesgo alto: {stats.risk_deals}",
        f"• Tareas vencidas o críticas: {stats.overdue_tasks}",
    ]

    deal_lines: list[str] = []
    for index, deal in enumerate(payload.top_deals[:max_items], start=1):
        line = (
            f"{index}. {deal.title} ({deal.company or 'Sin empresa'})"
            f" · {deal.stage} · {deal.priority} · {deal.risk}"
        )
        if deal.amount is not None:
            line += f" · €{format_amount(deal.amount)}"
        if deal.target_close_date:
            line += f" · Cierre objetivo: {deal.target_close_date}"
        if deal.next_step:
            line += f" · Próximo paso: {deal.next_step}"
        deal_lines.append(line)

    alert_lines = []
    for index, alert in enumerate(payload.alerts[:max_items], start=1):
        line = f"{index}. {alert.message}"
        if alert.recommended_action:
            line += f" · {alert.recommended_action}"
        alert_lines.append(line)

    return "\n".join(
        [
            "Eres un assistant de Pulse especializado en ventas B2B. "
            f"Genera un digest accionable para {timeframe_label}.",
            "Siempre responde en español neutro, tono profesional y conciso.",
            "No inventes datos. Usa únicamente la información suministrada.",
            "Devuelve la respuesta en **JSON válido** con la siguiente forma exacta:",
            "{",
            '  "headline": "...",',
            '  "summary": ["párrafo 1", "párrafo 2"],',
            '  "actions": ["Acción 1", "Acción 2", "Acción 3"]',
            "}",
            "Reglas para el JSON:",
            "- `headline` debe ser una frase motivadora.",
            "- `summary` debe contener 2 entradas como máximo, cada una con frases cortas (<= 2 oraciones).",
            "- `actions` debe tener entre 3 y 5 strings. Cada string comienza con un verbo en "
            "imperativo y puede incluir contexto adicional (owner, deal, fechas).",
            "- No añadas claves extra ni valores nulos.",
            "Datos numéricos de contexto:",
            *stats_lines,
            "Deals prioritarios:",
            "\n".join(deal_lines) if deal_lines else "Sin deals destacados.",
            "Alertas activas:",
            "\n".join(alert_lines) if alert_lines else "Sin alertas activas.",
        ]
    )


def build_next_step_prompt(payload: NextStepRequest) -> str:
    """Render the next-step instruction for a single deal."""
    deal = payload.deal
    context = payload.context

    def _or_na(value: object) -> str:
        return "N/A" if value is None or value == "" else str(value)

    lines = [
        "Eres un assistant comercial que ayuda a reps a definir el próximo paso concreto para un deal.",
        "Responde únicamente con JSON válido usando la forma:",
        "{",
        '  "next_step": "acción concreta",',
        '  "rationale": ["motivo 1", "motivo 2", "motivo 3"]',
        "}",
        "Normas:",
        "- `next_step` debe iniciar con un verbo en imperativo y describir acción+canal+objetivo.",
        "- Incluye en `rationale` entre 2 y 3 motivos cortos que expliquen la recomendación.",
        "- No inventes datos ni añadas claves adicionales.",
        "Contexto del deal:",
        f"• Título: {deal.title}",
        f"• Empresa: {deal.company or 'Sin empresa'}",
        f"• Etapa actual: {deal.stage}",
        f"• Probabilidad declarada: {_or_na(deal.probability)}",
        f"• Prioridad: {_or_na(deal.priority)}",
        f"• Nivel de riesgo: {_or_na(deal.risk)}",
    ]

    if deal.amount:
        lines.append(f"• Monto estimado: €{format_amount(deal.amount)}")
    if deal.next_step:
        lines.append(f"• Último próximo paso registrado: {deal.next_step}")
    if deal.target_close_date:
        lines.append(f"• Fecha objetivo de cierre: {deal.target_close_date}")
    if deal.last_activity:
        lines.append(f"• Última actividad registrada: {deal.last_activity}")
    if context is not None:
        if context.owner:
            lines.append(f"• Owner: {context.owner}")
        if context.reasons:
            lines.append("Señales de riesgo:")
            lines.extend(f"{idx}. {reason}" for idx, reason in enumerate(context.reasons, start=1))
        if context.inactivity_days is not None:
            lines.append(f"• Días sin actividad: {context.inactivity_days}")

    return "\n".join(lines)


def build_contact_summary_prompt(payload: ContactSummaryRequest) -> str:
    contact = payload.contact
    lines = [
        "Eres un assistant comercial. Resume el estado actual del contacto en JSON válido:",
        "{",
        '  "headline": "frase corta",',
        '  "highlights": ["punto 1", "punto 2", "punto 3"]',
        "}",
        "- `headline`: tono profesional con llamada a la acción.",
        "- `highlights`: entre 2 y 4 bullet points cortos (máx 15 palabras).",
        "- No inventes datos ni añadas claves extra.",
        f"Contacto: {contact.name}",
    ]

    if contact.company:
        lines.append(f"Empresa: {contact.company}")
    if contact.role:
        lines.append(f"Rol: {contact.role}")
    if contact.owner:
        lines.append(f"Owner interno: {contact.owner}")
    if contact.last_activity:
        lines.append(f"Última actividad: {contact.last_activity}")
    if contact.deals:
        lines.append("Deals asociados:")
        for index, deal in enumerate(contact.deals, start=1):
            lines.append(
                f"{index}. {deal.title} ({deal.stage}) · {deal.status}"
                f" · €{format_amount(deal.amount or 0)}"
            )
    else:
        lines.append("No tiene deals vinculados actualmente.")

    return "\n".join(lines)
