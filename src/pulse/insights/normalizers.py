"""Response normalizers: loosely formatted model JSON -> canonical fields.

Models answer in English or Spanish keys and sometimes wrap list items in
objects. Each logical field is probed through an ordered list of accepted key
names and the first present value wins, so the order of every ``*_KEYS`` tuple
below is significant.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from pulse.insights.errors import ContentEmptyError, ContentParseError

DIGEST_HEADLINE_KEYS = ("headline", "titular", "title")
DIGEST_SUMMARY_KEYS = ("summary", "resumen", "body")
DIGEST_ACTIONS_KEYS = ("actions", "acciones", "action_items", "actionItems")
DIGEST_CONTENT_KEYS = ("content", "output", "text")

ACTION_LABEL_KEYS = ("action", "accion", "acción", "title", "titulo")
ACTION_PRIORITY_KEYS = ("priority", "prioridad")
ACTION_DETAILS_KEYS = ("details", "detalles")

NEXT_STEP_KEYS = ("next_step", "nextStep", "siguiente_paso")
RATIONALE_KEYS = ("rationale", "reasons", "motivos")

CONTACT_HEADLINE_KEYS = ("headline", "titular")
CONTACT_HIGHLIGHTS_KEYS = ("highlights", "puntos")

_FENCE_RE = re.compile(r"\A```(?:json)?\s*(.*)```\Z", re.DOTALL)

DIGEST_MAX_SUMMARY = 2
DIGEST_MAX_ACTIONS = 5


@dataclass
class DigestFields:
    headline: str | None
    summary: list[str] | None
    actions: list[str] | None
    content: str | None


@dataclass
class NextStepFields:
    next_step: str
    rationale: list[str] | None


@dataclass
class ContactSummaryFields:
    headline: str | None
    highlights: list[str] | None


def _strip_fences(raw: str) -> str:
    match = _FENCE_RE.match(raw)
    if match:
        return match.group(1).strip()
    return raw


def parse_json_object(raw: str | None) -> dict[str, Any]:
    """Parse model output as a JSON object or raise ``ContentParseError``.

    Plain JSON is tried first; a response wrapped whole in a markdown fence is
    unwrapped only when the plain parse fails.
    """
    if raw is None or not raw.strip():
        raise ContentParseError("Model response has no content")
    cleaned = raw.strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        try:
            parsed = json.loads(_strip_fences(cleaned))
        except json.JSONDecodeError as exc:
            raise ContentParseError(f"Could not parse model JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ContentParseError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def pick(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    """Return the value of the first key present with a non-null value."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def flatten_item(item: Any) -> str:
    """Collapse one list element into display text.

    Objects render as ``label (Prioridad p) details``, skipping absent parts.
    """
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, dict):
        label = pick(item, ACTION_LABEL_KEYS)
        priority = pick(item, ACTION_PRIORITY_KEYS)
        details = pick(item, ACTION_DETAILS_KEYS)
        parts = [
            str(label) if label else None,
            f"(Prioridad {priority})" if priority else None,
            str(details) if details else None,
        ]
        return " ".join(part for part in parts if part)
    if item is None:
        return ""
    return str(item)


def as_lines(value: Any) -> list[str] | None:
    """String -> one-element list, list -> flattened list, anything else -> None."""
    if isinstance(value, str):
        items = [value.strip()]
    elif isinstance(value, list):
        items = [flatten_item(item) for item in value]
    else:
        return None
    lines = [item for item in items if item]
    return lines or None


def normalize_digest(raw: str | None) -> DigestFields:
    data = parse_json_object(raw)

    headline = _text(pick(data, DIGEST_HEADLINE_KEYS))
    summary = as_lines(pick(data, DIGEST_SUMMARY_KEYS))
    actions = as_lines(pick(data, DIGEST_ACTIONS_KEYS))
    if summary:
        summary = summary[:DIGEST_MAX_SUMMARY]
    if actions:
        actions = actions[:DIGEST_MAX_ACTIONS]

    content = None
    for key in DIGEST_CONTENT_KEYS:
        content = _text(data.get(key))
        if content:
            break

    if not (headline or summary or actions or content):
        raise ContentEmptyError("Model returned no usable digest fields")

    return DigestFields(headline=headline, summary=summary, actions=actions, content=content)


def flatten_digest(fields: DigestFields) -> str:
    """Headline, then summary paragraphs, then actions, newline-joined."""
    lines = [fields.headline, *(fields.summary or []), *(fields.actions or [])]
    return "\n".join(line for line in lines if line)


def normalize_next_step(raw: str | None) -> NextStepFields:
    data = parse_json_object(raw)

    next_step = _text(pick(data, NEXT_STEP_KEYS))
    if not next_step:
        raise ContentEmptyError("Model returned no next_step")

    return NextStepFields(next_step=next_step, rationale=as_lines(pick(data, RATIONALE_KEYS)))


def normalize_contact_summary(raw: str | None) -> ContactSummaryFields:
    data = parse_json_object(raw)

    headline = _text(pick(data, CONTACT_HEADLINE_KEYS))
    highlights = as_lines(pick(data, CONTACT_HIGHLIGHTS_KEYS))
    if not headline and not highlights:
        raise ContentEmptyError("Model returned no usable contact summary fields")

    return ContactSummaryFields(headline=headline, highlights=highlights)
