"""Entity extraction from free-text prompts (emails, URLs, dates, numbers)."""

from __future__ import annotations

import re

from cosmo.core.actions.models import ExtractedEntity

_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_URL_RE = re.compile(r"https?://[^\s]+")
_DATE_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(\d{1,2}/\d{1,2}/\d{2,4})\b"),
    re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"),
    re.compile(r"\b(today|tomorrow|yesterday)\b", re.IGNORECASE),
    re.compile(
        r"\b(next|this|last)\s+"
        r"(week|month|year|monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
        re.IGNORECASE,
    ),
)
_NUMBER_RE = re.compile(r"\b(\d+(?:\.\d+)?)\b")

EMAIL_CONFIDENCE = 0.95
URL_CONFIDENCE = 0.95
DATE_CONFIDENCE = 0.8
NUMBER_CONFIDENCE = 0.9


def _collect(
    pattern: re.Pattern[str],
    text: str,
    entity_type: str,
    confidence: float,
) -> list[ExtractedEntity]:
    return [
        ExtractedEntity(
            type=entity_type,
            value=m.group(0),
            confidence=confidence,
            start_index=m.start(),
            end_index=m.end(),
        )
        for m in pattern.finditer(text)
    ]


def extract_entities(prompt: str) -> list[ExtractedEntity]:
    """
    Extract common entities with their character spans.

    Entities are grouped by type (emails, URLs, dates, numbers), each group
    in order of appearance.  Spans may overlap across types, e.g. the digits
    of an ISO date are also reported as numbers.
    """
    if not prompt:
        return []
    entities: list[ExtractedEntity] = []
    entities.extend(_collect(_EMAIL_RE, prompt, "email", EMAIL_CONFIDENCE))
    entities.extend(_collect(_URL_RE, prompt, "url", URL_CONFIDENCE))
    for pattern in _DATE_RES:
        entities.extend(_collect(pattern, prompt, "date", DATE_CONFIDENCE))
    entities.extend(_collect(_NUMBER_RE, prompt, "number", NUMBER_CONFIDENCE))
    return entities
