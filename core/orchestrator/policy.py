from __future__ import annotations

from core.orchestrator.schemas import INTENTS, ClassifiedUtterance

# Intents that only echo help text are never gated on confidence.
_UNGATED = {"unknown", "greeting", "general_query"}

ACTIVE_BUDGET_INTENTS = {"view_items", "view_total", "delete_item", "download_budget"}


def validate_utterance(utterance: ClassifiedUtterance, min_confidence: float) -> ClassifiedUtterance:
    if utterance.intent not in INTENTS:
        return ClassifiedUtterance.degraded()
    if utterance.intent in _UNGATED:
        return utterance
    if utterance.confidence < min_confidence:
        return ClassifiedUtterance(
            intent="unknown",
            entities=utterance.entities,
            confidence=utterance.confidence,
            needs_context=True,
        )
    return utterance
