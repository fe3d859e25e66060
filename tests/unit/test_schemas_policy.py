from __future__ import annotations

from core.orchestrator.policy import validate_utterance
from core.orchestrator.schemas import ClassifiedUtterance, Entities


def test_classifier_json_aliases_are_accepted() -> None:
    utterance = ClassifiedUtterance.model_validate(
        {
            "intent": "ADD_ITEM",
            "entities": {"item": ["a", " ", "b"], "quantity": [1, 2], "unitPrice": [100, None], "selectionIndex": 2.0},
            "confidence": 0.9,
            "needsContext": False,
        }
    )
    assert utterance.intent == "add_item"
    assert utterance.entities.item == ["a", "b"]
    assert utterance.entities.unit_price == [100, None]
    assert utterance.entities.selection_index == 2


def test_unknown_intent_and_bad_confidence_are_tolerated() -> None:
    utterance = ClassifiedUtterance.model_validate({"intent": "order_pizza", "entities": None, "confidence": 7})
    assert utterance.intent == "unknown"
    assert utterance.entities == Entities()
    assert utterance.confidence == 1.0
    assert ClassifiedUtterance.model_validate({"confidence": "high"}).confidence == 0.0


def test_entities_log_uses_aliases_and_skips_empty() -> None:
    assert Entities(budget_name="Casa", unit_price=10).to_log() == {"budgetName": "Casa", "unitPrice": 10}


def test_low_confidence_degrades_to_unknown_keeping_entities() -> None:
    utterance = ClassifiedUtterance(intent="delete_budget", entities=Entities(budget_name="Casa"), confidence=0.2)
    gated = validate_utterance(utterance, min_confidence=0.5)
    assert gated.intent == "unknown"
    assert gated.needs_context is True
    assert gated.entities.budget_name == "Casa"


def test_greeting_is_never_gated() -> None:
    utterance = ClassifiedUtterance(intent="greeting", confidence=0.1)
    assert validate_utterance(utterance, min_confidence=0.5).intent == "greeting"
