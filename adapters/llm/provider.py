from __future__ import annotations

import json
from typing import Any

from openai import OpenAI
from pydantic import ValidationError

from core.config import OpenAIConfig
from core.logging.audit import audit_event, safe_excerpt, text_hash
from core.orchestrator.deterministic import RuleBasedClassifier
from core.orchestrator.schemas import INTENTS, ClassifiedUtterance
from core.sessions.models import Session

_INTENT_LIST = ", ".join(INTENTS)

_SYSTEM_PROMPT = f"""You classify chat messages for an assistant that builds itemized construction budgets.

Intents: {_INTENT_LIST}.

Entities (omit what is not mentioned):
- budgetName: name of a budget
- item: item name, or a list of names when several items are given
- quantity: number, or a list aligned with item
- unitPrice: unit price in Chilean pesos, or a list aligned with item (null where not given)
- selectionIndex: 1-based number when the user picks an entry from a list ("the second one", "2")

Use the conversation so far to resolve references such as "this one", "yes" or a bare number.
A bare "yes"/"si" after a delete prompt is confirm_delete.

Reply with a JSON object only:
{{"intent": "...", "entities": {{...}}, "confidence": 0.0-1.0, "needsContext": false}}"""


class OpenAIIntentClassifier:
    """Chat-completion classifier in JSON mode. Never raises."""

    def __init__(self, config: OpenAIConfig, client: Any | None = None, temperature: float = 0.3) -> None:
        self.model = config.model
        self.temperature = temperature
        self.client = client or OpenAI(api_key=config.api_key)

    def _messages(self, text: str, session: Session | None) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": _SYSTEM_PROMPT}]
        history = session.history_for_prompt() if session is not None else []
        messages.extend(history)
        if not history or history[-1] != {"role": "user", "content": text}:
            messages.append({"role": "user", "content": text})
        return messages

    def classify(self, text: str, session: Session | None = None) -> ClassifiedUtterance:
        audit_event("llm.classify.request", text_hash=text_hash(text), text_excerpt=safe_excerpt(text, max_len=40))
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=self._messages(text, session),
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content if response.choices else None
            utterance = ClassifiedUtterance.model_validate(json.loads(content or "{}"))
        except (json.JSONDecodeError, ValidationError) as exc:
            audit_event("llm.classify.invalid", error=safe_excerpt(str(exc), max_len=120))
            return ClassifiedUtterance.degraded()
        except Exception as exc:
            audit_event("llm.classify.failed", error=safe_excerpt(str(exc), max_len=120))
            return ClassifiedUtterance.degraded()
        audit_event("llm.classify.result", intent=utterance.intent, confidence=utterance.confidence)
        return utterance


def build_classifier(config: OpenAIConfig) -> OpenAIIntentClassifier | RuleBasedClassifier:
    if config.enabled:
        return OpenAIIntentClassifier(config)
    return RuleBasedClassifier()
