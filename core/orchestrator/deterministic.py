from __future__ import annotations

import re
from typing import Optional

from core.orchestrator.schemas import ClassifiedUtterance, Entities
from core.sessions.models import Session

_CONFIRM_WORDS = {"yes", "y", "confirm", "ok", "okay", "si", "sí", "confirmar", "dale"}
_CANCEL_WORDS = {"no", "cancel", "nevermind", "never mind", "cancelar"}
_GREETING_WORDS = {"hi", "hello", "hey", "hola", "buenas", "good morning", "buenos dias", "buenos días"}
_HELP_WORDS = {"help", "ayuda", "commands", "menu", "what can you do"}
_ORDINALS = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "primero": 1,
    "segundo": 2,
    "tercero": 3,
    "last": -1,
}

_ITEM_SEGMENT = re.compile(
    r"^(?P<qty>\d+(?:[.,]\d+)?)\s+(?P<name>.+?)(?:\s+(?:at|a|@|for)\s+\$?\s*(?P<price>[\d.,]+))?$"
)
_SPLIT_ITEMS = re.compile(r"(?:,\s+|;\s*|\s+and\s+|\s+y\s+)")


def _normalize(text: str) -> str:
    return " ".join(text.strip().split())


def _strip_punctuation(text: str) -> str:
    return text.strip(" .!?¡¿")


def _parse_number(raw: str) -> float:
    return float(raw.replace(",", "."))


def _parse_price(raw: str) -> Optional[float]:
    digits = re.sub(r"[^\d]", "", raw)
    return float(digits) if digits else None


def _selection(text: str) -> Optional[int]:
    match = re.search(r"\b(\d{1,3})\b", text)
    if match:
        return int(match.group(1))
    for word, index in _ORDINALS.items():
        if re.search(rf"\b{word}\b", text) and index > 0:
            return index
    return None


def _utterance(intent: str, **entities: object) -> ClassifiedUtterance:
    return ClassifiedUtterance(intent=intent, entities=Entities(**entities), confidence=1.0)


def parse_item_list(text: str) -> Optional[ClassifiedUtterance]:
    body = re.sub(r"^(?:add|agregar|agrega|añadir)\s+", "", text)
    segments = [segment for segment in _SPLIT_ITEMS.split(body) if segment]
    names: list[str] = []
    counts: list[float] = []
    prices: list[Optional[float]] = []
    for segment in segments:
        match = _ITEM_SEGMENT.match(segment)
        if not match:
            return None
        names.append(_strip_punctuation(match.group("name")))
        counts.append(_parse_number(match.group("qty")))
        prices.append(_parse_price(match.group("price")) if match.group("price") else None)
    if not names:
        return None
    if len(names) == 1:
        return _utterance("add_item", item=names[0], quantity=counts[0], unit_price=prices[0])
    return _utterance("add_item", item=names, quantity=counts, unit_price=prices)


def _named(text: str, prefixes: tuple[str, ...], original: str) -> Optional[str]:
    for prefix in prefixes:
        if text.startswith(prefix):
            name = _strip_punctuation(original[len(prefix) :].strip().strip('"'))
            return name or ""
    return None


def parse_budget_intent(text: str, original: str | None = None) -> Optional[ClassifiedUtterance]:
    # budget names keep the casing the user typed
    if original is None or len(original) != len(text):
        original = text
    name = _named(text, ("create budget", "new budget", "crear presupuesto", "nuevo presupuesto"), original)
    if name is not None:
        return _utterance("create_budget", budget_name=name or None)
    name = _named(text, ("delete budget", "remove budget", "eliminar presupuesto", "borrar presupuesto"), original)
    if name is not None:
        return _utterance("delete_budget", budget_name=name or None)
    name = _named(
        text,
        ("change budget to", "change budget", "switch to", "use budget", "cambiar presupuesto", "cambiar a"),
        original,
    )
    if name is not None:
        index = _selection(name.lower()) if name.isdigit() or name.lower() in _ORDINALS else None
        if index is not None:
            return _utterance("change_budget", selection_index=index)
        return _utterance("change_budget", budget_name=name or None)
    if text in {"budgets", "list budgets", "my budgets", "show budgets", "ver presupuestos", "mis presupuestos"}:
        return _utterance("list_budgets")
    return None


def parse_item_intent(text: str) -> Optional[ClassifiedUtterance]:
    if re.match(r"^(?:delete|remove|eliminar|borrar)\b", text):
        return _utterance("delete_item", selection_index=_selection(text))
    if re.match(r"^(?:edit|change item|editar)\b", text):
        return _utterance("edit_item")
    if text in {"items", "show items", "list items", "view items", "ver items", "lista"}:
        return _utterance("view_items")
    if text in {"total", "summary", "resumen", "view total", "ver total", "how much"}:
        return _utterance("view_total")
    if text in {"pdf", "download", "download pdf", "descargar", "descargar pdf", "send pdf"}:
        return _utterance("download_budget")
    return parse_item_list(text)


def parse_conversation_intent(text: str) -> Optional[ClassifiedUtterance]:
    if text in _CONFIRM_WORDS:
        return _utterance("confirm_delete")
    if text in _CANCEL_WORDS:
        return _utterance("cancel")
    if text in _GREETING_WORDS:
        return _utterance("greeting")
    if text in _HELP_WORDS:
        return _utterance("general_query")
    if text.isdigit():
        return _utterance("change_budget", selection_index=int(text))
    return None


class RuleBasedClassifier:
    """Keyword classifier used when no language model is configured."""

    def classify(self, text: str, session: Session | None = None) -> ClassifiedUtterance:
        _ = session
        original = _strip_punctuation(_normalize(text))
        lowered = original.lower()
        if not lowered:
            return ClassifiedUtterance.degraded()
        return (
            parse_conversation_intent(lowered)
            or parse_budget_intent(lowered, original)
            or parse_item_intent(lowered)
            or ClassifiedUtterance.degraded()
        )
