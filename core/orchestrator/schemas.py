from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

IntentName = Literal[
    "greeting",
    "create_budget",
    "add_item",
    "edit_item",
    "delete_item",
    "delete_budget",
    "confirm_delete",
    "cancel",
    "list_budgets",
    "change_budget",
    "download_budget",
    "view_items",
    "view_total",
    "general_query",
    "unknown",
]

INTENTS: tuple[str, ...] = get_args(IntentName)


class Entities(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    budget_name: Optional[str] = Field(default=None, alias="budgetName")
    item: Union[str, List[str], None] = None
    quantity: Union[float, List[Optional[float]], None] = None
    unit_price: Union[float, List[Optional[float]], None] = Field(default=None, alias="unitPrice")
    selection_index: Optional[int] = Field(default=None, alias="selectionIndex")

    @field_validator("budget_name", mode="before")
    @classmethod
    def _blank_name_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("item", mode="before")
    @classmethod
    def _drop_blank_items(cls, value: Any) -> Any:
        if isinstance(value, list):
            cleaned = [str(entry).strip() for entry in value if entry is not None and str(entry).strip()]
            return cleaned or None
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("selection_index", mode="before")
    @classmethod
    def _lenient_index(cls, value: Any) -> Any:
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value

    def to_log(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ClassifiedUtterance(BaseModel):
    intent: IntentName = "unknown"
    entities: Entities = Field(default_factory=Entities)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    needs_context: bool = Field(default=False, alias="needsContext")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("intent", mode="before")
    @classmethod
    def _unknown_intents(cls, value: Any) -> Any:
        if isinstance(value, str):
            normalized = value.strip().lower()
            return normalized if normalized in INTENTS else "unknown"
        return "unknown"

    @field_validator("entities", mode="before")
    @classmethod
    def _missing_entities(cls, value: Any) -> Any:
        return value if value is not None else {}

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> Any:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        return min(max(number, 0.0), 1.0)

    @classmethod
    def degraded(cls) -> "ClassifiedUtterance":
        return cls(intent="unknown", confidence=0.0, needs_context=True)


@dataclass(frozen=True)
class ActionReply:
    text: str
    document: str | None = None
