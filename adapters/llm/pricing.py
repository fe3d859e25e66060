from __future__ import annotations

from typing import Any

from openai import OpenAI

from core.config import OpenAIConfig
from core.pricing.resolver import NullPriceOracle, PriceOracle

_SYSTEM_PROMPT = """You are an expert on construction material prices in Chile.
Estimate the current UNIT price of the product, preferring in this order:
1. Homecenter Chile
2. Sodimac Chile
3. Average Chilean market prices

Reply ONLY with the price in Chilean pesos as a bare integer: no dots, commas or symbols.
Examples: 8500, 12000, 45000. For items sold by metre, kilo or litre give the price per unit.

Input: "bag of cement"
Output: 8500"""


class OpenAIPriceOracle:
    """Asks the chat model for a bare unit price. Errors propagate to the resolver."""

    def __init__(self, config: OpenAIConfig, client: Any | None = None) -> None:
        self.model = config.model
        self.client = client or OpenAI(api_key=config.api_key)

    def quote(self, item_name: str) -> str | None:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": f"What is the current unit price of: {item_name}?"},
            ],
            temperature=0.3,
            max_tokens=20,
        )
        if not response.choices:
            return None
        return (response.choices[0].message.content or "").strip() or None


def build_price_oracle(config: OpenAIConfig) -> PriceOracle:
    if config.enabled:
        return OpenAIPriceOracle(config)
    return NullPriceOracle()
