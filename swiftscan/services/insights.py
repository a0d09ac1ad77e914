import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from google import genai
from google.genai import types

from ..models.cart import LineItem

logger = logging.getLogger(__name__)

INSIGHT_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "recipeSuggestion": types.Schema(type=types.Type.STRING),
        "totalCalories": types.Schema(type=types.Type.NUMBER),
        "savingTips": types.Schema(type=types.Type.STRING),
    },
    required=["recipeSuggestion", "totalCalories", "savingTips"],
)


@dataclass(frozen=True)
class ShoppingInsight:
    recipe_suggestion: str
    total_calories: float
    saving_tips: str

    @classmethod
    def from_response(cls, data: dict) -> "ShoppingInsight":
        return cls(
            recipe_suggestion=str(data["recipeSuggestion"]),
            total_calories=float(data["totalCalories"]),
            saving_tips=str(data["savingTips"]),
        )

    def to_dict(self):
        return {
            "recipe_suggestion": self.recipe_suggestion,
            "total_calories": self.total_calories,
            "saving_tips": self.saving_tips,
        }


def build_prompt(items: Iterable[LineItem]) -> str:
    items_list = ", ".join(f"{i.product.name} (Qty: {i.cart_quantity})" for i in items)
    return (
        f"Based on these grocery items: {items_list}, provide:\n"
        "  1. A quick recipe idea using some of these items.\n"
        "  2. Total estimated calorie count for the whole cart.\n"
        "  3. One health or money saving tip for these specific items."
    )


class InsightsService:
    """Shopping insights from Gemini. Failures are logged and yield None."""

    def __init__(self, api_key: str = "", model: str = "gemini-3-flash-preview", client: Any = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @property
    def available(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def fetch_insights(self, items: Iterable[LineItem]) -> Optional[ShoppingInsight]:
        items = list(items)
        if not items:
            return None

        if not self.available:
            logger.warning("No Gemini API key configured, skipping insights")
            return None

        try:
            response = await self._get_client().aio.models.generate_content(
                model=self.model,
                contents=build_prompt(items),
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=INSIGHT_SCHEMA,
                ),
            )
            return ShoppingInsight.from_response(json.loads(response.text))
        except Exception as e:
            logger.error(f"Gemini insight error: {e}", exc_info=True)
            return None
