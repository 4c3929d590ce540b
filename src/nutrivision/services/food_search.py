"""Manual food lookup against USDA FoodData Central."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from nutrivision.adapters.fdc_client import FdcClient
from nutrivision.domain.meals import FoodItem, Macros
from nutrivision.services.cache import Cache

_logger = logging.getLogger(__name__)

FDC_SERVING_SIZE = "100g"

_MACRO_IDS = {
    "calories": 1008,
    "protein": 1003,
    "fat": 1004,
    "carbs": 1005,
}

_MICRO_IDS = {
    "fiber": 1079,
    "sugar": 2000,
    "calcium": 1087,
    "iron": 1089,
    "magnesium": 1090,
    "potassium": 1092,
    "sodium": 1093,
    "zinc": 1095,
    "vitaminA": 1106,
    "vitaminE": 1109,
    "vitaminD": 1114,
    "vitaminC": 1162,
    "vitaminB6": 1175,
    "folate": 1177,
    "vitaminB12": 1178,
    "vitaminK": 1185,
    "cholesterol": 1253,
    "transFat": 1257,
    "saturatedFat": 1258,
}

# Names containing these are products made from a food rather than the food.
_DERIVATIVE_WORDS = ("flour", "oil", "milk", "butter", "powder", "syrup", "juice")


@dataclass
class FoodSearchService:
    """Searches FDC foods, ranks them by name relevance and caches the result."""

    fdc_client: FdcClient
    cache: Cache
    search_ttl_seconds: int = 3600
    page_size: int = 20
    retry_attempts: int = 1
    retry_delay_seconds: float = 0.3

    async def search(self, query: str, limit: int = 10) -> list[FoodItem]:
        """Return up to limit foods per 100g, most relevant first."""
        normalized = " ".join(query.lower().split())
        if not normalized:
            return []
        cache_key = f"fdc:search:{normalized}:{limit}"
        cached = self.cache.get(cache_key)
        if isinstance(cached, list):
            return cached

        payload = await self._call_with_retry(
            lambda: self.fdc_client.search_foods(normalized, page_size=self.page_size),
            action="search",
        )
        scored: list[tuple[int, FoodItem]] = []
        for food in payload.get("foods") or []:
            item = _to_food_item(food)
            if item is None:
                continue
            scored.append((_relevance(normalized, item.name), item))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        items = [item for _, item in scored[:limit]]
        self.cache.set(cache_key, items, ttl_seconds=self.search_ttl_seconds)
        _logger.info("FDC search %r returned %s items", normalized, len(items))
        return items

    async def _call_with_retry(
        self, func: Callable[[], Awaitable[dict[str, object]]], *, action: str
    ) -> dict[str, object]:
        """Call an async function with a short retry."""
        attempt = 0
        while True:
            try:
                return await func()
            except Exception as exc:
                attempt += 1
                _logger.warning(
                    "FDC %s failed (attempt %s/%s, status=%s): %s",
                    action,
                    attempt,
                    self.retry_attempts + 1,
                    _status_code_from_exception(exc),
                    exc,
                )
                if attempt > self.retry_attempts:
                    raise
                await asyncio.sleep(self.retry_delay_seconds)


def _status_code_from_exception(exc: Exception) -> str:
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return str(status_code)
    return "n/a"


def _nutrient_values(food_nutrients: list[dict[str, object]]) -> dict[int, float]:
    """Map nutrient id to amount; search and detail payloads differ in shape."""
    values: dict[int, float] = {}
    for nutrient in food_nutrients:
        info = nutrient.get("nutrient") or {}
        nutrient_id = nutrient.get("nutrientId") or info.get("id")
        amount = nutrient.get("value", nutrient.get("amount"))
        if isinstance(nutrient_id, int) and isinstance(amount, int | float):
            values[nutrient_id] = float(amount)
    return values


def _to_food_item(food: dict[str, object]) -> FoodItem | None:
    """Convert one FDC food; foods without any macro data are skipped."""
    name = str(food.get("description") or "").strip()
    values = _nutrient_values(food.get("foodNutrients") or [])
    macros = {
        key: values.get(nutrient_id, 0.0) for key, nutrient_id in _MACRO_IDS.items()
    }
    if not name or not any(macros.values()):
        return None
    micros = {
        key: round(values[nutrient_id], 2)
        for key, nutrient_id in _MICRO_IDS.items()
        if nutrient_id in values
    }
    return FoodItem(
        name=name,
        serving_size=FDC_SERVING_SIZE,
        macros=Macros(
            calories=round(macros["calories"]),
            protein=round(macros["protein"], 1),
            carbs=round(macros["carbs"], 1),
            fat=round(macros["fat"], 1),
        ),
        micros=micros or None,
    )


def _relevance(query: str, name: str) -> int:
    """Score how well an FDC description matches what the user typed."""
    lowered = name.lower()
    words = query.split()
    if lowered == query:
        score = 1000
    elif lowered.startswith(query):
        score = 500
    elif query in lowered:
        score = 300
    elif all(word in lowered for word in words):
        score = 200
    else:
        score = 50 * sum(word in lowered for word in words)

    name_words = [word for word in lowered.replace(",", " ").split() if word]
    score += max(0, 50 - len(name_words) * 8)
    first_hit = next(
        (index for index, word in enumerate(name_words) if words[0] in word), None
    )
    if first_hit == 0:
        score += 60
    elif first_hit == 1:
        score += 30
    elif first_hit is not None and first_hit > 2:
        score -= 20

    if any(word in lowered for word in _DERIVATIVE_WORDS) and not any(
        word in query for word in _DERIVATIVE_WORDS
    ):
        score -= 100
    return score
