"""Food recognition through LLM vision models."""

import base64
import logging
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import ValidationError

from nutrivision.domain.errors import AnalyzerError, FailureReason
from nutrivision.domain.meals import MICRONUTRIENTS, AiProvider, FoodItem
from nutrivision.domain.vision import VisionExtract
from nutrivision.services.food_search import FoodSearchService

_logger = logging.getLogger(__name__)

# Smaller payloads are truncated uploads, not photos.
MIN_IMAGE_BYTES = 75

_MACROS_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "calories": {"type": "number", "minimum": 0},
        "protein": {"type": "number", "minimum": 0},
        "carbs": {"type": "number", "minimum": 0},
        "fat": {"type": "number", "minimum": 0},
    },
    "required": ["calories", "protein", "carbs", "fat"],
    "additionalProperties": False,
}

FOOD_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "servingSize": {"type": "string"},
                    "macros": _MACROS_SCHEMA,
                    "micros": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": {
                                    "type": "string",
                                    "enum": list(MICRONUTRIENTS),
                                },
                                "amount": {"type": "number", "minimum": 0},
                            },
                            "required": ["name", "amount"],
                            "additionalProperties": False,
                        },
                    },
                },
                "required": ["name", "servingSize", "macros", "micros"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["items"],
    "additionalProperties": False,
}

ANALYZE_PROMPT = (
    "Analyze this image. If it contains food, identify each item, estimate the "
    "portion size and calculate its nutritional values. Calories are kcal; "
    "protein, carbs and fat are grams. List micronutrients only when confident "
    "(fiber, sugar, saturatedFat in g; vitamins and minerals in mg or mcg). "
    "For packaged products, read the label. Return no items if there is no food."
)

_SIMPLE_KEYWORDS = ("is", "was", "not", "actually", "wrong", "incorrect", "should be")
_COMPLEX_KEYWORDS = (
    "add",
    "more",
    "less",
    "bigger",
    "smaller",
    "increase",
    "decrease",
    "portion",
)


class VisionClient(Protocol):
    """Interface for structured LLM extraction, with or without an image."""

    async def extract(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        image_data_url: str | None,
        schema: dict[str, object],
        prompt: str,
    ) -> dict[str, object]:
        """Return JSON matching schema."""


@dataclass(frozen=True)
class VisionRoute:
    """Client and models used for one provider."""

    client: VisionClient
    model: str
    correction_model: str


@dataclass
class VisionAnalyzer:
    """Analyzer that routes to the user's provider and validates its output."""

    routes: dict[AiProvider, VisionRoute] = field(default_factory=dict)
    food_search: FoodSearchService | None = None
    reasoning_effort: str | None = None
    store: bool = False

    async def analyze(self, image_bytes: bytes, provider: AiProvider) -> list[FoodItem]:
        """Detect food items in an image."""
        _check_image(image_bytes)
        route = self._route(provider)
        raw = await route.client.extract(
            model=route.model,
            reasoning_effort=self.reasoning_effort,
            store=self.store,
            image_data_url=_to_data_url(image_bytes),
            schema=FOOD_SCHEMA,
            prompt=ANALYZE_PROMPT,
        )
        return _parse_items(raw)

    async def correct(
        self,
        image_bytes: bytes,
        current_items: list[FoodItem],
        instruction: str,
        provider: AiProvider,
    ) -> list[FoodItem]:
        """Revise items from user feedback.

        Renames ("this is rice, not pasta") are tried as a cheap text-only
        request first; anything else, or a text-only attempt that yields
        nothing, re-reads the image.
        """
        route = self._route(provider)
        summary = _describe_items(current_items)
        if is_simple_correction(instruction):
            try:
                raw = await route.client.extract(
                    model=route.correction_model,
                    reasoning_effort=None,
                    store=self.store,
                    image_data_url=None,
                    schema=FOOD_SCHEMA,
                    prompt=_text_correction_prompt(summary, instruction),
                )
                items = _parse_items(raw)
            except AnalyzerError as exc:
                if exc.reason not in (
                    FailureReason.INVALID_RESPONSE,
                    FailureReason.NO_ITEMS_DETECTED,
                ):
                    raise
                _logger.info("Text-only correction unusable (%s); using image", exc)
            else:
                if items:
                    return items

        _check_image(image_bytes)
        raw = await route.client.extract(
            model=route.correction_model,
            reasoning_effort=None,
            store=self.store,
            image_data_url=_to_data_url(image_bytes),
            schema=FOOD_SCHEMA,
            prompt=_image_correction_prompt(summary, instruction),
        )
        return _parse_items(raw)

    async def search(self, query: str, provider: AiProvider) -> list[FoodItem]:
        """Look foods up in the nutrient database; failures yield no results."""
        if self.food_search is None:
            return []
        try:
            return await self.food_search.search(query)
        except Exception as exc:
            _logger.warning("Food search for %r failed: %s", query, exc)
            return []

    def _route(self, provider: AiProvider) -> VisionRoute:
        route = self.routes.get(provider)
        if route is None:
            raise AnalyzerError(
                FailureReason.PROVIDER_UNAVAILABLE,
                f"No vision client configured for {provider.value}",
            )
        return route


def is_simple_correction(instruction: str) -> bool:
    """True for identification fixes that need no portion re-estimate."""
    lowered = instruction.lower()
    words = set(lowered.replace(",", " ").replace(".", " ").split())
    has_simple = any(
        keyword in lowered if " " in keyword else keyword in words
        for keyword in _SIMPLE_KEYWORDS
    )
    has_complex = any(keyword in lowered for keyword in _COMPLEX_KEYWORDS)
    return has_simple and not has_complex


def _parse_items(raw: dict[str, object]) -> list[FoodItem]:
    try:
        extract = VisionExtract.model_validate(raw)
    except ValidationError as exc:
        raise AnalyzerError(FailureReason.INVALID_RESPONSE, str(exc)) from exc
    return [food.to_food_item() for food in extract.items]


def _describe_items(items: list[FoodItem]) -> str:
    return "\n".join(
        f"- {item.name} ({item.serving_size}): {item.macros.calories:g} kcal, "
        f"P:{item.macros.protein:g}g C:{item.macros.carbs:g}g F:{item.macros.fat:g}g"
        for item in items
    )


def _text_correction_prompt(summary: str, instruction: str) -> str:
    return (
        "A food photo was analyzed with these results:\n\n"
        f"{summary}\n\n"
        f'The user corrected it: "{instruction}"\n\n'
        "Return the corrected items. Keep serving sizes unless the correction "
        "changes them and adjust macros to the corrected foods."
    )


def _image_correction_prompt(summary: str, instruction: str) -> str:
    return (
        "This food image was analyzed with these results:\n\n"
        f"{summary}\n\n"
        f'The user corrected it: "{instruction}"\n\n'
        "Re-analyze the image taking the feedback into account. Fix mistakes, "
        "add missing items or adjust portions as needed and return every item."
    )


def _check_image(image_bytes: bytes) -> None:
    if len(image_bytes) < MIN_IMAGE_BYTES:
        raise AnalyzerError(
            FailureReason.INVALID_IMAGE,
            f"Image data too small ({len(image_bytes)} bytes)",
        )


def _to_data_url(image_bytes: bytes) -> str:
    """Convert bytes to a base64 data URL for image input."""
    mime_type = _detect_mime_type(image_bytes)
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def _detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"
