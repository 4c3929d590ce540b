"""Pydantic models for HTTP request bodies."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from nutrivision.domain.meals import FoodItem, Macros, MealType


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionRequest(_Body):
    """Sign in as identity; null signs out."""

    identity: str | None = None


class CorrectionRequest(_Body):
    """Free-text correction of the current draft."""

    instruction: str


class AddItemRequest(_Body):
    """Item to append to the draft; omitted means a blank item."""

    item: FoodItem | None = None


class ItemPatchRequest(_Body):
    """Fields to change on a draft item."""

    name: str | None = None
    serving_size: str | None = None
    macros: Macros | None = None
    micros: dict[str, float] | None = None


class CommitRequest(_Body):
    """Meal slot and note for a committed draft."""

    meal_type: MealType = MealType.SNACK
    note: str | None = None


class LogUpdateRequest(_Body):
    """Replacement content for a committed log; totals are recomputed."""

    items: list[FoodItem] = Field(min_length=1)
    meal_type: MealType
    note: str | None = None


class RestoreRequest(_Body):
    """Undo handle returned by a delete."""

    undo_id: str


class SavedMealRequest(_Body):
    """New saved meal template."""

    name: str = Field(min_length=1)
    items: list[FoodItem] = Field(min_length=1)
    emoji: str | None = None
