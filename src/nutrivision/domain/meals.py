"""Domain models for meal logging."""

import math
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MICRONUTRIENTS = (
    "fiber",
    "sugar",
    "vitaminA",
    "vitaminC",
    "vitaminD",
    "vitaminE",
    "vitaminK",
    "vitaminB6",
    "vitaminB12",
    "folate",
    "calcium",
    "iron",
    "magnesium",
    "potassium",
    "sodium",
    "zinc",
    "saturatedFat",
    "transFat",
    "cholesterol",
    "omega3",
    "omega6",
)


class MealType(str, Enum):
    """Meal slot a log belongs to."""

    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


class _Record(BaseModel):
    """Immutable record serialized with camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    def to_json(self) -> dict[str, object]:
        """Return the JSON-compatible payload stored in both persistences."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Macros(_Record):
    """Macronutrient vector; calories in kcal, the rest in grams."""

    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0

    @field_validator("calories", "protein", "carbs", "fat", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> float:
        if value is None:
            return 0.0
        number = float(value)  # type: ignore[arg-type]
        if math.isnan(number) or number < 0:
            return 0.0
        return number


ZERO_MACROS = Macros()


class FoodItem(_Record):
    """A single food within a meal or analysis draft."""

    name: str = ""
    serving_size: str = "1 serving"
    macros: Macros = Field(default_factory=Macros)
    micros: dict[str, float] | None = None

    @field_validator("micros", mode="before")
    @classmethod
    def _known_micros(cls, value: object) -> dict[str, float] | None:
        if not isinstance(value, dict):
            return None
        cleaned: dict[str, float] = {}
        for key in MICRONUTRIENTS:
            amount = value.get(key)
            if isinstance(amount, int | float) and not math.isnan(amount):
                cleaned[key] = max(float(amount), 0.0)
        return cleaned or None


class MealLog(_Record):
    """A committed meal with its nutrient totals."""

    id: str
    timestamp: int
    image_ref: str | None = None
    items: tuple[FoodItem, ...] = ()
    total_macros: Macros = Field(default_factory=Macros)
    meal_type: MealType = MealType.SNACK
    note: str | None = None


class AiProvider(str, Enum):
    """Vision model providers a user can pick."""

    OPENAI = "openai"
    GEMINI = "gemini"


class UserSettings(_Record):
    """Daily goals and preferences."""

    daily_calorie_goal: float = 2000
    daily_protein_goal: float = 150
    daily_carb_goal: float = 200
    daily_fat_goal: float = 65
    apple_health_connected: bool = False
    ai_provider: AiProvider = AiProvider.OPENAI


class SavedMeal(_Record):
    """Reusable combination of foods that can be logged again in one step."""

    id: str
    name: str
    created_at: int
    items: tuple[FoodItem, ...] = ()
    total_macros: Macros = Field(default_factory=Macros)
    last_used: int | None = None
    use_count: int = 0
    emoji: str | None = None


class FavoriteFood(FoodItem):
    """A food the user starred, counted each time it is reused."""

    id: str
    added_at: int
    use_count: int = 0

    def as_food_item(self) -> FoodItem:
        return FoodItem(
            name=self.name,
            serving_size=self.serving_size,
            macros=self.macros,
            micros=self.micros,
        )
