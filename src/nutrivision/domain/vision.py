"""Models for vision extraction results."""

from pydantic import BaseModel, ConfigDict, Field

from nutrivision.domain.meals import FoodItem, Macros


class VisionMacros(BaseModel):
    """Macros as reported by the model."""

    calories: float = Field(default=0.0)
    protein: float = Field(default=0.0)
    carbs: float = Field(default=0.0)
    fat: float = Field(default=0.0)


class VisionMicro(BaseModel):
    """Single micronutrient estimate."""

    name: str
    amount: float


class VisionFood(BaseModel):
    """Single detected food item from vision."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = "Unknown"
    serving_size: str = Field(default="1 serving", alias="servingSize")
    macros: VisionMacros = Field(default_factory=VisionMacros)
    micros: list[VisionMicro] = Field(default_factory=list)

    def to_food_item(self) -> FoodItem:
        """Convert into a domain food item, dropping unknown micronutrients."""
        return FoodItem(
            name=self.name.strip() or "Unknown",
            serving_size=self.serving_size.strip() or "1 serving",
            macros=Macros(
                calories=self.macros.calories,
                protein=self.macros.protein,
                carbs=self.macros.carbs,
                fat=self.macros.fat,
            ),
            micros={micro.name: micro.amount for micro in self.micros},
        )


class VisionExtract(BaseModel):
    """Structured output for vision extraction."""

    items: list[VisionFood]
