"""Arithmetic over nutrient vectors and serving sizes."""

import math
import re
from collections.abc import Iterable
from dataclasses import dataclass

from nutrivision.domain.meals import FoodItem, Macros

_SERVING_PATTERN = re.compile(r"^(\d+(?:\.\d*)?|\.\d+)\s*(.*)$")

COMPACT_UNITS = frozenset(
    {"g", "kg", "mg", "mcg", "µg", "ml", "l", "cl", "dl", "oz", "lb", "lbs", "kcal"}
)

TOTALS_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ServingSize:
    """Parsed serving size."""

    quantity: float
    unit: str


def add(left: Macros, right: Macros) -> Macros:
    """Return the element-wise sum of two macro vectors."""
    return Macros(
        calories=left.calories + right.calories,
        protein=left.protein + right.protein,
        carbs=left.carbs + right.carbs,
        fat=left.fat + right.fat,
    )


def sum_macros(values: Iterable[Macros]) -> Macros:
    """Sum macro vectors; an empty input yields the zero vector."""
    total = Macros()
    for value in values:
        total = add(total, value)
    return total


def sum_items(items: Iterable[FoodItem]) -> Macros:
    """Sum the macros of food items."""
    return sum_macros(item.macros for item in items)


def sum_micros(items: Iterable[FoodItem]) -> dict[str, float]:
    """Sum the micronutrients that are present on any item."""
    totals: dict[str, float] = {}
    for item in items:
        for name, amount in (item.micros or {}).items():
            totals[name] = totals.get(name, 0.0) + amount
    return totals


def rescale(macros: Macros, ratio: float) -> Macros:
    """Multiply every field by ratio; negative results clamp to zero."""
    return Macros(
        calories=macros.calories * ratio,
        protein=macros.protein * ratio,
        carbs=macros.carbs * ratio,
        fat=macros.fat * ratio,
    )


def macros_close(
    left: Macros, right: Macros, tolerance: float = TOTALS_TOLERANCE
) -> bool:
    """Return True when both vectors match within a float tolerance."""
    pairs = (
        (left.calories, right.calories),
        (left.protein, right.protein),
        (left.carbs, right.carbs),
        (left.fat, right.fat),
    )
    return all(
        math.isclose(a, b, rel_tol=tolerance, abs_tol=tolerance) for a, b in pairs
    )


def parse_serving(text: str) -> ServingSize:
    """Split a serving size like "150g" or "1 cup" into quantity and unit."""
    cleaned = text.strip()
    match = _SERVING_PATTERN.match(cleaned)
    if match is None:
        return ServingSize(quantity=1.0, unit=cleaned or "g")
    quantity = float(match.group(1))
    unit = match.group(2).strip() or "g"
    return ServingSize(quantity=quantity if quantity > 0 else 1.0, unit=unit)


def format_serving(quantity: float, unit: str) -> str:
    """Render a serving size; abbreviated units attach to the number."""
    unit = unit.strip() or "g"
    separator = "" if unit.lower() in COMPACT_UNITS else " "
    return f"{_format_quantity(quantity)}{separator}{unit}"


def normalize_serving(text: str) -> str:
    """Return the canonical rendering of a serving size."""
    serving = parse_serving(text)
    return format_serving(serving.quantity, serving.unit)


def resize_item(item: FoodItem, serving_size: str) -> FoodItem:
    """Change an item's serving size, rescaling macros when the unit is kept.

    A unit change (e.g. g to cup) leaves macros untouched because there is no
    density table to convert with; the caller corrects macros by hand.
    """
    old = parse_serving(item.serving_size)
    new = parse_serving(serving_size)
    rendered = format_serving(new.quantity, new.unit)
    if old.unit.lower() != new.unit.lower() or old.quantity <= 0:
        return item.model_copy(update={"serving_size": rendered})
    ratio = new.quantity / old.quantity
    return item.model_copy(
        update={"serving_size": rendered, "macros": rescale(item.macros, ratio)}
    )


def _format_quantity(quantity: float) -> str:
    if float(quantity).is_integer():
        return str(int(quantity))
    return f"{quantity:.2f}".rstrip("0").rstrip(".")
