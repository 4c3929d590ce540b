"""Saved meal templates kept on the device."""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from pydantic import ValidationError

from nutrivision.domain.meals import FoodItem, MealLog, MealType, SavedMeal
from nutrivision.services.analysis import LogSink
from nutrivision.services.local_store import SAVED_MEALS_KEY, LocalStore
from nutrivision.services.macros import sum_items

_logger = logging.getLogger(__name__)


def _now_millis() -> int:
    return int(datetime.now(tz=UTC).timestamp() * 1000)


@dataclass
class SavedMealService:
    """Create, rank and re-log reusable meals."""

    local_store: LocalStore
    log_store: LogSink
    clock: Callable[[], int] = _now_millis

    def list_meals(self) -> list[SavedMeal]:
        """Return saved meals in the order they were created."""
        raw = self.local_store.get(SAVED_MEALS_KEY)
        if not isinstance(raw, list):
            return []
        meals: list[SavedMeal] = []
        for entry in raw:
            try:
                meals.append(SavedMeal.model_validate(entry))
            except ValidationError as exc:
                _logger.warning("Skipping unreadable saved meal: %s", exc)
        return meals

    def get(self, meal_id: str) -> SavedMeal | None:
        return next((meal for meal in self.list_meals() if meal.id == meal_id), None)

    def save_meal(
        self, name: str, items: Iterable[FoodItem], emoji: str | None = None
    ) -> SavedMeal:
        """Store a new template; totals are computed from the items."""
        cleaned_name = name.strip()
        if not cleaned_name:
            raise ValueError("Saved meal name is empty")
        resolved_items = tuple(items)
        if not resolved_items:
            raise ValueError("Saved meal has no items")
        meal = SavedMeal(
            id=str(uuid4()),
            name=cleaned_name,
            created_at=self.clock(),
            items=resolved_items,
            total_macros=sum_items(resolved_items),
            emoji=emoji,
        )
        self._write([*self.list_meals(), meal])
        return meal

    def delete_meal(self, meal_id: str) -> bool:
        meals = self.list_meals()
        remaining = [meal for meal in meals if meal.id != meal_id]
        if len(remaining) == len(meals):
            return False
        self._write(remaining)
        return True

    def mark_used(self, meal_id: str) -> SavedMeal:
        """Count one more use and remember when it happened."""
        meals = self.list_meals()
        for index, meal in enumerate(meals):
            if meal.id == meal_id:
                used = meal.model_copy(
                    update={"use_count": meal.use_count + 1, "last_used": self.clock()}
                )
                meals[index] = used
                self._write(meals)
                return used
        raise KeyError(meal_id)

    def most_used(self, limit: int = 5) -> list[SavedMeal]:
        meals = sorted(self.list_meals(), key=lambda meal: meal.use_count, reverse=True)
        return meals[:limit]

    def recent(self, limit: int = 5) -> list[SavedMeal]:
        used = [meal for meal in self.list_meals() if meal.last_used is not None]
        used.sort(key=lambda meal: meal.last_used or 0, reverse=True)
        return used[:limit]

    def log_meal(
        self, meal_id: str, meal_type: MealType, note: str | None = None
    ) -> MealLog:
        """Commit the template as a new meal log stamped now."""
        meal = self.get(meal_id)
        if meal is None:
            raise KeyError(meal_id)
        log = MealLog(
            id=str(uuid4()),
            timestamp=self.clock(),
            items=meal.items,
            total_macros=sum_items(meal.items),
            meal_type=meal_type,
            note=(note or "").strip() or None,
        )
        self.log_store.commit(log)
        self.mark_used(meal_id)
        return log

    def _write(self, meals: list[SavedMeal]) -> None:
        self.local_store.set(SAVED_MEALS_KEY, [meal.to_json() for meal in meals])
