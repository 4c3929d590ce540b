"""Favorite foods kept on the device."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from pydantic import ValidationError

from nutrivision.domain.meals import FavoriteFood, FoodItem
from nutrivision.services.local_store import FAVORITES_KEY, LocalStore

_logger = logging.getLogger(__name__)


def _now_millis() -> int:
    return int(datetime.now(tz=UTC).timestamp() * 1000)


@dataclass
class FavoritesService:
    """Starred foods, unique by case-insensitive name, newest first."""

    local_store: LocalStore
    clock: Callable[[], int] = _now_millis

    def list_favorites(self) -> list[FavoriteFood]:
        raw = self.local_store.get(FAVORITES_KEY)
        if not isinstance(raw, list):
            return []
        favorites: list[FavoriteFood] = []
        for entry in raw:
            try:
                favorites.append(FavoriteFood.model_validate(entry))
            except ValidationError as exc:
                _logger.warning("Skipping unreadable favorite food: %s", exc)
        return favorites

    def by_usage(self) -> list[FavoriteFood]:
        """Most used first; ties keep the newest-first order."""
        return sorted(
            self.list_favorites(), key=lambda favorite: favorite.use_count, reverse=True
        )

    def get(self, favorite_id: str) -> FavoriteFood | None:
        return next(
            (item for item in self.list_favorites() if item.id == favorite_id), None
        )

    def find(self, name: str) -> FavoriteFood | None:
        wanted = name.strip().casefold()
        return next(
            (
                favorite
                for favorite in self.list_favorites()
                if favorite.name.strip().casefold() == wanted
            ),
            None,
        )

    def is_favorite(self, name: str) -> bool:
        return self.find(name) is not None

    def add(self, food: FoodItem) -> FavoriteFood:
        """Star a food; an already starred name returns the existing entry."""
        if not food.name.strip():
            raise ValueError("Favorite food needs a name")
        existing = self.find(food.name)
        if existing is not None:
            return existing
        favorite = FavoriteFood(
            id=str(uuid4()),
            added_at=self.clock(),
            name=food.name.strip(),
            serving_size=food.serving_size,
            macros=food.macros,
            micros=food.micros,
        )
        self._write([favorite, *self.list_favorites()])
        return favorite

    def remove(self, favorite_id: str) -> bool:
        favorites = self.list_favorites()
        remaining = [item for item in favorites if item.id != favorite_id]
        if len(remaining) == len(favorites):
            return False
        self._write(remaining)
        return True

    def toggle(self, food: FoodItem) -> bool:
        """Star or unstar a food by name; returns whether it is now starred."""
        existing = self.find(food.name)
        if existing is not None:
            self.remove(existing.id)
            return False
        self.add(food)
        return True

    def mark_used(self, favorite_id: str) -> FavoriteFood:
        favorites = self.list_favorites()
        for index, favorite in enumerate(favorites):
            if favorite.id == favorite_id:
                used = favorite.model_copy(update={"use_count": favorite.use_count + 1})
                favorites[index] = used
                self._write(favorites)
                return used
        raise KeyError(favorite_id)

    def _write(self, favorites: list[FavoriteFood]) -> None:
        self.local_store.set(
            FAVORITES_KEY, [favorite.to_json() for favorite in favorites]
        )
