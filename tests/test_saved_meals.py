"""Tests for saved meal templates."""

import pytest

from nutrivision.domain.meals import Macros, MealLog, MealType
from nutrivision.services.local_store import SAVED_MEALS_KEY
from nutrivision.services.saved_meals import SavedMealService
from tests.conftest import InMemoryLocalStore, make_item


class RecordingSink:
    def __init__(self) -> None:
        self.logs: list[MealLog] = []

    def commit(self, log: MealLog) -> None:
        self.logs.append(log)


class FakeClock:
    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


def _service(
    local_store: InMemoryLocalStore | None = None,
) -> tuple[SavedMealService, RecordingSink]:
    sink = RecordingSink()
    service = SavedMealService(
        local_store=local_store or InMemoryLocalStore(),
        log_store=sink,
        clock=FakeClock(),
    )
    return service, sink


def test_save_meal_computes_totals_and_persists() -> None:
    local_store = InMemoryLocalStore()
    service, _ = _service(local_store)

    meal = service.save_meal(
        "  Usual breakfast ",
        [make_item("Oats", calories=150), make_item("Milk", calories=100)],
        emoji="🥣",
    )

    assert meal.name == "Usual breakfast"
    assert meal.total_macros.calories == 250
    assert meal.use_count == 0
    assert meal.last_used is None
    assert local_store.data[SAVED_MEALS_KEY][0]["emoji"] == "🥣"
    assert service.list_meals() == [meal]


@pytest.mark.parametrize(("name", "items"), [("   ", [make_item()]), ("Lunch", [])])
def test_save_meal_rejects_blank_name_or_no_items(name: str, items: list) -> None:
    service, _ = _service()

    with pytest.raises(ValueError):
        service.save_meal(name, items)


def test_usage_ordering() -> None:
    service, _ = _service()
    soup = service.save_meal("Soup", [make_item("Soup")])
    salad = service.save_meal("Salad", [make_item("Salad")])
    pasta = service.save_meal("Pasta", [make_item("Pasta")])

    service.mark_used(salad.id)
    service.mark_used(salad.id)
    service.mark_used(soup.id)

    assert [meal.name for meal in service.most_used()] == ["Salad", "Soup", "Pasta"]
    assert [meal.name for meal in service.recent()] == ["Soup", "Salad"]
    assert [meal.name for meal in service.most_used(limit=1)] == ["Salad"]
    assert service.get(pasta.id) == pasta
    with pytest.raises(KeyError):
        service.mark_used("missing")


def test_log_meal_commits_and_counts_use() -> None:
    service, sink = _service()
    meal = service.save_meal("Toast", [make_item("Toast", calories=80)])

    log = service.log_meal(meal.id, MealType.BREAKFAST, note=" quick ")

    assert sink.logs == [log]
    assert log.id != meal.id
    assert log.items == meal.items
    assert log.total_macros == Macros(calories=80, protein=4.0, carbs=44.0, fat=0.5)
    assert log.meal_type is MealType.BREAKFAST
    assert log.note == "quick"
    used = service.get(meal.id)
    assert used is not None
    assert used.use_count == 1
    assert used.last_used == log.timestamp + 1


def test_delete_meal_and_unreadable_entries() -> None:
    local_store = InMemoryLocalStore()
    service, _ = _service(local_store)
    meal = service.save_meal("Soup", [make_item("Soup")])
    local_store.data[SAVED_MEALS_KEY].append({"name": "no id"})

    assert service.list_meals() == [meal]
    assert service.delete_meal(meal.id) is True
    assert service.delete_meal(meal.id) is False
    assert service.list_meals() == []
