"""Shared test fixtures."""

import asyncio
import copy
import threading
from dataclasses import dataclass, field
from uuid import uuid4

import pytest

from nutrivision.adapters.fdc_client import FdcClient
from nutrivision.config import Settings
from nutrivision.containers import AppContainer
from nutrivision.domain.meals import AiProvider, FoodItem, Macros, MealLog, UserSettings
from nutrivision.services.account import AccountService
from nutrivision.services.analysis import AnalysisSession, AnalyzerClient
from nutrivision.services.cache import InMemoryCache
from nutrivision.services.favorites import FavoritesService
from nutrivision.services.food_search import FoodSearchService
from nutrivision.services.local_store import LocalStore
from nutrivision.services.macros import sum_items
from nutrivision.services.meals import LogStore, MealLogRepository
from nutrivision.services.migration import MigrationCoordinator
from nutrivision.services.saved_meals import SavedMealService
from nutrivision.services.stats import StatsService
from nutrivision.services.undo import UndoLedger
from nutrivision.services.user_settings import (
    UserSettingsRepository,
    UserSettingsService,
)
from nutrivision.services.vision import VisionClient

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 256


def make_item(
    name: str = "Rice",
    calories: float = 200.0,
    protein: float = 4.0,
    carbs: float = 44.0,
    fat: float = 0.5,
    serving_size: str = "150g",
) -> FoodItem:
    return FoodItem(
        name=name,
        serving_size=serving_size,
        macros=Macros(calories=calories, protein=protein, carbs=carbs, fat=fat),
    )


def make_log(
    timestamp: int = 1_700_000_000_000,
    items: tuple[FoodItem, ...] | None = None,
    log_id: str | None = None,
) -> MealLog:
    resolved_items = items if items is not None else (make_item(),)
    return MealLog(
        id=log_id or str(uuid4()),
        timestamp=timestamp,
        items=resolved_items,
        total_macros=sum_items(resolved_items),
    )


@dataclass
class InMemoryLocalStore(LocalStore):
    """Dict-backed local store that copies values like a serializer would."""

    data: dict[str, object] = field(default_factory=dict)
    writes: int = 0

    def get(self, key: str) -> object | None:
        return copy.deepcopy(self.data.get(key))

    def set(self, key: str, value: object) -> None:
        self.writes += 1
        self.data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


@dataclass
class InMemoryMealLogRepository(MealLogRepository):
    """Thread-safe remote double with failure injection and an operation log."""

    logs: dict[str, dict[str, MealLog]] = field(default_factory=dict)
    operations: list[tuple[str, str]] = field(default_factory=list)
    fail_list: bool = False
    fail_ids: set[str] = field(default_factory=set)
    fail_all_writes: bool = False
    gates: dict[str, threading.Event] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def list_meal_logs(self, user_id: str) -> list[MealLog]:
        if self.fail_list:
            raise ConnectionError("remote unreachable")
        with self._lock:
            return list(self.logs.get(user_id, {}).values())

    def upsert_meal_log(self, user_id: str, log: MealLog) -> None:
        self._wait(log.id)
        self._check(log.id)
        with self._lock:
            self.logs.setdefault(user_id, {})[log.id] = log
            self.operations.append(("upsert", log.id))

    def delete_meal_log(self, user_id: str, log_id: str) -> None:
        self._check(log_id)
        with self._lock:
            self.logs.get(user_id, {}).pop(log_id, None)
            self.operations.append(("delete", log_id))

    def _wait(self, log_id: str) -> None:
        gate = self.gates.get(log_id)
        if gate is not None:
            gate.wait(timeout=5)

    def _check(self, log_id: str) -> None:
        if self.fail_all_writes or log_id in self.fail_ids:
            raise ConnectionError(f"remote write failed for {log_id}")


@dataclass
class InMemoryUserSettingsRepository(UserSettingsRepository):
    """In-memory settings repository for tests."""

    settings: dict[str, UserSettings] = field(default_factory=dict)
    fail: bool = False

    def get_settings(self, user_id: str) -> UserSettings | None:
        if self.fail:
            raise ConnectionError("remote unreachable")
        return self.settings.get(user_id)

    def save_settings(self, user_id: str, settings: UserSettings) -> None:
        if self.fail:
            raise ConnectionError("remote unreachable")
        self.settings[user_id] = settings


@dataclass
class FakeAnalyzer(AnalyzerClient):
    """Analyzer double returning queued results, optionally held by a gate.

    Queued exceptions are raised instead of returned.
    """

    results: list[object] = field(default_factory=list)
    search_results: list[FoodItem] = field(default_factory=list)
    gate: asyncio.Event | None = None
    calls: list[tuple[str, object]] = field(default_factory=list)

    async def analyze(self, image_bytes: bytes, provider: AiProvider) -> list[FoodItem]:
        self.calls.append(("analyze", provider))
        return await self._next()

    async def correct(
        self,
        image_bytes: bytes,
        current_items: list[FoodItem],
        instruction: str,
        provider: AiProvider,
    ) -> list[FoodItem]:
        self.calls.append(("correct", instruction))
        return await self._next()

    async def search(self, query: str, provider: AiProvider) -> list[FoodItem]:
        self.calls.append(("search", query))
        return list(self.search_results)

    async def _next(self) -> list[FoodItem]:
        result = self.results.pop(0) if self.results else []
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(result, BaseException):
            raise result
        return list(result)  # type: ignore[call-overload]


@dataclass
class FakeVisionClient(VisionClient):
    """Fake vision client returning queued payloads and recording requests."""

    payloads: list[object] = field(default_factory=list)
    requests: list[dict[str, object]] = field(default_factory=list)

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
        self.requests.append(
            {"model": model, "image_data_url": image_data_url, "prompt": prompt}
        )
        payload = self.payloads.pop(0) if self.payloads else {"items": []}
        if isinstance(payload, BaseException):
            raise payload
        return payload  # type: ignore[return-value]


@dataclass
class FakeFdcClient(FdcClient):
    """Fake FDC client with canned search payloads."""

    search_payload: dict[str, object] = field(
        default_factory=lambda: {
            "foods": [
                {
                    "fdcId": 2,
                    "description": "Rice flour, white",
                    "foodNutrients": [
                        {"nutrientId": 1008, "value": 366},
                        {"nutrientId": 1003, "value": 6.0},
                        {"nutrientId": 1005, "value": 80.1},
                        {"nutrientId": 1004, "value": 1.4},
                    ],
                },
                {
                    "fdcId": 1,
                    "description": "Rice, white, long-grain, cooked",
                    "foodNutrients": [
                        {"nutrientId": 1008, "value": 130},
                        {"nutrientId": 1003, "value": 2.69},
                        {"nutrientId": 1005, "value": 28.17},
                        {"nutrientId": 1004, "value": 0.28},
                        {"nutrientId": 1079, "value": 0.4},
                        {"nutrientId": 1093, "value": 1},
                    ],
                },
                {"fdcId": 3, "description": "Water", "foodNutrients": []},
            ]
        }
    )
    failures: list[Exception] = field(default_factory=list)
    calls: int = 0

    async def search_foods(self, query: str, page_size: int = 20) -> dict[str, object]:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.search_payload


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        supabase_url=None,
        supabase_service_key=None,
        openai_api_key="openai-key",
        gemini_api_key="gemini-key",
        fdc_api_key="fdc-key",
        local_store_dir=str(tmp_path / "store"),
    )


@pytest.fixture
def local_store() -> InMemoryLocalStore:
    return InMemoryLocalStore()


@pytest.fixture
def remote() -> InMemoryMealLogRepository:
    return InMemoryMealLogRepository()


@pytest.fixture
def settings_repository() -> InMemoryUserSettingsRepository:
    return InMemoryUserSettingsRepository()


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def container(
    settings: Settings,
    local_store: InMemoryLocalStore,
    remote: InMemoryMealLogRepository,
    settings_repository: InMemoryUserSettingsRepository,
    analyzer: FakeAnalyzer,
) -> AppContainer:
    undo_ledger = UndoLedger()
    log_store = LogStore(
        local_store=local_store,
        remote=remote,
        undo_ledger=undo_ledger,
        undo_window_seconds=settings.undo_window_seconds,
    )
    user_settings_service = UserSettingsService(
        local_store=local_store,
        repository=settings_repository,
        on_sync_failure=log_store.record_failure,
    )
    log_store.migration = MigrationCoordinator(
        local_store=local_store,
        repository=remote,
        settings_service=user_settings_service,
    )
    analysis_session = AnalysisSession(
        analyzer=analyzer,
        log_store=log_store,
        timeout_seconds=settings.analysis_timeout_seconds,
    )

    async def close_resources() -> None:
        await log_store.drain()

    return AppContainer(
        settings=settings,
        log_store=log_store,
        undo_ledger=undo_ledger,
        user_settings_service=user_settings_service,
        analysis_session=analysis_session,
        account_service=AccountService(
            log_store=log_store,
            settings_service=user_settings_service,
            analysis_session=analysis_session,
        ),
        stats_service=StatsService(log_store),
        food_search_service=FoodSearchService(
            fdc_client=FakeFdcClient(), cache=InMemoryCache()
        ),
        saved_meal_service=SavedMealService(
            local_store=local_store, log_store=log_store
        ),
        favorites_service=FavoritesService(local_store=local_store),
        close_resources=close_resources,
    )
