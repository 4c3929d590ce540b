"""Dependency container wiring for the application."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from nutrivision.adapters.fdc_client import HttpxFdcClient
from nutrivision.adapters.gemini_vision_client import GeminiVisionClient
from nutrivision.adapters.json_file_store import JsonFileStore
from nutrivision.adapters.openai_vision_client import OpenAIVisionClient
from nutrivision.adapters.supabase_meal_log_repository import (
    SupabaseMealLogRepository,
)
from nutrivision.adapters.supabase_user_settings_repository import (
    SupabaseUserSettingsRepository,
)
from nutrivision.config import Settings
from nutrivision.domain.meals import AiProvider
from nutrivision.services.account import AccountService
from nutrivision.services.analysis import AnalysisSession
from nutrivision.services.cache import InMemoryCache
from nutrivision.services.favorites import FavoritesService
from nutrivision.services.food_search import FoodSearchService
from nutrivision.services.meals import LogStore
from nutrivision.services.migration import MigrationCoordinator
from nutrivision.services.saved_meals import SavedMealService
from nutrivision.services.stats import StatsService
from nutrivision.services.undo import UndoLedger
from nutrivision.services.user_settings import UserSettingsService
from nutrivision.services.vision import VisionAnalyzer, VisionRoute

_logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    log_store: LogStore
    undo_ledger: UndoLedger
    user_settings_service: UserSettingsService
    analysis_session: AnalysisSession
    account_service: AccountService
    stats_service: StatsService
    food_search_service: FoodSearchService
    saved_meal_service: SavedMealService
    favorites_service: FavoritesService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    local_store = JsonFileStore.create(resolved_settings.local_store_dir)

    meal_log_repository = None
    user_settings_repository = None
    if resolved_settings.remote_enabled:
        supabase_client = create_client(
            resolved_settings.supabase_url, resolved_settings.supabase_service_key
        )
        meal_log_repository = SupabaseMealLogRepository(supabase_client)
        user_settings_repository = SupabaseUserSettingsRepository(supabase_client)
    else:
        _logger.info("Supabase is not configured; meal logs stay on this device")

    undo_ledger = UndoLedger()
    log_store = LogStore(
        local_store=local_store,
        remote=meal_log_repository,
        undo_ledger=undo_ledger,
        undo_window_seconds=resolved_settings.undo_window_seconds,
    )
    user_settings_service = UserSettingsService(
        local_store=local_store,
        repository=user_settings_repository,
        on_sync_failure=log_store.record_failure,
    )
    if meal_log_repository is not None:
        log_store.migration = MigrationCoordinator(
            local_store=local_store,
            repository=meal_log_repository,
            settings_service=user_settings_service,
        )

    fdc_client = HttpxFdcClient.create(
        api_key=resolved_settings.fdc_api_key,
        base_url=resolved_settings.fdc_base_url,
    )
    food_search_service = FoodSearchService(
        fdc_client=fdc_client, cache=InMemoryCache()
    )
    openai_client = OpenAIVisionClient.create(resolved_settings.openai_api_key)
    gemini_client = GeminiVisionClient.create(resolved_settings.gemini_api_key)
    analyzer = VisionAnalyzer(
        routes={
            AiProvider.OPENAI: VisionRoute(
                client=openai_client,
                model=resolved_settings.openai_model,
                correction_model=resolved_settings.openai_correction_model,
            ),
            AiProvider.GEMINI: VisionRoute(
                client=gemini_client,
                model=resolved_settings.gemini_model,
                correction_model=resolved_settings.gemini_correction_model,
            ),
        },
        food_search=food_search_service,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
    )
    analysis_session = AnalysisSession(
        analyzer=analyzer,
        log_store=log_store,
        timeout_seconds=resolved_settings.analysis_timeout_seconds,
    )
    account_service = AccountService(
        log_store=log_store,
        settings_service=user_settings_service,
        analysis_session=analysis_session,
    )

    async def close_resources() -> None:
        await log_store.drain()
        undo_ledger.clear()
        await fdc_client.close()
        await openai_client.close()
        await gemini_client.close()

    return AppContainer(
        settings=resolved_settings,
        log_store=log_store,
        undo_ledger=undo_ledger,
        user_settings_service=user_settings_service,
        analysis_session=analysis_session,
        account_service=account_service,
        stats_service=StatsService(log_store),
        food_search_service=food_search_service,
        saved_meal_service=SavedMealService(
            local_store=local_store, log_store=log_store
        ),
        favorites_service=FavoritesService(local_store=local_store),
        close_resources=close_resources,
    )
