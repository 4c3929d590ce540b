"""One-time move of anonymous local data into the remote store."""

import asyncio
import logging
from dataclasses import dataclass

from nutrivision.domain.meals import MealLog
from nutrivision.services.local_store import LocalStore, clear_logs, read_logs
from nutrivision.services.meals import MealLogRepository
from nutrivision.services.user_settings import UserSettingsService

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationResult:
    """Outcome of a migration run."""

    migrated: tuple[MealLog, ...]
    failed_count: int

    @property
    def migrated_count(self) -> int:
        return len(self.migrated)

    @property
    def complete(self) -> bool:
        return self.failed_count == 0


@dataclass
class MigrationCoordinator:
    """Copies local logs to the remote store, clearing local only on success.

    Remote writes are upserts keyed by log id, so re-running after a partial
    failure re-sends already migrated logs without duplicating them.
    """

    local_store: LocalStore
    repository: MealLogRepository
    settings_service: UserSettingsService | None = None

    async def run(self, identity: str) -> MigrationResult:
        """Migrate every local log for identity."""
        logs = read_logs(self.local_store)
        migrated: list[MealLog] = []
        failed = 0
        for log in logs:
            try:
                await asyncio.to_thread(self.repository.upsert_meal_log, identity, log)
            except Exception as exc:
                failed += 1
                _logger.warning("Migration of meal log %s failed: %s", log.id, exc)
                continue
            migrated.append(log)

        if self.settings_service is not None:
            local_settings = self.settings_service.read_local()
            if local_settings is not None:
                await self.settings_service.save(identity, local_settings)

        result = MigrationResult(migrated=tuple(migrated), failed_count=failed)
        if result.complete:
            clear_logs(self.local_store)
        _logger.info(
            "Migrated %s of %s local meal logs (complete=%s)",
            result.migrated_count,
            len(logs),
            result.complete,
        )
        return result
