"""Tests for switching the active identity."""

import asyncio

from nutrivision.domain.errors import SyncOperation
from nutrivision.domain.meals import AiProvider, UserSettings
from nutrivision.services.meals import LogSource
from tests.conftest import JPEG_BYTES, make_item, make_log


def test_sign_in_loads_settings_logs_and_provider(
    container, remote, settings_repository
) -> None:
    remote_log = make_log()
    remote.logs["user-1"] = {remote_log.id: remote_log}
    settings_repository.settings["user-1"] = UserSettings(
        ai_provider=AiProvider.GEMINI
    )

    source = asyncio.run(container.account_service.sign_in("user-1"))

    assert source is LogSource.REMOTE
    assert container.account_service.identity == "user-1"
    assert container.log_store.logs == (remote_log,)
    assert container.analysis_session.provider is AiProvider.GEMINI


def test_sign_out_dismisses_analysis_and_hides_user_logs(
    container, remote, analyzer
) -> None:
    remote_log = make_log()
    remote.logs["user-1"] = {remote_log.id: remote_log}
    analyzer.results.append([make_item()])

    async def run() -> None:
        await container.account_service.sign_in("user-1")
        await container.analysis_session.capture(JPEG_BYTES)
        await container.account_service.sign_in(None)

    asyncio.run(run())

    assert container.analysis_session.current is None
    assert container.log_store.logs == ()


def test_update_settings_switches_provider(container) -> None:
    asyncio.run(container.account_service.sign_in(None))

    saved = asyncio.run(
        container.account_service.update_settings(
            UserSettings(ai_provider=AiProvider.GEMINI)
        )
    )

    assert saved.ai_provider is AiProvider.GEMINI
    assert container.analysis_session.provider is AiProvider.GEMINI


def test_sign_in_starts_with_fresh_sync_notices(
    container, remote, settings_repository
) -> None:
    async def run() -> None:
        await container.account_service.sign_in("user-1")
        remote.fail_all_writes = True
        container.log_store.commit(make_log())
        await container.log_store.drain()
        assert len(container.log_store.sync_failures) == 1
        remote.fail_all_writes = False
        settings_repository.fail = True
        await container.account_service.sign_in("user-2")

    asyncio.run(run())

    assert [failure.operation for failure in container.log_store.sync_failures] == [
        SyncOperation.SETTINGS
    ]
