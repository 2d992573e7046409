import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

from reelwatch.services.scheduler import LOCK_DAILY_SCRAPING, SchedulerService

from helpers import make_settings


def _service(acquired=True, **env):
    """SchedulerService with the Postgres advisory lock replaced by a recorder."""
    service = SchedulerService()
    service.configure(make_settings(**env))
    service.lock_calls = []

    @asynccontextmanager
    async def fake_lock(lock_key):
        service.lock_calls.append(lock_key)
        yield acquired

    service._leader_lock = fake_lock
    return service


def test_disabled_scheduler_does_not_start():
    service = SchedulerService()
    service.configure(make_settings(SCHEDULER_ENABLED=False))

    service.start()

    assert not service.is_running()
    assert service.get_jobs() == []


def test_run_now_reports_configuration_errors():
    service = _service(APIFY_TOKEN=None)

    result = asyncio.run(service.run_daily_now())

    assert "APIFY_TOKEN" in result["error"]
    assert service.lock_calls == [LOCK_DAILY_SCRAPING]
    assert not service.daily_in_progress


class TestSingleRun:
    def test_tick_skips_while_a_run_is_in_progress(self):
        service = _service()
        service._execute_daily = AsyncMock(return_value={"status": "completed"})
        service._daily_in_progress = True

        result = asyncio.run(service._run_daily_scraping())

        assert result is None
        service._execute_daily.assert_not_awaited()
        assert service.lock_calls == []
        assert service.daily_in_progress

    def test_manual_trigger_takes_the_leader_lock(self):
        service = _service()
        service._execute_daily = AsyncMock(return_value={"status": "completed"})

        result = asyncio.run(service.run_daily_now())

        assert result == {"status": "completed"}
        assert service.lock_calls == [LOCK_DAILY_SCRAPING]
        assert not service.daily_in_progress

    def test_skips_when_another_instance_is_leader(self):
        service = _service(acquired=False)
        service._execute_daily = AsyncMock()

        assert asyncio.run(service._run_daily_scraping()) is None
        service._execute_daily.assert_not_awaited()
        assert not service.daily_in_progress

    def test_flag_is_set_during_the_run(self):
        service = _service()
        seen = []

        async def execute():
            seen.append(service.daily_in_progress)
            # a tick arriving mid-run is skipped
            seen.append(await service._run_daily_scraping())
            return {"status": "completed"}

        service._execute_daily = execute

        asyncio.run(service.run_daily_now())

        assert seen == [True, None]
        assert service.lock_calls == [LOCK_DAILY_SCRAPING]


class TestEngineLifecycle:
    def test_stop_disposes_an_engine_it_created(self):
        engine = MagicMock()
        engine.dispose = AsyncMock()
        service = SchedulerService()
        service.configure(make_settings())
        with patch("reelwatch.services.scheduler.create_engine", return_value=engine) as build:
            assert service._get_engine() is engine
            assert service._get_engine() is engine
        build.assert_called_once()

        asyncio.run(service.stop())

        engine.dispose.assert_awaited_once()
        assert service._engine is None

    def test_stop_leaves_a_shared_engine_alone(self):
        shared = MagicMock()
        shared.dispose = AsyncMock()
        service = SchedulerService()
        service.configure(make_settings(), engine=shared)

        assert service._get_engine() is shared
        asyncio.run(service.stop())

        shared.dispose.assert_not_awaited()

    def test_configure_does_not_build_an_engine(self):
        service = SchedulerService()
        service.configure(make_settings())
        service.configure(make_settings())

        assert service._engine is None
