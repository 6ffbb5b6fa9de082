"""Tests for the distributed job lock and the scheduler health report."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import RedisError

from jobs import health
from settlement.utils.distributed_lock import DistributedLock


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.set.return_value = True
    return client


class TestDistributedLock:
    """Redis SET NX lock."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, redis_client):
        lock = DistributedLock(redis_client=redis_client)

        async with lock.lock("daily_bonuses", timeout=120) as acquired:
            assert acquired

        name, token = redis_client.set.call_args.args
        assert name == "settlement:lock:daily_bonuses"
        assert redis_client.set.call_args.kwargs == {"nx": True, "ex": 120}
        # Release only deletes our own token
        eval_args = redis_client.eval.call_args.args
        assert eval_args[1:] == (1, name, token)

    @pytest.mark.asyncio
    async def test_held_elsewhere(self, redis_client):
        redis_client.set.return_value = None
        lock = DistributedLock(redis_client=redis_client)

        async with lock.lock("daily_bonuses") as acquired:
            assert not acquired

        redis_client.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_release_error_is_not_raised(self, redis_client):
        redis_client.eval.side_effect = RedisError("connection lost")
        lock = DistributedLock(redis_client=redis_client)

        async with lock.lock("retry_sweep") as acquired:
            assert acquired

    @pytest.mark.asyncio
    async def test_in_process_fallback(self):
        lock = DistributedLock()

        async with lock.lock("local-job") as outer:
            assert outer
            async with lock.lock("local-job") as inner:
                assert not inner

        async with lock.lock("local-job") as again:
            assert again


class TestSchedulerStatus:
    """Health report of the scheduler."""

    def test_not_initialized(self, monkeypatch):
        monkeypatch.setattr(health, "_scheduler", None)

        body, status = health.scheduler_status()

        assert status == 503
        assert body["status"] == "unhealthy"

    def test_running_scheduler_lists_jobs(self, monkeypatch):
        job = MagicMock(next_run_time=datetime(2026, 10, 20, 0, 5, tzinfo=UTC))
        job.id = "daily_bonuses"
        scheduler = MagicMock(running=True)
        scheduler.get_jobs.return_value = [job]
        monkeypatch.setattr(health, "_scheduler", scheduler)

        body, status = health.scheduler_status()

        assert status == 200
        assert body["status"] == "healthy"
        assert body["jobs"] == [
            {"id": "daily_bonuses", "next_run_time": "2026-10-20T00:05:00+00:00"}
        ]

    def test_stopped_scheduler(self, monkeypatch):
        scheduler = MagicMock(running=False)
        scheduler.get_jobs.return_value = []
        monkeypatch.setattr(health, "_scheduler", scheduler)

        body, status = health.scheduler_status()

        assert status == 503
        assert body["status"] == "stopped"
