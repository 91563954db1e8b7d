"""
Tests for the scheduler integration.

Run with: pytest tests/test_jobs.py -v
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from gym_rewards.conf import EXPIRATION_SWEEP_HOUR
from gym_rewards.prizes import expire_old_prizes, register_expiration_job


class TestExpirationJob:
    """Tests for the daily expiration sweep job."""

    @pytest.mark.asyncio
    async def test_job_runs_sweep(self):
        engine = MagicMock()
        engine.expire_pending = AsyncMock(return_value=4)
        await expire_old_prizes(engine)
        engine.expire_pending.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_job_logs_errors(self):
        engine = MagicMock()
        engine.expire_pending = AsyncMock(side_effect=RuntimeError("db down"))
        await expire_old_prizes(engine)

    def test_register(self):
        scheduler = MagicMock()
        engine = MagicMock()
        register_expiration_job(scheduler, engine, timezone='America/Guatemala')

        scheduler.add_job.assert_called_once()
        args, kwargs = scheduler.add_job.call_args
        assert args == (expire_old_prizes, 'cron')
        assert kwargs['hour'] == EXPIRATION_SWEEP_HOUR
        assert kwargs['args'] == [engine]
        assert kwargs['id'] == 'prize_expiration_check'
        assert kwargs['timezone'] == 'America/Guatemala'
