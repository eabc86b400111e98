"""Tests for companion.core.background — detached job runner."""

import logging

import pytest
from unittest.mock import AsyncMock

from companion.core.background import BackgroundRunner


class TestBackgroundRunner:
    @pytest.mark.asyncio
    async def test_job_runs(self):
        runner = BackgroundRunner()
        job = AsyncMock()
        runner.submit("recompute", job)
        await runner.drain()
        job.assert_awaited_once()
        assert runner.pending == 0
        assert runner.failures == 0

    @pytest.mark.asyncio
    async def test_failure_logged_once_and_not_retried(self, caplog):
        runner = BackgroundRunner()
        job = AsyncMock(side_effect=RuntimeError("db locked"))

        with caplog.at_level(logging.ERROR, logger="companion.core.background"):
            runner.submit("recompute", job)
            await runner.drain()

        job.assert_awaited_once()
        assert runner.failures == 1
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "recompute" in errors[0].getMessage()

    @pytest.mark.asyncio
    async def test_failure_does_not_reach_caller(self):
        runner = BackgroundRunner()
        task = runner.submit("memory", AsyncMock(side_effect=ValueError("bad")))
        await runner.drain()
        assert task.done()
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_drain_waits_for_jobs_scheduled_by_jobs(self):
        runner = BackgroundRunner()
        inner = AsyncMock()

        async def outer():
            runner.submit("inner", inner)

        runner.submit("outer", outer)
        await runner.drain()
        inner.assert_awaited_once()
