"""
Tests for the background status poll job.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.scheduler import get_scheduler_status, job_status, run_status_poll, scheduler, setup_scheduler
from tests.conftest import build_settings


@pytest.fixture(autouse=True)
def clean_scheduler():
    scheduler.remove_all_jobs()
    job_status["status_poll"] = {"runs": 0, "last_result": None, "last_error": None}
    yield
    scheduler.remove_all_jobs()


class TestSetup:
    def test_registers_pending_poll_job(self, registry):
        setup_scheduler(registry, build_settings(status_poll_interval_minutes=7))

        job = scheduler.get_job("pending_status_poll")
        assert job is not None
        assert job.kwargs["registry"] is registry
        assert job.kwargs["min_age_minutes"] == 10
        assert job.kwargs["batch_size"] == 50

    def test_setup_is_idempotent(self, registry):
        setup_scheduler(registry, build_settings())
        setup_scheduler(registry, build_settings())
        assert len(scheduler.get_jobs()) == 1

    def test_status_before_start(self, registry):
        setup_scheduler(registry, build_settings())
        status = get_scheduler_status()

        assert status["running"] is False
        assert [job["id"] for job in status["jobs"]] == ["pending_status_poll"]
        assert status["jobs"][0]["next_run"] is None


class TestRunStatusPoll:
    @pytest.mark.asyncio
    async def test_skips_without_database(self, registry):
        with patch("app.database.Database.client", None):
            await run_status_poll(registry, 10, 50)
        assert job_status["status_poll"]["runs"] == 0

    @pytest.mark.asyncio
    async def test_records_poll_summary(self, registry):
        summary = {"checked": 3, "updated": 1, "failed": 0}
        poll = AsyncMock(return_value=summary)

        with patch("app.database.Database.client", MagicMock()), \
                patch("app.database.Database.get_db", return_value=MagicMock()), \
                patch("app.services.payment.payment_service.PaymentOrchestrator.poll_pending_transactions", poll):
            await run_status_poll(registry, 15, 20)

        poll.assert_awaited_once_with(15, 20)
        status = job_status["status_poll"]
        assert status["runs"] == 1
        assert status["last_result"] == summary
        assert status["last_error"] is None

    @pytest.mark.asyncio
    async def test_failure_is_recorded_not_raised(self, registry):
        poll = AsyncMock(side_effect=RuntimeError("mongo down"))

        with patch("app.database.Database.client", MagicMock()), \
                patch("app.database.Database.get_db", return_value=MagicMock()), \
                patch("app.services.payment.payment_service.PaymentOrchestrator.poll_pending_transactions", poll):
            await run_status_poll(registry, 10, 50)

        assert job_status["status_poll"]["last_error"] == "mongo down"
