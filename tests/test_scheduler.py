"""
Tests for the consolidation scheduler.

The APScheduler loop itself is not started; the job callable is a fake.
"""

from unittest.mock import MagicMock

from src.knowledge.config import SchedulerConfig
from src.knowledge.errors import ModelUnavailable
from src.memory.consolidation import ConsolidationResult
from src.orchestrator.scheduler import ConsolidationScheduler, RunHistory


class TestRunHistory:
    """Tests for run bookkeeping."""

    def test_success_resets_failures(self):
        history = RunHistory()
        history.record_run("failed", 0)
        history.record_run("failed", 0)
        history.record_run("completed", 1.5, items_archived=4)

        assert history.consecutive_failures == 0
        assert history.total_runs == 3
        assert history.total_successes == 1
        assert history.last_items_archived == 4

    def test_skipped_runs_not_counted(self):
        history = RunHistory()
        history.record_run("skipped", 0)

        assert history.total_runs == 0
        assert history.last_run_status == "skipped"

    def test_partial_counts_as_success(self):
        history = RunHistory()
        history.record_run("partial", 2.0, items_archived=1)
        assert history.total_successes == 1

    def test_to_dict(self):
        history = RunHistory()
        history.record_run("completed", 1.0)
        history.record_run("failed", 0)

        data = history.to_dict()
        assert data["success_rate"] == 50.0
        assert data["last_run_status"] == "failed"


class TestConsolidationScheduler:
    """Tests for manual triggering and status."""

    def test_trigger_now_runs_job(self):
        result = ConsolidationResult(job_id="job1", status="completed", items_archived=3, duration_seconds=0.4)
        run_job = MagicMock(return_value=result)
        scheduler = ConsolidationScheduler(run_job, SchedulerConfig())

        returned = scheduler.trigger_now()

        assert returned is result
        run_job.assert_called_once_with()
        history = scheduler.get_run_history()
        assert history.last_run_status == "completed"
        assert history.last_items_archived == 3

    def test_trigger_now_records_failure(self):
        run_job = MagicMock(side_effect=ModelUnavailable("no summarizer", capability="summarization"))
        scheduler = ConsolidationScheduler(run_job, SchedulerConfig(max_retries=3))

        assert scheduler.trigger_now() is None

        history = scheduler.get_run_history()
        assert history.last_run_status == "failed"
        assert history.consecutive_failures == 1

    def test_status_when_not_started(self):
        scheduler = ConsolidationScheduler(MagicMock(), SchedulerConfig(cron_day=1, cron_hour=3, cron_minute=0))

        status = scheduler.get_status()

        assert status["is_running"] is False
        assert status["next_run"] is None
        assert status["config"]["schedule"] == "0 3 1 * *"

    def test_cron_expression(self):
        config = SchedulerConfig(cron_day=15, cron_hour=4, cron_minute=30)
        assert config.get_cron_expression() == "30 4 15 * *"
