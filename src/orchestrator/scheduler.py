"""
Consolidation Scheduler
=======================

Runs Cold tier consolidation on a schedule with APScheduler.

Features:
    - Monthly execution at a configurable day and time (default: 1st, 03:00 UTC)
    - Manual trigger support
    - Run history tracking
    - Retry after failure

Usage:
    # Start scheduler daemon
    python -m src.orchestrator.scheduler

    # Or use programmatically
    from src.orchestrator.scheduler import ConsolidationScheduler

    scheduler = ConsolidationScheduler(service.run_consolidation)
    scheduler.start()

Configuration:
    CONSOLIDATION_CRON_DAY: Day of month (default: 1)
    CONSOLIDATION_CRON_HOUR: Hour (default: 3)
    CONSOLIDATION_CRON_MINUTE: Minute (default: 0)
    CONSOLIDATION_TIMEZONE: Timezone (default: UTC)
"""

import json
import logging
import signal
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Event
from typing import Any, Callable, Dict, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from src.knowledge.config import SchedulerConfig
from src.knowledge.errors import KnowledgeError
from src.memory.consolidation import ConsolidationResult

logger = logging.getLogger(__name__)

JOB_ID = "memory_consolidation"


@dataclass
class RunHistory:
    """Tracks scheduler run history."""
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_run_duration: Optional[float] = None
    last_items_archived: int = 0
    consecutive_failures: int = 0
    total_runs: int = 0
    total_successes: int = 0
    total_failures: int = 0

    def record_run(self, status: str, duration: float, items_archived: int = 0):
        """Record a consolidation run. 'skipped' runs do not count."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_run_duration = duration
        self.last_items_archived = items_archived

        if status == "skipped":
            return

        self.total_runs += 1
        if status in ("completed", "partial", "interrupted"):
            self.total_successes += 1
            self.consecutive_failures = 0
        else:
            self.total_failures += 1
            self.consecutive_failures += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration": self.last_run_duration,
            "last_items_archived": self.last_items_archived,
            "consecutive_failures": self.consecutive_failures,
            "total_runs": self.total_runs,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "success_rate": (
                self.total_successes / self.total_runs * 100
                if self.total_runs > 0 else 0
            ),
        }


class ConsolidationScheduler:
    """
    Scheduler for the Cold tier consolidation job.

    The job callable is injected so the scheduler does not own the store
    or the model clients.
    """

    def __init__(
        self,
        run_job: Callable[[], ConsolidationResult],
        config: Optional[SchedulerConfig] = None,
    ):
        """
        Args:
            run_job: Callable that runs one consolidation and returns its result
            config: Scheduler configuration (uses defaults if None)
        """
        self.run_job = run_job
        self.config = config or SchedulerConfig()
        self._scheduler: Optional[BackgroundScheduler] = None
        self._stop_event = Event()
        self._history = RunHistory()

        logger.info(
            f"ConsolidationScheduler initialized: "
            f"schedule={self.config.get_cron_expression()} {self.config.timezone}"
        )

    @property
    def is_running(self) -> bool:
        if self._scheduler is None:
            return False
        return self._scheduler.running

    def start(self, blocking: bool = False):
        """
        Start the scheduler.

        Args:
            blocking: If True, blocks until scheduler is stopped
        """
        if self._scheduler is not None and self._scheduler.running:
            logger.warning("Scheduler is already running")
            return

        self._stop_event.clear()
        self._scheduler = BackgroundScheduler(timezone=self.config.timezone)

        self._scheduler.add_job(
            self._execute,
            trigger=CronTrigger(
                day=self.config.cron_day,
                hour=self.config.cron_hour,
                minute=self.config.cron_minute,
                timezone=self.config.timezone,
            ),
            id=JOB_ID,
            name="Memory Consolidation",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.config.misfire_grace_time,
        )

        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

        self._scheduler.start()
        logger.info(f"Scheduler started. Next run at: {self.get_next_run_time()}")

        if blocking:
            self._run_blocking()

    def stop(self, wait: bool = True):
        """
        Stop the scheduler.

        Args:
            wait: If True, waits for running jobs to complete
        """
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=wait)
            self._scheduler = None
            logger.info("Scheduler stopped")

        self._stop_event.set()

    def _run_blocking(self):
        """Block until stop signal received."""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, stopping scheduler...")
            self.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        logger.info("Scheduler running in blocking mode. Press Ctrl+C to stop.")
        self._stop_event.wait()

    def trigger_now(self) -> Optional[ConsolidationResult]:
        """
        Run consolidation immediately.

        Returns:
            ConsolidationResult, or None if the run raised
        """
        logger.info("Triggering immediate consolidation run")
        return self._execute()

    def _execute(self) -> Optional[ConsolidationResult]:
        logger.info("=== Scheduled Consolidation Starting ===", extra={"event_type": "consolidation_start"})

        try:
            result = self.run_job()
        except KnowledgeError as e:
            logger.exception(f"Consolidation failed: {e}")
            self._history.record_run("failed", 0)

            if self._history.consecutive_failures >= self.config.max_retries:
                logger.error(
                    f"Consolidation has failed {self._history.consecutive_failures} "
                    f"consecutive times. Manual intervention required."
                )
            else:
                self._schedule_retry()
            return None

        self._history.record_run(result.status, result.duration_seconds, result.items_archived)
        return result

    def _schedule_retry(self):
        """Schedule a retry after failure."""
        if self._scheduler is None:
            return

        now = datetime.now(timezone.utc)
        retry_time = now + timedelta(minutes=self.config.retry_delay_minutes)

        self._scheduler.add_job(
            self._execute,
            trigger="date",
            run_date=retry_time,
            id=f"retry_{now.timestamp()}",
            name="Consolidation Retry",
            max_instances=1,
        )
        logger.info(f"Scheduled retry at {retry_time}")

    def get_next_run_time(self) -> Optional[datetime]:
        if self._scheduler is None:
            return None

        job = self._scheduler.get_job(JOB_ID)
        if job is None:
            return None
        return job.next_run_time

    def _on_job_executed(self, event: JobExecutionEvent):
        logger.info(f"Job {event.job_id} executed successfully")

    def _on_job_error(self, event: JobExecutionEvent):
        logger.error(f"Job {event.job_id} raised an exception: {event.exception}")

    def _on_job_missed(self, event: JobExecutionEvent):
        logger.warning(f"Job {event.job_id} missed its scheduled time")

    def get_status(self) -> Dict[str, Any]:
        """Current scheduler state and history."""
        next_run = self.get_next_run_time()
        return {
            "is_running": self.is_running,
            "config": {
                "schedule": self.config.get_cron_expression(),
                "timezone": self.config.timezone,
                "max_retries": self.config.max_retries,
                "retry_delay_minutes": self.config.retry_delay_minutes,
            },
            "next_run": next_run.isoformat() if next_run else None,
            "history": self._history.to_dict(),
        }

    def get_run_history(self) -> RunHistory:
        return self._history


def main():
    """Command-line entry point for the scheduler."""
    import argparse

    from src.knowledge.config import get_settings
    from src.memory.service import MemoryService
    from .logging_config import setup_logging_from_config

    parser = argparse.ArgumentParser(description="Memory Consolidation Scheduler")
    parser.add_argument("--mode", choices=["daemon", "once", "status"], default="daemon", help="Scheduler mode")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging_from_config(settings.logging, verbose=args.verbose)

    service = MemoryService.from_settings(settings)
    scheduler = ConsolidationScheduler(service.run_consolidation, settings.scheduler)

    try:
        if args.mode == "daemon":
            scheduler.start(blocking=True)
        elif args.mode == "once":
            result = scheduler.trigger_now()
            if result is None:
                print("Consolidation failed")
                return 1
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print(json.dumps(scheduler.get_status(), indent=2, default=str))
    finally:
        service.close()

    return 0


if __name__ == "__main__":
    exit(main())
