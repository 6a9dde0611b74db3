"""
APScheduler-driven backup loop.

Fixed-delay scheduling: each cycle is a one-shot DateTrigger job, and the next
job is only added after the current cycle has returned. Together with the
explicit idle/running state this keeps at most one cycle in flight.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from backupbot.backup.orchestrator import BackupOrchestrator, UnexpectedError
from backupbot.models import MIN_INTERVAL_MINUTES, CycleResult


logger = logging.getLogger(__name__)

CYCLE_JOB_ID = 'backup_cycle'
FALLBACK_RETRY_MINUTES = 5

STATE_IDLE = 'idle'
STATE_RUNNING = 'running'


def reschedule_delay(result: Optional[CycleResult], interval_minutes: float) -> float:
    """
    Minutes to wait before the next cycle.

    Args:
        result: Outcome of the cycle that just finished (None if it crashed)
        interval_minutes: Configured cooldown

    Returns:
        FALLBACK_RETRY_MINUTES after an unexpected error, otherwise the
        configured interval clamped to at least one minute
    """
    if result is None or result.error_kind == UnexpectedError.__name__:
        return FALLBACK_RETRY_MINUTES
    return max(MIN_INTERVAL_MINUTES, interval_minutes)


class BackupScheduler:
    """
    Drives a BackupOrchestrator forever on a fixed delay.
    """

    def __init__(self, orchestrator: BackupOrchestrator, scheduler=None):
        """
        Initialize the backup scheduler.

        Args:
            orchestrator: Runs one backup cycle per trigger
            scheduler: APScheduler instance (a single-worker BackgroundScheduler by default)
        """
        self.orchestrator = orchestrator
        self.scheduler = scheduler or BackgroundScheduler(
            executors={'default': ThreadPoolExecutor(max_workers=1)},
            job_defaults={
                'coalesce': True,  # Combine multiple pending instances into one
                'max_instances': 1,  # Only one cycle at a time
                'misfire_grace_time': 300  # 5 minutes grace period for misfires
            },
            timezone='UTC'
        )

        self.state = STATE_IDLE
        self.last_result: Optional[CycleResult] = None
        self.next_run_time: Optional[datetime] = None
        self._state_lock = threading.Lock()

    @property
    def interval_minutes(self) -> float:
        return self.orchestrator.config.interval_minutes

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def start(self, run_immediately: bool = True):
        """
        Start the scheduler and arm the first cycle.

        Args:
            run_immediately: Run the first cycle now instead of after one interval
        """
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Backup scheduler started")

        self.schedule_next(0 if run_immediately else self.interval_minutes)

    def stop(self):
        """Stop the scheduler without waiting for a running cycle."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Backup scheduler stopped")

    def schedule_next(self, delay_minutes: float):
        """Arm the single pending cycle job `delay_minutes` from now."""
        run_date = datetime.now(timezone.utc) + timedelta(minutes=delay_minutes)

        self.scheduler.add_job(
            func=self.run_cycle,
            trigger=DateTrigger(run_date=run_date),
            id=CYCLE_JOB_ID,
            name=f"Backup: {self.orchestrator.context.source_id}",
            replace_existing=True,
            # A one-shot job that misfires is dropped and nothing would re-arm it
            misfire_grace_time=None
        )
        self.next_run_time = run_date

        logger.info(f"Next backup cycle scheduled for {run_date.isoformat()}")

    def trigger_now(self):
        """Replace the pending cycle with one that runs immediately."""
        if self.state == STATE_RUNNING:
            raise RuntimeError("A backup cycle is already running")
        self.schedule_next(0)

    def run_cycle(self) -> Optional[CycleResult]:
        """
        Run one cycle and re-arm the next one.

        Returns:
            CycleResult, or None if a cycle was already running
        """
        with self._state_lock:
            if self.state == STATE_RUNNING:
                logger.warning("Backup cycle already running, ignoring trigger")
                return None
            self.state = STATE_RUNNING

        self.next_run_time = None
        result = None

        try:
            result = self.orchestrator.run_cycle()
            logger.info(f"Backup cycle finished with status: {result.status}")
        except Exception as e:
            # run_cycle reports its own errors; reaching here is a bug
            logger.exception(f"Backup cycle crashed: {e}")
        finally:
            self.last_result = result
            with self._state_lock:
                self.state = STATE_IDLE
            self.schedule_next(reschedule_delay(result, self.interval_minutes))

        return result

    def status(self) -> dict:
        """Snapshot of the scheduler for the status endpoint."""
        return {
            'source_id': self.orchestrator.context.source_id,
            'scheduler_running': self.running,
            'state': self.state,
            'interval_minutes': self.interval_minutes,
            'next_run': self.next_run_time.isoformat() if self.next_run_time else None,
            'last_result': self.last_result.to_dict() if self.last_result else None
        }
