"""
APScheduler configuration for the backup loop.

Runs the backup cycle on a fixed interval, one cycle at a time.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = 'backup_cycle'


class CycleScheduler:
    """
    Schedules the backup cycle on an interval trigger.

    A single worker thread with max_instances=1 keeps cycles strictly
    sequential; a cycle that overruns the interval delays the next one
    instead of overlapping it.
    """

    def __init__(self, cycle_func: Callable[[], object], interval_seconds: int):
        """
        Initialize the cycle scheduler.

        Args:
            cycle_func: Callable running one backup cycle
            interval_seconds: Seconds between cycle starts
        """
        self.cycle_func = cycle_func
        self.interval_seconds = interval_seconds
        self.scheduler = None

    def init_scheduler(self) -> BackgroundScheduler:
        """Create and configure the underlying APScheduler instance."""
        if self.scheduler is not None:
            return self.scheduler

        executors = {
            'default': ThreadPoolExecutor(max_workers=1)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple pending runs into one
            'max_instances': 1,  # Only one cycle at a time
            'misfire_grace_time': None  # A late cycle still runs
        }

        self.scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults
        )

        # First cycle runs immediately, then every interval
        self.scheduler.add_job(
            func=self.cycle_func,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=CYCLE_JOB_ID,
            name='Backup cycle',
            next_run_time=datetime.now(),
            replace_existing=True
        )
        self.scheduler.add_listener(self._on_job_event, EVENT_JOB_ERROR | EVENT_JOB_MISSED)

        return self.scheduler

    def start(self):
        """Start running cycles in the background."""
        scheduler = self.init_scheduler()

        if not scheduler.running:
            scheduler.start()
            logger.info(f"Backup scheduler started (interval: {self.interval_seconds}s)")
        else:
            logger.info("Backup scheduler already running")

    def stop(self, wait: bool = True):
        """
        Stop scheduling cycles.

        Args:
            wait: Block until an in-flight cycle has finished
        """
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Backup scheduler stopped")

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def next_run_time(self) -> Optional[datetime]:
        """Next scheduled cycle start, or None when not scheduled."""
        if self.scheduler is None:
            return None

        job = self.scheduler.get_job(CYCLE_JOB_ID)
        return job.next_run_time if job else None

    def _on_job_event(self, event):
        if event.code == EVENT_JOB_ERROR:
            logger.error(f"Backup cycle raised: {event.exception}", exc_info=event.exception)
        else:
            logger.warning(f"Backup cycle missed its run time ({event.scheduled_run_time})")
