"""
Core scheduler service using APScheduler.

Owns the task registry, the execution engine and the retention sweeper.
Triggers fire on APScheduler's clock and every firing runs as an
independent task on a thread pool, so a long-running command never
delays other jobs' triggers.

Scheduled tasks live in memory only. The jobs table is the source of
truth and init_scheduler() rebuilds the registry from it on start.
"""

import dataclasses
import logging
import signal
import sys
import threading
import uuid
from typing import Optional, Dict, Any, List, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_MISSED,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_ADDED,
    EVENT_JOB_REMOVED
)

from cronosphere.config import SchedulerConfig
from cronosphere.jobs import CommandExecutor, ExecutionEngine, RunRecorder
from cronosphere.models import Job, JobRun, JobStatus, RunOutcome
from cronosphere.registry import ScheduledTask, TaskRegistry
from cronosphere.safety import (
    JobValidationError,
    build_cron_trigger,
    is_forbidden,
    validate_job,
)
from cronosphere.store import JobStore
from cronosphere.sweeper import RetentionSweeper

logger = logging.getLogger(__name__)

SWEEPER_JOB_ID = 'retention-sweeper'
SYNC_JOB_ID = 'store-sync'


class JobNotFoundError(LookupError):
    """Raised when a job id does not exist in the store."""
    pass


class JobStateError(Exception):
    """Raised when a job is not in the state an operation requires."""
    pass


class SchedulerService:
    """
    Scheduler controller: the single entry point for scheduling,
    cancelling and running jobs.
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        store: Optional[JobStore] = None
    ):
        """
        Initialize scheduler service.

        Args:
            config: Scheduler configuration (loaded from file/env if None)
            store: Job store (built from config.database_url if None)
        """
        self.config = config or SchedulerConfig.load()
        self.store = store or JobStore(self.config.database_url)
        self.store.create_tables()

        self.registry = TaskRegistry()
        self.recorder = RunRecorder(self.store)
        self.engine = ExecutionEngine(
            self.recorder,
            CommandExecutor(
                timeout=self.config.command_timeout,
                max_output_bytes=self.config.max_output_bytes
            )
        )
        self.sweeper = RetentionSweeper(
            self.store,
            retention_days=self.config.retention_days,
            verbose=self.config.verbose
        )

        # Guards registry mutations from the caller thread and the sync task
        self._lock = threading.RLock()
        # job id -> schedule that could not be scheduled, to avoid re-warning on sync
        self._unschedulable: Dict[int, str] = {}

        self.scheduler = BackgroundScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': ThreadPoolExecutor(self.config.max_workers)},
            job_defaults={
                'coalesce': True,  # Combine multiple missed runs into one
                'max_instances': self.config.max_instances_per_job,
                'misfire_grace_time': self.config.misfire_grace_time
            }
        )

        self._setup_event_listeners()

        logger.debug(f"Scheduler initialized with store: {self.config.database_url}")

    def _setup_event_listeners(self):
        """Setup APScheduler event listeners for logging."""

        def job_error_listener(event):
            logger.error(
                f"Task '{event.job_id}' raised exception: {event.exception}",
                exc_info=event.exception
            )

        def job_missed_listener(event):
            logger.warning(f"Task '{event.job_id}' missed scheduled run time")

        def job_max_instances_listener(event):
            logger.warning(
                f"Task '{event.job_id}' skipped: previous run still in progress"
            )

        def job_added_listener(event):
            logger.debug(f"Task '{event.job_id}' added to scheduler")

        def job_removed_listener(event):
            logger.debug(f"Task '{event.job_id}' removed from scheduler")

        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(job_missed_listener, EVENT_JOB_MISSED)
        self.scheduler.add_listener(job_max_instances_listener, EVENT_JOB_MAX_INSTANCES)
        self.scheduler.add_listener(job_added_listener, EVENT_JOB_ADDED)
        self.scheduler.add_listener(job_removed_listener, EVENT_JOB_REMOVED)

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.stop()
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    # --- Scheduling ---

    def schedule_job(
        self,
        job: Job,
        run_now: bool = False,
        run_id: Optional[int] = None
    ) -> Optional[RunOutcome]:
        """
        Schedule a job on its cron trigger, or run it immediately.

        Invalid or unsafe jobs are logged and left unscheduled; this never
        raises for them.

        Args:
            job: Job to schedule
            run_now: Execute once right away instead of registering a trigger
            run_id: Queued run to execute under (run_now only)

        Returns:
            RunOutcome when run_now executed inline, otherwise None
        """
        if is_forbidden(job.command):
            logger.warning(f"Refusing to schedule job #{job.id}: command contains forbidden operations")
            with self._lock:
                self._unschedulable[job.id] = job.schedule
            return None

        if run_now:
            logger.info(f"Running job #{job.id} \"{job.name}\" immediately on manual trigger")
            return self._dispatch_now(job, run_id)

        try:
            trigger = build_cron_trigger(job.schedule, timezone=self.scheduler.timezone)
        except ValueError as e:
            logger.warning(f"Invalid cron expression for job #{job.id}: {job.schedule} ({e})")
            with self._lock:
                self._unschedulable[job.id] = job.schedule
            return None

        with self._lock:
            aps_job = self.scheduler.add_job(
                self.engine.execute,
                trigger,
                args=[job],
                id=f"job-{job.id}-{uuid.uuid4().hex[:8]}",
                name=job.name
            )
            self.registry.register(
                job.id,
                ScheduledTask(self.scheduler, aps_job.id, job.id, job.schedule)
            )
            self._unschedulable.pop(job.id, None)

        logger.info(f"Scheduled job #{job.id}: \"{job.name}\" ({job.schedule})")
        return None

    def _dispatch_now(self, job: Job, run_id: Optional[int]) -> Optional[RunOutcome]:
        """Run on the worker pool when the scheduler is running, inline otherwise."""
        if self.scheduler.running:
            self.scheduler.add_job(
                self.engine.execute,
                args=[job, run_id],
                id=f"run-{job.id}-{uuid.uuid4().hex[:8]}",
                name=f"{job.name} (manual)"
            )
            return None
        return self.engine.execute(job, run_id=run_id)

    def cancel_job(self, job_id: int) -> bool:
        """
        Stop a job's trigger. Runs already in flight continue.

        Returns:
            True if a trigger was removed, False if the job was not scheduled
        """
        with self._lock:
            self._unschedulable.pop(job_id, None)
            removed = self.registry.unregister(job_id)
        if removed:
            logger.info(f"Canceled job #{job_id} and removed it from the schedule")
        return removed

    def init_scheduler(self) -> Tuple[int, int]:
        """
        Register every non-paused job from the store.

        Returns:
            Tuple of (loaded, skipped)
        """
        logger.info("Initializing scheduler and loading jobs from database...")
        loaded = 0
        skipped = 0

        for job in self.store.list_jobs():
            if job.is_paused:
                logger.debug(f"Skipping paused job: \"{job.name}\" (id={job.id})")
                skipped += 1
                continue

            self.schedule_job(job)
            loaded += 1

        logger.info("Scheduler initialization complete.")
        logger.info(f"  Loaded {loaded} active jobs")
        logger.info(f"  Skipped {skipped} paused jobs")
        return loaded, skipped

    def sync_jobs(self):
        """
        Reconcile the registry with the store.

        Picks up jobs added, paused, resumed, rescheduled or deleted by
        another process (such as the CLI) while the service is running.
        """
        try:
            jobs = {job.id: job for job in self.store.list_jobs()}
        except Exception as e:
            logger.error(f"Failed to sync jobs from database: {e}")
            return

        with self._lock:
            for job_id in self.registry.job_ids():
                job = jobs.get(job_id)
                if job is None or job.is_paused:
                    self.cancel_job(job_id)

            for job in jobs.values():
                if job.is_paused:
                    continue
                if self._unschedulable.get(job.id) == job.schedule:
                    continue
                task = self.registry.get(job.id)
                if task is None or task.schedule != job.schedule:
                    self.schedule_job(job)

    # --- Job management ---

    def _require_job(self, job_id: int) -> Job:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"job #{job_id} not found")
        return job

    def create_job(self, name: str, command: str, schedule: str) -> Job:
        """
        Validate, persist and schedule a new job.

        Raises:
            JobValidationError: If the submission is rejected
        """
        validate_job(name, command, schedule, max_command_length=self.config.max_command_length)
        job = self.store.insert_job(name, command, schedule, JobStatus.ACTIVE)
        logger.info(f"Created job #{job.id}: \"{job.name}\"")
        self.schedule_job(job)
        return job

    def pause_job(self, job_id: int) -> Job:
        job = self._require_job(job_id)
        self.store.set_job_status(job_id, JobStatus.PAUSED)
        self.cancel_job(job_id)
        return dataclasses.replace(job, status=JobStatus.PAUSED)

    def resume_job(self, job_id: int) -> Job:
        """
        Raises:
            JobNotFoundError: If the job does not exist
            JobStateError: If the job is not paused
        """
        job = self._require_job(job_id)
        if not job.is_paused:
            raise JobStateError(f"job #{job_id} is not paused")

        self.store.set_job_status(job_id, JobStatus.ACTIVE)
        job = dataclasses.replace(job, status=JobStatus.ACTIVE)
        self.schedule_job(job)
        return job

    def delete_job(self, job_id: int) -> bool:
        """Delete a job and stop its trigger. Its run history is kept."""
        deleted = self.store.delete_job(job_id)
        self.cancel_job(job_id)
        return deleted

    def run_job_now(self, job_id: int) -> int:
        """
        Queue a manual run of a job.

        A single queued JobRun is created here and handed to the engine,
        which moves it to running and then to its terminal state.

        Returns:
            The run id
        """
        job = self._require_job(job_id)
        if is_forbidden(job.command):
            raise JobValidationError("command contains forbidden operations")

        run_id = self.recorder.queue_run(job.id)
        self.schedule_job(job, run_now=True, run_id=run_id)
        return run_id

    def get_job(self, job_id: int) -> Optional[Job]:
        return self.store.get_job(job_id)

    def list_jobs(self) -> List[Job]:
        return self.store.list_jobs()

    def list_runs(
        self,
        job_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[JobRun]:
        return self.store.list_job_runs(job_id=job_id, status=status, limit=limit)

    def get_run(self, run_id: int) -> Optional[JobRun]:
        return self.store.get_job_run(run_id)

    def cleanup_old_runs(self) -> Optional[int]:
        return self.sweeper.sweep()

    def get_scheduled_jobs(self) -> List[Dict[str, Any]]:
        """
        Get list of all registered triggers.

        Returns:
            List of job information dictionaries
        """
        jobs = []
        for job_id in self.registry.job_ids():
            task = self.registry.get(job_id)
            if task is None:
                continue
            next_run = task.next_run_time
            jobs.append({
                'job_id': job_id,
                'schedule': task.schedule,
                'next_run': next_run.isoformat() if next_run else None
            })
        return jobs

    # --- Lifecycle ---

    def start(self, handle_signals: bool = False):
        """
        Start the scheduler: rebuild the registry, register the retention
        sweeper and store sync, then start firing triggers.
        """
        if self.scheduler.running:
            logger.warning("Scheduler is already running")
            return

        errors = self.config.validate()
        if errors:
            logger.error("Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")
            raise ValueError("Invalid configuration")

        logger.info("Starting scheduler...")
        self.init_scheduler()

        self.scheduler.add_job(
            self.sweeper.sweep,
            build_cron_trigger(self.config.cleanup_schedule, timezone=self.scheduler.timezone),
            id=SWEEPER_JOB_ID,
            name='Retention sweeper',
            replace_existing=True
        )
        if self.config.sync_interval_seconds:
            self.scheduler.add_job(
                self.sync_jobs,
                'interval',
                seconds=self.config.sync_interval_seconds,
                id=SYNC_JOB_ID,
                name='Store sync',
                replace_existing=True
            )

        self.scheduler.start()
        if handle_signals:
            self._setup_signal_handlers()

        logger.info("Scheduler started successfully")
        jobs = self.get_scheduled_jobs()
        if jobs:
            logger.info(f"Loaded {len(jobs)} job(s):")
            for job in jobs:
                logger.info(f"  - #{job['job_id']}: next run at {job['next_run']}")
        else:
            logger.warning("No jobs loaded")

    def stop(self, wait: bool = True):
        """
        Stop the scheduler and tear down the registry.

        Args:
            wait: If True, wait for running jobs to complete
        """
        if not self.scheduler.running:
            logger.warning("Scheduler is not running")
            return

        logger.info("Stopping scheduler...")
        with self._lock:
            stopped = self.registry.clear()
        self.scheduler.shutdown(wait=wait)
        logger.info(f"Scheduler stopped ({stopped} trigger(s) removed)")

    def is_running(self) -> bool:
        return self.scheduler.running
