"""
Cronosphere

Runs shell commands on cron schedules or on demand and records the
outcome of every run.

Main Components:
- SchedulerService: schedule, cancel, run-now and startup rebuild
- ExecutionEngine: one run end to end with a hard timeout
- TaskRegistry: live triggers keyed by job id
- RetentionSweeper: daily cleanup of old runs
- JobStore: jobs and job_runs tables
"""

from cronosphere.config import SchedulerConfig
from cronosphere.jobs import CommandExecutor, ExecutionEngine, RunRecorder
from cronosphere.models import Job, JobRun, JobStatus, RunStatus, RunOutcome
from cronosphere.registry import TaskRegistry, ScheduledTask
from cronosphere.safety import JobValidationError, is_forbidden, is_valid_cron, validate_job
from cronosphere.service import SchedulerService, JobNotFoundError, JobStateError
from cronosphere.store import JobStore
from cronosphere.sweeper import RetentionSweeper

__version__ = "0.1.0"

__all__ = [
    # Service
    "SchedulerService",
    "SchedulerConfig",
    "JobNotFoundError",
    "JobStateError",
    # Engine
    "ExecutionEngine",
    "CommandExecutor",
    "RunRecorder",
    "TaskRegistry",
    "ScheduledTask",
    "RetentionSweeper",
    # Validation
    "JobValidationError",
    "is_forbidden",
    "is_valid_cron",
    "validate_job",
    # Storage and models
    "JobStore",
    "Job",
    "JobRun",
    "JobStatus",
    "RunStatus",
    "RunOutcome",
]
