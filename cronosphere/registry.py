"""
In-memory registry of live scheduled tasks.

Maps job ids to the APScheduler job driving their cron trigger. Nothing
here is persisted: the registry is rebuilt from the jobs table on every
start and torn down with clear() on shutdown.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, List

from apscheduler.jobstores.base import JobLookupError

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle for one recurring trigger"""

    def __init__(self, scheduler, aps_job_id: str, job_id: int, schedule: str):
        self._scheduler = scheduler
        self.aps_job_id = aps_job_id
        self.job_id = job_id
        self.schedule = schedule
        self.stopped = False

    @property
    def next_run_time(self) -> Optional[datetime]:
        aps_job = self._scheduler.get_job(self.aps_job_id)
        if aps_job is None:
            return None
        # Pending jobs (scheduler not started yet) have no next_run_time attribute
        return getattr(aps_job, 'next_run_time', None)

    def stop(self):
        """Stop future firings. Runs already in flight are not interrupted."""
        if self.stopped:
            return
        try:
            self._scheduler.remove_job(self.aps_job_id)
        except JobLookupError:
            logger.debug(f"Trigger {self.aps_job_id} already removed")
        self.stopped = True

    def __repr__(self):
        return f"ScheduledTask(job_id={self.job_id}, schedule={self.schedule!r})"


class TaskRegistry:
    """Job id -> live ScheduledTask, at most one per job"""

    def __init__(self):
        self._tasks: Dict[int, ScheduledTask] = {}

    def register(self, job_id: int, task: ScheduledTask):
        """Store a task, stopping any task previously registered for the job."""
        previous = self._tasks.get(job_id)
        if previous is not None and previous is not task:
            previous.stop()
            logger.debug(f"Replaced existing trigger for job #{job_id}")
        self._tasks[job_id] = task

    def unregister(self, job_id: int) -> bool:
        """
        Stop and remove the task for a job.

        Returns:
            True if removed, False if the job was not scheduled
        """
        task = self._tasks.pop(job_id, None)
        if task is None:
            logger.warning(f"Tried to cancel non-existent job #{job_id}")
            return False
        task.stop()
        return True

    def get(self, job_id: int) -> Optional[ScheduledTask]:
        return self._tasks.get(job_id)

    def job_ids(self) -> List[int]:
        return sorted(self._tasks)

    def clear(self) -> int:
        """Stop every task. Returns how many were stopped."""
        count = len(self._tasks)
        for task in self._tasks.values():
            task.stop()
        self._tasks.clear()
        return count

    def __contains__(self, job_id: int) -> bool:
        return job_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)
