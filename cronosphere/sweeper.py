"""
Retention cleanup of old job runs.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from cronosphere.store import JobStore

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


class RetentionSweeper:
    """Deletes job runs that finished longer ago than the retention window"""

    def __init__(self, store: JobStore, retention_days: int = DEFAULT_RETENTION_DAYS,
                 verbose: bool = False):
        self.store = store
        self.retention_days = retention_days
        self.verbose = verbose

    def sweep(self, now: Optional[datetime] = None) -> Optional[int]:
        """
        Delete expired runs. Never raises.

        Returns:
            Number of runs deleted, or None if the cleanup failed
        """
        cutoff = (now or datetime.now()) - timedelta(days=self.retention_days)
        logger.info(f"Starting cleanup of job runs finished before {cutoff.isoformat()}")

        try:
            before = self.store.count_job_runs() if self.verbose else None
            deleted = self.store.delete_old_job_runs(cutoff)
            after = self.store.count_job_runs() if self.verbose else None
        except Exception as e:
            logger.error(f"[Cleanup] Failed to clean old runs: {e}")
            return None

        if self.verbose:
            logger.debug(f"Total runs before cleanup: {before}")
            logger.debug(f"Deleted {deleted} old job runs (>{self.retention_days} days)")
            logger.debug(f"Total runs after cleanup: {after}")
        elif deleted > 0:
            logger.info(f"Deleted {deleted} old job runs (>{self.retention_days} days)")
        else:
            logger.debug("No old job runs to clean up")
        return deleted
