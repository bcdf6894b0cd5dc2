"""
Data models for scheduled jobs and their recorded runs.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Any, Mapping

NO_OUTPUT = "(no output)"


class JobStatus:
    """Persisted job states"""
    ACTIVE = "active"
    PAUSED = "paused"

    ALL = (ACTIVE, PAUSED)


class RunStatus:
    """Job run lifecycle: queued -> running -> success | error"""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

    PENDING = (QUEUED, RUNNING)
    TERMINAL = (SUCCESS, ERROR)
    ALL = (QUEUED, RUNNING, SUCCESS, ERROR)


@dataclass
class Job:
    """A user-defined shell command and its cron schedule"""
    id: int
    name: str
    command: str
    schedule: str  # 5-field cron expression
    status: str = JobStatus.ACTIVE
    created_at: Optional[datetime] = None

    @property
    def is_paused(self) -> bool:
        return self.status == JobStatus.PAUSED

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'Job':
        """Create from database row mapping"""
        return cls(
            id=row['id'],
            name=row['name'],
            command=row['command'],
            schedule=row['schedule'],
            status=row['status'],
            created_at=row['created_at']
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'command': self.command,
            'schedule': self.schedule,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


@dataclass
class JobRun:
    """One recorded execution attempt of a job"""
    id: int
    job_id: int
    status: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]  # Set once, when the run becomes terminal
    output: Optional[str]

    @property
    def is_terminal(self) -> bool:
        return self.status in RunStatus.TERMINAL

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'JobRun':
        """Create from database row mapping"""
        return cls(
            id=row['id'],
            job_id=row['job_id'],
            status=row['status'],
            started_at=row['started_at'],
            finished_at=row['finished_at'],
            output=row['output']
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'job_id': self.job_id,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': self.duration_seconds,
            'output': self.output
        }


@dataclass
class RunOutcome:
    """Result of one engine invocation"""
    run_id: int
    job_id: int
    status: str
    output: str
    started_at: datetime
    finished_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS
