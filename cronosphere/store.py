"""
Relational store for jobs and job runs.

Thin SQLAlchemy Core layer over two tables. Every operation is a single
statement in its own transaction; the scheduler relies on single-row
atomicity only.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, List

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine, make_url

from cronosphere.models import Job, JobRun, JobStatus, RunStatus

logger = logging.getLogger(__name__)

metadata = MetaData()

jobs_table = Table(
    "jobs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("command", Text, nullable=False),
    Column("schedule", String(255), nullable=False),
    Column("status", String(16), nullable=False, default=JobStatus.ACTIVE),
    Column("created_at", DateTime, nullable=False, default=datetime.now),
)

# job_id is a reference, not ownership: runs outlive a deleted job
job_runs_table = Table(
    "job_runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("job_id", Integer, nullable=False, index=True),
    Column("status", String(16), nullable=False),
    Column("started_at", DateTime, nullable=True),
    Column("finished_at", DateTime, nullable=True, index=True),
    Column("output", Text, nullable=True),
)


class JobStore:
    """CRUD access to the jobs and job_runs tables"""

    def __init__(self, database_url: str, engine: Optional[Engine] = None):
        """
        Initialize the store.

        Args:
            database_url: SQLAlchemy database URL
            engine: Pre-built engine (overrides database_url)
        """
        self.database_url = database_url
        if engine is None:
            url = make_url(database_url)
            if url.get_backend_name() == 'sqlite' and url.database not in (None, '', ':memory:'):
                Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(database_url, pool_pre_ping=True)
        self.engine = engine
        logger.debug(f"Initialized job store: {self.engine.url.render_as_string(hide_password=True)}")

    def create_tables(self):
        """Create tables if they don't exist"""
        metadata.create_all(self.engine)
        logger.debug("Database tables created/verified")

    def dispose(self):
        self.engine.dispose()

    # --- Jobs ---

    def insert_job(self, name: str, command: str, schedule: str,
                   status: str = JobStatus.ACTIVE) -> Job:
        created_at = datetime.now()
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(jobs_table).values(
                    name=name,
                    command=command,
                    schedule=schedule,
                    status=status,
                    created_at=created_at,
                )
            )
            job_id = result.inserted_primary_key[0]
        return Job(id=job_id, name=name, command=command, schedule=schedule,
                   status=status, created_at=created_at)

    def get_job(self, job_id: int) -> Optional[Job]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(jobs_table).where(jobs_table.c.id == job_id)
            ).mappings().first()
        return Job.from_row(row) if row else None

    def list_jobs(self) -> List[Job]:
        """All jobs, newest first"""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(jobs_table).order_by(jobs_table.c.id.desc())
            ).mappings().all()
        return [Job.from_row(row) for row in rows]

    def set_job_status(self, job_id: int, status: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(jobs_table)
                .where(jobs_table.c.id == job_id)
                .values(status=status)
            )
        return result.rowcount > 0

    def delete_job(self, job_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(jobs_table).where(jobs_table.c.id == job_id))
        return result.rowcount > 0

    # --- Job runs ---

    def insert_job_run(self, job_id: int, status: str,
                       started_at: Optional[datetime] = None) -> int:
        """Insert a run record and return its id"""
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(job_runs_table).values(
                    job_id=job_id,
                    status=status,
                    started_at=started_at,
                )
            )
            return result.inserted_primary_key[0]

    def mark_job_run_running(self, run_id: int, started_at: datetime) -> bool:
        """Move a queued run to running. Returns False if it was not queued."""
        with self.engine.begin() as conn:
            result = conn.execute(
                update(job_runs_table)
                .where(job_runs_table.c.id == run_id)
                .where(job_runs_table.c.status == RunStatus.QUEUED)
                .values(status=RunStatus.RUNNING, started_at=started_at)
            )
        return result.rowcount > 0

    def update_job_run(self, run_id: int, status: str, output: Optional[str],
                       finished_at: datetime) -> bool:
        """
        Record the terminal state of a run.

        Only pending (queued/running) rows are updated, so a terminal run
        is never mutated again.

        Returns:
            True if the row was updated, False if missing or already terminal
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                update(job_runs_table)
                .where(job_runs_table.c.id == run_id)
                .where(job_runs_table.c.status.in_(RunStatus.PENDING))
                .values(status=status, output=output, finished_at=finished_at)
            )
        return result.rowcount > 0

    def get_job_run(self, run_id: int) -> Optional[JobRun]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(job_runs_table).where(job_runs_table.c.id == run_id)
            ).mappings().first()
        return JobRun.from_row(row) if row else None

    def list_job_runs(
        self,
        job_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[JobRun]:
        """
        Get run history with optional filters.

        Args:
            job_id: Filter by job
            status: Filter by run status
            limit: Maximum number of entries to return

        Returns:
            List of runs (most recent first)
        """
        query = select(job_runs_table).order_by(job_runs_table.c.id.desc())
        if job_id is not None:
            query = query.where(job_runs_table.c.job_id == job_id)
        if status:
            query = query.where(job_runs_table.c.status == status)
        if limit:
            query = query.limit(limit)

        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [JobRun.from_row(row) for row in rows]

    def count_job_runs(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                select(func.count()).select_from(job_runs_table)
            ).scalar_one()

    def delete_old_job_runs(self, cutoff: datetime) -> int:
        """Delete runs that finished before cutoff. Returns the number deleted."""
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(job_runs_table).where(job_runs_table.c.finished_at < cutoff)
            )
        return result.rowcount
