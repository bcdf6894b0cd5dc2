"""
Command execution and run recording for scheduled jobs.

The engine runs whatever shell command a job carries, enforces a hard
timeout and records the lifecycle of each invocation as a JobRun:
running -> success | error. Process failures are recorded, never raised.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cronosphere.models import Job, RunOutcome, RunStatus, NO_OUTPUT
from cronosphere.store import JobStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
READ_CHUNK_SIZE = 64 * 1024
KILL_GRACE_SECONDS = 5


@dataclass
class ProcessResult:
    """Outcome of one external process"""
    ok: bool
    returncode: Optional[int]
    output: str  # Combined stdout and stderr
    timed_out: bool
    elapsed_seconds: float
    output_exceeded: bool = False


class CommandExecutor:
    """
    Executes shell commands with a hard timeout and a cap on captured output.

    Non-zero exit, timeout, too much output and a missing executable are
    all reported through ProcessResult.ok; only failures to spawn the
    process raise.
    """

    def __init__(self, timeout: int = DEFAULT_TIMEOUT,
                 max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES):
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes

    def execute_command(self, command: str, timeout: Optional[int] = None) -> ProcessResult:
        """
        Execute a shell command.

        Output is read as it is produced. A command that writes more than
        max_output_bytes is killed and reported as failed.

        Args:
            command: Shell command to execute
            timeout: Timeout in seconds (defaults to the executor timeout)

        Returns:
            ProcessResult with combined output

        Raises:
            OSError: If the process could not be started
        """
        timeout = timeout or self.timeout
        start = time.monotonic()

        # Own process group so a timeout kills the shell and its children
        process = subprocess.Popen(
            command,
            shell=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=(os.name == 'posix')
        )

        captured = bytearray()
        exceeded = threading.Event()

        def read_output():
            with process.stdout:
                while True:
                    chunk = process.stdout.read1(READ_CHUNK_SIZE)
                    if not chunk:
                        return
                    room = self.max_output_bytes - len(captured)
                    captured.extend(chunk[:room])
                    if len(chunk) > room:
                        exceeded.set()
                        self._kill(process)
                        return

        reader = threading.Thread(target=read_output, name=f"output-{process.pid}", daemon=True)
        reader.start()

        timed_out = False
        try:
            reader.join(timeout)
            if reader.is_alive():
                raise subprocess.TimeoutExpired(command, timeout)
            process.wait(timeout=max(timeout - (time.monotonic() - start), 0))
        except subprocess.TimeoutExpired:
            timed_out = True
            self._kill(process)
            process.wait()
            reader.join(KILL_GRACE_SECONDS)

        output = bytes(captured).decode('utf-8', errors='replace')
        if exceeded.is_set():
            output += f"\nOutput exceeded {self.max_output_bytes} bytes, command terminated"
            logger.warning(f"Command output exceeded {self.max_output_bytes} bytes: {command}")
        elif timed_out:
            output += f"\nCommand timed out after {timeout}s"
            logger.warning(f"Command timed out after {timeout}s: {command}")

        elapsed = time.monotonic() - start
        return ProcessResult(
            ok=(not timed_out and not exceeded.is_set() and process.returncode == 0),
            returncode=process.returncode,
            output=output,
            timed_out=timed_out,
            elapsed_seconds=elapsed,
            output_exceeded=exceeded.is_set()
        )

    @staticmethod
    def _kill(process: subprocess.Popen):
        if os.name == 'posix':
            try:
                os.killpg(process.pid, signal.SIGKILL)
                return
            except ProcessLookupError:
                return
            except OSError as e:
                logger.debug(f"killpg failed for pid {process.pid}: {e}")
        process.kill()


class RunRecorder:
    """Persists the lifecycle of job runs"""

    def __init__(self, store: JobStore):
        self.store = store

    def create_run(self, job_id: int, started_at: Optional[datetime] = None) -> int:
        """Insert a running run record. Returns the run id."""
        return self.store.insert_job_run(
            job_id, RunStatus.RUNNING, started_at=started_at or datetime.now()
        )

    def queue_run(self, job_id: int) -> int:
        """Insert a queued run record for a run requested ahead of execution."""
        return self.store.insert_job_run(job_id, RunStatus.QUEUED)

    def start_run(self, run_id: int) -> datetime:
        """
        Move a queued run to running.

        Raises:
            RuntimeError: If the run does not exist or is not queued
        """
        started_at = datetime.now()
        if not self.store.mark_job_run_running(run_id, started_at):
            raise RuntimeError(f"Run #{run_id} is not queued")
        return started_at

    def finalize_run(self, run_id: int, status: str, output: Optional[str],
                     finished_at: datetime) -> str:
        """
        Record the terminal status of a run.

        Returns:
            The output text as stored
        """
        text = (output or '').strip() or NO_OUTPUT
        if not self.store.update_job_run(run_id, status, text, finished_at):
            logger.warning(f"Run #{run_id} was already finalized or no longer exists")
        return text


class ExecutionEngine:
    """
    Runs one job invocation end to end.

    Each call creates its own JobRun, so concurrent calls for the same
    job are independent of each other.
    """

    def __init__(self, recorder: RunRecorder, executor: Optional[CommandExecutor] = None):
        self.recorder = recorder
        self.executor = executor or CommandExecutor()

    def execute(self, job: Job, run_id: Optional[int] = None) -> Optional[RunOutcome]:
        """
        Execute a job once. There are no retries.

        Args:
            job: Job to run
            run_id: Existing queued run to use instead of inserting a new one

        Returns:
            RunOutcome, or None if no run record could be created
        """
        log_prefix = f"[job #{job.id}]"
        logger.info(f"{log_prefix} Starting \"{job.name}\"")
        logger.debug(f"{log_prefix} Command: {job.command}")

        try:
            if run_id is None:
                started_at = datetime.now()
                run_id = self.recorder.create_run(job.id, started_at)
            else:
                started_at = self.recorder.start_run(run_id)
        except Exception as e:
            logger.error(f"{log_prefix} Could not record run start, execution abandoned: {e}")
            return None

        log_prefix = f"[job #{job.id}:run #{run_id}]"
        logger.debug(f"{log_prefix} Logged new job run")

        try:
            result = self.executor.execute_command(job.command)
        except Exception as e:
            logger.error(f"{log_prefix} \"{job.name}\" failed: {e}")
            return self._record_failure(job, run_id, started_at, str(e))

        status = RunStatus.SUCCESS if result.ok else RunStatus.ERROR
        finished_at = datetime.now()
        try:
            output = self.recorder.finalize_run(run_id, status, result.output, finished_at)
        except Exception as e:
            # The run row stays 'running'; there is no reconciliation
            logger.error(f"{log_prefix} Failed to update job run: {e}")
            output = result.output.strip() or NO_OUTPUT
        else:
            logger.info(f"{log_prefix} \"{job.name}\" completed with status: {status.upper()}")

        logger.debug(f"{log_prefix} Duration: {result.elapsed_seconds:.2f}s")
        logger.debug(f"{log_prefix} Finished at: {finished_at.isoformat()}")
        logger.debug(f"{log_prefix} Output: {output}")

        return RunOutcome(
            run_id=run_id,
            job_id=job.id,
            status=status,
            output=output,
            started_at=started_at,
            finished_at=finished_at
        )

    def _record_failure(self, job: Job, run_id: int, started_at: datetime,
                        message: str) -> Optional[RunOutcome]:
        finished_at = datetime.now()
        try:
            output = self.recorder.finalize_run(run_id, RunStatus.ERROR, message, finished_at)
        except Exception as e:
            logger.error(f"[job #{job.id}:run #{run_id}] Failed to record error: {e}")
            return None
        logger.debug(f"[job #{job.id}:run #{run_id}] Recorded error in job_runs table")
        return RunOutcome(
            run_id=run_id,
            job_id=job.id,
            status=RunStatus.ERROR,
            output=output,
            started_at=started_at,
            finished_at=finished_at
        )
