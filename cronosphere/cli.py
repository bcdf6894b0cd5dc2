"""
Command-line interface for the cronosphere scheduler.

Provides commands for:
- Running the scheduler service in the foreground
- Adding/pausing/resuming/removing jobs
- Running a job on demand
- Viewing run history and cleaning up old runs
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from cronosphere.config import SchedulerConfig
from cronosphere.models import RunStatus
from cronosphere.safety import JobValidationError
from cronosphere.service import SchedulerService, JobNotFoundError, JobStateError

logger = logging.getLogger(__name__)


def setup_logging(log_file: str = None, verbose: bool = False, level: str = "INFO"):
    """Setup logging configuration. Verbose always means DEBUG."""
    level = logging.DEBUG if verbose else logging.getLevelName(level.upper())

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # APScheduler logs every firing at INFO
    logging.getLogger('apscheduler').setLevel(logging.INFO if verbose else logging.WARNING)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)


def _load_config(args) -> SchedulerConfig:
    return SchedulerConfig.load(
        args.config,
        database_url=args.database_url,
        verbose=True if args.verbose else None
    )


def _build_service(args) -> SchedulerService:
    return SchedulerService(config=_load_config(args))


def _format_time(value) -> str:
    return value.strftime('%Y-%m-%d %H:%M:%S') if value else '-'


def _format_elapsed(seconds) -> str:
    if seconds is None:
        return '-'
    if seconds >= 3600:
        return f"{seconds / 3600:.1f}h"
    if seconds >= 60:
        return f"{seconds / 60:.1f}m"
    return f"{seconds:.1f}s"


def cmd_start(args):
    """Start the scheduler in the foreground."""
    config = _load_config(args)
    setup_logging(
        log_file=args.log_file or config.logging.file,
        verbose=config.verbose,
        level=config.logging.level
    )

    logger.info("Starting job scheduler...")

    try:
        service = SchedulerService(config=config)
        service.start(handle_signals=True)
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}", exc_info=True)
        sys.exit(1)

    logger.info("Running in foreground mode. Press Ctrl+C to stop.")
    try:
        while service.is_running():
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
        service.stop()


def cmd_add(args):
    """Add a new scheduled job."""
    setup_logging(verbose=args.verbose)

    try:
        service = _build_service(args)
        job = service.create_job(args.name, args.command, args.cron)
    except JobValidationError as e:
        logger.error(f"Rejected job '{args.name}': {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Failed to add job: {e}")
        sys.exit(1)

    logger.info(f"Added job #{job.id} '{job.name}'")
    logger.info(f"Command: {job.command}")
    logger.info(f"Schedule: {job.schedule}")


def cmd_list(args):
    """List all jobs."""
    setup_logging(verbose=args.verbose)

    try:
        service = _build_service(args)
        jobs = service.list_jobs()
    except Exception as e:
        logger.error(f"Failed to list jobs: {e}")
        sys.exit(1)

    if args.json:
        print(json.dumps([job.to_dict() for job in jobs], indent=2))
        return

    print(f"\n=== Jobs ({len(jobs)}) ===\n")
    if not jobs:
        print("  No jobs defined.")
        print()
        return

    for job in jobs:
        marker = "⏸" if job.is_paused else "✓"
        print(f"{marker} #{job.id} {job.name}")
        print(f"    Command:  {job.command}")
        print(f"    Schedule: {job.schedule}")
        print(f"    Status:   {job.status}")
        print()


def _change_job(args, action: str):
    setup_logging(verbose=args.verbose)

    try:
        service = _build_service(args)
        if action == 'pause':
            service.pause_job(args.job_id)
        elif action == 'resume':
            service.resume_job(args.job_id)
        elif not service.delete_job(args.job_id):
            raise JobNotFoundError(f"job #{args.job_id} not found")
    except (JobNotFoundError, JobStateError) as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.error(f"Failed to {action} job: {e}")
        sys.exit(1)

    past = {'pause': 'Paused', 'resume': 'Resumed', 'remove': 'Removed'}[action]
    logger.info(f"{past} job #{args.job_id}")


def cmd_pause(args):
    """Pause a job."""
    _change_job(args, 'pause')


def cmd_resume(args):
    """Resume a paused job."""
    _change_job(args, 'resume')


def cmd_remove(args):
    """Remove a job. Its run history is kept until retention cleanup."""
    _change_job(args, 'remove')


def cmd_run(args):
    """Run a job immediately and report the result."""
    setup_logging(verbose=args.verbose)

    try:
        service = _build_service(args)
        run_id = service.run_job_now(args.job_id)
    except (JobNotFoundError, JobValidationError) as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.error(f"Failed to run job: {e}")
        sys.exit(1)

    run = service.get_run(run_id)
    if run is None:
        logger.error(f"Run #{run_id} was not recorded")
        sys.exit(1)

    print(f"\nRun #{run.id}: {run.status.upper()} in {_format_elapsed(run.duration_seconds)}")
    print(run.output or '')
    if run.status != RunStatus.SUCCESS:
        sys.exit(1)


def cmd_history(args):
    """Show job run history."""
    setup_logging(verbose=args.verbose)

    try:
        service = _build_service(args)
        runs = service.list_runs(
            job_id=args.job,
            status=args.status,
            limit=None if args.show_all else args.limit
        )
    except Exception as e:
        print(f"Error reading history: {e}")
        sys.exit(1)

    if args.json:
        print(json.dumps([run.to_dict() for run in runs], indent=2))
        return

    if not runs:
        print("\nNo job run history found.")
        return

    headers = ['Run', 'Job', 'Started', 'Finished', 'Elapsed', 'Status']
    rows = [
        [
            str(run.id),
            str(run.job_id),
            _format_time(run.started_at),
            _format_time(run.finished_at) if run.finished_at else 'running...',
            _format_elapsed(run.duration_seconds),
            run.status
        ]
        for run in runs
    ]
    widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

    def make_row(cells):
        return "│ " + " │ ".join(cell.ljust(w) for cell, w in zip(cells, widths)) + " │"

    def make_separator(left, mid, right, fill='─'):
        return left + mid.join(fill * (w + 2) for w in widths) + right

    print()
    print(make_separator('┌', '┬', '┐'))
    print(make_row(headers))
    print(make_separator('├', '┼', '┤'))
    for run, row in zip(runs, rows):
        print(make_row(row))
        if args.verbose and run.status == RunStatus.ERROR and run.output:
            print(f"│   └─ Output: {run.output[:80]}")
    print(make_separator('└', '┴', '┘'))

    print(f"\nShowing {len(runs)} run(s)")


def cmd_show_run(args):
    """Show a single run with its full output."""
    setup_logging(verbose=args.verbose)

    try:
        service = _build_service(args)
        run = service.get_run(args.run_id)
    except Exception as e:
        logger.error(f"Failed to read run: {e}")
        sys.exit(1)

    if run is None:
        logger.error(f"Run #{args.run_id} not found")
        sys.exit(1)

    print(json.dumps(run.to_dict(), indent=2))


def cmd_cleanup(args):
    """Delete runs older than the retention window."""
    setup_logging(verbose=args.verbose)

    service = _build_service(args)
    deleted = service.cleanup_old_runs()
    if deleted is None:
        sys.exit(1)
    print(f"Deleted {deleted} run(s) older than {service.config.retention_days} days")


def cmd_init(args):
    """Write a configuration file with the current settings."""
    setup_logging(verbose=args.verbose)

    try:
        config = _load_config(args)
        config.save()
        logger.info(f"Initialized scheduler configuration at: {config.config_path}")

        log_dir = Path(config.logging.file).expanduser().parent
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created log directory: {log_dir}")

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        sys.exit(1)


def cmd_show_config(args):
    """Show effective configuration."""
    config = _load_config(args)
    print(f"Config file: {config.config_path}")
    print(json.dumps(config.to_dict(), indent=2))
    errors = config.validate()
    if errors:
        print("\nConfiguration errors:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='cronosphere',
        description='Run shell commands on cron schedules and record every run'
    )
    parser.add_argument(
        '--config',
        type=str,
        help='Path to JSON configuration file'
    )
    parser.add_argument(
        '--database-url',
        type=str,
        help='SQLAlchemy database URL (overrides config and DATABASE_URL)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose logging'
    )

    subparsers = parser.add_subparsers(dest='subcommand', help='Commands')

    # Start command
    start_parser = subparsers.add_parser('start', help='Run the scheduler in the foreground')
    start_parser.add_argument('--log-file', type=str, help='Log file path')
    start_parser.set_defaults(func=cmd_start)

    # Add command
    add_parser = subparsers.add_parser('add', help='Add a new scheduled job')
    add_parser.add_argument('name', help='Job name')
    add_parser.add_argument('--command', '-c', dest='command', required=True,
                            help='Shell command to execute')
    add_parser.add_argument('--cron', required=True,
                            help='Cron expression, e.g. "*/5 * * * *"')
    add_parser.set_defaults(func=cmd_add)

    # List command
    list_parser = subparsers.add_parser('list', help='List all jobs')
    list_parser.add_argument('--json', action='store_true', help='Output in JSON format')
    list_parser.set_defaults(func=cmd_list)

    # Pause/resume/remove commands
    for name, func, help_text in (
        ('pause', cmd_pause, 'Pause a job'),
        ('resume', cmd_resume, 'Resume a paused job'),
        ('remove', cmd_remove, 'Remove a job'),
    ):
        job_parser = subparsers.add_parser(name, help=help_text)
        job_parser.add_argument('job_id', type=int, help='Job ID')
        job_parser.set_defaults(func=func)

    # Run command
    run_parser = subparsers.add_parser('run', help='Run a job immediately')
    run_parser.add_argument('job_id', type=int, help='Job ID')
    run_parser.set_defaults(func=cmd_run)

    # History command
    history_parser = subparsers.add_parser('history', help='View job run history')
    history_parser.add_argument('--job', '-j', type=int, help='Filter by job ID')
    history_parser.add_argument('--status', '-s', type=str,
                                choices=list(RunStatus.ALL),
                                help='Filter by status')
    history_parser.add_argument('--limit', '-n', type=int, default=20,
                                help='Maximum number of entries to show (default: 20)')
    history_parser.add_argument('--all', '-a', dest='show_all', action='store_true',
                                help='Show all history entries')
    history_parser.add_argument('--json', action='store_true',
                                help='Output in JSON format')
    history_parser.set_defaults(func=cmd_history)

    # Show-run command
    show_run_parser = subparsers.add_parser('show-run', help='Show one run with its output')
    show_run_parser.add_argument('run_id', type=int, help='Run ID')
    show_run_parser.set_defaults(func=cmd_show_run)

    # Cleanup command
    cleanup_parser = subparsers.add_parser('cleanup', help='Delete runs past the retention window')
    cleanup_parser.set_defaults(func=cmd_cleanup)

    # Init command
    init_parser = subparsers.add_parser('init', help='Initialize scheduler configuration')
    init_parser.set_defaults(func=cmd_init)

    # Show config command
    show_config_parser = subparsers.add_parser('show-config', help='Show configuration')
    show_config_parser.set_defaults(func=cmd_show_config)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.subcommand:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
