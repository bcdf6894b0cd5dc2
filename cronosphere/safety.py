"""
Command safety gate and job submission validation.

A best-effort deny-list applied to commands before they are stored or
scheduled. This is pattern matching, not a sandbox.
"""

import re
from typing import Optional

from apscheduler.triggers.cron import CronTrigger

DEFAULT_MAX_COMMAND_LENGTH = 2000

# Cron weekday numbers, 0 and 7 are both Sunday
CRON_DAY_NAMES = ['sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun']

FORBIDDEN_PATTERNS = [
    re.compile(r'(^|\s)sudo(\s|$)', re.IGNORECASE),
    re.compile(r'rm\s+-rf', re.IGNORECASE),
    re.compile(r':\s*\(\)\s*\{\s*:\s*\|\s*:\s*&?\s*;?\s*\}', re.IGNORECASE),  # fork bomb
    re.compile(r'dd\s+if=', re.IGNORECASE),
    re.compile(r'mkfs\.', re.IGNORECASE),
]


class JobValidationError(ValueError):
    """Raised when a job submission is rejected before scheduling."""
    pass


def is_forbidden(command: Optional[str]) -> bool:
    """Return True if the command matches any deny-list pattern."""
    if not command:
        return False
    return any(pattern.search(command) for pattern in FORBIDDEN_PATTERNS)


def _translate_day_of_week(field: str) -> str:
    """
    Convert numeric cron weekdays to names.

    Cron counts 0 (or 7) as Sunday, APScheduler counts 0 as Monday, so
    numbers are rewritten as day names which both agree on.
    Ranges and steps are expanded to explicit lists since "0-5" or "*/2"
    have no equivalent in APScheduler's numbering.
    """
    parts = []
    for part in field.split(','):
        single = re.fullmatch(r'(\d)', part)
        ranged = re.fullmatch(r'(\d)-(\d)(?:/(\d+))?', part)
        stepped = re.fullmatch(r'\*/(\d+)', part)
        if single and int(single.group(1)) <= 7:
            parts.append(CRON_DAY_NAMES[int(single.group(1))])
        elif ranged and int(ranged.group(2)) <= 7:
            start, end = int(ranged.group(1)), int(ranged.group(2))
            step = int(ranged.group(3) or 1)
            if start > end or step == 0:
                parts.append(part)  # left for APScheduler to reject
                continue
            parts.extend(CRON_DAY_NAMES[d] for d in range(start, end + 1, step))
        elif stepped and int(stepped.group(1)) > 0:
            parts.extend(CRON_DAY_NAMES[d] for d in range(0, 7, int(stepped.group(1))))
        else:
            parts.append(part)
    # Dedupe while keeping order ("0,7" both mean Sunday)
    return ','.join(dict.fromkeys(parts))


def build_cron_trigger(expression: str, timezone=None) -> CronTrigger:
    """
    Build an APScheduler trigger from a crontab expression.

    Accepts the standard 5 fields, or 6 with a leading seconds field.

    Raises:
        ValueError: If the expression is not valid
    """
    fields = expression.split()
    if len(fields) == 5:
        fields.insert(0, '0')
    elif len(fields) != 6:
        raise ValueError(
            f"Wrong number of fields in cron expression: got {len(fields)}, expected 5 or 6"
        )
    second, minute, hour, day, month, day_of_week = fields
    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_translate_day_of_week(day_of_week),
        timezone=timezone
    )


def is_valid_cron(expression: Optional[str]) -> bool:
    """Syntax check for a 5 or 6 field crontab expression."""
    if not expression or not expression.strip():
        return False
    try:
        build_cron_trigger(expression)
    except ValueError:
        return False
    return True


def validate_job(
    name: Optional[str],
    command: Optional[str],
    schedule: Optional[str],
    max_command_length: int = DEFAULT_MAX_COMMAND_LENGTH
):
    """
    Validate a job submission.

    Args:
        name: Job name
        command: Shell command to execute
        schedule: Cron expression
        max_command_length: Maximum accepted command length

    Raises:
        JobValidationError: If any check fails
    """
    if not name or not command or not schedule:
        raise JobValidationError("name, command, schedule required")

    if len(command) > max_command_length:
        raise JobValidationError("command too long")

    if is_forbidden(command):
        raise JobValidationError("command contains forbidden operations")

    if not is_valid_cron(schedule):
        raise JobValidationError("invalid cron expression")
