"""Tests for the command safety gate and submission validation."""

from datetime import datetime, timezone

import pytest

from cronosphere.safety import (
    JobValidationError,
    build_cron_trigger,
    is_forbidden,
    is_valid_cron,
    validate_job,
)


@pytest.mark.parametrize("command", [
    "sudo rm -rf /",
    "SUDO apt-get install foo",
    "echo hi && sudo reboot",
    "rm -rf /tmp/data",
    "RM   -RF ~",
    ":(){ :|:; }",
    ": ( ) { : | : ; }",
    ":(){:|:&};:",
    ":(){ :|:& };:",
    "dd if=/dev/zero of=/dev/sda",
    "mkfs.ext4 /dev/sdb1",
])
def test_dangerous_commands_are_forbidden(command):
    assert is_forbidden(command)


@pytest.mark.parametrize("command", [
    "echo hello",
    "ls -la /tmp",
    "pseudo-command --flag",
    "rm -r build",
    "echo odd ifs",
    "",
    None,
])
def test_ordinary_commands_are_allowed(command):
    assert not is_forbidden(command)


@pytest.mark.parametrize("expression", [
    "* * * * *",
    "*/5 * * * *",
    "0 9 * * 1-5",
    "30 2 1 * *",
    "0 0 * * 0",
    "0 0 * * 7",
    "0 12 * * mon,wed,fri",
    "0 0 * * */2",
    "* * * * * *",
    "*/10 * * * * *",
])
def test_valid_cron_expressions(expression):
    assert is_valid_cron(expression)


@pytest.mark.parametrize("expression", [
    "",
    "   ",
    None,
    "* * * *",
    "* * * * * * *",
    "0 0 * * */0",
    "61 * * * *",
    "* 25 * * *",
    "not a cron",
    "0 0 32 * *",
])
def test_invalid_cron_expressions(expression):
    assert not is_valid_cron(expression)


def test_cron_weekdays_use_cron_numbering():
    """0 and 7 mean Sunday, 1 means Monday"""
    sunday = build_cron_trigger("0 0 * * 0")
    also_sunday = build_cron_trigger("0 0 * * 7")
    monday_to_friday = build_cron_trigger("0 9 * * 1-5")

    assert str(sunday.fields[4]) == "sun"
    assert str(also_sunday.fields[4]) == "sun"
    assert str(monday_to_friday.fields[4]) == "mon,tue,wed,thu,fri"
    assert str(build_cron_trigger("0 0 * * */2").fields[4]) == "sun,tue,thu,sat"
    assert str(build_cron_trigger("0 0 * * */3").fields[4]) == "sun,wed,sat"
    assert str(build_cron_trigger("0 0 * * 1-5/2").fields[4]) == "mon,wed,fri"


def test_weekday_steps_count_from_sunday():
    monday_noon = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    trigger = build_cron_trigger("0 0 * * */2", timezone=timezone.utc)

    assert trigger.get_next_fire_time(None, monday_noon) == datetime(
        2026, 10, 20, 0, 0, tzinfo=timezone.utc
    )


def test_six_fields_take_a_leading_seconds_field():
    now = datetime(2026, 10, 19, 12, 0, 3, tzinfo=timezone.utc)
    every_ten_seconds = build_cron_trigger("*/10 * * * * *", timezone=timezone.utc)
    five_fields = build_cron_trigger("* * * * *", timezone=timezone.utc)

    assert every_ten_seconds.get_next_fire_time(None, now) == datetime(
        2026, 10, 19, 12, 0, 10, tzinfo=timezone.utc
    )
    assert five_fields.get_next_fire_time(None, now) == datetime(
        2026, 10, 19, 12, 1, 0, tzinfo=timezone.utc
    )


def test_validate_job_accepts_a_normal_job():
    validate_job("greeting", "echo hello", "* * * * *")


@pytest.mark.parametrize("name,command,schedule,message", [
    ("", "echo hi", "* * * * *", "name, command, schedule required"),
    ("job", "", "* * * * *", "name, command, schedule required"),
    ("job", "echo hi", None, "name, command, schedule required"),
    ("job", "x" * 2001, "* * * * *", "command too long"),
    ("job", "sudo rm -rf /", "* * * * *", "command contains forbidden operations"),
    ("job", "echo hi", "every minute", "invalid cron expression"),
])
def test_validate_job_rejections(name, command, schedule, message):
    with pytest.raises(JobValidationError, match=message):
        validate_job(name, command, schedule)


def test_command_length_limit_is_inclusive():
    validate_job("job", "x" * 2000, "* * * * *")
    with pytest.raises(JobValidationError):
        validate_job("job", "x" * 11, "* * * * *", max_command_length=10)
