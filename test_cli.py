"""Tests for the command-line interface."""

import json
import logging

import pytest

from cronosphere.cli import main, setup_logging


def run_cli(database_url, *args):
    main(["--database-url", database_url, *args])


def test_add_list_and_run(database_url, capsys):
    run_cli(database_url, "add", "greet", "--command", "echo hello", "--cron", "*/5 * * * *")
    capsys.readouterr()

    run_cli(database_url, "list", "--json")
    jobs = json.loads(capsys.readouterr().out)
    assert [job["name"] for job in jobs] == ["greet"]
    assert jobs[0]["status"] == "active"

    run_cli(database_url, "run", str(jobs[0]["id"]))
    out = capsys.readouterr().out
    assert "SUCCESS" in out
    assert "hello" in out

    run_cli(database_url, "history", "--json")
    runs = json.loads(capsys.readouterr().out)
    assert len(runs) == 1
    assert runs[0]["status"] == "success"


def test_add_rejects_forbidden_command(database_url, capsys):
    with pytest.raises(SystemExit) as exc_info:
        run_cli(database_url, "add", "wipe", "--command", "sudo rm -rf /", "--cron", "* * * * *")
    assert exc_info.value.code == 1

    run_cli(database_url, "list", "--json")
    assert json.loads(capsys.readouterr().out) == []


def test_pause_resume_remove(database_url, capsys):
    run_cli(database_url, "add", "greet", "--command", "echo hello", "--cron", "*/5 * * * *")
    run_cli(database_url, "pause", "1")
    run_cli(database_url, "list", "--json")
    capsys.readouterr()

    with pytest.raises(SystemExit):
        run_cli(database_url, "pause", "42")

    run_cli(database_url, "resume", "1")
    with pytest.raises(SystemExit):
        run_cli(database_url, "resume", "1")

    run_cli(database_url, "remove", "1")
    run_cli(database_url, "list", "--json")
    assert json.loads(capsys.readouterr().out) == []


def test_failed_run_exits_non_zero(database_url, capsys):
    run_cli(database_url, "add", "broken", "--command", "exit 2", "--cron", "*/5 * * * *")

    with pytest.raises(SystemExit) as exc_info:
        run_cli(database_url, "run", "1")

    assert exc_info.value.code == 1
    assert "ERROR" in capsys.readouterr().out


def test_cleanup(database_url, capsys):
    run_cli(database_url, "cleanup")

    assert "Deleted 0 run(s) older than 30 days" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit):
        main([])
    assert "usage" in capsys.readouterr().out


def test_setup_logging_honours_configured_level():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    try:
        setup_logging(level="warning")
        assert root.level == logging.WARNING

        setup_logging(verbose=True, level="warning")
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers[:]:
            if handler not in handlers:
                root.removeHandler(handler)
        root.setLevel(level)
