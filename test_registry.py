"""Tests for the in-memory task registry."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from cronosphere.registry import ScheduledTask, TaskRegistry


class FakeTask:
    def __init__(self, job_id):
        self.job_id = job_id
        self.stop_calls = 0

    def stop(self):
        self.stop_calls += 1


def test_register_and_get():
    registry = TaskRegistry()
    task = FakeTask(1)

    registry.register(1, task)

    assert registry.get(1) is task
    assert 1 in registry
    assert len(registry) == 1
    assert registry.get(2) is None


def test_register_replaces_and_stops_previous_task():
    registry = TaskRegistry()
    old, new = FakeTask(1), FakeTask(1)

    registry.register(1, old)
    registry.register(1, new)

    assert old.stop_calls == 1
    assert new.stop_calls == 0
    assert registry.get(1) is new
    assert len(registry) == 1


def test_unregister_twice_is_a_warning_not_an_error(caplog):
    registry = TaskRegistry()
    task = FakeTask(7)
    registry.register(7, task)

    assert registry.unregister(7) is True
    with caplog.at_level(logging.WARNING):
        assert registry.unregister(7) is False

    assert task.stop_calls == 1
    assert "non-existent job #7" in caplog.text


def test_clear_stops_everything():
    registry = TaskRegistry()
    tasks = [FakeTask(i) for i in range(3)]
    for task in tasks:
        registry.register(task.job_id, task)

    assert registry.clear() == 3
    assert len(registry) == 0
    assert all(task.stop_calls == 1 for task in tasks)


def test_scheduled_task_stop_removes_apscheduler_job():
    scheduler = BackgroundScheduler()
    aps_job = scheduler.add_job(print, 'interval', minutes=5, id='job-1-test')
    task = ScheduledTask(scheduler, aps_job.id, 1, "*/5 * * * *")

    task.stop()
    task.stop()

    assert task.stopped
    assert scheduler.get_job('job-1-test') is None
