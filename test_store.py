"""Tests for the jobs/job_runs store."""

from datetime import datetime, timedelta

from cronosphere.models import JobStatus, RunStatus


def test_insert_and_get_job(store):
    job = store.insert_job("backup", "echo backup", "0 2 * * *")

    loaded = store.get_job(job.id)
    assert loaded.name == "backup"
    assert loaded.command == "echo backup"
    assert loaded.schedule == "0 2 * * *"
    assert loaded.status == JobStatus.ACTIVE
    assert store.get_job(job.id + 100) is None


def test_list_jobs_newest_first(store):
    first = store.insert_job("a", "echo a", "* * * * *")
    second = store.insert_job("b", "echo b", "* * * * *")

    assert [job.id for job in store.list_jobs()] == [second.id, first.id]


def test_set_status_and_delete(store):
    job = store.insert_job("a", "echo a", "* * * * *")

    assert store.set_job_status(job.id, JobStatus.PAUSED)
    assert store.get_job(job.id).is_paused
    assert store.delete_job(job.id)
    assert not store.delete_job(job.id)
    assert store.get_job(job.id) is None


def test_runs_survive_job_deletion(store):
    job = store.insert_job("a", "echo a", "* * * * *")
    run_id = store.insert_job_run(job.id, RunStatus.RUNNING, started_at=datetime.now())

    store.delete_job(job.id)

    assert store.get_job_run(run_id).job_id == job.id


def test_terminal_run_is_never_updated_again(store):
    started = datetime.now()
    run_id = store.insert_job_run(1, RunStatus.RUNNING, started_at=started)

    assert store.update_job_run(run_id, RunStatus.SUCCESS, "first", started + timedelta(seconds=1))
    assert not store.update_job_run(run_id, RunStatus.ERROR, "second", started + timedelta(seconds=2))

    run = store.get_job_run(run_id)
    assert run.status == RunStatus.SUCCESS
    assert run.output == "first"
    assert run.finished_at == started + timedelta(seconds=1)


def test_queued_run_moves_to_running_once(store):
    run_id = store.insert_job_run(1, RunStatus.QUEUED)
    assert store.get_job_run(run_id).started_at is None

    assert store.mark_job_run_running(run_id, datetime.now())
    assert not store.mark_job_run_running(run_id, datetime.now())
    assert store.get_job_run(run_id).status == RunStatus.RUNNING


def test_list_job_runs_filters(store):
    now = datetime.now()
    ok = store.insert_job_run(1, RunStatus.RUNNING, started_at=now)
    store.update_job_run(ok, RunStatus.SUCCESS, "ok", now)
    failed = store.insert_job_run(1, RunStatus.RUNNING, started_at=now)
    store.update_job_run(failed, RunStatus.ERROR, "boom", now)
    other = store.insert_job_run(2, RunStatus.RUNNING, started_at=now)

    assert [r.id for r in store.list_job_runs()] == [other, failed, ok]
    assert [r.id for r in store.list_job_runs(job_id=1)] == [failed, ok]
    assert [r.id for r in store.list_job_runs(status=RunStatus.ERROR)] == [failed]
    assert [r.id for r in store.list_job_runs(limit=1)] == [other]
    assert store.count_job_runs() == 3


def test_delete_old_job_runs_only_removes_finished_before_cutoff(store):
    now = datetime.now()
    old = store.insert_job_run(1, RunStatus.RUNNING, started_at=now - timedelta(days=40))
    store.update_job_run(old, RunStatus.SUCCESS, "old", now - timedelta(days=40))
    recent = store.insert_job_run(1, RunStatus.RUNNING, started_at=now - timedelta(days=2))
    store.update_job_run(recent, RunStatus.SUCCESS, "recent", now - timedelta(days=2))
    unfinished = store.insert_job_run(1, RunStatus.RUNNING, started_at=now - timedelta(days=40))

    deleted = store.delete_old_job_runs(now - timedelta(days=30))

    assert deleted == 1
    assert store.get_job_run(old) is None
    assert store.get_job_run(recent) is not None
    assert store.get_job_run(unfinished) is not None
