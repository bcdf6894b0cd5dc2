"""Shared pytest fixtures."""

import pytest

from cronosphere.config import LoggingConfig, SchedulerConfig
from cronosphere.service import SchedulerService
from cronosphere.store import JobStore


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep tests away from ~/.cronosphere and any developer .env settings"""
    monkeypatch.setenv("CRONOSPHERE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CRONOSPHERE_CONFIG_PATH", str(tmp_path / "missing-config.json"))
    for name in ("DATABASE_URL", "VERBOSE_LOGS", "COMMAND_TIMEOUT", "RETENTION_DAYS",
                 "CLEANUP_SCHEDULE", "SCHEDULER_MAX_WORKERS", "CRONOSPHERE_LOG_DIR",
                 "MAX_OUTPUT_BYTES"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cronosphere-test.db'}"


@pytest.fixture
def config(tmp_path, database_url):
    return SchedulerConfig(
        database_url=database_url,
        command_timeout=5,
        sync_interval_seconds=0,
        logging=LoggingConfig(file=str(tmp_path / "logs" / "cronosphere.log"))
    )


@pytest.fixture
def store(database_url):
    store = JobStore(database_url)
    store.create_tables()
    yield store
    store.dispose()


@pytest.fixture
def service(config, store):
    service = SchedulerService(config=config, store=store)
    yield service
    if service.is_running():
        service.stop(wait=True)
