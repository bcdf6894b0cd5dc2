"""
Scheduler configuration management.

Settings are resolved from (highest to lowest priority):
1. Explicit keyword arguments
2. JSON config file (CRONOSPHERE_CONFIG_PATH or ~/.cronosphere/config.json)
3. Environment variables (a .env file is loaded first)
4. Defaults
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Optional, List, Dict, Any

from dotenv import load_dotenv

from cronosphere.jobs import DEFAULT_MAX_OUTPUT_BYTES
from cronosphere.safety import DEFAULT_MAX_COMMAND_LENGTH, is_valid_cron

load_dotenv()

logger = logging.getLogger(__name__)

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def _get_data_dir() -> Path:
    """Get the base directory for the database and logs."""
    data_dir = os.environ.get('CRONOSPHERE_DATA_DIR')
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".cronosphere"


def _get_default_database_url() -> str:
    if os.environ.get('DATABASE_URL'):
        return os.environ['DATABASE_URL']
    return f"sqlite:///{_get_data_dir() / 'cronosphere.db'}"


def _get_default_log_file() -> str:
    """Get default log file path from environment or default."""
    if os.environ.get('CRONOSPHERE_LOG_DIR'):
        return str(Path(os.environ['CRONOSPHERE_LOG_DIR']).expanduser() / "cronosphere.log")
    return str(_get_data_dir() / "logs" / "cronosphere.log")


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None  # Set dynamically in __post_init__

    def __post_init__(self):
        if self.file is None:
            self.file = _get_default_log_file()


@dataclass
class SchedulerConfig:
    """
    Runtime settings for the scheduler service.

    None of these affect correctness except the limits
    (timeout, retention, command length).
    """
    database_url: str = field(default_factory=_get_default_database_url)
    verbose: bool = field(default_factory=lambda: _env_flag('VERBOSE_LOGS'))
    command_timeout: int = field(default_factory=lambda: _env_int('COMMAND_TIMEOUT', 60))
    max_command_length: int = DEFAULT_MAX_COMMAND_LENGTH
    max_output_bytes: int = field(
        default_factory=lambda: _env_int('MAX_OUTPUT_BYTES', DEFAULT_MAX_OUTPUT_BYTES)
    )
    retention_days: int = field(default_factory=lambda: _env_int('RETENTION_DAYS', 30))
    cleanup_schedule: str = field(
        default_factory=lambda: os.environ.get('CLEANUP_SCHEDULE', '0 0 * * *')
    )
    max_workers: int = field(default_factory=lambda: _env_int('SCHEDULER_MAX_WORKERS', 10))
    max_instances_per_job: int = 1  # >1 allows overlapping runs of one job
    misfire_grace_time: int = 300  # 5 minutes grace period
    sync_interval_seconds: int = 30  # 0 disables store re-sync
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    config_path: Optional[Path] = field(default=None, compare=False)

    DEFAULT_CONFIG_PATH = Path.home() / ".cronosphere" / "config.json"

    @classmethod
    def load(cls, config_path: Optional[str] = None, **overrides) -> 'SchedulerConfig':
        """
        Build configuration from file, environment and explicit overrides.

        Args:
            config_path: Path to JSON config file. If None, uses env var or default.
            **overrides: Field values taking precedence over everything else

        Returns:
            SchedulerConfig instance
        """
        if config_path:
            path = Path(config_path).expanduser()
        elif os.environ.get('CRONOSPHERE_CONFIG_PATH'):
            path = Path(os.environ['CRONOSPHERE_CONFIG_PATH']).expanduser()
        else:
            path = cls.DEFAULT_CONFIG_PATH

        values: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, 'r') as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load config from {path}: {e}")
                raise
            known = {f.name for f in fields(cls)} - {'config_path', 'logging'}
            for key, value in data.items():
                if key in known:
                    values[key] = value
                elif key != 'logging':
                    logger.warning(f"Unknown config key '{key}' in {path}")
            if 'logging' in data:
                values['logging'] = LoggingConfig(**data['logging'])
            logger.info(f"Loaded configuration from {path}")
        else:
            logger.debug(f"No config found at {path}, using defaults")

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(config_path=path, **values)

    def save(self):
        """Save configuration to JSON file."""
        path = self.config_path or self.DEFAULT_CONFIG_PATH
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.to_dict()
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)

        logger.info(f"Saved configuration to {path}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop('config_path', None)
        return data

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.database_url:
            errors.append("'database_url' cannot be empty")
        if self.command_timeout <= 0:
            errors.append("'command_timeout' must be positive")
        if self.retention_days <= 0:
            errors.append("'retention_days' must be positive")
        if self.max_command_length <= 0:
            errors.append("'max_command_length' must be positive")
        if self.max_output_bytes <= 0:
            errors.append("'max_output_bytes' must be positive")
        if self.max_workers <= 0:
            errors.append("'max_workers' must be positive")
        if self.max_instances_per_job <= 0:
            errors.append("'max_instances_per_job' must be positive")
        if self.sync_interval_seconds < 0:
            errors.append("'sync_interval_seconds' cannot be negative")
        if self.logging.level.upper() not in LOG_LEVELS:
            errors.append(f"'logging.level' must be one of {', '.join(LOG_LEVELS)}")
        if not is_valid_cron(self.cleanup_schedule):
            errors.append(f"'cleanup_schedule' is not a valid cron expression: {self.cleanup_schedule}")

        return errors

    def __repr__(self):
        return (
            f"SchedulerConfig(database_url={self.database_url!r}, "
            f"timeout={self.command_timeout}s, retention={self.retention_days}d)"
        )
