"""Project configuration facade backed by podcatalog.config_manager."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from podcatalog.config_manager import Config, ConfigError, load_config

CONFIG: Config = load_config()

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = CONFIG.paths.data_dir
LOGS_DIR = CONFIG.paths.logs_dir

for directory in (DATA_DIR, LOGS_DIR):
    directory.mkdir(parents=True, exist_ok=True)

ENVIRONMENT = CONFIG.app.environment
DEBUG = CONFIG.app.debug
IS_PRODUCTION = ENVIRONMENT == "production"
IS_STAGING = ENVIRONMENT == "staging"


def database_settings(config: Config) -> Dict[str, Any]:
    """Flatten the database section into the mapping DatabaseManager expects."""

    data: Dict[str, Any] = config.database.model_dump(mode="python")
    data["type"] = data.pop("driver")
    return data


def logging_settings(config: Config) -> Dict[str, Any]:
    """Translate the logging section into loguru sink arguments."""

    return {
        "level": config.logging.level,
        "file_path": str(config.logging.file_path),
        "max_file_size": f"{config.logging.max_file_size_mb} MB",
        "retention": f"{config.logging.retention_days} days",
        "format": config.logging.format,
        "debug": config.app.debug,
    }


DATABASE_CONFIG: Dict[str, Any] = database_settings(CONFIG)
FETCH_CONFIG: Dict[str, Any] = CONFIG.fetch.model_dump(mode="python")
PARSER_CONFIG: Dict[str, Any] = CONFIG.parser.model_dump(mode="python")
SCHEDULER_CONFIG: Dict[str, Any] = CONFIG.scheduler.model_dump(mode="python")
API_CONFIG: Dict[str, Any] = CONFIG.api.model_dump(mode="python")
LOGGING_CONFIG: Dict[str, Any] = logging_settings(CONFIG)


def validate_config(config: Config | None = None) -> None:
    """Execute cross-section consistency checks."""

    cfg = config or CONFIG
    if cfg.database.driver == "postgresql" and not cfg.database.password:
        raise ConfigError("postgresql configuration missing: password")
    if cfg.scheduler.lease_seconds < cfg.fetch.total_timeout_seconds:
        raise ConfigError(
            "scheduler.lease_seconds must cover fetch.total_timeout_seconds"
        )
    if cfg.scheduler.store_timeout_seconds >= cfg.scheduler.lease_seconds:
        raise ConfigError(
            "scheduler.store_timeout_seconds must be shorter than scheduler.lease_seconds"
        )


__all__ = [
    "BASE_DIR",
    "CONFIG",
    "DATA_DIR",
    "LOGS_DIR",
    "ENVIRONMENT",
    "DEBUG",
    "IS_PRODUCTION",
    "IS_STAGING",
    "DATABASE_CONFIG",
    "FETCH_CONFIG",
    "PARSER_CONFIG",
    "SCHEDULER_CONFIG",
    "API_CONFIG",
    "LOGGING_CONFIG",
    "database_settings",
    "logging_settings",
    "validate_config",
]
