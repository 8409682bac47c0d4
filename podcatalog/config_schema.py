"""Declarative configuration schema for podcatalog."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveFloat,
    PositiveInt,
    PrivateAttr,
    field_validator,
    model_validator,
)


class StrictModel(BaseModel):
    """Base model enforcing strict validation rules."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
    )


class AppSettings(StrictModel):
    """Top-level runtime metadata."""

    environment: str = Field(
        default="development",
        description="Normalized deployment environment name.",
        examples=["production"],
    )
    debug: bool = Field(
        default=False,
        description="When true, enables verbose logging.",
    )
    instance_id: Optional[str] = Field(
        default=None,
        description="Identifier recorded on crawl leases; defaults to host:pid.",
        examples=["crawler-1"],
    )

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"development", "production", "staging", "test"}:
            raise ValueError(
                "environment must be one of: development, staging, production, test"
            )
        return normalized

    @field_validator("instance_id", mode="before")
    @classmethod
    def _blank_instance_id(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class PathsConfig(StrictModel):
    """Filesystem layout settings."""

    data_dir: Path = Field(
        default=Path("data"),
        description="Root directory for persistent runtime artefacts.",
        examples=["/var/lib/podcatalog"],
    )
    logs_dir: Path = Field(
        default=Path("logs"),
        description="Directory where operational logs are written.",
        examples=["/var/log/podcatalog"],
    )

    @model_validator(mode="after")
    def _ensure_child_paths(self) -> "PathsConfig":
        base = self.data_dir if self.data_dir.is_absolute() else self.data_dir.resolve()
        object.__setattr__(self, "data_dir", base)
        if not self.logs_dir.is_absolute():
            object.__setattr__(self, "logs_dir", (base / self.logs_dir).resolve())
        return self


class DatabaseConfig(StrictModel):
    """Database connectivity parameters."""

    driver: str = Field(
        default="sqlite",
        description="Database backend driver to use.",
        examples=["postgresql"],
    )
    path: Optional[Path] = Field(
        default=Path("data/catalog.db"),
        description="Filesystem path for SQLite database files.",
    )
    host: Optional[str] = Field(
        default=None,
        description="Hostname for the SQL server when using a network backend.",
        examples=["db.internal"],
    )
    port: Optional[int] = Field(
        default=None,
        description="TCP port for the SQL server backend.",
        examples=[5432],
    )
    name: str = Field(default="podcatalog", description="Database name or schema.")
    user: Optional[str] = Field(
        default=None,
        description="Database username for authenticated connections.",
    )
    password: Optional[str] = Field(
        default=None,
        description="Database password; treated as secret.",
    )
    connect_timeout: PositiveInt = Field(
        default=10, description="Seconds to wait when establishing a connection."
    )
    pool_size: PositiveInt = Field(
        default=10, description="Number of persistent connections per worker."
    )
    max_overflow: PositiveInt = Field(
        default=5,
        description="How many extra connections can be opened temporarily.",
    )
    pool_recycle: PositiveInt = Field(
        default=1_800,
        description="Seconds after which pooled connections are recycled.",
    )

    @field_validator("path", "host", "port", "user", "password", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _validate_backend(self) -> "DatabaseConfig":
        driver = self.driver.lower()
        if driver not in {"sqlite", "postgresql"}:
            raise ValueError("driver must be either 'sqlite' or 'postgresql'")
        if driver == "sqlite":
            if not self.path:
                raise ValueError("SQLite configuration requires a file path")
        else:
            missing: list[str] = []
            for field_name in ("host", "port", "user"):
                if getattr(self, field_name) in (None, ""):
                    missing.append(field_name)
            if missing:
                raise ValueError(
                    "PostgreSQL configuration requires fields: " + ", ".join(missing)
                )
            if self.port is not None and self.port <= 0:
                raise ValueError("Database port must be a positive integer")
        return self


class FetchConfig(StrictModel):
    """HTTP behaviour of the feed fetcher."""

    connect_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Seconds allowed to establish the TCP/TLS connection.",
    )
    read_timeout_seconds: PositiveFloat = Field(
        default=30.0,
        description="Seconds allowed between received chunks.",
    )
    total_timeout_seconds: PositiveFloat = Field(
        default=120.0,
        description="Hard deadline for one fetch including body download.",
    )
    max_bytes: PositiveInt = Field(
        default=10 * 1024 * 1024,
        description="Largest accepted feed body; larger feeds fail permanently.",
    )
    max_redirects: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Redirect hops followed before the fetch fails permanently.",
    )
    user_agent: str = Field(
        default="podcatalog/0.3 (+https://github.com/podcatalog/podcatalog)",
        description="HTTP User-Agent header sent to feed hosts.",
    )
    ignore_cache_tokens_after_hours: PositiveInt = Field(
        default=24 * 7,
        description=(
            "Send an unconditional request when the last successful fetch is "
            "older than this many hours."
        ),
    )


class ParserConfig(StrictModel):
    """Feed parsing limits."""

    max_episodes_per_feed: PositiveInt = Field(
        default=5_000,
        description="Entries beyond this count are ignored for a single feed.",
    )


class SchedulerConfig(StrictModel):
    """Crawl scheduling, backoff and concurrency parameters."""

    max_concurrency: PositiveInt = Field(
        default=16,
        description="Maximum number of shows crawled simultaneously.",
    )
    poll_interval_seconds: PositiveInt = Field(
        default=3_600,
        description="Delay before re-fetching a healthy show.",
    )
    base_backoff_seconds: PositiveFloat = Field(
        default=60.0,
        description="Delay after the first consecutive failure.",
    )
    max_backoff_seconds: PositiveFloat = Field(
        default=24 * 3_600.0,
        description="Upper bound for the backoff delay.",
    )
    jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        lt=1.0,
        description="Fraction of the backoff delay that may be shaved off per show.",
    )
    failure_disable_threshold: PositiveInt = Field(
        default=10,
        description="Shows with more consecutive failures than this are disabled.",
    )
    tick_seconds: PositiveFloat = Field(
        default=30.0,
        description="Sleep between scheduler passes in continuous mode.",
    )
    batch_size: PositiveInt = Field(
        default=200,
        description="Due shows claimed per scheduler pass.",
    )
    lease_seconds: PositiveInt = Field(
        default=600,
        description="Lifetime of the per-show crawl lease held in the database.",
    )
    store_timeout_seconds: PositiveFloat = Field(
        default=30.0,
        description="Deadline for one store transaction.",
    )
    parse_timeout_seconds: PositiveFloat = Field(
        default=30.0,
        description="Deadline for parsing one feed body.",
    )

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "SchedulerConfig":
        if self.max_backoff_seconds < self.base_backoff_seconds:
            raise ValueError("max_backoff_seconds must be >= base_backoff_seconds")
        return self


class ApiConfig(StrictModel):
    """Read API presentation settings."""

    default_page_size: PositiveInt = Field(
        default=50,
        description="Episodes returned per page when no limit is given.",
    )
    max_page_size: PositiveInt = Field(
        default=200,
        description="Largest page size a client may request.",
    )
    summary_length: PositiveInt = Field(
        default=280,
        description="Characters kept when rendering plain-text episode summaries.",
    )


class LoggingConfig(StrictModel):
    """Logging subsystem configuration."""

    level: str = Field(
        default="INFO",
        description="Minimum log level captured by the catalog logger.",
        examples=["DEBUG"],
    )
    file_path: Path = Field(
        default=Path("data/logs/podcatalog.log"),
        description="Absolute path of the rotating log file.",
    )
    max_file_size_mb: PositiveInt = Field(
        default=10,
        description="Maximum size per log file before rotation (MiB).",
    )
    retention_days: PositiveInt = Field(
        default=30,
        description="Number of days to keep rotated log files.",
    )
    format: str = Field(
        default="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name}:{line} | {message}",
        description="Log formatting template compatible with loguru.",
    )

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return normalized

    @model_validator(mode="after")
    def _resolve_path(self) -> "LoggingConfig":
        if not self.file_path.is_absolute():
            object.__setattr__(self, "file_path", self.file_path.resolve())
        return self


class Config(StrictModel):
    """Complete podcatalog configuration model."""

    app: AppSettings = Field(default_factory=AppSettings)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    _metadata: object = PrivateAttr(default=None)


DEFAULT_CONFIG = Config()


def iter_field_docs(
    model: BaseModel | type[BaseModel],
    prefix: str = "",
    *,
    include_defaults: bool = True,
) -> Iterable[dict[str, object]]:
    """Yield flattened schema documentation entries."""

    instance = DEFAULT_CONFIG if isinstance(model, type) else model
    target_model = type(instance) if not isinstance(model, type) else model

    for name, field in target_model.model_fields.items():
        value = getattr(instance, name, field.default)
        key = f"{prefix}{name}" if not prefix else f"{prefix}.{name}"
        is_nested = isinstance(value, BaseModel)
        entry: dict[str, object] = {
            "name": key,
            "type": getattr(field.annotation, "__name__", str(field.annotation)),
            "description": field.description or "",
            "default": None if (is_nested or not include_defaults) else value,
            "examples": field.examples or [],
            "constraints": _describe_constraints(field),
            "is_nested": is_nested,
        }
        yield entry
        if is_nested:
            yield from iter_field_docs(value, key)


def _describe_constraints(field: Any) -> str:
    """Return a human readable description of field constraints."""

    parts: list[str] = []
    comparators = {"ge": ">=", "gt": ">", "le": "<=", "lt": "<"}
    for constraint in getattr(field, "metadata", []):
        for attr, symbol in comparators.items():
            bound = getattr(constraint, attr, None)
            if bound is not None:
                parts.append(f"{symbol} {bound}")
    return ", ".join(parts)


__all__ = [
    "Config",
    "DEFAULT_CONFIG",
    "iter_field_docs",
]
