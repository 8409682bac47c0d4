from __future__ import annotations

from pathlib import Path

import pytest

from config.settings import CONFIG, database_settings, validate_config
from podcatalog.config_manager import (
    Config,
    ConfigError,
    env_key_to_path,
    explain,
    load_config,
    parse_env_value,
    save_config,
    schema_markdown,
)
from podcatalog.config_schema import DEFAULT_CONFIG, iter_field_docs


def test_precedence_env_overrides(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[fetch]\nmax_bytes = 1000\n", encoding="utf-8")
    env_file = tmp_path / ".env"
    env_file.write_text("PODCATALOG__FETCH__MAX_BYTES=2000\n", encoding="utf-8")
    environ = {"PODCATALOG__FETCH__MAX_BYTES": "3000"}
    config = load_config(config_file, environ=environ)
    assert config.fetch.max_bytes == 3000
    provenance = config._metadata.provenance["fetch.max_bytes"]
    assert provenance.layer == "env"
    assert provenance.env_var == "PODCATALOG__FETCH__MAX_BYTES"


def test_save_config_creates_backups(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[scheduler]\nmax_concurrency = 4\n", encoding="utf-8")
    config = load_config(config_file, environ={})
    data = config.model_dump(mode="python")
    data["scheduler"]["max_concurrency"] = 8
    updated = Config.model_validate(data)
    updated._metadata = config._metadata
    save_config(updated)
    data["scheduler"]["max_concurrency"] = 12
    updated = Config.model_validate(data)
    updated._metadata = config._metadata
    save_config(updated)
    backups = list((config_file.parent / "backups").glob("config.toml.*.bak"))
    assert backups, "second save should produce a timestamped backup"
    assert load_config(config_file, environ={}).scheduler.max_concurrency == 12


def test_blank_database_port_normalized(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[database]\nport = \"\"\n", encoding="utf-8")
    config = load_config(config_file, environ={})
    assert config.database.port is None


def test_validation_errors_report_source(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[fetch]\nmax_redirects = 'many'\n", encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(config_file, environ={})
    assert "fetch.max_redirects" in str(excinfo.value)
    assert "file" in str(excinfo.value)


def test_backoff_bounds_are_checked(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        "[scheduler]\nbase_backoff_seconds = 600\nmax_backoff_seconds = 60\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigError):
        load_config(config_file, environ={})


def test_postgres_requires_connection_fields(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text('[database]\ndriver = "postgresql"\n', encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(config_file, environ={})
    assert "host" in str(excinfo.value)


def test_cross_section_validation(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        "[scheduler]\nlease_seconds = 60\n[fetch]\ntotal_timeout_seconds = 120\n",
        encoding="utf-8",
    )
    config = load_config(config_file, environ={})
    with pytest.raises(ConfigError):
        validate_config(config)
    validate_config(DEFAULT_CONFIG)


def test_database_settings_flatten_driver() -> None:
    settings = database_settings(DEFAULT_CONFIG)
    assert settings["type"] == "sqlite"
    assert "driver" not in settings


def test_explain_masks_secrets(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text('[database]\npassword = "hunter2"\n', encoding="utf-8")
    config = load_config(config_file, environ={})
    rendered = explain(config, "database.password")
    assert "hunter2" not in rendered
    assert "file" in rendered




@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("true", True),
        (" False ", False),
        ("none", None),
        ("42", 42),
        ("-3", -3),
        ("0.25", 0.25),
        ('["a", "b"]', ["a", "b"]),
        ("[not json", "[not json"),
        ("podcatalog/1.0", "podcatalog/1.0"),
        ("", ""),
    ],
)
def test_env_values_are_coerced(raw: str, expected: object) -> None:
    assert parse_env_value(raw) == expected


def test_env_key_maps_to_dotted_path() -> None:
    assert env_key_to_path("PODCATALOG__FETCH__MAX_BYTES", "PODCATALOG") == "fetch.max_bytes"
    with pytest.raises(ConfigError):
        env_key_to_path("OTHER__FETCH__MAX_BYTES", "PODCATALOG")
    with pytest.raises(ConfigError):
        env_key_to_path("PODCATALOG__", "PODCATALOG")


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[fetch]\nmax_megabytes = 3\n", encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(config_file, environ={})
    assert "fetch.max_megabytes" in str(excinfo.value)


@pytest.mark.parametrize(
    "path",
    [
        "fetch.max_bytes",
        "fetch.max_redirects",
        "fetch.ignore_cache_tokens_after_hours",
        "parser.max_episodes_per_feed",
        "scheduler.failure_disable_threshold",
        "scheduler.jitter_ratio",
        "scheduler.lease_seconds",
        "api.max_page_size",
        "database.driver",
        "logging.level",
    ],
)
def test_documented_fields(path: str) -> None:
    documented = {
        entry["name"] for entry in iter_field_docs(DEFAULT_CONFIG) if not entry["is_nested"]
    }
    assert path in documented


def test_schema_markdown_lists_constraints() -> None:
    table = schema_markdown()
    assert table.startswith("| Field | Type |")
    row = next(line for line in table.splitlines() if line.startswith("| fetch.max_redirects "))
    assert ">= 0" in row and "<= 20" in row


def test_module_config_is_loaded() -> None:
    assert CONFIG.scheduler.failure_disable_threshold >= 1
