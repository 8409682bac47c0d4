"""
Layered configuration loading for podcatalog.

Layers are applied in a fixed order, each one overriding the previous:

1. ``defaults``  built into :mod:`podcatalog.config_schema`
2. ``file``      ``config.toml`` (or the path in ``PODCATALOG_CONFIG``)
3. ``env-file``  ``PODCATALOG__SECTION__KEY`` lines of a ``.env`` file
4. ``env``       ``PODCATALOG__SECTION__KEY`` process environment variables

Every leaf value remembers the layer that set it, which is what
``--explain`` and validation errors report.
"""
from __future__ import annotations

import argparse
import json
import os
import shutil
import sys
import tempfile
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, Tuple

import tomli_w
from dotenv import dotenv_values
from pydantic import ValidationError

from podcatalog.config_schema import Config, DEFAULT_CONFIG, iter_field_docs

DEFAULT_ENV_PREFIX = "PODCATALOG"
DEFAULT_CONFIG_FILENAME = "config.toml"
DEFAULT_ENV_FILENAME = ".env"
CONFIG_PATH_ENV_VAR = "PODCATALOG_CONFIG"
BACKUP_DIRNAME = "backups"
LOAD_ORDER: Tuple[str, ...] = ("defaults", "file", "env-file", "env")
SECRET_MARKERS: Tuple[str, ...] = ("password", "secret", "token")
MASK = "***masked***"


class ConfigError(RuntimeError):
    """Raised when configuration cannot be read, parsed or validated."""


@dataclass(frozen=True)
class ConfigValueOrigin:
    """Where a single configuration value came from."""

    layer: str
    source: str
    env_var: str | None = None

    def render(self) -> str:
        details = [item for item in (self.env_var, self.source) if item]
        if not details:
            return self.layer
        return f"{self.layer} ({', '.join(details)})"


@dataclass
class ConfigMetadata:
    """Provenance attached to a loaded :class:`Config` as ``_metadata``."""

    config_path: Path
    env_path: Optional[Path]
    env_prefix: str
    provenance: Dict[str, ConfigValueOrigin] = field(default_factory=dict)
    load_order: Tuple[str, ...] = LOAD_ORDER

    def describe_sources(self) -> list[str]:
        env_file = str(self.env_path) if self.env_path else "not found"
        return [
            "defaults: built into podcatalog.config_schema",
            f"config file: {self.config_path}",
            f".env file: {env_file}",
            f"environment prefix: {self.env_prefix}__*",
        ]


def is_secret_key(path: str) -> bool:
    lowered = path.lower()
    return any(marker in lowered for marker in SECRET_MARKERS)


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def default_config_path() -> Path:
    configured = os.environ.get(CONFIG_PATH_ENV_VAR)
    if configured:
        return Path(configured)
    return _project_root() / DEFAULT_CONFIG_FILENAME


def _env_file_for(config_path: Path) -> Path:
    """Prefer a ``.env`` next to the config file, then one at the project root."""
    beside = config_path.parent / DEFAULT_ENV_FILENAME
    if beside.exists():
        return beside
    fallback = _project_root() / DEFAULT_ENV_FILENAME
    return fallback if fallback.exists() else beside


def parse_env_value(raw: str) -> Any:
    """Interpret an environment string as bool, null, number, JSON or text."""
    text = raw.strip()
    lowered = text.lower()
    if not text:
        return ""
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered in ("null", "none"):
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        pass
    if text[0] + text[-1] in ("[]", "{}"):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text


def env_key_to_path(name: str, prefix: str) -> str:
    """``PODCATALOG__FETCH__MAX_BYTES`` -> ``fetch.max_bytes``."""
    marker = prefix + "__"
    if not name.startswith(marker):
        raise ConfigError(f"Environment override '{name}' does not start with prefix {marker}")
    segments = [segment.lower() for segment in name[len(marker):].split("__") if segment]
    if not segments:
        raise ConfigError(f"Environment override '{name}' is missing key segments")
    return ".".join(segments)


class _LayerStack:
    """Accumulates nested mappings while recording per-leaf provenance."""

    def __init__(self) -> None:
        self.data: Dict[str, Any] = {}
        self.provenance: Dict[str, ConfigValueOrigin] = {}

    def merge(self, updates: Mapping[str, Any], origin: ConfigValueOrigin, prefix: str = "") -> None:
        self._merge_into(self.data, updates, origin, prefix)

    def _merge_into(
        self,
        target: MutableMapping[str, Any],
        updates: Mapping[str, Any],
        origin: ConfigValueOrigin,
        prefix: str,
    ) -> None:
        for key, value in updates.items():
            dotted = f"{prefix}.{key}" if prefix else str(key)
            if isinstance(value, Mapping):
                child = target.get(key)
                if not isinstance(child, MutableMapping):
                    child = target[key] = {}
                self._merge_into(child, value, origin, dotted)
            else:
                target[key] = list(value) if isinstance(value, list) else value
                self.provenance[dotted] = origin

    def assign(self, dotted: str, value: Any, origin: ConfigValueOrigin) -> None:
        *parents, leaf = dotted.split(".")
        node: MutableMapping[str, Any] = self.data
        for segment in parents:
            child = node.get(segment)
            if not isinstance(child, MutableMapping):
                child = node[segment] = {}
            node = child
        node[leaf] = value
        self.provenance[dotted] = origin

    def apply_env(
        self, items: Iterable[Tuple[str, Optional[str]]], prefix: str, layer: str, source: str
    ) -> None:
        for name, raw in items:
            if raw is None or not name.startswith(prefix + "__"):
                continue
            self.assign(
                env_key_to_path(name, prefix),
                parse_env_value(raw),
                ConfigValueOrigin(layer=layer, source=source, env_var=name),
            )


def _read_toml(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc


def _validation_error(error: ValidationError, provenance: Mapping[str, ConfigValueOrigin]) -> ConfigError:
    lines = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue.get("loc", ())) or "<root>"
        message = issue.get("msg", "invalid value")
        received = issue.get("input")
        if received is not None and not is_secret_key(location):
            message += f" (received={received!r})"
        origin = provenance.get(location)
        if origin is not None:
            message += f" [{origin.render()}]"
        lines.append(f"{location}: {message}")
    return ConfigError("Configuration validation failed:\n - " + "\n - ".join(lines))


def load_config(
    path: Path | None = None,
    *,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Build a validated :class:`Config` from every layer in :data:`LOAD_ORDER`."""

    config_path = path or default_config_path()
    env_path = _env_file_for(config_path)
    stack = _LayerStack()

    stack.merge(
        DEFAULT_CONFIG.model_dump(mode="python"),
        ConfigValueOrigin(layer="defaults", source="podcatalog.config_schema.DEFAULT_CONFIG"),
    )
    stack.merge(_read_toml(config_path), ConfigValueOrigin(layer="file", source=str(config_path)))
    if env_path.exists():
        stack.apply_env(
            dotenv_values(env_path, verbose=False).items(), env_prefix, "env-file", str(env_path)
        )
    stack.apply_env(
        (os.environ if environ is None else environ).items(), env_prefix, "env", "process"
    )

    try:
        config = Config.model_validate(stack.data)
    except ValidationError as exc:
        raise _validation_error(exc, stack.provenance) from exc
    config._metadata = ConfigMetadata(
        config_path=config_path,
        env_path=env_path if env_path.exists() else None,
        env_prefix=env_prefix,
        provenance=stack.provenance,
    )
    return config


def to_toml_payload(value: Any) -> Any:
    """Convert a config (or part of one) into TOML-serializable data; TOML has no null."""
    if isinstance(value, Config):
        value = value.model_dump(mode="python")
    if isinstance(value, Mapping):
        return {key: to_toml_payload(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [to_toml_payload(item) for item in value]
    if isinstance(value, Path):
        return str(value)
    return value


def save_config(config: Config, path: Path | None = None) -> Path:
    """
    Write ``config`` atomically; an existing file is first copied into a
    timestamped ``backups/`` entry.
    """

    metadata: ConfigMetadata | None = getattr(config, "_metadata", None)
    target = path or (metadata.config_path if metadata else default_config_path())
    target.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        prefix=".podcatalog-config-", dir=str(target.parent), delete=False
    ) as handle:
        staged = Path(handle.name)
        tomli_w.dump(to_toml_payload(config), handle)
    try:
        if target.exists():
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
            backups = target.parent / BACKUP_DIRNAME
            backups.mkdir(parents=True, exist_ok=True)
            shutil.copy2(target, backups / f"{target.name}.{stamp}.bak")
        os.replace(staged, target)
    except OSError as exc:
        staged.unlink(missing_ok=True)
        raise ConfigError(f"Failed to persist configuration: {exc}") from exc
    return target


def _lookup(mapping: Mapping[str, Any], dotted: str) -> Any:
    node: Any = mapping
    for segment in dotted.split("."):
        if not isinstance(node, Mapping) or segment not in node:
            raise ConfigError(f"Unknown configuration key: {dotted}")
        node = node[segment]
    return node


def _display(value: Any) -> str:
    if isinstance(value, Path):
        return str(value)
    try:
        return json.dumps(value, ensure_ascii=False)
    except TypeError:
        return repr(value)


def explain(config: Config, key: str) -> str:
    """Render ``key``'s value (masked when secret) and the layer that set it."""

    metadata: ConfigMetadata | None = getattr(config, "_metadata", None)
    if metadata is None:
        raise ConfigError("Configuration metadata is unavailable")
    value = _lookup(config.model_dump(mode="python"), key)
    origin = metadata.provenance.get(key)
    shown = MASK if is_secret_key(key) else _display(value)
    return f"{key} = {shown}\nsource: {origin.render() if origin else 'unknown'}"


def schema_markdown() -> str:
    columns = ("Field", "Type", "Default", "Description", "Constraints", "Example")
    rows = [columns, ("---",) * len(columns)]
    for entry in iter_field_docs(DEFAULT_CONFIG):
        rows.append(
            (
                str(entry["name"]),
                str(entry["type"]),
                "" if entry["default"] is None else _display(entry["default"]),
                str(entry.get("description", "")),
                str(entry.get("constraints", "")),
                ", ".join(str(item) for item in entry.get("examples") or []),
            )
        )
    return "\n".join("| " + " | ".join(row) + " |" for row in rows)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="podcatalog-config",
        description="Inspect and validate podcatalog configuration",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="Path to the TOML configuration file")
    parser.add_argument(
        "--env-prefix",
        default=DEFAULT_ENV_PREFIX,
        help="Environment variable prefix (e.g. PODCATALOG__FETCH__MAX_BYTES)",
    )
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--validate", action="store_true", help="Validate the active configuration")
    action.add_argument("--dump-defaults", action="store_true", help="Print built-in defaults as TOML")
    action.add_argument("--print-schema", action="store_true", help="Print a Markdown table of all fields")
    action.add_argument("--show-sources", action="store_true", help="List configuration layers in precedence order")
    action.add_argument("--explain", metavar="KEY", help="Show a value and the layer that set it")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.dump_defaults:
        sys.stdout.write(tomli_w.dumps(to_toml_payload(DEFAULT_CONFIG)))
        return 0
    if args.print_schema:
        print(schema_markdown())
        return 0

    try:
        config = load_config(args.config, env_prefix=args.env_prefix)
        if args.explain:
            print(explain(config, args.explain))
        elif args.show_sources:
            print("Active configuration sources:")
            for line in config._metadata.describe_sources():
                print(f"- {line}")
        else:
            print("Configuration OK")
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
