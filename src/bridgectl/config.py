"""Configuration loader for bridgectl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/bridgectl/config.yml`` (or an override path).
3. Environment variables prefixed with ``BRIDGECTL_``.
4. Explicit overrides supplied programmatically.

Environment keys use double underscores to express nesting, e.g.::

    export BRIDGECTL_ACCOUNT__GROUPS="[dialout, tty]"
    export BRIDGECTL_SYSTEMD__UNIT_DIR=/run/systemd/system

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
lists are parsed naturally. The resulting configuration is exposed as
immutable ``dataclasses``. Installation paths are deliberately absent from the
CLI flags; they change only through these sources.
"""
from __future__ import annotations

import os
import shlex
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load bridgectl configuration. Install with "
        "`pip install bridgectl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "BRIDGECTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AccountConfig:
    """Service account identity and device-access groups."""

    name: str = "rustbridge"
    groups: tuple[str, ...] = ("dialout",)
    shell: str = "/bin/false"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "groups": list(self.groups), "shell": self.shell}


@dataclass(frozen=True)
class BuildConfig:
    """External build step used when the artifact is missing."""

    command: tuple[str, ...] = ("cargo", "build", "--release")
    timeout: float = 1800.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"command": list(self.command), "timeout": self.timeout}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    unit_source: Path | None = None
    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir),
            "unit_source": str(self.unit_source) if self.unit_source is not None else None,
            "systemctl_bin": self.systemctl_bin,
            "journalctl_bin": self.journalctl_bin,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for bridgectl."""

    config_file: Path
    service_name: str
    binary_name: str
    install_dir: Path
    config_dir: Path
    config_filename: str
    project_root: Path
    artifact_path: Path
    default_config: Path
    logs_dir: Path
    templates_dir: Path
    command_timeout: float
    account: AccountConfig
    build: BuildConfig
    systemd: SystemdConfig

    @property
    def binary_path(self) -> Path:
        """Installed location of the service executable."""
        return self.install_dir / self.binary_name

    @property
    def config_path(self) -> Path:
        """Installed location of the service configuration file."""
        return self.config_dir / self.config_filename

    @property
    def artifact_source(self) -> Path:
        """Build output that gets staged as the service executable."""
        return self.project_root / self.artifact_path

    @property
    def default_config_source(self) -> Path:
        """Configuration file seeded on first install."""
        return self.project_root / self.default_config

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "service_name": self.service_name,
            "binary_name": self.binary_name,
            "install_dir": str(self.install_dir),
            "config_dir": str(self.config_dir),
            "config_filename": self.config_filename,
            "project_root": str(self.project_root),
            "artifact_path": str(self.artifact_path),
            "default_config": str(self.default_config),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "command_timeout": self.command_timeout,
            "account": self.account.to_dict(),
            "build": self.build.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/bridgectl/config.yml",
    "service_name": "rustbridge",
    "binary_name": "rustbridge",
    "install_dir": "/usr/local/bin",
    "config_dir": "/etc/rustbridge",
    "config_filename": "config.yaml",
    "project_root": ".",
    "artifact_path": "target/release/rustbridge",
    "default_config": "config.yaml",
    "logs_dir": "/var/log/bridgectl",
    "templates_dir": "/etc/bridgectl/templates",
    "command_timeout": 60.0,
    "account": {
        "name": "rustbridge",
        "groups": ["dialout"],
        "shell": "/bin/false",
    },
    "build": {
        "command": ["cargo", "build", "--release"],
        "timeout": 1800.0,
    },
    "systemd": {
        "unit_dir": "/etc/systemd/system",
        "unit_source": None,
        "systemctl_bin": "systemctl",
        "journalctl_bin": "journalctl",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS = {
    "account": {"name", "groups", "shell"},
    "build": {"command", "timeout"},
    "systemd": {"unit_dir", "unit_source", "systemctl_bin", "journalctl_bin"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    for key in ("service_name", "binary_name", "config_filename"):
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"{key} must be a non-empty string.")
        if "/" in value:
            raise ConfigError(f"{key} must not contain '/'. Got {value!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    account_mapping = _as_dict(raw.get("account"), "account")
    account_name = str(account_mapping.get("name") or "").strip()
    if not account_name:
        raise ConfigError("account.name must be a non-empty string.")
    account = AccountConfig(
        name=account_name,
        groups=_expect_str_tuple(account_mapping.get("groups"), "account.groups"),
        shell=str(account_mapping.get("shell", "/bin/false")),
    )

    build_mapping = _as_dict(raw.get("build"), "build")
    build_command = _expect_command(build_mapping.get("command"), "build.command")
    build = BuildConfig(
        command=build_command,
        timeout=_expect_positive_float(
            build_mapping.get("timeout"), "build.timeout", default=1800.0
        ),
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    unit_source_value = systemd_mapping.get("unit_source")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_mapping.get("unit_dir", "/etc/systemd/system")),
        unit_source=_to_path(unit_source_value) if unit_source_value else None,
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
        journalctl_bin=str(systemd_mapping.get("journalctl_bin", "journalctl")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        service_name=str(raw["service_name"]),
        binary_name=str(raw["binary_name"]),
        install_dir=_to_path(raw.get("install_dir")),
        config_dir=_to_path(raw.get("config_dir")),
        config_filename=str(raw["config_filename"]),
        project_root=_to_path(raw.get("project_root")),
        artifact_path=_to_path(raw.get("artifact_path")),
        default_config=_to_path(raw.get("default_config")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        command_timeout=_expect_positive_float(
            raw.get("command_timeout"), "command_timeout", default=60.0
        ),
        account=account,
        build=build,
        systemd=systemd,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _expect_str_tuple(value: object | None, label: str) -> tuple[str, ...]:
    # A bare string is accepted as a comma-separated list ("dialout,tty").
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    items = _as_sequence(value, label)
    result: list[str] = []
    for index, item in enumerate(items):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{label}[{index}] must be a non-empty string.")
        result.append(item.strip())
    return tuple(result)


def _expect_command(value: object | None, label: str) -> tuple[str, ...]:
    if isinstance(value, str):
        command = tuple(shlex.split(value))
    else:
        command = _expect_str_tuple(value, label)
    if not command:
        raise ConfigError(f"{label} must name a command to run.")
    return command


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AccountConfig",
    "AppConfig",
    "BuildConfig",
    "ConfigError",
    "SystemdConfig",
    "load_config",
]
