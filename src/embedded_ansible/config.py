"""Configuration loader for embedded-ansible.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/embedded-ansible/config.yml`` (or an override path).
3. Environment variables prefixed with ``EMBEDDED_ANSIBLE_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export EMBEDDED_ANSIBLE_INSTALLER__ROOT=/opt/tower-setup
    export EMBEDDED_ANSIBLE_SETUP__START_TAGS=packages,migrations

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.

The installer location itself can additionally be redirected at probe time by
``APPLIANCE_ANSIBLE_DIRECTORY`` (see :mod:`embedded_ansible.lifecycle.probe`);
that variable is read on every availability check rather than here.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "EMBEDDED_ANSIBLE_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class InstallerConfig:
    """Where the embedded installer lives and how it describes itself."""

    root: Path = Path("/opt/ansible-installer")
    root_env_var: str = "APPLIANCE_ANSIBLE_DIRECTORY"
    env_file: Path = Path("/etc/sysconfig/ansible-tower")
    services_var: str = "TOWER_SERVICES"
    secret_key_file: Path = Path("/etc/tower/SECRET_KEY")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "root": str(self.root),
            "root_env_var": self.root_env_var,
            "env_file": str(self.env_file),
            "services_var": self.services_var,
            "secret_key_file": str(self.secret_key_file),
        }


@dataclass(frozen=True)
class SetupConfig:
    """Arguments used when invoking the installer's setup script."""

    script: str = "setup.sh"
    extra_vars: str = "minimum_var_space=0"
    configure_tags: str = "packages,migrations,supervisor"
    start_tags: str = "packages,migrations"
    shell: str = "/bin/bash"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "script": self.script,
            "extra_vars": self.extra_vars,
            "configure_tags": self.configure_tags,
            "start_tags": self.start_tags,
            "shell": self.shell,
        }


DEFAULT_INVENTORY_VARS: dict[str, object] = {
    "rabbitmq_port": 5672,
    "rabbitmq_vhost": "tower",
    "rabbitmq_username": "tower",
    "rabbitmq_cookie": "cookiemonster",
    "rabbitmq_use_long_name": "false",
    "rabbitmq_enable_manager": "false",
}


@dataclass(frozen=True)
class InventoryConfig:
    """Static variables rendered into every setup inventory."""

    vars: Mapping[str, object] = field(default_factory=lambda: dict(DEFAULT_INVENTORY_VARS))

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"vars": dict(self.vars)}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for embedded-ansible."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    lock_timeout: float
    installer: InstallerConfig
    setup: SetupConfig
    inventory: InventoryConfig
    systemd: SystemdConfig

    @property
    def setup_script(self) -> Path:
        """Full path of the installer's setup script."""
        return self.installer.root / self.setup.script

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "installer": self.installer.to_dict(),
            "setup": self.setup.to_dict(),
            "inventory": self.inventory.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/embedded-ansible/config.yml",
    "state_dir": "/var/lib/embedded-ansible",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": "/var/log/embedded-ansible",
    "runtime_dir": "/run/embedded-ansible",
    "templates_dir": "/etc/embedded-ansible/templates",
    "lock_timeout": 30.0,
    "installer": {
        "root": "/opt/ansible-installer",
        "root_env_var": "APPLIANCE_ANSIBLE_DIRECTORY",
        "env_file": "/etc/sysconfig/ansible-tower",
        "services_var": "TOWER_SERVICES",
        "secret_key_file": "/etc/tower/SECRET_KEY",
    },
    "setup": {
        "script": "setup.sh",
        "extra_vars": "minimum_var_space=0",
        "configure_tags": "packages,migrations,supervisor",
        "start_tags": "packages,migrations",
        "shell": "/bin/bash",
    },
    "inventory": {
        "vars": dict(DEFAULT_INVENTORY_VARS),
    },
    "systemd": {
        "systemctl_bin": "systemctl",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "installer": {"root", "root_env_var", "env_file", "services_var", "secret_key_file"},
    "setup": {"script", "extra_vars", "configure_tags", "start_tags", "shell"},
    "inventory": {"vars"},
    "systemd": {"systemctl_bin"},
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
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    inventory_map = _as_dict(raw.get("inventory"), "inventory")
    inventory_vars = _as_dict(inventory_map.get("vars"), "inventory.vars")
    for key, value in inventory_vars.items():
        if key in {"admin_password", "rabbitmq_password"}:
            raise ConfigError(f"inventory.vars must not define '{key}'; it is managed.")
        if isinstance(value, (Mapping, list)):
            raise ConfigError(f"inventory.vars.{key} must be a scalar value.")

    setup_map = _as_dict(raw.get("setup"), "setup")
    for key in ("configure_tags", "start_tags", "script"):
        value = setup_map.get(key)
        if value is not None and not str(value).strip():
            raise ConfigError(f"setup.{key} must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))
    logs_dir = _to_path(raw.get("logs_dir"))
    runtime_dir = _to_path(raw.get("runtime_dir"))
    templates_dir = _to_path(raw.get("templates_dir"))
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)

    registry_dir_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_dir_value) if registry_dir_value else state_dir / "registry"

    defaults = InstallerConfig()
    installer_map = _as_dict(raw.get("installer"), "installer")
    installer = InstallerConfig(
        root=_to_path(installer_map.get("root", defaults.root)),
        root_env_var=str(installer_map.get("root_env_var", defaults.root_env_var)),
        env_file=_to_path(installer_map.get("env_file", defaults.env_file)),
        services_var=str(installer_map.get("services_var", defaults.services_var)),
        secret_key_file=_to_path(installer_map.get("secret_key_file", defaults.secret_key_file)),
    )

    setup_defaults = SetupConfig()
    setup_map = _as_dict(raw.get("setup"), "setup")
    setup = SetupConfig(
        script=str(setup_map.get("script", setup_defaults.script)),
        extra_vars=str(setup_map.get("extra_vars", setup_defaults.extra_vars)),
        configure_tags=str(setup_map.get("configure_tags", setup_defaults.configure_tags)),
        start_tags=str(setup_map.get("start_tags", setup_defaults.start_tags)),
        shell=str(setup_map.get("shell", setup_defaults.shell)),
    )

    inventory_map = _as_dict(raw.get("inventory"), "inventory")
    inventory_vars_raw = inventory_map.get("vars")
    inventory = InventoryConfig(
        vars=_as_dict(inventory_vars_raw, "inventory.vars")
        if inventory_vars_raw is not None
        else dict(DEFAULT_INVENTORY_VARS)
    )

    systemd_map = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_map.get("systemctl_bin", "systemctl")),
    )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        templates_dir=templates_dir,
        lock_timeout=lock_timeout,
        installer=installer,
        setup=setup,
        inventory=inventory,
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
        else:
            result[key] = value
    return result


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
    "AppConfig",
    "ConfigError",
    "InstallerConfig",
    "InventoryConfig",
    "SetupConfig",
    "SystemdConfig",
    "load_config",
]
