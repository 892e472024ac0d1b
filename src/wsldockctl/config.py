"""Configuration loader for wsldockctl.

Configuration values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``~/.config/wsldockctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``WSLDOCKCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export WSLDOCKCTL_HOST__DISTRIBUTION=Ubuntu-24.04
    export WSLDOCKCTL_GUEST__CHANNEL=test

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load wsldockctl configuration. Install with "
        "`pip install wsldockctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "WSLDOCKCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class HostConfig:
    """Windows host provisioning settings."""

    min_major: int = 10
    min_build: int = 19041
    distribution: str = "Ubuntu-22.04"
    wsl_default_version: int = 2
    wsl_bin: str = "wsl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "min_major": self.min_major,
            "min_build": self.min_build,
            "distribution": self.distribution,
            "wsl_default_version": self.wsl_default_version,
            "wsl_bin": self.wsl_bin,
        }


DEFAULT_CONFLICTING_PACKAGES: tuple[str, ...] = (
    "docker",
    "docker-engine",
    "docker.io",
    "containerd",
    "runc",
    "docker-doc",
    "docker-compose",
    "podman-docker",
)
DEFAULT_PREREQUISITE_PACKAGES: tuple[str, ...] = (
    "ca-certificates",
    "curl",
    "gnupg",
    "lsb-release",
)
DEFAULT_ENGINE_PACKAGES: tuple[str, ...] = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)


@dataclass(frozen=True)
class GuestConfig:
    """WSL guest provisioning settings."""

    wsl_conf: Path = Path("/etc/wsl.conf")
    proc_version: Path = Path("/proc/version")
    keyrings_dir: Path = Path("/etc/apt/keyrings")
    key_name: str = "docker.gpg"
    key_url: str = "https://download.docker.com/linux/ubuntu/gpg"
    repo_url: str = "https://download.docker.com/linux/ubuntu"
    channel: str = "stable"
    sources_file: Path = Path("/etc/apt/sources.list.d/docker.list")
    docker_group: str = "docker"
    service: str = "docker.service"
    verify_script: str = "verify-docker.sh"
    smoke_image: str = "hello-world"
    sudo_bin: str = "sudo"
    systemctl_bin: str = "systemctl"
    docker_bin: str = "docker"
    conflicting_packages: tuple[str, ...] = DEFAULT_CONFLICTING_PACKAGES
    prerequisite_packages: tuple[str, ...] = DEFAULT_PREREQUISITE_PACKAGES
    engine_packages: tuple[str, ...] = DEFAULT_ENGINE_PACKAGES

    @property
    def key_path(self) -> Path:
        """Return the path of the de-armored repository signing key."""
        return self.keyrings_dir / self.key_name

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "wsl_conf": str(self.wsl_conf),
            "proc_version": str(self.proc_version),
            "keyrings_dir": str(self.keyrings_dir),
            "key_name": self.key_name,
            "key_url": self.key_url,
            "repo_url": self.repo_url,
            "channel": self.channel,
            "sources_file": str(self.sources_file),
            "docker_group": self.docker_group,
            "service": self.service,
            "verify_script": self.verify_script,
            "smoke_image": self.smoke_image,
            "sudo_bin": self.sudo_bin,
            "systemctl_bin": self.systemctl_bin,
            "docker_bin": self.docker_bin,
            "conflicting_packages": list(self.conflicting_packages),
            "prerequisite_packages": list(self.prerequisite_packages),
            "engine_packages": list(self.engine_packages),
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for wsldockctl."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path | None
    host: HostConfig
    guest: GuestConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir) if self.templates_dir else None,
            "host": self.host.to_dict(),
            "guest": self.guest.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/wsldockctl/config.yml",
    "logs_dir": "~/.local/state/wsldockctl/logs",
    "templates_dir": None,
    "host": HostConfig().to_dict(),
    "guest": GuestConfig().to_dict(),
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_HOST_KEYS = set(HostConfig().to_dict().keys())
ALLOWED_GUEST_KEYS = set(GuestConfig().to_dict().keys())
ALLOWED_CHANNELS = {"stable", "test", "nightly"}
PACKAGE_LIST_KEYS = ("conflicting_packages", "prerequisite_packages", "engine_packages")


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
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


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

    host_map = _as_dict(raw.get("host"), "host")
    unknown = set(host_map.keys()) - ALLOWED_HOST_KEYS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown host configuration keys: {joined}.")

    guest_map = _as_dict(raw.get("guest"), "guest")
    unknown = set(guest_map.keys()) - ALLOWED_GUEST_KEYS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown guest configuration keys: {joined}.")

    channel = guest_map.get("channel")
    if channel is not None and str(channel) not in ALLOWED_CHANNELS:
        allowed = ", ".join(sorted(ALLOWED_CHANNELS))
        raise ConfigError(f"Unsupported repository channel '{channel}'. Allowed: {allowed}.")

    for key in PACKAGE_LIST_KEYS:
        value = guest_map.get(key)
        if value is not None:
            for index, entry in enumerate(_as_sequence(value, f"guest.{key}")):
                if not isinstance(entry, str) or not entry.strip():
                    raise ConfigError(f"guest.{key}[{index}] must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    logs_dir = _to_path(raw.get("logs_dir"))
    templates_value = raw.get("templates_dir")
    templates_dir = _to_path(templates_value) if templates_value else None

    defaults_host = HostConfig()
    host_mapping = _as_dict(raw.get("host"), "host")
    min_major = _expect_int(host_mapping.get("min_major"), "host.min_major", default=10)
    min_build = _expect_int(host_mapping.get("min_build"), "host.min_build", default=19041)
    if min_major < 0 or min_build < 0:
        raise ConfigError("host.min_major and host.min_build must be non-negative.")
    default_version = _expect_int(
        host_mapping.get("wsl_default_version"),
        "host.wsl_default_version",
        default=defaults_host.wsl_default_version,
    )
    if default_version not in (1, 2):
        raise ConfigError("host.wsl_default_version must be 1 or 2.")
    distribution = str(host_mapping.get("distribution", defaults_host.distribution)).strip()
    if not distribution:
        raise ConfigError("host.distribution must be a non-empty string.")
    host = HostConfig(
        min_major=min_major,
        min_build=min_build,
        distribution=distribution,
        wsl_default_version=default_version,
        wsl_bin=str(host_mapping.get("wsl_bin", defaults_host.wsl_bin)),
    )

    defaults_guest = GuestConfig()
    guest_mapping = _as_dict(raw.get("guest"), "guest")
    guest = GuestConfig(
        wsl_conf=_to_path(guest_mapping.get("wsl_conf", defaults_guest.wsl_conf)),
        proc_version=_to_path(guest_mapping.get("proc_version", defaults_guest.proc_version)),
        keyrings_dir=_to_path(guest_mapping.get("keyrings_dir", defaults_guest.keyrings_dir)),
        key_name=str(guest_mapping.get("key_name", defaults_guest.key_name)),
        key_url=str(guest_mapping.get("key_url", defaults_guest.key_url)),
        repo_url=str(guest_mapping.get("repo_url", defaults_guest.repo_url)).rstrip("/"),
        channel=str(guest_mapping.get("channel", defaults_guest.channel)),
        sources_file=_to_path(guest_mapping.get("sources_file", defaults_guest.sources_file)),
        docker_group=str(guest_mapping.get("docker_group", defaults_guest.docker_group)),
        service=str(guest_mapping.get("service", defaults_guest.service)),
        verify_script=str(guest_mapping.get("verify_script", defaults_guest.verify_script)),
        smoke_image=str(guest_mapping.get("smoke_image", defaults_guest.smoke_image)),
        sudo_bin=str(guest_mapping.get("sudo_bin", defaults_guest.sudo_bin)),
        systemctl_bin=str(guest_mapping.get("systemctl_bin", defaults_guest.systemctl_bin)),
        docker_bin=str(guest_mapping.get("docker_bin", defaults_guest.docker_bin)),
        conflicting_packages=_package_list(
            guest_mapping, "conflicting_packages", defaults_guest.conflicting_packages
        ),
        prerequisite_packages=_package_list(
            guest_mapping, "prerequisite_packages", defaults_guest.prerequisite_packages
        ),
        engine_packages=_package_list(
            guest_mapping, "engine_packages", defaults_guest.engine_packages
        ),
    )

    return AppConfig(
        config_file=config_file,
        logs_dir=logs_dir,
        templates_dir=templates_dir,
        host=host,
        guest=guest,
    )


def _package_list(
    mapping: Mapping[str, object],
    key: str,
    default: tuple[str, ...],
) -> tuple[str, ...]:
    value = mapping.get(key)
    if value is None:
        return default
    return tuple(str(item).strip() for item in _as_sequence(value, f"guest.{key}"))


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


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


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


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


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
    "GuestConfig",
    "HostConfig",
    "load_config",
]
