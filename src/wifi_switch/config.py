"""Configuration management for wifi-switch."""
from __future__ import annotations

import contextlib
import json
import logging
import math
import os
import re
import shlex
import shutil
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterable

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from .readiness import normalise_probe_url

logger = logging.getLogger(__name__)

PROFILE_NAME_PATTERN = re.compile(r"[A-Za-z0-9]+")

CONFIG_ENV_VAR = "WIFI_SWITCH_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/wifi-switch/config.json")

DEFAULT_WORK_PROFILE = "work"
DEFAULT_INTERFACE = "wlan0"
DEFAULT_PROBE_HOST = "http://www.google.com"
DEFAULT_MACCHANGER_OPTIONS = "-r"
DEFAULT_PRIVILEGE_COMMAND = "sudo"
DEFAULT_PROFILE_DIR = Path("/etc/netctl")
DEFAULT_PASSWORD_CACHE_COMMAND = "work-password-cache"
DEFAULT_PROBE_TIMEOUT = 2.0
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_LOG_LEVEL = "WARNING"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be loaded or saved."""


def is_valid_profile_name(name: object) -> bool:
    """Return ``True`` when *name* is a usable profile identifier."""

    return isinstance(name, str) and bool(PROFILE_NAME_PATTERN.fullmatch(name))


def parse_profile_list(value: str | None) -> tuple[str, ...]:
    """Split a comma-separated profile list, trimming whitespace around names."""

    if not value:
        return ()
    names: list[str] = []
    for raw_name in value.split(","):
        name = raw_name.strip()
        if name:
            names.append(name)
    return tuple(names)


def format_profile_list(names: Iterable[str]) -> str:
    return ",".join(names)


def default_config_path() -> Path:
    """Return the config path from the environment or the per-user default."""

    override = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _positive_finite(value: float, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{label} must be numeric") from exc
    if not math.isfinite(number) or number <= 0:
        raise ValueError(f"{label} must be a positive finite value")
    return number


def _split_arguments(value: str, label: str) -> list[str]:
    try:
        return shlex.split(value)
    except ValueError as exc:
        raise ValueError(f"{label} is not a valid argument list: {exc}") from exc


def _check_probe_url(target: str) -> None:
    try:
        url = httpx.URL(normalise_probe_url(target))
    except httpx.InvalidURL as exc:
        raise ValueError(f"Invalid probe host {target!r}: {exc}") from exc
    if url.scheme not in {"http", "https"} or not url.host:
        raise ValueError(f"Probe host must be an http(s) URL or host name: {target!r}")


def write_text_atomic(path: Path, text: str) -> None:
    """Replace *path* with *text* through a temporary file in the same directory.

    The existing file mode is kept. The temporary file is removed when any
    step fails, leaving *path* untouched.
    """

    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        if path.exists():
            shutil.copymode(path, temp_name)
        os.replace(temp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(temp_name)
        raise


@dataclass(frozen=True, slots=True)
class SwitchConfig:
    """Immutable settings shared by every wifi-switch component."""

    work_profile: str = DEFAULT_WORK_PROFILE
    other_profiles: tuple[str, ...] = ()
    interface: str = DEFAULT_INTERFACE
    probe_host: str = DEFAULT_PROBE_HOST
    randomize_mac: bool = False
    macchanger_options: str = DEFAULT_MACCHANGER_OPTIONS
    privilege_command: str = DEFAULT_PRIVILEGE_COMMAND
    profile_dir: Path = DEFAULT_PROFILE_DIR
    password_cache_command: str = DEFAULT_PASSWORD_CACHE_COMMAND
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        if not is_valid_profile_name(self.work_profile):
            raise ValueError(f"Invalid work profile name: {self.work_profile!r}")
        interface = self.interface.strip() if isinstance(self.interface, str) else ""
        if not interface:
            raise ValueError("Wireless interface must be a non-empty string")
        probe_host = self.probe_host.strip() if isinstance(self.probe_host, str) else ""
        if not probe_host:
            raise ValueError("Probe host must be a non-empty string")
        _check_probe_url(probe_host)
        if not _split_arguments(str(self.password_cache_command), "Password cache command"):
            raise ValueError("Password cache command must not be empty")
        _split_arguments(str(self.macchanger_options), "macchanger options")
        level = str(self.log_level).strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")
        object.__setattr__(self, "interface", interface)
        object.__setattr__(self, "probe_host", probe_host)
        object.__setattr__(self, "log_level", level)
        object.__setattr__(self, "other_profiles", tuple(self.other_profiles))
        object.__setattr__(self, "profile_dir", Path(self.profile_dir).expanduser())
        object.__setattr__(self, "probe_timeout", _positive_finite(self.probe_timeout, "Probe timeout"))
        object.__setattr__(self, "poll_interval", _positive_finite(self.poll_interval, "Poll interval"))
        object.__setattr__(
            self, "command_timeout", _positive_finite(self.command_timeout, "Command timeout")
        )

    @property
    def privilege_prefix(self) -> list[str]:
        """Return the privilege-escalation command split into arguments."""

        return self.privilege_command.split()

    def to_dict(self) -> dict[str, object]:
        return {
            "work_profile": self.work_profile,
            "other_profiles": format_profile_list(self.other_profiles),
            "interface": self.interface,
            "probe_host": self.probe_host,
            "randomize_mac": self.randomize_mac,
            "macchanger_options": self.macchanger_options,
            "privilege_command": self.privilege_command,
            "profile_dir": str(self.profile_dir),
            "password_cache_command": self.password_cache_command,
            "probe_timeout": self.probe_timeout,
            "poll_interval": self.poll_interval,
            "command_timeout": self.command_timeout,
            "log_level": self.log_level,
        }


class ConfigPayload(BaseModel):
    """Schema of the on-disk JSON configuration."""

    model_config = ConfigDict(extra="ignore")

    work_profile: str = DEFAULT_WORK_PROFILE
    other_profiles: str = ""
    interface: str = DEFAULT_INTERFACE
    probe_host: str = DEFAULT_PROBE_HOST
    randomize_mac: bool = False
    macchanger_options: str = DEFAULT_MACCHANGER_OPTIONS
    privilege_command: str = DEFAULT_PRIVILEGE_COMMAND
    profile_dir: str = str(DEFAULT_PROFILE_DIR)
    password_cache_command: str = DEFAULT_PASSWORD_CACHE_COMMAND
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL

    def to_config(self) -> SwitchConfig:
        return SwitchConfig(
            work_profile=self.work_profile.strip(),
            other_profiles=parse_profile_list(self.other_profiles),
            interface=self.interface,
            probe_host=self.probe_host,
            randomize_mac=self.randomize_mac,
            macchanger_options=self.macchanger_options,
            privilege_command=self.privilege_command,
            profile_dir=Path(self.profile_dir),
            password_cache_command=self.password_cache_command,
            probe_timeout=self.probe_timeout,
            poll_interval=self.poll_interval,
            command_timeout=self.command_timeout,
            log_level=self.log_level,
        )


class ConfigStore:
    """Load and persist the JSON configuration file."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path).expanduser() if path is not None else default_config_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SwitchConfig:
        """Return the stored configuration, or defaults when no file exists."""

        if not self._path.exists():
            logger.debug("No configuration at %s; using defaults", self._path)
            return SwitchConfig()
        try:
            payload: Any = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("Configuration file must contain a JSON object")
            return ConfigPayload.model_validate(payload).to_config()
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration in {self._path}: {exc}") from exc
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Failed to load configuration: {exc}") from exc

    def _extra_entries(self) -> dict[str, Any]:
        """Return keys in the current file that ``SwitchConfig`` does not own."""

        try:
            payload: Any = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Failed to read configuration before saving: {exc}") from exc
        if not isinstance(payload, dict):
            return {}
        known = SwitchConfig.__dataclass_fields__
        return {key: value for key, value in payload.items() if key not in known}

    def save(self, config: SwitchConfig) -> None:
        """Write *config* atomically, keeping any keys wifi-switch does not manage."""

        data: dict[str, Any] = config.to_dict()
        data.update(self._extra_entries())
        text = json.dumps(data, indent=2) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            write_text_atomic(self._path, text)
        except OSError as exc:
            raise ConfigError(f"Failed to save configuration: {exc}") from exc

    def set_other_profiles(self, config: SwitchConfig, names: Iterable[str]) -> SwitchConfig:
        """Replace the other-profiles list and persist the resulting config."""

        updated = replace(config, other_profiles=tuple(names))
        self.save(updated)
        return updated


__all__ = [
    "ConfigError",
    "ConfigPayload",
    "ConfigStore",
    "SwitchConfig",
    "CONFIG_ENV_VAR",
    "PROFILE_NAME_PATTERN",
    "default_config_path",
    "format_profile_list",
    "is_valid_profile_name",
    "parse_profile_list",
    "write_text_atomic",
]
