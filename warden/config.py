"""
Runtime configuration: defaults, then a YAML file, then WARDEN_* environment
variables, then CLI options.

Config file:
    Looked up as --config (must exist), else WARDEN_CONFIG_PATH (ignored if
    missing), else ./config.yaml (ignored if missing). A flat mapping of the
    field names below, e.g.

        db_path: /var/lib/warden/warden.sqlite
        log_output: both
        log_file: /var/log/warden/warden.log

Environment Variables:
    WARDEN_CONFIG_PATH: Config file path - default: ./config.yaml
    WARDEN_DB_PATH: SQLite file holding events and updates - default: ./data/warden.sqlite
    WARDEN_BUSY_TIMEOUT_SECS: Seconds to wait for the write lock - default: 30
    WARDEN_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL - default: INFO
    WARDEN_LOG_FORMAT: json, text - default: json
    WARDEN_LOG_OUTPUT: console, file, both - default: console
    WARDEN_LOG_FILE: Log file for file/both output - default: ./log/warden.log
    WARDEN_LOG_MAX_SIZE_MB: Rotate the log file at this size - default: 100
    WARDEN_LOG_MAX_FILES: Log files kept, the active one included - default: 7
    WARDEN_METRICS_ENABLED: 1/true to serve Prometheus metrics - default: false
    WARDEN_METRICS_PORT: Metrics port - default: 9090
    WARDEN_APPLY_COMMAND: Shell template run to apply an update ({name}, {version})
    WARDEN_ROLLBACK_COMMAND: Shell template run to undo an update ({name}, {version})
    WARDEN_COMMAND_TIMEOUT_SECS: Per-call timeout for the commands - default: 600
    WARDEN_RECOVER_ON_STARTUP: Run recovery before apply/rollback - default: true
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

import yaml

from .core.errors import ConfigError
from .logging_config import DEFAULT_LOG_FILE, FORMATS, LEVELS, OUTPUTS

DEFAULT_DB_PATH = "./data/warden.sqlite"
DEFAULT_CONFIG_PATH = "config.yaml"
CONFIG_PATH_ENV = "WARDEN_CONFIG_PATH"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _to_bool(key: str, val: Any) -> bool:
    if isinstance(val, bool):
        return val
    text = str(val).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got {val!r}")


def _to_number(key: str, val: Any, cast):
    if isinstance(val, bool):
        raise ConfigError(f"{key} must be a number, got {val!r}")
    try:
        return cast(val)
    except (TypeError, ValueError) as ex:
        raise ConfigError(f"{key} must be a number, got {val!r}") from ex


def _to_str(key: str, val: Any) -> Optional[str]:
    if val is None:
        return None
    if isinstance(val, (dict, list)):
        raise ConfigError(f"{key} must be a string, got {val!r}")
    return str(val)


@dataclass(frozen=True)
class WardenConfig:
    db_path: str = DEFAULT_DB_PATH
    busy_timeout_secs: float = 30.0
    log_level: str = "INFO"
    log_format: str = "json"
    log_output: str = "console"
    log_file: str = DEFAULT_LOG_FILE
    log_max_size_mb: float = 100.0
    log_max_files: int = 7
    metrics_enabled: bool = False
    metrics_port: int = 9090
    apply_command: Optional[str] = None
    rollback_command: Optional[str] = None
    command_timeout_secs: float = 600.0
    recover_on_startup: bool = True

    @staticmethod
    def load(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> "WardenConfig":
        """
        Build the configuration from defaults, the config file and the environment.

        Args:
            path: Explicit config file; unlike the looked-up ones it must exist

        Raises:
            ConfigError: On an unreadable file or any invalid value
        """
        env = os.environ if env is None else env
        file_path = resolve_config_path(path, env)
        base = WardenConfig.from_file(file_path) if file_path else WardenConfig()
        return base.with_env(env)

    @staticmethod
    def from_file(path: str) -> "WardenConfig":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as ex:
            raise ConfigError(f"cannot read config file {path}: {ex}") from ex
        except yaml.YAMLError as ex:
            raise ConfigError(f"invalid YAML in {path}: {ex}") from ex
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must hold a mapping")
        return WardenConfig.from_dict(data)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "WardenConfig":
        known = {f.name for f in fields(WardenConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
        cfg = replace(WardenConfig(), **_coerce(data))
        cfg.validate()
        return cfg

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "WardenConfig":
        """Defaults plus WARDEN_* variables, without a config file."""
        return WardenConfig().with_env(os.environ if env is None else env)

    def with_env(self, env: Mapping[str, str]) -> "WardenConfig":
        """Copy with every set WARDEN_<FIELD> variable applied."""
        values = {}
        for f in fields(self):
            raw = env.get("WARDEN_" + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            values[f.name] = raw
        cfg = replace(self, **_coerce(values, prefix="WARDEN_"))
        cfg.validate()
        return cfg

    def override(self, **values: Any) -> "WardenConfig":
        """Copy with non-None values replaced (CLI options win over env)."""
        changes = {k: v for k, v in values.items() if v is not None}
        cfg = replace(self, **_coerce(changes))
        cfg.validate()
        return cfg

    def validate(self) -> None:
        """
        Raises:
            ConfigError: On the first invalid value
        """
        if not self.db_path or not self.db_path.strip():
            raise ConfigError("db_path is empty")
        if self.log_level.upper() not in LEVELS:
            raise ConfigError(f"invalid log_level: {self.log_level}")
        if self.log_format.lower() not in FORMATS:
            raise ConfigError(f"invalid log_format: {self.log_format}")
        if self.log_output.lower() not in OUTPUTS:
            raise ConfigError(f"invalid log_output: {self.log_output}")
        if self.log_output in ("file", "both") and not (self.log_file or "").strip():
            raise ConfigError("log_file is required when log_output is file or both")
        if self.log_max_size_mb <= 0:
            raise ConfigError("log_max_size_mb must be positive")
        if self.log_max_files <= 0:
            raise ConfigError("log_max_files must be positive")
        if self.busy_timeout_secs <= 0:
            raise ConfigError("busy_timeout_secs must be positive")
        if self.command_timeout_secs <= 0:
            raise ConfigError("command_timeout_secs must be positive")
        if not 0 < self.metrics_port < 65536:
            raise ConfigError(f"invalid metrics_port: {self.metrics_port}")


_FLOATS = ("busy_timeout_secs", "log_max_size_mb", "command_timeout_secs")
_INTS = ("log_max_files", "metrics_port")
_BOOLS = ("metrics_enabled", "recover_on_startup")


def _coerce(values: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name, val in values.items():
        key = prefix + name.upper() if prefix else name
        if name in _FLOATS:
            out[name] = _to_number(key, val, float)
        elif name in _INTS:
            out[name] = _to_number(key, val, int)
        elif name in _BOOLS:
            out[name] = _to_bool(key, val)
        else:
            text = _to_str(key, val)
            if name == "log_level" and text:
                text = text.upper()
            elif name in ("log_format", "log_output") and text:
                text = text.lower()
            elif name in ("apply_command", "rollback_command"):
                text = text or None
            out[name] = text
    return out


def resolve_config_path(path: Optional[str], env: Mapping[str, str]) -> Optional[str]:
    """
    Config file to read, or None to run on defaults and environment.

    Raises:
        ConfigError: If an explicit path does not exist
    """
    if path:
        if not os.path.isfile(path):
            raise ConfigError(f"config file not found: {path}")
        return path
    env_path = env.get(CONFIG_PATH_ENV)
    if env_path and os.path.isfile(env_path):
        return env_path
    if os.path.isfile(DEFAULT_CONFIG_PATH):
        return DEFAULT_CONFIG_PATH
    return None
