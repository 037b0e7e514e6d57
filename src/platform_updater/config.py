"""
Configuration management for the platform updater.

This module implements the AppConfig Pydantic model, layered configuration
loading, and the ConfigStore that persists per-component state (installed
version, last update, latest backup) back to the YAML file.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/platform-updater/config.yml or --config path)
3. Environment variables (PLATFORM_UPDATER_* prefix, __ for nesting)
4. Explicit overrides (command-line arguments, highest precedence)

Only the YAML layer is ever written back; environment and command-line
overrides stay in memory.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from platform_updater.errors import ConfigPersistError
from platform_updater.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/platform-updater/config.yml")
DEFAULT_ENV_PREFIX = "PLATFORM_UPDATER_"

# Persisted section names
GENERAL_SECTION = "general"
CORE_SECTION = "core"
MODULE_SECTION_PREFIX = "module_"

# =============================================================================
# General Configuration
# =============================================================================


class GeneralConfig(BaseModel):
    """General updater settings.

    Attributes:
        api_url: Base URL of the release service (with trailing slash).
        app_token: Opaque application token sent to the release service.
        root_path: Root directory of the deployed platform.
        backup_path: Backup directory, relative to root_path unless absolute.
        update_path: Staging directory for downloads, relative to root_path
            unless absolute.
        updatable: Kill-switch. When False, no automatic run may proceed.
        download_timeout_seconds: Ceiling for a single artifact download.
        lock_file: Run lock file, relative to root_path unless absolute.
    """

    api_url: str = Field(
        default="",
        description="Base URL of the release service",
    )
    app_token: str = Field(
        default="",
        description="Application token used to authenticate with the release service",
    )
    root_path: str = Field(
        default=".",
        description="Root directory of the deployed platform",
    )
    backup_path: str = Field(
        default="backups",
        description="Backup directory (relative to root_path unless absolute)",
    )
    update_path: str = Field(
        default="updates",
        description="Download staging directory (relative to root_path unless absolute)",
    )
    updatable: bool = Field(
        default=True,
        description="Kill-switch: automatic updates are refused while False",
    )
    download_timeout_seconds: float = Field(
        default=28800.0,
        gt=0,
        description="Timeout for a single artifact download (8 hours by default)",
    )
    lock_file: str = Field(
        default="updater.lock",
        description="Run lock file (relative to root_path unless absolute)",
    )
    latest_db_backup: str | None = Field(
        default=None,
        description="Timestamp of the latest database backup",
    )
    db_backup_name: str | None = Field(
        default=None,
        description="File name of the latest database backup",
    )

    @field_validator("api_url")
    @classmethod
    def normalize_api_url(cls, v: str) -> str:
        """Ensure a non-empty API URL ends with a slash."""
        if v and not v.endswith("/"):
            return f"{v}/"
        return v

    def _resolve(self, value: str) -> Path:
        path = Path(value)
        if path.is_absolute():
            return path
        return Path(self.root_path) / path

    @property
    def root_dir(self) -> Path:
        """Root directory of the platform."""
        return Path(self.root_path)

    @property
    def backup_dir(self) -> Path:
        """Resolved backup directory."""
        return self._resolve(self.backup_path)

    @property
    def update_dir(self) -> Path:
        """Resolved download staging directory."""
        return self._resolve(self.update_path)

    @property
    def lock_path(self) -> Path:
        """Resolved run lock file."""
        return self._resolve(self.lock_file)


# =============================================================================
# Collaborator Configuration
# =============================================================================


class DatabaseConfig(BaseModel):
    """Database dump/restore settings.

    Attributes:
        host: Database host.
        port: Database port.
        user: Database user.
        password: Database password (passed via environment, never argv).
        name: Database name.
        dump_command: Dump executable (mysqldump-compatible).
        client_command: Client executable used for restores.
    """

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=3306, ge=1, le=65535, description="Database port")
    user: str = Field(default="root", description="Database user")
    password: str = Field(default="", description="Database password")
    name: str = Field(default="", description="Database name")
    dump_command: str = Field(
        default="mysqldump",
        description="Executable used to dump the database",
    )
    client_command: str = Field(
        default="mysql",
        description="Executable used to restore a dump",
    )


class MigrationsConfig(BaseModel):
    """Schema-migration tool settings.

    Attributes:
        command: Migration tool executable.
        config_file: Optional tool configuration file.
        environment: Optional tool environment name.
    """

    command: str = Field(default="phinx", description="Migration tool executable")
    config_file: str | None = Field(
        default=None,
        description="Migration tool configuration file",
    )
    environment: str | None = Field(
        default=None,
        description="Migration tool environment name",
    )


class NotificationConfig(BaseModel):
    """Operator notification settings.

    Attributes:
        enabled: Whether email notifications are sent.
        smtp_host: SMTP server host.
        smtp_port: SMTP server port.
        use_tls: Whether to upgrade the connection with STARTTLS.
        username: Optional SMTP login user.
        password: Optional SMTP login password.
        from_address: Sender address.
        to_address: Operator address receiving kill-switch notifications.
    """

    enabled: bool = Field(default=False, description="Send email notifications")
    smtp_host: str = Field(default="localhost", description="SMTP server host")
    smtp_port: int = Field(default=587, ge=1, le=65535, description="SMTP port")
    use_tls: bool = Field(default=True, description="Use STARTTLS")
    username: str | None = Field(default=None, description="SMTP user")
    password: str | None = Field(default=None, description="SMTP password")
    from_address: str = Field(
        default="updater@localhost",
        description="Sender address",
    )
    to_address: str = Field(default="", description="Operator address")


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout.
        json_format: Whether to emit JSON log lines.
        log_dir: Optional directory for per-day update log files.
    """

    level: str = Field(default="info", description="Log level")
    log_to_stdout: bool = Field(default=True, description="Whether to log to stdout")
    json_format: bool = Field(default=True, description="Emit JSON log lines")
    log_dir: str | None = Field(
        default=None,
        description="Directory for per-day update log files",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Component State
# =============================================================================


class ComponentState(BaseModel):
    """Persisted state of one component (core or module).

    Attributes:
        version: Installed version, None when nothing is installed yet.
        last_update: Timestamp of the last successful update.
        backup_name: File name of the latest directory backup.
        latest_backup: Timestamp of the latest directory backup.
    """

    version: str | None = Field(default=None, description="Installed version")
    last_update: str | None = Field(
        default=None,
        description="Timestamp of the last successful update",
    )
    backup_name: str | None = Field(
        default=None,
        description="File name of the latest directory backup",
    )
    latest_backup: str | None = Field(
        default=None,
        description="Timestamp of the latest directory backup",
    )

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> str | None:
        """Accept numeric YAML scalars and treat blanks as 'not installed'."""
        if v is None:
            return None
        text = str(v).strip()
        return text or None


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Complete updater configuration.

    Module state is persisted in one ``module_<name>`` section per module;
    those sections are collected into ``module_states`` on load.
    """

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    migrations: MigrationsConfig = Field(default_factory=MigrationsConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    modules: list[str] = Field(
        default_factory=list,
        description="Installed modules, in update order",
    )
    core: ComponentState = Field(default_factory=ComponentState)
    module_states: dict[str, ComponentState] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def collect_module_sections(cls, data: Any) -> Any:
        """Move ``module_<name>`` sections into ``module_states``."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        states = dict(data.get("module_states") or {})
        for key in [k for k in data if k.startswith(MODULE_SECTION_PREFIX)]:
            states[key[len(MODULE_SECTION_PREFIX) :]] = data.pop(key) or {}
        data["module_states"] = states
        return data

    @field_validator("modules", mode="before")
    @classmethod
    def split_modules(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    def module_state(self, name: str) -> ComponentState:
        """Return the persisted state for a module (empty if unknown)."""
        return self.module_states.get(name, ComponentState())


def module_section(name: str) -> str:
    """Return the persisted section name for a module."""
    return f"{MODULE_SECTION_PREFIX}{name}"


# =============================================================================
# Loading helpers
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary with configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    - Prefix: PLATFORM_UPDATER_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: PLATFORM_UPDATER_GENERAL__API_URL=https://releases.example.com/api/

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        if _is_string_field(parts):
            current[parts[-1]] = value
        else:
            current[parts[-1]] = _parse_env_value(value)

    return result


def _is_string_field(parts: list[str]) -> bool:
    """Whether a nested key names a plain string field of AppConfig."""
    model: type[BaseModel] = AppConfig
    for part in parts[:-1]:
        field = model.model_fields.get(part)
        annotation = field.annotation if field is not None else None
        if not (isinstance(annotation, type) and issubclass(annotation, BaseModel)):
            return False
        model = annotation
    field = model.model_fields.get(parts[-1])
    return field is not None and field.annotation in (str, str | None)


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, the default
            path is used when it exists.
        env_prefix: Prefix for environment variables.
        overrides: Highest-precedence values (e.g. from the command line).

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.
    """
    config_dict: dict[str, Any] = {}

    if config_path is None:
        if DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, overrides or {})

    return AppConfig(**config_dict)


# =============================================================================
# Config Store
# =============================================================================


class ConfigStore:
    """
    Reads and persists the updater's YAML configuration.

    Every ``set`` re-reads the file, changes a single key and writes the
    whole file back atomically (temp file, fsync, rename), so a crash between
    two update steps never leaves a half-written configuration behind.

    Attributes:
        path: Path to the YAML configuration file.
        config: The current merged and validated configuration.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        env_prefix: str = DEFAULT_ENV_PREFIX,
        overrides: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the ConfigStore and load the configuration.

        Args:
            path: Path to the YAML configuration file.
            env_prefix: Prefix for environment variable overrides.
            overrides: In-memory overrides that are never persisted.
        """
        self.path = Path(path)
        self._env_prefix = env_prefix
        self._overrides = overrides or {}
        self._raw: dict[str, Any] = {}
        self._config = AppConfig()
        self.reload()

    @property
    def config(self) -> AppConfig:
        """Get the current configuration."""
        return self._config

    def reload(self) -> AppConfig:
        """Re-read the file and rebuild the merged configuration."""
        self._raw = _load_yaml_config(self.path) if self.path.exists() else {}
        self._rebuild()
        return self._config

    def _rebuild(self) -> None:
        merged = _deep_merge(self._raw, _load_env_config(self._env_prefix))
        merged = _deep_merge(merged, self._overrides)
        self._config = AppConfig(**merged)

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Return a raw persisted value."""
        section_data = self._raw.get(section)
        if not isinstance(section_data, dict):
            return default
        return section_data.get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """
        Persist a single key in a section.

        Args:
            section: Section name (e.g., "general", "core", "module_blog").
            key: Key inside the section.
            value: New value.

        Raises:
            ConfigPersistError: If the file cannot be read or written.
        """
        self.update(section, {key: value})

    def update(self, section: str, values: dict[str, Any]) -> None:
        """
        Persist several keys of one section in a single write.

        Raises:
            ConfigPersistError: If the file cannot be read or written.
        """
        try:
            raw = _load_yaml_config(self.path) if self.path.exists() else {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigPersistError(
                f"Failed to read configuration: {self.path}",
                details={"path": str(self.path), "error": str(e)},
            ) from e

        section_data = raw.get(section)
        if not isinstance(section_data, dict):
            section_data = {}
        section_data.update(values)
        raw[section] = section_data

        self._write(raw)
        self._raw = raw
        self._rebuild()

        logger.debug(
            "Persisted configuration",
            extra={"section": section, "keys": sorted(values)},
        )

    def _write(self, data: dict[str, Any]) -> None:
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(self.path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise ConfigPersistError(
                f"Failed to write configuration: {self.path}",
                details={"path": str(self.path), "error": str(e)},
            ) from e
