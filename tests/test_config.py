"""
Tests for the configuration module.

This test module validates:
- Configuration loading from YAML files
- Environment variable overrides
- Configuration precedence (defaults < YAML < env vars < overrides)
- Pydantic model validation with invalid inputs
- Module state sections
- ConfigStore persistence
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from unittest import mock

import pytest
import yaml
from pydantic import ValidationError

from platform_updater.config import (
    AppConfig,
    ComponentState,
    ConfigStore,
    GeneralConfig,
    LoggingConfig,
    _deep_merge,
    _load_env_config,
    _load_yaml_config,
    _parse_env_value,
    load_config,
    module_section,
)
from platform_updater.errors import ConfigPersistError

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file path for testing."""
    return tmp_path / "config.yml"


@pytest.fixture
def sample_yaml_config() -> dict[str, Any]:
    """Sample YAML configuration for testing."""
    return {
        "general": {
            "api_url": "https://releases.example.com/api",
            "app_token": "secret",
            "root_path": "/var/www/platform",
            "updatable": True,
        },
        "modules": ["blog", "shop"],
        "core": {"version": "1.2.0", "last_update": "2024-01-01T00:00:00+00:00"},
        "module_blog": {"version": "0.4.0"},
        "module_shop": {"version": None},
    }


def _write_yaml(path: Path, data: dict[str, Any]) -> None:
    with open(path, "w") as f:
        yaml.dump(data, f)


# =============================================================================
# Default Configuration Tests
# =============================================================================


class TestDefaultConfiguration:
    """Tests for default configuration values."""

    def test_app_config_defaults(self) -> None:
        """Test AppConfig defaults."""
        config = AppConfig()

        assert config.general.updatable is True
        assert config.general.download_timeout_seconds == 28800.0
        assert config.modules == []
        assert config.core.version is None
        assert config.module_states == {}
        assert config.notifications.enabled is False
        assert config.migrations.command == "phinx"
        assert config.database.dump_command == "mysqldump"

    def test_general_paths_resolve_against_root(self) -> None:
        """Test relative directories resolve against root_path."""
        general = GeneralConfig(root_path="/var/www/platform")

        assert general.backup_dir == Path("/var/www/platform/backups")
        assert general.update_dir == Path("/var/www/platform/updates")
        assert general.lock_path == Path("/var/www/platform/updater.lock")

    def test_absolute_paths_kept(self) -> None:
        """Test absolute directories are used as given."""
        general = GeneralConfig(root_path="/srv/app", backup_path="/mnt/backups")
        assert general.backup_dir == Path("/mnt/backups")


# =============================================================================
# Validation Tests
# =============================================================================


class TestConfigurationValidation:
    """Tests for configuration validation."""

    def test_api_url_gets_trailing_slash(self) -> None:
        """Test the API URL is normalized."""
        assert GeneralConfig(api_url="https://x/api").api_url == "https://x/api/"
        assert GeneralConfig(api_url="https://x/api/").api_url == "https://x/api/"

    def test_log_level_validation_valid(self) -> None:
        """Test valid log levels are normalized."""
        assert LoggingConfig(level="DEBUG").level == "debug"
        assert LoggingConfig(level="warn").level == "warning"

    def test_log_level_validation_invalid(self) -> None:
        """Test an invalid log level is rejected."""
        with pytest.raises(ValidationError):
            LoggingConfig(level="verbose")

    def test_download_timeout_must_be_positive(self) -> None:
        """Test a zero download timeout is rejected."""
        with pytest.raises(ValidationError):
            GeneralConfig(download_timeout_seconds=0)

    def test_component_version_coercion(self) -> None:
        """Test numeric and blank versions are coerced."""
        assert ComponentState(version="  ").version is None
        assert ComponentState(version="1.2.0").version == "1.2.0"

    def test_modules_from_csv(self) -> None:
        """Test a comma-separated module list is accepted."""
        assert AppConfig(modules="blog, shop,").modules == ["blog", "shop"]


class TestModuleSections:
    """Tests for per-module state sections."""

    def test_sections_collected(self, sample_yaml_config: dict[str, Any]) -> None:
        """Test module_<name> sections become module states."""
        config = AppConfig(**sample_yaml_config)

        assert config.module_state("blog").version == "0.4.0"
        assert config.module_state("shop").version is None
        assert config.module_state("unknown") == ComponentState()

    def test_module_section_name(self) -> None:
        """Test the persisted section name for a module."""
        assert module_section("blog") == "module_blog"


# =============================================================================
# YAML Config Loading Tests
# =============================================================================


class TestYAMLConfigLoading:
    """Tests for YAML configuration loading."""

    def test_load_yaml_config_success(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        """Test loading a valid YAML file."""
        _write_yaml(temp_config_file, sample_yaml_config)

        assert _load_yaml_config(temp_config_file) == sample_yaml_config

    def test_load_yaml_config_file_not_found(self) -> None:
        """Test loading a missing YAML file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            _load_yaml_config(Path("/nonexistent/config.yml"))

    def test_load_yaml_config_empty_file(self, temp_config_file: Path) -> None:
        """Test an empty YAML file yields an empty dict."""
        temp_config_file.write_text("")
        assert _load_yaml_config(temp_config_file) == {}

    def test_load_config_with_yaml_file(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        """Test load_config with a YAML file."""
        _write_yaml(temp_config_file, sample_yaml_config)

        with mock.patch.dict(os.environ, {}, clear=True):
            config = load_config(config_path=temp_config_file)

        assert config.general.api_url == "https://releases.example.com/api/"
        assert config.general.root_dir == Path("/var/www/platform")
        assert config.core.version == "1.2.0"
        assert config.modules == ["blog", "shop"]


# =============================================================================
# Environment Variable Loading Tests
# =============================================================================


class TestEnvironmentVariableLoading:
    """Tests for environment variable configuration loading."""

    def test_parse_env_value_boolean(self) -> None:
        """Test parsing boolean values."""
        assert _parse_env_value("true") is True
        assert _parse_env_value("off") is False

    def test_parse_env_value_numbers(self) -> None:
        """Test parsing integer and float values."""
        assert _parse_env_value("3306") == 3306
        assert _parse_env_value("1.5") == 1.5

    def test_parse_env_value_list(self) -> None:
        """Test parsing comma-separated values."""
        assert _parse_env_value("blog,shop") == ["blog", "shop"]

    def test_parse_env_value_string(self) -> None:
        """Test plain strings are kept."""
        assert _parse_env_value("mysqldump") == "mysqldump"

    def test_load_env_config_nested(self) -> None:
        """Test double underscores create nested keys."""
        env = {
            "PLATFORM_UPDATER_GENERAL__APP_TOKEN": "tok",
            "PLATFORM_UPDATER_DATABASE__PORT": "3307",
            "OTHER_VAR": "ignored",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            result = _load_env_config()

        assert result == {"general": {"app_token": "tok"}, "database": {"port": 3307}}

    def test_string_fields_keep_raw_value(self) -> None:
        """Test numeric-looking values stay strings where the field is a string."""
        env = {
            "PLATFORM_UPDATER_GENERAL__APP_TOKEN": "0012345",
            "PLATFORM_UPDATER_DATABASE__PASSWORD": "1.50",
            "PLATFORM_UPDATER_NOTIFICATIONS__USERNAME": "a,b",
            "PLATFORM_UPDATER_GENERAL__UPDATABLE": "false",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            result = _load_env_config()

        assert result["general"] == {"app_token": "0012345", "updatable": False}
        assert result["database"] == {"password": "1.50"}
        assert result["notifications"] == {"username": "a,b"}

    def test_numeric_token_loads(self, temp_config_file: Path) -> None:
        """Test a purely numeric application token passes validation."""
        _write_yaml(temp_config_file, {"general": {"root_path": "/srv"}})

        with mock.patch.dict(
            os.environ, {"PLATFORM_UPDATER_GENERAL__APP_TOKEN": "12345"}, clear=True
        ):
            config = load_config(config_path=temp_config_file)

        assert config.general.app_token == "12345"


# =============================================================================
# Precedence Tests
# =============================================================================


class TestConfigurationPrecedence:
    """Tests for configuration precedence."""

    def test_env_overrides_yaml(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        """Test environment variables override YAML values."""
        _write_yaml(temp_config_file, sample_yaml_config)

        with mock.patch.dict(
            os.environ, {"PLATFORM_UPDATER_GENERAL__APP_TOKEN": "from-env"}, clear=True
        ):
            config = load_config(config_path=temp_config_file)

        assert config.general.app_token == "from-env"

    def test_overrides_beat_env(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        """Test explicit overrides beat environment variables."""
        _write_yaml(temp_config_file, sample_yaml_config)

        with mock.patch.dict(
            os.environ, {"PLATFORM_UPDATER_LOGGING__LEVEL": "error"}, clear=True
        ):
            config = load_config(
                config_path=temp_config_file,
                overrides={"logging": {"level": "debug"}},
            )

        assert config.logging.level == "debug"


class TestDeepMerge:
    """Tests for _deep_merge."""

    def test_deep_merge_nested(self) -> None:
        """Test nested dictionaries are merged."""
        base = {"general": {"a": 1, "b": 2}}
        override = {"general": {"b": 3}}
        assert _deep_merge(base, override) == {"general": {"a": 1, "b": 3}}

    def test_deep_merge_does_not_modify_original(self) -> None:
        """Test the base dictionary is not modified at the top level."""
        base = {"a": 1}
        _deep_merge(base, {"a": 2})
        assert base == {"a": 1}


# =============================================================================
# ConfigStore Tests
# =============================================================================


class TestConfigStore:
    """Tests for ConfigStore."""

    def test_set_persists_and_reloads(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        """Test a single key is written back and visible immediately."""
        _write_yaml(temp_config_file, sample_yaml_config)
        with mock.patch.dict(os.environ, {}, clear=True):
            store = ConfigStore(temp_config_file)
            store.set("core", "version", "1.3.0")

        on_disk = yaml.safe_load(temp_config_file.read_text())
        assert on_disk["core"]["version"] == "1.3.0"
        assert on_disk["core"]["last_update"] == "2024-01-01T00:00:00+00:00"
        assert on_disk["module_blog"] == {"version": "0.4.0"}
        assert store.config.core.version == "1.3.0"
        assert store.get("core", "version") == "1.3.0"

    def test_update_creates_section(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        """Test updating a missing section creates it."""
        _write_yaml(temp_config_file, sample_yaml_config)
        with mock.patch.dict(os.environ, {}, clear=True):
            store = ConfigStore(temp_config_file)
            store.update("module_news", {"version": "1.0.0", "last_update": "now"})

        assert store.config.module_state("news").version == "1.0.0"

    def test_overrides_not_persisted(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        """Test in-memory overrides never reach the file."""
        _write_yaml(temp_config_file, sample_yaml_config)
        with mock.patch.dict(os.environ, {}, clear=True):
            store = ConfigStore(
                temp_config_file, overrides={"logging": {"level": "debug"}}
            )
            store.set("general", "updatable", False)

        on_disk = yaml.safe_load(temp_config_file.read_text())
        assert "logging" not in on_disk
        assert on_disk["general"]["updatable"] is False
        assert store.config.logging.level == "debug"

    def test_no_temp_file_left(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        """Test the atomic write leaves no temporary file behind."""
        _write_yaml(temp_config_file, sample_yaml_config)
        with mock.patch.dict(os.environ, {}, clear=True):
            ConfigStore(temp_config_file).set("core", "version", "1.3.0")

        assert [p.name for p in temp_config_file.parent.iterdir()] == ["config.yml"]

    def test_write_failure_raises(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        """Test a failed write raises ConfigPersistError and keeps the file."""
        _write_yaml(temp_config_file, sample_yaml_config)
        with mock.patch.dict(os.environ, {}, clear=True):
            store = ConfigStore(temp_config_file)
            with mock.patch("os.fsync", side_effect=OSError("I/O error")):
                with pytest.raises(ConfigPersistError):
                    store.set("core", "version", "9.9.9")

        on_disk = yaml.safe_load(temp_config_file.read_text())
        assert on_disk["core"]["version"] == "1.2.0"
        assert store.config.core.version == "1.2.0"
