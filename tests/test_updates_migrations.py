"""
Tests for the migrations module.

Tests cover:
- Parsing the migration tool's console output
- apply_migrations invocation, scoping and failure classification
- rollback_migrations as a manual capability
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest import mock

import pytest

from platform_updater.config import MigrationsConfig
from platform_updater.errors import MigrationError
from platform_updater.updates.migrations import (
    MIGRATION_PATH_ENV,
    MigrationRunner,
    parse_migration_output,
)

MIGRATE_OUTPUT = """\
Phinx by CakePHP - https://phinx.org.

using config file ./phinx.yml
using migration paths
 - /var/www/platform/cms/migrations
using environment production

 == 20180101000000 CreateUsers: migrating
 == 20180101000000 CreateUsers: migrated 0.0213s
 == 20180202000000 AddEmailIndex: migrating
 == 20180202000000 AddEmailIndex: migrated 0.0101s

All Done. Took 0.0812s
"""

ROLLBACK_OUTPUT = """\
 == 20180202000000 AddEmailIndex: reverting
 == 20180202000000 AddEmailIndex: reverted 0.0088s
"""


def _completed(returncode: int = 0, stdout: str = "", stderr: str = ""):
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


# =============================================================================
# Output Parsing Tests
# =============================================================================


class TestParseMigrationOutput:
    """Tests for parse_migration_output."""

    def test_applied_migrations(self) -> None:
        """Test applied migrations are extracted in order."""
        assert parse_migration_output(MIGRATE_OUTPUT) == [
            "20180101000000 CreateUsers",
            "20180202000000 AddEmailIndex",
        ]

    def test_reverted_migrations(self) -> None:
        """Test reverted migrations are extracted for rollbacks."""
        assert parse_migration_output(ROLLBACK_OUTPUT, "reverted") == [
            "20180202000000 AddEmailIndex",
        ]

    def test_nothing_to_migrate(self) -> None:
        """Test output without migrations yields an empty list."""
        assert parse_migration_output("All Done. Took 0.01s\n") == []


# =============================================================================
# MigrationRunner Tests
# =============================================================================


class TestApplyMigrations:
    """Tests for MigrationRunner.apply_migrations."""

    def test_invokes_tool_scoped_to_directory(self, tmp_path: Path) -> None:
        """Test the tool runs with the migration path in its environment."""
        migrations_dir = tmp_path / "migrations"
        migrations_dir.mkdir()
        runner = MigrationRunner(
            "phinx", config_file="phinx.yml", environment="production", cwd=tmp_path
        )

        with mock.patch(
            "subprocess.run", return_value=_completed(stdout=MIGRATE_OUTPUT)
        ) as run:
            report = runner.apply_migrations(migrations_dir)

        args = run.call_args.args[0]
        kwargs = run.call_args.kwargs
        assert args[:2] == ["phinx", "migrate"]
        assert "--configuration" in args
        assert "--environment" in args
        assert kwargs["env"][MIGRATION_PATH_ENV] == str(migrations_dir)
        assert kwargs["cwd"] == tmp_path
        assert report.applied == [
            "20180101000000 CreateUsers",
            "20180202000000 AddEmailIndex",
        ]
        assert report.exit_code == 0

    def test_missing_directory_skips_tool(self, tmp_path: Path) -> None:
        """Test a component without migrations does not run the tool."""
        with mock.patch("subprocess.run") as run:
            report = MigrationRunner().apply_migrations(tmp_path / "missing")

        run.assert_not_called()
        assert report.applied == []

    def test_non_zero_exit(self, tmp_path: Path) -> None:
        """Test a failing tool raises MigrationError with its output."""
        with mock.patch(
            "subprocess.run",
            return_value=_completed(1, stdout="", stderr="SQLSTATE[42S01]"),
        ):
            with pytest.raises(MigrationError) as exc_info:
                MigrationRunner().apply_migrations(tmp_path)

        assert exc_info.value.details["exit_code"] == 1
        assert "SQLSTATE" in exc_info.value.details["output"]

    def test_missing_tool(self, tmp_path: Path) -> None:
        """Test a missing tool raises MigrationError."""
        with mock.patch("subprocess.run", side_effect=FileNotFoundError("phinx")):
            with pytest.raises(MigrationError):
                MigrationRunner().apply_migrations(tmp_path)

    def test_from_config(self, tmp_path: Path) -> None:
        """Test a runner is built from configuration."""
        config = MigrationsConfig(command="vendor/bin/phinx", config_file="p.yml")

        runner = MigrationRunner.from_config(config, cwd=tmp_path)

        assert runner.command == "vendor/bin/phinx"
        assert runner.config_file == "p.yml"
        assert runner.environment is None
        assert runner.cwd == tmp_path


class TestRollbackMigrations:
    """Tests for MigrationRunner.rollback_migrations."""

    def test_rollback_to_target(self, tmp_path: Path) -> None:
        """Test rollback passes the target version and reports reverted names."""
        with mock.patch(
            "subprocess.run", return_value=_completed(stdout=ROLLBACK_OUTPUT)
        ) as run:
            report = MigrationRunner().rollback_migrations(tmp_path, 20180101000000)

        args = run.call_args.args[0]
        assert args[:2] == ["phinx", "rollback"]
        assert args[-2:] == ["--target", "20180101000000"]
        assert report.applied == ["20180202000000 AddEmailIndex"]

    def test_rollback_failure(self, tmp_path: Path) -> None:
        """Test a failing rollback raises MigrationError."""
        with mock.patch("subprocess.run", return_value=_completed(1)):
            with pytest.raises(MigrationError):
                MigrationRunner().rollback_migrations(tmp_path, 0)
