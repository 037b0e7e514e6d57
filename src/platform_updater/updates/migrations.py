"""
Schema migrations for a component.

The updater does not implement migrations itself. It runs an external
phinx-compatible tool scoped to one migrations directory, classifies the
exit status, and turns the tool's console output into a MigrationReport.
parse_migration_output is the only place that knows the output format.
"""

from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from platform_updater.errors import MigrationError
from platform_updater.logging import get_logger

if TYPE_CHECKING:
    from platform_updater.config import MigrationsConfig

logger = get_logger(__name__)

# Environment variable the tool's configuration reads the migration path from
MIGRATION_PATH_ENV = "PHINX_MIGRATION_PATH"

# Matches " == 20180101000000 CreateUsers: migrated 0.0123s"
_MIGRATION_LINE = re.compile(
    r"^\s*==\s+(?P<version>\d+)\s+(?P<name>[^:]+):\s+(?P<action>migrated|reverted)\b"
)


class MigrationReport(BaseModel):
    """
    Outcome of one migration tool invocation.

    Attributes:
        migrations_dir: Directory the tool was scoped to.
        applied: Migrations applied (or reverted, for rollbacks), in order,
            as "<version> <Name>".
        output: Captured tool output.
        exit_code: Tool exit status.
    """

    migrations_dir: str = Field(..., description="Directory the tool was scoped to")
    applied: list[str] = Field(default_factory=list, description="Migration names")
    output: str = Field(default="", description="Captured tool output")
    exit_code: int = Field(default=0, description="Tool exit status")


def parse_migration_output(output: str, action: str = "migrated") -> list[str]:
    """
    Extract migration names from the tool's console output.

    Args:
        output: Captured stdout of the tool.
        action: "migrated" for apply runs, "reverted" for rollbacks.

    Returns:
        Migration identifiers in the order they were reported.
    """
    names = []
    for line in output.splitlines():
        match = _MIGRATION_LINE.match(line)
        if match and match.group("action") == action:
            names.append(f"{match.group('version')} {match.group('name').strip()}")
    return names


class MigrationRunner:
    """
    Invokes the migration tool for a core or module migrations directory.

    Attributes:
        command: Migration tool executable.
        config_file: Optional tool configuration file.
        environment: Optional tool environment.
        cwd: Working directory for the tool (the platform root).
    """

    def __init__(
        self,
        command: str = "phinx",
        *,
        config_file: str | None = None,
        environment: str | None = None,
        cwd: Path | str | None = None,
    ) -> None:
        self.command = command
        self.config_file = config_file
        self.environment = environment
        self.cwd = Path(cwd) if cwd else None

    @classmethod
    def from_config(
        cls, config: MigrationsConfig, cwd: Path | str | None = None
    ) -> MigrationRunner:
        """Create a MigrationRunner from configuration."""
        return cls(
            config.command,
            config_file=config.config_file,
            environment=config.environment,
            cwd=cwd,
        )

    def _build_args(self, subcommand: str, *extra: str) -> list[str]:
        args = [self.command, subcommand]
        if self.config_file:
            args.extend(["--configuration", self.config_file])
        if self.environment:
            args.extend(["--environment", self.environment])
        args.extend(extra)
        return args

    def _run(self, migrations_dir: Path, args: list[str]) -> tuple[int, str]:
        env = dict(os.environ)
        env[MIGRATION_PATH_ENV] = str(migrations_dir)
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                cwd=self.cwd,
                env=env,
                check=False,
            )
        except OSError as e:
            raise MigrationError(
                f"Failed to execute migration tool: {e}",
                details={"command": " ".join(args), "error": str(e)},
            ) from e
        output = result.stdout
        if result.stderr:
            output = f"{output}\n{result.stderr}" if output else result.stderr
        return result.returncode, output

    def apply_migrations(self, migrations_dir: Path | str) -> MigrationReport:
        """
        Apply pending migrations from ``migrations_dir``.

        A component without a migrations directory has nothing to apply and
        yields an empty report without invoking the tool.

        Raises:
            MigrationError: If the tool cannot be run or exits non-zero.
        """
        directory = Path(migrations_dir)
        if not directory.is_dir():
            logger.info(
                "No migrations directory, skipping migrations",
                extra={"migrations_dir": str(directory)},
            )
            return MigrationReport(migrations_dir=str(directory))

        logger.info(
            "Checking for migrations", extra={"migrations_dir": str(directory)}
        )
        exit_code, output = self._run(directory, self._build_args("migrate"))

        if exit_code != 0:
            raise MigrationError(
                f"Migration tool exited with status {exit_code}",
                details={
                    "migrations_dir": str(directory),
                    "exit_code": exit_code,
                    "output": output,
                },
            )

        report = MigrationReport(
            migrations_dir=str(directory),
            applied=parse_migration_output(output, "migrated"),
            output=output,
            exit_code=exit_code,
        )
        for name in report.applied:
            logger.info("Migration applied", extra={"migration": name})
        return report

    def rollback_migrations(
        self, migrations_dir: Path | str, target_version: int | str
    ) -> MigrationReport:
        """
        Revert migrations in ``migrations_dir`` down to ``target_version``.

        A target of 0 reverts everything (module uninstall). This is a manual
        capability; the automatic recovery path never calls it.

        Raises:
            MigrationError: If the tool cannot be run or exits non-zero.
        """
        directory = Path(migrations_dir)
        exit_code, output = self._run(
            directory,
            self._build_args("rollback", "--target", str(target_version)),
        )

        if exit_code != 0:
            raise MigrationError(
                f"Migration rollback exited with status {exit_code}",
                details={
                    "migrations_dir": str(directory),
                    "target_version": str(target_version),
                    "exit_code": exit_code,
                    "output": output,
                },
            )

        return MigrationReport(
            migrations_dir=str(directory),
            applied=parse_migration_output(output, "reverted"),
            output=output,
            exit_code=exit_code,
        )
