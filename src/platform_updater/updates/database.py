"""
Database dump and restore collaborators.

The engine never talks SQL itself. It asks a DatabaseDumper to write a dump
file before any component is touched, and exposes a restore path for manual
recovery. MysqlCommandDumper drives the mysqldump/mysql command-line tools;
the password is passed through the MYSQL_PWD environment variable so it
never shows up in the process list.
"""

from __future__ import annotations

import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from platform_updater.errors import BackupError
from platform_updater.logging import get_logger

if TYPE_CHECKING:
    from platform_updater.config import DatabaseConfig

logger = get_logger(__name__)


class DatabaseDumper(ABC):
    """
    Abstract database dump/restore mechanism.

    Implementations raise BackupError on any failure.
    """

    @abstractmethod
    def dump(self, destination: Path) -> None:
        """
        Write a full dump of the database to ``destination``.

        Raises:
            BackupError: If the dump fails.
        """

    @abstractmethod
    def restore(self, dump_file: Path, database: str | None = None) -> None:
        """
        Load a dump file into ``database`` (the configured one by default).

        Raises:
            BackupError: If the restore fails.
        """


class MysqlCommandDumper(DatabaseDumper):
    """
    Dumps and restores a MySQL/MariaDB database with the command-line tools.

    Attributes:
        config: Database connection and executable settings.
    """

    def __init__(self, config: DatabaseConfig, *, timeout: float | None = None) -> None:
        self.config = config
        self._timeout = timeout

    def _connection_args(self) -> list[str]:
        return [
            f"--host={self.config.host}",
            f"--port={self.config.port}",
            f"--user={self.config.user}",
        ]

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.config.password:
            env["MYSQL_PWD"] = self.config.password
        return env

    def dump(self, destination: Path) -> None:
        if not self.config.name:
            raise BackupError(
                "No database name configured",
                details={"hint": "Set database.name in the configuration"},
            )

        args = [
            self.config.dump_command,
            *self._connection_args(),
            "--single-transaction",
            "--routines",
            "--triggers",
            f"--result-file={destination}",
            self.config.name,
        ]

        logger.info(
            "Dumping database",
            extra={"database": self.config.name, "destination": str(destination)},
        )

        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                env=self._env(),
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise BackupError(
                f"Failed to run database dump: {e}",
                details={"command": self.config.dump_command, "error": str(e)},
            ) from e

        if result.returncode != 0:
            raise BackupError(
                f"Database dump exited with status {result.returncode}",
                details={
                    "command": self.config.dump_command,
                    "returncode": result.returncode,
                    "stderr": result.stderr.strip(),
                },
            )

    def restore(self, dump_file: Path, database: str | None = None) -> None:
        target = database or self.config.name
        if not target:
            raise BackupError("No database to restore into")
        if not dump_file.is_file():
            raise BackupError(
                f"Dump file not found: {dump_file}",
                details={"dump_file": str(dump_file)},
            )

        try:
            create = subprocess.run(
                [
                    self.config.client_command,
                    *self._connection_args(),
                    "-e",
                    f"CREATE DATABASE IF NOT EXISTS `{target.replace('`', '``')}`",
                ],
                capture_output=True,
                text=True,
                env=self._env(),
                check=False,
            )
        except OSError as e:
            raise BackupError(
                f"Failed to run database client: {e}",
                details={"command": self.config.client_command, "error": str(e)},
            ) from e
        if create.returncode != 0:
            raise BackupError(
                f"Failed to create database {target}",
                details={"database": target, "stderr": create.stderr.strip()},
            )

        logger.info(
            "Restoring database",
            extra={"database": target, "dump_file": str(dump_file)},
        )

        try:
            with open(dump_file, "rb") as f:
                result = subprocess.run(
                    [self.config.client_command, *self._connection_args(), target],
                    stdin=f,
                    capture_output=True,
                    env=self._env(),
                    check=False,
                )
        except OSError as e:
            raise BackupError(
                f"Failed to run database restore: {e}",
                details={"dump_file": str(dump_file), "error": str(e)},
            ) from e

        if result.returncode != 0:
            raise BackupError(
                f"Database restore exited with status {result.returncode}",
                details={
                    "database": target,
                    "stderr": result.stderr.decode("utf-8", errors="replace").strip(),
                },
            )
