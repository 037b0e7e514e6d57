"""
Backups taken before any destructive update step.

This module implements the BackupManager:
- Directory-tree snapshots into timestamped zip archives
- A per-run, at-most-once database dump through a DatabaseDumper
- Verification of every archive before it is handed back as a Backup

Backups are never deleted here; retention is handled outside the updater.
"""

from __future__ import annotations

import os
import stat
import zipfile
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from platform_updater.errors import BackupError, FilesystemError
from platform_updater.logging import get_logger
from platform_updater.updates.operations import discard_file, ensure_directory

if TYPE_CHECKING:
    from platform_updater.context import RunContext
    from platform_updater.updates.database import DatabaseDumper

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
DATABASE_LABEL = "database"


class BackupKind(str, Enum):
    """What a backup archive contains."""

    FILESYSTEM_TREE = "filesystem_tree"
    DATABASE_DUMP = "database_dump"


class Backup(BaseModel):
    """
    A point-in-time archive of a directory tree or of the database.

    Attributes:
        source_path: Directory (or database name) that was backed up.
        archive_path: Full path of the archive file.
        archive_name: File name of the archive, as persisted in config.
        created_at: When the backup was taken (UTC).
        kind: FILESYSTEM_TREE or DATABASE_DUMP.
    """

    source_path: str = Field(..., description="What was backed up")
    archive_path: str = Field(..., description="Full path of the archive")
    archive_name: str = Field(..., description="File name of the archive")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the backup was taken",
    )
    kind: BackupKind = Field(..., description="Backup kind")


class BackupManager:
    """
    Creates directory and database backups under a backup root.

    Attributes:
        backup_root: Directory holding all backups.
        dumper: Database dump mechanism (optional for tree-only use).
    """

    def __init__(
        self,
        backup_root: Path | str,
        dumper: DatabaseDumper | None = None,
    ) -> None:
        self.backup_root = Path(backup_root)
        self.dumper = dumper

    def _unique_archive(self, directory: Path, stem: str, suffix: str) -> Path:
        candidate = directory / f"{stem}{suffix}"
        counter = 1
        while candidate.exists():
            candidate = directory / f"{stem}-{counter}{suffix}"
            counter += 1
        return candidate

    def _prepare_destination(self, label: str) -> Path:
        try:
            return ensure_directory(self.backup_root / label)
        except FilesystemError as e:
            raise BackupError(
                f"Cannot create backup directory: {self.backup_root / label}",
                details=e.details,
            ) from e

    def backup_tree(
        self,
        source_path: Path | str,
        destination_label: str,
        name_prefix: str,
    ) -> Backup:
        """
        Archive every regular file under ``source_path``.

        Relative paths are preserved. Directories are recorded so empty
        directories survive a restore; symlinks, sockets, FIFOs and device
        nodes are skipped.

        Args:
            source_path: Directory to back up.
            destination_label: Sub-directory of the backup root to write to.
            name_prefix: Archive file name prefix (a timestamp is appended).

        Returns:
            The verified Backup.

        Raises:
            BackupError: If the source is not a real directory or the archive
                cannot be written or verified. No partial archive is left.
        """
        source = Path(source_path)
        if source.is_symlink() or not source.is_dir():
            raise BackupError(
                f"Backup source is not a directory: {source}",
                details={"source_path": str(source)},
            )

        destination = self._prepare_destination(destination_label)
        created_at = datetime.now(UTC)
        stem = f"{name_prefix}-{created_at.strftime(TIMESTAMP_FORMAT)}"
        archive_path = self._unique_archive(destination, stem, ".zip")

        file_count = 0
        try:
            with zipfile.ZipFile(
                archive_path,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                # Pre-1980 mtimes are clamped instead of rejected
                strict_timestamps=False,
            ) as archive:
                for dirpath, dirnames, filenames in os.walk(source):
                    current = Path(dirpath)
                    relative_dir = current.relative_to(source)
                    if relative_dir != Path("."):
                        archive.write(current, relative_dir.as_posix())
                    # Do not descend into symlinked directories
                    dirnames[:] = sorted(
                        d for d in dirnames if not (current / d).is_symlink()
                    )
                    for filename in sorted(filenames):
                        file_path = current / filename
                        if not stat.S_ISREG(file_path.lstat().st_mode):
                            continue
                        archive.write(
                            file_path,
                            file_path.relative_to(source).as_posix(),
                        )
                        file_count += 1

            with zipfile.ZipFile(archive_path) as archive:
                bad_member = archive.testzip()
            if bad_member is not None:
                raise BackupError(
                    f"Backup archive failed verification: {bad_member}",
                    details={"archive": str(archive_path), "member": bad_member},
                )
        except BackupError:
            discard_file(archive_path)
            raise
        except (OSError, zipfile.BadZipFile, ValueError) as e:
            discard_file(archive_path)
            raise BackupError(
                f"Failed to create backup of {source}: {e}",
                details={
                    "source_path": str(source),
                    "archive": str(archive_path),
                    "error": str(e),
                },
            ) from e

        logger.info(
            "Directory backed up",
            extra={
                "source_path": str(source),
                "archive": str(archive_path),
                "files": file_count,
            },
        )

        return Backup(
            source_path=str(source),
            archive_path=str(archive_path),
            archive_name=archive_path.name,
            created_at=created_at,
            kind=BackupKind.FILESYSTEM_TREE,
        )

    def backup_database(
        self,
        context: RunContext,
        name_prefix: str = "db",
    ) -> Backup:
        """
        Dump the database, at most once per run.

        If the run already has a database backup it is returned without
        dumping again. On failure the partial dump is removed and the run's
        ``database_backed_up`` flag stays False.

        Args:
            context: The current run.
            name_prefix: Dump file name prefix (a timestamp is appended).

        Returns:
            The run's database Backup.

        Raises:
            BackupError: If no dumper is configured or the dump fails.
        """
        if context.database_backed_up and context.database_backup is not None:
            logger.debug(
                "Database already backed up in this run",
                extra={"archive": context.database_backup.archive_path},
            )
            return context.database_backup

        if self.dumper is None:
            raise BackupError("No database dumper configured")

        destination = self._prepare_destination(DATABASE_LABEL)
        created_at = datetime.now(UTC)
        stem = f"{name_prefix}-{created_at.strftime(TIMESTAMP_FORMAT)}"
        dump_path = self._unique_archive(destination, stem, ".sql")

        try:
            self.dumper.dump(dump_path)
            if not dump_path.is_file():
                raise BackupError(
                    "Database dump produced no file",
                    details={"dump_path": str(dump_path)},
                )
        except BackupError:
            discard_file(dump_path)
            raise
        except OSError as e:
            discard_file(dump_path)
            raise BackupError(
                f"Failed to dump database: {e}",
                details={"dump_path": str(dump_path), "error": str(e)},
            ) from e

        backup = Backup(
            source_path=DATABASE_LABEL,
            archive_path=str(dump_path),
            archive_name=dump_path.name,
            created_at=created_at,
            kind=BackupKind.DATABASE_DUMP,
        )
        context.mark_database_backed_up(backup)

        logger.info("Database backed up", extra={"archive": str(dump_path)})
        return backup
