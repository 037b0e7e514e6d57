"""
Rollback logic for the platform updater.

This module restores a component directory from the tree Backup taken
before the update started:
1. Delete whatever currently exists at the destination
2. Recreate the destination directory
3. Unpack the backup archive into it (the archive itself is kept)

Reverting is idempotent: running it twice with the same backup produces the
same tree. A failure here is the most severe outcome of a run and is always
reported as RollbackError.

Schema migrations are NOT reverted here.
"""

from __future__ import annotations

from pathlib import Path

from platform_updater.errors import RollbackError, UpdaterError
from platform_updater.logging import get_logger
from platform_updater.updates.backup import Backup, BackupKind
from platform_updater.updates.operations import (
    ensure_directory,
    remove_tree,
    unpack_archive,
)

logger = get_logger(__name__)

MANUAL_INTERVENTION_MESSAGE = (
    "Reverting also failed - manual intervention required, do not delete backups"
)


class RollbackController:
    """
    Restores component directories from tree backups.
    """

    def revert(self, backup: Backup, destination_path: Path | str) -> None:
        """
        Restore ``destination_path`` to the state captured in ``backup``.

        Args:
            backup: Tree backup taken before the update.
            destination_path: Component directory to restore.

        Raises:
            RollbackError: If the backup is unusable or any restore step fails.
        """
        destination = Path(destination_path)
        archive = Path(backup.archive_path)

        logger.info(
            "Starting rollback",
            extra={"archive": str(archive), "destination": str(destination)},
        )

        if backup.kind is not BackupKind.FILESYSTEM_TREE:
            raise RollbackError(
                f"{MANUAL_INTERVENTION_MESSAGE}: backup is not a directory archive",
                details={"archive": str(archive), "kind": backup.kind.value},
            )

        if not archive.is_file():
            raise RollbackError(
                f"{MANUAL_INTERVENTION_MESSAGE}: backup archive is missing",
                details={"archive": str(archive), "destination": str(destination)},
            )

        try:
            remove_tree(destination)
            ensure_directory(destination)
            unpack_archive(archive, destination)
        except UpdaterError as e:
            logger.error(
                "Rollback failed",
                extra={
                    "archive": str(archive),
                    "destination": str(destination),
                    "error": e.message,
                },
            )
            raise RollbackError(
                f"{MANUAL_INTERVENTION_MESSAGE}: {e.message}",
                details={
                    "archive": str(archive),
                    "destination": str(destination),
                    "cause": e.to_dict(),
                },
            ) from e

        logger.info(
            "Rollback completed",
            extra={"archive": str(archive), "destination": str(destination)},
        )
