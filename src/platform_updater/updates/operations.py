"""
Directory operations for installing component updates.

This module implements the filesystem side of an update:
- Safe directory creation
- Recursive removal of a component directory (children before parents)
- Extraction of a staged artifact into a component directory

CRITICAL: remove_tree refuses an empty path. "No path" must never be read
as "the current directory".
"""

from __future__ import annotations

import os
import zipfile
from pathlib import Path

from platform_updater.errors import ExtractionError, FilesystemError
from platform_updater.logging import get_logger

logger = get_logger(__name__)


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o775) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions for newly created directories.

    Returns:
        The directory path.

    Raises:
        FilesystemError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise FilesystemError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def _check_removable(path: Path | str) -> Path:
    if path is None or str(path).strip() == "":
        raise FilesystemError(
            "Refusing to remove an empty path",
            details={"path": str(path)},
        )
    resolved = Path(path)
    if resolved.resolve() == Path(resolved.anchor or "/").resolve():
        raise FilesystemError(
            f"Refusing to remove a filesystem root: {path}",
            details={"path": str(path)},
        )
    return resolved


def remove_tree(path: Path | str) -> bool:
    """
    Recursively delete a directory, children before parents.

    Args:
        path: Directory to remove.

    Returns:
        True if the directory was removed, False if it didn't exist.

    Raises:
        FilesystemError: If the path is empty, a filesystem root, not a
            directory, or cannot be removed.
    """
    target = _check_removable(path)

    if not target.exists() and not target.is_symlink():
        return False

    if target.is_symlink() or not target.is_dir():
        raise FilesystemError(
            f"Not a directory: {target}",
            details={"path": str(target)},
        )

    try:
        for dirpath, dirnames, filenames in os.walk(target, topdown=False):
            current = Path(dirpath)
            for filename in filenames:
                (current / filename).unlink()
            for dirname in dirnames:
                child = current / dirname
                # Symlinked directories are listed as dirs but must be unlinked
                if child.is_symlink():
                    child.unlink()
                else:
                    child.rmdir()
        target.rmdir()
    except OSError as e:
        raise FilesystemError(
            f"Failed to remove directory: {target}",
            details={"path": str(target), "error": str(e)},
        ) from e

    logger.debug("Removed directory", extra={"path": str(target)})
    return True


def _safe_members(archive: zipfile.ZipFile, target: Path) -> list[zipfile.ZipInfo]:
    root = target.resolve()
    members = archive.infolist()
    for member in members:
        destination = (root / member.filename).resolve()
        if destination != root and root not in destination.parents:
            raise ExtractionError(
                f"Archive member escapes target directory: {member.filename}",
                details={"member": member.filename, "target": str(target)},
            )
    return members


def _restore_modes(members: list[zipfile.ZipInfo], target: Path) -> None:
    # extractall drops permission bits; ZipFile.write keeps them in external_attr.
    # Directories go last so a read-only directory cannot block its children.
    for member in sorted(members, key=lambda m: m.is_dir()):
        mode = (member.external_attr >> 16) & 0o7777
        if mode:
            os.chmod(target / member.filename, mode)


def unpack_archive(archive_path: Path | str, target_path: Path | str) -> None:
    """
    Unpack a zip archive into a target directory, keeping the archive.

    Args:
        archive_path: Zip archive to unpack.
        target_path: Directory to extract into (created if absent).

    Raises:
        ExtractionError: If the archive is missing, corrupt, unsafe, or
            cannot be written out.
    """
    archive_file = Path(archive_path)
    target = Path(target_path)

    if not archive_file.is_file():
        raise ExtractionError(
            f"Archive not found: {archive_file}",
            details={"archive": str(archive_file)},
        )

    try:
        target.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive_file) as archive:
            members = _safe_members(archive, target)
            archive.extractall(target, members=members)
            _restore_modes(members, target)
    except ExtractionError:
        raise
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, RuntimeError) as e:
        raise ExtractionError(
            f"Failed to extract {archive_file.name}: {e}",
            details={
                "archive": str(archive_file),
                "target": str(target),
                "error": str(e),
            },
        ) from e


def extract_into(artifact_path: Path | str, target_path: Path | str) -> None:
    """
    Unpack an update artifact into a target directory, then delete it.

    On failure the artifact is left in place for inspection and partially
    extracted content is not removed.

    Args:
        artifact_path: Staged zip archive.
        target_path: Directory to extract into (created if absent).

    Raises:
        ExtractionError: If the artifact cannot be unpacked.
    """
    artifact = Path(artifact_path)
    unpack_archive(artifact, target_path)

    logger.info(
        "Artifact extracted",
        extra={"artifact": str(artifact), "target": str(target_path)},
    )

    try:
        artifact.unlink()
    except OSError as e:
        logger.warning(
            "Failed to delete extracted artifact",
            extra={"artifact": str(artifact), "error": str(e)},
        )


def discard_file(path: Path | str) -> None:
    """Remove a file if it exists, ignoring a missing file."""
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning(
            "Failed to remove file",
            extra={"path": str(path), "error": str(e)},
        )
