"""
Update engine for the platform updater.

This package implements the complete update run:
- Semantic version comparison
- Directory and database backups
- Artifact download from the release service
- Directory removal and artifact extraction
- Schema migrations through an external tool
- Rollback of component directories from backups
- Release service manifest and setting reports
- Run lock and the step state machine orchestrating it all
"""

from platform_updater.updates.backup import Backup, BackupKind, BackupManager
from platform_updater.updates.components import Component, ComponentKind
from platform_updater.updates.database import DatabaseDumper, MysqlCommandDumper
from platform_updater.updates.fetcher import LocalArtifact, PackageFetcher
from platform_updater.updates.lock import RunLock
from platform_updater.updates.migrations import (
    MigrationReport,
    MigrationRunner,
    parse_migration_output,
)
from platform_updater.updates.operations import (
    ensure_directory,
    extract_into,
    remove_tree,
    unpack_archive,
)
from platform_updater.updates.remote import RemoteManifest, RemoteStateSync
from platform_updater.updates.rollback import RollbackController
from platform_updater.updates.state_machine import (
    RecoveryAction,
    RunResult,
    RunStatus,
    Step,
    UpdateAttempt,
    UpdateOrchestrator,
    plan_recovery,
)
from platform_updater.updates.version import (
    Version,
    compare_versions,
    is_newer,
    parse_semantic_version,
)

__all__ = [
    # Versions
    "Version",
    "compare_versions",
    "is_newer",
    "parse_semantic_version",
    # Components
    "Component",
    "ComponentKind",
    # Backups
    "Backup",
    "BackupKind",
    "BackupManager",
    "DatabaseDumper",
    "MysqlCommandDumper",
    # Download
    "LocalArtifact",
    "PackageFetcher",
    # Operations
    "ensure_directory",
    "extract_into",
    "remove_tree",
    "unpack_archive",
    # Migrations
    "MigrationReport",
    "MigrationRunner",
    "parse_migration_output",
    # Rollback
    "RollbackController",
    # Release service
    "RemoteManifest",
    "RemoteStateSync",
    # State machine
    "RecoveryAction",
    "RunLock",
    "RunResult",
    "RunStatus",
    "Step",
    "UpdateAttempt",
    "UpdateOrchestrator",
    "plan_recovery",
]
