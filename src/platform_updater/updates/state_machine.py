"""
Update orchestration for the platform updater.

This module implements the UpdateOrchestrator, which drives one update run:
the core first, then each configured module in order, every component
through the same step state machine with rollback on failure.

Step states (per component, per run):
- not_started: Nothing destructive has happened yet
- downloaded: The new artifact is staged locally
- removed: The old component directory is gone
- extracted: The new artifact is unpacked in place
- migrated: Schema migrations have been applied
- committed: The new version is persisted (terminal, success)
- failed: The attempt stopped with an error (terminal)

The recovery action for a failure is a pure function of the last completed
step and whether a tree backup was taken (see plan_recovery). Every failure
trips the kill-switch and notifies the operator; a core failure ends the
run, a module failure ends the module loop. A manifest reporting the
instance as inactive is the remote side of the kill-switch: the run is
skipped and the local flag is cleared to match.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from platform_updater.config import GENERAL_SECTION
from platform_updater.context import RunContext
from platform_updater.errors import (
    AuthError,
    InternalError,
    LockError,
    NetworkError,
    ParseError,
    RollbackError,
    UpdaterError,
)
from platform_updater.logging import RunTimer, get_logger
from platform_updater.updates.components import Component
from platform_updater.updates.lock import RunLock
from platform_updater.updates.operations import (
    ensure_directory,
    extract_into,
    remove_tree,
)
from platform_updater.updates.version import is_newer

if TYPE_CHECKING:
    from platform_updater.config import AppConfig, ConfigStore
    from platform_updater.notifications import Notifier
    from platform_updater.updates.backup import Backup, BackupManager
    from platform_updater.updates.fetcher import PackageFetcher
    from platform_updater.updates.migrations import MigrationReport, MigrationRunner
    from platform_updater.updates.remote import RemoteManifest, RemoteStateSync
    from platform_updater.updates.rollback import RollbackController

logger = get_logger(__name__)

ACTIVE_SETTING = "active"


class Step(str, Enum):
    """
    Progress of one component update.

    Step transitions:
    - not_started → downloaded → removed → extracted → migrated → committed
    - any non-terminal step → failed
    """

    NOT_STARTED = "not_started"
    DOWNLOADED = "downloaded"
    REMOVED = "removed"
    EXTRACTED = "extracted"
    MIGRATED = "migrated"
    COMMITTED = "committed"
    FAILED = "failed"


# Valid step transitions
_VALID_TRANSITIONS: dict[Step, set[Step]] = {
    Step.NOT_STARTED: {Step.DOWNLOADED, Step.FAILED},
    Step.DOWNLOADED: {Step.REMOVED, Step.FAILED},
    Step.REMOVED: {Step.EXTRACTED, Step.FAILED},
    Step.EXTRACTED: {Step.MIGRATED, Step.FAILED},
    Step.MIGRATED: {Step.COMMITTED, Step.FAILED},
    Step.COMMITTED: set(),
    Step.FAILED: set(),
}


class RecoveryAction(str, Enum):
    """What to do about a failed component update."""

    NONE = "none"
    RESTORE_TREE = "restore_tree"


def plan_recovery(step: Step, has_backup: bool) -> RecoveryAction:
    """
    Decide how to recover from a failure.

    Until a tree backup exists nothing destructive can have happened, so
    there is nothing to restore. From then on the directory is restored from
    the backup, whatever step was reached. Applied schema migrations are
    never reverted automatically.

    Args:
        step: Last step completed before the failure.
        has_backup: Whether a tree backup was taken for this attempt.

    Returns:
        The recovery action.

    Raises:
        ValueError: If ``step`` is a terminal step.
    """
    if step in (Step.COMMITTED, Step.FAILED):
        raise ValueError(f"No recovery for terminal step: {step.value}")
    if not has_backup:
        return RecoveryAction.NONE
    return RecoveryAction.RESTORE_TREE


@dataclass
class UpdateAttempt:
    """
    One component's update within a run.

    Attributes:
        component: The component being updated.
        step: Current step.
        backup: Tree backup taken before any destructive step.
        error: The failure that stopped the attempt, if any.
        failed_at: Last step completed before the failure.
        recovery: Recovery action taken after a failure.
        rollback_error: Failure of the recovery itself, if any.
        migration_report: Report of the applied migrations.
    """

    component: Component
    step: Step = Step.NOT_STARTED
    backup: Backup | None = None
    error: UpdaterError | None = None
    failed_at: Step | None = None
    recovery: RecoveryAction | None = None
    rollback_error: RollbackError | None = None
    migration_report: MigrationReport | None = None

    @property
    def failed(self) -> bool:
        return self.step is Step.FAILED

    @property
    def committed(self) -> bool:
        return self.step is Step.COMMITTED

    def advance(self, new_step: Step) -> None:
        """
        Move to the next step.

        Raises:
            ValueError: If the transition is not forward by exactly one step.
        """
        if new_step not in _VALID_TRANSITIONS[self.step]:
            raise ValueError(
                f"Invalid step transition: {self.step.value} -> {new_step.value}"
            )
        logger.debug(
            "Step transition",
            extra={
                "component": self.component.id,
                "from_step": self.step.value,
                "to_step": new_step.value,
            },
        )
        self.step = new_step

    def fail(self, error: UpdaterError) -> None:
        """Record a failure at the current step."""
        self.failed_at = self.step
        self.error = error
        self.advance(Step.FAILED)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the attempt to a dictionary for results and logging.

        Returns:
            Dictionary with attempt information.
        """
        return {
            "component": self.component.id,
            "from_version": self.component.local_version,
            "to_version": self.component.remote_version,
            "step": self.step.value,
            "failed_at": self.failed_at.value if self.failed_at else None,
            "backup": self.backup.archive_path if self.backup else None,
            "recovery": self.recovery.value if self.recovery else None,
            "error": self.error.to_dict() if self.error else None,
            "rollback_error": (
                self.rollback_error.to_dict() if self.rollback_error else None
            ),
            "migrations": (
                self.migration_report.applied if self.migration_report else []
            ),
        }


class RunStatus(str, Enum):
    """Final outcome of an update run."""

    SUCCESS = "success"
    NO_UPDATE_NEEDED = "no_update_needed"
    SKIPPED_NOT_UPDATABLE = "skipped_not_updatable"
    FAILED_ROLLED_BACK = "failed_rolled_back"
    FAILED_ROLLBACK_FAILED = "failed_rollback_failed"
    FAILED = "failed"


class RunResult(BaseModel):
    """
    Result of one update run.

    Only SUCCESS and NO_UPDATE_NEEDED are safe to repeat unattended.
    """

    status: RunStatus = Field(..., description="Final run status")
    run_id: str = Field(..., description="Run identifier")
    started_at: datetime = Field(..., description="When the run started")
    finished_at: datetime = Field(..., description="When the run finished")
    duration_seconds: float = Field(default=0.0, ge=0, description="Run duration")
    attempts: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Component update attempts, in order",
    )
    message: str = Field(default="", description="Human-readable summary")

    @property
    def safe_to_repeat(self) -> bool:
        return self.status in (RunStatus.SUCCESS, RunStatus.NO_UPDATE_NEEDED)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


class UpdateOrchestrator:
    """
    Runs the update of the core and all configured modules.

    Collaborators are injected so every side effect can be replaced in
    tests. The orchestrator holds no run state itself; everything about a
    run lives in the RunContext passed to ``run``.

    Attributes:
        store: Persisted configuration.
        backups: Directory and database backups.
        fetcher: Artifact downloads.
        migrations: Schema migration tool.
        rollback: Directory restore.
        remote: Release service client.
        notifier: Operator notifications.
        lock_path: Run lock file.
    """

    def __init__(
        self,
        store: ConfigStore,
        backups: BackupManager,
        fetcher: PackageFetcher,
        migrations: MigrationRunner,
        rollback: RollbackController,
        remote: RemoteStateSync,
        notifier: Notifier,
        *,
        lock_path: Path | str | None = None,
    ) -> None:
        self.store = store
        self.backups = backups
        self.fetcher = fetcher
        self.migrations = migrations
        self.rollback = rollback
        self.remote = remote
        self.notifier = notifier
        self.lock_path = (
            Path(lock_path) if lock_path else store.config.general.lock_path
        )

    # =========================================================================
    # Run
    # =========================================================================

    def run(self, context: RunContext | None = None) -> RunResult:
        """
        Perform one update run.

        Args:
            context: Run context (a new one is created if omitted).

        Returns:
            The RunResult. Failures are reported here, not raised.
        """
        context = context or RunContext()
        timer = RunTimer(logger, context.run_id)
        timer.start()

        lock = RunLock(self.lock_path)
        try:
            lock.acquire()
        except LockError as e:
            logger.error(
                "Update run refused",
                extra={"run_id": context.run_id, "error": e.message},
            )
            return self._finish(context, timer, RunStatus.FAILED, e.message)

        try:
            status, message = self._run_locked(context)
        finally:
            lock.release()

        return self._finish(context, timer, status, message)

    def _finish(
        self,
        context: RunContext,
        timer: RunTimer,
        status: RunStatus,
        message: str,
    ) -> RunResult:
        duration = timer.end(status=status.value, **context.to_dict())
        return RunResult(
            status=status,
            run_id=context.run_id,
            started_at=context.started_at,
            finished_at=datetime.now(UTC),
            duration_seconds=duration,
            attempts=[attempt.to_dict() for attempt in context.attempts],
            message=message,
        )

    def _run_locked(self, context: RunContext) -> tuple[RunStatus, str]:
        try:
            config = self.store.reload()
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.error(
                "Failed to load configuration",
                extra={"run_id": context.run_id, "error": str(e)},
            )
            return RunStatus.FAILED, f"Configuration could not be loaded: {e}"
        context.updatable = config.general.updatable

        if not context.updatable:
            logger.warning(
                "Updates are disabled, skipping run",
                extra={"run_id": context.run_id},
            )
            return (
                RunStatus.SKIPPED_NOT_UPDATABLE,
                "Automatic updates are disabled until an operator resets them",
            )

        try:
            manifest = self.remote.fetch_manifest(config.general.app_token)
        except (AuthError, NetworkError) as e:
            logger.error(
                "Failed to fetch instance manifest",
                extra={"run_id": context.run_id, "error": e.message},
            )
            return RunStatus.FAILED, f"Manifest fetch failed: {e.message}"

        if not manifest.active:
            logger.warning(
                "Release service has disabled updates, skipping run",
                extra={"run_id": context.run_id},
            )
            context.updatable = False
            try:
                self.store.set(GENERAL_SECTION, "updatable", False)
            except UpdaterError as e:
                logger.critical(
                    "Failed to persist kill-switch",
                    extra={"run_id": context.run_id, "error": e.message},
                )
            return (
                RunStatus.SKIPPED_NOT_UPDATABLE,
                "Automatic updates are disabled by the release service",
            )

        try:
            components = self._components(config, manifest)
        except ParseError as e:
            logger.error(
                "Manifest contains an invalid version",
                extra={"run_id": context.run_id, "error": e.message},
            )
            return RunStatus.FAILED, f"Invalid manifest: {e.message}"

        for component in components:
            try:
                needed = is_newer(component.remote_version, component.local_version)
            except ParseError as e:
                logger.error(
                    "Cannot compare versions",
                    extra={"component": component.id, "error": e.message},
                )
                return RunStatus.FAILED, f"{component.id}: {e.message}"

            if not needed:
                logger.info(
                    "Component is up to date",
                    extra={
                        "component": component.id,
                        "version": component.local_version,
                    },
                )
                continue

            attempt = self._update_component(context, component)
            if attempt.failed:
                # Core failure ends the run; module failure ends the module loop
                return self._failure_status(attempt)

        if any(attempt.committed for attempt in context.attempts):
            updated = ", ".join(a.component.id for a in context.attempts)
            return RunStatus.SUCCESS, f"Updated: {updated}"
        return RunStatus.NO_UPDATE_NEEDED, "Everything is up to date"

    def _components(
        self, config: AppConfig, manifest: RemoteManifest
    ) -> list[Component]:
        """Core first, then configured modules in order, skipping unknown ones."""
        components: list[Component] = []

        core_release = manifest.latest_core()
        if core_release is None:
            logger.warning("Release service offers no core version")
        elif not core_release.upgrade_link:
            logger.warning(
                "Core release has no download link, skipping",
                extra={"version": core_release.version},
            )
        else:
            components.append(
                Component.core(
                    local_version=config.core.version,
                    remote_version=core_release.version,
                    update_url=core_release.upgrade_link,
                )
            )

        for name in config.modules:
            entry = manifest.module(name)
            release = entry.latest() if entry is not None else None
            if release is None:
                logger.warning(
                    "No remote information for module, skipping",
                    extra={"module_name": name},
                )
                continue
            if not release.upgrade_link:
                logger.warning(
                    "Module release has no download link, skipping",
                    extra={"module_name": name, "version": release.version},
                )
                continue
            components.append(
                Component.module(
                    name,
                    local_version=config.module_state(name).version,
                    remote_version=release.version,
                    update_url=release.upgrade_link,
                )
            )

        return components

    @staticmethod
    def _failure_status(attempt: UpdateAttempt) -> tuple[RunStatus, str]:
        error = attempt.error.message if attempt.error else "unknown error"
        if attempt.rollback_error is not None:
            return (
                RunStatus.FAILED_ROLLBACK_FAILED,
                f"{attempt.component.id}: {error}; {attempt.rollback_error.message}",
            )
        if attempt.recovery is RecoveryAction.RESTORE_TREE:
            return (
                RunStatus.FAILED_ROLLED_BACK,
                f"{attempt.component.id}: {error}; directory restored from backup",
            )
        return RunStatus.FAILED, f"{attempt.component.id}: {error}"

    # =========================================================================
    # Component update
    # =========================================================================

    def _update_component(
        self, context: RunContext, component: Component
    ) -> UpdateAttempt:
        attempt = UpdateAttempt(component=component)
        context.attempts.append(attempt)

        logger.info(
            "Updating component",
            extra={
                "run_id": context.run_id,
                "component": component.id,
                "from_version": component.local_version,
                "to_version": component.remote_version,
            },
        )

        try:
            self._apply(context, attempt)
        except UpdaterError as e:
            self._handle_failure(context, attempt, e)
        except Exception as e:
            wrapped = InternalError(
                f"Unexpected error after step {attempt.step.value}: {e}",
                details={
                    "step": attempt.step.value,
                    "exception": type(e).__name__,
                },
            )
            self._handle_failure(context, attempt, wrapped)

        return attempt

    def _apply(self, context: RunContext, attempt: UpdateAttempt) -> None:
        component = attempt.component
        general = self.store.config.general
        root = general.root_dir
        target = component.install_dir(root)

        ensure_directory(target)
        self._backup_database(context)

        backup = self.backups.backup_tree(
            target, component.backup_label, component.backup_prefix
        )
        self.store.update(
            component.config_section,
            {
                "backup_name": backup.archive_name,
                "latest_backup": backup.created_at.isoformat(timespec="seconds"),
            },
        )
        attempt.backup = backup

        artifact_path = general.update_dir / component.artifact_name()
        self.fetcher.fetch(component.update_url or "", general.app_token, artifact_path)
        attempt.advance(Step.DOWNLOADED)

        remove_tree(target)
        attempt.advance(Step.REMOVED)

        extract_into(artifact_path, target)
        attempt.advance(Step.EXTRACTED)

        attempt.migration_report = self.migrations.apply_migrations(
            component.migrations_dir(root)
        )
        attempt.advance(Step.MIGRATED)

        self.store.update(
            component.config_section,
            {"version": component.remote_version, "last_update": _timestamp()},
        )
        self.remote.commit(
            component.remote_setting, component.remote_version, general.app_token
        )
        attempt.advance(Step.COMMITTED)

        logger.info(
            "Component updated",
            extra={
                "run_id": context.run_id,
                "component": component.id,
                "version": component.remote_version,
            },
        )

    def _backup_database(self, context: RunContext) -> None:
        already_done = context.database_backed_up
        backup = self.backups.backup_database(context)
        if already_done:
            return
        self.store.update(
            GENERAL_SECTION,
            {
                "latest_db_backup": backup.created_at.isoformat(timespec="seconds"),
                "db_backup_name": backup.archive_name,
            },
        )

    # =========================================================================
    # Failure handling
    # =========================================================================

    def _handle_failure(
        self, context: RunContext, attempt: UpdateAttempt, error: UpdaterError
    ) -> None:
        attempt.fail(error)
        component = attempt.component
        failed_at = attempt.failed_at or Step.NOT_STARTED

        logger.error(
            "Component update failed",
            extra={
                "run_id": context.run_id,
                "component": component.id,
                "failed_at": failed_at.value,
                "error_code": error.error_code,
                "error": error.message,
            },
        )

        attempt.recovery = plan_recovery(failed_at, attempt.backup is not None)
        if attempt.recovery is RecoveryAction.RESTORE_TREE and attempt.backup:
            target = component.install_dir(self.store.config.general.root_dir)
            try:
                self.rollback.revert(attempt.backup, target)
            except RollbackError as e:
                attempt.rollback_error = e
                logger.critical(
                    "Rollback failed",
                    extra={
                        "run_id": context.run_id,
                        "component": component.id,
                        "backup": attempt.backup.archive_path,
                        "error": e.message,
                    },
                )

        self._trip_kill_switch(context)
        self._notify_failure(context, attempt)

    def _trip_kill_switch(self, context: RunContext) -> None:
        context.trip_kill_switch()
        general = self.store.config.general

        try:
            self.store.set(GENERAL_SECTION, "updatable", False)
        except UpdaterError as e:
            logger.critical(
                "Failed to persist kill-switch",
                extra={"run_id": context.run_id, "error": e.message},
            )

        self.remote.commit(ACTIVE_SETTING, False, general.app_token)
        logger.warning(
            "Kill-switch tripped, automatic updates disabled",
            extra={"run_id": context.run_id},
        )

    def _notify_failure(self, context: RunContext, attempt: UpdateAttempt) -> None:
        component = attempt.component
        error = attempt.error
        failed_at = attempt.failed_at.value if attempt.failed_at else "-"
        lines = [
            f"Run: {context.run_id}",
            f"Component: {component.id}",
            f"From version: {component.local_version or 'none'}",
            f"To version: {component.remote_version}",
            f"Failed after step: {failed_at}",
            f"Error: {error.message if error else 'unknown'}",
        ]
        if attempt.backup is not None:
            lines.append(f"Backup: {attempt.backup.archive_path}")
        if context.database_backup is not None:
            lines.append(f"Database backup: {context.database_backup.archive_path}")

        if attempt.rollback_error is not None:
            subject = f"Update of {component.id} failed and could not be reverted"
            lines.append(f"Rollback error: {attempt.rollback_error.message}")
        elif attempt.recovery is RecoveryAction.RESTORE_TREE:
            subject = f"Update of {component.id} failed and was reverted"
        else:
            subject = f"Update of {component.id} failed"

        lines.append("")
        lines.append(
            "Automatic updates are disabled until updatable is reset to true."
        )
        self.notifier.notify(subject, "\n".join(lines))
