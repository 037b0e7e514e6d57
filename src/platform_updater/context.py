"""
Run context for the platform updater.

This module defines the RunContext dataclass that carries the process-wide
state of a single update run. It is created once per invocation and passed
explicitly to every operation that needs it; nothing in the engine keeps
run state in module globals or class attributes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from platform_updater.updates.backup import Backup
    from platform_updater.updates.state_machine import UpdateAttempt


@dataclass
class RunContext:
    """
    State of one update run.

    Attributes:
        updatable: Kill-switch value. Read at run start, cleared on an
            unrecoverable failure.
        run_id: Unique identifier for log correlation.
        started_at: When the run started (UTC).
        database_backed_up: Whether the database was dumped during this run.
            Goes False -> True at most once and is never reset.
        database_backup: The database Backup taken during this run, if any.
        attempts: Update attempts made during this run, in order.
    """

    updatable: bool = True
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    database_backed_up: bool = False
    database_backup: Backup | None = None
    attempts: list[UpdateAttempt] = field(default_factory=list)

    def mark_database_backed_up(self, backup: Backup) -> None:
        """Record the run's database backup. Later calls keep the first one."""
        if self.database_backed_up:
            return
        self.database_backed_up = True
        self.database_backup = backup

    def trip_kill_switch(self) -> None:
        """Disable further automatic updates for this and later runs."""
        self.updatable = False

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the RunContext to a dictionary for logging.

        Returns:
            Dictionary with run information.
        """
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "updatable": self.updatable,
            "database_backed_up": self.database_backed_up,
            "attempts": len(self.attempts),
        }
