"""
Command-line interface for the platform updater.

Commands:
- run (default): perform one update run
- status: show installed versions and the kill-switch
- reset: re-enable automatic updates after an operator has intervened
- restore-database: load a database dump taken by an earlier run

Exit codes for ``run``: 0 on success or when nothing needed updating, 2 when
updates are disabled, 1 on any failure.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from platform_updater import __version__
from platform_updater.config import (
    DEFAULT_CONFIG_PATH,
    GENERAL_SECTION,
    ConfigStore,
)
from platform_updater.context import RunContext
from platform_updater.errors import UpdaterError
from platform_updater.logging import get_logger, setup_logging
from platform_updater.notifications import build_notifier
from platform_updater.updates.backup import BackupManager
from platform_updater.updates.database import MysqlCommandDumper
from platform_updater.updates.fetcher import PackageFetcher
from platform_updater.updates.migrations import MigrationRunner
from platform_updater.updates.remote import RemoteStateSync
from platform_updater.updates.rollback import RollbackController
from platform_updater.updates.state_machine import RunStatus, UpdateOrchestrator

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_DISABLED = 2

_EXIT_CODES: dict[RunStatus, int] = {
    RunStatus.SUCCESS: EXIT_OK,
    RunStatus.NO_UPDATE_NEEDED: EXIT_OK,
    RunStatus.SKIPPED_NOT_UPDATABLE: EXIT_DISABLED,
    RunStatus.FAILED_ROLLED_BACK: EXIT_FAILURE,
    RunStatus.FAILED_ROLLBACK_FAILED: EXIT_FAILURE,
    RunStatus.FAILED: EXIT_FAILURE,
}


def exit_code_for(status: RunStatus) -> int:
    """Map a run status to the process exit code."""
    return _EXIT_CODES.get(status, EXIT_FAILURE)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="platform-updater",
        description="Update the platform core and modules from the release service",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Perform one update run")

    status = subparsers.add_parser("status", help="Show versions and kill-switch")
    status.add_argument("--json", action="store_true", help="Print JSON")

    subparsers.add_parser("reset", help="Re-enable automatic updates")

    restore = subparsers.add_parser(
        "restore-database", help="Restore the database from a dump file"
    )
    restore.add_argument("dump_file", type=str, help="Dump file to load")

    return parser


def _cli_overrides(parsed: argparse.Namespace) -> dict[str, Any]:
    result: dict[str, Any] = {}
    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}
    if parsed.debug:
        result["logging"] = {"level": "debug"}
    return result


def build_orchestrator(store: ConfigStore) -> UpdateOrchestrator:
    """Wire the orchestrator's collaborators from configuration."""
    config = store.config
    general = config.general
    return UpdateOrchestrator(
        store=store,
        backups=BackupManager(general.backup_dir, MysqlCommandDumper(config.database)),
        fetcher=PackageFetcher(general.download_timeout_seconds),
        migrations=MigrationRunner.from_config(config.migrations, cwd=general.root_dir),
        rollback=RollbackController(),
        remote=RemoteStateSync(general.api_url),
        notifier=build_notifier(config.notifications),
        lock_path=general.lock_path,
    )


# =============================================================================
# Commands
# =============================================================================


def cmd_run(store: ConfigStore, parsed: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(store)
    result = orchestrator.run(RunContext())
    print(f"{result.status.value}: {result.message}")
    return exit_code_for(result.status)


def cmd_status(store: ConfigStore, parsed: argparse.Namespace) -> int:
    config = store.config
    info: dict[str, Any] = {
        "updatable": config.general.updatable,
        "core": config.core.model_dump(),
        "modules": {
            name: config.module_state(name).model_dump() for name in config.modules
        },
        "latest_db_backup": config.general.latest_db_backup,
    }

    if getattr(parsed, "json", False):
        print(json.dumps(info, indent=2))
        return EXIT_OK

    print(f"updatable: {'yes' if config.general.updatable else 'no'}")
    print(f"core: {config.core.version or 'not installed'}")
    for name in config.modules:
        state = config.module_state(name)
        print(f"module {name}: {state.version or 'not installed'}")
    if config.general.latest_db_backup:
        print(
            f"latest database backup: {config.general.db_backup_name} "
            f"({config.general.latest_db_backup})"
        )
    return EXIT_OK


def cmd_reset(store: ConfigStore, parsed: argparse.Namespace) -> int:
    store.set(GENERAL_SECTION, "updatable", True)
    logger.info("Automatic updates re-enabled", extra={"config": str(store.path)})
    print("updatable: yes")
    return EXIT_OK


def cmd_restore_database(store: ConfigStore, parsed: argparse.Namespace) -> int:
    dump_file = Path(parsed.dump_file)
    if not dump_file.is_file():
        print(f"Dump file not found: {dump_file}", file=sys.stderr)
        return EXIT_FAILURE

    MysqlCommandDumper(store.config.database).restore(dump_file)
    print(f"Database restored from {dump_file}")
    return EXIT_OK


_COMMANDS = {
    "run": cmd_run,
    "status": cmd_status,
    "reset": cmd_reset,
    "restore-database": cmd_restore_database,
}


def main(argv: list[str] | None = None) -> int:
    """
    Entry point for the ``platform-updater`` command.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Process exit code.
    """
    parsed = build_parser().parse_args(argv)
    command = parsed.command or "run"

    config_path = Path(parsed.config)
    if not config_path.is_file():
        print(f"Configuration file not found: {config_path}", file=sys.stderr)
        return EXIT_FAILURE

    try:
        store = ConfigStore(config_path, overrides=_cli_overrides(parsed))
    except (ValidationError, yaml.YAMLError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_FAILURE

    setup_logging(store.config.logging)

    try:
        return _COMMANDS[command](store, parsed)
    except UpdaterError as e:
        logger.error(
            "Command failed",
            extra={"command": command, "error_code": e.error_code, "error": e.message},
        )
        print(f"{e.error_code}: {e.message}", file=sys.stderr)
        return EXIT_FAILURE
