"""
Component model for the update engine.

A component is the unit the engine updates independently: the platform core,
or one installed module. Paths, persisted config sections, backup locations
and staged artifact names all derive from the component kind here, so no
other module builds them by string interpolation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from platform_updater.config import CORE_SECTION, module_section

CORE_DIRECTORY = "cms"
MODULES_DIRECTORY = "modules"
MIGRATIONS_DIRECTORY = "migrations"


class ComponentKind(str, Enum):
    """Kind of an updatable component."""

    CORE = "core"
    MODULE = "module"


@dataclass
class Component:
    """
    One updatable component, merged from local config and the remote manifest.

    Attributes:
        kind: CORE or MODULE.
        name: Module name; None for the core.
        local_version: Installed version, None when nothing is installed.
        remote_version: Newest version offered by the release service.
        update_url: Download link for the remote version's artifact.
    """

    kind: ComponentKind
    name: str | None = None
    local_version: str | None = None
    remote_version: str | None = None
    update_url: str | None = None

    @classmethod
    def core(
        cls,
        local_version: str | None = None,
        remote_version: str | None = None,
        update_url: str | None = None,
    ) -> Component:
        """Create the core component."""
        return cls(
            kind=ComponentKind.CORE,
            local_version=local_version,
            remote_version=remote_version,
            update_url=update_url,
        )

    @classmethod
    def module(
        cls,
        name: str,
        local_version: str | None = None,
        remote_version: str | None = None,
        update_url: str | None = None,
    ) -> Component:
        """Create a module component."""
        if not name:
            raise ValueError("Module name cannot be empty")
        return cls(
            kind=ComponentKind.MODULE,
            name=name,
            local_version=local_version,
            remote_version=remote_version,
            update_url=update_url,
        )

    @property
    def id(self) -> str:
        """Stable identifier used in logs and results."""
        if self.kind is ComponentKind.CORE:
            return "core"
        return f"module:{self.name}"

    @property
    def is_core(self) -> bool:
        return self.kind is ComponentKind.CORE

    @property
    def config_section(self) -> str:
        """Persisted config section holding this component's state."""
        if self.kind is ComponentKind.CORE:
            return CORE_SECTION
        return module_section(self.name or "")

    def install_dir(self, root: Path) -> Path:
        """Directory holding the component's code."""
        if self.kind is ComponentKind.CORE:
            return root / CORE_DIRECTORY
        return root / MODULES_DIRECTORY / (self.name or "")

    def migrations_dir(self, root: Path) -> Path:
        """Directory holding the component's schema migrations."""
        return self.install_dir(root) / MIGRATIONS_DIRECTORY

    @property
    def backup_label(self) -> str:
        """Backup sub-directory for this component's tree archives."""
        if self.kind is ComponentKind.CORE:
            return "core"
        return f"{MODULES_DIRECTORY}/{self.name}"

    @property
    def backup_prefix(self) -> str:
        """File name prefix for this component's tree archives."""
        return f"backup-{self.local_version or 'none'}"

    def artifact_name(self) -> str:
        """File name of the staged update artifact."""
        if self.kind is ComponentKind.CORE:
            return f"core-upgrade-{self.remote_version}.zip"
        return f"module-{self.name}-{self.remote_version}.zip"

    @property
    def remote_setting(self) -> str:
        """Setting name under which the release service records the version."""
        if self.kind is ComponentKind.CORE:
            return "core_version"
        return f"module_{self.name}_version"
