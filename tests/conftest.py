"""
Pytest configuration for the platform updater tests.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from platform_updater.errors import BackupError
from platform_updater.updates.database import DatabaseDumper


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


class CountingDumper(DatabaseDumper):
    """Database dumper that writes a placeholder file and counts calls."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.dump_calls = 0
        self.restored: list[Path] = []

    def dump(self, destination: Path) -> None:
        self.dump_calls += 1
        if self.fail:
            raise BackupError("mysqldump exited with status 2")
        destination.write_text("-- dump\n")

    def restore(self, dump_file: Path, database: str | None = None) -> None:
        self.restored.append(dump_file)


@pytest.fixture
def dumper() -> CountingDumper:
    """Database dumper test double."""
    return CountingDumper()


@pytest.fixture
def failing_dumper() -> CountingDumper:
    """Database dumper test double whose dump always fails."""
    return CountingDumper(fail=True)


@pytest.fixture
def sample_tree(tmp_path: Path) -> Path:
    """A small component directory with nested and empty directories."""
    root = tmp_path / "cms"
    (root / "src" / "lib").mkdir(parents=True)
    (root / "empty").mkdir()
    (root / "index.php").write_text("<?php echo 'v1';\n")
    (root / "src" / "app.php").write_text("<?php // app\n")
    (root / "src" / "lib" / "util.php").write_bytes(b"\x00\x01binary\xff")
    return root
