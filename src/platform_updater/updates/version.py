"""
Version ordering for the platform updater.

This module implements semantic-version parsing and total ordering:
- Strict MAJOR.MINOR.PATCH[-PRERELEASE][+BUILDMETADATA] parsing
- Precedence rules: release > pre-release, numeric identifiers compare
  numerically and sort before alphanumeric ones, build metadata is ignored
- "Is there an update?" decisions, where a missing local version is the
  lowest possible version
"""

from __future__ import annotations

import functools
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from platform_updater.errors import ParseError

# Accepts: 1.0.0, 1.2.3, 2.0.0-beta.1, 1.0.0-alpha+build.123
SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)"
    r"\.(?P<minor>0|[1-9]\d*)"
    r"\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<buildmetadata>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def _identifier_key(identifier: str) -> tuple[int, int, str]:
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """
    A parsed semantic version.

    Equality and ordering follow precedence only, so two versions that
    differ in build metadata alone are equal.

    Attributes:
        major: Major version number.
        minor: Minor version number.
        patch: Patch version number.
        prerelease: Pre-release identifier (e.g. "beta.1"), or None.
        buildmetadata: Build metadata, or None.
    """

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    buildmetadata: str | None = None

    @property
    def precedence_key(self) -> tuple[Any, ...]:
        if self.prerelease is None:
            return (self.major, self.minor, self.patch, 1, ())
        identifiers = tuple(
            _identifier_key(part) for part in self.prerelease.split(".")
        )
        return (self.major, self.minor, self.patch, 0, identifiers)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.precedence_key == other.precedence_key

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.precedence_key < other.precedence_key

    def __hash__(self) -> int:
        return hash(self.precedence_key)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.buildmetadata:
            text += f"+{self.buildmetadata}"
        return text


def parse_semantic_version(version: str) -> Version:
    """
    Parse and validate a semantic version string.

    Args:
        version: Version string (e.g., "1.0.0", "1.2.3-beta.1").

    Returns:
        Parsed Version.

    Raises:
        ParseError: If the version string is empty or malformed.
    """
    if not version:
        raise ParseError(
            "Version string cannot be empty",
            details={"version": version},
        )

    version = version.strip()

    if version.startswith("v"):
        raise ParseError(
            "Version string must not start with 'v' prefix",
            details={"version": version, "hint": "Use '1.0.0' instead of 'v1.0.0'"},
        )

    match = SEMVER_PATTERN.match(version)
    if not match:
        raise ParseError(
            f"Invalid semantic version: {version}",
            details={
                "version": version,
                "format": "MAJOR.MINOR.PATCH[-PRERELEASE][+BUILDMETADATA]",
                "examples": ["1.0.0", "1.2.3", "2.0.0-beta.1"],
            },
        )

    return Version(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        prerelease=match.group("prerelease"),
        buildmetadata=match.group("buildmetadata"),
    )


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two semantic versions.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Raises:
        ParseError: If either version is invalid.
    """
    p1 = parse_semantic_version(v1)
    p2 = parse_semantic_version(v2)

    if p1 < p2:
        return -1
    if p1 > p2:
        return 1
    return 0


def is_newer(remote: str | None, local: str | None) -> bool:
    """
    Decide whether the remote version is an update over the local one.

    A missing or blank local version means nothing is installed yet, which
    is lower than any version.

    Args:
        remote: Version offered by the release service.
        local: Installed version, or None/"" when nothing is installed.

    Returns:
        True if an update should be installed.

    Raises:
        ParseError: If the remote version, or a non-blank local version,
            is malformed.
    """
    remote_version = parse_semantic_version(remote or "")
    if local is None or not local.strip():
        return True
    return parse_semantic_version(local) < remote_version


def latest_version(versions: Iterable[str]) -> str | None:
    """
    Return the highest of a set of version strings.

    Args:
        versions: Version strings; all must be valid.

    Returns:
        The highest version string, or None for an empty input.

    Raises:
        ParseError: If any version is malformed.
    """
    best: tuple[Version, str] | None = None
    for text in versions:
        parsed = parse_semantic_version(text)
        if best is None or parsed > best[0]:
            best = (parsed, text)
    return best[1] if best else None
