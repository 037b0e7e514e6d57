"""
Communication with the release service.

This module implements RemoteStateSync:
- Fetching the authoritative instance manifest at the start of a run
- Reporting settings (installed versions, the active flag) back upstream

A manifest fetch failure aborts the run before any component is touched.
A commit failure never undoes a local update; the caller logs it and moves
on, because the local state is already correct and only the remote's
knowledge of it lags.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from platform_updater.errors import AuthError, NetworkError
from platform_updater.logging import get_logger
from platform_updater.updates.version import latest_version

logger = get_logger(__name__)

DEFAULT_API_TIMEOUT = 30.0
INSTANCES_ENDPOINT = "instances"
SETTINGS_ENDPOINT = "instances/settings"

_AUTH_HINTS = ("token", "auth", "unauthori", "forbidden")


# =============================================================================
# Manifest Models
# =============================================================================


class CoreRelease(BaseModel):
    """A core version offered by the release service."""

    version: str
    release_date: str | None = None
    upgrade_link: str | None = None


class ModuleRelease(BaseModel):
    """A module version offered by the release service."""

    version: str
    upgrade_link: str | None = None


class ModuleManifest(BaseModel):
    """All versions of one module offered by the release service."""

    name: str
    versions: list[ModuleRelease] = Field(default_factory=list)

    def latest(self) -> ModuleRelease | None:
        """Return the highest version offered for this module."""
        newest = latest_version(release.version for release in self.versions)
        if newest is None:
            return None
        return next(r for r in self.versions if r.version == newest)


class RemoteManifest(BaseModel):
    """
    The instance manifest returned by the release service.

    Attributes:
        active: Remote mirror of the kill-switch.
        core_versions: Core versions available to this instance.
        modules: Module versions available to this instance.
        module_versions: Comma-separated module summary as sent by the service.
    """

    active: bool = True
    core_versions: list[CoreRelease] = Field(default_factory=list)
    modules: list[ModuleManifest] = Field(default_factory=list)
    module_versions: str | None = None

    @field_validator("active", mode="before")
    @classmethod
    def coerce_active(cls, v: Any) -> Any:
        """Accept the string flags some service versions send."""
        if isinstance(v, str):
            return v.strip().lower() in ("true", "1", "yes")
        return v

    def latest_core(self) -> CoreRelease | None:
        """Return the highest core version offered."""
        newest = latest_version(release.version for release in self.core_versions)
        if newest is None:
            return None
        return next(r for r in self.core_versions if r.version == newest)

    def module(self, name: str) -> ModuleManifest | None:
        """Return the manifest entry for a module, if the service knows it."""
        for entry in self.modules:
            if entry.name == name:
                return entry
        return None


def _is_error_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "")
    return bool(value)


# =============================================================================
# Remote State Sync
# =============================================================================


class RemoteStateSync:
    """
    Client for the release service's instance endpoints.

    Attributes:
        api_url: Base URL of the release service (with trailing slash).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = DEFAULT_API_TIMEOUT,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the RemoteStateSync.

        Args:
            api_url: Base URL of the release service.
            timeout: Request timeout in seconds.
            client: Optional preconfigured httpx client (used by tests).
        """
        self.api_url = api_url if api_url.endswith("/") else f"{api_url}/"
        self.timeout = timeout
        self._client = client

    def _post(
        self, endpoint: str, auth_token: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        url = f"{self.api_url}{endpoint}"
        headers = {"Authorization": f"Bearer {auth_token}"}
        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NetworkError(
                f"Release service unreachable: {e}",
                details={"url": url, "error": str(e)},
            ) from e
        finally:
            if self._client is None:
                client.close()

        if response.status_code in (401, 403):
            raise AuthError(
                "Release service rejected the application token",
                details={"url": url, "status_code": response.status_code},
            )
        if not response.is_success:
            raise NetworkError(
                f"Release service returned HTTP {response.status_code}",
                details={"url": url},
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError(
                "Release service returned an invalid response",
                details={"url": url, "error": str(e)},
            ) from e
        if not isinstance(body, dict):
            raise NetworkError(
                "Release service returned an unexpected response",
                details={"url": url},
            )

        if _is_error_flag(body.get("error", False)):
            message = str(body.get("message") or "unknown error")
            if any(hint in message.lower() for hint in _AUTH_HINTS):
                raise AuthError(
                    f"The request returned an error: {message}",
                    details={"url": url},
                )
            raise NetworkError(
                f"The request returned an error: {message}",
                details={"url": url},
            )

        return body

    def fetch_manifest(self, auth_token: str) -> RemoteManifest:
        """
        Fetch the authoritative manifest for this instance.

        Args:
            auth_token: Application token.

        Returns:
            The instance's RemoteManifest.

        Raises:
            AuthError: If the token is rejected.
            NetworkError: On transport failure, non-2xx status, an error flag
                in the body, or a malformed manifest.
        """
        body = self._post(INSTANCES_ENDPOINT, auth_token, {"token": auth_token})

        instance = body.get("instance")
        if not isinstance(instance, dict):
            raise NetworkError(
                "Manifest response has no instance information",
                details={"keys": sorted(body)},
            )

        try:
            manifest = RemoteManifest(**instance)
        except ValidationError as e:
            raise NetworkError(
                f"Malformed instance manifest: {e.error_count()} error(s)",
                details={"errors": e.errors(include_url=False)},
            ) from e

        logger.info(
            "Fetched instance manifest",
            extra={
                "active": manifest.active,
                "core_versions": [r.version for r in manifest.core_versions],
                "remote_modules": [m.name for m in manifest.modules],
            },
        )
        return manifest

    def commit(self, setting: str, value: Any, auth_token: str) -> bool:
        """
        Report a setting (e.g. a component's new version) upstream.

        Best-effort: a failure is logged and reported through the return
        value, never raised. The local state is already correct at this
        point; only the service's knowledge of it lags.

        Args:
            setting: Setting name, e.g. "core_version" or "active".
            value: New value.
            auth_token: Application token.

        Returns:
            True if the service accepted the setting.
        """
        try:
            self._post(
                SETTINGS_ENDPOINT,
                auth_token,
                {"token": auth_token, "setting": setting, "value": value},
            )
        except (AuthError, NetworkError) as e:
            logger.warning(
                "Failed to report setting to release service",
                extra={"setting": setting, "value": value, "error": e.message},
            )
            return False

        logger.info(
            "Reported setting to release service",
            extra={"setting": setting, "value": value},
        )
        return True
