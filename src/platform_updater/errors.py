"""
Error types for the platform updater.

This module defines the UpdaterError base class and one subclass per failure
category of the update engine. Every layer raises these instead of bare
exceptions or status codes, so the orchestrator can classify a failure and
report it without inspecting messages.
"""

from __future__ import annotations

from typing import Any


class UpdaterError(Exception):
    """
    Base exception class for update engine errors.

    Attributes:
        error_code: Internal error code string (e.g., "parse_error",
            "network_error", "rollback_error").
        message: Human-readable error message.
        details: Optional structured details (e.g., paths, versions, status).

    Example:
        >>> raise UpdaterError(
        ...     error_code="backup_error",
        ...     message="Source path is not a directory",
        ...     details={"path": "/var/www/cms"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdaterError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ParseError(UpdaterError):
    """Error raised when a version string is malformed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ParseError."""
        super().__init__(error_code="parse_error", message=message, details=details)


class NetworkError(UpdaterError):
    """
    Error raised for transport failures and non-2xx HTTP responses.

    Attributes:
        status_code: HTTP status code when the server answered, None for
            transport-level failures (DNS, TLS, timeout).
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        """Initialize a NetworkError."""
        super().__init__(error_code="network_error", message=message, details=details)
        self.status_code = status_code
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class AuthError(UpdaterError):
    """Error raised when the release service rejects the application token."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an AuthError."""
        super().__init__(error_code="auth_error", message=message, details=details)


class BackupError(UpdaterError):
    """Error raised when a directory or database backup cannot be created."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a BackupError."""
        super().__init__(error_code="backup_error", message=message, details=details)


class ExtractionError(UpdaterError):
    """Error raised when an update artifact cannot be unpacked."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ExtractionError."""
        super().__init__(
            error_code="extraction_error", message=message, details=details
        )


class FilesystemError(UpdaterError):
    """Error raised when a directory cannot be created or removed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FilesystemError."""
        super().__init__(
            error_code="filesystem_error", message=message, details=details
        )


class MigrationError(UpdaterError):
    """Error raised when the schema-migration tool exits with a failure."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a MigrationError."""
        super().__init__(
            error_code="migration_error", message=message, details=details
        )


class RollbackError(UpdaterError):
    """
    Error raised when restoring a component from its backup fails.

    This is the most severe outcome of a run: the component directory may be
    in an unknown state and only a human can recover it from the backups.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a RollbackError."""
        super().__init__(error_code="rollback_error", message=message, details=details)


class ConfigPersistError(UpdaterError):
    """Error raised when the persisted configuration cannot be written."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ConfigPersistError."""
        super().__init__(
            error_code="config_persist_error", message=message, details=details
        )


class LockError(UpdaterError):
    """Error raised when another update run already holds the run lock."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a LockError."""
        super().__init__(error_code="lock_error", message=message, details=details)


class InternalError(UpdaterError):
    """Unexpected failure inside an update attempt, wrapped with the step reached."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error_code="internal_error", message=message, details=details)
