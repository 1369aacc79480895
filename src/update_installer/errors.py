"""
Error types for the update installer.

This module defines the UpdateError base class and the subclasses raised by
each installer component. Callers branch on the exception class or on
``error_code``; the CLI maps any UpdateError that escapes an attempt to a
non-zero exit status.

Error categories:
- Package validation (package_not_found, manifest_missing, manifest_invalid):
  raised before any mutation of the managed root.
- Deployment (deployment_failed, source_missing): raised while copying files,
  pointers are left untouched.
- Storage (storage_error): a pointer file could not be written.
- Concurrency (update_in_progress): another attempt holds the root lock.
"""

from __future__ import annotations

from typing import Any


class UpdateError(Exception):
    """
    Base exception class for installer errors.

    Attributes:
        error_code: Internal error code string (e.g., "manifest_invalid",
            "deployment_failed", "update_in_progress").
        message: Human-readable error message.
        details: Optional structured details (e.g., paths, versions).

    Example:
        >>> raise UpdateError(
        ...     error_code="manifest_invalid",
        ...     message="Invalid manifest: version missing.",
        ...     details={"manifest": "/tmp/pkg/manifest.json"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdateError.

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


class InvalidArgumentError(UpdateError):
    """
    Error raised for invalid input or an illegal state machine transition.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


# =============================================================================
# Package validation errors
# =============================================================================


class PackageValidationError(UpdateError):
    """
    Base class for errors raised while validating an update package.

    No file under the managed root has been touched when one of these is
    raised, so the attempt is always safe to retry after fixing the package.
    """


class PackageNotFoundError(PackageValidationError):
    """Error raised when the package path is not a directory."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a PackageNotFoundError."""
        super().__init__(
            error_code="package_not_found", message=message, details=details
        )


class ManifestMissingError(PackageValidationError):
    """Error raised when the package has no manifest file."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ManifestMissingError."""
        super().__init__(
            error_code="manifest_missing", message=message, details=details
        )


class ManifestInvalidError(PackageValidationError):
    """Error raised when the manifest cannot be parsed or has no usable version."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ManifestInvalidError."""
        super().__init__(
            error_code="manifest_invalid", message=message, details=details
        )


# =============================================================================
# Deployment and storage errors
# =============================================================================


class DeploymentError(UpdateError):
    """
    Error raised when a package's file tree cannot be deployed.

    Pointers are never advanced after a DeploymentError.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        error_code: str = "deployment_failed",
    ) -> None:
        """Initialize a DeploymentError."""
        super().__init__(error_code=error_code, message=message, details=details)


class SourceMissingError(DeploymentError):
    """Error raised when the package's files/ directory does not exist."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a SourceMissingError."""
        super().__init__(message, details, error_code="source_missing")


class VersionStoreError(UpdateError):
    """Error raised when a version pointer file cannot be written."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a VersionStoreError."""
        super().__init__(error_code="storage_error", message=message, details=details)


class UpdateLockedError(UpdateError):
    """Error raised when another attempt already holds the managed root."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UpdateLockedError."""
        super().__init__(
            error_code="update_in_progress", message=message, details=details
        )
