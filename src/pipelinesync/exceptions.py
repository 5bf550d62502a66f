"""Custom exceptions for pipelinesync.

This module defines a hierarchy of exceptions used throughout pipelinesync.
All exceptions inherit from PipelineSyncError, making it easy to catch
all pipelinesync-related errors in one place.

Exception Hierarchy:
    PipelineSyncError (base)
    ├── ConfigError - Configuration loading/validation failures
    ├── InvalidInputError - Malformed command-line arguments
    ├── SecretUnavailableError - Key Vault lookup failures
    ├── DevOpsApiError - Azure DevOps REST failures
    └── UpdateFailureError - A batch update did not complete
"""

from typing import Any


class PipelineSyncError(Exception):
    """Base exception for all pipelinesync errors.

    Args:
        message: Human-readable error message.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigError(PipelineSyncError):
    """Raised when configuration loading or validation fails.

    Examples:
        - Invalid YAML syntax in .pipelinesync.yaml
        - Unknown or mistyped configuration keys
    """


class InvalidInputError(PipelineSyncError):
    """Raised when the command-line arguments cannot be parsed.

    The command-line entry point turns this into a usage message and
    exit status 1. Nothing below the entry point exits the process.
    """


class SecretUnavailableError(PipelineSyncError):
    """Raised when a secret cannot be read from the vault.

    Covers an unreachable vault, a managed identity without permission,
    and a secret name that does not exist. Callers do not distinguish them.

    Args:
        message: Human-readable error message.
        secret_name: Name of the secret that could not be resolved.
        details: Optional dictionary with additional error context.
    """

    def __init__(
        self,
        message: str,
        secret_name: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.secret_name = secret_name

    def __str__(self) -> str:
        base = f"[{self.secret_name}] {self.message}"
        if self.details:
            return f"{base} | Details: {self.details}"
        return base


class DevOpsApiError(PipelineSyncError):
    """Raised when an Azure DevOps REST call fails.

    Examples:
        - Authentication failure (401/203)
        - Unknown project or definition (404)
        - Network errors
    """


class UpdateFailureError(PipelineSyncError):
    """Raised when a batch update fails.

    Propagates out of the sync loop; restarting the process is the
    recovery path.
    """
