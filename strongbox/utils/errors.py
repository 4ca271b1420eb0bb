"""Error handling utilities for Strongbox."""

import sys
import traceback
from typing import List, Optional, Tuple

import click


class StrongboxError(Exception):
    """Base exception for Strongbox errors."""

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        suggestions: Optional[list] = None,
    ):
        self.message = message
        self.details = details
        self.suggestions = suggestions or []
        super().__init__(message)


class ConfigurationError(StrongboxError):
    """Raised when configuration is invalid, missing, or a feature is disabled."""

    pass


class NotFoundError(StrongboxError):
    """Raised when a backup or stored object does not exist."""

    pass


class CapacityError(StrongboxError):
    """Raised when the concurrent restore limit has been reached."""

    pass


class IntegrityError(StrongboxError):
    """Raised when an authentication tag or checksum does not verify."""

    pass


class TransferError(StrongboxError):
    """Raised when a storage transfer fails."""

    pass


class ExtractionError(StrongboxError):
    """Raised when an archive cannot be created or extracted."""

    pass


class ValidationError(StrongboxError):
    """Raised when a manifest or payload is structurally invalid."""

    pass


class SourceError(StrongboxError):
    """Raised when a backup data source cannot be collected."""

    pass


# Generic exceptions mapped to (label, suggestions); first isinstance match wins
GENERIC_ERRORS = [
    (
        FileNotFoundError,
        "File not found",
        ["Check that the path is correct", "Ensure the file exists and is readable"],
    ),
    (
        PermissionError,
        "Permission denied",
        ["Check file/directory permissions", "Run as a user that can read the backup sources"],
    ),
    (
        ConnectionError,
        "Connection failed",
        ["Verify that the storage backend is reachable"],
    ),
]


class ErrorHandler:
    """Handles and formats errors for user-friendly display."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def describe(self, error: Exception) -> Tuple[str, Optional[str], List[str]]:
        """Return (message, details, suggestions) for any exception."""
        if isinstance(error, StrongboxError):
            return error.message, error.details, list(error.suggestions)

        for error_type, label, suggestions in GENERIC_ERRORS:
            if isinstance(error, error_type):
                return f"{label}: {error}", None, list(suggestions)

        return f"{type(error).__name__}: {error}", None, []

    def handle_error(self, error: Exception, context: Optional[str] = None) -> None:
        """
        Print an error with its context, details and suggestions to stderr.

        Args:
            error: Exception to handle
            context: Optional description of the operation that failed
        """
        message, details, suggestions = self.describe(error)

        click.echo(f"✗ {message}", err=True)
        if context:
            click.echo(f"Context: {context}", err=True)
        if details:
            click.echo(f"Details: {details}", err=True)
        if suggestions:
            click.echo("\nSuggestions:", err=True)
            for suggestion in suggestions:
                click.echo(f"  • {suggestion}", err=True)

        if self.verbose:
            click.echo("\nFull traceback:", err=True)
            traceback.print_exc()

    def exit_with_error(self, error: Exception, context: Optional[str] = None, exit_code: int = 1) -> None:
        """Handle error and exit with specified code."""
        self.handle_error(error, context)
        sys.exit(exit_code)


def create_error_suggestions(error_type: str, **kwargs) -> list:
    """
    Create contextual error suggestions based on error type and context.

    Args:
        error_type: Type of error
        **kwargs: Additional context information

    Returns:
        list: List of suggestion strings
    """
    suggestions = {
        "invalid_key": [
            "Provide a 256-bit key as 64 hex characters or base64",
            "Run 'strongbox keys generate' to create a new key",
            "Use encryption.passphrase with encryption.salt to derive a key instead",
        ],
        "backup_system_disabled": [
            "Set restore.enabled to true in strongbox.yml",
            "Or export ENABLE_BACKUP_SYSTEM=true",
        ],
        "restore_capacity": [
            "Wait for a running restore to finish",
            f"Raise restore.max_concurrent_restores (currently {kwargs.get('limit', 'unset')})",
        ],
        "backup_not_found": [
            "Run 'strongbox restore list' to see available backups",
            "Check that the backup id is the full object key",
        ],
        "configuration_invalid": [
            "Check YAML syntax in configuration file",
            "Verify all required fields are present",
            "Validate configuration values are correct",
        ],
    }

    return suggestions.get(error_type, [])


def format_validation_errors(errors: list) -> str:
    """
    Format validation errors for display.

    Args:
        errors: List of validation error messages

    Returns:
        str: Formatted error message
    """
    if not errors:
        return "No validation errors"

    if len(errors) == 1:
        return f"Validation error: {errors[0]}"

    formatted = "Validation errors:\n"
    for i, error in enumerate(errors, 1):
        formatted += f"  {i}. {error}\n"

    return formatted.strip()
