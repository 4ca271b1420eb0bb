"""Tests for error handling system."""

from unittest.mock import patch

import click
from click.testing import CliRunner

from strongbox.utils.errors import (
    CapacityError,
    ConfigurationError,
    ErrorHandler,
    IntegrityError,
    NotFoundError,
    StrongboxError,
    TransferError,
    create_error_suggestions,
    format_validation_errors,
)


class TestStrongboxError:
    """Test custom error classes."""

    def test_strongbox_error_basic(self):
        """Test basic StrongboxError functionality."""
        error = StrongboxError("Test error message")

        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.details is None
        assert error.suggestions == []

    def test_strongbox_error_with_details(self):
        """Test StrongboxError with details and suggestions."""
        suggestions = ["Try this", "Or try that"]
        error = StrongboxError("Test error", details="Detailed explanation", suggestions=suggestions)

        assert error.message == "Test error"
        assert error.details == "Detailed explanation"
        assert error.suggestions == suggestions

    def test_specific_error_types(self):
        """Test specific error type inheritance."""
        for error_type in (ConfigurationError, NotFoundError, CapacityError, IntegrityError, TransferError):
            assert isinstance(error_type("boom"), StrongboxError)


class TestErrorHandler:
    """Test error handler functionality."""

    def setup_method(self):
        """Setup test environment."""
        self.handler = ErrorHandler(verbose=False)
        self.verbose_handler = ErrorHandler(verbose=True)

    def test_handle_strongbox_error(self):
        """Test handling Strongbox-specific errors."""
        error = StrongboxError(
            "Test error message",
            details="Error details",
            suggestions=["Suggestion 1", "Suggestion 2"],
        )

        with patch("click.echo") as mock_echo:
            self.handler.handle_error(error, "Test context")

            # Error, context, details, header and two suggestions
            assert mock_echo.call_count == 6

            error_calls = [call for call in mock_echo.call_args_list if "✗" in str(call)]
            assert len(error_calls) == 1

    def test_handle_generic_error_file_not_found(self):
        """Test handling FileNotFoundError."""
        error = FileNotFoundError("test.txt not found")

        with patch("click.echo") as mock_echo:
            self.handler.handle_error(error)

            assert mock_echo.called
            error_message = str(mock_echo.call_args_list[0])
            assert "File not found" in error_message

    def test_handle_generic_error_permission_denied(self):
        """Test handling PermissionError."""
        error = PermissionError("Permission denied for file")

        with patch("click.echo") as mock_echo:
            self.handler.handle_error(error)

            error_message = str(mock_echo.call_args_list[0])
            assert "Permission denied" in error_message

    def test_describe_unknown_error(self):
        """Unknown exceptions are shown with their type name and no suggestions."""
        message, details, suggestions = self.handler.describe(KeyError("missing"))

        assert message.startswith("KeyError")
        assert details is None
        assert suggestions == []

    def test_handle_error_with_verbose(self):
        """Test error handling with verbose output."""
        error = StrongboxError("Test error")

        with patch("click.echo"):
            with patch("traceback.print_exc") as mock_traceback:
                self.verbose_handler.handle_error(error)

                mock_traceback.assert_called_once()

    def test_exit_with_error(self):
        """Test exit_with_error functionality."""
        error = StrongboxError("Fatal error")

        with patch("click.echo"):
            with patch("sys.exit") as mock_exit:
                self.handler.exit_with_error(error, exit_code=2)

                mock_exit.assert_called_once_with(2)


class TestErrorUtilities:
    """Test error utility functions."""

    def test_create_error_suggestions_invalid_key(self):
        suggestions = create_error_suggestions("invalid_key")

        assert any("keys generate" in suggestion for suggestion in suggestions)

    def test_create_error_suggestions_restore_capacity(self):
        """The configured limit is mentioned in the suggestion."""
        suggestions = create_error_suggestions("restore_capacity", limit=3)

        assert any("currently 3" in suggestion for suggestion in suggestions)

    def test_create_error_suggestions_unknown(self):
        """Test suggestions for unknown error type."""
        suggestions = create_error_suggestions("unknown_error_type")

        assert suggestions == []

    def test_format_validation_errors_single(self):
        """Test formatting single validation error."""
        result = format_validation_errors(["Field 'name' is required"])

        assert "Validation error:" in result
        assert "Field 'name' is required" in result

    def test_format_validation_errors_multiple(self):
        """Test formatting multiple validation errors."""
        errors = [
            "Field 'name' is required",
            "Field 'version' must be a string",
            "Invalid key format",
        ]

        result = format_validation_errors(errors)

        assert "Validation errors:" in result
        assert "1." in result
        assert "2." in result
        assert "3." in result

    def test_format_validation_errors_empty(self):
        """Test formatting empty validation errors."""
        assert format_validation_errors([]) == "No validation errors"


class TestClickIntegration:
    """Test error handling integration with Click commands."""

    def test_cli_error_handling(self):
        """Errors routed through the handler exit non-zero with the message on stderr."""

        @click.command()
        def test_command():
            ErrorHandler().exit_with_error(ConfigurationError("Test config error"), "Loading config")

        runner = CliRunner()
        result = runner.invoke(test_command)

        assert result.exit_code == 1
        assert "Test config error" in result.output
