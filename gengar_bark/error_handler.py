# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Error handling utilities for the Slack surface.

This module converts MCP configuration errors and Slack API failures into
user-friendly messages with suggestions.
"""

from typing import Any, Dict, Optional

from slack_sdk.errors import SlackApiError

from gengar_bark.logging_config import get_logger, log_error_with_context
from gengar_bark.mcp.errors import (
    DuplicateServerNameError,
    MCPConfigurationError,
    NotFoundError,
    PersistenceError,
    UnsafeURLError,
    ValidationError,
)
from gengar_bark.models import SlackMessage
from gengar_bark.slack_api_client import SlackAPIRetryError
from gengar_bark.templates import ErrorTemplate


logger = get_logger(__name__)


class ErrorHandler:
    """
    Centralized error handler for the Slack surface.

    Converts exceptions into user-friendly Slack messages with
    troubleshooting suggestions.
    """

    def __init__(self):
        self.template = ErrorTemplate()

    def handle_configuration_error(
        self,
        error: MCPConfigurationError,
        context: Optional[Dict[str, Any]] = None
    ) -> SlackMessage:
        """
        Handle an MCP configuration error.

        The error message is already safe to show; this picks the
        matching template and logs at a level fitting the error.

        Args:
            error: Configuration error raised by the service
            context: Optional context for debugging

        Returns:
            SlackMessage with error details and suggestions
        """
        if isinstance(error, PersistenceError):
            log_error_with_context(
                logger, "MCP configuration storage error", error, context=context
            )
            return self.template.render(error_type="storage_error", message=error.message)

        logger.warning(
            "MCP configuration request rejected",
            extra={
                "error_type": type(error).__name__,
                "error_message": error.message,
                "context": context
            }
        )

        if isinstance(error, ValidationError):
            return self.template.render(error_type="validation_error", message=error.message)
        if isinstance(error, UnsafeURLError):
            return self.template.render(error_type="unsafe_url", message=error.message)
        if isinstance(error, DuplicateServerNameError):
            return self.template.render(error_type="duplicate_name", message=error.message)
        if isinstance(error, NotFoundError):
            return self.template.render(error_type="not_found", message=error.message)

        return self.template.render(error_type="unknown", message=error.message)

    def handle_slack_api_error(
        self,
        error: SlackAPIRetryError,
        context: Optional[Dict[str, Any]] = None
    ) -> SlackMessage:
        """
        Handle Slack API errors.

        Args:
            error: Slack API retry error
            context: Optional context for debugging

        Returns:
            SlackMessage with error details and suggestions
        """
        log_error_with_context(logger, "Slack API error", error, context=context)

        if isinstance(error.original_error, SlackApiError):
            error_code = error.slack_error

            if error_code in {"expired_trigger_id", "invalid_trigger_id"}:
                return self.template.render(
                    error_type="slack_error",
                    message="The request expired before the dialog could open.",
                    suggestion="Click the button again to retry."
                )

            if error_code == "hash_conflict":
                return self.template.render(
                    error_type="slack_error",
                    message="The dialog changed while it was being updated.",
                    suggestion="Close the dialog and open it again."
                )

            if error_code == "invalid_auth":
                return self.template.render(
                    error_type="slack_error",
                    message="Slack authentication token is invalid or expired.",
                    suggestion="Please reinstall Gengar Bark or contact your administrator."
                )

        return self.template.render(
            error_type="slack_error",
            message="Failed to communicate with Slack after multiple attempts."
        )

    def handle_generic_error(
        self,
        error: Exception,
        context: Optional[Dict[str, Any]] = None
    ) -> SlackMessage:
        """
        Handle unexpected errors.

        Args:
            error: Exception that occurred
            context: Optional context for debugging

        Returns:
            SlackMessage with a generic message (internal details are only logged)
        """
        log_error_with_context(logger, "Unexpected error", error, context=context)

        return self.template.render(
            error_type="unknown",
            message="An unexpected error occurred while processing your request."
        )

    def handle(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> SlackMessage:
        """Dispatch to the handler for the error's type."""
        if isinstance(error, MCPConfigurationError):
            return self.handle_configuration_error(error, context)
        if isinstance(error, SlackAPIRetryError):
            return self.handle_slack_api_error(error, context)
        return self.handle_generic_error(error, context)

    def get_command_help_message(self, invalid_command: Optional[str] = None) -> SlackMessage:
        """
        Generate help message for invalid commands.

        Args:
            invalid_command: The invalid subcommand that was entered

        Returns:
            SlackMessage with command help
        """
        if invalid_command:
            message = f"Unknown command: `{invalid_command}`"
        else:
            message = "Invalid command syntax."

        suggestion = (
            "Available commands:\n"
            "• `/mcp list`: show your MCP servers\n"
            "• `/mcp enable <name>`: enable a server\n"
            "• `/mcp disable <name>`: disable a server\n"
            "• `/mcp help`: show this help message"
        )

        return self.template.render(
            error_type="invalid_command",
            message=message,
            suggestion=suggestion
        )
