# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Error types for MCP server configuration management.

Every error carries a ``message`` that is safe to show to the Slack user.
Verification failures are not errors: they are returned as
``VerificationResult`` values.
"""

from typing import Optional


class MCPConfigurationError(Exception):
    """Base class for MCP configuration errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MCPConfigurationError):
    """
    Malformed configuration input.

    Raised before any side effect takes place. ``field`` names the input
    that failed (``server_name``, ``transport_type``, ``url``, ...) so the
    modal can attach the error to the right block.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnsafeURLError(MCPConfigurationError):
    """URL rejected by the SSRF policy."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"URL validation failed: {reason}")
        self.url = url
        self.reason = reason


class DuplicateServerNameError(MCPConfigurationError):
    """A configuration with the same server name already exists for the user."""

    def __init__(self, server_name: str):
        super().__init__(
            f'An MCP server named "{server_name}" already exists. '
            "Please choose a different name."
        )
        self.server_name = server_name


class NotFoundError(MCPConfigurationError):
    """
    Configuration does not exist or belongs to another user.

    The message is identical in both cases so that callers cannot discover
    other users' configuration ids.
    """

    def __init__(self, message: str = "MCP server configuration not found"):
        super().__init__(message)


class DecryptionError(MCPConfigurationError):
    """Stored ciphertext could not be decrypted with the current key."""

    def __init__(self, message: str = "Failed to decrypt auth token"):
        super().__init__(message)


class PersistenceError(MCPConfigurationError):
    """The configuration store could not complete a database operation."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        super().__init__(f"Failed to {operation} MCP server configuration")
        self.operation = operation
        self.cause = cause
