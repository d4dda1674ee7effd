# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Data models for MCP server configurations.

Defines the persisted configuration record, the redacted read model handed
to the presentation layer, and the value objects exchanged with the URL
safety validator and the connectivity verifier. All models use Pydantic v2.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


AUTH_TOKEN_PLACEHOLDER = "********"


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class TransportType(str, Enum):
    """Wire protocol used to reach an MCP server."""

    SSE = "sse"
    WEBSOCKET = "websocket"
    STREAMABLE_HTTP = "streamablehttp"

    @property
    def label(self) -> str:
        return TRANSPORT_LABELS[self]

    @classmethod
    def parse(cls, value: str) -> "TransportType":
        """
        Parse a transport identifier, case-insensitively.

        Raises:
            ValueError: If the value is not a known transport
        """
        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(
            f"Invalid transport type: {value}. "
            f"Must be one of: {', '.join(m.value for m in cls)}"
        )


TRANSPORT_LABELS = {
    TransportType.STREAMABLE_HTTP: "Streamable HTTP Requests",
    TransportType.SSE: "SSE (Server-Sent Events)",
    TransportType.WEBSOCKET: "WebSocket",
}


class VerificationStatus(str, Enum):
    """Outcome of the most recent connectivity check."""

    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    FAILED = "failed"


class AuditOperation(str, Enum):
    """Operations recorded in the configuration audit trail."""

    CREATE = "create"
    READ = "read"
    LIST = "list"
    UPDATE = "update"
    ENABLE = "enable"
    DISABLE = "disable"
    DELETE = "delete"
    VERIFY = "verify"


class MCPConfiguration(BaseModel):
    """
    Redacted view of a user's MCP server configuration.

    This is what listing and read operations return. The auth token is
    never included; ``has_auth_token`` tells the UI whether one is stored.
    """
    model_config = ConfigDict(frozen=False)

    id: str = Field(..., description="Configuration id (UUID)")
    user_id: str = Field(..., description="Owning Slack user id")
    server_name: str = Field(..., min_length=1, max_length=255)
    transport_type: TransportType
    url: str
    has_auth_token: bool = False
    enabled: bool = True
    capabilities: Optional[Dict[str, Any]] = None
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    verification_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def auth_token_placeholder(self) -> str:
        """Value shown in the edit form's token field."""
        return AUTH_TOKEN_PLACEHOLDER if self.has_auth_token else ""


class StoredConfiguration(BaseModel):
    """
    Configuration row as held by a repository.

    Carries the token ciphertext and must never leave the configuration
    service; use ``to_public()`` for anything user-facing.
    """
    model_config = ConfigDict(frozen=False)

    id: str
    user_id: str
    server_name: str
    transport_type: TransportType
    url: str
    auth_token_ciphertext: Optional[str] = None
    enabled: bool = True
    capabilities: Optional[Dict[str, Any]] = None
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    verification_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_public(self) -> MCPConfiguration:
        data = self.model_dump(exclude={"auth_token_ciphertext"})
        return MCPConfiguration(
            **data,
            has_auth_token=self.auth_token_ciphertext is not None,
        )


class MCPConfigInput(BaseModel):
    """Raw input for creating a configuration or testing a connection."""

    server_name: str = ""
    transport_type: str = ""
    url: str = ""
    auth_token: Optional[str] = None


class MCPConfigPatch(BaseModel):
    """
    Partial update of a configuration.

    ``None`` means "leave unchanged". For ``auth_token`` an empty string
    clears the stored token.
    """

    server_name: Optional[str] = None
    transport_type: Optional[str] = None
    url: Optional[str] = None
    auth_token: Optional[str] = None


class VerificationRequest(BaseModel):
    """Live connection parameters handed to the connectivity verifier."""

    server_name: str
    transport_type: TransportType
    url: str
    auth_token: Optional[str] = None


class VerificationResult(BaseModel):
    """Outcome of an MCP ``initialize`` handshake."""

    success: bool
    capabilities: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "VerificationResult":
        return cls(success=False, error=error)


class URLValidationResult(BaseModel):
    """Outcome of the SSRF policy check."""

    safe: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "URLValidationResult":
        return cls(safe=True)

    @classmethod
    def unsafe(cls, reason: str) -> "URLValidationResult":
        return cls(safe=False, reason=reason)


class AuditRecord(BaseModel):
    """One entry of the configuration audit trail."""

    timestamp: datetime = Field(default_factory=utcnow)
    user_id: str
    operation: AuditOperation
    configuration_id: Optional[str] = None
    server_name: Optional[str] = None
    success: bool = True
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ActiveServer(BaseModel):
    """Enabled server with its decrypted token, ready for a transport client."""

    id: str
    server_name: str
    transport_type: TransportType
    url: str
    auth_token: Optional[str] = None
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
