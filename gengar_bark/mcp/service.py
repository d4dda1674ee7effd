# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
MCP configuration service.

Owns the lifecycle of per-user MCP server configurations: validation, SSRF
checks, token encryption, case-insensitive name uniqueness, ownership
checks, and the verification state machine:

    unverified --ok--> verified
    any        --fail--> failed
    any edit to url / transport_type / auth_token --> unverified

Every public operation writes exactly one audit record, whether it
succeeds or fails.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Tuple
from urllib.parse import urlsplit

from gengar_bark.logging_config import get_logger
from gengar_bark.mcp.audit import AuditLogger
from gengar_bark.mcp.encryption import SecretCodec
from gengar_bark.mcp.errors import (
    DecryptionError,
    DuplicateServerNameError,
    NotFoundError,
    UnsafeURLError,
    ValidationError,
)
from gengar_bark.mcp.models import (
    ActiveServer,
    AuditOperation,
    AuditRecord,
    MCPConfigInput,
    MCPConfigPatch,
    MCPConfiguration,
    StoredConfiguration,
    TransportType,
    VerificationRequest,
    VerificationResult,
    VerificationStatus,
)
from gengar_bark.mcp.repository import ConfigurationRepository
from gengar_bark.mcp.url_safety import URLSafetyValidator
from gengar_bark.mcp.verifier import ConnectivityVerifier


logger = get_logger(__name__)

MAX_SERVER_NAME_LENGTH = 255
CONNECTIVITY_FIELDS = ("transport_type", "url", "auth_token_ciphertext")


def validate_server_name(value: Optional[str]) -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationError("Missing required fields: server_name", field="server_name")
    if len(name) > MAX_SERVER_NAME_LENGTH:
        raise ValidationError(
            f"Server name must be at most {MAX_SERVER_NAME_LENGTH} characters",
            field="server_name",
        )
    return name


def validate_transport_type(value: Optional[str]) -> TransportType:
    if isinstance(value, TransportType):
        return value
    try:
        return TransportType.parse(value or "")
    except ValueError as e:
        raise ValidationError(str(e), field="transport_type") from e


def validate_url_format(value: Optional[str]) -> str:
    """
    Check that a URL is absolute http(s). The SSRF policy is applied separately.

    Raises:
        ValidationError: If the URL is empty or malformed
    """
    url = (value or "").strip()
    if not url:
        raise ValidationError("Missing required fields: url", field="url")
    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise ValidationError(f"Invalid URL format: {url}", field="url") from e
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ValidationError(f"Invalid URL format: {url}", field="url")
    return url


def validate_config_input(config: MCPConfigInput) -> Tuple[str, TransportType, str]:
    """
    Validate create/verify input.

    Returns:
        Tuple of (server_name, transport_type, url), normalized

    Raises:
        ValidationError: Listing every missing field, or the first invalid one
    """
    missing = [
        field
        for field, value in (
            ("server_name", config.server_name),
            ("transport_type", config.transport_type),
            ("url", config.url),
        )
        if not (value or "").strip()
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            field=missing[0],
        )

    return (
        validate_server_name(config.server_name),
        validate_transport_type(config.transport_type),
        validate_url_format(config.url),
    )


def verification_fields(result: VerificationResult) -> dict:
    """Column updates that record a verification outcome."""
    if result.success:
        return {
            "verification_status": VerificationStatus.VERIFIED,
            "capabilities": result.capabilities,
            "verification_error": None,
        }
    return {
        "verification_status": VerificationStatus.FAILED,
        "verification_error": result.error or "Connection verification failed",
    }


class MCPConfigurationService:
    """
    CRUD and verification for users' MCP server configurations.

    All collaborators are injected; ``main`` builds one instance at start-up
    and hands it to the Slack handlers.
    """

    def __init__(
        self,
        repository: ConfigurationRepository,
        codec: SecretCodec,
        url_validator: URLSafetyValidator,
        verifier: ConnectivityVerifier,
        audit: Optional[AuditLogger] = None,
    ):
        """
        Initialize the service.

        Args:
            repository: Configuration storage
            codec: Auth token encryption
            url_validator: SSRF policy
            verifier: MCP handshake client
            audit: Audit sink (defaults to the structured audit logger)
        """
        self.repository = repository
        self.codec = codec
        self.url_validator = url_validator
        self.verifier = verifier
        self.audit = audit or AuditLogger()

    @asynccontextmanager
    async def _audited(
        self,
        user_id: str,
        operation: AuditOperation,
        configuration_id: Optional[str] = None,
        server_name: Optional[str] = None,
    ) -> AsyncIterator[AuditRecord]:
        record = AuditRecord(
            user_id=user_id,
            operation=operation,
            configuration_id=configuration_id,
            server_name=server_name,
        )
        started = time.perf_counter()
        try:
            yield record
        except Exception as e:
            record.success = False
            record.error = getattr(e, "message", None) or str(e) or type(e).__name__
            raise
        finally:
            record.metadata["execution_time_ms"] = round(
                (time.perf_counter() - started) * 1000, 2
            )
            self.audit.log_configuration_access(record)

    async def _check_url(self, user_id: Optional[str], url: str) -> None:
        result = await self.url_validator.validate(url)
        if not result.safe:
            reason = result.reason or "URL is not allowed"
            if user_id:
                self.audit.log_ssrf_block(user_id, url, reason)
            raise UnsafeURLError(url, reason)

    async def _load(self, user_id: str, config_id: str) -> StoredConfiguration:
        record = await self.repository.get(user_id, config_id)
        if record is None:
            raise NotFoundError()
        return record

    def _decrypt_token(self, record: StoredConfiguration) -> Optional[str]:
        """Decrypt a stored token; an unusable ciphertext is treated as absent."""
        if record.auth_token_ciphertext is None:
            return None
        try:
            return self.codec.decrypt(record.auth_token_ciphertext)
        except DecryptionError:
            logger.warning(
                "Stored auth token could not be decrypted",
                extra={"user_id": record.user_id, "configuration_id": record.id},
            )
            return None

    async def create_configuration(
        self, user_id: str, config: MCPConfigInput
    ) -> MCPConfiguration:
        """
        Create a configuration for a user.

        The new configuration is enabled and unverified; verification is a
        separate step.

        Args:
            user_id: Owning Slack user id
            config: Server name, transport type, URL and optional token

        Returns:
            Redacted configuration with its assigned id

        Raises:
            ValidationError: If input is malformed
            UnsafeURLError: If the URL violates the SSRF policy
            DuplicateServerNameError: If the user already has a server with this name
            PersistenceError: If storage fails
        """
        async with self._audited(
            user_id, AuditOperation.CREATE, server_name=config.server_name
        ) as audit:
            server_name, transport_type, url = validate_config_input(config)
            audit.server_name = server_name

            await self._check_url(user_id, url)

            if await self.repository.find_by_name(user_id, server_name) is not None:
                raise DuplicateServerNameError(server_name)

            record = StoredConfiguration(
                id=str(uuid.uuid4()),
                user_id=user_id,
                server_name=server_name,
                transport_type=transport_type,
                url=url,
                auth_token_ciphertext=(
                    self.codec.encrypt(config.auth_token) if config.auth_token else None
                ),
                enabled=True,
                verification_status=VerificationStatus.UNVERIFIED,
            )
            stored = await self.repository.insert(record)

            audit.configuration_id = stored.id
            audit.metadata["transport_type"] = transport_type.value
            audit.metadata["verification_status"] = stored.verification_status.value

            logger.info(
                "MCP configuration created",
                extra={
                    "user_id": user_id,
                    "configuration_id": stored.id,
                    "transport_type": transport_type.value,
                },
            )
            return stored.to_public()

    async def list_configurations(self, user_id: str) -> List[MCPConfiguration]:
        """All of a user's configurations, ordered by server name."""
        async with self._audited(user_id, AuditOperation.LIST) as audit:
            records = await self.repository.list_for_user(user_id)
            audit.metadata["count"] = len(records)
            return [record.to_public() for record in records]

    async def get_configuration(self, user_id: str, config_id: str) -> MCPConfiguration:
        """
        Fetch one configuration owned by the user.

        Raises:
            NotFoundError: If absent or owned by another user
        """
        async with self._audited(
            user_id, AuditOperation.READ, configuration_id=config_id
        ) as audit:
            record = await self._load(user_id, config_id)
            audit.server_name = record.server_name
            return record.to_public()

    async def find_by_server_name(self, user_id: str, server_name: str) -> MCPConfiguration:
        """
        Case-insensitive lookup of a user's configuration by name.

        Raises:
            NotFoundError: If the user has no server with that name
        """
        async with self._audited(
            user_id, AuditOperation.READ, server_name=server_name
        ) as audit:
            record = await self.repository.find_by_name(user_id, server_name)
            if record is None:
                raise NotFoundError()
            audit.configuration_id = record.id
            audit.server_name = record.server_name
            return record.to_public()

    async def update_configuration(
        self, user_id: str, config_id: str, patch: MCPConfigPatch
    ) -> MCPConfiguration:
        """
        Apply a partial update.

        Changing the URL, transport type or token resets the configuration to
        unverified and clears the stored capabilities and error. An empty
        ``auth_token`` clears the stored token.

        Raises:
            NotFoundError: If absent or owned by another user
            ValidationError: If a supplied field is malformed
            UnsafeURLError: If a new URL violates the SSRF policy
            DuplicateServerNameError: If the new name collides with another server
        """
        async with self._audited(
            user_id, AuditOperation.UPDATE, configuration_id=config_id
        ) as audit:
            existing = await self._load(user_id, config_id)
            audit.server_name = existing.server_name

            fields = {}

            if patch.server_name is not None:
                server_name = validate_server_name(patch.server_name)
                if server_name != existing.server_name:
                    other = await self.repository.find_by_name(user_id, server_name)
                    if other is not None and other.id != existing.id:
                        raise DuplicateServerNameError(server_name)
                    fields["server_name"] = server_name

            if patch.transport_type is not None:
                transport_type = validate_transport_type(patch.transport_type)
                if transport_type != existing.transport_type:
                    fields["transport_type"] = transport_type

            if patch.url is not None:
                url = validate_url_format(patch.url)
                if url != existing.url:
                    await self._check_url(user_id, url)
                    fields["url"] = url

            if patch.auth_token is not None:
                if patch.auth_token:
                    fields["auth_token_ciphertext"] = self.codec.encrypt(patch.auth_token)
                elif existing.auth_token_ciphertext is not None:
                    fields["auth_token_ciphertext"] = None

            verification_reset = any(field in fields for field in CONNECTIVITY_FIELDS)
            if verification_reset:
                fields["verification_status"] = VerificationStatus.UNVERIFIED
                fields["capabilities"] = None
                fields["verification_error"] = None

            updated = await self.repository.update(user_id, config_id, fields)
            if updated is None:
                raise NotFoundError()

            audit.server_name = updated.server_name
            audit.metadata["updated_fields"] = sorted(patch.model_dump(exclude_none=True))
            audit.metadata["verification_reset"] = verification_reset

            logger.info(
                "MCP configuration updated",
                extra={
                    "user_id": user_id,
                    "configuration_id": config_id,
                    "verification_reset": verification_reset,
                },
            )
            return updated.to_public()

    async def _set_enabled(
        self, user_id: str, config_id: str, enabled: bool
    ) -> MCPConfiguration:
        operation = AuditOperation.ENABLE if enabled else AuditOperation.DISABLE
        async with self._audited(user_id, operation, configuration_id=config_id) as audit:
            existing = await self._load(user_id, config_id)
            audit.server_name = existing.server_name

            if existing.enabled == enabled:
                audit.metadata["changed"] = False
                return existing.to_public()

            updated = await self.repository.update(user_id, config_id, {"enabled": enabled})
            if updated is None:
                raise NotFoundError()
            audit.metadata["changed"] = True
            return updated.to_public()

    async def enable_configuration(self, user_id: str, config_id: str) -> MCPConfiguration:
        """Enable a configuration. Enabling an enabled configuration is a no-op."""
        return await self._set_enabled(user_id, config_id, True)

    async def disable_configuration(self, user_id: str, config_id: str) -> MCPConfiguration:
        """Disable a configuration. Disabling a disabled configuration is a no-op."""
        return await self._set_enabled(user_id, config_id, False)

    async def delete_configuration(self, user_id: str, config_id: str) -> None:
        """
        Permanently delete a configuration.

        Raises:
            NotFoundError: If absent or owned by another user
        """
        async with self._audited(
            user_id, AuditOperation.DELETE, configuration_id=config_id
        ) as audit:
            existing = await self._load(user_id, config_id)
            audit.server_name = existing.server_name

            if not await self.repository.delete(user_id, config_id):
                raise NotFoundError()

            logger.info(
                "MCP configuration deleted",
                extra={"user_id": user_id, "configuration_id": config_id},
            )

    async def _verify_live(
        self, user_id: Optional[str], request: VerificationRequest
    ) -> VerificationResult:
        try:
            await self._check_url(user_id, request.url)
        except UnsafeURLError as e:
            return VerificationResult.failed(e.message)
        return await self.verifier.verify(request)

    async def verify_connection(
        self, config: MCPConfigInput, user_id: Optional[str] = None
    ) -> VerificationResult:
        """
        Test connectivity with live values; nothing needs to be stored.

        The URL is checked against the SSRF policy first. Invalid input and
        unsafe URLs come back as failed results rather than exceptions.

        Args:
            config: Connection parameters to test
            user_id: Requesting user, when known (used for audit records)

        Returns:
            VerificationResult
        """
        async with self._audited(
            user_id or "unknown", AuditOperation.VERIFY, server_name=config.server_name
        ) as audit:
            try:
                server_name, transport_type, url = validate_config_input(config)
            except ValidationError as e:
                result = VerificationResult.failed(e.message)
            else:
                result = await self._verify_live(
                    user_id,
                    VerificationRequest(
                        server_name=server_name,
                        transport_type=transport_type,
                        url=url,
                        auth_token=config.auth_token or None,
                    ),
                )
            audit.metadata["verification_success"] = result.success
            return result

    def _matches_request(
        self, record: StoredConfiguration, request: VerificationRequest
    ) -> bool:
        return (
            record.url == request.url
            and record.transport_type == request.transport_type
            and self._decrypt_token(record) == (request.auth_token or None)
        )

    async def record_verification(
        self,
        user_id: str,
        config_id: str,
        result: VerificationResult,
        request: Optional[VerificationRequest] = None,
    ) -> MCPConfiguration:
        """
        Store a verification outcome on a configuration.

        Only the verification fields are written. When ``request`` is given
        and the stored connection settings no longer match it, the result is
        stale and is discarded.

        Raises:
            NotFoundError: If absent or owned by another user
        """
        async with self._audited(
            user_id, AuditOperation.UPDATE, configuration_id=config_id
        ) as audit:
            existing = await self._load(user_id, config_id)
            audit.server_name = existing.server_name

            if request is not None and not self._matches_request(existing, request):
                logger.info(
                    "Discarding stale verification result",
                    extra={"user_id": user_id, "configuration_id": config_id},
                )
                audit.metadata["stale_result"] = True
                return existing.to_public()

            fields = verification_fields(result)

            updated = await self.repository.update(user_id, config_id, fields)
            if updated is None:
                raise NotFoundError()

            audit.metadata["verification_status"] = updated.verification_status.value
            return updated.to_public()

    async def verify_configuration(
        self, user_id: str, config_id: str
    ) -> Tuple[MCPConfiguration, VerificationResult]:
        """
        Re-verify a stored configuration and record the outcome.

        Returns:
            Tuple of (updated configuration, verification result)

        Raises:
            NotFoundError: If absent or owned by another user
        """
        async with self._audited(
            user_id, AuditOperation.VERIFY, configuration_id=config_id
        ) as audit:
            existing = await self._load(user_id, config_id)
            audit.server_name = existing.server_name

            request = VerificationRequest(
                server_name=existing.server_name,
                transport_type=existing.transport_type,
                url=existing.url,
                auth_token=self._decrypt_token(existing),
            )
            result = await self._verify_live(user_id, request)
            audit.metadata["verification_success"] = result.success

            # The configuration may have been edited during the handshake
            current = await self._load(user_id, config_id)
            if not self._matches_request(current, request):
                logger.info(
                    "Discarding stale verification result",
                    extra={"user_id": user_id, "configuration_id": config_id},
                )
                audit.metadata["stale_result"] = True
                return current.to_public(), result

            fields = verification_fields(result)
            updated = await self.repository.update(user_id, config_id, fields)
            if updated is None:
                raise NotFoundError()

            return updated.to_public(), result

    async def get_enabled_configurations(self, user_id: str) -> List[MCPConfiguration]:
        """Enabled configurations only, redacted."""
        async with self._audited(user_id, AuditOperation.LIST) as audit:
            records = await self.repository.list_for_user(user_id, enabled_only=True)
            audit.metadata["count"] = len(records)
            audit.metadata["enabled_only"] = True
            return [record.to_public() for record in records]

    async def get_active_servers(self, user_id: str) -> List[ActiveServer]:
        """
        Enabled servers with decrypted tokens, for the assistant's MCP clients.

        A token that cannot be decrypted is omitted rather than failing the
        whole listing.
        """
        async with self._audited(user_id, AuditOperation.LIST) as audit:
            records = await self.repository.list_for_user(user_id, enabled_only=True)
            audit.metadata["count"] = len(records)
            audit.metadata["active_servers"] = True
            return [
                ActiveServer(
                    id=record.id,
                    server_name=record.server_name,
                    transport_type=record.transport_type,
                    url=record.url,
                    auth_token=self._decrypt_token(record),
                    verification_status=record.verification_status,
                )
                for record in records
            ]
