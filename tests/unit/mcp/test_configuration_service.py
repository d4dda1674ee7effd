# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Unit tests for MCPConfigurationService.

Uses the in-memory repository, a fixed DNS resolver and a scripted
verifier, so no database or network is required.
"""

import pytest

from gengar_bark.mcp.audit import AuditLogger
from gengar_bark.mcp.encryption import SecretCodec
from gengar_bark.mcp.errors import (
    DuplicateServerNameError,
    NotFoundError,
    UnsafeURLError,
    ValidationError,
)
from gengar_bark.mcp.models import (
    AuditOperation,
    MCPConfigInput,
    MCPConfigPatch,
    TransportType,
    VerificationRequest,
    VerificationResult,
    VerificationStatus,
)
from gengar_bark.mcp.repository import InMemoryConfigurationRepository
from gengar_bark.mcp.service import MCPConfigurationService
from gengar_bark.mcp.url_safety import URLSafetyValidator


USER = "U0001"
OTHER_USER = "U0002"


async def public_resolver(host, port):
    if host.endswith("internal-dns.example.com"):
        return ["10.1.2.3"]
    return ["93.184.216.34"]


class ScriptedVerifier:
    """Returns a preset result and records every request."""

    def __init__(self, result=None):
        self.result = result or VerificationResult(success=True, capabilities={"tools": 3})
        self.requests = []

    async def verify(self, request):
        self.requests.append(request)
        return self.result


class RecordingAudit(AuditLogger):

    def __init__(self):
        super().__init__()
        self.records = []
        self.ssrf_blocks = []

    def log_configuration_access(self, record):
        self.records.append(record)

    def log_ssrf_block(self, user_id, url, reason):
        self.ssrf_blocks.append((user_id, url, reason))


@pytest.fixture
def repository():
    return InMemoryConfigurationRepository()


@pytest.fixture
def verifier():
    return ScriptedVerifier()


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def codec():
    return SecretCodec("0123456789abcdef0123456789abcdef")


@pytest.fixture
def service(repository, codec, verifier, audit):
    return MCPConfigurationService(
        repository=repository,
        codec=codec,
        url_validator=URLSafetyValidator(resolver=public_resolver),
        verifier=verifier,
        audit=audit,
    )


def github_input(**overrides):
    data = {
        "server_name": "github",
        "transport_type": "sse",
        "url": "https://api.github.com/mcp",
        "auth_token": "tok123",
    }
    data.update(overrides)
    return MCPConfigInput(**data)


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_then_get(self, service):
        created = await service.create_configuration(USER, github_input())
        fetched = await service.get_configuration(USER, created.id)

        assert fetched.server_name == "github"
        assert fetched.transport_type == TransportType.SSE
        assert fetched.url == "https://api.github.com/mcp"
        assert fetched.enabled is True
        assert fetched.verification_status == VerificationStatus.UNVERIFIED
        assert fetched.has_auth_token is True
        assert "tok123" not in fetched.model_dump_json()

    @pytest.mark.asyncio
    async def test_token_stored_encrypted(self, service, repository, codec):
        created = await service.create_configuration(USER, github_input())
        stored = await repository.get(USER, created.id)

        assert stored.auth_token_ciphertext != "tok123"
        assert codec.decrypt(stored.auth_token_ciphertext) == "tok123"

    @pytest.mark.asyncio
    async def test_create_without_token(self, service):
        created = await service.create_configuration(USER, github_input(auth_token=None))
        assert created.has_auth_token is False
        assert created.auth_token_placeholder == ""

    @pytest.mark.asyncio
    async def test_name_trimmed(self, service):
        created = await service.create_configuration(USER, github_input(server_name="  github  "))
        assert created.server_name == "github"

    @pytest.mark.asyncio
    async def test_transport_case_insensitive(self, service):
        created = await service.create_configuration(USER, github_input(transport_type="StreamableHTTP"))
        assert created.transport_type == TransportType.STREAMABLE_HTTP

    @pytest.mark.asyncio
    async def test_missing_fields(self, service, repository):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_configuration(USER, MCPConfigInput(server_name="x"))

        assert exc_info.value.message == "Missing required fields: transport_type, url"
        assert exc_info.value.field == "transport_type"
        assert await repository.list_for_user(USER) == []

    @pytest.mark.asyncio
    async def test_invalid_transport(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_configuration(USER, github_input(transport_type="grpc"))
        assert exc_info.value.field == "transport_type"
        assert "Invalid transport type: grpc" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_url_format(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_configuration(USER, github_input(url="api.github.com/mcp"))
        assert exc_info.value.message == "Invalid URL format: api.github.com/mcp"

    @pytest.mark.asyncio
    async def test_name_too_long(self, service):
        with pytest.raises(ValidationError):
            await service.create_configuration(USER, github_input(server_name="n" * 256))

    @pytest.mark.asyncio
    async def test_unsafe_url_persists_nothing(self, service, repository, audit):
        with pytest.raises(UnsafeURLError) as exc_info:
            await service.create_configuration(USER, github_input(url="http://127.0.0.1/mcp"))

        assert exc_info.value.message.startswith("URL validation failed: SSRF protection")
        assert await repository.list_for_user(USER) == []
        assert len(audit.ssrf_blocks) == 1
        assert audit.ssrf_blocks[0][0] == USER
        assert audit.ssrf_blocks[0][1] == "http://127.0.0.1/mcp"

    @pytest.mark.asyncio
    async def test_hostname_resolving_privately_rejected(self, service):
        with pytest.raises(UnsafeURLError):
            await service.create_configuration(
                USER, github_input(url="https://api.internal-dns.example.com/mcp")
            )

    @pytest.mark.asyncio
    async def test_duplicate_name_case_insensitive(self, service, repository):
        first = await service.create_configuration(USER, github_input())

        with pytest.raises(DuplicateServerNameError) as exc_info:
            await service.create_configuration(USER, github_input(server_name="GitHub", url="https://other.example.com/"))

        assert "GitHub" in exc_info.value.message
        records = await repository.list_for_user(USER)
        assert len(records) == 1
        assert records[0].id == first.id
        assert records[0].url == "https://api.github.com/mcp"

    @pytest.mark.asyncio
    async def test_same_name_for_different_users(self, service):
        await service.create_configuration(USER, github_input())
        other = await service.create_configuration(OTHER_USER, github_input())
        assert other.user_id == OTHER_USER


class TestReadAndOwnership:

    @pytest.mark.asyncio
    async def test_other_users_configuration_not_found(self, service):
        created = await service.create_configuration(OTHER_USER, github_input())

        with pytest.raises(NotFoundError) as exc_info:
            await service.get_configuration(USER, created.id)
        assert exc_info.value.message == "MCP server configuration not found"

    @pytest.mark.asyncio
    async def test_unknown_id_not_found_with_same_message(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.get_configuration(USER, "00000000-0000-0000-0000-000000000000")
        assert exc_info.value.message == "MCP server configuration not found"

    @pytest.mark.asyncio
    async def test_list_sorted_by_name(self, service):
        for name in ("zeta", "Alpha", "beta"):
            await service.create_configuration(USER, github_input(server_name=name))
        await service.create_configuration(OTHER_USER, github_input(server_name="other"))

        names = [c.server_name for c in await service.list_configurations(USER)]
        assert names == ["Alpha", "beta", "zeta"]

    @pytest.mark.asyncio
    async def test_find_by_server_name(self, service):
        created = await service.create_configuration(USER, github_input(server_name="My Server"))
        found = await service.find_by_server_name(USER, "my server")
        assert found.id == created.id

        with pytest.raises(NotFoundError):
            await service.find_by_server_name(OTHER_USER, "my server")


class TestUpdate:

    async def verified(self, service, **overrides):
        created = await service.create_configuration(USER, github_input(**overrides))
        config, _ = await service.verify_configuration(USER, created.id)
        assert config.verification_status == VerificationStatus.VERIFIED
        return config

    @pytest.mark.asyncio
    async def test_url_change_resets_verification(self, service):
        config = await self.verified(service)

        updated = await service.update_configuration(
            USER, config.id, MCPConfigPatch(url="https://mcp.example.com/v2")
        )

        assert updated.url == "https://mcp.example.com/v2"
        assert updated.verification_status == VerificationStatus.UNVERIFIED
        assert updated.verification_error is None
        assert updated.capabilities is None

    @pytest.mark.asyncio
    async def test_transport_change_resets_verification(self, service):
        config = await self.verified(service)
        updated = await service.update_configuration(
            USER, config.id, MCPConfigPatch(transport_type="websocket")
        )
        assert updated.transport_type == TransportType.WEBSOCKET
        assert updated.verification_status == VerificationStatus.UNVERIFIED

    @pytest.mark.asyncio
    async def test_token_change_resets_verification(self, service, repository, codec):
        config = await self.verified(service)
        updated = await service.update_configuration(
            USER, config.id, MCPConfigPatch(auth_token="new-token")
        )
        assert updated.verification_status == VerificationStatus.UNVERIFIED
        stored = await repository.get(USER, config.id)
        assert codec.decrypt(stored.auth_token_ciphertext) == "new-token"

    @pytest.mark.asyncio
    async def test_rename_keeps_verification(self, service):
        config = await self.verified(service)
        updated = await service.update_configuration(
            USER, config.id, MCPConfigPatch(server_name="GitHub Prod")
        )
        assert updated.server_name == "GitHub Prod"
        assert updated.verification_status == VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_same_url_keeps_verification(self, service):
        config = await self.verified(service)
        updated = await service.update_configuration(
            USER, config.id, MCPConfigPatch(url=config.url, transport_type="SSE")
        )
        assert updated.verification_status == VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_omitted_token_keeps_existing(self, service, repository, codec):
        created = await service.create_configuration(USER, github_input())
        await service.update_configuration(USER, created.id, MCPConfigPatch(server_name="renamed"))

        stored = await repository.get(USER, created.id)
        assert codec.decrypt(stored.auth_token_ciphertext) == "tok123"

    @pytest.mark.asyncio
    async def test_empty_token_clears(self, service):
        created = await service.create_configuration(USER, github_input())
        updated = await service.update_configuration(USER, created.id, MCPConfigPatch(auth_token=""))
        assert updated.has_auth_token is False
        assert updated.verification_status == VerificationStatus.UNVERIFIED

    @pytest.mark.asyncio
    async def test_rename_to_existing_name_rejected(self, service):
        await service.create_configuration(USER, github_input(server_name="one"))
        second = await service.create_configuration(USER, github_input(server_name="two"))

        with pytest.raises(DuplicateServerNameError):
            await service.update_configuration(USER, second.id, MCPConfigPatch(server_name="ONE"))

    @pytest.mark.asyncio
    async def test_case_only_rename_allowed(self, service):
        created = await service.create_configuration(USER, github_input(server_name="github"))
        updated = await service.update_configuration(USER, created.id, MCPConfigPatch(server_name="GitHub"))
        assert updated.server_name == "GitHub"

    @pytest.mark.asyncio
    async def test_unsafe_url_rejected(self, service, audit):
        created = await service.create_configuration(USER, github_input())
        with pytest.raises(UnsafeURLError):
            await service.update_configuration(
                USER, created.id, MCPConfigPatch(url="http://169.254.169.254/")
            )
        assert len(audit.ssrf_blocks) == 1
        assert (await service.get_configuration(USER, created.id)).url == "https://api.github.com/mcp"

    @pytest.mark.asyncio
    async def test_other_user_cannot_update(self, service):
        created = await service.create_configuration(OTHER_USER, github_input())
        with pytest.raises(NotFoundError):
            await service.update_configuration(USER, created.id, MCPConfigPatch(server_name="x"))


class TestEnableDisableDelete:

    @pytest.mark.asyncio
    async def test_enable_twice_is_idempotent(self, service):
        created = await service.create_configuration(USER, github_input())
        first = await service.enable_configuration(USER, created.id)
        second = await service.enable_configuration(USER, created.id)
        assert first.enabled is True
        assert second.enabled is True

    @pytest.mark.asyncio
    async def test_disable_then_enable(self, service):
        created = await service.create_configuration(USER, github_input())
        assert (await service.disable_configuration(USER, created.id)).enabled is False
        assert (await service.disable_configuration(USER, created.id)).enabled is False
        assert (await service.enable_configuration(USER, created.id)).enabled is True

    @pytest.mark.asyncio
    async def test_toggle_leaves_verification(self, service):
        created = await service.create_configuration(USER, github_input())
        await service.verify_configuration(USER, created.id)
        disabled = await service.disable_configuration(USER, created.id)
        assert disabled.verification_status == VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_enabled_listing(self, service):
        one = await service.create_configuration(USER, github_input(server_name="one"))
        await service.create_configuration(USER, github_input(server_name="two"))
        await service.disable_configuration(USER, one.id)

        enabled = await service.get_enabled_configurations(USER)
        assert [c.server_name for c in enabled] == ["two"]

    @pytest.mark.asyncio
    async def test_delete(self, service):
        created = await service.create_configuration(USER, github_input())
        await service.delete_configuration(USER, created.id)

        with pytest.raises(NotFoundError):
            await service.get_configuration(USER, created.id)
        assert await service.list_configurations(USER) == []

    @pytest.mark.asyncio
    async def test_delete_other_users_configuration(self, service):
        created = await service.create_configuration(OTHER_USER, github_input())
        with pytest.raises(NotFoundError):
            await service.delete_configuration(USER, created.id)
        assert len(await service.list_configurations(OTHER_USER)) == 1

    @pytest.mark.asyncio
    async def test_name_reusable_after_delete(self, service):
        created = await service.create_configuration(USER, github_input())
        await service.delete_configuration(USER, created.id)
        await service.create_configuration(USER, github_input())


class TestVerification:

    @pytest.mark.asyncio
    async def test_verify_connection_passes_live_values(self, service, verifier):
        result = await service.verify_connection(github_input(), user_id=USER)

        assert result.success is True
        request = verifier.requests[0]
        assert request.transport_type == TransportType.SSE
        assert request.url == "https://api.github.com/mcp"
        assert request.auth_token == "tok123"

    @pytest.mark.asyncio
    async def test_verify_connection_unsafe_url_is_failed_result(self, service, verifier):
        result = await service.verify_connection(github_input(url="http://localhost:3000/"))
        assert result.success is False
        assert "SSRF protection" in result.error
        assert verifier.requests == []

    @pytest.mark.asyncio
    async def test_verify_connection_invalid_input_is_failed_result(self, service):
        result = await service.verify_connection(MCPConfigInput())
        assert result.success is False
        assert result.error.startswith("Missing required fields")

    @pytest.mark.asyncio
    async def test_record_success(self, service):
        created = await service.create_configuration(USER, github_input())
        updated = await service.record_verification(
            USER, created.id, VerificationResult(success=True, capabilities={"tools": 3})
        )
        assert updated.verification_status == VerificationStatus.VERIFIED
        assert updated.capabilities == {"tools": 3}
        assert updated.verification_error is None

    @pytest.mark.asyncio
    async def test_record_failure(self, service):
        created = await service.create_configuration(USER, github_input())
        updated = await service.record_verification(
            USER, created.id, VerificationResult.failed("timeout")
        )
        assert updated.verification_status == VerificationStatus.FAILED
        assert updated.verification_error == "timeout"

    @pytest.mark.asyncio
    async def test_failure_after_success_replaces_status(self, service):
        created = await service.create_configuration(USER, github_input())
        await service.record_verification(USER, created.id, VerificationResult(success=True, capabilities={}))
        updated = await service.record_verification(USER, created.id, VerificationResult.failed("HTTP 500: Internal Server Error"))
        assert updated.verification_status == VerificationStatus.FAILED

    @pytest.mark.asyncio
    async def test_stale_result_discarded(self, service):
        created = await service.create_configuration(USER, github_input())
        request = VerificationRequest(
            server_name="github",
            transport_type=TransportType.SSE,
            url="https://api.github.com/mcp",
            auth_token="tok123",
        )
        await service.update_configuration(USER, created.id, MCPConfigPatch(url="https://mcp.example.com/new"))

        result = await service.record_verification(
            USER, created.id, VerificationResult(success=True, capabilities={}), request=request
        )

        assert result.verification_status == VerificationStatus.UNVERIFIED
        assert result.url == "https://mcp.example.com/new"

    @pytest.mark.asyncio
    async def test_matching_request_recorded(self, service):
        created = await service.create_configuration(USER, github_input())
        request = VerificationRequest(
            server_name="github",
            transport_type=TransportType.SSE,
            url="https://api.github.com/mcp",
            auth_token="tok123",
        )
        result = await service.record_verification(
            USER, created.id, VerificationResult(success=True, capabilities={}), request=request
        )
        assert result.verification_status == VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_verify_configuration_uses_stored_token(self, service, verifier):
        created = await service.create_configuration(USER, github_input())
        config, result = await service.verify_configuration(USER, created.id)

        assert result.success is True
        assert config.verification_status == VerificationStatus.VERIFIED
        assert verifier.requests[0].auth_token == "tok123"

    @pytest.mark.asyncio
    async def test_verify_configuration_failure(self, service, verifier):
        verifier.result = VerificationResult.failed("Connection failed: refused")
        created = await service.create_configuration(USER, github_input())
        config, result = await service.verify_configuration(USER, created.id)

        assert result.success is False
        assert config.verification_status == VerificationStatus.FAILED
        assert config.verification_error == "Connection failed: refused"

    @pytest.mark.asyncio
    async def test_verify_configuration_edit_during_handshake(self, service, verifier, audit):
        created = await service.create_configuration(USER, github_input())

        class EditingVerifier:
            async def verify(self, request):
                await service.update_configuration(
                    USER, created.id, MCPConfigPatch(url="https://other.example.com/mcp")
                )
                return VerificationResult(success=True, capabilities={"tools": 3})

        service.verifier = EditingVerifier()
        config, result = await service.verify_configuration(USER, created.id)

        assert result.success is True
        assert config.url == "https://other.example.com/mcp"
        assert config.verification_status == VerificationStatus.UNVERIFIED
        stored = await service.get_configuration(USER, created.id)
        assert stored.verification_status == VerificationStatus.UNVERIFIED
        verify_record = [r for r in audit.records if r.operation == AuditOperation.VERIFY][-1]
        assert verify_record.metadata["stale_result"] is True

    @pytest.mark.asyncio
    async def test_undecryptable_token_treated_as_absent(self, service, repository, verifier):
        created = await service.create_configuration(USER, github_input())
        await repository.update(USER, created.id, {"auth_token_ciphertext": "garbage"})

        await service.verify_configuration(USER, created.id)
        assert verifier.requests[0].auth_token is None

    @pytest.mark.asyncio
    async def test_active_servers_include_decrypted_token(self, service):
        one = await service.create_configuration(USER, github_input(server_name="one"))
        await service.create_configuration(USER, github_input(server_name="two", auth_token=None))
        await service.create_configuration(USER, github_input(server_name="three"))
        await service.disable_configuration(USER, one.id)

        active = await service.get_active_servers(USER)

        assert [(s.server_name, s.auth_token) for s in active] == [("three", "tok123"), ("two", None)]


class TestAudit:

    @pytest.mark.asyncio
    async def test_one_record_per_operation(self, service, audit):
        created = await service.create_configuration(USER, github_input())
        await service.get_configuration(USER, created.id)
        await service.list_configurations(USER)
        await service.update_configuration(USER, created.id, MCPConfigPatch(server_name="renamed"))
        await service.disable_configuration(USER, created.id)
        await service.enable_configuration(USER, created.id)
        await service.verify_connection(github_input(), user_id=USER)
        await service.delete_configuration(USER, created.id)

        assert [r.operation for r in audit.records] == [
            AuditOperation.CREATE,
            AuditOperation.READ,
            AuditOperation.LIST,
            AuditOperation.UPDATE,
            AuditOperation.DISABLE,
            AuditOperation.ENABLE,
            AuditOperation.VERIFY,
            AuditOperation.DELETE,
        ]
        assert all(r.success for r in audit.records)
        assert all(r.user_id == USER for r in audit.records)
        assert all("execution_time_ms" in r.metadata for r in audit.records)

    @pytest.mark.asyncio
    async def test_failed_operation_audited(self, service, audit):
        with pytest.raises(NotFoundError):
            await service.delete_configuration(USER, "missing")

        assert len(audit.records) == 1
        record = audit.records[0]
        assert record.operation == AuditOperation.DELETE
        assert record.success is False
        assert record.error == "MCP server configuration not found"

    @pytest.mark.asyncio
    async def test_create_record_has_id_and_name(self, service, audit):
        created = await service.create_configuration(USER, github_input())
        record = audit.records[0]
        assert record.configuration_id == created.id
        assert record.server_name == "github"
        assert record.metadata["transport_type"] == "sse"

    @pytest.mark.asyncio
    async def test_update_metadata(self, service, audit):
        created = await service.create_configuration(USER, github_input())
        await service.update_configuration(USER, created.id, MCPConfigPatch(url="https://mcp.example.com/x"))

        record = audit.records[-1]
        assert record.metadata["updated_fields"] == ["url"]
        assert record.metadata["verification_reset"] is True

    @pytest.mark.asyncio
    async def test_anonymous_verify_connection(self, service, audit):
        await service.verify_connection(github_input())
        assert audit.records[0].user_id == "unknown"
        assert audit.ssrf_blocks == []
