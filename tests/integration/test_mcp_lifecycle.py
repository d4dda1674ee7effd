# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
End-to-end lifecycle of one MCP server configuration.

Covers create, list, verify, edit, toggle and delete through the service,
with the real connectivity verifier talking to a mocked MCP server over
httpx.
"""

import json

import httpx
import pytest

from gengar_bark.mcp.audit import AuditLogger
from gengar_bark.mcp.encryption import SecretCodec
from gengar_bark.mcp.errors import NotFoundError
from gengar_bark.mcp.models import (
    AuditOperation,
    MCPConfigInput,
    MCPConfigPatch,
    TransportType,
    VerificationRequest,
    VerificationStatus,
)
from gengar_bark.mcp.repository import InMemoryConfigurationRepository
from gengar_bark.mcp.service import MCPConfigurationService
from gengar_bark.mcp.url_safety import URLSafetyValidator
from gengar_bark.mcp.verifier import ConnectivityVerifier


USER = "U1"


async def public_resolver(host, port):
    return ["140.82.112.5"]


class RecordingAudit(AuditLogger):

    def __init__(self):
        super().__init__()
        self.records = []

    def log_configuration_access(self, record):
        self.records.append(record)
        super().log_configuration_access(record)


def mcp_server(request: httpx.Request) -> httpx.Response:
    """Streamable HTTP MCP server that accepts one bearer token."""
    if request.headers.get("Authorization") != "Bearer tok123":
        return httpx.Response(401)
    body = json.loads(request.content)
    return httpx.Response(200, json={
        "jsonrpc": "2.0",
        "id": body["id"],
        "result": {
            "protocolVersion": "2024-11-05",
            "capabilities": {"tools": 3},
            "serverInfo": {"name": "github-mcp", "version": "1.0.0"},
        },
    })


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def service(audit):
    return MCPConfigurationService(
        repository=InMemoryConfigurationRepository(),
        codec=SecretCodec("lifecycle-encryption-key-000000000"),
        url_validator=URLSafetyValidator(resolver=public_resolver),
        verifier=ConnectivityVerifier(
            timeout_seconds=5,
            http_transport=httpx.MockTransport(mcp_server),
        ),
        audit=audit,
    )


@pytest.mark.asyncio
async def test_configuration_lifecycle(service, audit):
    config_input = MCPConfigInput(
        server_name="github",
        transport_type="streamablehttp",
        url="https://api.github.com/mcp",
        auth_token="tok123",
    )

    created = await service.create_configuration(USER, config_input)
    assert created.verification_status == VerificationStatus.UNVERIFIED

    [listed] = await service.list_configurations(USER)
    assert listed.id == created.id
    assert listed.has_auth_token is True

    result = await service.verify_connection(config_input, user_id=USER)
    assert result.success is True
    assert result.capabilities["capabilities"] == {"tools": 3}

    verified = await service.record_verification(
        USER, created.id, result,
        request=VerificationRequest(
            server_name="github",
            transport_type=TransportType.STREAMABLE_HTTP,
            url="https://api.github.com/mcp",
            auth_token="tok123",
        ),
    )
    assert verified.verification_status == VerificationStatus.VERIFIED
    assert verified.capabilities["serverInfo"]["name"] == "github-mcp"

    # A wrong token fails verification and is recorded
    updated = await service.update_configuration(USER, created.id, MCPConfigPatch(auth_token="wrong"))
    assert updated.verification_status == VerificationStatus.UNVERIFIED
    failed, result = await service.verify_configuration(USER, created.id)
    assert result.success is False
    assert failed.verification_status == VerificationStatus.FAILED
    assert failed.verification_error.startswith("HTTP 401")

    await service.update_configuration(USER, created.id, MCPConfigPatch(auth_token="tok123"))
    reverified, _ = await service.verify_configuration(USER, created.id)
    assert reverified.verification_status == VerificationStatus.VERIFIED

    await service.disable_configuration(USER, created.id)
    assert await service.get_active_servers(USER) == []
    await service.enable_configuration(USER, created.id)
    [active] = await service.get_active_servers(USER)
    assert active.auth_token == "tok123"

    await service.delete_configuration(USER, created.id)
    with pytest.raises(NotFoundError):
        await service.get_configuration(USER, created.id)

    assert audit.records[0].operation == AuditOperation.CREATE
    assert audit.records[-1].operation == AuditOperation.READ
    assert audit.records[-1].success is False
    assert all(r.user_id == USER for r in audit.records)


@pytest.mark.asyncio
async def test_users_are_isolated(service):
    config_input = MCPConfigInput(
        server_name="github", transport_type="sse", url="https://api.github.com/mcp",
    )
    mine = await service.create_configuration("U1", config_input)
    theirs = await service.create_configuration("U2", config_input)

    assert [c.id for c in await service.list_configurations("U1")] == [mine.id]
    with pytest.raises(NotFoundError):
        await service.update_configuration("U1", theirs.id, MCPConfigPatch(server_name="stolen"))
    with pytest.raises(NotFoundError):
        await service.delete_configuration("U1", theirs.id)
    assert (await service.get_configuration("U2", theirs.id)).server_name == "github"
