# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Unit tests for the MCP slash command handler.

Runs against a real configuration service over the in-memory repository.
"""

import pytest

from gengar_bark.command_handler import CommandHandler
from gengar_bark.mcp.encryption import SecretCodec
from gengar_bark.mcp.errors import PersistenceError
from gengar_bark.mcp.models import MCPConfigInput, VerificationResult
from gengar_bark.mcp.repository import InMemoryConfigurationRepository
from gengar_bark.mcp.service import MCPConfigurationService
from gengar_bark.mcp.url_safety import URLSafetyValidator
from gengar_bark.models import SlashCommand


USER = "U123ABC"


async def public_resolver(host, port):
    return ["93.184.216.34"]


class NoopVerifier:

    async def verify(self, request):
        return VerificationResult(success=True, capabilities={})


@pytest.fixture
def service():
    return MCPConfigurationService(
        repository=InMemoryConfigurationRepository(),
        codec=SecretCodec("c" * 32),
        url_validator=URLSafetyValidator(resolver=public_resolver),
        verifier=NoopVerifier(),
    )


@pytest.fixture
def handler(service):
    return CommandHandler(service)


def command(name, text=""):
    return SlashCommand(command=name, text=text, user_id=USER)


async def add_server(service, name="GitHub", enabled=True):
    config = await service.create_configuration(USER, MCPConfigInput(
        server_name=name, transport_type="sse", url="https://api.github.com/mcp",
    ))
    if not enabled:
        await service.disable_configuration(USER, config.id)
    return config


def rendered(message):
    return message.text + str(message.blocks)


class TestList:

    @pytest.mark.asyncio
    async def test_empty(self, handler):
        message = await handler.handle_command(command("/mcp-list"))
        assert "You don't have any MCP servers configured yet" in message.text

    @pytest.mark.asyncio
    async def test_lists_servers(self, handler, service):
        await add_server(service)
        message = await handler.handle_command(command("/mcp-list"))
        assert "*GitHub*" in rendered(message)

    @pytest.mark.asyncio
    async def test_umbrella_list(self, handler, service):
        await add_server(service)
        message = await handler.handle_command(command("/mcp", "list"))
        assert "*GitHub*" in rendered(message)


class TestToggle:

    @pytest.mark.asyncio
    async def test_disable_by_name_case_insensitive(self, handler, service):
        config = await add_server(service)

        message = await handler.handle_command(command("/mcp-disable", "github"))

        assert message.text.startswith("⏸️ Successfully disabled MCP server '*GitHub*'.")
        assert (await service.get_configuration(USER, config.id)).enabled is False

    @pytest.mark.asyncio
    async def test_enable(self, handler, service):
        await add_server(service, enabled=False)
        message = await handler.handle_command(command("/mcp-enable", "GitHub"))
        assert message.text == (
            "✅ Successfully enabled MCP server '*GitHub*'.\n\n"
            "It will now be used in your AI conversations."
        )

    @pytest.mark.asyncio
    async def test_already_enabled(self, handler, service):
        await add_server(service)
        message = await handler.handle_command(command("/mcp-enable", "GitHub"))
        assert message.text == "ℹ️ MCP server '*GitHub*' is already enabled."

    @pytest.mark.asyncio
    async def test_already_disabled(self, handler, service):
        await add_server(service, enabled=False)
        message = await handler.handle_command(command("/mcp-disable", "GitHub"))
        assert message.text == "ℹ️ MCP server '*GitHub*' is already disabled."

    @pytest.mark.asyncio
    async def test_name_with_spaces(self, handler, service):
        await add_server(service, name="My Server")
        message = await handler.handle_command(command("/mcp", "disable  my server "))
        assert "Successfully disabled" in message.text

    @pytest.mark.asyncio
    async def test_missing_name(self, handler):
        message = await handler.handle_command(command("/mcp-enable", "  "))
        assert message.text.endswith("Please provide a server name.")
        assert "Usage: `/mcp-enable <server-name>`" in rendered(message)

    @pytest.mark.asyncio
    async def test_missing_name_umbrella_usage(self, handler):
        message = await handler.handle_command(command("/mcp", "disable"))
        assert "Usage: `/mcp disable <server-name>`" in rendered(message)

    @pytest.mark.asyncio
    async def test_unknown_server(self, handler):
        message = await handler.handle_command(command("/mcp-enable", "nope"))
        assert message.text.endswith("MCP server 'nope' not found.")

    @pytest.mark.asyncio
    async def test_other_users_server_not_found(self, handler, service):
        await service.create_configuration("U999XYZ", MCPConfigInput(
            server_name="theirs", transport_type="sse", url="https://api.github.com/mcp",
        ))
        message = await handler.handle_command(command("/mcp-disable", "theirs"))
        assert "not found" in message.text


class TestRouting:

    @pytest.mark.asyncio
    async def test_help(self, handler):
        message = await handler.handle_command(command("/mcp", "help"))
        assert message.text == "MCP server commands"

    @pytest.mark.asyncio
    async def test_bare_umbrella_shows_help(self, handler):
        message = await handler.handle_command(command("/mcp"))
        assert message.text == "MCP server commands"

    @pytest.mark.asyncio
    async def test_unknown_subcommand(self, handler):
        message = await handler.handle_command(command("/mcp", "frobnicate"))
        assert "Unknown command: `frobnicate`" in message.text

    @pytest.mark.asyncio
    async def test_unknown_command(self, handler):
        message = await handler.handle_command(command("/other"))
        assert "Unknown command: /other" in message.text

    @pytest.mark.asyncio
    async def test_storage_failure_rendered(self, handler, service):
        async def failing(user_id, enabled_only=False):
            raise PersistenceError("list")

        service.repository.list_for_user = failing
        message = await handler.handle_command(command("/mcp-list"))
        assert "Failed to list MCP server configuration" in message.text

    @pytest.mark.asyncio
    async def test_unexpected_failure_rendered(self, handler, service):
        async def failing(user_id, enabled_only=False):
            raise RuntimeError("boom")

        service.repository.list_for_user = failing
        message = await handler.handle_command(command("/mcp-list"))
        assert "unexpected error" in message.text
        assert "boom" not in message.text
