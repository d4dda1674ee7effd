# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Command handler for the MCP slash commands.

Handles ``/mcp-list``, ``/mcp-enable <name>``, ``/mcp-disable <name>`` and
the umbrella ``/mcp [list|enable|disable|help]``. Every reply is ephemeral
and is returned as the HTTP response body, so commands complete within
Slack's acknowledgment window.
"""

from typing import Optional

from gengar_bark.error_handler import ErrorHandler
from gengar_bark.logging_config import get_logger
from gengar_bark.mcp.errors import MCPConfigurationError, NotFoundError
from gengar_bark.mcp.service import MCPConfigurationService
from gengar_bark.models import SlackMessage, SlashCommand
from gengar_bark.templates import ConfirmationTemplate, HelpTemplate, ServerListTemplate


logger = get_logger(__name__)


class CommandHandler:
    """
    Routes MCP slash commands to the configuration service.
    """

    def __init__(
        self,
        service: MCPConfigurationService,
        error_handler: Optional[ErrorHandler] = None
    ):
        """
        Initialize command handler.

        Args:
            service: MCP configuration service
            error_handler: Converts errors into Slack messages
        """
        self.service = service
        self.error_handler = error_handler or ErrorHandler()
        self.list_template = ServerListTemplate()
        self.confirmation = ConfirmationTemplate()
        self.help_template = HelpTemplate()

    async def handle_command(self, cmd: SlashCommand) -> SlackMessage:
        """
        Route a slash command.

        Args:
            cmd: SlashCommand with command details

        Returns:
            SlackMessage to send as the ephemeral response
        """
        logger.info(
            "Processing slash command",
            extra={
                "command": cmd.command,
                "text": cmd.text,
                "user_id": cmd.user_id,
                "team_id": cmd.team_id
            }
        )

        command = cmd.command.lower()
        text = cmd.text.strip()

        try:
            if command == "/mcp-list":
                return await self.handle_list(cmd.user_id)
            elif command == "/mcp-enable":
                return await self.handle_toggle(cmd.user_id, text, enable=True)
            elif command == "/mcp-disable":
                return await self.handle_toggle(cmd.user_id, text, enable=False)
            elif command == "/mcp":
                return await self.handle_mcp_command(cmd.user_id, text)
            else:
                return self.error_handler.template.render(
                    error_type="invalid_command",
                    message=f"Unknown command: {cmd.command}"
                )

        except MCPConfigurationError as e:
            return self.error_handler.handle_configuration_error(
                e, context={"command": cmd.command, "user_id": cmd.user_id}
            )
        except Exception as e:
            return self.error_handler.handle_generic_error(
                e, context={"command": cmd.command, "user_id": cmd.user_id}
            )

    async def handle_mcp_command(self, user_id: str, text: str) -> SlackMessage:
        """Umbrella ``/mcp <subcommand> [name]``."""
        parts = text.split(maxsplit=1)
        subcommand = parts[0].lower() if parts else "help"
        args = parts[1] if len(parts) > 1 else ""

        if subcommand == "list":
            return await self.handle_list(user_id)
        elif subcommand == "enable":
            return await self.handle_toggle(user_id, args, enable=True, usage="/mcp enable")
        elif subcommand == "disable":
            return await self.handle_toggle(user_id, args, enable=False, usage="/mcp disable")
        elif subcommand == "help":
            return self.help_template.render()
        else:
            return self.error_handler.get_command_help_message(subcommand)

    async def handle_list(self, user_id: str) -> SlackMessage:
        """List the user's MCP servers with status."""
        configurations = await self.service.list_configurations(user_id)
        return self.list_template.render(configurations)

    async def handle_toggle(
        self,
        user_id: str,
        server_name: str,
        enable: bool,
        usage: Optional[str] = None
    ) -> SlackMessage:
        """
        Enable or disable a server by name (case-insensitive).

        Toggling to the current state replies "already enabled/disabled"
        without error.
        """
        verb = "enable" if enable else "disable"
        server_name = server_name.strip()

        if not server_name:
            return self.error_handler.template.render(
                error_type="invalid_command",
                message="Please provide a server name.",
                suggestion=f"Usage: `{usage or '/mcp-' + verb} <server-name>`"
            )

        try:
            config = await self.service.find_by_server_name(user_id, server_name)
        except NotFoundError:
            return self.error_handler.template.render(
                error_type="not_found",
                message=f"MCP server '{server_name}' not found."
            )

        if config.enabled == enable:
            return self.confirmation.render(
                f"ℹ️ MCP server '*{config.server_name}*' is already {verb}d."
            )

        if enable:
            await self.service.enable_configuration(user_id, config.id)
            text = (
                f"✅ Successfully enabled MCP server '*{config.server_name}*'.\n\n"
                "It will now be used in your AI conversations."
            )
        else:
            await self.service.disable_configuration(user_id, config.id)
            text = (
                f"⏸️ Successfully disabled MCP server '*{config.server_name}*'.\n\n"
                "It will no longer be used in your AI conversations."
            )

        logger.info("MCP server toggled by command", extra={
            "user_id": user_id,
            "configuration_id": config.id,
            "enabled": enable
        })
        return self.confirmation.render(text)
