# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Block Kit templates for the MCP configuration screens.

This module renders the App Home tab, the add/edit server modals, slash
command replies, verification follow-ups and error messages. Block and
action ids are defined here and shared with the interaction handler.
"""

from typing import Any, Dict, List, Optional, Protocol

from gengar_bark.mcp.models import (
    MCPConfiguration,
    TransportType,
    VerificationResult,
    VerificationStatus,
)
from gengar_bark.mcp.templates import MCPTemplate, get_template_by_id, get_templates
from gengar_bark.models import EditCacheToken, SlackMessage


# App Home actions
ACTION_ADD_SERVER = "mcp_add_server"
ACTION_REFRESH_HOME = "mcp_refresh_home"
ACTION_EDIT_SERVER = "mcp_edit_server"
ACTION_ENABLE_SERVER = "mcp_enable_server"
ACTION_DISABLE_SERVER = "mcp_disable_server"
ACTION_TEST_CONNECTION = "mcp_test_connection"
ACTION_DELETE_SERVER = "mcp_delete_server"

# Modal callback ids
ADD_MODAL_CALLBACK_ID = "mcp_add_modal"
EDIT_MODAL_CALLBACK_ID = "mcp_edit_modal"

# Modal blocks: (block_id, action_id)
TEMPLATE_BLOCK = ("template_block", "template_select")
SERVER_NAME_BLOCK = ("server_name_block", "server_name_input")
TRANSPORT_TYPE_BLOCK = ("transport_type_block", "transport_type_select")
URL_BLOCK = ("url_block", "url_input")
AUTH_TOKEN_BLOCK = ("auth_token_block", "auth_token_input")
SKIP_VERIFICATION_BLOCK = ("skip_verification_block", "skip_verification_checkbox")

MANUAL_TEMPLATE_VALUE = "manual"
SKIP_VERIFICATION_VALUE = "skip"

URL_HINT = "Must be an http(s) URL. Private network addresses are not allowed."

STATUS_DISPLAY = {
    VerificationStatus.VERIFIED: ("✅", "Verified & Enabled"),
    VerificationStatus.FAILED: ("❌", "Verification Failed"),
    VerificationStatus.UNVERIFIED: ("⚠️", "Unverified"),
}
DISABLED_DISPLAY = ("⏸️", "Disabled")

TRANSPORT_BADGES = {
    TransportType.STREAMABLE_HTTP: "🌐 Streamable HTTP",
    TransportType.SSE: "📡 SSE",
    TransportType.WEBSOCKET: "🔌 WebSocket",
}


class MessageTemplate(Protocol):
    """Templates render keyword data into a SlackMessage."""

    def render(self, **kwargs) -> SlackMessage:
        ...


def _plain(text: str) -> Dict[str, Any]:
    return {"type": "plain_text", "text": text, "emoji": True}


def _mrkdwn_section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _button(
    text: str,
    action_id: str,
    value: str,
    style: Optional[str] = None,
    confirm: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    button: Dict[str, Any] = {
        "type": "button",
        "text": _plain(text),
        "action_id": action_id,
        "value": value,
    }
    if style:
        button["style"] = style
    if confirm:
        button["confirm"] = confirm
    return button


def status_display(config: MCPConfiguration) -> tuple:
    """(emoji, label) for a configuration's combined enabled/verification state."""
    if not config.enabled:
        return DISABLED_DISPLAY
    return STATUS_DISPLAY[config.verification_status]


def _transport_option(transport_type: TransportType) -> Dict[str, Any]:
    return {"text": _plain(transport_type.label), "value": transport_type.value}


class AppHomeTemplate:
    """
    App Home tab listing the user's MCP servers.

    Each server shows status, transport, URL and last error, followed by
    Edit / Enable|Disable / Test / Delete buttons.
    """

    def render(self, configurations: List[MCPConfiguration]) -> Dict[str, Any]:
        """
        Render the home view.

        Args:
            configurations: The user's configurations, already ordered

        Returns:
            View payload for views.publish
        """
        blocks: List[Dict[str, Any]] = [
            {"type": "header", "text": _plain("🔌 MCP Server Configuration")},
            _mrkdwn_section(
                "Manage your Model Context Protocol (MCP) server connections. "
                "MCP servers provide additional context and capabilities to "
                "enhance your AI interactions."
            ),
            {"type": "divider"},
        ]

        if configurations:
            blocks.append(_mrkdwn_section(f"*Your MCP Servers ({len(configurations)})*"))
            for config in configurations:
                blocks.extend(self._server_blocks(config))
        else:
            blocks.extend(self._empty_state_blocks())

        blocks.append({
            "type": "actions",
            "elements": [
                _button("➕ Add MCP Server", ACTION_ADD_SERVER, "add_server", style="primary"),
                _button("🔄 Refresh", ACTION_REFRESH_HOME, "refresh"),
            ],
        })

        return {"type": "home", "blocks": blocks}

    def _server_blocks(self, config: MCPConfiguration) -> List[Dict[str, Any]]:
        emoji, label = status_display(config)

        text = (
            f"*{config.server_name}* {emoji}\n"
            f"{TRANSPORT_BADGES[config.transport_type]} • {label}\n"
            f"`{config.url}`"
        )
        if config.verification_error:
            text += f"\n_Error: {config.verification_error}_"

        if config.enabled:
            toggle = _button("⏸️ Disable", ACTION_DISABLE_SERVER, config.id)
        else:
            toggle = _button("▶️ Enable", ACTION_ENABLE_SERVER, config.id)

        confirm = {
            "title": {"type": "plain_text", "text": "Delete MCP Server?"},
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"Are you sure you want to delete *{config.server_name}*? "
                    "This action cannot be undone."
                ),
            },
            "confirm": {"type": "plain_text", "text": "Delete"},
            "deny": {"type": "plain_text", "text": "Cancel"},
        }

        return [
            _mrkdwn_section(text),
            {
                "type": "actions",
                "block_id": f"mcp_server_{config.id}",
                "elements": [
                    _button("✏️ Edit", ACTION_EDIT_SERVER, EditCacheToken.button_value(config)),
                    toggle,
                    _button("🧪 Test", ACTION_TEST_CONNECTION, config.id),
                    _button("🗑️ Delete", ACTION_DELETE_SERVER, config.id,
                            style="danger", confirm=confirm),
                ],
            },
            {"type": "divider"},
        ]

    def _empty_state_blocks(self) -> List[Dict[str, Any]]:
        return [
            _mrkdwn_section(
                "*No MCP Servers Configured*\n\n"
                "You haven't added any MCP servers yet. Click the button below to add "
                "your first server and enhance your AI interactions with additional "
                "context and capabilities."
            ),
            _mrkdwn_section(
                "*What are MCP Servers?*\n\n"
                "MCP (Model Context Protocol) servers provide your AI assistant with "
                "access to external data sources and tools."
            ),
        ]


class ServerModalTemplate:
    """Add and edit modals for an MCP server."""

    def _template_block(self, selected: Optional[MCPTemplate]) -> Dict[str, Any]:
        block_id, action_id = TEMPLATE_BLOCK
        manual = {"text": _plain("📝 Manual Configuration"), "value": MANUAL_TEMPLATE_VALUE}
        options = [manual] + [
            {"text": _plain(template.name), "value": template.id}
            for template in get_templates()
        ]
        element: Dict[str, Any] = {
            "type": "static_select",
            "action_id": action_id,
            "placeholder": _plain("Choose a template (optional)"),
            "options": options,
        }
        if selected is not None:
            element["initial_option"] = {"text": _plain(selected.name), "value": selected.id}
        # dispatch_action makes selecting a template send a block_actions event
        return {
            "type": "input",
            "block_id": block_id,
            "optional": True,
            "dispatch_action": True,
            "element": element,
            "label": _plain("Template"),
        }

    def _server_name_block(self, initial: Optional[str] = None) -> Dict[str, Any]:
        block_id, action_id = SERVER_NAME_BLOCK
        element: Dict[str, Any] = {
            "type": "plain_text_input",
            "action_id": action_id,
            "max_length": 255,
            "placeholder": _plain("e.g., My GitHub Server"),
        }
        if initial:
            element["initial_value"] = initial
        return {
            "type": "input",
            "block_id": block_id,
            "element": element,
            "label": _plain("Server Name"),
        }

    def _transport_block(self, initial: Optional[TransportType] = None) -> Dict[str, Any]:
        block_id, action_id = TRANSPORT_TYPE_BLOCK
        initial = initial or TransportType.STREAMABLE_HTTP
        return {
            "type": "input",
            "block_id": block_id,
            "element": {
                "type": "static_select",
                "action_id": action_id,
                "initial_option": _transport_option(initial),
                "options": [
                    _transport_option(TransportType.STREAMABLE_HTTP),
                    _transport_option(TransportType.SSE),
                    _transport_option(TransportType.WEBSOCKET),
                ],
            },
            "label": _plain("Transport Type"),
        }

    def _url_block(self, initial: Optional[str] = None) -> Dict[str, Any]:
        block_id, action_id = URL_BLOCK
        element: Dict[str, Any] = {
            "type": "plain_text_input",
            "action_id": action_id,
            "placeholder": _plain("https://api.example.com/mcp"),
        }
        if initial:
            element["initial_value"] = initial
        return {
            "type": "input",
            "block_id": block_id,
            "element": element,
            "label": _plain("Server URL"),
            "hint": _plain(URL_HINT),
        }

    def _auth_token_block(self, required: bool, has_existing: bool = False) -> Dict[str, Any]:
        block_id, action_id = AUTH_TOKEN_BLOCK
        if has_existing:
            placeholder = "••••••••••••"
            hint = "Leave empty to keep existing token. Enter new token to replace."
        elif required:
            placeholder = "Required authentication token"
            hint = "Required for this template. Will be encrypted before storage."
        else:
            placeholder = "Optional authentication token"
            hint = "Optional. Will be encrypted before storage."
        return {
            "type": "input",
            "block_id": block_id,
            "optional": not required,
            "element": {
                "type": "plain_text_input",
                "action_id": action_id,
                "placeholder": _plain(placeholder),
            },
            "label": _plain("Authentication Token"),
            "hint": _plain(hint),
        }

    def _skip_verification_block(self) -> Dict[str, Any]:
        block_id, action_id = SKIP_VERIFICATION_BLOCK
        return {
            "type": "input",
            "block_id": block_id,
            "optional": True,
            "element": {
                "type": "checkboxes",
                "action_id": action_id,
                "options": [{
                    "text": _plain("Skip connection verification (not recommended)"),
                    "value": SKIP_VERIFICATION_VALUE,
                }],
            },
            "label": _plain("Verification Options"),
        }

    def render_add(self, template_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Render the "Add MCP Server" modal.

        Args:
            template_id: Pre-fill from this server template, if known

        Returns:
            Modal view payload
        """
        template = get_template_by_id(template_id) if template_id else None

        if template is not None:
            intro = (
                "Configure a new MCP server connection using the "
                f"*{template.name}* template.\n\n_{template.description}_"
            )
        else:
            intro = (
                "Configure a new MCP server connection. You can start with a "
                "template or configure manually."
            )

        blocks = [
            _mrkdwn_section(intro),
            self._template_block(template),
            self._server_name_block(template.name if template else None),
            self._transport_block(template.transport_type if template else None),
            self._url_block(template.url_pattern if template else None),
            self._auth_token_block(
                required=template is not None and "auth_token" in template.required_fields
            ),
            self._skip_verification_block(),
        ]
        if template is not None:
            blocks.append({
                "type": "context",
                "elements": [{
                    "type": "mrkdwn",
                    "text": f"📚 <{template.documentation}|View {template.name} documentation>",
                }],
            })

        return {
            "type": "modal",
            "callback_id": ADD_MODAL_CALLBACK_ID,
            "title": {"type": "plain_text", "text": "Add MCP Server"},
            "submit": {"type": "plain_text", "text": "Add Server"},
            "close": {"type": "plain_text", "text": "Cancel"},
            "blocks": blocks,
        }

    def render_edit(self, token: EditCacheToken) -> Dict[str, Any]:
        """
        Render the "Edit MCP Server" modal pre-filled from a cached snapshot.

        The configuration id travels in ``private_metadata``.
        """
        return {
            "type": "modal",
            "callback_id": EDIT_MODAL_CALLBACK_ID,
            "private_metadata": token.id,
            "title": {"type": "plain_text", "text": "Edit MCP Server"},
            "submit": {"type": "plain_text", "text": "Save Changes"},
            "close": {"type": "plain_text", "text": "Cancel"},
            "blocks": [
                _mrkdwn_section(f"Editing configuration for *{token.server_name}*"),
                self._server_name_block(token.server_name),
                self._transport_block(token.transport_type),
                self._url_block(token.url),
                self._auth_token_block(required=False, has_existing=token.has_auth_token),
                self._skip_verification_block(),
            ],
        }


class ServerListTemplate:
    """Reply to ``/mcp-list``."""

    VERIFICATION_EMOJI = {
        VerificationStatus.VERIFIED: "🔒",
        VerificationStatus.FAILED: "❌",
        VerificationStatus.UNVERIFIED: "⚠️",
    }

    def render(self, configurations: List[MCPConfiguration]) -> SlackMessage:
        if not configurations:
            text = (
                "📋 *Your MCP Servers*\n\n"
                "You don't have any MCP servers configured yet.\n\n"
                "Use the App Home tab to add your first MCP server! 🚀"
            )
            return SlackMessage(text=text, blocks=[_mrkdwn_section(text)])

        entries = []
        for index, config in enumerate(configurations, start=1):
            status = "✅ Enabled" if config.enabled else "⏸️ Disabled"
            verification = self.VERIFICATION_EMOJI[config.verification_status]
            entry = (
                f"{index}. *{config.server_name}*\n"
                f"   Status: {status}\n"
                f"   Verification: {verification} {config.verification_status.value}\n"
                f"   Transport: {config.transport_type.value.upper()}\n"
                f"   URL: {config.url}"
            )
            if config.verification_error:
                entry += f"\n   Error: {config.verification_error}"
            entries.append(entry)

        return SlackMessage(
            text=f"📋 Your MCP Servers ({len(configurations)})",
            blocks=[
                _mrkdwn_section("📋 *Your MCP Servers*"),
                _mrkdwn_section("\n\n".join(entries)),
                {
                    "type": "context",
                    "elements": [{
                        "type": "mrkdwn",
                        "text": (
                            "_Use `/mcp-enable <server-name>` or `/mcp-disable <server-name>` "
                            "to toggle servers. Visit the App Home tab to add, edit, or delete servers._"
                        ),
                    }],
                },
            ],
        )


class ConfirmationTemplate:
    """Short confirmation for a completed action."""

    def render(self, text: str) -> SlackMessage:
        return SlackMessage(text=text, blocks=[_mrkdwn_section(text)])


class VerificationResultTemplate:
    """Follow-up message after a server was saved or tested."""

    ACTION_TEXT = {
        "created": "added",
        "updated": "updated",
        "tested": "tested",
    }

    def render(
        self,
        server_name: str,
        action: str,
        result: Optional[VerificationResult] = None,
    ) -> SlackMessage:
        """
        Args:
            server_name: Display name of the server
            action: 'created', 'updated' or 'tested'
            result: Verification outcome, or None when verification was skipped
        """
        verb = self.ACTION_TEXT.get(action, action)

        if result is None:
            text = (
                f"✅ MCP server *{server_name}* {verb}. "
                "Connection verification was skipped; use *Test* in the Home tab to verify it later."
            )
        elif result.success:
            details = ""
            server_info = (result.capabilities or {}).get("serverInfo") or {}
            if server_info.get("name"):
                details = f"\nConnected to `{server_info['name']}`"
                if server_info.get("version"):
                    details += f" v{server_info['version']}"
            text = f"✅ MCP server *{server_name}* {verb} and verified.{details}"
        else:
            text = (
                f"⚠️ MCP server *{server_name}* {verb}, but the connection check failed.\n"
                f"_Error: {result.error}_"
            )
            if action == "tested":
                text = (
                    f"❌ Connection test for *{server_name}* failed.\n"
                    f"_Error: {result.error}_"
                )

        return SlackMessage(text=text, blocks=[_mrkdwn_section(text)])


class HelpTemplate:
    """Usage for the ``/mcp`` umbrella command."""

    def render(self) -> SlackMessage:
        text = (
            "*MCP server commands*\n"
            "• `/mcp-list` (or `/mcp list`): show your MCP servers\n"
            "• `/mcp-enable <name>` (or `/mcp enable <name>`): enable a server\n"
            "• `/mcp-disable <name>` (or `/mcp disable <name>`): disable a server\n\n"
            "Add, edit, test and delete servers from the Gengar Bark *Home* tab."
        )
        return SlackMessage(text="MCP server commands", blocks=[_mrkdwn_section(text)])


class ErrorTemplate:
    """
    Template for user-friendly error messages.

    Formats an error title, the error message and a suggestion.
    """

    ERROR_TEMPLATES = {
        "validation_error": {
            "title": "❌ Invalid Server Configuration",
            "icon": "❌",
            "default_suggestion": "Check the server name, transport type and URL, then try again."
        },
        "unsafe_url": {
            "title": "🛡️ URL Not Allowed",
            "icon": "🛡️",
            "default_suggestion": "Use a public http(s) address. Localhost, private and internal addresses are blocked."
        },
        "duplicate_name": {
            "title": "⚠️ Server Name Already Used",
            "icon": "⚠️",
            "default_suggestion": "Choose a different server name, or edit the existing server."
        },
        "not_found": {
            "title": "🔍 Server Not Found",
            "icon": "🔍",
            "default_suggestion": "Use `/mcp-list` to see your configured servers."
        },
        "storage_error": {
            "title": "⚠️ Configuration Temporarily Unavailable",
            "icon": "⚠️",
            "default_suggestion": "Please try again in a few minutes."
        },
        "invalid_command": {
            "title": "❌ Invalid Command",
            "icon": "❌",
            "default_suggestion": "Type `/mcp help` to see available commands."
        },
        "slack_error": {
            "title": "⚠️ Slack Request Failed",
            "icon": "⚠️",
            "default_suggestion": "Please try again. If the problem persists, reopen the Home tab."
        },
        "unknown": {
            "title": "❗ Unexpected Error",
            "icon": "❗",
            "default_suggestion": "An unexpected error occurred. Please try again or contact support."
        }
    }

    def render(
        self,
        error_type: str,
        message: str,
        suggestion: Optional[str] = None,
    ) -> SlackMessage:
        """
        Render an error as a Slack message.

        Args:
            error_type: Key into ERROR_TEMPLATES (falls back to 'unknown')
            message: Error message to display
            suggestion: Custom suggestion (template default if omitted)

        Returns:
            SlackMessage
        """
        template = self.ERROR_TEMPLATES.get(error_type, self.ERROR_TEMPLATES["unknown"])

        blocks: List[Dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": template["title"]}},
            _mrkdwn_section(f"*Error:* {message}"),
            _mrkdwn_section(f"*Suggestion:* {suggestion or template['default_suggestion']}"),
        ]

        return SlackMessage(blocks=blocks, text=f"{template['icon']} {message}")
