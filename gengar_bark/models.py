# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Slack-specific data models for Gengar Bark.

This module defines Pydantic models for incoming Slack events, commands and
interactions, for outgoing messages, and the token carried by the App Home
"Edit" button. All models use Pydantic v2.
"""

import json
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gengar_bark.mcp.models import MCPConfiguration, TransportType


SLACK_USER_ID_PATTERN = r"^[UW][A-Z0-9]{2,20}$"

# Slack rejects button values longer than this
SLACK_BUTTON_VALUE_LIMIT = 2000


class WebhookEvent(BaseModel):
    """
    Represents an incoming Slack event queued for background processing.

    Validates the event type against the types this service handles.
    """
    model_config = ConfigDict(frozen=False)

    event_id: str = Field(
        ...,
        description="Unique event identifier for deduplication"
    )
    event_type: str = Field(
        ...,
        description="Type of event (app_home_opened, block_actions, view_submission, ...)"
    )
    user_id: str = Field(
        ...,
        description="Slack user ID who triggered the event",
        pattern=SLACK_USER_ID_PATTERN
    )
    team_id: Optional[str] = Field(
        default=None,
        description="Slack workspace/team ID"
    )
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="Raw event payload from Slack"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Event timestamp"
    )

    @field_validator('event_type')
    @classmethod
    def validate_event_type(cls, v: str) -> str:
        """Validate event type is recognized."""
        valid_types = {
            'app_home_opened',
            'block_actions',
            'view_submission',
            'view_closed',
            'slash_command',
        }
        if v not in valid_types:
            raise ValueError(f'Unknown event type: {v}')
        return v


class SlackMessage(BaseModel):
    """
    Represents a Slack message to be sent.

    Encapsulates Block Kit blocks, fallback text and the response type used
    for slash command replies.
    """
    model_config = ConfigDict(frozen=False)

    blocks: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Block Kit blocks for rich message formatting"
    )
    text: str = Field(
        ...,
        description="Fallback text for notifications and accessibility"
    )
    channel: Optional[str] = Field(
        default=None,
        description="Target channel ID or user ID for DM"
    )
    response_type: str = Field(
        default="ephemeral",
        description="'ephemeral' or 'in_channel' for slash command replies"
    )

    @field_validator('text')
    @classmethod
    def validate_text_not_empty(cls, v: str) -> str:
        """Ensure fallback text is not empty."""
        if not v or not v.strip():
            raise ValueError('Fallback text cannot be empty')
        return v

    @field_validator('blocks')
    @classmethod
    def validate_blocks_structure(cls, v: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Validate basic block structure."""
        for block in v:
            if 'type' not in block:
                raise ValueError('Each block must have a "type" field')
        return v

    def to_response(self) -> Dict[str, Any]:
        """Body for a slash command HTTP response."""
        body: Dict[str, Any] = {"response_type": self.response_type, "text": self.text}
        if self.blocks:
            body["blocks"] = self.blocks
        return body


class SlashCommand(BaseModel):
    """Represents a slash command invocation."""
    model_config = ConfigDict(frozen=False)

    command: str = Field(
        ...,
        description="Command name (e.g., '/mcp-list')"
    )
    text: str = Field(
        default="",
        description="Command arguments (e.g., a server name)"
    )
    user_id: str = Field(
        ...,
        description="Slack user ID who invoked command",
        pattern=SLACK_USER_ID_PATTERN
    )
    team_id: Optional[str] = None
    channel_id: Optional[str] = None
    response_url: Optional[str] = None
    trigger_id: Optional[str] = None

    @field_validator('command')
    @classmethod
    def validate_command_format(cls, v: str) -> str:
        """Ensure command starts with /."""
        if not v.startswith('/'):
            raise ValueError('Command must start with /')
        return v


class BlockAction(BaseModel):
    """
    A button click or select-menu change from the App Home or a modal.
    """
    model_config = ConfigDict(frozen=False)

    action_id: str
    value: Optional[str] = None
    selected_option: Optional[str] = Field(
        default=None,
        description="Selected value for static_select elements"
    )
    block_id: Optional[str] = None
    user_id: str = Field(..., pattern=SLACK_USER_ID_PATTERN)
    team_id: Optional[str] = None
    trigger_id: Optional[str] = None
    view_id: Optional[str] = Field(
        default=None,
        description="Id of the modal the action came from, if any"
    )
    view_hash: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], action: Dict[str, Any]) -> "BlockAction":
        """Build from a block_actions payload and one of its actions."""
        view = payload.get('view') or {}
        return cls(
            action_id=action.get('action_id', ''),
            value=action.get('value'),
            selected_option=(action.get('selected_option') or {}).get('value'),
            block_id=action.get('block_id'),
            user_id=(payload.get('user') or {}).get('id', ''),
            team_id=(payload.get('team') or {}).get('id'),
            trigger_id=payload.get('trigger_id'),
            view_id=view.get('id') if view.get('type') == 'modal' else None,
            view_hash=view.get('hash'),
        )


class ViewSubmission(BaseModel):
    """A submitted modal."""
    model_config = ConfigDict(frozen=False)

    callback_id: str
    user_id: str = Field(..., pattern=SLACK_USER_ID_PATTERN)
    team_id: Optional[str] = None
    private_metadata: str = ""
    values: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ViewSubmission":
        view = payload.get('view') or {}
        return cls(
            callback_id=view.get('callback_id', ''),
            user_id=(payload.get('user') or {}).get('id', ''),
            team_id=(payload.get('team') or {}).get('id'),
            private_metadata=view.get('private_metadata') or '',
            values=(view.get('state') or {}).get('values') or {},
        )

    def field(self, block_id: str, action_id: str) -> Optional[Dict[str, Any]]:
        return (self.values.get(block_id) or {}).get(action_id)

    def text_value(self, block_id: str, action_id: str) -> str:
        """Trimmed value of a plain_text_input, or ''."""
        element = self.field(block_id, action_id) or {}
        return (element.get('value') or '').strip()

    def selected_value(self, block_id: str, action_id: str) -> Optional[str]:
        element = self.field(block_id, action_id) or {}
        return (element.get('selected_option') or {}).get('value')

    def checked_values(self, block_id: str, action_id: str) -> List[str]:
        element = self.field(block_id, action_id) or {}
        return [option.get('value') for option in element.get('selected_options') or []]


class EditCacheToken(BaseModel):
    """
    Snapshot of a configuration carried in the App Home "Edit" button.

    Lets the edit modal open inside Slack's 3-second trigger window without
    a database round trip. The token is versioned; anything that does not
    decode as the current version falls back to a lookup by id.
    """

    VERSION: ClassVar[int] = 1

    v: int = 1
    id: str
    server_name: str
    transport_type: TransportType
    url: str
    has_auth_token: bool = False

    @classmethod
    def from_configuration(cls, config: MCPConfiguration) -> "EditCacheToken":
        return cls(
            id=config.id,
            server_name=config.server_name,
            transport_type=config.transport_type,
            url=config.url,
            has_auth_token=config.has_auth_token,
        )

    @classmethod
    def button_value(cls, config: MCPConfiguration) -> str:
        """Encoded token, or the bare id when the token would exceed Slack's limit."""
        encoded = cls.from_configuration(config).model_dump_json()
        if len(encoded) > SLACK_BUTTON_VALUE_LIMIT:
            return config.id
        return encoded

    @classmethod
    def decode(cls, value: Optional[str]) -> Optional["EditCacheToken"]:
        """Decode a button value; None if absent, malformed or of another version."""
        if not value:
            return None
        try:
            data = json.loads(value)
            if not isinstance(data, dict) or data.get('v') != cls.VERSION:
                return None
            return cls.model_validate(data)
        except ValueError:
            return None

    @staticmethod
    def extract_id(value: Optional[str]) -> Optional[str]:
        """Configuration id from any button value: a token of any version, or a bare id."""
        if not value:
            return None
        try:
            data = json.loads(value)
        except ValueError:
            return value
        if isinstance(data, dict) and data.get('id'):
            return str(data['id'])
        return value if not isinstance(data, (dict, list)) else None
