# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Pre-configured templates for common MCP servers.

Templates let users add popular servers from the App Home without typing
the transport and URL by hand.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from gengar_bark.mcp.errors import ValidationError
from gengar_bark.mcp.models import MCPConfigInput, TransportType


STANDARD_FIELDS = ("server_name", "url", "auth_token")


class MCPTemplate(BaseModel):
    """Template definition for an MCP server."""

    id: str
    name: str
    description: str
    transport_type: TransportType
    url_pattern: str
    required_fields: List[str] = Field(default_factory=list)
    optional_fields: List[str] = Field(default_factory=list)
    documentation: str


class AppliedTemplate(BaseModel):
    """Configuration values produced by applying a template."""

    server_name: str
    transport_type: TransportType
    url: str
    auth_token: Optional[str] = None
    custom_fields: Dict[str, str] = Field(default_factory=dict)

    def to_config_input(self) -> MCPConfigInput:
        return MCPConfigInput(
            server_name=self.server_name,
            transport_type=self.transport_type.value,
            url=self.url,
            auth_token=self.auth_token,
        )


MCP_TEMPLATES = (
    MCPTemplate(
        id="github",
        name="GitHub",
        description="Access GitHub repositories, issues, and pull requests",
        transport_type=TransportType.SSE,
        url_pattern="https://api.github.com/mcp",
        required_fields=["auth_token"],
        optional_fields=["repository"],
        documentation="https://docs.github.com/mcp",
    ),
    MCPTemplate(
        id="mcd",
        name="McDonald's",
        description="Access McDonald's China MCP services",
        transport_type=TransportType.STREAMABLE_HTTP,
        url_pattern="https://mcp.mcd.cn/mcp-servers/mcd-mcp",
        required_fields=["auth_token"],
        optional_fields=[],
        documentation="https://open.mcd.cn/mcp/doc",
    ),
)


def get_templates() -> List[MCPTemplate]:
    """All available templates (copies)."""
    return [template.model_copy(deep=True) for template in MCP_TEMPLATES]


def get_template_by_id(template_id: str) -> Optional[MCPTemplate]:
    """Template with the given id, or None."""
    for template in MCP_TEMPLATES:
        if template.id == template_id:
            return template.model_copy(deep=True)
    return None


def apply_template(template_id: str, custom_fields: Dict[str, Optional[str]]) -> AppliedTemplate:
    """
    Build configuration values from a template and user-supplied fields.

    ``server_name`` and ``url`` in ``custom_fields`` override the template's
    name and URL. Fields other than the standard ones are carried through in
    ``custom_fields``.

    Args:
        template_id: Template identifier
        custom_fields: User-supplied values

    Returns:
        AppliedTemplate

    Raises:
        ValidationError: If the template is unknown or a required field is missing
    """
    template = get_template_by_id(template_id)
    if template is None:
        raise ValidationError(f"Template not found: {template_id}", field="template")

    missing = [field for field in template.required_fields if not custom_fields.get(field)]
    if missing:
        raise ValidationError(
            f"Missing required fields for template {template_id}: {', '.join(missing)}",
            field=missing[0],
        )

    return AppliedTemplate(
        server_name=custom_fields.get("server_name") or template.name,
        transport_type=template.transport_type,
        url=custom_fields.get("url") or template.url_pattern,
        auth_token=custom_fields.get("auth_token"),
        custom_fields={
            key: value
            for key, value in custom_fields.items()
            if key not in STANDARD_FIELDS and value is not None
        },
    )
