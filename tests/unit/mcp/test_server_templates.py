# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Unit tests for the MCP server templates.
"""

import pytest

from gengar_bark.mcp.errors import ValidationError
from gengar_bark.mcp.models import TransportType
from gengar_bark.mcp.templates import apply_template, get_template_by_id, get_templates


def test_templates_available():
    ids = [t.id for t in get_templates()]
    assert ids == ["github", "mcd"]


def test_template_fields():
    github = get_template_by_id("github")
    assert github.transport_type == TransportType.SSE
    assert github.url_pattern == "https://api.github.com/mcp"
    assert github.required_fields == ["auth_token"]
    assert github.documentation.startswith("https://")

    mcd = get_template_by_id("mcd")
    assert mcd.transport_type == TransportType.STREAMABLE_HTTP


def test_unknown_template():
    assert get_template_by_id("gitlab") is None


def test_returned_templates_are_copies():
    get_templates()[0].required_fields.append("mutated")
    assert get_template_by_id("github").required_fields == ["auth_token"]


class TestApplyTemplate:

    def test_defaults_from_template(self):
        applied = apply_template("github", {"auth_token": "ghp_x"})

        assert applied.server_name == "GitHub"
        assert applied.url == "https://api.github.com/mcp"
        assert applied.transport_type == TransportType.SSE
        assert applied.auth_token == "ghp_x"

    def test_overrides(self):
        applied = apply_template("github", {
            "auth_token": "ghp_x",
            "server_name": "Work GitHub",
            "url": "https://github.example.com/mcp",
            "repository": "org/repo",
        })

        assert applied.server_name == "Work GitHub"
        assert applied.url == "https://github.example.com/mcp"
        assert applied.custom_fields == {"repository": "org/repo"}

    def test_missing_required_field(self):
        with pytest.raises(ValidationError) as exc_info:
            apply_template("mcd", {"auth_token": ""})
        assert exc_info.value.field == "auth_token"
        assert "auth_token" in exc_info.value.message

    def test_unknown_template(self):
        with pytest.raises(ValidationError, match="Template not found: nope"):
            apply_template("nope", {})

    def test_to_config_input(self):
        config = apply_template("mcd", {"auth_token": "t"}).to_config_input()
        assert config.transport_type == "streamablehttp"
        assert config.url == "https://mcp.mcd.cn/mcp-servers/mcd-mcp"
        assert config.auth_token == "t"
