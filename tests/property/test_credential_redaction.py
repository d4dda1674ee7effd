# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Property-based tests for credential redaction in logs.

For any MCP auth token or Slack token handled by the service, the
formatted log output never contains it, wherever it appears in the record.
"""

import io
import logging

from hypothesis import given, settings, strategies as st

from gengar_bark.logging_config import JSONFormatter, SensitiveDataFilter


ALNUM = 'abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'

secrets = st.text(alphabet=ALNUM, min_size=24, max_size=48)


@st.composite
def slack_token(draw):
    prefix = draw(st.sampled_from(['xoxb', 'xoxp', 'xapp']))
    return f"{prefix}-{draw(secrets)}"


def emit(message, **extra):
    """Log one record through the redacting JSON handler and return the output."""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SensitiveDataFilter())

    logger = logging.getLogger('gengar_bark.tests.redaction')
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(handler)
    try:
        logger.info(message, extra=extra)
    finally:
        logger.removeHandler(handler)
    return stream.getvalue()


@settings(max_examples=50, deadline=None)
@given(token=secrets)
def test_bearer_header_in_message(token):
    output = emit(f"Verifying MCP server with Authorization: Bearer {token}")
    assert token not in output
    assert 'REDACTED_TOKEN' in output


@settings(max_examples=50, deadline=None)
@given(token=secrets)
def test_auth_token_extra_field(token):
    output = emit("Creating MCP configuration", auth_token=token, server_name="github")
    assert token not in output
    assert 'github' in output


@settings(max_examples=50, deadline=None)
@given(token=secrets, url=st.sampled_from(['https://api.github.com/mcp', 'https://mcp.mcd.cn/mcp']))
def test_nested_config_dict(token, url):
    output = emit("Configuration loaded", config={'url': url, 'auth_token': token, 'headers': {'authorization': token}})
    assert token not in output
    assert url in output


@settings(max_examples=50, deadline=None)
@given(token=secrets)
def test_json_payload_in_message(token):
    output = emit('Request body: {"server_name": "linear", "auth_token": "' + token + '"}')
    assert token not in output


@settings(max_examples=50, deadline=None)
@given(token=slack_token())
def test_slack_tokens(token):
    output = emit(f"Slack client configured with {token}")
    assert token not in output
