# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
HTTP server for Slack requests.

Provides the Events API, slash command and interactivity endpoints plus a
health check, using aiohttp for async HTTP handling.
"""

import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

from aiohttp import web
from pydantic import ValidationError as PydanticValidationError

from gengar_bark.command_handler import CommandHandler
from gengar_bark.interaction_handler import InteractionHandler
from gengar_bark.logging_config import get_logger
from gengar_bark.models import SlashCommand
from gengar_bark.webhook_handler import WebhookHandler, WebhookResponse


logger = get_logger(__name__)


class SlackAPI:
    """
    aiohttp application serving Slack.

    Endpoints:
    - POST /slack/events - Events API (App Home opened, URL verification)
    - POST /slack/commands - /mcp-list, /mcp-enable, /mcp-disable, /mcp
    - POST /slack/interactions - App Home buttons and modal submissions
    - GET /health - Health check

    Every Slack endpoint authenticates the request signature before
    looking at the body.
    """

    def __init__(
        self,
        webhook_handler: WebhookHandler,
        command_handler: CommandHandler,
        interaction_handler: InteractionHandler
    ):
        """
        Initialize the Slack API server.

        Args:
            webhook_handler: Signature validation and Events API processing
            command_handler: Slash command routing
            interaction_handler: Button and modal handling
        """
        self.webhook_handler = webhook_handler
        self.command_handler = command_handler
        self.interaction_handler = interaction_handler
        self.app = web.Application()
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure API routes."""
        self.app.router.add_post('/slack/events', self.handle_events)
        self.app.router.add_post('/slack/commands', self.handle_commands)
        self.app.router.add_post('/slack/interactions', self.handle_interactions)
        self.app.router.add_get('/health', self.health_check)

    @staticmethod
    def _error_response(response: WebhookResponse) -> web.Response:
        return web.json_response(data=response.body, status=response.status_code)

    @staticmethod
    def _form(body: bytes) -> Dict[str, str]:
        return dict(parse_qsl(body.decode('utf-8'), keep_blank_values=True))

    async def handle_events(self, request: web.Request) -> web.Response:
        """
        Handle an Events API delivery.

        Endpoint: POST /slack/events
        """
        body = await request.read()
        response = await self.webhook_handler.handle_webhook(request.headers, body)
        return web.json_response(data=response.body, status=response.status_code)

    async def handle_commands(self, request: web.Request) -> web.Response:
        """
        Handle a slash command.

        Endpoint: POST /slack/commands

        Returns:
            Ephemeral command reply as JSON
        """
        body = await request.read()
        rejection = self.webhook_handler.verify_request(request.headers, body)
        if rejection is not None:
            return self._error_response(rejection)

        try:
            form = self._form(body)
            cmd = SlashCommand(
                command=form.get('command', ''),
                text=form.get('text', ''),
                user_id=form.get('user_id', ''),
                team_id=form.get('team_id'),
                channel_id=form.get('channel_id'),
                response_url=form.get('response_url'),
                trigger_id=form.get('trigger_id'),
            )
        except (UnicodeDecodeError, PydanticValidationError) as e:
            logger.warning("Invalid slash command request", extra={'error': str(e)})
            return web.json_response(
                data={'response_type': 'ephemeral', 'text': 'Invalid command request.'},
                status=400
            )

        message = await self.command_handler.handle_command(cmd)
        return web.json_response(data=message.to_response(), status=200)

    async def handle_interactions(self, request: web.Request) -> web.Response:
        """
        Handle an interactivity request (``payload`` form field).

        Endpoint: POST /slack/interactions
        """
        body = await request.read()
        rejection = self.webhook_handler.verify_request(request.headers, body)
        if rejection is not None:
            return self._error_response(rejection)

        payload: Optional[Dict[str, Any]]
        try:
            payload = json.loads(self._form(body).get('payload', ''))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Invalid interaction payload", extra={'error': str(e)})
            payload = None

        if not isinstance(payload, dict):
            return web.json_response(data={'error': 'Invalid payload'}, status=400)

        response = await self.interaction_handler.handle_interaction(payload)
        if response.body is None:
            return web.Response(status=response.status_code)
        return web.json_response(data=response.body, status=response.status_code)

    async def health_check(self, request: web.Request) -> web.Response:
        """
        Health check endpoint.

        Returns:
            JSON response with service status
        """
        return web.json_response(
            data={'status': 'healthy', 'service': 'gengar-bark'},
            status=200
        )
