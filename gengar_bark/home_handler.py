# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
App Home publishing.

Renders a user's MCP servers into the Home tab and publishes it whenever
the tab is opened, refreshed, or a configuration changes.
"""

import time

from gengar_bark.event_processor import ProcessingResult
from gengar_bark.logging_config import get_logger, log_error_with_context
from gengar_bark.mcp.errors import MCPConfigurationError
from gengar_bark.mcp.service import MCPConfigurationService
from gengar_bark.models import WebhookEvent
from gengar_bark.slack_api_client import SlackAPIClient, SlackAPIRetryError
from gengar_bark.templates import AppHomeTemplate


logger = get_logger(__name__)


class HomeHandler:
    """Publishes the MCP configuration App Home."""

    def __init__(self, service: MCPConfigurationService, slack_client: SlackAPIClient):
        self.service = service
        self.slack_client = slack_client
        self.template = AppHomeTemplate()

    async def publish_home(self, user_id: str) -> None:
        """
        Render and publish a user's App Home.

        Raises:
            PersistenceError: If configurations cannot be loaded
            SlackAPIRetryError: If views.publish keeps failing
        """
        configurations = await self.service.list_configurations(user_id)
        view = self.template.render(configurations)
        await self.slack_client.publish_view(user_id, view)

        logger.info("App Home published", extra={
            'user_id': user_id,
            'server_count': len(configurations)
        })

    async def handle_app_home_opened(self, event: WebhookEvent) -> ProcessingResult:
        """Background handler for ``app_home_opened`` events."""
        start = time.perf_counter()
        try:
            await self.publish_home(event.user_id)
        except (MCPConfigurationError, SlackAPIRetryError) as e:
            log_error_with_context(
                logger, "Failed to publish App Home", e,
                user_id=event.user_id, event_id=event.event_id
            )
            return ProcessingResult(
                success=False,
                event_id=event.event_id,
                processing_time_ms=int((time.perf_counter() - start) * 1000),
                error=str(e)
            )

        return ProcessingResult(
            success=True,
            event_id=event.event_id,
            processing_time_ms=int((time.perf_counter() - start) * 1000)
        )
