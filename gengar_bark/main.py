# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Main entry point for the Gengar Bark service.

Loads configuration, builds the service graph once and serves the Slack
endpoints with aiohttp.
"""

from typing import Optional

import redis.asyncio as redis
from aiohttp import web
from dotenv import load_dotenv

from gengar_bark.api import SlackAPI
from gengar_bark.command_handler import CommandHandler
from gengar_bark.config import GengarBarkConfig
from gengar_bark.error_handler import ErrorHandler
from gengar_bark.event_processor import AsyncEventProcessor
from gengar_bark.home_handler import HomeHandler
from gengar_bark.interaction_handler import InteractionHandler
from gengar_bark.logging_config import get_logger, setup_logging
from gengar_bark.mcp.audit import AuditLogger
from gengar_bark.mcp.encryption import SecretCodec
from gengar_bark.mcp.repository import (
    ConfigurationRepository,
    InMemoryConfigurationRepository,
    PostgresConfigurationRepository,
)
from gengar_bark.mcp.service import MCPConfigurationService
from gengar_bark.mcp.url_safety import URLSafetyValidator
from gengar_bark.mcp.verifier import ConnectivityVerifier
from gengar_bark.slack_api_client import SlackAPIClient
from gengar_bark.webhook_handler import WebhookDeduplicator, WebhookHandler


logger = get_logger(__name__)


def build_repository(config: GengarBarkConfig) -> ConfigurationRepository:
    """PostgreSQL repository when DATABASE_URL is set, in-memory otherwise."""
    if config.database_url:
        return PostgresConfigurationRepository(config.database_url)

    logger.warning("DATABASE_URL not set; MCP configurations are kept in memory only")
    return InMemoryConfigurationRepository()


def build_service(
    config: GengarBarkConfig,
    repository: ConfigurationRepository
) -> MCPConfigurationService:
    """Wire the MCP configuration service."""
    return MCPConfigurationService(
        repository=repository,
        codec=SecretCodec(config.mcp_encryption_key),
        url_validator=URLSafetyValidator(
            dns_timeout_seconds=config.mcp_dns_timeout_seconds,
            require_https=config.mcp_require_https,
        ),
        verifier=ConnectivityVerifier(timeout_seconds=config.mcp_verify_timeout_seconds),
        audit=AuditLogger(),
    )


def create_app(
    config: GengarBarkConfig,
    repository: Optional[ConfigurationRepository] = None,
    slack_client: Optional[SlackAPIClient] = None,
    redis_client: Optional[redis.Redis] = None
) -> web.Application:
    """
    Build the aiohttp application and its collaborators.

    Storage connection, schema creation and the background workers are
    started with the application and stopped on cleanup.

    Args:
        config: Validated configuration
        repository: Override the configuration storage
        slack_client: Override the Slack client
        redis_client: Override the Redis client used for de-duplication

    Returns:
        aiohttp Application
    """
    repository = repository or build_repository(config)
    service = build_service(config, repository)

    slack_client = slack_client or SlackAPIClient(
        bot_token=config.slack_bot_token,
        max_retries=config.max_retries,
        retry_backoff_base=config.retry_backoff_base,
    )
    if redis_client is None and config.redis_url:
        redis_client = redis.from_url(config.redis_url)

    event_processor = AsyncEventProcessor(max_workers=config.event_workers)
    error_handler = ErrorHandler()

    home_handler = HomeHandler(service, slack_client)
    event_processor.register_handler('app_home_opened', home_handler.handle_app_home_opened)

    interaction_handler = InteractionHandler(
        service=service,
        slack_client=slack_client,
        home_handler=home_handler,
        event_processor=event_processor,
        error_handler=error_handler,
    )
    interaction_handler.register()

    webhook_handler = WebhookHandler(
        signing_secret=config.slack_signing_secret,
        deduplicator=WebhookDeduplicator(
            redis_client=redis_client,
            ttl_seconds=config.redis_ttl_seconds,
        ),
        event_processor=event_processor,
        timeout_seconds=config.webhook_timeout_seconds,
    )

    api = SlackAPI(
        webhook_handler=webhook_handler,
        command_handler=CommandHandler(service, error_handler),
        interaction_handler=interaction_handler,
    )

    async def lifecycle(app: web.Application):
        await repository.connect()
        await repository.initialize_schema()
        await event_processor.start()
        logger.info("Gengar Bark service started")

        yield

        await event_processor.stop()
        await repository.disconnect()
        if redis_client is not None:
            await redis_client.aclose()
        logger.info("Gengar Bark service stopped")

    api.app.cleanup_ctx.append(lifecycle)
    return api.app


def main() -> None:
    """Main application entry point."""
    load_dotenv(override=False)
    # Defaults until the configured level and format are known
    setup_logging()

    try:
        config = GengarBarkConfig.from_env()
        config.validate()
        setup_logging(log_level=config.log_level, log_format=config.log_format)
    except KeyError as e:
        logger.error(f"Missing required environment variable: {e}")
        raise
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        raise

    logger.info("Starting Gengar Bark service", extra={
        'host': config.host,
        'port': config.port,
        'persistent_storage': bool(config.database_url),
        'redis_enabled': bool(config.redis_url),
    })

    web.run_app(create_app(config), host=config.host, port=config.port, print=None)


if __name__ == "__main__":
    main()
