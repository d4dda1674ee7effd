# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Configuration management for the Gengar Bark service.

Handles environment variables and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class GengarBarkConfig:
    """Configuration for the Gengar Bark service."""

    # Slack API credentials (required)
    slack_bot_token: str
    slack_signing_secret: str

    # MCP token encryption (required)
    mcp_encryption_key: str

    # Database configuration (optional, in-memory storage when unset)
    database_url: Optional[str] = None

    # Redis configuration (optional, in-memory deduplication when unset)
    redis_url: Optional[str] = None
    redis_ttl_seconds: int = 300  # 5 minutes

    # Logging configuration (optional)
    log_level: str = "INFO"
    log_format: str = "json"

    # HTTP server (optional)
    host: str = "0.0.0.0"
    port: int = 3000

    # Webhook configuration (optional)
    webhook_timeout_seconds: int = 3

    # Retry configuration (optional)
    max_retries: int = 3
    retry_backoff_base: float = 2.0

    # MCP verification (optional)
    mcp_verify_timeout_seconds: float = 5.0
    mcp_dns_timeout_seconds: float = 2.0
    mcp_require_https: bool = False

    # Background processing (optional)
    event_workers: int = 4

    @classmethod
    def from_env(cls) -> "GengarBarkConfig":
        """Load configuration from environment variables."""
        return cls(
            slack_bot_token=os.environ["SLACK_BOT_TOKEN"],
            slack_signing_secret=os.environ["SLACK_SIGNING_SECRET"],
            mcp_encryption_key=os.environ["MCP_ENCRYPTION_KEY"],
            database_url=os.environ.get("DATABASE_URL") or None,
            redis_url=os.environ.get("REDIS_URL") or None,
            redis_ttl_seconds=int(os.environ.get("REDIS_TTL_SECONDS", "300")),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_format=os.environ.get("LOG_FORMAT", "json"),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "3000")),
            webhook_timeout_seconds=int(os.environ.get("WEBHOOK_TIMEOUT_SECONDS", "3")),
            max_retries=int(os.environ.get("MAX_RETRIES", "3")),
            retry_backoff_base=float(os.environ.get("RETRY_BACKOFF_BASE", "2.0")),
            mcp_verify_timeout_seconds=float(os.environ.get("MCP_VERIFY_TIMEOUT_SECONDS", "5")),
            mcp_dns_timeout_seconds=float(os.environ.get("MCP_DNS_TIMEOUT_SECONDS", "2")),
            mcp_require_https=_env_bool("MCP_REQUIRE_HTTPS"),
            event_workers=int(os.environ.get("EVENT_WORKERS", "4")),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.slack_bot_token.startswith("xoxb-"):
            raise ValueError("SLACK_BOT_TOKEN must start with 'xoxb-'")

        if not self.slack_signing_secret:
            raise ValueError("SLACK_SIGNING_SECRET must not be empty")

        if len(self.mcp_encryption_key) < 32:
            raise ValueError("MCP_ENCRYPTION_KEY must be at least 32 characters")

        if self.webhook_timeout_seconds < 1 or self.webhook_timeout_seconds > 10:
            raise ValueError("WEBHOOK_TIMEOUT_SECONDS must be between 1 and 10")

        if self.max_retries < 0 or self.max_retries > 10:
            raise ValueError("MAX_RETRIES must be between 0 and 10")

        if self.mcp_verify_timeout_seconds < 1 or self.mcp_verify_timeout_seconds > 30:
            raise ValueError("MCP_VERIFY_TIMEOUT_SECONDS must be between 1 and 30")

        if self.mcp_dns_timeout_seconds <= 0:
            raise ValueError("MCP_DNS_TIMEOUT_SECONDS must be positive")

        if self.event_workers < 1:
            raise ValueError("EVENT_WORKERS must be at least 1")

        if self.log_format.lower() not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
