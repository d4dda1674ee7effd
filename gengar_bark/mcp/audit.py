# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Audit trail for MCP configuration access.

Every configuration operation produces one structured log record on the
``gengar_bark.audit`` logger, and every SSRF rejection produces a security
record. Audit failures are logged and never fail the calling operation.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from gengar_bark.logging_config import get_logger
from gengar_bark.mcp.models import AuditRecord


AUDIT_LOGGER_NAME = "gengar_bark.audit"

logger = get_logger(__name__)


class AuditLogger:
    """Writes configuration audit and security records."""

    def __init__(self, audit_logger: Optional[logging.Logger] = None):
        self._audit = audit_logger or get_logger(AUDIT_LOGGER_NAME)

    def log_configuration_access(self, record: AuditRecord) -> None:
        """
        Record a configuration operation.

        Args:
            record: Audit record describing the operation and its outcome
        """
        try:
            self._audit.info(
                "MCP configuration access",
                extra={
                    "component": "mcp-configuration",
                    "audit_timestamp": record.timestamp.isoformat(),
                    "user_id": record.user_id,
                    "operation": record.operation.value,
                    "configuration_id": record.configuration_id,
                    "server_name": record.server_name,
                    "success": record.success,
                    "error": record.error,
                    "metadata": record.metadata,
                },
            )
        except Exception as e:
            logger.error("Failed to write audit record", extra={"error": str(e)})

    def log_ssrf_block(self, user_id: str, url: str, reason: str) -> None:
        """
        Record a URL rejected by the SSRF policy.

        Args:
            user_id: User who submitted the URL
            url: Rejected URL
            reason: Why the URL was rejected
        """
        try:
            self._audit.warning(
                "SSRF protection block",
                extra={
                    "component": "mcp-configuration",
                    "security": "ssrf-block",
                    "audit_timestamp": datetime.now(timezone.utc).isoformat(),
                    "user_id": user_id,
                    "blocked_url": url,
                    "reason": reason,
                },
            )
        except Exception as e:
            logger.error("Failed to write SSRF audit record", extra={"error": str(e)})
