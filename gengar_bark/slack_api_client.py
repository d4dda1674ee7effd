# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Slack API client with retry logic and error handling.

Wraps the Slack SDK's AsyncWebClient with exponential backoff for rate
limits and transient server errors. Only the Web API methods the MCP
configuration screens need are exposed.
"""

import asyncio
import random
import time
from typing import Any, Dict, List, Optional

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from gengar_bark.logging_config import get_logger, log_api_call, log_error_with_context


logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_ERRORS = frozenset({'internal_error', 'service_unavailable', 'fatal_error', 'ratelimited'})


class SlackAPIRetryError(Exception):
    """Exception raised when Slack API call fails after all retries."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, attempts: int = 0):
        self.message = message
        self.original_error = original_error
        self.attempts = attempts
        super().__init__(message)

    @property
    def slack_error(self) -> Optional[str]:
        """Slack error code (e.g. 'expired_trigger_id'), if the API returned one."""
        if isinstance(self.original_error, SlackApiError):
            return self.original_error.response.get('error')
        return None


class SlackAPIClient:
    """
    Slack Web API client with retries.

    Rate limits (honouring Retry-After) and 5xx responses are retried with
    exponential backoff and jitter; any other error fails immediately.
    """

    def __init__(
        self,
        bot_token: str,
        max_retries: int = 3,
        retry_backoff_base: float = 2.0,
        client: Optional[AsyncWebClient] = None,
    ):
        """
        Initialize Slack API client.

        Args:
            bot_token: Bot token (xoxb-...)
            max_retries: Retries after the first attempt
            retry_backoff_base: Base for exponential backoff, in seconds
            client: Optional pre-built AsyncWebClient
        """
        self.client = client or AsyncWebClient(token=bot_token)
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base

        logger.info("Initialized Slack API client", extra={
            "max_retries": max_retries,
            "backoff_base": retry_backoff_base
        })

    def backoff_seconds(self, retry_number: int, retry_after: Optional[int] = None) -> float:
        """
        Delay before a retry, with up to 10% jitter.

        Args:
            retry_number: 0 for the first retry
            retry_after: Retry-After value from a rate-limit response
        """
        base = float(retry_after) if retry_after is not None else self.retry_backoff_base ** retry_number
        return base * (1 + 0.1 * random.random())

    @staticmethod
    def _is_retryable(error: SlackApiError) -> bool:
        return (
            error.response.status_code in RETRYABLE_STATUS_CODES
            or error.response.get('error') in RETRYABLE_ERRORS
        )

    @staticmethod
    def _retry_after(error: SlackApiError) -> Optional[int]:
        try:
            return int(error.response.headers.get('Retry-After'))
        except (TypeError, ValueError):
            return None

    async def _call(self, method: str, **kwargs) -> Any:
        """
        Call a Web API method by its dotted name, retrying transient failures.

        Raises:
            SlackAPIRetryError: On a non-retryable error, an unexpected
                exception, or once retries are exhausted
        """
        send = getattr(self.client, method.replace('.', '_'))
        started = time.perf_counter()
        attempt = 0

        while True:
            attempt += 1
            try:
                response = await send(**kwargs)
            except SlackApiError as e:
                error_code = e.response.get('error')
                retryable = self._is_retryable(e)
                if not retryable or attempt > self.max_retries:
                    log_api_call(
                        logger, "Slack", method,
                        duration_ms=(time.perf_counter() - started) * 1000,
                        success=False,
                        status_code=e.response.status_code,
                        attempts=attempt,
                        error=error_code,
                    )
                    message = (
                        f"Slack API call failed after {attempt} attempts" if retryable
                        else f"Slack API error: {error_code}"
                    )
                    raise SlackAPIRetryError(message, original_error=e, attempts=attempt) from e

                delay = self.backoff_seconds(attempt - 1, self._retry_after(e))
                logger.warning("Retrying Slack API call", extra={
                    "method": method,
                    "attempt": attempt,
                    "backoff": round(delay, 2),
                    "error": error_code,
                    "status_code": e.response.status_code
                })
                await asyncio.sleep(delay)
            except Exception as e:
                log_error_with_context(
                    logger, "Unexpected error calling Slack API", e,
                    method=method, attempt=attempt
                )
                raise SlackAPIRetryError(f"Unexpected error: {e}", original_error=e, attempts=attempt) from e
            else:
                log_api_call(
                    logger, "Slack", method,
                    duration_ms=(time.perf_counter() - started) * 1000,
                    attempts=attempt,
                )
                return response

    async def publish_view(self, user_id: str, view: Dict[str, Any]) -> Dict[str, Any]:
        """Publish a user's App Home view."""
        return await self._call("views.publish", user_id=user_id, view=view)

    async def open_view(self, trigger_id: str, view: Dict[str, Any]) -> Dict[str, Any]:
        """
        Open a modal.

        Trigger ids expire after 3 seconds, so this must be called from the
        interaction request itself, not from a background task.
        """
        return await self._call("views.open", trigger_id=trigger_id, view=view)

    async def update_view(
        self,
        view_id: str,
        view: Dict[str, Any],
        hash: Optional[str] = None
    ) -> Dict[str, Any]:
        """Replace an open modal's content; ``hash`` guards against racing updates."""
        if hash:
            return await self._call("views.update", view_id=view_id, view=view, hash=hash)
        return await self._call("views.update", view_id=view_id, view=view)

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """Post a message to a channel, or to a user's DM when given a user id."""
        return await self._call("chat.postMessage", channel=channel, text=text, blocks=blocks, **kwargs)
