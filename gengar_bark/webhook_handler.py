# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Webhook handler for Slack requests.

Every Slack route (events, slash commands, interactions) is authenticated
here with Slack's v0 request signature. Events API deliveries are also
de-duplicated, since Slack redelivers anything not acknowledged within
three seconds, and App Home events are queued for background processing.
"""

import asyncio
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from gengar_bark.logging_config import get_logger
from gengar_bark.models import WebhookEvent


logger = get_logger(__name__)

TIMESTAMP_HEADER = 'X-Slack-Request-Timestamp'
SIGNATURE_HEADER = 'X-Slack-Signature'
RETRY_HEADER = 'X-Slack-Retry-Num'
SIGNATURE_VERSION = 'v0'


def compute_signature(signing_secret: bytes, timestamp: str, body: bytes) -> str:
    """Slack v0 signature: hex HMAC-SHA256 over ``v0:{timestamp}:{body}``."""
    base = b':'.join([SIGNATURE_VERSION.encode('ascii'), timestamp.encode('utf-8'), body])
    digest = hmac.new(signing_secret, base, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


@dataclass
class WebhookResponse:
    """Response from webhook processing."""
    status_code: int
    body: Dict[str, Any]
    processed: bool = False
    duplicate: bool = False
    error: Optional[str] = None


class SignatureValidator:
    """
    Checks ``X-Slack-Signature`` against the app's signing secret.

    Requests stamped more than five minutes away from local time are
    refused before the signature is looked at, so a captured request
    cannot be replayed later.
    """

    MAX_REQUEST_AGE_SECONDS = 300

    def __init__(self, signing_secret: str, clock: Callable[[], float] = time.time):
        self._secret = signing_secret.encode('utf-8')
        self._clock = clock

    def is_fresh(self, timestamp: str) -> bool:
        """True if the timestamp is a Unix time inside the replay window."""
        try:
            sent_at = int(timestamp)
        except (TypeError, ValueError):
            logger.warning("Non-numeric request timestamp", extra={'timestamp': timestamp})
            return False

        skew = abs(self._clock() - sent_at)
        if skew > self.MAX_REQUEST_AGE_SECONDS:
            logger.warning("Request timestamp outside replay window", extra={
                'skew_seconds': int(skew),
                'max_age': self.MAX_REQUEST_AGE_SECONDS
            })
            return False
        return True

    def validate_signature(self, timestamp: str, body: bytes, signature: str) -> bool:
        """
        Validate a request signature.

        Args:
            timestamp: X-Slack-Request-Timestamp header value
            body: Raw request body bytes
            signature: X-Slack-Signature header value

        Returns:
            True if the request is fresh and correctly signed
        """
        if not self.is_fresh(timestamp):
            return False

        expected = compute_signature(self._secret, timestamp, body)
        if hmac.compare_digest(expected.encode('utf-8'), (signature or '').encode('utf-8')):
            return True

        logger.warning("Slack signature mismatch", extra={'timestamp': timestamp})
        return False


class WebhookDeduplicator:
    """
    Remembers Events API event ids for ``ttl_seconds``.

    With a redis.asyncio client the claim is a single ``SET NX EX`` so
    that several replicas agree on which one handles a delivery; without
    one, ids live in process memory. Redis errors fail open: a repeated
    ``app_home_opened`` only republishes the Home tab.
    """

    KEY_PREFIX = "gengar_bark:event:"

    def __init__(self, redis_client: Optional[Any] = None, ttl_seconds: int = 300):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        # event id -> monotonic expiry
        self._seen: Dict[str, float] = {}

        logger.info("Webhook deduplicator initialized", extra={
            'ttl_seconds': ttl_seconds,
            'using_redis': redis_client is not None
        })

    async def claim(self, event_id: str) -> bool:
        """
        Record an event id.

        Returns:
            True for the first delivery of the id, False for a redelivery
        """
        if self.redis_client is None:
            if self._seen_recently(event_id):
                return False
            self._seen[event_id] = time.monotonic() + self.ttl_seconds
            return True

        try:
            created = await self.redis_client.set(
                self.KEY_PREFIX + event_id, "1", nx=True, ex=self.ttl_seconds
            )
        except RedisError as e:
            logger.error("Redis event claim failed", extra={
                'event_id': event_id,
                'error': str(e)
            })
            return True
        return bool(created)

    def _seen_recently(self, event_id: str) -> bool:
        now = time.monotonic()
        for stale in [key for key, expiry in self._seen.items() if expiry <= now]:
            del self._seen[stale]
        return event_id in self._seen


class WebhookHandler:
    """
    Entry point for signed Slack requests.

    ``verify_request`` authenticates any Slack request. ``handle_webhook``
    processes Events API deliveries: answers URL verification, drops
    redeliveries and queues App Home events.
    """

    HANDLED_EVENTS = {'app_home_opened'}

    def __init__(
        self,
        signing_secret: str,
        deduplicator: WebhookDeduplicator,
        event_processor: Optional[Any] = None,
        timeout_seconds: float = 3
    ):
        """
        Initialize webhook handler.

        Args:
            signing_secret: Slack app signing secret
            deduplicator: WebhookDeduplicator instance
            event_processor: Optional AsyncEventProcessor for background processing
            timeout_seconds: Maximum time to wait for the event processor hand-off
        """
        self.validator = SignatureValidator(signing_secret)
        self.deduplicator = deduplicator
        self.event_processor = event_processor
        self.timeout_seconds = timeout_seconds

    def verify_request(
        self,
        headers: Mapping[str, str],
        body: bytes
    ) -> Optional[WebhookResponse]:
        """
        Authenticate a Slack request.

        Returns:
            None if the request is authentic, otherwise the error response to send
        """
        timestamp = headers.get(TIMESTAMP_HEADER, '')
        signature = headers.get(SIGNATURE_HEADER, '')

        if not (timestamp and signature):
            logger.warning("Slack request without signature headers", extra={
                'has_timestamp': bool(timestamp),
                'has_signature': bool(signature)
            })
            return WebhookResponse(
                status_code=400,
                body={'error': 'Missing required headers'},
                error='missing_headers'
            )

        if not self.validator.validate_signature(timestamp, body, signature):
            return WebhookResponse(
                status_code=401,
                body={'error': 'Invalid signature'},
                error='invalid_signature'
            )

        return None

    async def handle_webhook(
        self,
        headers: Mapping[str, str],
        body: bytes
    ) -> WebhookResponse:
        """
        Handle an Events API delivery.

        Args:
            headers: HTTP request headers
            body: Raw request body bytes

        Returns:
            WebhookResponse with status and processing info
        """
        started = time.monotonic()

        rejection = self.verify_request(headers, body)
        if rejection is not None:
            return rejection

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Failed to parse event body", extra={'error': str(e)})
            payload = None

        if not isinstance(payload, dict):
            return WebhookResponse(
                status_code=400,
                body={'error': 'Invalid JSON'},
                error='invalid_json'
            )

        if payload.get('type') == 'url_verification':
            logger.info("Answering URL verification challenge")
            return WebhookResponse(
                status_code=200,
                body={'challenge': payload.get('challenge', '')},
                processed=True
            )

        ack = WebhookResponse(status_code=200, body={'ok': True})

        event_id = payload.get('event_id')
        if not event_id:
            logger.warning("Event delivery without event_id", extra={
                'payload_type': payload.get('type')
            })
            return ack

        if not await self.deduplicator.claim(event_id):
            logger.info("Duplicate event delivery", extra={
                'event_id': event_id,
                'retry_num': headers.get(RETRY_HEADER)
            })
            ack.duplicate = True
            return ack

        event = self._parse_event(payload, event_id)
        if event is None:
            return ack

        if self.event_processor:
            try:
                await asyncio.wait_for(
                    self.event_processor.process_async(event),
                    timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError:
                # Still acknowledge so Slack does not redeliver
                logger.error("Timed out handing event to processor", extra={
                    'event_id': event_id,
                    'event_type': event.event_type,
                    'timeout_seconds': self.timeout_seconds
                })
                ack.error = 'timeout'
                return ack

        logger.info("Event queued", extra={
            'event_id': event_id,
            'event_type': event.event_type,
            'user_id': event.user_id,
            'team_id': event.team_id,
            'processing_time_ms': int((time.monotonic() - started) * 1000)
        })

        ack.processed = True
        return ack

    def _parse_event(self, payload: Dict[str, Any], event_id: str) -> Optional[WebhookEvent]:
        """WebhookEvent for an event this service handles, else None."""
        inner = payload.get('event') or {}
        event_type = inner.get('type')

        if event_type not in self.HANDLED_EVENTS:
            logger.debug("Ignoring unhandled event type", extra={
                'event_id': event_id,
                'event_type': event_type
            })
            return None

        # app_home_opened also fires for the Messages tab
        if inner.get('tab', 'home') != 'home':
            return None

        try:
            return WebhookEvent(
                event_id=event_id,
                event_type=event_type,
                user_id=inner.get('user', ''),
                team_id=payload.get('team_id'),
                payload=inner,
            )
        except PydanticValidationError as e:
            logger.warning("Malformed event payload", extra={
                'event_id': event_id,
                'error': str(e)
            })
            return None
