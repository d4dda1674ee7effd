# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Async event processor for Slack requests.

Slack expects an acknowledgment within three seconds. Work that may take
longer (store mutations, connectivity verification, Home republishing) is
queued here and processed by background workers.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from gengar_bark.logging_config import LogContext, get_logger, log_error_with_context
from gengar_bark.models import WebhookEvent


logger = get_logger(__name__)


@dataclass
class ProcessingResult:
    """Result of event processing."""
    success: bool
    event_id: str
    processing_time_ms: int
    error: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[WebhookEvent], Awaitable[ProcessingResult]]


class AsyncEventProcessor:
    """
    Fixed pool of asyncio workers fed from an unbounded queue.

    Events are dispatched by ``event_type`` to the registered handler; an
    event nobody handles is logged and dropped. A handler that raises is
    logged and the worker moves on to the next event. ``stop`` lets the
    workers finish everything queued before it was called.
    """

    def __init__(self, max_workers: int = 4):
        self.max_workers = max_workers
        # None is the shutdown sentinel, one per worker
        self.queue: "asyncio.Queue[Optional[WebhookEvent]]" = asyncio.Queue()
        self.handlers: Dict[str, EventHandler] = {}
        self.workers: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self.workers)

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: e.g. 'app_home_opened', 'block_actions', 'view_submission'
            handler: Coroutine function returning a ProcessingResult
        """
        self.handlers[event_type] = handler
        logger.info("Event handler registered", extra={
            'event_type': event_type,
            'handler': getattr(handler, '__qualname__', repr(handler))
        })

    async def process_async(self, event: WebhookEvent) -> None:
        """Queue an event for background processing and return immediately."""
        self.queue.put_nowait(event)
        logger.debug("Event queued", extra={
            'event_id': event.event_id,
            'event_type': event.event_type,
            'queue_size': self.queue.qsize()
        })

    async def drain(self) -> None:
        """Wait until every queued event has been processed."""
        await self.queue.join()

    async def start(self) -> None:
        if self.running:
            logger.warning("Event processor already running")
            return

        self.workers = [
            asyncio.create_task(self._worker(worker_id), name=f"gengar-bark-worker-{worker_id}")
            for worker_id in range(self.max_workers)
        ]
        logger.info("Event processor started", extra={'num_workers': self.max_workers})

    async def stop(self) -> None:
        if not self.running:
            return

        for _ in self.workers:
            self.queue.put_nowait(None)
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers = []

        logger.info("Event processor stopped")

    async def _worker(self, worker_id: int) -> None:
        while True:
            event = await self.queue.get()
            try:
                if event is None:
                    return
                await self._dispatch(event, worker_id)
            finally:
                self.queue.task_done()

    async def _dispatch(self, event: WebhookEvent, worker_id: int) -> None:
        started = time.monotonic()

        with LogContext(event_id=event.event_id, event_type=event.event_type,
                        user_id=event.user_id, worker_id=worker_id):
            handler = self.handlers.get(event.event_type)
            if handler is None:
                logger.warning("No handler for event type")
                return

            try:
                result = await handler(event)
            except Exception as e:
                log_error_with_context(logger, "Event processing exception", e)
                return

            elapsed_ms = int((time.monotonic() - started) * 1000)
            if result.success:
                logger.info("Event processed", extra={'processing_time_ms': elapsed_ms})
            else:
                logger.error("Event processing failed", extra={
                    'error': result.error,
                    'processing_time_ms': elapsed_ms
                })
