"""Single-consumer gateway event queue.

The gateway pushes events with ``publish`` (the EventSink it receives on
open). One consumer task handles them in arrival order, so session
transitions follow the gateway's ordering. Handlers registered as background
(the history import) run as separate tasks so the consumer keeps draining
live events while they are suspended between batches.
"""

import asyncio
from typing import Any, Awaitable, Callable

from wabridge.observability.correlation import correlation_scope
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context
from wabridge.whatsapp.gateway import GatewayEvent

logger = get_logger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


class EventDispatcher:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[GatewayEvent] = asyncio.Queue()
        self._handlers: dict[type, tuple[Handler, bool]] = {}
        self._background: set[asyncio.Task] = set()
        self._consumer: asyncio.Task | None = None

    def register(self, event_type: type, handler: Handler, *, background: bool = False) -> None:
        self._handlers[event_type] = (handler, background)

    def publish(self, event: GatewayEvent) -> None:
        """EventSink: enqueue without blocking the gateway's callback."""
        self._queue.put_nowait(event)

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def start(self) -> None:
        if not self.running:
            self._consumer = asyncio.get_running_loop().create_task(self._consume())

    async def stop(self) -> None:
        tasks = [t for t in (self._consumer, *self._background) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._consumer = None
        self._background.clear()

    async def drain(self) -> None:
        """Wait until the queue is empty and background handlers are done."""
        while True:
            await self._queue.join()
            if not self._background:
                return
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            finally:
                self._queue.task_done()

    async def dispatch(self, event: GatewayEvent) -> None:
        entry = self._handlers.get(type(event))
        if entry is None:
            logger.debug(
                "unhandled gateway event",
                extra={"extra_fields": safe_log_context(event=type(event).__name__)},
            )
            return

        handler, background = entry
        with correlation_scope():
            if background:
                task = asyncio.get_running_loop().create_task(self._guarded(handler, event))
                self._background.add(task)
                task.add_done_callback(self._background.discard)
            else:
                await self._guarded(handler, event)

    async def _guarded(self, handler: Handler, event: GatewayEvent) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception(
                "gateway event handler failed",
                extra={"extra_fields": safe_log_context(event=type(event).__name__)},
            )
