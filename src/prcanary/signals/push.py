"""Push signal source: events delivered asynchronously by the feed.

Delivery is at-least-once and unordered. The source drops exact duplicates
by ``(id, revision, closed)``; ordering across revisions is enforced by the
registry, which rejects anything older than what it already holds.

Deliveries are queued and drained by a single consumer task so a webhook
request returns as soon as the event is accepted.

Example::

    source = PushSignalSource()
    source.on_event(runtime.handle_signal)
    task = asyncio.create_task(source.run(stop))
    ...
    await source.deliver(event)     # from the webhook endpoint
"""

from __future__ import annotations

import asyncio

from prcanary.core.logging import get_logger
from prcanary.model.environments import LifecycleState
from prcanary.signals.base import EventDeduplicator, SignalEvent, SignalHandler

logger = get_logger(__name__)


class PushSignalSource:
    """Fan-in point for pushed lifecycle events."""

    def __init__(self, dedupe_window: int = 4096, max_queue: int = 10000):
        self._dedupe = EventDeduplicator(dedupe_window)
        self._handlers: list[SignalHandler] = []
        self._queue: asyncio.Queue[SignalEvent] = asyncio.Queue(maxsize=max_queue)
        self.duplicates = 0

    def on_event(self, handler: SignalHandler) -> None:
        """Register a handler for accepted events."""
        self._handlers.append(handler)

    def accept(self, event: SignalEvent) -> bool:
        """Deduplicate and enqueue *event*; False for a duplicate.

        Raises:
            asyncio.QueueFull: If the consumer has fallen too far behind.
        """
        if not self._dedupe.first_seen(event):
            self.duplicates += 1
            logger.debug("push_event_duplicate", **event.to_dict())
            return False
        if event.state == LifecycleState.CLOSED:
            # allow a later reopen of the same revision
            self._dedupe.forget(event.canary_id)
            self._dedupe.first_seen(event)
        self._queue.put_nowait(event)
        return True

    async def deliver(self, event: SignalEvent) -> bool:
        """Accept *event* and dispatch it immediately (no consumer task)."""
        if not self.accept(event):
            return False
        await self._dispatch(self._queue.get_nowait())
        self._queue.task_done()
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _dispatch(self, event: SignalEvent) -> None:
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception("signal_handler_error", **event.to_dict())

    async def drain(self) -> None:
        """Wait until every queued event has been dispatched."""
        await self._queue.join()

    async def run(self, stop: asyncio.Event) -> None:
        """Dispatch queued events until *stop* is set."""
        logger.info("push_consumer_started")
        while not stop.is_set():
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except TimeoutError:
                continue
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()
        logger.info("push_consumer_stopped")
