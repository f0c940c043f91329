"""Keyed worker pool: at most one in-flight job per key, bounded overall.

WHY
───
Reconciliation of one canary id must never overlap with itself, while
different ids proceed in parallel up to a cap. Notifications arriving
while an id is running must not be lost, but must not queue up either:
they collapse into a single rerun.

ARCHITECTURE
────────────
::

    KeyedWorkerPool(handler, max_workers)
      ├── .submit(key)          ─ start, or mark dirty if running
      ├── .schedule(key, delay) ─ delayed submit (backoff)
      ├── .drain()              ─ wait until nothing is running
      └── .close()              ─ cancel timers and running tasks

    handler(key) -> float | None
      returning a delay schedules a retry of the same key

    Per key:  idle ──submit──► running ──done──► idle
                                 │  ▲
                          submit │  │ dirty → run again
                                 ▼  │
                               dirty
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from prcanary.core.logging import get_logger

logger = get_logger(__name__)

KeyHandler = Callable[[str], Awaitable[float | None]]


class KeyedWorkerPool:
    """Run *handler* per key with per-key exclusivity and a global cap."""

    def __init__(self, handler: KeyHandler, max_workers: int = 8):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._handler = handler
        self._semaphore = asyncio.Semaphore(max_workers)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._dirty: set[str] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._closed = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def pending_retries(self) -> int:
        return len(self._timers)

    def is_running(self, key: str) -> bool:
        return key in self._tasks

    def submit(self, key: str) -> None:
        """Request a run for *key*. Must be called from the event loop."""
        if self._closed:
            return
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        if key in self._tasks:
            self._dirty.add(key)
            return
        self._tasks[key] = asyncio.get_running_loop().create_task(
            self._run(key), name=f"reconcile-{key}"
        )

    def schedule(self, key: str, delay: float) -> None:
        """Submit *key* after *delay* seconds, replacing any pending retry."""
        if self._closed:
            return
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.submit(key)

    async def _run(self, key: str) -> None:
        retry_delay: float | None = None
        try:
            async with self._semaphore:
                while True:
                    self._dirty.discard(key)
                    try:
                        retry_delay = await self._handler(key)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.error("worker_handler_failed", key=key, error=str(e), exc_info=True)
                        retry_delay = None
                    if key not in self._dirty:
                        break
        finally:
            self._tasks.pop(key, None)
        if retry_delay is not None and not self._closed:
            self.schedule(key, retry_delay)

    async def drain(self) -> None:
        """Wait until no key is running. Pending retry timers are left alone."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
