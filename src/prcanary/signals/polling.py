"""Polling signal source: derive lifecycle events from periodic snapshots.

Some feeds only answer "what is open right now?". The polling source keeps
the previous answer and turns each new one into a delta::

    new id                 → OPEN
    known id, new revision → UPDATED
    known id, now missing  → CLOSED   (implicit close)

A failed fetch yields no events at all. Treating an error as an empty list
would close every environment at once.

Example::

    source = PollingSignalSource(GitHubPullRequestLister(...), interval=30)
    source.on_event(runtime.handle_signal)
    await source.run(stop_event)
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

from prcanary.core.errors import CanaryError
from prcanary.core.logging import get_logger
from prcanary.model.environments import LifecycleState
from prcanary.model.tags import DEFAULT_MAX_LENGTH, CanaryID, is_valid_tag
from prcanary.signals.base import EventDeduplicator, SignalEvent, SignalHandler, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class OpenReference:
    """One open item in a snapshot (e.g. an open pull request)."""

    canary_id: CanaryID
    revision: str
    requested_at: datetime


@runtime_checkable
class ReferenceLister(Protocol):
    """Snapshot provider for the polling source."""

    async def list_open_references(self) -> list[OpenReference]:
        """Return every currently open reference."""
        ...


class PollingSignalSource:
    """Turns periodic snapshots into Open/Updated/Closed events."""

    def __init__(
        self,
        lister: ReferenceLister,
        interval: float = 30.0,
        dedupe_window: int = 4096,
        max_tag_length: int = DEFAULT_MAX_LENGTH,
        source: str = "poll",
    ):
        if interval <= 0:
            raise ValueError(f"poll interval must be positive, got {interval}")
        self._lister = lister
        self._interval = interval
        self._dedupe = EventDeduplicator(dedupe_window)
        self._max_tag_length = max_tag_length
        self._source = source
        self._known: dict[str, OpenReference] = {}
        self._handlers: list[SignalHandler] = []
        self.polls = 0
        self.failed_polls = 0

    def on_event(self, handler: SignalHandler) -> None:
        """Register a handler for synthesized events."""
        self._handlers.append(handler)

    def seed(self, references: Iterable[OpenReference]) -> None:
        """Prime the known set, e.g. from the registry after a restart.

        Seeded references that are missing from the first snapshot are
        closed; seeded references still open produce no event.
        """
        for ref in references:
            self._known[ref.canary_id] = ref
            self._dedupe.first_seen(
                SignalEvent(ref.canary_id, ref.revision, LifecycleState.OPEN, ref.requested_at)
            )

    @property
    def known_ids(self) -> list[str]:
        return sorted(self._known)

    def diff(self, references: Iterable[OpenReference]) -> list[SignalEvent]:
        """Compute events between the known set and a new snapshot."""
        current: dict[str, OpenReference] = {}
        for ref in references:
            if not is_valid_tag(ref.canary_id, self._max_tag_length):
                logger.warning("poll_reference_rejected", canary_id=str(ref.canary_id)[:64])
                continue
            prev = current.get(ref.canary_id)
            if prev is None or ref.requested_at >= prev.requested_at:
                current[ref.canary_id] = ref

        events: list[SignalEvent] = []
        for cid in sorted(current):
            ref = current[cid]
            prev = self._known.get(cid)
            if prev is None:
                state = LifecycleState.OPEN
            elif prev.revision != ref.revision:
                state = LifecycleState.UPDATED
            else:
                continue
            events.append(SignalEvent(ref.canary_id, ref.revision, state, ref.requested_at, self._source))

        now = utcnow()
        for cid in sorted(set(self._known) - set(current)):
            prev = self._known[cid]
            events.append(
                SignalEvent(prev.canary_id, prev.revision, LifecycleState.CLOSED, now, self._source)
            )

        self._known = current
        return events

    async def poll_once(self) -> list[SignalEvent]:
        """Fetch one snapshot and dispatch the resulting events."""
        self.polls += 1
        try:
            references = await self._lister.list_open_references()
        except CanaryError as e:
            self.failed_polls += 1
            logger.warning("poll_failed", **e.to_dict())
            return []

        events = [e for e in self.diff(references) if self._dedupe.first_seen(e)]
        for event in events:
            if event.state == LifecycleState.CLOSED:
                self._dedupe.forget(event.canary_id)
                self._dedupe.first_seen(event)
            await self._dispatch(event)
        if events:
            logger.info("poll_events", count=len(events), known=len(self._known))
        return events

    async def _dispatch(self, event: SignalEvent) -> None:
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception("signal_handler_error", **event.to_dict())

    async def run(self, stop: asyncio.Event) -> None:
        """Poll every ``interval`` seconds until *stop* is set."""
        logger.info("poll_loop_started", interval=self._interval)
        while not stop.is_set():
            try:
                await self.poll_once()
            except Exception:
                logger.exception("poll_loop_error")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
            except TimeoutError:
                pass
        logger.info("poll_loop_stopped", polls=self.polls)
