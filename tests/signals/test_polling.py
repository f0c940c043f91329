"""Tests for the polling signal source."""

from __future__ import annotations

import asyncio

import pytest

from prcanary.core.errors import UnavailableError
from prcanary.model.environments import LifecycleState
from prcanary.model.tags import CanaryID
from prcanary.signals.polling import OpenReference, PollingSignalSource, ReferenceLister
from tests._support.builders import at


def ref(cid: str, revision: str, t: float = 0) -> OpenReference:
    return OpenReference(CanaryID(cid), revision, at(t))


class _Lister:
    def __init__(self, *snapshots):
        self.snapshots = list(snapshots)

    async def list_open_references(self):
        item = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(item, Exception):
            raise item
        return item


def _summary(events):
    return [(e.canary_id, e.revision, e.state) for e in events]


def test_lister_protocol():
    assert isinstance(_Lister([]), ReferenceLister)


class TestDiff:
    def test_new_updated_missing(self):
        source = PollingSignalSource(_Lister([]))
        source.diff([ref("1", "a"), ref("2", "b")])

        events = source.diff([ref("1", "a2", t=1), ref("3", "c")])

        assert _summary(events) == [
            ("1", "a2", LifecycleState.UPDATED),
            ("3", "c", LifecycleState.OPEN),
            ("2", "b", LifecycleState.CLOSED),
        ]
        assert source.known_ids == ["1", "3"]

    def test_unchanged_snapshot_yields_nothing(self):
        source = PollingSignalSource(_Lister([]))
        source.diff([ref("1", "a")])
        assert source.diff([ref("1", "a")]) == []

    def test_invalid_ids_are_dropped(self):
        source = PollingSignalSource(_Lister([]))
        events = source.diff([ref("x1", "a"), ref("1" * 19, "b"), ref("7", "c")])
        assert _summary(events) == [("7", "c", LifecycleState.OPEN)]

    def test_newest_duplicate_wins(self):
        source = PollingSignalSource(_Lister([]))
        events = source.diff([ref("1", "old", t=0), ref("1", "new", t=5)])
        assert _summary(events) == [("1", "new", LifecycleState.OPEN)]

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PollingSignalSource(_Lister([]), interval=0)


@pytest.mark.asyncio
class TestPollOnce:
    async def test_dispatches_to_handlers(self):
        received = []

        async def handler(event):
            received.append(event)

        source = PollingSignalSource(_Lister([ref("1", "a")]))
        source.on_event(handler)

        await source.poll_once()

        assert _summary(received) == [("1", "a", LifecycleState.OPEN)]
        assert received[0].source == "poll"

    async def test_failed_poll_closes_nothing(self):
        source = PollingSignalSource(
            _Lister([ref("1", "a")], UnavailableError("rate limited"), [ref("1", "a")])
        )
        await source.poll_once()

        assert await source.poll_once() == []
        assert source.failed_polls == 1
        assert source.known_ids == ["1"]
        assert await source.poll_once() == []

    async def test_seeded_reference_missing_from_first_poll_is_closed(self):
        source = PollingSignalSource(_Lister([ref("2", "b")]))
        source.seed([ref("1", "a")])

        events = await source.poll_once()

        assert _summary(events) == [
            ("2", "b", LifecycleState.OPEN),
            ("1", "a", LifecycleState.CLOSED),
        ]

    async def test_seeded_reference_still_open_is_silent(self):
        source = PollingSignalSource(_Lister([ref("1", "a")]))
        source.seed([ref("1", "a")])
        assert await source.poll_once() == []

    async def test_reopen_of_same_revision_after_close(self):
        source = PollingSignalSource(_Lister([ref("1", "a")], [], [ref("1", "a", t=9)]))

        await source.poll_once()
        closed = await source.poll_once()
        reopened = await source.poll_once()

        assert _summary(closed) == [("1", "a", LifecycleState.CLOSED)]
        assert _summary(reopened) == [("1", "a", LifecycleState.OPEN)]

    async def test_force_push_back_to_earlier_revision(self):
        source = PollingSignalSource(_Lister([ref("1", "a", t=0)], [ref("1", "b", t=10)], [ref("1", "a", t=20)]))

        await source.poll_once()
        await source.poll_once()
        reverted = await source.poll_once()

        assert _summary(reverted) == [("1", "a", LifecycleState.UPDATED)]
        assert reverted[0].requested_at == at(20)

    async def test_handler_error_does_not_stop_dispatch(self):
        seen = []

        async def bad(event):
            raise RuntimeError("boom")

        async def good(event):
            seen.append(event.canary_id)

        source = PollingSignalSource(_Lister([ref("1", "a"), ref("2", "b")]))
        source.on_event(bad)
        source.on_event(good)

        await source.poll_once()

        assert seen == ["1", "2"]

    async def test_run_stops_on_event(self):
        source = PollingSignalSource(_Lister([ref("1", "a")]), interval=0.01)
        stop = asyncio.Event()
        task = asyncio.create_task(source.run(stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert source.polls >= 2
