"""Tests for carecadence.core.events: EventBus, Event and DebouncedHook."""

from __future__ import annotations

import asyncio
from dataclasses import FrozenInstanceError

import pytest

from carecadence.core.events import INSTANCES_CHANGED, LOGS_CHANGED, DebouncedHook, Event, EventBus

pytestmark = pytest.mark.smoke


# ---------------------------------------------------------------------------
# 1. on / off / emit lifecycle
# ---------------------------------------------------------------------------


async def test_on_off_emit_lifecycle():
    bus = EventBus()
    received: list[Event] = []

    def hook(event: Event) -> None:
        received.append(event)

    bus.on(INSTANCES_CHANGED, hook)
    evt = Event(name=INSTANCES_CHANGED, payload={"patient_id": "mom"}, source="test")
    await bus.emit(evt)

    assert len(received) == 1
    assert received[0] is evt

    bus.off(INSTANCES_CHANGED, hook)
    await bus.emit(evt)

    assert len(received) == 1


def test_off_unknown_hook_is_noop():
    bus = EventBus()
    bus.off("never.registered", lambda e: None)


# ---------------------------------------------------------------------------
# 2. Hooks only see their own topic
# ---------------------------------------------------------------------------


async def test_hooks_receive_only_their_topic():
    bus = EventBus()
    received: list[str] = []

    bus.on(INSTANCES_CHANGED, lambda e: received.append(e.name))
    bus.on(LOGS_CHANGED, lambda e: received.append(e.name))

    await bus.emit(Event(name=LOGS_CHANGED))
    await bus.emit(Event(name="other"))
    await bus.emit(Event(name=INSTANCES_CHANGED))

    assert received == [LOGS_CHANGED, INSTANCES_CHANGED]


# ---------------------------------------------------------------------------
# 3. A hook removed mid-emit still finishes the current round
# ---------------------------------------------------------------------------


async def test_off_during_emit_keeps_current_round():
    bus = EventBus()
    received: list[str] = []

    def first(event: Event) -> None:
        received.append("first")
        bus.off(event.name, second)

    def second(event: Event) -> None:
        received.append("second")

    bus.on("once", first)
    bus.on("once", second)

    await bus.emit(Event(name="once"))
    await bus.emit(Event(name="once"))

    assert received == ["first", "second", "first"]


# ---------------------------------------------------------------------------
# 4. Async hooks are awaited properly
# ---------------------------------------------------------------------------


async def test_async_hooks_awaited():
    bus = EventBus()
    received: list[Event] = []

    async def async_hook(event: Event) -> None:
        await asyncio.sleep(0)
        received.append(event)

    bus.on("async.event", async_hook)
    evt = Event(name="async.event", source="test")
    await bus.emit(evt)

    assert len(received) == 1
    assert received[0] is evt


# ---------------------------------------------------------------------------
# 5. Emit with no listeners does not raise
# ---------------------------------------------------------------------------


async def test_emit_no_listeners():
    bus = EventBus()
    await bus.emit(Event(name="nobody.listening"))


# ---------------------------------------------------------------------------
# 6. Hook exceptions don't prevent other hooks from running
# ---------------------------------------------------------------------------


async def test_hook_exception_does_not_block_others():
    bus = EventBus()
    received: list[str] = []

    def bad_hook(event: Event) -> None:
        raise RuntimeError("boom")

    def good_hook(event: Event) -> None:
        received.append("ok")

    bus.on("err.event", bad_hook)
    bus.on("err.event", good_hook)

    await bus.emit(Event(name="err.event"))
    assert received == ["ok"]


async def test_async_hook_exception_does_not_block_others():
    bus = EventBus()
    received: list[str] = []

    async def bad_hook(event: Event) -> None:
        raise RuntimeError("async boom")

    async def good_hook(event: Event) -> None:
        received.append("ok")

    bus.on("err.event", bad_hook)
    bus.on("err.event", good_hook)

    await bus.emit(Event(name="err.event"))
    assert received == ["ok"]


# ---------------------------------------------------------------------------
# 7. Event is frozen (immutable)
# ---------------------------------------------------------------------------


def test_event_is_frozen():
    evt = Event(name="frozen.test", payload={"x": 1}, source="test")
    with pytest.raises(FrozenInstanceError):
        evt.name = "changed"  # type: ignore[misc]
    with pytest.raises(FrozenInstanceError):
        evt.source = "changed"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# 8. DebouncedHook collapses bursts
# ---------------------------------------------------------------------------


class TestDebouncedHook:
    async def test_burst_collapses_into_one_call(self):
        batches: list[list[Event]] = []
        hook = DebouncedHook(batches.append, delay=0.01)

        for i in range(3):
            hook(Event(name="burst", payload={"n": i}))
        assert batches == []
        assert hook.pending == 3

        await asyncio.sleep(0.05)

        assert len(batches) == 1
        assert [e.payload["n"] for e in batches[0]] == [0, 1, 2]
        assert hook.pending == 0

    async def test_flush_delivers_immediately(self):
        batches: list[list[Event]] = []
        hook = DebouncedHook(batches.append, delay=10)

        hook(Event(name="a"))
        hook(Event(name="b"))
        await hook.flush()

        assert len(batches) == 1
        assert [e.name for e in batches[0]] == ["a", "b"]
        hook.cancel()

    async def test_flush_with_nothing_pending_is_noop(self):
        calls: list[list[Event]] = []
        hook = DebouncedHook(calls.append)
        await hook.flush()
        assert calls == []

    async def test_async_target_is_awaited(self):
        seen: list[int] = []

        async def target(events: list[Event]) -> None:
            await asyncio.sleep(0)
            seen.append(len(events))

        hook = DebouncedHook(target, delay=0)
        hook(Event(name="x"))
        hook(Event(name="y"))
        await asyncio.sleep(0.01)

        assert seen == [2]

    async def test_cancel_drops_buffered_events(self):
        calls: list[list[Event]] = []
        hook = DebouncedHook(calls.append, delay=0.01)
        hook(Event(name="dropped"))
        hook.cancel()
        await asyncio.sleep(0.03)

        assert calls == []
        assert hook.pending == 0

    async def test_target_failure_is_contained(self):
        def target(events: list[Event]) -> None:
            raise RuntimeError("recompute failed")

        hook = DebouncedHook(target, delay=0)
        hook(Event(name="x"))
        await hook.flush()
        assert hook.pending == 0

    async def test_registered_as_bus_hook(self):
        bus = EventBus()
        batches: list[list[Event]] = []
        hook = DebouncedHook(batches.append, delay=10)
        bus.on(LOGS_CHANGED, hook)

        await bus.emit(Event(name=LOGS_CHANGED, payload={"patient_id": "mom"}))
        await bus.emit(Event(name=LOGS_CHANGED, payload={"patient_id": "dad"}))
        await hook.flush()

        assert len(batches) == 1
        assert {e.payload["patient_id"] for e in batches[0]} == {"mom", "dad"}
        hook.cancel()

    def test_runs_synchronously_without_loop(self):
        batches: list[list[Event]] = []
        hook = DebouncedHook(batches.append, delay=10)
        hook(Event(name="now"))
        assert len(batches) == 1
