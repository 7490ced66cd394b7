"""Event bus for loose-coupled change propagation.

Provides a lightweight publish/subscribe system that lets the repositories,
the completion coordinator, the notification scheduler and the adherence
engine talk to each other without direct dependencies. Hooks can be sync
or async.

Usage::

    from carecadence.core.events import EventBus, Event, INSTANCE_STATUS_CHANGED

    bus = EventBus()

    async def on_status(event: Event) -> None:
        print(f"Instance changed: {event.payload}")

    bus.on(INSTANCE_STATUS_CHANGED, on_status)
    await bus.emit(Event(name=INSTANCE_STATUS_CHANGED, payload={"instance_id": "x"}, source="completion"))
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass, field
from time import time
from typing import Any

from loguru import logger

# ---------------------------------------------------------------------------
# Well-known event names
# ---------------------------------------------------------------------------

REGIMEN_CHANGED = "regimen.changed"
INSTANCES_CHANGED = "instances.changed"
INSTANCE_STATUS_CHANGED = "instance.status_changed"
LOGS_CHANGED = "logs.changed"
NOTIFICATIONS_CHANGED = "notifications.changed"
DELIVERY_PREFERENCES_CHANGED = "delivery_preferences.changed"
SCOPE_CHANGED = "scope.changed"
STARTUP = "startup"
SHUTDOWN = "shutdown"

# Type alias for hook callables (sync or async)
Hook = Any  # Callable[[Event], None] | Callable[[Event], Awaitable[None]]


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Event:
    """An immutable event that flows through the bus."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time)
    source: str = ""


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------


class EventBus:
    """Simple pub/sub event bus supporting sync and async hooks."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[Hook]] = defaultdict(list)

    def on(self, event_name: str, hook: Hook) -> None:
        """Register *hook* for a specific event name."""
        self._hooks[event_name].append(hook)

    def off(self, event_name: str, hook: Hook) -> None:
        """Unregister *hook* from a specific event name."""
        try:
            self._hooks[event_name].remove(hook)
        except ValueError:
            pass

    async def emit(self, event: Event) -> None:
        """Emit an event, running all matching hooks (async)."""
        for hook in list(self._hooks.get(event.name, [])):
            try:
                if _is_async_hook(hook):
                    await hook(event)
                else:
                    hook(event)
            except Exception as exc:
                logger.warning(f"Event hook failed for {event.name}: {exc}")


def _is_async_hook(hook: Hook) -> bool:
    if inspect.iscoroutinefunction(hook):
        return True
    call = getattr(hook, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


# ---------------------------------------------------------------------------
# Debouncing
# ---------------------------------------------------------------------------


class DebouncedHook:
    """Collapse a burst of events into a single delayed callback.

    Register an instance as an ordinary (sync) hook. Every received event is
    buffered; the wrapped *target* runs once, ``delay`` seconds after the
    first buffered event, with the list of everything collected so far.
    *target* may be sync or async.

    Without a running loop the target runs immediately.
    """

    def __init__(self, target: Any, delay: float = 0.5) -> None:
        self.target = target
        self.delay = delay
        self._pending: list[Event] = []
        self._task: asyncio.Task | None = None

    def __call__(self, event: Event) -> None:
        self._pending.append(event)
        if self._task is not None and not self._task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._run_sync()
            return
        self._task = loop.create_task(self._wait_then_flush())

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _wait_then_flush(self) -> None:
        # Events arriving while the target runs are picked up by the next round
        while self._pending:
            await asyncio.sleep(max(self.delay, 0))
            await self.flush()

    async def flush(self) -> None:
        """Deliver buffered events now."""
        if not self._pending:
            return
        events, self._pending = self._pending, []
        try:
            result = self.target(events)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning(f"Debounced hook failed after {len(events)} event(s): {exc}")

    def _run_sync(self) -> None:
        events, self._pending = self._pending, []
        try:
            result = self.target(events)
            if inspect.isawaitable(result):
                # No loop to drive it; close to avoid a never-awaited warning
                result.close()
                logger.debug("Dropped async debounced target: no running event loop")
        except Exception as exc:
            logger.warning(f"Debounced hook failed after {len(events)} event(s): {exc}")

    def cancel(self) -> None:
        """Drop buffered events and stop any scheduled flush."""
        self._pending = []
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
