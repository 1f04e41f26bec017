"""
Observer interface for engine events.

Listeners may be plain functions (tests) or coroutine functions (live UI).
A listener failure is logged and never propagates back into the engine.
Consumers that prefer pulling can attach a bounded queue channel instead.
"""

import asyncio
import inspect
from typing import Any, Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .logger import Logger

# Event names
STARTED = "started"
STOPPED = "stopped"
OPPORTUNITY = "opportunity"
EXECUTION = "execution"
REBALANCE = "rebalance"
ORDERBOOK_UPDATE = "orderbook_update"
ERROR = "error"

EVENT_NAMES = (STARTED, STOPPED, OPPORTUNITY, EXECUTION, REBALANCE, ORDERBOOK_UPDATE, ERROR)

Listener = Callable[[Any], Any]


class EventEmitter:
    """Callback registry keyed by event name."""

    def __init__(self, logger: Optional["Logger"] = None):
        self.logger = logger
        self._listeners: dict[str, list[Listener]] = {}
        self._channels: list[asyncio.Queue] = []
        self._pending: set[asyncio.Task] = set()

    def on(self, event: str, callback: Listener) -> None:
        """Register callback for an event."""
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Listener) -> None:
        """Remove a previously registered callback."""
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def channel(self, maxsize: int = 1000) -> asyncio.Queue:
        """
        Attach a bounded queue receiving (event, payload) tuples.
        When full, new events are dropped rather than blocking the engine.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._channels.append(queue)
        return queue

    def close_channel(self, queue: asyncio.Queue) -> None:
        if queue in self._channels:
            self._channels.remove(queue)

    def emit(self, event: str, payload: Any = None) -> None:
        """Deliver payload to every listener and channel for event."""
        for callback in list(self._listeners.get(event, [])):
            try:
                outcome = callback(payload)
                if inspect.isawaitable(outcome):
                    self._track(asyncio.ensure_future(outcome), event)
            except Exception as e:
                self._listener_failed(event, e)

        for queue in self._channels:
            try:
                queue.put_nowait((event, payload))
            except asyncio.QueueFull:
                if self.logger:
                    self.logger.warning("event_channel_full", event_name=event)

    def _track(self, task: asyncio.Future, event: str) -> None:
        self._pending.add(task)

        def _done(t: asyncio.Future) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._listener_failed(event, t.exception())

        task.add_done_callback(_done)

    def _listener_failed(self, event: str, error: BaseException) -> None:
        if self.logger:
            self.logger.error("event_listener_error", event_name=event, error=repr(error))

    async def drain(self) -> None:
        """Wait for outstanding async listeners."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
