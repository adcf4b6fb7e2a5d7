"""
Event Bus
=========
One pub/sub contract with two implementations:

  - LocalEventBus   in-process loopback used by practice sessions and tests
  - SocketEventBus  adapter over a RealtimeTransport (the WebSocket hub)

The game session only ever talks to `EventBus`.
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional

from logger import get_logger

logger = get_logger("Quizix.bus")

Handler = Callable[[Any], Any]


class BusMode(str, Enum):
    NETWORKED = "networked"
    LOCAL = "local"


class EventBus(ABC):
    @abstractmethod
    def emit(self, event: str, data: Any = None, *, to: Optional[str] = None) -> None:
        """Publish `event`. `to` addresses a single recipient (player id or 'host')."""

    @abstractmethod
    def on(self, event: str, handler: Handler) -> None: ...

    @abstractmethod
    def off(self, event: str, handler: Handler) -> None: ...

    @abstractmethod
    def remove_all_listeners(self, event: Optional[str] = None) -> None: ...

    @abstractmethod
    def is_connected(self) -> bool: ...

    @property
    @abstractmethod
    def mode(self) -> BusMode: ...

    @abstractmethod
    def disconnect(self) -> None: ...


class LocalEventBus(EventBus):
    """In-process bus.

    Handlers are kept per event in registration order, each registered at
    most once. Dispatch is deferred to the running event loop so the
    emitter's stack unwinds first; `sync=True` (or no running loop) calls
    handlers inline. A failing handler is logged and skipped.
    """

    def __init__(self, *, sync: bool = False, debug: bool = False):
        self._listeners: dict[str, dict[Handler, None]] = {}
        self._connected = True
        self._sync = sync
        self._debug = debug
        self._pending: set[asyncio.Future] = set()

    @property
    def mode(self) -> BusMode:
        return BusMode.LOCAL

    def is_connected(self) -> bool:
        return self._connected

    def on(self, event: str, handler: Handler) -> None:
        self._listeners.setdefault(event, {})[handler] = None

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._listeners.get(event)
        if handlers is None:
            return
        handlers.pop(handler, None)
        if not handlers:
            del self._listeners[event]

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def event_names(self) -> list[str]:
        return list(self._listeners)

    def emit(self, event: str, data: Any = None, *, to: Optional[str] = None) -> None:
        if not self._connected:
            logger.debug(f"⚠️ Dropped '{event}' on disconnected local bus")
            return
        if self._debug:
            logger.debug(f"📨 emit {event} to={to or '*'}")
        handlers = list(self._listeners.get(event, ()))
        if not handlers:
            return

        loop = None
        if not self._sync:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

        for handler in handlers:
            if loop is None:
                self._invoke(event, handler, data)
            else:
                done = loop.create_future()
                self._pending.add(done)
                loop.call_soon(self._dispatch, event, handler, data, done)

    def _dispatch(self, event: str, handler: Handler, data: Any, done: asyncio.Future) -> None:
        self._pending.discard(done)
        if not done.done():
            done.set_result(None)
        if self._connected:
            self._invoke(event, handler, data)

    def _invoke(self, event: str, handler: Handler, data: Any) -> None:
        try:
            result = handler(data)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._task_done(event))
        except Exception:
            logger.exception(f"❌ Handler for '{event}' failed")

    def _task_done(self, event: str) -> Callable[[asyncio.Future], None]:
        def done(task: asyncio.Future) -> None:
            self._pending.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"❌ Async handler for '{event}' failed", exc_info=task.exception())
        return done

    async def drain(self) -> None:
        """Wait until every dispatch scheduled so far (and any it triggers) has run."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
            await asyncio.sleep(0)

    def disconnect(self) -> None:
        self._connected = False
        self._listeners.clear()
        for pending in list(self._pending):
            pending.cancel()
        self._pending.clear()


class RealtimeTransport(ABC):
    """Ordered, reliable, per-connection message delivery."""

    @abstractmethod
    def send(self, event: str, data: Any = None, to: Optional[str] = None) -> None: ...

    @abstractmethod
    def create_game(self, data: Any) -> None: ...

    @abstractmethod
    def join_game(self, data: Any) -> None: ...

    @abstractmethod
    def start_game(self, data: Any) -> None: ...

    @abstractmethod
    def submit_answer(self, data: Any) -> None: ...

    @abstractmethod
    def next_question(self, data: Any) -> None: ...

    @abstractmethod
    def leave_game(self, data: Any) -> None: ...

    @abstractmethod
    def use_power_up(self, data: Any) -> None: ...

    @abstractmethod
    def on(self, event: str, handler: Handler) -> None: ...

    @abstractmethod
    def off(self, event: str, handler: Handler) -> None: ...

    @property
    @abstractmethod
    def connected(self) -> bool: ...

    @abstractmethod
    def close(self) -> None: ...


class SocketEventBus(EventBus):
    """EventBus over a RealtimeTransport.

    High-level game commands map onto transport calls; anything else is
    passed through as a raw send. Listener registration is delegated to
    the transport and mirrored here so it can be removed in bulk.
    """

    COMMANDS = {
        "host-join": "create_game",
        "create-game": "create_game",
        "player-join": "join_game",
        "join-game": "join_game",
        "start-game": "start_game",
        "submit-answer": "submit_answer",
        "next-question": "next_question",
        "leave-game": "leave_game",
        "use-power-up": "use_power_up",
    }

    def __init__(self, transport: RealtimeTransport):
        self.transport = transport
        self._listeners: dict[str, list[Handler]] = {}

    @property
    def mode(self) -> BusMode:
        return BusMode.NETWORKED

    def is_connected(self) -> bool:
        return self.transport.connected

    def emit(self, event: str, data: Any = None, *, to: Optional[str] = None) -> None:
        if not self.transport.connected:
            logger.debug(f"⚠️ Dropped '{event}': transport not connected")
            return
        command = self.COMMANDS.get(event)
        if command is not None and to is None:
            getattr(self.transport, command)(data)
        else:
            self.transport.send(event, data, to)

    def on(self, event: str, handler: Handler) -> None:
        handlers = self._listeners.setdefault(event, [])
        if handler in handlers:
            return
        handlers.append(handler)
        self.transport.on(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
            self.transport.off(event, handler)
        if not handlers:
            self._listeners.pop(event, None)

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        events = [event] if event is not None else list(self._listeners)
        for name in events:
            for handler in self._listeners.pop(name, []):
                self.transport.off(name, handler)

    def disconnect(self) -> None:
        self.remove_all_listeners()
        self.transport.close()
