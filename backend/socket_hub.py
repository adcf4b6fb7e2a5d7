"""WebSocket fan-out for one networked game.

`GameSocketHub` is the server side of the RealtimeTransport contract: the
game session's SocketEventBus sends through it, and client messages read
off each socket are delivered back to the session's handlers.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import WebSocket

from event_bus import Handler, RealtimeTransport
from logger import get_logger, log_game_event
from models import generate_player_id

logger = get_logger("Quizix.ws")

HOST = "host"
PLAYER = "player"

# Inbound events and the role allowed to send them
HOST_EVENTS = {"start-game", "next-question"}
PLAYER_EVENTS = {"submit-answer", "use-power-up", "leave-game"}


@dataclass(eq=False)
class Connection:
    websocket: WebSocket
    role: str
    identifier: str
    id: str = field(default_factory=generate_player_id)
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    writer: Optional[asyncio.Task] = None


def _message(event: str, data: Any) -> dict[str, Any]:
    if isinstance(data, dict):
        return {"type": event, **data}
    if data is None:
        return {"type": event}
    return {"type": event, "data": data}


class GameSocketHub(RealtimeTransport):
    def __init__(self, pin: str):
        self.pin = pin
        self.connections: dict[str, Connection] = {}
        self._handlers: dict[str, list[Handler]] = {}
        self._closed = False

    # --- outbound ---

    def _targets(self, to: Optional[str]) -> list[Connection]:
        if to is None:
            return list(self.connections.values())
        if to == HOST:
            return [c for c in self.connections.values() if c.role == HOST]
        return [c for c in self.connections.values() if c.identifier == to]

    def send(self, event: str, data: Any = None, to: Optional[str] = None) -> None:
        message = _message(event, data)
        for conn in self._targets(to):
            conn.queue.put_nowait(message)

    def send_to(self, conn: Connection, event: str, data: Any = None) -> None:
        conn.queue.put_nowait(_message(event, data))

    async def _write(self, conn: Connection) -> None:
        """Drain one connection's queue in order; a failed send drops the connection."""
        while True:
            message = await conn.queue.get()
            if message is None:
                break
            try:
                await conn.websocket.send_json(message)
            except Exception as e:
                logger.debug(f"🧹 Dropping dead connection {conn.id} in game {self.pin}: {e}")
                self.connections.pop(conn.id, None)
                return
        try:
            await conn.websocket.close()
        except Exception as e:
            logger.debug(f"Close failed for {conn.id} in game {self.pin}: {e}")

    # --- connections ---

    def attach(self, websocket: WebSocket, role: str, identifier: str) -> Connection:
        """Register a socket; a newer socket for the same identity replaces the old one."""
        for old in [c for c in self.connections.values()
                    if c.identifier == identifier and c.role == role]:
            logger.info(f"🔌 Replacing connection for {role} {identifier} in game {self.pin}")
            self.connections.pop(old.id, None)
            old.queue.put_nowait(None)

        conn = Connection(websocket=websocket, role=role, identifier=identifier)
        conn.writer = asyncio.create_task(self._write(conn))
        self.connections[conn.id] = conn
        logger.info(f"🔌 WebSocket connected: role={role}, game={self.pin}")
        log_game_event("ws_connected", session_code=self.pin,
                       data={"role": role, "conn_id": conn.id})
        return conn

    async def detach(self, conn: Connection) -> None:
        self.connections.pop(conn.id, None)
        if conn.writer is not None and not conn.writer.done():
            conn.writer.cancel()
            try:
                await conn.writer
            except asyncio.CancelledError:
                pass
        logger.info(f"🔌 WebSocket disconnected: role={conn.role}, game={self.pin}")
        log_game_event("ws_disconnected", session_code=self.pin,
                       data={"role": conn.role, "conn_id": conn.id})

    def has_connection(self, identifier: str) -> bool:
        return any(c.identifier == identifier for c in self.connections.values())

    # --- inbound ---

    def receive(self, conn: Connection, message: Any) -> None:
        """Route one client message to the session, stamped with the sender's identity."""
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            self.send_to(conn, "error", {"message": "Invalid message", "code": "INVALID_MESSAGE"})
            return
        event = message["type"]
        if event in HOST_EVENTS and conn.role != HOST:
            self.send_to(conn, "error", {"message": "Only the host can do that",
                                         "code": "HOST_ONLY"})
            return
        if event in PLAYER_EVENTS and conn.role != PLAYER:
            self.send_to(conn, "error", {"message": "Only players can do that",
                                         "code": "PLAYER_ONLY"})
            return
        if event not in HOST_EVENTS | PLAYER_EVENTS:
            self.send_to(conn, "error", {"message": f"Unknown event: {event}",
                                         "code": "UNKNOWN_EVENT"})
            return

        data = {k: v for k, v in message.items() if k != "type"}
        data["playerId"] = conn.identifier if conn.role == PLAYER else None
        data["isHost"] = conn.role == HOST
        self._deliver(event, data)

    def _deliver(self, event: str, data: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(data)
            except Exception:
                logger.exception(f"❌ Handler for '{event}' failed in game {self.pin}")

    # --- RealtimeTransport commands, looped back to the session ---

    def create_game(self, data: Any) -> None:
        self._deliver("host-join", data)

    def join_game(self, data: Any) -> None:
        self._deliver("player-join", data)

    def start_game(self, data: Any) -> None:
        self._deliver("start-game", data)

    def submit_answer(self, data: Any) -> None:
        self._deliver("submit-answer", data)

    def next_question(self, data: Any) -> None:
        self._deliver("next-question", data)

    def leave_game(self, data: Any) -> None:
        self._deliver("leave-game", data)

    def use_power_up(self, data: Any) -> None:
        self._deliver("use-power-up", data)

    def on(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(event, None)

    @property
    def connected(self) -> bool:
        return not self._closed

    def close(self) -> None:
        """Flush what is queued, then close every socket."""
        if self._closed:
            return
        self._closed = True
        self._handlers.clear()
        for conn in list(self.connections.values()):
            conn.queue.put_nowait(None)
        self.connections.clear()
