"""Tests for the per-game WebSocket hub."""

from socket_hub import HOST, PLAYER, GameSocketHub


class FakeWebSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.closed = False
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise ConnectionError("socket gone")
        self.sent.append(message)

    async def close(self):
        self.closed = True


class TestFanOut:
    """Outbound messages reach the right sockets, in order."""

    async def test_broadcast_and_addressed(self):
        hub = GameSocketHub("123456")
        host_ws, p1_ws, p2_ws = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
        host = hub.attach(host_ws, HOST, "host")
        p1 = hub.attach(p1_ws, PLAYER, "p1")
        p2 = hub.attach(p2_ws, PLAYER, "p2")

        hub.send("question-start", {"questionIndex": 0})
        hub.send("answer-count-update", {"answeredCount": 1}, to=HOST)
        hub.send("player-result", {"points": 203}, to="p1")
        hub.close()
        for conn in (host, p1, p2):
            await conn.writer

        assert host_ws.sent == [{"type": "question-start", "questionIndex": 0},
                                {"type": "answer-count-update", "answeredCount": 1}]
        assert p1_ws.sent == [{"type": "question-start", "questionIndex": 0},
                              {"type": "player-result", "points": 203}]
        assert p2_ws.sent == [{"type": "question-start", "questionIndex": 0}]
        assert all(ws.closed for ws in (host_ws, p1_ws, p2_ws))
        assert not hub.connected

    async def test_failed_send_drops_connection(self):
        hub = GameSocketHub("123456")
        conn = hub.attach(FakeWebSocket(fail=True), PLAYER, "p1")
        hub.send("question-start", {})
        await conn.writer
        assert not hub.has_connection("p1")

    async def test_newer_socket_replaces_older(self):
        hub = GameSocketHub("123456")
        old_ws = FakeWebSocket()
        old = hub.attach(old_ws, PLAYER, "p1")
        new = hub.attach(FakeWebSocket(), PLAYER, "p1")
        await old.writer
        assert old_ws.closed
        assert list(hub.connections) == [new.id]
        await hub.detach(new)
        assert not hub.has_connection("p1")


class TestInbound:
    """Client messages are checked by role and stamped with the sender."""

    async def test_player_message_is_stamped(self):
        hub = GameSocketHub("123456")
        received = []
        hub.on("submit-answer", received.append)
        conn = hub.attach(FakeWebSocket(), PLAYER, "p1")
        hub.receive(conn, {"type": "submit-answer", "answer": 2, "playerId": "spoofed"})
        assert received == [{"answer": 2, "playerId": "p1", "isHost": False}]
        await hub.detach(conn)

    async def test_role_checks(self):
        hub = GameSocketHub("123456")
        started = []
        hub.on("start-game", started.append)
        player = hub.attach(FakeWebSocket(), PLAYER, "p1")
        host = hub.attach(FakeWebSocket(), HOST, "host")

        hub.receive(player, {"type": "start-game"})
        hub.receive(host, {"type": "submit-answer", "answer": 1})
        hub.receive(host, {"type": "dance"})
        hub.receive(host, ["not", "a", "dict"])
        hub.receive(host, {"type": "start-game"})

        assert player.queue.get_nowait()["code"] == "HOST_ONLY"
        codes = [host.queue.get_nowait()["code"] for _ in range(3)]
        assert codes == ["PLAYER_ONLY", "UNKNOWN_EVENT", "INVALID_MESSAGE"]
        assert started == [{"playerId": None, "isHost": True}]
        await hub.detach(player)
        await hub.detach(host)

    def test_commands_loop_back_to_handlers(self):
        hub = GameSocketHub("123456")
        received = []
        hub.on("next-question", received.append)
        hub.next_question({"isHost": True})
        hub.off("next-question", received.append)
        hub.next_question({"isHost": True})
        assert received == [{"isHost": True}]
