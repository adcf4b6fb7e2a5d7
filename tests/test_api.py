"""Tests for the HTTP endpoints and the game WebSocket."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from settings import Settings

QUIZ = {
    "title": "Capitals",
    "questions": [
        {"question": "Capital of France?", "type": "multiple-choice",
         "options": ["Paris", "Rome", "Oslo", "Bern"], "correctAnswer": 0, "timeLimit": 20},
        {"question": "Oslo is in Norway.", "type": "true-false", "correctAnswer": "true"},
    ],
}

GENERATED = json.dumps([{"question": "Capital of Peru?", "type": "multiple-choice",
                         "options": ["Lima", "Quito", "Cusco", "Bogota"], "correctAnswer": "A"}])


@pytest.fixture(autouse=True)
def services(tmp_path):
    main.init_services(Settings(data_dir=tmp_path, claude_api_key="server-key"))
    yield
    main.app.dependency_overrides.clear()


@pytest.fixture
def client():
    with TestClient(main.app) as client:
        yield client


@pytest.fixture
def mock_http():
    """Route outbound provider calls to a handler the test sets."""
    state = {"handler": lambda request: httpx.Response(500)}
    mock = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: state["handler"](r)))
    main.app.dependency_overrides[main.get_http_client] = lambda: mock
    return state


def save(client, **extra):
    response = client.post("/api/save-quiz", json={**QUIZ, **extra})
    assert response.status_code == 200
    return response.json()["filename"]


def unlock(client, item_id, item_type, password):
    response = client.post("/api/unlock", json={"itemId": item_id, "itemType": item_type,
                                                "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def receive_until(ws, event, limit=10):
    """Skip broadcast noise until a message of type `event` arrives."""
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == event:
            return message
    raise AssertionError(f"no {event!r} message received")


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.json()["status"] == "ok"
        assert response.headers["X-Request-ID"]


class TestQuizEndpoints:
    def test_save_list_get(self, client):
        filename = save(client)
        listing = client.get("/api/quizzes").json()
        assert listing[0]["filename"] == filename
        assert listing[0]["questionCount"] == 2
        document = client.get(f"/api/quiz/{filename}").json()
        assert document["title"] == "Capitals"
        assert client.get("/api/quiz-tree").json()["quizzes"][0]["displayName"] == "Capitals"

    def test_invalid_quiz(self, client):
        response = client.post("/api/save-quiz", json={"title": "Bad",
                                                       "questions": [{"timeLimit": "soon"}]})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

    def test_registry_errors_reject_save(self, client):
        broken = {"title": "Broken", "questions": [
            {"question": "Pick one", "type": "multiple-choice",
             "options": ["a", "b", "c", "d"], "correctAnswer": 7}]}
        response = client.post("/api/save-quiz", json=broken)
        assert response.status_code == 400
        assert response.json()["errors"] == ["Question 1: Correct answer index 7 is out of range"]
        assert client.get("/api/quizzes").json() == []

    def test_missing_quiz(self, client):
        response = client.get("/api/quiz/nothing.json")
        assert response.status_code == 404
        assert response.json()["code"] == "QUIZ_NOT_FOUND"

    def test_protected_quiz(self, client):
        filename = save(client, password="open-sesame")
        assert client.get(f"/api/requires-auth/quiz/{filename}").json() == {"requiresAuth": True}
        assert client.get(f"/api/quiz/{filename}").status_code == 401
        forged = client.get(f"/api/quiz/{filename}", headers={"Authorization": "Bearer nope"})
        assert forged.status_code == 403
        headers = unlock(client, filename, "quiz", "open-sesame")
        assert client.get(f"/api/quiz/{filename}", headers=headers).status_code == 200

    def test_delete_needs_confirm_and_token(self, client):
        filename = save(client, password="open-sesame")
        assert client.delete(f"/api/quiz/{filename}").status_code == 400
        assert client.delete(f"/api/quiz/{filename}?confirm=true").status_code == 401
        headers = unlock(client, filename, "quiz", "open-sesame")
        response = client.delete(f"/api/quiz/{filename}?confirm=true", headers=headers)
        assert response.status_code == 200
        assert client.get("/api/quizzes").json() == []

    def test_wrong_password(self, client):
        filename = save(client, password="open-sesame")
        response = client.post("/api/unlock", json={"itemId": filename, "itemType": "quiz",
                                                    "password": "guess"})
        assert response.status_code == 401
        assert response.json()["code"] == "INCORRECT_PASSWORD"

    def test_requires_auth_item_type(self, client):
        assert client.get("/api/requires-auth/playlist/x").status_code == 400

    def test_quiz_metadata(self, client):
        filename = save(client)
        folder = client.post("/api/folders", json={"name": "Geography"}).json()
        response = client.patch(f"/api/quiz-metadata/{filename}",
                                json={"displayName": "World Capitals", "folderId": folder["id"]})
        assert response.json()["folderId"] == folder["id"]
        tree = client.get("/api/quiz-tree").json()
        assert tree["folders"][0]["quizzes"][0]["displayName"] == "World Capitals"


class TestResultsEndpoints:
    def test_round_trip(self, client):
        saved = client.post("/api/save-results", json={
            "quizTitle": "Capitals", "gamePin": "123456",
            "results": [{"name": "Alice", "score": 150}],
        }).json()
        filename = saved["filename"]
        assert client.get("/api/results").json()[0]["participantCount"] == 1
        assert client.get(f"/api/results/{filename}").json()["gamePin"] == "123456"
        assert client.delete(f"/api/results/{filename}").status_code == 400
        assert client.delete(f"/api/results/{filename}?confirm=true").json()["success"]

    def test_bad_filename(self, client):
        assert client.get("/api/results/notes.json").status_code == 400


class TestFolderEndpoints:
    def test_folder_lifecycle(self, client):
        parent = client.post("/api/folders", json={"name": "Science"})
        assert parent.status_code == 201
        parent_id = parent.json()["id"]
        assert client.post("/api/folders", json={"name": "science"}).status_code == 409
        child = client.post("/api/folders", json={"name": "Physics", "parentId": parent_id}).json()
        renamed = client.patch(f"/api/folders/{child['id']}/rename", json={"name": "Optics"})
        assert renamed.json()["name"] == "Optics"
        assert client.delete(f"/api/folders/{parent_id}").status_code == 409
        moved = client.patch(f"/api/folders/{child['id']}/move", json={"parentId": None})
        assert moved.json()["parentId"] is None
        assert client.delete(f"/api/folders/{parent_id}").json()["success"]

    def test_delete_contents_removes_quiz_files(self, client):
        folder_id = client.post("/api/folders", json={"name": "Old"}).json()["id"]
        filename = save(client, folderId=folder_id)
        response = client.delete(f"/api/folders/{folder_id}?deleteContents=true")
        assert response.json()["deletedQuizzes"] == [filename]
        assert client.get(f"/api/quiz/{filename}").status_code == 404

    def test_protected_folder(self, client):
        folder_id = client.post("/api/folders", json={"name": "Vault"}).json()["id"]
        response = client.post(f"/api/folders/{folder_id}/password", json={"password": "vault"})
        assert response.json()["protected"]
        assert client.delete(f"/api/folders/{folder_id}").status_code == 401
        headers = unlock(client, folder_id, "folder", "vault")
        assert client.delete(f"/api/folders/{folder_id}", headers=headers).status_code == 200


class TestGameEndpoints:
    def test_create_and_lookup(self, client):
        created = client.post("/api/games", json={"quiz": QUIZ}).json()
        assert len(created["pin"]) == 6
        assert created["hostToken"]
        lobby = client.get(f"/api/games/{created['pin']}").json()
        assert lobby["phase"] == "lobby"
        assert lobby["totalQuestions"] == 2

    def test_from_saved_quiz(self, client):
        filename = save(client)
        assert client.post("/api/games", json={"filename": filename}).json()["title"] == "Capitals"

    def test_errors(self, client):
        empty = client.post("/api/games", json={"quiz": {"title": "Empty", "questions": []}})
        assert empty.json()["code"] == "NO_QUESTIONS"
        assert client.post("/api/games", json={}).status_code == 400
        assert client.get("/api/games/999999").status_code == 404

    def test_invalid_inline_quiz(self, client):
        broken = {**QUIZ, "randomizeAnswers": True, "questions": [
            {**QUIZ["questions"][0], "correctAnswer": 7}]}
        response = client.post("/api/games", json={"quiz": broken})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"
        assert main.games.sessions == {}


class TestGameSocket:
    def test_host_and_player_join(self, client):
        with client.websocket_connect("/ws/game") as host:
            host.send_json({"type": "host-join", "quiz": QUIZ})
            created = host.receive_json()
            assert created["type"] == "game-created"
            assert created["totalQuestions"] == 2

            with client.websocket_connect("/ws/game") as player:
                player.send_json({"type": "player-join", "pin": created["pin"],
                                  "playerName": "Alice"})
                joined = player.receive_json()
                assert joined["type"] == "joined"
                assert joined["name"] == "Alice"

                update = receive_until(host, "player-joined")
                assert update["playerCount"] == 1

                player.send_json({"type": "start-game"})
                assert receive_until(player, "error")["code"] == "HOST_ONLY"

    def test_host_reconnect_needs_token(self, client):
        with client.websocket_connect("/ws/game") as host:
            host.send_json({"type": "host-join", "quiz": QUIZ})
            pin = host.receive_json()["pin"]
        with client.websocket_connect("/ws/game") as impostor:
            impostor.send_json({"type": "host-join", "pin": pin, "hostToken": "guess"})
            assert impostor.receive_json()["code"] == "INVALID_HOST_TOKEN"

    def test_unknown_game(self, client):
        with client.websocket_connect("/ws/game") as player:
            player.send_json({"type": "player-join", "pin": "999999", "playerName": "Bob"})
            assert player.receive_json()["code"] == "GAME_NOT_FOUND"

    def test_host_join_with_invalid_quiz(self, client):
        broken = {**QUIZ, "questions": [{**QUIZ["questions"][0], "correctAnswer": 7}]}
        with client.websocket_connect("/ws/game") as host:
            host.send_json({"type": "host-join", "quiz": broken})
            error = host.receive_json()
            assert error["type"] == "error"
            assert error["code"] == "INVALID_INPUT"
            assert "Question 1: Correct answer index 7 is out of range" in error["message"]


class TestPracticeSocket:
    def test_ready_and_unknown_event(self, client):
        filename = save(client)
        with client.websocket_connect(f"/ws/practice/{filename}?name=Solo") as ws:
            ready = receive_until(ws, "practice-ready")
            assert ready["totalQuestions"] == 2
            ws.send_json({"type": "dance"})
            assert receive_until(ws, "error")["code"] == "UNKNOWN_EVENT"

    def test_history_endpoints(self, client):
        first = client.post("/api/practice/caps.json/history", json={"score": 300, "timeMs": 9000})
        assert first.json()["isNewPersonalBest"]
        client.post("/api/practice/caps.json/history", json={"score": 100, "timeMs": 4000})
        history = client.get("/api/practice/history").json()
        assert history["caps.json"]["bestScore"] == 300
        assert history["caps.json"]["attempts"] == 2


class TestAIEndpoints:
    def test_config_never_reveals_keys(self, client):
        config = client.get("/api/ai/config").json()
        assert config["claudeKeyConfigured"] is True
        assert config["openaiKeyConfigured"] is False
        assert "server-key" not in json.dumps(config)

    def test_ollama_models(self, client, mock_http):
        mock_http["handler"] = lambda request: httpx.Response(
            200, json={"models": [{"name": "mistral:7b"}]})
        assert client.get("/api/ollama/models").json() == {"models": ["mistral:7b"]}

    def test_generate(self, client, mock_http):
        mock_http["handler"] = lambda request: httpx.Response(
            200, json={"choices": [{"message": {"content": GENERATED}}]})
        response = client.post("/api/ai/generate", json={
            "content": "South American capitals", "provider": "openai", "apiKey": "user-key",
            "questionCount": 1,
        })
        body = response.json()
        assert body["questions"][0]["correctAnswer"] == 0
        assert body["preview"]["selected"] == 1

    def test_bring_your_own_key_is_rate_limited(self, client, mock_http):
        mock_http["handler"] = lambda request: httpx.Response(
            200, json={"candidates": [{"content": {"parts": [{"text": "[]"}]}}]})
        body = {"prompt": "Make questions", "apiKey": "user-key"}
        for _ in range(10):
            assert client.post("/api/gemini/generate", json=body).status_code == 200
        limited = client.post("/api/gemini/generate", json=body)
        assert limited.status_code == 429
        assert limited.headers["Retry-After"]

    def test_server_key_is_not_rate_limited(self, client, mock_http):
        seen = []

        def handler(request):
            seen.append(request.headers["x-api-key"])
            return httpx.Response(200, json={"content": [{"type": "text", "text": "]"}]})

        mock_http["handler"] = handler
        for _ in range(12):
            assert client.post("/api/claude/generate",
                               json={"prompt": "p", "apiKey": "user"}).status_code == 200
        assert set(seen) == {"server-key"}

    def test_provider_error_status(self, client, mock_http):
        mock_http["handler"] = lambda request: httpx.Response(401, text="bad key")
        response = client.post("/api/gemini/generate", json={"prompt": "p", "apiKey": "bad"})
        assert response.status_code == 401
        assert response.json()["messageKey"] == "error_invalid_api_key"

    def test_preview_edit(self, client):
        question = {"question": "Capital of Peru?", "type": "multiple-choice",
                    "options": ["Lima", "Quito"], "correctAnswer": 0}
        ok = client.post("/api/ai/preview/edit", json={"question": question,
                                                       "form": {"correctAnswer": "1"}})
        assert ok.json()["question"]["correctAnswer"] == 1
        bad = client.post("/api/ai/preview/edit", json={"question": question,
                                                        "form": {"correctAnswer": "5"}})
        assert bad.status_code == 400

    def test_preview_confirm(self, client):
        filename = save(client)
        extra = {"question": "Capital of Peru?", "type": "multiple-choice",
                 "options": ["Lima", "Quito"], "correctAnswer": 0}
        response = client.post("/api/ai/preview/confirm", json={
            "filename": filename, "questions": [extra, extra], "selected": [True, False],
        })
        assert response.json()["questionCount"] == 3
        assert len(client.get(f"/api/quiz/{filename}").json()["questions"]) == 3
