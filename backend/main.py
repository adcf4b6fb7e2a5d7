from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from pydantic import BaseModel, Field, ValidationError
from typing import Any, Optional
import asyncio
import logging
import secrets
import time

import httpx

from ai_pipeline import GenerationRequest, QuestionPipeline, QuestionPreview
from ai_providers import AIProvider, get_provider, list_ollama_models
from errors import (
    AuthError, GameError, NotFound, QuizixError, RateLimited, ValidationFailed,
)
from event_bus import LocalEventBus, SocketEventBus
from game_session import OUTBOUND_EVENTS, GameSession, Phase, SessionManager
from logger import (
    setup_logging, get_logger, log_game_event, set_game_pin, set_request_id, summarize_ai_usage,
)
from models import Quiz, generate_player_id, load_quiz_document
from practice import LocalGameSession, PracticeHistoryStore, practice_key
from quiz_store import MetadataService, QuizStore, RateLimiter, UnlockRateLimiter
from settings import BYOK_REQUESTS_PER_MINUTE, IDENTIFY_TIMEOUT, Settings, load_settings
from socket_hub import HOST, PLAYER, GameSocketHub

# Initialise structured, file-based logging
setup_logging(console_level=logging.INFO)
logger = get_logger("Quizix")

CLEANUP_INTERVAL = 5 * 60  # seconds
STARTED_AT = time.time()
PRACTICE_COMMANDS = {"start-game", "submit-answer", "use-power-up", "next-question", "leave-game"}

# Services, rebuilt by init_services() (tests point them at a temp directory)
settings: Settings
store: QuizStore
metadata: MetadataService
practice_history: PracticeHistoryStore
games: SessionManager
byok_limiter: RateLimiter
http_client: Optional[httpx.AsyncClient] = None


def init_services(new_settings: Settings) -> None:
    global settings, store, metadata, practice_history, games, byok_limiter
    settings = new_settings
    store = QuizStore(settings.quizzes_dir, settings.results_dir)
    metadata = MetadataService(settings.metadata_file, limiter=UnlockRateLimiter())
    practice_history = PracticeHistoryStore(settings.practice_history_file)
    games = SessionManager()
    byok_limiter = RateLimiter(BYOK_REQUESTS_PER_MINUTE, 60,
                               message="Too many requests. Please wait before trying again.")


init_services(load_settings())


async def periodic_cleanup():
    """Drop finished and abandoned games and expired unlock tokens."""
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL)
        try:
            games.cleanup_stale()
            expired = metadata.cleanup_expired_tokens()
            metadata.limiter.cleanup()
            byok_limiter.cleanup()
            if expired:
                logger.debug(f"🧹 Removed {expired} expired unlock token(s)")
        except Exception as e:
            logger.error(f"❌ Cleanup failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global http_client
    metadata.migrate_existing_quizzes(store)
    http_client = httpx.AsyncClient()
    cleanup_task = asyncio.create_task(periodic_cleanup())
    logger.info(f"🎮 Quizix server ready (data: {settings.data_dir})")
    try:
        yield
    finally:
        cleanup_task.cancel()
        for pin in list(games.sessions):
            games.remove(pin)
        await http_client.aclose()
        http_client = None


app = FastAPI(title="Quizix API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,  # Must be False when using allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


@app.exception_handler(QuizixError)
async def quizix_error_handler(request: Request, exc: QuizixError):
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"⚠️ {request.method} {request.url.path} -> {exc.status_code} {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(ValidationError)
async def pydantic_error_handler(request: Request, exc: ValidationError):
    errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
    return JSONResponse(status_code=400,
                        content=ValidationFailed(errors, "Invalid data").to_dict())


def get_http_client() -> httpx.AsyncClient:
    global http_client
    if http_client is None:
        http_client = httpx.AsyncClient()
    return http_client


def bearer_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    return None


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def require_confirm(confirm: Optional[str]) -> None:
    if confirm != "true":
        raise HTTPException(status_code=400, detail="Delete requires confirm=true parameter")


# --- Request Models ---

class CreateGameRequest(BaseModel):
    filename: Optional[str] = None
    quiz: Optional[dict[str, Any]] = None


class SaveQuizRequest(BaseModel):
    model_config = {"extra": "allow"}

    title: str
    questions: list[dict[str, Any]] = Field(default_factory=list)
    password: Optional[str] = None
    folderId: Optional[str] = None


class SaveResultsRequest(BaseModel):
    quizTitle: str
    gamePin: str
    results: list[Any]
    startTime: Optional[Any] = None
    endTime: Optional[Any] = None
    questions: Optional[list[Any]] = None


class FolderRequest(BaseModel):
    name: str
    parentId: Optional[str] = None


class RenameRequest(BaseModel):
    name: str


class MoveRequest(BaseModel):
    parentId: Optional[str] = None


class PasswordRequest(BaseModel):
    password: Optional[str] = None
    currentPassword: Optional[str] = None


class QuizMetadataRequest(BaseModel):
    model_config = {"extra": "forbid"}

    displayName: Optional[str] = None
    folderId: Optional[str] = None


class UnlockRequest(BaseModel):
    itemId: str
    itemType: str
    password: str


class ProxyGenerateRequest(BaseModel):
    prompt: str = Field(min_length=1)
    apiKey: Optional[str] = None
    numQuestions: int = Field(default=5, ge=1, le=50)
    model: Optional[str] = None


class RegenerateRequest(GenerationRequest):
    type: str
    index: Optional[int] = None


class ConvertRowsRequest(GenerationRequest):
    rows: list[list[Any]]
    filename: str = "spreadsheet.xlsx"


class PreviewEditRequest(BaseModel):
    question: dict[str, Any]
    form: dict[str, Any]


class PreviewConfirmRequest(BaseModel):
    filename: str
    questions: list[dict[str, Any]]
    selected: Optional[list[bool]] = None


class PracticeRunRequest(BaseModel):
    score: int = Field(ge=0)
    timeMs: int = Field(ge=0)


# --- Helper Functions ---

def load_accessible_quiz(filename: str, token: Optional[str]) -> Quiz:
    metadata.check_access(filename, "quiz", token)
    return store.load_quiz(filename)


def save_finished_game(session: GameSession) -> None:
    """Persist a finished networked game under results/."""
    if not session.players:
        return
    doc = session.results_document()
    try:
        result = store.save_results(
            session.quiz.title, session.pin, doc["players"],
            start_time=doc["startedAt"], end_time=doc["finishedAt"],
            questions=doc["questions"], extra={"leaderboard": doc["leaderboard"]},
        )
        logger.info(f"💾 Auto-saved results for game {session.pin}: {result['filename']}")
    except (QuizixError, OSError) as e:
        logger.error(f"❌ Failed to auto-save results for game {session.pin}: {e}")


def create_game(quiz: Quiz) -> GameSession:
    if not quiz.questions:
        raise GameError("Quiz has no questions", code="NO_QUESTIONS")
    session = games.create(quiz, lambda pin: SocketEventBus(GameSocketHub(pin)))
    session.on_finished(save_finished_game)
    return session


def hub_for(session: GameSession) -> GameSocketHub:
    return session.bus.transport


def game_summary(session: GameSession) -> dict:
    return {
        "pin": session.pin,
        "title": session.quiz.title,
        "phase": session.phase.value,
        "playerCount": len(session.players),
        "totalQuestions": len(session.questions),
        "powerUpsEnabled": session.quiz.powerUpsEnabled,
    }


# --- Game Endpoints ---

@app.post("/api/games")
async def create_game_endpoint(request: CreateGameRequest, token: Optional[str] = Depends(bearer_token)):
    """Create a networked game from a saved quiz or an inline quiz document"""
    if request.filename:
        quiz = load_accessible_quiz(request.filename, token)
    elif request.quiz is not None:
        quiz = load_quiz_document(request.quiz)
    else:
        raise HTTPException(status_code=400, detail="filename or quiz is required")
    session = create_game(quiz)
    return {**game_summary(session), "hostToken": session.host_token}


@app.get("/api/games/{pin}")
async def get_game(pin: str):
    """Lobby lookup used by the join screen"""
    return game_summary(games.require(pin))


def identify(data: dict):
    """Resolve the first message to (session, role, identifier, reply events)."""
    kind = data.get("type")

    if kind == "host-join":
        if data.get("pin"):
            session = games.require(str(data.get("pin")))
            if not secrets.compare_digest(str(data.get("hostToken") or ""), session.host_token):
                raise AuthError("Invalid host token", status_code=403, code="INVALID_HOST_TOKEN")
            logger.info(f"🎙️ Host reconnected to game {session.pin}")
            return session, HOST, HOST, [("game-state", session.state(for_host=True).model_dump())]
        if data.get("filename"):
            quiz = load_accessible_quiz(data["filename"], data.get("token"))
        elif isinstance(data.get("quiz"), dict):
            quiz = load_quiz_document(data["quiz"])
        else:
            raise ValidationFailed(["host-join needs pin+hostToken, filename or quiz"],
                                   "Invalid identification")
        session = create_game(quiz)
        return session, HOST, HOST, [("game-created", {
            "pin": session.pin,
            "title": quiz.title,
            "hostToken": session.host_token,
            "totalQuestions": len(session.questions),
        })]

    if kind == "player-join":
        session = games.require(str(data.get("pin") or ""))
        player = session.add_player(data.get("playerName"), generate_player_id())
        return session, PLAYER, player.id, [("joined", {
            "playerId": player.id,
            "name": player.name,
            "pin": session.pin,
            "title": session.quiz.title,
            "players": [p.public() for p in session.players.values() if not p.left],
            "powerUpsEnabled": session.quiz.powerUpsEnabled,
        })]

    if kind == "player-rejoin":
        session = games.require(str(data.get("pin") or ""))
        player = session.players.get(data.get("playerId") or "")
        if player is None or player.left:
            raise NotFound("Player not found", code="PLAYER_NOT_FOUND")
        return session, PLAYER, player.id, []

    raise ValidationFailed([f"unexpected message type {kind!r}"], "Invalid identification")


# --- WebSocket Endpoint ---

@app.websocket("/ws/game")
async def websocket_game(websocket: WebSocket):
    """Realtime channel for a networked game. The first message identifies the client."""
    await websocket.accept()
    set_request_id()

    session: Optional[GameSession] = None
    hub: Optional[GameSocketHub] = None
    conn = None
    try:
        data = await asyncio.wait_for(websocket.receive_json(), timeout=IDENTIFY_TIMEOUT)
        if not isinstance(data, dict):
            data = {}
        try:
            session, role, identifier, replies = identify(data)
        except QuizixError as e:
            await websocket.send_json({"type": "error", "message": e.message, "code": e.code})
            await websocket.close(code=4004 if isinstance(e, NotFound) else 1008)
            return
        except ValidationError as e:
            await websocket.send_json({"type": "error", "message": f"Invalid quiz: {e}",
                                       "code": "INVALID_INPUT"})
            await websocket.close(code=1008)
            return

        set_game_pin(session.pin)
        hub = hub_for(session)
        conn = hub.attach(websocket, role, identifier)
        for event, payload in replies:
            hub.send_to(conn, event, payload)
        if data.get("type") == "player-rejoin":
            session.mark_connected(identifier)

        while True:
            message = await websocket.receive_json()
            hub.receive(conn, message)

    except asyncio.TimeoutError:
        await websocket.close(code=4008, reason="Identification timeout")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"🔌 WebSocket error for game {session.pin if session else '-'}: {e}",
                     exc_info=True)
    finally:
        if hub is not None and conn is not None:
            await hub.detach(conn)
            if (conn.role == PLAYER and session is not None and session.phase != Phase.FINISHED
                    and not hub.has_connection(conn.identifier)):
                session.mark_disconnected(conn.identifier)


@app.websocket("/ws/practice/{filename}")
async def websocket_practice(websocket: WebSocket, filename: str, token: Optional[str] = None,
                             name: str = "Player"):
    """Single-player practice: the game session runs in-process over a local bus."""
    await websocket.accept()
    set_request_id()
    outbox: asyncio.Queue = asyncio.Queue()
    bus = LocalEventBus()
    for event in OUTBOUND_EVENTS:
        bus.on(event, lambda payload, event=event: outbox.put_nowait(
            {"type": event, **payload} if isinstance(payload, dict) else {"type": event}))
    try:
        quiz = load_accessible_quiz(filename, token)
        session = LocalGameSession(quiz, bus, player_name=name, history=practice_history,
                                   quiz_key=practice_key(quiz, filename))
    except QuizixError as e:
        await websocket.send_json({"type": "error", "message": e.message, "code": e.code})
        await websocket.close(code=4004 if isinstance(e, NotFound) else 1008)
        return
    log_game_event("practice_started", data={"quiz": filename})

    async def writer():
        while True:
            await websocket.send_json(await outbox.get())

    writer_task = asyncio.create_task(writer())
    await outbox.put({"type": "practice-ready", "title": quiz.title,
                      "totalQuestions": len(quiz.questions), "playerId": session.player.id})
    try:
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("type") in PRACTICE_COMMANDS:
                bus.emit(message["type"], {k: v for k, v in message.items() if k != "type"})
            else:
                await outbox.put({"type": "error", "message": "Unknown event",
                                  "code": "UNKNOWN_EVENT"})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"🔌 Practice WebSocket error for {filename}: {e}", exc_info=True)
    finally:
        session.teardown()
        writer_task.cancel()


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "games": len(games), "uptimeSeconds": int(time.time() - STARTED_AT)}


# --- Quiz Files ---

@app.post("/api/save-quiz")
async def save_quiz(request: SaveQuizRequest):
    document = request.model_dump(exclude={"password", "folderId"})
    quiz = load_quiz_document(document)
    result = store.save_quiz(quiz)
    metadata.register_quiz(result["filename"], quiz.title)
    if request.folderId:
        metadata.set_quiz_metadata(result["filename"], folder_id=request.folderId)
    if request.password:
        metadata.set_password(result["filename"], "quiz", request.password)
    log_game_event("quiz_saved", data={"filename": result["filename"],
                                       "questions": len(quiz.questions)})
    return result


@app.get("/api/quizzes")
async def list_quizzes():
    return store.list_quizzes()


@app.get("/api/quiz/{filename}")
async def get_quiz(filename: str, token: Optional[str] = Depends(bearer_token)):
    metadata.check_access(filename, "quiz", token)
    return store.load_document(filename)


@app.delete("/api/quiz/{filename}")
async def delete_quiz(request: Request, filename: str, confirm: Optional[str] = None,
                      token: Optional[str] = Depends(bearer_token)):
    require_confirm(confirm)
    metadata.check_access(filename, "quiz", token)
    store.delete_quiz(filename)
    metadata.delete_quiz_metadata(filename)
    logger.info(f"🗑️ Quiz deleted: {filename} from {client_ip(request)}")
    log_game_event("quiz_deleted", data={"filename": filename})
    return {"success": True, "filename": filename}


# --- Results ---

@app.post("/api/save-results")
async def save_results(request: SaveResultsRequest):
    return store.save_results(request.quizTitle, request.gamePin, request.results,
                              start_time=request.startTime, end_time=request.endTime,
                              questions=request.questions)


@app.get("/api/results")
async def list_results():
    return store.list_results()


@app.get("/api/results/{filename}")
async def get_results(filename: str):
    return store.load_results(filename)


@app.delete("/api/results/{filename}")
async def delete_results(request: Request, filename: str, confirm: Optional[str] = None):
    require_confirm(confirm)
    logger.info(f"Result file deletion requested: {filename} from {client_ip(request)}")
    return store.delete_results(filename)


# --- Folders, Metadata and Passwords ---

@app.get("/api/quiz-tree")
async def quiz_tree():
    return metadata.list_tree()


@app.post("/api/folders", status_code=201)
async def create_folder(request: FolderRequest):
    return metadata.create_folder(request.name, request.parentId)


@app.patch("/api/folders/{folder_id}/rename")
async def rename_folder(folder_id: str, request: RenameRequest):
    return metadata.rename_folder(folder_id, request.name)


@app.patch("/api/folders/{folder_id}/move")
async def move_folder(folder_id: str, request: MoveRequest):
    return metadata.move_folder(folder_id, request.parentId)


@app.post("/api/folders/{folder_id}/password")
async def folder_password(folder_id: str, request: PasswordRequest):
    if request.password:
        return metadata.set_password(folder_id, "folder", request.password,
                                     current_password=request.currentPassword)
    return metadata.remove_password(folder_id, "folder", request.currentPassword)


@app.delete("/api/folders/{folder_id}")
async def delete_folder(folder_id: str, deleteContents: bool = False,
                        token: Optional[str] = Depends(bearer_token)):
    metadata.check_access(folder_id, "folder", token)
    result = metadata.delete_folder(folder_id, deleteContents)
    for filename in result["deletedQuizzes"]:
        try:
            store.delete_quiz(filename)
        except NotFound:
            logger.warning(f"⚠️ Quiz file already missing: {filename}")
    return result


@app.patch("/api/quiz-metadata/{filename}")
async def update_quiz_metadata(filename: str, request: QuizMetadataRequest):
    if metadata.get_quiz_metadata(filename) is None:
        quiz = store.load_quiz(filename)
        metadata.register_quiz(filename, quiz.title)
    updates: dict[str, Any] = {}
    if "displayName" in request.model_fields_set:
        updates["display_name"] = request.displayName
    if "folderId" in request.model_fields_set:
        updates["folder_id"] = request.folderId
    return metadata.set_quiz_metadata(filename, **updates)


@app.post("/api/quiz-metadata/{filename}/password")
async def quiz_password(filename: str, request: PasswordRequest):
    if request.password:
        return metadata.set_password(filename, "quiz", request.password,
                                     current_password=request.currentPassword)
    return metadata.remove_password(filename, "quiz", request.currentPassword)


@app.post("/api/unlock")
async def unlock(request: Request, body: UnlockRequest):
    return metadata.unlock(body.itemId, body.itemType, body.password, client_ip(request))


@app.get("/api/requires-auth/{item_type}/{item_id}")
async def requires_auth(item_type: str, item_id: str):
    if item_type not in ("folder", "quiz"):
        raise HTTPException(status_code=400, detail="Invalid item type")
    return {"requiresAuth": metadata.requires_auth(item_id, item_type)}


# --- AI Providers ---

@app.get("/api/ai/config")
async def ai_config():
    """Which hosted providers have a server-side key (never the keys themselves)"""
    return {
        "claudeKeyConfigured": bool(settings.claude_api_key),
        "geminiKeyConfigured": bool(settings.gemini_api_key),
        "openaiKeyConfigured": bool(settings.openai_api_key),
        "ollamaAvailable": True,
    }


@app.get("/api/ollama/models")
async def ollama_models(client: httpx.AsyncClient = Depends(get_http_client)):
    return {"models": await list_ollama_models(client, settings.ollama_url)}


def check_byok(request: Request, server_key: str, client_key: Optional[str]) -> None:
    """Rate limit requests that bring their own key; server-key requests are unlimited."""
    if server_key or not client_key:
        return
    ip = client_ip(request)
    remaining = byok_limiter.hit(ip)
    logger.debug(f"BYOK request from {ip}, {remaining} remaining this minute")


async def proxy_generate(request: Request, body: ProxyGenerateRequest, name: str,
                         server_key: str, client: httpx.AsyncClient) -> dict:
    check_byok(request, server_key, body.apiKey)
    provider = get_provider(name, client, settings, model=body.model, api_key=body.apiKey)
    return await provider.request(body.prompt, question_count=body.numQuestions)


@app.post("/api/claude/generate")
async def claude_generate(request: Request, body: ProxyGenerateRequest,
                          client: httpx.AsyncClient = Depends(get_http_client)):
    return await proxy_generate(request, body, "claude", settings.claude_api_key, client)


@app.post("/api/gemini/generate")
async def gemini_generate(request: Request, body: ProxyGenerateRequest,
                          client: httpx.AsyncClient = Depends(get_http_client)):
    return await proxy_generate(request, body, "gemini", settings.gemini_api_key, client)


def make_pipeline(request: Request, client: httpx.AsyncClient) -> QuestionPipeline:
    server_keys = {
        "claude": settings.claude_api_key,
        "gemini": settings.gemini_api_key,
        "openai": settings.openai_api_key,
    }

    def factory(gen: GenerationRequest) -> AIProvider:
        provider = gen.provider.lower()
        if provider in server_keys:
            check_byok(request, server_keys[provider], gen.apiKey)
        return get_provider(provider, client, settings, model=gen.model, api_key=gen.apiKey)

    return QuestionPipeline(factory)


@app.post("/api/ai/generate")
async def ai_generate(request: Request, body: GenerationRequest,
                      client: httpx.AsyncClient = Depends(get_http_client)):
    result = await make_pipeline(request, client).generate(body)
    return result.to_dict()


@app.post("/api/ai/regenerate")
async def ai_regenerate(request: Request, body: RegenerateRequest,
                        client: httpx.AsyncClient = Depends(get_http_client)):
    question = await make_pipeline(request, client).regenerate(body, body.type)
    index = body.index if body.index is not None else 0
    return {
        "index": index,
        "question": question.to_document(),
        "preview": QuestionPreview([question]).items[0].to_dict(index),
    }


@app.post("/api/ai/convert-rows")
async def ai_convert_rows(request: Request, body: ConvertRowsRequest,
                          client: httpx.AsyncClient = Depends(get_http_client)):
    result = await make_pipeline(request, client).convert_rows(body.rows, body.filename, body)
    return result.to_dict()


@app.post("/api/ai/preview/edit")
async def ai_preview_edit(body: PreviewEditRequest):
    """Apply editor form values to one generated question; invalid edits are refused."""
    preview = QuestionPreview.from_documents([body.question])
    question = preview.edit(0, body.form)
    return {"question": question.to_document(), "preview": preview.items[0].to_dict(0)}


@app.post("/api/ai/preview/confirm")
async def ai_preview_confirm(body: PreviewConfirmRequest,
                             token: Optional[str] = Depends(bearer_token)):
    """Append the selected generated questions to a saved quiz."""
    quiz = load_accessible_quiz(body.filename, token)
    preview = QuestionPreview.from_documents(body.questions, body.selected)
    updated = preview.confirm(quiz)
    result = store.update_quiz(body.filename, updated)
    return {**result, **preview.summary(), "questionCount": len(updated.questions)}


@app.get("/api/ai/usage")
async def ai_usage(hours: float = 24):
    """Return aggregated AI provider usage stats from the JSONL log."""
    return summarize_ai_usage(since_hours=hours)


# --- Practice History ---

@app.post("/api/practice/{filename}/history")
async def record_practice_run(filename: str, run: PracticeRunRequest):
    entry, is_new_best = practice_history.record(filename, run.score, run.timeMs)
    return {**entry.model_dump(), "isNewPersonalBest": is_new_best}


@app.get("/api/practice/history")
async def get_practice_history():
    return {key: entry.model_dump() for key, entry in practice_history.all().items()}


if __name__ == "__main__":
    import uvicorn
    print(f"\n🎮 Quizix Server")
    print(f"   Data: {settings.data_dir}")
    print(f"   URL: http://localhost:8000\n")
    uvicorn.run(app, host="0.0.0.0", port=8000)
