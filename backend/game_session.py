"""
Game Session
============
The authoritative state machine for one live quiz: lobby, per-question
rounds, reveal, advancement and final results. It owns its players and
questions exclusively and talks to the outside world only through an
EventBus, so the same class runs networked games (SocketEventBus) and
in-process practice games (LocalEventBus).
"""

from __future__ import annotations

import asyncio
import random
import secrets
import time
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Protocol

import question_types
from errors import AnswerRejected, GameError, NotFound, PowerUpError, QuizixError, ValidationFailed
from event_bus import EventBus
from logger import get_logger, log_game_event
from models import (
    AnswerRecord,
    GameState,
    LeaderboardEntry,
    Player,
    Question,
    QuestionStatistics,
    Quiz,
    generate_player_id,
    generate_token,
)
from power_ups import PowerUpInventory, PowerUpType, apply_power_up, new_inventory, parse_power_up
from scoring import ScoreResult, calculate_score
from settings import (
    EMPTY_LOBBY_AGE,
    GAME_START_DELAY,
    MAX_PLAYER_NAME_LENGTH,
    NEXT_QUESTION_DEBOUNCE,
    RESULT_DISPLAY_DURATION,
    STALE_GAME_AGE,
    get_limits,
)

logger = get_logger("Quizix.session")

HOST = "host"

NAME_PUNCTUATION = set(" -_.'!")

# Events a session sends to clients
OUTBOUND_EVENTS = (
    "player-joined", "player-left", "game-starting", "game-started",
    "question-start", "answer-submitted", "answer-count-update",
    "player-result", "question-end", "show-next-button", "hide-next-button",
    "power-up-result", "game-end", "game-state", "error",
)


class Phase(str, Enum):
    LOBBY = "lobby"
    PLAYING = "playing"
    QUESTION = "question"
    REVEALING = "revealing"
    BETWEEN = "between"
    FINISHED = "finished"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules callbacks on the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


def validate_player_name(name: Any, existing: Iterable[str] = ()) -> str:
    """Return the trimmed name or raise GameError(INVALID_NAME)."""
    if not isinstance(name, str) or not name.strip():
        raise GameError("Name is required", code="INVALID_NAME")
    name = name.strip()
    if len(name) > MAX_PLAYER_NAME_LENGTH:
        raise GameError(f"Name must be at most {MAX_PLAYER_NAME_LENGTH} characters",
                        code="INVALID_NAME")
    if not all(ch.isalnum() or ch in NAME_PUNCTUATION for ch in name):
        raise GameError("Name contains invalid characters", code="INVALID_NAME")
    if name.casefold() in {n.casefold() for n in existing}:
        raise GameError("Name already taken", code="NAME_TAKEN")
    return name


class GameSession:
    def __init__(
        self,
        quiz: Quiz,
        bus: EventBus,
        *,
        pin: Optional[str] = None,
        host_token: Optional[str] = None,
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Optional[Scheduler] = None,
        start_delay_ms: int = GAME_START_DELAY,
        reveal_hold_ms: int = RESULT_DISPLAY_DURATION,
        force_auto_advance: bool = False,
        max_players: Optional[int] = None,
    ):
        errors = question_types.validate_questions(quiz.questions)
        if errors:
            raise ValidationFailed(errors, "Quiz has invalid questions")
        self.quiz = quiz
        self.bus = bus
        self.pin = pin
        self.host_token = host_token or generate_token()
        self.seed = seed if seed is not None else secrets.randbits(32)
        self.rng = random.Random(self.seed)
        self.clock = clock
        self.scheduler = scheduler or LoopScheduler()
        self.start_delay_ms = start_delay_ms
        self.reveal_hold_ms = reveal_hold_ms
        self.auto_advance = force_auto_advance or not quiz.manualAdvancement
        self.max_players = max_players or get_limits()["MAX_PLAYERS_PER_GAME"]

        self.phase = Phase.LOBBY
        self.current_index = -1
        self.questions: list[Question] = list(quiz.questions)
        self.players: dict[str, Player] = {}
        self.question_started_at: Optional[float] = None
        self.question_deadline_at: Optional[float] = None
        self.created_at = clock()
        self.created_wall = time.time()
        self.started_wall: Optional[float] = None
        self.finished_wall: Optional[float] = None

        self._timer: Optional[TimerHandle] = None
        self._hold_timer: Optional[TimerHandle] = None
        self._last_advance_at: Optional[float] = None
        self._finished_callbacks: list[Callable[["GameSession"], Any]] = []

        self._handlers: dict[str, Callable[[Any], None]] = {
            "start-game": self._on_start_game,
            "submit-answer": self._on_submit_answer,
            "next-question": self._on_next_question,
            "leave-game": self._on_leave_game,
            "use-power-up": self._on_use_power_up,
        }
        for event, handler in self._handlers.items():
            self.bus.on(event, handler)

    # ------------------------------------------------------------------
    # Bus command handlers
    # ------------------------------------------------------------------

    def _sender(self, data: Any) -> Optional[str]:
        return data.get("playerId") if isinstance(data, dict) else None

    def _guarded(self, recipient: Optional[str], operation: Callable[..., Any], *args: Any) -> Any:
        try:
            return operation(*args)
        except AnswerRejected as e:
            logger.info(f"⚠️ Answer rejected in {self.pin}: {e.reason}")
            self.bus.emit("error", {"message": e.message, "code": e.code, "reason": e.reason},
                          to=recipient)
        except QuizixError as e:
            logger.warning(f"⚠️ {e.code} in {self.pin}: {e.message}")
            self.bus.emit("error", {"message": e.message, "code": e.code}, to=recipient)
        return None

    def _on_start_game(self, data: Any) -> None:
        self._guarded(HOST, self.start)

    def _on_submit_answer(self, data: Any) -> None:
        player_id = self._sender(data)
        answer = data.get("answer") if isinstance(data, dict) else None
        self._guarded(player_id, self.submit_answer, player_id, answer)

    def _on_next_question(self, data: Any) -> None:
        self._guarded(HOST, self.next_question)

    def _on_leave_game(self, data: Any) -> None:
        self._guarded(self._sender(data), self.remove_player, self._sender(data))

    def _on_use_power_up(self, data: Any) -> None:
        player_id = self._sender(data)
        kind = data.get("type") if isinstance(data, dict) else None
        try:
            self.use_power_up(player_id, kind)
        except PowerUpError as e:
            logger.info(f"⚠️ Power-up refused in {self.pin}: {e.message}")
            self.bus.emit("power-up-result",
                          {"success": False, "type": kind, "error": e.message, "code": e.code},
                          to=player_id)

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    def add_player(self, name: str, player_id: Optional[str] = None) -> Player:
        if self.phase != Phase.LOBBY:
            raise GameError("Game already started", code="GAME_ALREADY_STARTED")
        if len(self.players) >= self.max_players:
            raise GameError("Game is full", code="GAME_FULL")
        name = validate_player_name(name, (p.name for p in self.players.values()))
        player = Player(id=player_id or generate_player_id(), name=name,
                        powerUps=new_inventory())
        self.players[player.id] = player

        logger.info(f"👤 Player '{name}' joined game {self.pin} ({len(self.players)} players)")
        log_game_event("player_joined", session_code=self.pin, player_id=player.id,
                       data={"name": name, "player_count": len(self.players)})
        self.bus.emit("player-joined", {
            "player": player.public(),
            "players": self._public_players(),
            "playerCount": len(self.players),
        })
        return player

    def remove_player(self, player_id: Optional[str]) -> None:
        player = self.players.get(player_id) if player_id else None
        if player is None or player.left or self.phase == Phase.FINISHED:
            return
        if self.phase == Phase.LOBBY:
            del self.players[player.id]
        else:
            player.left = True
            player.connected = False

        logger.info(f"👋 Player '{player.name}' left game {self.pin}")
        log_game_event("player_left", session_code=self.pin, player_id=player.id)
        self.bus.emit("player-left", {
            "playerId": player.id,
            "name": player.name,
            "players": self._public_players(),
            "playerCount": len(self._active_players()),
        })

        if self.phase == Phase.LOBBY:
            return
        if not self._active_players():
            self.end_game()
        elif self.phase == Phase.QUESTION and self._all_answered():
            self.end_question()

    def mark_disconnected(self, player_id: str) -> None:
        player = self.players.get(player_id)
        if player is None or not player.connected:
            return
        player.connected = False
        log_game_event("player_disconnected", session_code=self.pin, player_id=player_id)
        if self.phase == Phase.QUESTION and self._all_answered():
            self.end_question()

    def mark_connected(self, player_id: str) -> None:
        player = self.players.get(player_id)
        if player is None or player.left:
            raise NotFound("Player not found", code="PLAYER_NOT_FOUND")
        player.connected = True
        self.bus.emit("game-state", self.state().model_dump(), to=player_id)

    def _active_players(self) -> list[Player]:
        return [p for p in self.players.values() if not p.left]

    def _live_players(self) -> list[Player]:
        return [p for p in self.players.values() if not p.left and p.connected]

    def _public_players(self) -> list[dict[str, Any]]:
        return [p.public() for p in self._active_players()]

    def _all_answered(self) -> bool:
        live = self._live_players()
        return bool(live) and all(p.answeredCurrent for p in live)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.phase != Phase.LOBBY:
            raise GameError("Game already started", code="GAME_ALREADY_STARTED")
        if not self.questions:
            raise GameError("Quiz has no questions", code="NO_QUESTIONS")
        if not self.players:
            raise GameError("At least one player is required", code="NO_PLAYERS")

        self._prepare_questions()
        self.phase = Phase.PLAYING
        self.started_wall = time.time()

        logger.info(f"🚀 Game {self.pin} starting: {len(self.questions)} questions, "
                    f"{len(self.players)} players")
        log_game_event("game_started", session_code=self.pin, data={
            "question_count": len(self.questions), "player_count": len(self.players)})
        self.bus.emit("game-starting", {
            "title": self.quiz.title,
            "totalQuestions": len(self.questions),
            "delay": self.start_delay_ms,
        })
        if self.start_delay_ms > 0:
            self._timer = self.scheduler.call_later(self.start_delay_ms / 1000, self._begin_play)
        else:
            self._begin_play()

    def _prepare_questions(self) -> None:
        questions = [q.model_copy() for q in self.questions]
        if self.quiz.randomizeQuestions:
            # Fisher-Yates
            for i in range(len(questions) - 1, 0, -1):
                j = self.rng.randint(0, i)
                questions[i], questions[j] = questions[j], questions[i]
        if self.quiz.randomizeAnswers:
            questions = [question_types.shuffle_options(q, self.rng) for q in questions]
        if self.quiz.sameTimeForAll:
            questions = [q.model_copy(update={"timeLimit": self.quiz.questionTime})
                         for q in questions]
        self.questions = questions

    def _begin_play(self) -> None:
        self._timer = None
        if self.phase != Phase.PLAYING:
            return
        self.bus.emit("game-started", {"totalQuestions": len(self.questions)})
        self._begin_question(0)

    def _begin_question(self, index: int) -> None:
        question = self.questions[index]
        self.current_index = index
        self.phase = Phase.QUESTION
        self.question_started_at = self.clock()
        self.question_deadline_at = self.question_started_at + question.timeLimit
        for player in self.players.values():
            player.answeredCurrent = False
            player.responseTimeMs = None
            player.deadlineExtensionMs = 0

        logger.info(f"❓ Game {self.pin} question {index + 1}/{len(self.questions)}")
        log_game_event("question_started", session_code=self.pin,
                       data={"question_index": index, "type": question.type})
        self.bus.emit("question-start", {
            **question_types.sanitize_for_player(question),
            "questionNumber": index + 1,
            "questionIndex": index,
            "totalQuestions": len(self.questions),
            "powerUpsEnabled": self.quiz.powerUpsEnabled,
        })
        self._schedule_deadline(question.timeLimit)

    def _schedule_deadline(self, delay: float) -> None:
        self._cancel_timer()
        index = self.current_index
        self._timer = self.scheduler.call_later(max(0.0, delay), lambda: self._on_deadline(index))

    def _on_deadline(self, index: int) -> None:
        self._timer = None
        if self.phase != Phase.QUESTION or self.current_index != index:
            return
        # Players who bought extra time keep the question open
        now = self.clock()
        pending = [self.deadline_for(p) for p in self._live_players()
                   if not p.answeredCurrent and p.deadlineExtensionMs]
        latest = max(pending, default=now)
        if latest > now:
            self._schedule_deadline(latest - now)
            return
        logger.info(f"⏰ Game {self.pin} question {index + 1} timed out")
        self.end_question()

    def deadline_for(self, player: Player) -> float:
        return (self.question_deadline_at or 0) + player.deadlineExtensionMs / 1000

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_hold(self) -> None:
        if self._hold_timer is not None:
            self._hold_timer.cancel()
            self._hold_timer = None

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def submit_answer(self, player_id: Optional[str], answer: Any) -> ScoreResult:
        now = self.clock()
        if self.phase != Phase.QUESTION:
            raise AnswerRejected("Question is not open")
        player = self.players.get(player_id) if player_id else None
        if player is None or player.left:
            raise AnswerRejected("Unknown player")
        if player.answeredCurrent:
            raise AnswerRejected("Already answered")
        if now > self.deadline_for(player):
            raise AnswerRejected("Time is up")

        question = self.questions[self.current_index]
        qtype = question_types.get_type(question.type)
        if not qtype.is_well_formed(question, answer):
            raise AnswerRejected("Malformed answer")
        answer = qtype.normalize_submission(question, answer)

        response_time_ms = max(0, int(round((now - self.question_started_at) * 1000)))
        double_points = PowerUpInventory(player).consume_double_points()
        result = calculate_score(question, answer, response_time_ms,
                                 self.quiz.scoringConfig, double_points)

        player.answeredCurrent = True
        player.responseTimeMs = response_time_ms
        player.totalResponseTimeMs += response_time_ms
        player.score += result.points
        player.streak = player.streak + 1 if result.correct else 0
        if result.correct:
            player.correctAnswers += 1
        player.answers.append(AnswerRecord(
            questionIndex=self.current_index,
            answer=answer,
            correct=result.correct,
            partialCredit=result.partial_credit,
            points=result.points,
            responseTimeMs=response_time_ms,
        ))

        log_game_event("answer_submitted", session_code=self.pin, player_id=player.id, data={
            "question_index": self.current_index, "correct": result.correct,
            "points": result.points, "response_time_ms": response_time_ms,
            "double_points": double_points})
        self.bus.emit("answer-submitted",
                      {"answer": answer, "questionIndex": self.current_index}, to=player.id)
        live = self._live_players()
        self.bus.emit("answer-count-update", {
            "answeredCount": sum(1 for p in live if p.answeredCurrent),
            "totalPlayers": len(live),
        }, to=HOST)

        if self._all_answered():
            self.end_question()
        return result

    def use_power_up(self, player_id: Optional[str], kind: Any) -> dict[str, Any]:
        if not self.quiz.powerUpsEnabled:
            raise PowerUpError("Power-ups are disabled for this game", code="POWER_UPS_DISABLED")
        power_up = parse_power_up(kind)
        player = self.players.get(player_id) if player_id else None
        if player is None or player.left:
            raise PowerUpError("Unknown player", code="PLAYER_NOT_FOUND")
        if (self.phase != Phase.QUESTION or player.answeredCurrent
                or self.clock() > self.deadline_for(player)):
            raise PowerUpError("Power-ups can only be used while answering",
                               code="POWER_UP_NOT_NOW")

        question = self.questions[self.current_index]
        rng = random.Random(f"{self.seed}:{self.current_index}:{player.id}")
        result = apply_power_up(player, power_up, question, rng=rng)
        if power_up is PowerUpType.EXTEND_TIME:
            result["timeRemaining"] = round(self.deadline_for(player) - self.clock(), 3)

        log_game_event("power_up_used", session_code=self.pin, player_id=player.id,
                       data={"type": power_up.value, "question_index": self.current_index})
        self.bus.emit("power-up-result", result, to=player.id)
        return result

    # ------------------------------------------------------------------
    # Reveal and advancement
    # ------------------------------------------------------------------

    def end_question(self) -> None:
        if self.phase != Phase.QUESTION:
            return
        self._cancel_timer()
        self.phase = Phase.REVEALING
        index = self.current_index
        question = self.questions[index]

        for player in self._active_players():
            if not player.answeredCurrent:
                player.streak = 0
                # A missed question costs the full time limit in the tie-break
                player.totalResponseTimeMs += question.timeLimit * 1000
                player.answers.append(AnswerRecord(questionIndex=index, timedOut=True))

        correct = question_types.correct_answer(question)
        leaderboard = [e.model_dump() for e in self.leaderboard()]
        is_last = index >= len(self.questions) - 1

        for player in self._active_players():
            record = player.answers[-1]
            payload = {
                "correct": record.correct,
                "partialCredit": record.partialCredit,
                "points": record.points,
                "totalScore": player.score,
                "streak": player.streak,
                "correctAnswer": correct,
                "explanation": question.explanation,
                "timedOut": record.timedOut,
            }
            if question.optionFeedback:
                payload["optionFeedback"] = {str(k): v for k, v in question.optionFeedback.items()}
            self.bus.emit("player-result", payload, to=player.id)

        logger.info(f"📊 Game {self.pin} question {index + 1} revealed")
        log_game_event("question_ended", session_code=self.pin, data={"question_index": index})
        self.bus.emit("question-end", {
            "questionIndex": index,
            "questionNumber": index + 1,
            "correctAnswer": correct,
            "explanation": question.explanation,
            "leaderboard": leaderboard,
            "statistics": self.statistics(index).model_dump(),
            "isLastQuestion": is_last,
        })

        self._cancel_hold()
        self._hold_timer = self.scheduler.call_later(self.reveal_hold_ms / 1000,
                                                     lambda: self._after_reveal_hold(index))

    def _after_reveal_hold(self, index: int) -> None:
        self._hold_timer = None
        if self.phase != Phase.REVEALING or self.current_index != index:
            return
        if self.auto_advance:
            self._advance()
            return
        self.phase = Phase.BETWEEN
        self.bus.emit("show-next-button",
                      {"isLastQuestion": index >= len(self.questions) - 1}, to=HOST)

    def next_question(self) -> bool:
        """Host advance. Returns False when swallowed by the debounce window."""
        now = self.clock()
        if (self._last_advance_at is not None
                and (now - self._last_advance_at) * 1000 < NEXT_QUESTION_DEBOUNCE):
            logger.debug(f"⏭️ next-question debounced in {self.pin}")
            return False
        if self.phase not in (Phase.REVEALING, Phase.BETWEEN):
            raise GameError("Not waiting for the next question", code="INVALID_STATE")
        self._last_advance_at = now
        self.bus.emit("hide-next-button", {}, to=HOST)
        self._advance()
        return True

    def _advance(self) -> None:
        self._cancel_hold()
        if self.current_index + 1 < len(self.questions):
            self._begin_question(self.current_index + 1)
        else:
            self.end_game()

    def end_game(self) -> None:
        if self.phase == Phase.FINISHED:
            return
        self._cancel_timer()
        self._cancel_hold()
        self.phase = Phase.FINISHED
        self.finished_wall = time.time()

        payload = self._game_end_payload()
        logger.info(f"🏁 Game {self.pin} finished")
        log_game_event("game_ended", session_code=self.pin, data={
            "player_count": len(self._active_players()),
            "questions_played": self.current_index + 1})
        self.bus.emit("game-end", payload)
        for callback in list(self._finished_callbacks):
            try:
                callback(self)
            except Exception:
                logger.exception(f"❌ game-end callback failed for {self.pin}")

    def _game_end_payload(self) -> dict[str, Any]:
        return {
            "title": self.quiz.title,
            "totalQuestions": len(self.questions),
            "leaderboard": [e.model_dump() for e in self.leaderboard()],
        }

    def on_finished(self, callback: Callable[["GameSession"], Any]) -> None:
        self._finished_callbacks.append(callback)

    def teardown(self) -> None:
        self._cancel_timer()
        self._cancel_hold()
        for event, handler in self._handlers.items():
            self.bus.off(event, handler)
        self.bus.disconnect()

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def leaderboard(self) -> list[LeaderboardEntry]:
        ranked = sorted(self._active_players(),
                        key=lambda p: (-p.score, p.totalResponseTimeMs))
        return [
            LeaderboardEntry(
                id=p.id,
                name=p.name,
                score=p.score,
                rank=i + 1,
                correctAnswers=p.correctAnswers,
                totalAnswers=sum(1 for a in p.answers if not a.timedOut),
                totalTimeMs=p.totalResponseTimeMs,
            )
            for i, p in enumerate(ranked)
        ]

    def statistics(self, index: Optional[int] = None) -> QuestionStatistics:
        index = self.current_index if index is None else index
        question = self.questions[index]
        answers = [a.answer for p in self.players.values() for a in p.answers
                   if a.questionIndex == index and not a.timedOut]
        return QuestionStatistics(
            questionIndex=index,
            type=question.type,
            totalPlayers=len(self._active_players()),
            answeredCount=len(answers),
            counts=question_types.tally(question, answers),
        )

    def state(self, for_host: bool = False) -> GameState:
        question = None
        if 0 <= self.current_index < len(self.questions) and self.phase != Phase.FINISHED:
            current = self.questions[self.current_index]
            question = question_types.sanitize_for_player(current)
            question["questionNumber"] = self.current_index + 1
            if for_host or self.phase in (Phase.REVEALING, Phase.BETWEEN):
                question["correctAnswer"] = question_types.correct_answer(current)
        return GameState(
            pin=self.pin,
            title=self.quiz.title,
            phase=self.phase.value,
            currentIndex=self.current_index,
            totalQuestions=len(self.questions),
            questionStartedAt=self.question_started_at,
            questionDeadlineAt=self.question_deadline_at,
            manualAdvancement=not self.auto_advance,
            powerUpsEnabled=self.quiz.powerUpsEnabled,
            players=self._public_players(),
            leaderboard=self.leaderboard(),
            question=question,
        )

    def results_document(self) -> dict[str, Any]:
        """Finished-game record for results persistence."""
        return {
            "title": self.quiz.title,
            "pin": self.pin,
            "createdAt": self.created_wall,
            "startedAt": self.started_wall,
            "finishedAt": self.finished_wall,
            "questions": [q.to_document() for q in self.questions],
            "players": [p.model_dump(exclude={"powerUps", "answeredCurrent",
                                              "deadlineExtensionMs", "connected"})
                        for p in self.players.values()],
            "leaderboard": [e.model_dump() for e in self.leaderboard()],
        }


class SessionManager:
    """All live networked sessions keyed by PIN."""

    def __init__(self, *, max_games: Optional[int] = None, clock: Callable[[], float] = time.monotonic,
                 rng: Optional[random.Random] = None):
        self.sessions: dict[str, GameSession] = {}
        self.max_games = max_games or get_limits()["MAX_CONCURRENT_GAMES"]
        self.clock = clock
        self._rng = rng or random.SystemRandom()

    def __len__(self) -> int:
        return len(self.sessions)

    def generate_pin(self) -> str:
        for _ in range(100):
            pin = str(self._rng.randint(100000, 999999))
            if pin not in self.sessions:
                return pin
        raise GameError("Could not allocate a game PIN", code="PIN_EXHAUSTED")

    def create(self, quiz: Quiz, bus_factory: Callable[[str], EventBus], **kwargs: Any) -> GameSession:
        if len(self.sessions) >= self.max_games:
            raise GameError("Too many active games, try again later", code="TOO_MANY_GAMES")
        pin = self.generate_pin()
        session = GameSession(quiz, bus_factory(pin), pin=pin, clock=self.clock, **kwargs)
        self.sessions[pin] = session

        logger.info(f"🆕 Game created: {pin} '{quiz.title}' ({len(quiz.questions)} questions)")
        log_game_event("game_created", session_code=pin, data={
            "title": quiz.title, "question_count": len(quiz.questions)})
        return session

    def get(self, pin: str) -> Optional[GameSession]:
        return self.sessions.get(pin)

    def require(self, pin: Any) -> GameSession:
        if not isinstance(pin, str) or len(pin) != 6 or not pin.isdigit():
            raise GameError("Invalid game PIN", code="INVALID_PIN")
        session = self.sessions.get(pin)
        if session is None:
            raise NotFound("Game not found", code="GAME_NOT_FOUND")
        return session

    def remove(self, pin: str) -> None:
        session = self.sessions.pop(pin, None)
        if session is not None:
            session.teardown()
            logger.info(f"🗑️ Game {pin} removed")

    def cleanup_stale(self) -> list[str]:
        now = self.clock()
        stale = []
        for pin, session in self.sessions.items():
            age = now - session.created_at
            if (session.phase == Phase.FINISHED
                    or age > STALE_GAME_AGE
                    or (session.phase == Phase.LOBBY and not session.players
                        and age > EMPTY_LOBBY_AGE)):
                stale.append(pin)
        for pin in stale:
            self.remove(pin)
        if stale:
            logger.info(f"🧹 Cleaned {len(stale)} stale game(s)")
        return stale
