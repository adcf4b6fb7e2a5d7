"""Single-player practice: the game session over a local bus, plus personal bests."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from event_bus import EventBus, LocalEventBus
from game_session import GameSession
from logger import get_logger
from models import PracticeHistoryEntry, Quiz

logger = get_logger("Quizix.practice")


def practice_key(quiz: Quiz, filename: Optional[str] = None) -> str:
    """History key: the quiz filename when known, else the normalized title."""
    if filename:
        return filename
    return re.sub(r"\s+", "_", quiz.title.strip().lower())


class PracticeHistoryStore:
    """Per-quiz personal bests persisted as one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"⚠️ Practice history unreadable, starting fresh: {e}")
            return {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get(self, key: str) -> Optional[PracticeHistoryEntry]:
        raw = self._read().get(key)
        return PracticeHistoryEntry.model_validate(raw) if raw else None

    def all(self) -> dict[str, PracticeHistoryEntry]:
        return {k: PracticeHistoryEntry.model_validate(v) for k, v in self._read().items()}

    def record(self, key: str, score: int, time_ms: int) -> tuple[PracticeHistoryEntry, bool]:
        """Store a finished run. Returns the updated entry and whether it is a new best."""
        data = self._read()
        now = datetime.now(timezone.utc).isoformat()
        previous = data.get(key)
        if previous is None:
            entry = PracticeHistoryEntry(bestScore=score, bestTimeMs=time_ms, attempts=1,
                                         lastPlayed=now)
            is_new_best = True
        else:
            entry = PracticeHistoryEntry.model_validate(previous)
            is_new_best = score > entry.bestScore
            if is_new_best:
                entry.bestScore = score
                entry.bestTimeMs = time_ms
            elif time_ms < entry.bestTimeMs:
                entry.bestTimeMs = time_ms
            entry.attempts += 1
            entry.lastPlayed = now
        data[key] = entry.model_dump()
        self._write(data)
        logger.info(f"📝 Practice run for '{key}': score={score} best={entry.bestScore} "
                    f"new_best={is_new_best}")
        return entry, is_new_best


class LocalGameSession(GameSession):
    """The same state machine with one synthetic player and forced auto-advance."""

    def __init__(self, quiz: Quiz, bus: Optional[EventBus] = None, *,
                 player_name: str = "Player", history: Optional[PracticeHistoryStore] = None,
                 quiz_key: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("start_delay_ms", 0)
        super().__init__(quiz, bus or LocalEventBus(), force_auto_advance=True, **kwargs)
        self.history = history
        self.quiz_key = quiz_key or practice_key(quiz)
        self.player = self.add_player(player_name)

    def _sender(self, data: Any) -> Optional[str]:
        return super()._sender(data) or self.player.id

    def _game_end_payload(self) -> dict[str, Any]:
        payload = super()._game_end_payload()
        score = self.player.score
        total_time = self.player.totalResponseTimeMs
        personal_best = score
        is_new_best = False
        if self.history is not None:
            entry, is_new_best = self.history.record(self.quiz_key, score, total_time)
            personal_best = entry.bestScore
        payload.update({
            "finalScore": score,
            "correctAnswers": self.player.correctAnswers,
            "totalQuestions": len(self.questions),
            "totalTime": total_time,
            "personalBest": personal_best,
            "isNewPersonalBest": is_new_best,
        })
        return payload
