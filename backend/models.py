from __future__ import annotations

import secrets
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from settings import DEFAULT_QUESTION_TIME, DIFFICULTY_MULTIPLIERS

# Persisted `type` values
MULTIPLE_CHOICE = "multiple-choice"
MULTIPLE_CORRECT = "multiple-correct"
TRUE_FALSE = "true-false"
NUMERIC = "numeric"
ORDERING = "ordering"

DIFFICULTIES = ("easy", "medium", "hard")


def _coerce_scalar(value: Any) -> Any:
    """'true'/'false' -> bool, numeric strings -> int/float, everything else untouched."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return value


class Question(BaseModel):
    """One quiz question in its canonical in-memory shape.

    Kind-specific payload lives in the same flat fields the quiz document
    uses: `correctAnswer` is an index (multiple-choice), a bool (true-false)
    or a number (numeric); `correctAnswers` holds multiple-correct indices;
    `options` doubles as the item list for ordering questions.
    """

    model_config = ConfigDict(populate_by_name=True)

    question: str = ""
    type: str = MULTIPLE_CHOICE
    options: list[str] = Field(default_factory=list)
    correctAnswer: Optional[Union[bool, int, float]] = None
    correctAnswers: list[int] = Field(default_factory=list)
    correctOrder: list[int] = Field(default_factory=list)
    tolerance: float = 0
    timeLimit: int = DEFAULT_QUESTION_TIME
    difficulty: str = "medium"
    explanation: Optional[str] = None
    image: Optional[str] = None
    video: Optional[str] = None
    animation: Optional[str] = None
    optionFeedback: dict[int, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _accept_alternate_shapes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "correctIndex" in data and data.get("correctAnswer") is None:
            data["correctAnswer"] = data.pop("correctIndex")
        else:
            data.pop("correctIndex", None)
        if "correctIndices" in data and not data.get("correctAnswers"):
            data["correctAnswers"] = data.pop("correctIndices")
        else:
            data.pop("correctIndices", None)
        if "numericAnswer" in data and data.get("correctAnswer") is None:
            data["correctAnswer"] = data.pop("numericAnswer")
        else:
            data.pop("numericAnswer", None)
        if "items" in data and not data.get("options"):
            data["options"] = data.pop("items")
        else:
            data.pop("items", None)
        if "time" in data and "timeLimit" not in data:
            data["timeLimit"] = data.pop("time")
        else:
            data.pop("time", None)
        if "prompt" in data and not data.get("question"):
            data["question"] = data.pop("prompt")

        answer = _coerce_scalar(data.get("correctAnswer"))
        if data.get("type") == TRUE_FALSE and answer in (0, 1) and not isinstance(answer, bool):
            answer = bool(answer)
        data["correctAnswer"] = answer
        if data.get("tolerance") is None:
            data["tolerance"] = 0
        if data.get("timeLimit") is None:
            data.pop("timeLimit", None)
        if not data.get("difficulty"):
            data["difficulty"] = "medium"
        return data

    @field_validator("optionFeedback", mode="before")
    @classmethod
    def _feedback_from_list(cls, value: Any) -> Any:
        # Generated questions send [{"index": 1, "feedback": "..."}]
        if value is None:
            return {}
        if isinstance(value, list):
            return {
                int(item["index"]): str(item.get("feedback", ""))
                for item in value
                if isinstance(item, dict) and "index" in item
            }
        return value

    @field_validator("difficulty")
    @classmethod
    def _lower_difficulty(cls, value: str) -> str:
        return value.lower()

    def to_document(self) -> dict[str, Any]:
        """Serialize to the persisted quiz-document shape."""
        doc = self.model_dump(exclude_none=True)
        if isinstance(self.correctAnswer, bool):
            doc["correctAnswer"] = "true" if self.correctAnswer else "false"
        for key in ("correctAnswers", "correctOrder", "optionFeedback", "options"):
            if not doc.get(key):
                doc.pop(key, None)
        if "optionFeedback" in doc:
            doc["optionFeedback"] = {str(k): v for k, v in doc["optionFeedback"].items()}
        return doc


class ScoringConfig(BaseModel):
    timeBonusEnabled: bool = True
    timeBonusThreshold: int = 0  # ms, 0 = no threshold
    difficultyMultipliers: dict[str, float] = Field(
        default_factory=lambda: dict(DIFFICULTY_MULTIPLIERS)
    )


class Quiz(BaseModel):
    title: str
    questions: list[Question] = Field(default_factory=list)
    manualAdvancement: bool = False
    randomizeQuestions: bool = False
    randomizeAnswers: bool = False
    sameTimeForAll: bool = False
    questionTime: int = DEFAULT_QUESTION_TIME
    powerUpsEnabled: bool = False
    scoringConfig: ScoringConfig = Field(default_factory=ScoringConfig)

    @field_validator("scoringConfig", mode="before")
    @classmethod
    def _default_scoring(cls, value: Any) -> Any:
        return ScoringConfig() if value is None else value

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(exclude={"questions"})
        doc["questions"] = [q.to_document() for q in self.questions]
        return doc


def load_quiz_document(data: dict[str, Any]) -> Quiz:
    """Parse a persisted quiz document, normalizing legacy answer shapes."""
    return Quiz.model_validate(data)


# --- Session-scoped state ---

class PowerUpState(BaseModel):
    used: bool = False
    active: bool = False


class AnswerRecord(BaseModel):
    questionIndex: int
    answer: Any = None
    correct: bool = False
    partialCredit: Optional[float] = None
    points: int = 0
    responseTimeMs: Optional[int] = None
    timedOut: bool = False


class Player(BaseModel):
    id: str
    name: str
    score: int = 0
    streak: int = 0
    answeredCurrent: bool = False
    responseTimeMs: Optional[int] = None
    totalResponseTimeMs: int = 0
    correctAnswers: int = 0
    deadlineExtensionMs: int = 0
    answers: list[AnswerRecord] = Field(default_factory=list)
    powerUps: dict[str, PowerUpState] = Field(default_factory=dict)
    connected: bool = True
    left: bool = False

    def public(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "score": self.score}


class LeaderboardEntry(BaseModel):
    id: str
    name: str
    score: int
    rank: int
    correctAnswers: int
    totalAnswers: int
    totalTimeMs: int = 0  # tie-breaker


class QuestionStatistics(BaseModel):
    questionIndex: int
    type: str
    totalPlayers: int
    answeredCount: int
    counts: dict[str, int]


class GameState(BaseModel):
    pin: Optional[str] = None
    title: str
    phase: str
    currentIndex: int = -1
    totalQuestions: int
    questionStartedAt: Optional[float] = None
    questionDeadlineAt: Optional[float] = None
    manualAdvancement: bool = False
    powerUpsEnabled: bool = False
    players: list[dict[str, Any]] = Field(default_factory=list)
    leaderboard: list[LeaderboardEntry] = Field(default_factory=list)
    question: Optional[dict[str, Any]] = None


class PracticeHistoryEntry(BaseModel):
    bestScore: int
    bestTimeMs: int
    attempts: int
    lastPlayed: str


def generate_token() -> str:
    """Generate a secure random token"""
    return secrets.token_urlsafe(32)


def generate_player_id() -> str:
    """Generate a player ID"""
    return secrets.token_urlsafe(16)
