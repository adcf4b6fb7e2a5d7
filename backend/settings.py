"""
Quizix Backend Settings
=======================
Environment-driven configuration plus the game, scoring and timing
constants shared by the session core and the HTTP layer.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

BACKEND_DIR = Path(__file__).parent

# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

BASE_POINTS = 100
MAX_BONUS_TIME = 10_000  # ms
DIFFICULTY_MULTIPLIERS: dict[str, float] = {"easy": 1, "medium": 1.5, "hard": 2}
MAX_PLAYER_NAME_LENGTH = 20
EXTEND_TIME_SECONDS = 10

# ---------------------------------------------------------------------------
# Timing (ms unless noted)
# ---------------------------------------------------------------------------

DEFAULT_QUESTION_TIME = 20  # seconds
MIN_QUESTION_TIME = 5  # seconds
MAX_QUESTION_TIME = 300  # seconds
GAME_START_DELAY = 2000
RESULT_DISPLAY_DURATION = 4000
NEXT_QUESTION_DEBOUNCE = 1000
IDENTIFY_TIMEOUT = 10.0  # seconds
STALE_GAME_AGE = 2 * 60 * 60  # seconds
EMPTY_LOBBY_AGE = 30 * 60  # seconds

# ---------------------------------------------------------------------------
# Resource limits
# ---------------------------------------------------------------------------

LIMITS = {
    "desktop": {
        "MAX_CONCURRENT_GAMES": 100,
        "MAX_PLAYERS_PER_GAME": 200,
        "MAX_UPLOAD_SIZE": 5 * 1024 * 1024,
    },
    "mobile": {
        "MAX_CONCURRENT_GAMES": 5,
        "MAX_PLAYERS_PER_GAME": 50,
        "MAX_UPLOAD_SIZE": 1 * 1024 * 1024,
    },
}


def is_mobile_mode() -> bool:
    return os.environ.get("MOBILE_MODE", "false").lower() == "true"


def get_limits() -> dict[str, int]:
    """Limits for the current deployment (MOBILE_MODE=true selects the small set)."""
    return LIMITS["mobile"] if is_mobile_mode() else LIMITS["desktop"]


# ---------------------------------------------------------------------------
# Unlock tokens
# ---------------------------------------------------------------------------

TOKEN_EXPIRY = 60 * 60  # seconds
MAX_UNLOCK_ATTEMPTS = 5
UNLOCK_WINDOW = 60  # seconds
MIN_PASSWORD_LENGTH = 4

# ---------------------------------------------------------------------------
# AI providers
# ---------------------------------------------------------------------------

DEFAULT_OLLAMA_URL = "http://localhost:11434"
OLLAMA_DEFAULT_MODEL = "llama3.2:latest"
OLLAMA_FALLBACK_MODELS = [
    "llama3.2:latest",
    "codellama:13b-instruct",
    "codellama:7b-instruct",
    "codellama:7b-code",
]
OLLAMA_PROBE_TIMEOUT = 2.0  # seconds
DEFAULT_TEMPERATURE = 0.7
BYOK_REQUESTS_PER_MINUTE = 10
MAX_GENERATION_ATTEMPTS = 3


@dataclass(frozen=True)
class Settings:
    data_dir: Path = BACKEND_DIR / "data"
    ollama_url: str = DEFAULT_OLLAMA_URL
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    claude_api_key: str = ""
    claude_model: str = "claude-sonnet-4-5"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    ai_request_timeout: float = 120.0
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @property
    def quizzes_dir(self) -> Path:
        return self.data_dir / "quizzes"

    @property
    def results_dir(self) -> Path:
        return self.data_dir / "results"

    @property
    def metadata_file(self) -> Path:
        return self.data_dir / "metadata.json"

    @property
    def practice_history_file(self) -> Path:
        return self.data_dir / "practice_history.json"

    @property
    def ollama_generate_endpoint(self) -> str:
        return f"{self.ollama_url.rstrip('/')}/api/generate"

    @property
    def ollama_tags_endpoint(self) -> str:
        return f"{self.ollama_url.rstrip('/')}/api/tags"


def load_settings() -> Settings:
    """Build settings from the process environment."""
    origins = os.environ.get("CORS_ORIGINS", "*")
    return Settings(
        data_dir=Path(os.environ.get("QUIZIX_DATA_DIR", str(BACKEND_DIR / "data"))),
        ollama_url=os.environ.get("OLLAMA_URL", DEFAULT_OLLAMA_URL),
        openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
        openai_model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
        claude_api_key=os.environ.get("CLAUDE_API_KEY", ""),
        claude_model=os.environ.get("CLAUDE_MODEL", "claude-sonnet-4-5"),
        gemini_api_key=os.environ.get("GEMINI_API_KEY", ""),
        gemini_model=os.environ.get("GEMINI_MODEL", "gemini-2.5-flash"),
        ai_request_timeout=float(os.environ.get("AI_REQUEST_TIMEOUT", "120")),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )
