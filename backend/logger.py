"""
Quizix Backend Logging
======================
Rotating file logs plus two JSONL streams for later analysis. Files live in
backend/logs/ unless $QUIZIX_LOG_DIR points elsewhere.

  quizix.log           everything at DEBUG and above
  ai.log               provider calls: timing, sizes, failures
  ai_usage.jsonl       one record per provider call (tokens, latency, outcome)
  game_events.jsonl    game lifecycle, players, sockets, folders

Every record carries the request ID and, inside a game, the game PIN.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from collections import Counter, defaultdict
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, Optional

LOG_DIR = Path(os.environ.get("QUIZIX_LOG_DIR", str(Path(__file__).parent / "logs")))
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5
JSONL_MAX_BYTES = 10 * 1024 * 1024
JSONL_BACKUPS = 10

AI_LOGGER = "Quizix.ai.calls"
USAGE_LOGGER = "Quizix.ai.usage"
EVENTS_LOGGER = "Quizix.events"
USAGE_FILE = "ai_usage.jsonl"

# ---------------------------------------------------------------------------
# Correlation context
# ---------------------------------------------------------------------------

_request_id: ContextVar[str] = ContextVar("request_id", default="-")
_game_pin: ContextVar[str] = ContextVar("game_pin", default="-")


def set_request_id(rid: str | None = None) -> str:
    """Tag the current task's log records; returns the ID used."""
    rid = rid or uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid


def get_request_id() -> str:
    return _request_id.get()


def set_game_pin(pin: str | None) -> None:
    _game_pin.set(pin or "-")


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()  # type: ignore[attr-defined]
        record.game_pin = _game_pin.get()  # type: ignore[attr-defined]
        return True


_FILE_FMT = logging.Formatter(
    fmt="%(asctime)s | %(levelname)-8s | %(name)-18s | [%(request_id)s/%(game_pin)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    defaults={"request_id": "-", "game_pin": "-"},
)
_CONSOLE_FMT = logging.Formatter(fmt="%(asctime)s | %(levelname)s | %(message)s",
                                 datefmt="%H:%M:%S")
_RAW_FMT = logging.Formatter("%(message)s")


def _file_handler(filename: str, *, fmt: logging.Formatter = _FILE_FMT,
                  max_bytes: int = LOG_MAX_BYTES, backups: int = LOG_BACKUPS) -> RotatingFileHandler:
    handler = RotatingFileHandler(LOG_DIR / filename, maxBytes=max_bytes, backupCount=backups,
                                  encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(fmt)
    handler.addFilter(_ContextFilter())
    return handler


# logger name -> (file, propagate to quizix.log, raw JSON lines)
_CHANNELS = {
    AI_LOGGER: ("ai.log", True, False),
    USAGE_LOGGER: (USAGE_FILE, False, True),
    EVENTS_LOGGER: ("game_events.jsonl", False, True),
}

_configured = False


def setup_logging(*, console_level: int | None = None) -> None:
    """Attach console and file handlers once; later calls are no-ops."""
    global _configured
    if _configured:
        return
    _configured = True

    if console_level is None:
        console_level = getattr(logging, os.environ.get("QUIZIX_LOG_LEVEL", "INFO").upper(),
                                logging.INFO)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(_CONSOLE_FMT)
    root.addHandler(console)
    root.addHandler(_file_handler("quizix.log"))

    for name, (filename, propagate, raw) in _CHANNELS.items():
        channel = logging.getLogger(name)
        channel.setLevel(logging.DEBUG)
        channel.propagate = propagate
        if raw:
            channel.addHandler(_file_handler(filename, fmt=_RAW_FMT, max_bytes=JSONL_MAX_BYTES,
                                             backups=JSONL_BACKUPS))
        else:
            channel.addHandler(_file_handler(filename))

    logging.getLogger("Quizix").info(f"📁 Logging to {LOG_DIR.resolve()}")


def get_logger(name: str = "Quizix") -> logging.Logger:
    return logging.getLogger(name)


def get_ai_logger() -> logging.Logger:
    return logging.getLogger(AI_LOGGER)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_game_event(event_type: str, *, session_code: str | None = None,
                   player_id: str | None = None, data: dict[str, Any] | None = None) -> None:
    """Append one self-contained JSON line to game_events.jsonl."""
    record: dict[str, Any] = {"ts": _now_iso(), "event": event_type,
                              "request_id": _request_id.get()}
    pin = session_code or (None if _game_pin.get() == "-" else _game_pin.get())
    if pin:
        record["session"] = pin
    if player_id:
        record["player_id"] = player_id
    record.update(data or {})
    logging.getLogger(EVENTS_LOGGER).info(json.dumps(record, default=str))


# ---------------------------------------------------------------------------
# AI provider usage
# ---------------------------------------------------------------------------

# (container key or None for top level, prompt-count key, completion-count key)
_USAGE_SHAPES = (
    ("usage", "prompt_tokens", "completion_tokens"),          # OpenAI
    ("usage", "input_tokens", "output_tokens"),               # Claude
    ("usageMetadata", "promptTokenCount", "candidatesTokenCount"),  # Gemini
    (None, "prompt_eval_count", "eval_count"),                # Ollama
)


def extract_token_usage(payload: dict[str, Any] | None) -> dict[str, int]:
    """Token counts from any provider's response body; {} when it reports none."""
    if not isinstance(payload, dict):
        return {}
    for container, prompt_key, completion_key in _USAGE_SHAPES:
        source = payload.get(container) if container else payload
        if not isinstance(source, dict):
            continue
        prompt = int(source.get(prompt_key) or 0)
        completion = int(source.get(completion_key) or 0)
        if prompt or completion:
            return {"prompt_tokens": prompt, "completion_tokens": completion,
                    "total_tokens": prompt + completion}
    return {}


@dataclass
class AICallTracker:
    """Timing and usage for one provider call, written to ai.log and ai_usage.jsonl."""

    provider: str
    model: str = ""
    prompt_chars: int = 0
    extra: dict[str, Any] = field(default_factory=dict)
    started: float = 0.0
    finished: bool = False

    def start(self) -> "AICallTracker":
        self.started = time.monotonic()
        get_ai_logger().info(f"→ {self.provider} call model={self.model or '-'} "
                             f"prompt={self.prompt_chars} chars")
        return self

    def finish(self, *, response_chars: int = 0, success: bool = True,
               error: str | None = None, status_code: int | None = None,
               token_usage: dict[str, Any] | None = None) -> dict[str, Any]:
        self.finished = True
        elapsed_ms = int((time.monotonic() - self.started) * 1000)
        usage = dict(token_usage or {})
        if not usage:
            # Provider reported nothing: estimate at ~4 characters per token
            usage = {"estimated": True,
                     "prompt_tokens": self.prompt_chars // 4,
                     "completion_tokens": response_chars // 4}
            usage["total_tokens"] = usage["prompt_tokens"] + usage["completion_tokens"]

        record = {
            "timestamp": _now_iso(),
            "request_id": _request_id.get(),
            "provider": self.provider,
            "model": self.model,
            "prompt_chars": self.prompt_chars,
            "response_chars": response_chars,
            "elapsed_ms": elapsed_ms,
            "success": success,
            "status_code": status_code,
            "error": error,
            "token_usage": usage,
            **self.extra,
        }
        logging.getLogger(USAGE_LOGGER).info(json.dumps(record, default=str))

        outcome = "ok" if success else f"failed ({error})"
        tokens = "" if usage.get("estimated") else f" tokens={usage['total_tokens']}"
        get_ai_logger().info(f"← {self.provider} {outcome} in {elapsed_ms}ms "
                             f"response={response_chars} chars{tokens}")
        return record

    def __enter__(self) -> "AICallTracker":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None and not self.finished:
            self.finish(success=False, error=f"{exc_type.__name__}: {exc_val}")


def _usage_records(since: float, path: Optional[Path] = None) -> Iterator[dict[str, Any]]:
    path = path or LOG_DIR / USAGE_FILE
    if not path.exists():
        return
    with open(path, encoding="utf-8") as f:
        for line in f:
            try:
                record = json.loads(line)
                stamp = datetime.fromisoformat(record["timestamp"]).timestamp()
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                continue
            if stamp >= since:
                yield record


def summarize_ai_usage(since_hours: float = 24, *, path: Optional[Path] = None) -> dict[str, Any]:
    """Aggregate ai_usage.jsonl over the last `since_hours`."""
    calls = failures = prompt_tokens = completion_tokens = total_ms = 0
    per_provider: Counter[str] = Counter()
    provider_ms: dict[str, int] = defaultdict(int)
    models: set[str] = set()
    slowest: Optional[dict[str, Any]] = None

    for record in _usage_records(time.time() - since_hours * 3600, path):
        calls += 1
        failures += 0 if record.get("success") else 1
        usage = record.get("token_usage") or {}
        prompt_tokens += usage.get("prompt_tokens", 0)
        completion_tokens += usage.get("completion_tokens", 0)
        elapsed = record.get("elapsed_ms", 0)
        total_ms += elapsed
        provider = record.get("provider", "unknown")
        per_provider[provider] += 1
        provider_ms[provider] += elapsed
        models.add(record.get("model") or "unknown")
        if slowest is None or elapsed > slowest["elapsed_ms"]:
            slowest = {"provider": provider, "elapsed_ms": elapsed,
                       "timestamp": record["timestamp"]}

    return {
        "period_hours": since_hours,
        "total_calls": calls,
        "successful_calls": calls - failures,
        "failed_calls": failures,
        "error_rate_pct": round(failures / calls * 100, 1) if calls else 0.0,
        "total_prompt_tokens": prompt_tokens,
        "total_completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens,
        "avg_elapsed_ms": total_ms // calls if calls else 0,
        "slowest_call": slowest,
        "providers": {name: {"calls": count, "avg_elapsed_ms": provider_ms[name] // count}
                      for name, count in per_provider.items()},
        "models_used": sorted(models),
    }
