"""Domain errors and the unified async error-handling policy."""

from __future__ import annotations

import asyncio
import inspect
import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from logger import get_logger

logger = get_logger("Quizix.errors")


class QuizixError(Exception):
    """Base class for all expected domain errors."""

    status_code = 400
    message_key = "error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "messageKey": self.message_key, "code": self.code}


class ValidationFailed(QuizixError):
    message_key = "invalidInput"

    def __init__(self, errors: list[str], message: str = "Validation failed"):
        super().__init__(f"{message}: {'; '.join(errors)}" if errors else message,
                         code="INVALID_INPUT")
        self.errors = errors

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "errors": self.errors}


class UnknownQuestionTypeError(QuizixError):
    """Registry miss. Always a programming error, never user input."""

    status_code = 500

    def __init__(self, kind: Any):
        super().__init__(f"Unknown question type: {kind!r}", code="UNKNOWN_QUESTION_TYPE")
        self.kind = kind


class GameError(QuizixError):
    message_key = "gameError"


class AnswerRejected(QuizixError):
    """Non-fatal: the submission is dropped and the session keeps running."""

    message_key = "answerRejected"

    def __init__(self, reason: str):
        super().__init__(reason, code="ANSWER_REJECTED")
        self.reason = reason


class PowerUpError(QuizixError):
    message_key = "powerUpUnavailable"


class NotFound(QuizixError):
    status_code = 404
    message_key = "notFound"


class Conflict(QuizixError):
    status_code = 409
    message_key = "conflict"


class AuthError(QuizixError):
    status_code = 401
    message_key = "authRequired"

    def __init__(self, message: str = "Authentication required", *, status_code: int = 401,
                 code: str | None = None):
        super().__init__(message, code=code or ("FORBIDDEN" if status_code == 403 else "UNAUTHORIZED"))
        self.status_code = status_code


class RateLimited(QuizixError):
    status_code = 429
    message_key = "aiRateLimited"

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, code="RATE_LIMITED")
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "retryAfter": self.retry_after}


class ProviderError(QuizixError):
    """An AI provider answered with a non-2xx status or could not be reached."""

    status_code = 502
    message_key = "aiGenerationFailed"

    def __init__(self, message: str, *, status_code: int = 502, message_key: str | None = None,
                 provider: str = ""):
        super().__init__(message, code="AI_GENERATION_FAILED")
        self.status_code = status_code
        self.provider = provider
        if message_key:
            self.message_key = message_key


class ProviderTimeout(ProviderError):
    def __init__(self, message: str, *, provider: str = ""):
        super().__init__(message, status_code=504, message_key="connectionTimeout", provider=provider)
        self.code = "NETWORK_TIMEOUT"


class ResponseParseError(QuizixError):
    status_code = 422
    message_key = "aiGenerationFailed"


# ---------------------------------------------------------------------------
# Unified error handler
# ---------------------------------------------------------------------------

ERROR_TYPES = ("network", "game_logic", "user_input", "system", "validation", "socket", "ai")

ERROR_MESSAGES = {
    "NETWORK_TIMEOUT": "connectionTimeout",
    "NETWORK_OFFLINE": "noConnection",
    "NETWORK_ERROR": "networkError",
    "FETCH_FAILED": "networkError",
    "SOCKET_DISCONNECTED": "connectionLost",
    "SOCKET_TIMEOUT": "connectionTimeout",
    "GAME_NOT_FOUND": "gameNotFound",
    "GAME_ALREADY_STARTED": "gameAlreadyStarted",
    "INVALID_PIN": "invalidPin",
    "AI_GENERATION_FAILED": "aiGenerationFailed",
    "AI_RATE_LIMITED": "aiRateLimited",
    "RATE_LIMITED": "aiRateLimited",
    "INVALID_INPUT": "invalidInput",
    "REQUIRED_FIELD": "requiredField",
}


@dataclass
class ErrorPolicy:
    """Per-call-site descriptor telling the handler what to do on failure."""

    error_type: str = "system"
    retryable: bool = False
    max_retries: int = 3
    silent: bool = False
    fallback: Optional[Callable[[], Any]] = None
    context: dict[str, Any] = field(default_factory=dict)


class ErrorHandler:
    def __init__(self, *, max_stored_errors: int = 50, retry_delay: float = 1.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.errors: deque[dict[str, Any]] = deque(maxlen=max_stored_errors)
        self.retry_delay = retry_delay
        self._sleep = sleep

    def log(self, error: BaseException | str, context: dict[str, Any] | None = None,
            severity: str = "error") -> None:
        if isinstance(error, str):
            error = Exception(error)
        info = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": str(error) or error.__class__.__name__,
            "type": error.__class__.__name__,
            "context": context or {},
            "severity": severity,
        }
        getattr(logger, severity if severity in ("warning", "error", "info", "debug") else "error")(
            "❌ %s %s", info["message"], info["context"]
        )
        if severity == "error" and not isinstance(error, QuizixError):
            logger.debug("".join(traceback.format_exception(type(error), error, error.__traceback__)))
        self.errors.append(info)

    def safe_execute(self, operation: Callable[[], Any], context: dict[str, Any] | None = None,
                     fallback: Optional[Callable[[], Any]] = None) -> Any:
        """Run a synchronous operation; log and fall back instead of raising."""
        try:
            return operation()
        except Exception as e:
            self.log(e, context)
            if fallback is None:
                return None
            try:
                return fallback()
            except Exception as fallback_error:
                self.log(fallback_error, {**(context or {}), "isFallback": True}, "warning")
                return None

    async def wrap_async(self, operation: Callable[[], Awaitable[Any]],
                         policy: ErrorPolicy | None = None) -> Any:
        """Run an async operation under a policy: retry, log, fall back, re-raise."""
        policy = policy or ErrorPolicy()
        attempts = 0
        last_error: BaseException | None = None

        while attempts <= policy.max_retries:
            try:
                return await operation()
            except Exception as e:
                last_error = e
                attempts += 1
                if not policy.silent:
                    self.log(e, {**policy.context, "attempt": attempts,
                                 "errorType": policy.error_type, "retryable": policy.retryable})
                if policy.retryable and attempts <= policy.max_retries and not isinstance(e, RateLimited):
                    await self._sleep(self.retry_delay * attempts)
                    continue
                break

        if policy.fallback is not None:
            try:
                result = policy.fallback()
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as fallback_error:
                self.log(fallback_error, {**policy.context, "isFallback": True}, "warning")

        assert last_error is not None
        raise last_error

    @staticmethod
    def user_message(error_code: str | None) -> str:
        return ERROR_MESSAGES.get(error_code or "", "error")

    def recent_errors(self, count: int = 10) -> list[dict[str, Any]]:
        return list(self.errors)[-count:]

    def clear(self) -> None:
        self.errors.clear()


error_handler = ErrorHandler()
