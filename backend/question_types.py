"""
Question Type Registry
======================
One class per question kind, registered by its persisted `type` string.
Everything that differs between kinds (validation, scoring, answer
extraction, editor fields, player sanitization, option shuffling and
answer statistics) lives here so the session and the AI pipeline never
branch on the kind themselves.
"""

from __future__ import annotations

import math
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union

from errors import UnknownQuestionTypeError
from models import (
    DIFFICULTIES,
    MULTIPLE_CHOICE,
    MULTIPLE_CORRECT,
    NUMERIC,
    ORDERING,
    TRUE_FALSE,
    Question,
)
from settings import MAX_QUESTION_TIME, MIN_QUESTION_TIME

NUMERIC_EPSILON = 1e-9

Correctness = Union[bool, float]


@dataclass
class ValidationResult:
    ok: bool
    errors: list[str] = field(default_factory=list)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _to_int(value: Any) -> Optional[int]:
    if _is_int(value):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _to_float(value: Any) -> Optional[float]:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            number = float(value.strip().replace(",", "."))
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _form_list(form: Mapping[str, Any], key: str) -> list[Any]:
    value = form.get(key)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class QuestionType(ABC):
    """Capability set for one question kind."""

    kind: str = ""
    default_time: int = 30
    min_options: int = 0
    max_options: int = 0
    supports_partial_credit = False
    supports_fifty_fifty = False

    # --- authoring ---

    def default_payload(self) -> dict[str, Any]:
        return {"question": "", "type": self.kind, "timeLimit": self.default_time,
                "difficulty": "medium"}

    def validate(self, q: Question) -> ValidationResult:
        errors: list[str] = []
        if not q.question or not q.question.strip():
            errors.append("Question text is required")
        if not MIN_QUESTION_TIME <= q.timeLimit <= MAX_QUESTION_TIME:
            errors.append(
                f"Time limit must be between {MIN_QUESTION_TIME} and {MAX_QUESTION_TIME} seconds"
            )
        if q.difficulty not in DIFFICULTIES:
            errors.append(f"Difficulty must be one of {', '.join(DIFFICULTIES)}")
        if self.max_options:
            if not self.min_options <= len(q.options) <= self.max_options:
                errors.append(
                    f"Needs between {self.min_options} and {self.max_options} options"
                )
            if any(not str(opt).strip() for opt in q.options):
                errors.append("Options cannot be empty")
        for index in q.optionFeedback:
            if q.options and not 0 <= index < len(q.options):
                errors.append(f"Feedback refers to missing option {index}")
        errors.extend(self._validate_payload(q))
        return ValidationResult(ok=not errors, errors=errors)

    def _validate_payload(self, q: Question) -> list[str]:
        return []

    def render_editor(self, q: Question) -> list[dict[str, Any]]:
        """Field descriptors for the authoring form."""
        return [
            {"name": "question", "input": "textarea", "value": q.question},
            {"name": "difficulty", "input": "select", "value": q.difficulty,
             "choices": list(DIFFICULTIES)},
            {"name": "timeLimit", "input": "number", "value": q.timeLimit,
             "min": MIN_QUESTION_TIME, "max": MAX_QUESTION_TIME},
            {"name": "explanation", "input": "textarea", "value": q.explanation or ""},
            *self._payload_fields(q),
        ]

    def _payload_fields(self, q: Question) -> list[dict[str, Any]]:
        return []

    def apply_edits(self, q: Question, form: Mapping[str, Any]) -> Question:
        """Return a copy of `q` with the editor form values applied."""
        update: dict[str, Any] = {}
        if "question" in form:
            update["question"] = str(form["question"]).strip()
        if "explanation" in form:
            update["explanation"] = str(form["explanation"]).strip() or None
        if form.get("difficulty"):
            update["difficulty"] = str(form["difficulty"]).lower()
        time_limit = _to_int(form.get("timeLimit"))
        if time_limit is not None:
            update["timeLimit"] = time_limit
        if "options" in form and self.max_options:
            update["options"] = [str(o).strip() for o in _form_list(form, "options")]
        update.update(self._payload_edits(q, form))
        return q.model_copy(update=update)

    def _payload_edits(self, q: Question, form: Mapping[str, Any]) -> dict[str, Any]:
        return {}

    # --- play ---

    @abstractmethod
    def correct_answer(self, q: Question) -> Any:
        ...

    @abstractmethod
    def is_well_formed(self, q: Question, submitted: Any) -> bool:
        ...

    def normalize_submission(self, q: Question, submitted: Any) -> Any:
        return submitted

    @abstractmethod
    def score_answer(self, submitted: Any, correct: Any, tolerance: float = 0) -> Correctness:
        ...

    @abstractmethod
    def extract_answer(self, form: Mapping[str, Any]) -> Any:
        """Pull the structured answer out of submitted play/authoring form values."""

    def sanitize(self, q: Question) -> dict[str, Any]:
        """Player-facing payload: everything needed to answer, nothing that gives it away."""
        payload: dict[str, Any] = {
            "question": q.question,
            "type": q.type,
            "options": list(q.options),
            "timeLimit": q.timeLimit,
            "difficulty": q.difficulty,
        }
        for key in ("image", "video", "animation"):
            value = getattr(q, key)
            if value:
                payload[key] = value
        return payload

    def shuffle(self, q: Question, rng: random.Random) -> Question:
        return q

    def tally_key(self, answer: Any) -> list[str]:
        return [str(answer)]

    def tally(self, q: Question, answers: Iterable[Any]) -> dict[str, int]:
        counts: dict[str, int] = {}
        for answer in answers:
            if answer is None:
                continue
            for key in self.tally_key(answer):
                counts[key] = counts.get(key, 0) + 1
        return counts


class _IndexedOptionsType(QuestionType):
    """Shared option handling for the two choice kinds."""

    min_options = 2
    max_options = 6

    def _remap(self, q: Question, rng: random.Random) -> tuple[list[str], dict[int, int]]:
        order = list(range(len(q.options)))
        rng.shuffle(order)
        options = [q.options[i] for i in order]
        new_index = {old: new for new, old in enumerate(order)}
        return options, new_index

    def _option_fields(self, q: Question, marker: str, checked: Iterable[int]) -> list[dict[str, Any]]:
        checked = set(checked)
        return [
            {"name": f"option-{i}", "input": "text", "value": opt, "index": i,
             "marker": marker, "checked": i in checked}
            for i, opt in enumerate(q.options)
        ]


class MultipleChoiceType(_IndexedOptionsType):
    kind = MULTIPLE_CHOICE
    default_time = 30
    supports_fifty_fifty = True

    def default_payload(self) -> dict[str, Any]:
        return {**super().default_payload(), "options": ["", "", "", ""], "correctAnswer": 0}

    def _validate_payload(self, q: Question) -> list[str]:
        if not _is_int(q.correctAnswer):
            return ["Correct answer must be an option index"]
        if not 0 <= q.correctAnswer < len(q.options):
            return [f"Correct answer index {q.correctAnswer} is out of range"]
        return []

    def correct_answer(self, q: Question) -> int:
        return q.correctAnswer

    def is_well_formed(self, q: Question, submitted: Any) -> bool:
        return _is_int(submitted) and 0 <= submitted < len(q.options)

    def score_answer(self, submitted: Any, correct: Any, tolerance: float = 0) -> bool:
        return _is_int(submitted) and submitted == correct

    def extract_answer(self, form: Mapping[str, Any]) -> Optional[int]:
        return _to_int(form.get("answer"))

    def _payload_fields(self, q: Question) -> list[dict[str, Any]]:
        return self._option_fields(q, "radio", [q.correctAnswer] if _is_int(q.correctAnswer) else [])

    def _payload_edits(self, q: Question, form: Mapping[str, Any]) -> dict[str, Any]:
        correct = _to_int(form.get("correctAnswer"))
        return {} if correct is None else {"correctAnswer": correct}

    def shuffle(self, q: Question, rng: random.Random) -> Question:
        options, new_index = self._remap(q, rng)
        return q.model_copy(update={
            "options": options,
            "correctAnswer": new_index[q.correctAnswer],
            "optionFeedback": {new_index[k]: v for k, v in q.optionFeedback.items()
                               if k in new_index},
        })


class MultipleCorrectType(_IndexedOptionsType):
    kind = MULTIPLE_CORRECT
    default_time = 35

    def default_payload(self) -> dict[str, Any]:
        return {**super().default_payload(), "options": ["", "", "", ""], "correctAnswers": [0]}

    def _validate_payload(self, q: Question) -> list[str]:
        if not q.correctAnswers:
            return ["At least one correct answer is required"]
        errors = [f"Correct answer index {i} is out of range"
                  for i in q.correctAnswers if not 0 <= i < len(q.options)]
        if len(set(q.correctAnswers)) != len(q.correctAnswers):
            errors.append("Correct answers contain duplicates")
        return errors

    def correct_answer(self, q: Question) -> list[int]:
        return sorted(q.correctAnswers)

    def is_well_formed(self, q: Question, submitted: Any) -> bool:
        return (
            isinstance(submitted, list)
            and all(_is_int(i) and 0 <= i < len(q.options) for i in submitted)
        )

    def normalize_submission(self, q: Question, submitted: Any) -> list[int]:
        return sorted(set(submitted))

    def score_answer(self, submitted: Any, correct: Any, tolerance: float = 0) -> bool:
        return isinstance(submitted, list) and set(submitted) == set(correct)

    def extract_answer(self, form: Mapping[str, Any]) -> list[int]:
        selected = [_to_int(v) for v in _form_list(form, "answers")]
        return sorted({i for i in selected if i is not None})

    def _payload_fields(self, q: Question) -> list[dict[str, Any]]:
        return self._option_fields(q, "checkbox", q.correctAnswers)

    def _payload_edits(self, q: Question, form: Mapping[str, Any]) -> dict[str, Any]:
        if "correctAnswers" not in form:
            return {}
        selected = [_to_int(v) for v in _form_list(form, "correctAnswers")]
        return {"correctAnswers": sorted({i for i in selected if i is not None})}

    def shuffle(self, q: Question, rng: random.Random) -> Question:
        options, new_index = self._remap(q, rng)
        return q.model_copy(update={
            "options": options,
            "correctAnswers": sorted(new_index[i] for i in q.correctAnswers),
            "optionFeedback": {new_index[k]: v for k, v in q.optionFeedback.items()
                               if k in new_index},
        })

    def tally_key(self, answer: Any) -> list[str]:
        return [str(i) for i in answer]


class TrueFalseType(QuestionType):
    kind = TRUE_FALSE
    default_time = 20

    def default_payload(self) -> dict[str, Any]:
        return {**super().default_payload(), "options": ["True", "False"], "correctAnswer": True}

    def _validate_payload(self, q: Question) -> list[str]:
        errors = []
        if not isinstance(q.correctAnswer, bool):
            errors.append("Correct answer must be true or false")
        if q.options and len(q.options) != 2:
            errors.append("True/false questions have exactly two options")
        return errors

    def correct_answer(self, q: Question) -> bool:
        return q.correctAnswer

    def is_well_formed(self, q: Question, submitted: Any) -> bool:
        return _to_bool(submitted) is not None

    def normalize_submission(self, q: Question, submitted: Any) -> bool:
        return _to_bool(submitted)

    def score_answer(self, submitted: Any, correct: Any, tolerance: float = 0) -> bool:
        value = _to_bool(submitted)
        return value is not None and value == correct

    def extract_answer(self, form: Mapping[str, Any]) -> Optional[bool]:
        return _to_bool(form.get("answer"))

    def _payload_fields(self, q: Question) -> list[dict[str, Any]]:
        return [{"name": "correctAnswer", "input": "radio", "value": q.correctAnswer,
                 "choices": [True, False]}]

    def _payload_edits(self, q: Question, form: Mapping[str, Any]) -> dict[str, Any]:
        value = _to_bool(form.get("correctAnswer"))
        return {} if value is None else {"correctAnswer": value}

    def sanitize(self, q: Question) -> dict[str, Any]:
        payload = super().sanitize(q)
        payload["options"] = list(q.options) or ["True", "False"]
        return payload

    def tally_key(self, answer: Any) -> list[str]:
        return ["true" if answer else "false"]


class NumericType(QuestionType):
    kind = NUMERIC
    default_time = 25

    def default_payload(self) -> dict[str, Any]:
        return {**super().default_payload(), "correctAnswer": 0, "tolerance": 0}

    def _validate_payload(self, q: Question) -> list[str]:
        errors = []
        if not _is_number(q.correctAnswer):
            errors.append("Correct answer must be a number")
        if not _is_number(q.tolerance) or q.tolerance < 0:
            errors.append("Tolerance must be a non-negative number")
        return errors

    def correct_answer(self, q: Question) -> float:
        return q.correctAnswer

    def is_well_formed(self, q: Question, submitted: Any) -> bool:
        return _to_float(submitted) is not None

    def normalize_submission(self, q: Question, submitted: Any) -> float:
        return _to_float(submitted)

    def score_answer(self, submitted: Any, correct: Any, tolerance: float = 0) -> bool:
        value = _to_float(submitted)
        if value is None or not _is_number(correct):
            return False
        if not tolerance:
            return value == correct
        return abs(value - correct) <= tolerance + NUMERIC_EPSILON

    def extract_answer(self, form: Mapping[str, Any]) -> Optional[float]:
        return _to_float(form.get("answer"))

    def _payload_fields(self, q: Question) -> list[dict[str, Any]]:
        return [
            {"name": "correctAnswer", "input": "number", "value": q.correctAnswer},
            {"name": "tolerance", "input": "number", "value": q.tolerance, "min": 0},
        ]

    def _payload_edits(self, q: Question, form: Mapping[str, Any]) -> dict[str, Any]:
        update: dict[str, Any] = {}
        answer = _to_float(form.get("correctAnswer"))
        if answer is not None:
            update["correctAnswer"] = int(answer) if answer.is_integer() else answer
        tolerance = _to_float(form.get("tolerance"))
        if tolerance is not None:
            update["tolerance"] = tolerance
        return update

    def sanitize(self, q: Question) -> dict[str, Any]:
        payload = super().sanitize(q)
        payload.pop("options", None)
        return payload

    def tally_key(self, answer: Any) -> list[str]:
        return [f"{answer:g}"]


class OrderingType(QuestionType):
    kind = ORDERING
    default_time = 40
    min_options = 2
    max_options = 8
    supports_partial_credit = True

    def default_payload(self) -> dict[str, Any]:
        return {**super().default_payload(), "options": ["", "", ""], "correctOrder": [0, 1, 2]}

    def _validate_payload(self, q: Question) -> list[str]:
        if sorted(q.correctOrder) != list(range(len(q.options))):
            return ["Correct order must be a permutation of the item indices"]
        return []

    def correct_answer(self, q: Question) -> list[int]:
        return list(q.correctOrder)

    def is_well_formed(self, q: Question, submitted: Any) -> bool:
        return isinstance(submitted, list) and all(_is_int(i) for i in submitted)

    def score_answer(self, submitted: Any, correct: Any, tolerance: float = 0) -> float:
        if not isinstance(submitted, list) or not correct or len(submitted) != len(correct):
            return 0.0
        placed = sum(1 for got, want in zip(submitted, correct) if got == want)
        return placed / len(correct)

    def extract_answer(self, form: Mapping[str, Any]) -> list[int]:
        if "order" in form:
            order = [_to_int(v) for v in _form_list(form, "order")]
            return [i for i in order if i is not None]
        return self._order_from_positions(_form_list(form, "positions"))

    @staticmethod
    def _order_from_positions(positions: list[Any]) -> list[int]:
        # positions[i] is the 1-based slot of item i
        ranked = [(_to_int(p), i) for i, p in enumerate(positions)]
        if any(p is None for p, _ in ranked):
            return []
        return [i for _, i in sorted(ranked)]

    def _payload_fields(self, q: Question) -> list[dict[str, Any]]:
        slot = {item: pos + 1 for pos, item in enumerate(q.correctOrder)}
        return [
            {"name": f"item-{i}", "input": "text", "value": item, "index": i,
             "position": slot.get(i)}
            for i, item in enumerate(q.options)
        ]

    def _payload_edits(self, q: Question, form: Mapping[str, Any]) -> dict[str, Any]:
        if "positions" in form:
            return {"correctOrder": self._order_from_positions(_form_list(form, "positions"))}
        if "correctOrder" in form:
            order = [_to_int(v) for v in _form_list(form, "correctOrder")]
            return {"correctOrder": [i for i in order if i is not None]}
        return {}

    def tally_key(self, answer: Any) -> list[str]:
        return ["-".join(str(i) for i in answer)]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_REGISTRY: dict[str, QuestionType] = {}


def register(qtype: QuestionType) -> QuestionType:
    _REGISTRY[qtype.kind] = qtype
    return qtype


for _qtype in (MultipleChoiceType(), MultipleCorrectType(), TrueFalseType(),
               NumericType(), OrderingType()):
    register(_qtype)

KINDS: tuple[str, ...] = tuple(_REGISTRY)


def get_type(kind: str) -> QuestionType:
    try:
        return _REGISTRY[kind]
    except KeyError:
        raise UnknownQuestionTypeError(kind) from None


def is_known(kind: str) -> bool:
    return kind in _REGISTRY


def default_payload(kind: str) -> dict[str, Any]:
    return get_type(kind).default_payload()


def validate(q: Question) -> ValidationResult:
    return get_type(q.type).validate(q)


def validate_questions(questions: Iterable[Question]) -> list[str]:
    """Registry errors for a whole quiz, each prefixed with its 1-based question number."""
    errors: list[str] = []
    for number, q in enumerate(questions, start=1):
        if not is_known(q.type):
            errors.append(f"Question {number}: Unknown question type: {q.type}")
            continue
        errors.extend(f"Question {number}: {e}" for e in validate(q).errors)
    return errors


def correct_answer(q: Question) -> Any:
    return get_type(q.type).correct_answer(q)


def score_answer(q: Question, submitted: Any) -> Correctness:
    return get_type(q.type).score_answer(submitted, correct_answer(q), q.tolerance)


def is_well_formed(q: Question, submitted: Any) -> bool:
    return get_type(q.type).is_well_formed(q, submitted)


def extract_answer(kind: str, form: Mapping[str, Any]) -> Any:
    return get_type(kind).extract_answer(form)


def render_editor(q: Question) -> list[dict[str, Any]]:
    return get_type(q.type).render_editor(q)


def apply_edits(q: Question, form: Mapping[str, Any]) -> Question:
    return get_type(q.type).apply_edits(q, form)


def sanitize_for_player(q: Question) -> dict[str, Any]:
    return get_type(q.type).sanitize(q)


def shuffle_options(q: Question, rng: random.Random) -> Question:
    return get_type(q.type).shuffle(q, rng)


def tally(q: Question, answers: Iterable[Any]) -> dict[str, int]:
    return get_type(q.type).tally(q, answers)


def correctness_fraction(result: Correctness) -> float:
    """Map a score_answer result onto [0, 1]."""
    if isinstance(result, bool):
        return 1.0 if result else 0.0
    return max(0.0, min(1.0, float(result)))
