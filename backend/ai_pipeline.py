"""AI question generation: prompt -> provider -> repair -> normalize -> preview."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

import question_types
from ai_providers import AIProvider
from content_analysis import analyze_content
from errors import (
    ErrorHandler,
    ErrorPolicy,
    ProviderTimeout,
    ResponseParseError,
    ValidationFailed,
    error_handler,
)
from json_repair import parse_questions
from logger import get_logger
from models import (
    DIFFICULTIES,
    MULTIPLE_CHOICE,
    MULTIPLE_CORRECT,
    NUMERIC,
    ORDERING,
    TRUE_FALSE,
    Question,
    Quiz,
)
from prompts import (
    build_excel_conversion_prompt,
    build_main_prompt,
    build_retry_prompt,
    build_single_question_prompt,
    retry_question_count,
)
from settings import MAX_GENERATION_ATTEMPTS, MAX_QUESTION_TIME, MIN_QUESTION_TIME

logger = get_logger("Quizix.ai")

TYPE_ALIASES = {
    "multiple-choice": MULTIPLE_CHOICE,
    "multiplechoice": MULTIPLE_CHOICE,
    "single-choice": MULTIPLE_CHOICE,
    "mcq": MULTIPLE_CHOICE,
    "choice": MULTIPLE_CHOICE,
    "multiple-correct": MULTIPLE_CORRECT,
    "multiple-answer": MULTIPLE_CORRECT,
    "multiple-answers": MULTIPLE_CORRECT,
    "multi-select": MULTIPLE_CORRECT,
    "checkbox": MULTIPLE_CORRECT,
    "true-false": TRUE_FALSE,
    "truefalse": TRUE_FALSE,
    "true/false": TRUE_FALSE,
    "boolean": TRUE_FALSE,
    "numeric": NUMERIC,
    "number": NUMERIC,
    "numerical": NUMERIC,
    "ordering": ORDERING,
    "order": ORDERING,
    "sequence": ORDERING,
}

GENERIC_DISTRACTORS = [
    "None of the above",
    "All of the above",
    "Not applicable",
    "Cannot be determined",
    "Not mentioned in the content",
    "More information needed",
]

BATCH_SIZES = {"ollama": 5, "huggingface": 5, "openai": 10, "claude": 10, "gemini": 10}

HEADER_WORDS = {
    "question": ("question", "pregunta"),
    "answer": ("answer", "respuesta", "option", "opción", "opcion"),
    "correct": ("correct", "correcto", "correcta"),
}

_LETTER = re.compile(r"^\s*\(?([A-Ha-h])[).:]?\s*$")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_kind(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    key = re.sub(r"[\s_]+", "-", value.strip().lower())
    return TYPE_ALIASES.get(key, key)


def _letter_index(value: Any, options: Sequence[Any]) -> Any:
    """'B' -> 1; option text -> its index; numeric strings -> int. Otherwise unchanged."""
    if isinstance(value, bool) or not isinstance(value, str):
        return value
    match = _LETTER.match(value)
    if match:
        return ord(match.group(1).upper()) - ord("A")
    text = value.strip()
    for i, option in enumerate(options):
        if str(option).strip().lower() == text.lower():
            return i
    if re.fullmatch(r"-?\d+", text):
        return int(text)
    return value


def _to_bool(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "t", "yes", "verdadero", "1"):
            return True
        if text in ("false", "f", "no", "falso", "0"):
            return False
    return value


def _to_number(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", ""))
        except ValueError:
            return value
    return value


def _pad_options(options: list[str]) -> list[str]:
    padded = list(options)
    while len(padded) < 4:
        distractor = next((d for d in GENERIC_DISTRACTORS if d not in padded),
                          f"Option {len(padded) + 1}")
        padded.append(distractor)
    return padded


def auto_fix_question(raw: Mapping[str, Any], *, provider: Optional[str] = None) -> dict[str, Any]:
    """Repair the usual model slips on one generated question dict."""
    fixed = dict(raw)
    kind = normalize_kind(fixed.get("type")) or MULTIPLE_CHOICE
    fixed["type"] = kind

    options = fixed.get("options")
    if options is None and kind == ORDERING and isinstance(fixed.get("items"), list):
        options = fixed.pop("items")
    if isinstance(options, list):
        options = [str(o) for o in options]
        fixed["options"] = options
    else:
        options = []
        fixed.pop("options", None)

    if kind == MULTIPLE_CHOICE:
        answer = fixed.get("correctAnswer", fixed.get("correctIndex"))
        fixed.pop("correctIndex", None)
        if isinstance(answer, list) and len(answer) == 1:
            answer = answer[0]
        fixed["correctAnswer"] = _letter_index(answer, options)
        if provider == "ollama" and 2 <= len(options) < 4:
            logger.debug(f"🔧 Padding options from {len(options)} to 4")
            fixed["options"] = _pad_options(options)
    elif kind == MULTIPLE_CORRECT:
        answers = fixed.get("correctAnswers", fixed.get("correctIndices"))
        if answers is None and "correctAnswer" in fixed:
            answers = fixed.pop("correctAnswer")
        fixed.pop("correctIndices", None)
        if not isinstance(answers, list):
            answers = [] if answers is None else [answers]
        fixed["correctAnswers"] = [_letter_index(a, options) for a in answers]
        fixed.pop("correctAnswer", None)
    elif kind == TRUE_FALSE:
        fixed["correctAnswer"] = _to_bool(fixed.get("correctAnswer"))
        if not options:
            fixed["options"] = ["True", "False"]
    elif kind == NUMERIC:
        fixed.pop("options", None)
        fixed["correctAnswer"] = _to_number(fixed.get("correctAnswer", fixed.get("numericAnswer")))
        fixed.pop("numericAnswer", None)
        tolerance = _to_number(fixed.get("tolerance"))
        fixed["tolerance"] = tolerance if isinstance(tolerance, (int, float)) else 0
    elif kind == ORDERING:
        order = fixed.get("correctOrder")
        if not isinstance(order, list) or not order:
            # Items given already in the right sequence
            fixed["correctOrder"] = list(range(len(options)))
        fixed.pop("correctAnswer", None)

    difficulty = str(fixed.get("difficulty") or "medium").strip().lower()
    fixed["difficulty"] = difficulty if difficulty in DIFFICULTIES else "medium"

    default_time = (question_types.get_type(kind).default_time
                    if question_types.is_known(kind) else 30)
    try:
        time_limit = int(round(float(fixed.get("timeLimit") or default_time)))
    except (TypeError, ValueError):
        time_limit = default_time
    fixed["timeLimit"] = max(MIN_QUESTION_TIME, min(MAX_QUESTION_TIME, time_limit))

    if isinstance(fixed.get("question"), str):
        fixed["question"] = fixed["question"].strip()
    return fixed


def normalize_questions(raw_items: Sequence[Any], *, requested: Optional[int] = None,
                        provider: Optional[str] = None,
                        expected_kind: Optional[str] = None
                        ) -> tuple[list[Question], list[dict[str, Any]]]:
    """Auto-fix and validate generated items. Returns (kept, dropped-with-reasons)."""
    items = list(raw_items)
    if requested is not None and len(items) > requested:
        logger.debug(f"Truncating {len(items)} generated questions to {requested}")
        items = items[:requested]

    kept: list[Question] = []
    dropped: list[dict[str, Any]] = []
    for index, raw in enumerate(items):
        if not isinstance(raw, Mapping):
            dropped.append({"index": index, "errors": ["Not a question object"]})
            continue
        fixed = auto_fix_question(raw, provider=provider)
        if expected_kind and fixed["type"] != expected_kind:
            fixed["type"] = expected_kind
            fixed = auto_fix_question(fixed, provider=provider)
        if not question_types.is_known(fixed["type"]):
            dropped.append({"index": index, "errors": [f"Unknown question type: {fixed['type']}"]})
            continue
        try:
            question = Question.model_validate(fixed)
        except ValidationError as e:
            dropped.append({"index": index, "errors": [err["msg"] for err in e.errors()]})
            continue
        result = question_types.validate(question)
        if not result.ok:
            dropped.append({"index": index, "errors": result.errors})
            continue
        kept.append(question)

    for entry in dropped:
        logger.warning(f"⚠️ Dropped generated question {entry['index'] + 1}: "
                       f"{'; '.join(entry['errors'])}")
    return kept, dropped


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------

@dataclass
class PreviewItem:
    question: Question
    selected: bool = True

    def to_dict(self, index: int) -> dict[str, Any]:
        return {
            "index": index,
            "selected": self.selected,
            "question": self.question.to_document(),
            "editor": question_types.render_editor(self.question),
        }


class QuestionPreview:
    """Generated questions awaiting review before they join the quiz."""

    def __init__(self, questions: Sequence[Question] = ()):
        self.items = [PreviewItem(q) for q in questions]

    @classmethod
    def from_documents(cls, documents: Sequence[Mapping[str, Any]],
                       selected: Optional[Sequence[bool]] = None) -> "QuestionPreview":
        preview = cls([Question.model_validate(dict(d)) for d in documents])
        for item, flag in zip(preview.items, selected or []):
            item.selected = bool(flag)
        return preview

    def _item(self, index: int) -> PreviewItem:
        if not 0 <= index < len(self.items):
            raise IndexError(f"No preview item {index}")
        return self.items[index]

    def select(self, index: int, selected: bool = True) -> None:
        self._item(index).selected = selected

    def select_all(self) -> None:
        for item in self.items:
            item.selected = True

    def deselect_all(self) -> None:
        for item in self.items:
            item.selected = False

    def edit(self, index: int, form: Mapping[str, Any]) -> Question:
        """Apply editor form values; the item is untouched when the result is invalid."""
        item = self._item(index)
        edited = question_types.apply_edits(item.question, form)
        result = question_types.validate(edited)
        if not result.ok:
            raise ValidationFailed(result.errors, "Edited question is invalid")
        item.question = edited
        return edited

    def replace(self, index: int, question: Question) -> None:
        item = self._item(index)
        item.question = question
        item.selected = True

    @property
    def selected_questions(self) -> list[Question]:
        return [item.question for item in self.items if item.selected]

    def summary(self) -> dict[str, int]:
        return {"total": len(self.items), "selected": len(self.selected_questions)}

    def confirm(self, quiz: Quiz) -> Quiz:
        """Return `quiz` with the selected questions appended."""
        chosen = self.selected_questions
        logger.info(f"✅ Adding {len(chosen)} generated question(s) to '{quiz.title}'")
        return quiz.model_copy(update={"questions": [*quiz.questions, *chosen]})

    def to_dict(self) -> dict[str, Any]:
        return {"items": [item.to_dict(i) for i, item in enumerate(self.items)],
                **self.summary()}


# ---------------------------------------------------------------------------
# Spreadsheet rows
# ---------------------------------------------------------------------------

@dataclass
class BatchInfo:
    totalQuestions: int
    batchSize: int
    totalBatches: int
    currentBatch: int = 1

    @classmethod
    def plan(cls, total: int, batch_size: int) -> "BatchInfo":
        return cls(totalQuestions=total, batchSize=batch_size,
                   totalBatches=max(1, math.ceil(total / batch_size)))

    def bounds(self, batch: int) -> tuple[int, int]:
        start = (batch - 1) * self.batchSize
        return start, min(start + self.batchSize, self.totalQuestions)


@dataclass
class SheetFormat:
    has_headers: bool
    question_col: int = 0
    answer_cols: list[int] = field(default_factory=list)
    correct_col: int = -1


def batch_size_for(provider: str) -> int:
    return BATCH_SIZES.get((provider or "").lower(), 5)


def _cell(row: Sequence[Any], index: int) -> str:
    if index < 0 or index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


def data_rows_of(rows: Sequence[Sequence[Any]], fmt: SheetFormat) -> list[Sequence[Any]]:
    """Rows below the header with blank rows removed; batch bounds index into this list."""
    body = rows[1:] if fmt.has_headers else rows
    return [row for row in body if row and any(_cell(row, i) for i in range(len(row)))]


def _header_kind(cell: Any) -> Optional[str]:
    if not isinstance(cell, str):
        return None
    text = cell.lower()
    for kind, words in HEADER_WORDS.items():
        if any(w in text for w in words):
            return kind
    return None


def detect_sheet_format(rows: Sequence[Sequence[Any]]) -> SheetFormat:
    """Find the question, answer and correct-answer columns."""
    if len(rows) < 2:
        return SheetFormat(has_headers=False, question_col=0, answer_cols=[1, 2, 3, 4])

    header, first = rows[0], rows[1]
    has_headers = any(_header_kind(cell) for cell in header)
    fmt = SheetFormat(has_headers=has_headers)

    if has_headers:
        for index, cell in enumerate(header):
            kind = _header_kind(cell)
            if kind == "question":
                fmt.question_col = index
            elif kind == "correct":
                fmt.correct_col = index
            elif kind == "answer":
                fmt.answer_cols.append(index)
        if not fmt.answer_cols:
            fmt.answer_cols = [i for i in range(fmt.question_col + 1,
                                                min(len(header), fmt.question_col + 5))
                               if _cell(header, i) and i != fmt.correct_col]
    else:
        lengths = [len(_cell(first, i)) for i in range(len(first))]
        fmt.question_col = lengths.index(max(lengths)) if lengths else 0
        fmt.answer_cols = [i for i in range(len(first))
                           if i != fmt.question_col and _cell(first, i)]

    if not fmt.answer_cols:
        fmt.answer_cols = [c for c in (1, 2, 3, 4) if c < max(len(header), 5)]
    logger.debug(f"Sheet format detected: {fmt}")
    return fmt


def _correct_index(value: str, options: list[str]) -> int:
    if not value:
        return 0
    match = _LETTER.match(value)
    if match:
        return ord(match.group(1).upper()) - ord("A")
    if value.isdigit():
        return max(0, int(value) - 1)
    lowered = value.lower()
    for i, option in enumerate(options):
        if option.lower() == lowered:
            return i
    return 0


def rows_to_structured_text(rows: Sequence[Sequence[Any]], filename: str, *,
                            batch_start: int = 0, batch_size: Optional[int] = None,
                            batch: Optional[BatchInfo] = None,
                            fmt: Optional[SheetFormat] = None) -> str:
    """Render spreadsheet rows as labeled text the conversion prompt can copy from."""
    fmt = fmt or detect_sheet_format(rows)
    header = rows[0] if fmt.has_headers and rows else []
    data_rows = data_rows_of(rows, fmt)
    if batch_size is not None:
        data_rows = data_rows[batch_start:batch_start + batch_size]

    lines = [f"# Quiz Questions from Excel File: {filename}", "",
             "IMPORTANT: These are existing questions from an Excel file. "
             "Convert them exactly as written.", ""]
    if batch is not None and batch_size is not None:
        end = min(batch_start + batch_size, batch.totalQuestions)
        lines += [f"BATCH PROCESSING: Questions {batch_start + 1} to {end} "
                  f"(Batch {batch.currentBatch} of {batch.totalBatches})", ""]
    if fmt.has_headers:
        def label(col: int) -> str:
            return _cell(header, col) or f"Column {chr(65 + col)}"
        lines += ["Detected Format:",
                  f"- Question Column: {label(fmt.question_col)}",
                  f"- Answer Columns: {', '.join(label(c) for c in fmt.answer_cols)}", ""]
    lines += ["EXCEL QUESTIONS TO CONVERT:", ""]

    number = batch_start + 1
    for row in data_rows:
        options = [_cell(row, c) for c in fmt.answer_cols if _cell(row, c)]
        lines.append(f"Question {number}:")
        lines.append(f"  Question: {_cell(row, fmt.question_col)}")
        for i, option in enumerate(options, start=1):
            lines.append(f"  Option {i}: {option}")
        if options:
            lines.append(f"  CORRECT_ANSWER_INDEX: "
                         f"{_correct_index(_cell(row, fmt.correct_col), options)}")
        lines.append("")
        number += 1

    lines += ["", "INSTRUCTIONS FOR AI:",
              "- Convert these existing questions to JSON format",
              "- Copy ALL text EXACTLY as written - do not change any words",
              "- Use CORRECT_ANSWER_INDEX number provided for each question",
              "- Do NOT translate or modify the language"]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class GenerationRequest(BaseModel):
    content: str = ""
    provider: str = "ollama"
    model: Optional[str] = None
    apiKey: Optional[str] = None
    questionCount: int = Field(default=5, ge=1, le=50)
    difficulty: str = "medium"
    questionTypes: list[str] = Field(default_factory=lambda: [MULTIPLE_CHOICE])
    cognitiveLevel: Optional[str] = None
    language: str = "en"

    def kinds(self) -> list[str]:
        kinds = [k for k in (normalize_kind(t) for t in self.questionTypes)
                 if k and question_types.is_known(k)]
        return kinds or [MULTIPLE_CHOICE]


@dataclass
class GenerationResult:
    questions: list[Question]
    dropped: list[dict[str, Any]] = field(default_factory=list)
    attempts: int = 1
    batch: Optional[BatchInfo] = None
    failed_batches: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "questions": [q.to_document() for q in self.questions],
            "preview": QuestionPreview(self.questions).to_dict(),
            "attempts": self.attempts,
            "dropped": self.dropped,
        }
        if self.batch is not None:
            data["batch"] = vars(self.batch)
            data["failedBatches"] = self.failed_batches
        return data


ProviderFactory = Callable[[GenerationRequest], AIProvider]


class QuestionPipeline:
    def __init__(self, provider_factory: ProviderFactory, *,
                 handler: ErrorHandler = error_handler,
                 max_attempts: int = MAX_GENERATION_ATTEMPTS):
        self.provider_factory = provider_factory
        self.handler = handler
        self.max_attempts = max_attempts

    async def _call(self, provider: AIProvider, prompt: str, count: int,
                    context: dict[str, Any]) -> str:
        policy = ErrorPolicy(error_type="ai", retryable=False, max_retries=0,
                             context={"provider": provider.name, **context})
        return await self.handler.wrap_async(
            lambda: provider.generate(prompt, question_count=count), policy
        )

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Full generation with up to `max_attempts` tries, switching to the retry prompt."""
        if not request.content.strip():
            raise ValidationFailed(["Content is required"], "Content is required")
        provider = self.provider_factory(request)
        provider_key = request.provider.lower()
        kinds = request.kinds()
        info = analyze_content(request.content)
        logger.info(f"🤖 Generating {request.questionCount} question(s) with {provider.name} "
                    f"(kinds={kinds}, content={info.type})")

        last_error: Optional[Exception] = None
        dropped: list[dict[str, Any]] = []
        for attempt in range(1, self.max_attempts + 1):
            if attempt == 1:
                count = request.questionCount
                prompt = build_main_prompt(content=request.content, question_count=count,
                                           difficulty=request.difficulty, kinds=kinds, info=info,
                                           cognitive_level=request.cognitiveLevel,
                                           language=request.language)
            else:
                count = retry_question_count(request.questionCount, attempt)
                prompt = build_retry_prompt(content=request.content,
                                            question_count=request.questionCount,
                                            difficulty=request.difficulty, kinds=kinds,
                                            attempt_number=attempt, language=request.language)
            try:
                text = await self._call(provider, prompt, count, {"attempt": attempt})
                raw = parse_questions(text)
            except (ResponseParseError, ProviderTimeout) as e:
                last_error = e
                logger.warning(f"⚠️ Attempt {attempt}/{self.max_attempts} failed: {e}")
                continue

            questions, dropped = normalize_questions(raw, requested=request.questionCount,
                                                     provider=provider_key)
            if questions:
                logger.info(f"✅ Generated {len(questions)} valid question(s) "
                            f"on attempt {attempt} ({len(dropped)} dropped)")
                return GenerationResult(questions=questions, dropped=dropped, attempts=attempt)
            last_error = ResponseParseError("No valid questions in AI response",
                                            code="AI_GENERATION_FAILED")
            logger.warning(f"⚠️ Attempt {attempt}/{self.max_attempts} produced no valid questions")

        assert last_error is not None
        raise last_error

    async def regenerate(self, request: GenerationRequest, kind: str) -> Question:
        """One fresh question of `kind` from the same content."""
        kind = normalize_kind(kind) or MULTIPLE_CHOICE
        question_types.get_type(kind)
        provider = self.provider_factory(request)
        prompt = build_single_question_prompt(kind, request.content, request.difficulty)
        text = await self._call(provider, prompt, 1, {"operation": "regenerate", "kind": kind})
        questions, dropped = normalize_questions(parse_questions(text), requested=1,
                                                 provider=request.provider.lower(),
                                                 expected_kind=kind)
        if not questions:
            reasons = "; ".join(e for d in dropped for e in d["errors"])
            raise ResponseParseError(f"Regenerated question is invalid: {reasons or 'empty'}",
                                     code="AI_GENERATION_FAILED")
        return questions[0]

    async def convert_rows(self, rows: Sequence[Sequence[Any]], filename: str,
                           request: GenerationRequest) -> GenerationResult:
        """Convert spreadsheet rows in provider-sized batches; failed batches are skipped."""
        fmt = detect_sheet_format(rows)
        data_rows = data_rows_of(rows, fmt)
        if not data_rows:
            raise ValidationFailed(["Spreadsheet must contain at least one data row"],
                                   "Spreadsheet is empty")
        provider = self.provider_factory(request)
        provider_key = request.provider.lower()
        batch = BatchInfo.plan(len(data_rows), batch_size_for(provider_key))
        if batch.totalBatches > 1:
            logger.info(f"📊 {batch.totalQuestions} rows: processing in {batch.totalBatches} "
                        f"batches of {batch.batchSize} with {provider.name}")

        questions: list[Question] = []
        dropped: list[dict[str, Any]] = []
        failed: list[int] = []
        for number in range(1, batch.totalBatches + 1):
            batch.currentBatch = number
            start, end = batch.bounds(number)
            text = rows_to_structured_text(rows, filename, batch_start=start,
                                           batch_size=batch.batchSize, batch=batch, fmt=fmt)
            prompt = build_excel_conversion_prompt(text)
            try:
                response = await self._call(provider, prompt, end - start,
                                            {"operation": "batch-generation", "batch": number})
                raw = parse_questions(response)
            except (ResponseParseError, ProviderTimeout) as e:
                failed.append(number)
                logger.warning(f"⚠️ Batch {number} failed and was skipped: {e}")
                continue
            kept, lost = normalize_questions(raw, requested=end - start, provider=provider_key)
            questions.extend(kept)
            dropped.extend({**d, "batch": number} for d in lost)

        if not questions:
            raise ResponseParseError("No questions could be converted",
                                     code="AI_GENERATION_FAILED")
        logger.info(f"✅ Converted {len(questions)} of {batch.totalQuestions} rows")
        return GenerationResult(questions=questions, dropped=dropped,
                                attempts=batch.totalBatches, batch=batch, failed_batches=failed)
