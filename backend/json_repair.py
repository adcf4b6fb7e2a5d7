"""Tolerant extraction of a question array from free-form model output.

`repair_json` never raises: it returns a RepairResult carrying either the
parsed value or the reason nothing usable was found. Valid JSON arrays come
back unchanged.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from errors import ResponseParseError
from logger import get_logger

logger = get_logger("Quizix.json_repair")

PREAMBLE_PATTERNS = [
    re.compile(r"^Here'?s?\s+(?:the|a)\s+JSON.*?:\s*", re.IGNORECASE),
    re.compile(r"^(?:Here\s+is|This\s+is)\s+.*?:\s*", re.IGNORECASE),
    re.compile(r"^(?:Based\s+on|From)\s+.*?:\s*", re.IGNORECASE),
    re.compile(r"^(?:The\s+)?(?:JSON|Array)\s+(?:response|output)\s*:?\s*", re.IGNORECASE),
    re.compile(r"^(?:Generated\s+)?(?:Questions?|Quiz)\s*:\s*", re.IGNORECASE),
]

COMMENT_PATTERNS = [
    re.compile(r"^\s*//[^\n]*\n?", re.MULTILINE),
    re.compile(r"^\s*/\*.*?\*/\n?", re.MULTILINE | re.DOTALL),
    re.compile(r"^\s*#[^\n]*\n?", re.MULTILINE),
    re.compile(r"^\s*<!--.*?-->\n?", re.MULTILINE | re.DOTALL),
]

CODE_ONLY = re.compile(
    r"^(from\s+\w+\s+import|import\s+\w+|def\s+\w+|class\s+\w+|function\s+\w+|var\s+\w+"
    r"|const\s+\w+|let\s+\w+)",
    re.MULTILINE,
)
CODE_ONLY_MESSAGE = ("Code models are designed for code generation, not quiz creation. "
                     "Please use a general model instead.")

FENCED_BLOCK = re.compile(r"```[A-Za-z]*[ \t]*\n?(.*?)```", re.DOTALL)
STRAY_FENCE = re.compile(r"^\s*```[A-Za-z]*\s*$", re.MULTILINE)

# A double-quoted JSON string, matched first so fixes leave string contents alone
_STRING = r'"(?:\\.|[^"\\])*"'
UNQUOTED_KEY = re.compile(_STRING + r"|([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
TRAILING_COMMA = re.compile(_STRING + r"|,(\s*[}\]])")
SINGLE_QUOTE_VALUES = re.compile(r":\s*'[^']*'|,\s*'[^']*'|\[\s*'[^']*'")
APOSTROPHE_IN_STRING = re.compile(r'"[^"]*\'[^"]*"')
FLAT_OBJECT = re.compile(r"\{[^{}]*\}")

MANUAL_OBJECT = re.compile(
    r'\{.*?"question"\s*:\s*"[^"]*?".*?"type"\s*:\s*"[^"]*?".*?\}', re.DOTALL
)
TEXT_QUESTION = re.compile(
    r"(?:question\s*\d*|q\d+)\s*[.:)]?\s*(.+?)\s*(?:options?|choices?)\s*:?\s*(.+?)\s*"
    r"(?:answer|correct)\s*:?\s*(.+?)\s*(?=(?:question\s*\d*|q\d+)\s*[.:)]|$)",
    re.IGNORECASE | re.DOTALL,
)
TEXT_OPTION = re.compile(r"(?:^|\s)([A-Da-d])[.)]\s*(.+?)(?=\s+[A-Da-d][.)]\s|$)", re.DOTALL)
PLACEHOLDER_OPTIONS = ["Option A", "Option B", "Option C", "Option D"]


@dataclass
class RepairResult:
    ok: bool
    value: Any = None
    strategy: str = ""
    error: Optional[str] = None
    steps: list[str] = field(default_factory=list)


def _as_question_list(parsed: Any) -> Optional[list]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        if isinstance(parsed.get("questions"), list):
            return parsed["questions"]
        return [parsed]
    return None


def _try_parse(text: str) -> Optional[list]:
    try:
        return _as_question_list(json.loads(text))
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def strip_fences(text: str) -> str:
    """Prefer the first fenced block that holds JSON; drop unmatched fence lines."""
    for match in FENCED_BLOCK.finditer(text):
        body = match.group(1).strip()
        if "[" in body or "{" in body:
            return body
    return STRAY_FENCE.sub("", text).strip()


def strip_preamble(text: str) -> str:
    text = text.strip()
    for pattern in PREAMBLE_PATTERNS:
        text = pattern.sub("", text, count=1).strip()
    return text


def strip_comments(text: str) -> str:
    for pattern in COMMENT_PATTERNS:
        text = pattern.sub("", text)
    return text.strip()


def extract_first_array(text: str) -> Optional[str]:
    """Slice out the first top-level array; on truncation return everything from `[`."""
    start = text.find("[")
    if start == -1:
        first = text.find("{")
        if first == -1:
            return None
        last = text.rfind("}")
        body = text[first:last + 1] if last > first else text[first:]
        return f"[{body}]"

    depth = 0
    quote: Optional[str] = None
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return text[start:]


def _uses_single_quote_delimiters(text: str) -> bool:
    return bool(SINGLE_QUOTE_VALUES.search(text)) and not APOSTROPHE_IN_STRING.search(text)


def _convert_single_quotes(text: str) -> str:
    text = re.sub(r":\s*'", ': "', text)
    text = re.sub(r"'\s*,", '",', text)
    text = re.sub(r"'\s*}", '"}', text)
    text = re.sub(r"'\s*]", '"]', text)
    text = re.sub(r"\[\s*'", '["', text)
    text = re.sub(r",\s*'", ',"', text)
    text = re.sub(r"\{\s*'", '{"', text)
    text = re.sub(r"'\s*:", '":', text)
    return text


def _quote_keys(text: str) -> str:
    def repl(m: re.Match) -> str:
        if m.group(1) is None:
            return m.group(0)
        return f'{m.group(1)}"{m.group(2)}":'
    return UNQUOTED_KEY.sub(repl, text)


def _drop_trailing_commas(text: str) -> str:
    def repl(m: re.Match) -> str:
        return m.group(0) if m.group(1) is None else m.group(1)
    return TRAILING_COMMA.sub(repl, text)


def _close_truncated(text: str) -> Optional[str]:
    """Cut after the last completed object and close whatever is still open."""
    stack: list[str] = []
    in_string = False
    escaped = False
    cut: Optional[tuple[int, str]] = None
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "[{":
            stack.append("]" if ch == "[" else "}")
        elif ch in "]}" and stack:
            stack.pop()
            if ch == "}":
                cut = (i, "".join(reversed(stack)))
    if not stack and not in_string:
        return text
    if cut is None:
        return None
    index, closers = cut
    return text[:index + 1] + closers


def _is_truncated(text: str) -> bool:
    stripped = text.rstrip()
    if "[" not in stripped or stripped.endswith("]"):
        return False
    return (stripped.count("[") > stripped.count("]")
            or stripped.count("{") > stripped.count("}"))


def fix_common_json_issues(text: str) -> str:
    fixed = text
    if _uses_single_quote_delimiters(fixed):
        fixed = _convert_single_quotes(fixed)
        logger.debug("Converted single-quote delimiters")
    fixed = _quote_keys(fixed)
    fixed = _drop_trailing_commas(fixed)

    if _is_truncated(fixed):
        complete = [obj for obj in FLAT_OBJECT.findall(fixed)
                    if '"question"' in obj and '"type"' in obj]
        if complete:
            logger.debug(f"Recovered {len(complete)} complete objects from truncated JSON")
            fixed = "[" + ",".join(complete) + "]"
        else:
            closed = _close_truncated(fixed)
            if closed is not None:
                logger.debug("Closed unbalanced braces in truncated JSON")
                fixed = _drop_trailing_commas(closed)
    return fixed


def _parse_text_options(block: str) -> list[str]:
    return [m.group(2).strip() for m in TEXT_OPTION.finditer(block.strip())]


def extract_questions_manually(text: str) -> list[dict[str, Any]]:
    """Last-resort extraction: object-shaped substrings first, then a plain-text layout."""
    questions: list[dict[str, Any]] = []
    for raw in MANUAL_OBJECT.findall(text):
        parsed = _try_parse(fix_common_json_issues(raw))
        if not parsed:
            continue
        obj = parsed[0]
        if isinstance(obj, dict) and obj.get("question") and obj.get("type"):
            questions.append(obj)
    if questions:
        return questions

    for match in TEXT_QUESTION.finditer(text):
        prompt, options_text, answer_text = (g.strip() for g in match.groups())
        options = _parse_text_options(options_text)
        letter = re.search(r"[A-D]", answer_text, re.IGNORECASE)
        questions.append({
            "question": prompt,
            "type": "multiple-choice",
            "options": options if len(options) >= 2 else list(PLACEHOLDER_OPTIONS),
            "correctAnswer": ord(letter.group(0).upper()) - ord("A") if letter else 0,
            "difficulty": "medium",
        })
    return questions


def repair_json(text: Any) -> RepairResult:
    if not isinstance(text, str) or not text.strip():
        return RepairResult(ok=False, error="Empty response")

    direct = _try_parse(text.strip())
    if direct is not None:
        return RepairResult(ok=True, value=direct, strategy="direct")

    steps: list[str] = []
    clean = strip_fences(text.strip())
    clean = strip_preamble(clean)
    clean = strip_comments(clean)

    if CODE_ONLY.search(clean) and "[" not in clean and "{" not in clean:
        return RepairResult(ok=False, error=CODE_ONLY_MESSAGE, steps=steps)

    candidate = extract_first_array(clean)
    if candidate is not None:
        parsed = _try_parse(candidate)
        if parsed is not None:
            return RepairResult(ok=True, value=parsed, strategy="extracted", steps=["extract"])
        steps.append("extract")
        fixed = fix_common_json_issues(candidate)
        steps.append("fix")
        parsed = _try_parse(fixed)
        if parsed is not None:
            return RepairResult(ok=True, value=parsed, strategy="repaired", steps=steps)

    manual = extract_questions_manually(text)
    steps.append("manual")
    if manual:
        return RepairResult(ok=True, value=manual, strategy="manual", steps=steps)

    return RepairResult(ok=False, error="Could not extract questions from AI response",
                        steps=steps)


def parse_questions(text: str, limit: Optional[int] = None) -> list[Any]:
    """repair_json for callers that want an exception on failure."""
    result = repair_json(text)
    if not result.ok:
        preview = (text or "")[:100]
        logger.warning(f"⚠️ AI response unusable ({result.error}): {preview!r}")
        raise ResponseParseError(f"Invalid JSON response from AI provider: {result.error}",
                                 code="AI_GENERATION_FAILED")
    questions = list(result.value)
    if result.strategy != "direct":
        logger.info(f"🔧 Repaired AI response via {result.strategy}: {len(questions)} item(s)")
    if limit is not None and len(questions) > limit:
        logger.debug(f"Truncating {len(questions)} questions to {limit}")
        questions = questions[:limit]
    return questions
