"""Prompt builders for AI question generation."""

from __future__ import annotations

import math
import random
import time
from typing import Iterable, Optional

from content_analysis import ContentAnalysis
from models import MULTIPLE_CHOICE, MULTIPLE_CORRECT, NUMERIC, ORDERING, TRUE_FALSE

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "pl": "Polish",
    "ja": "Japanese",
    "zh": "Chinese",
}

RETRY_CONTENT_CHARS = 2000

TYPE_EXAMPLES = {
    MULTIPLE_CHOICE: '{"question": "Question text?", "type": "multiple-choice", "options": ["A", "B", "C", "D"], "correctAnswer": 0, "timeLimit": 30, "explanation": "Why A is correct", "difficulty": "medium"}',
    TRUE_FALSE: '{"question": "Statement to verify.", "type": "true-false", "options": ["True", "False"], "correctAnswer": "true", "timeLimit": 20, "explanation": "Why true", "difficulty": "easy"}',
    MULTIPLE_CORRECT: '{"question": "Select all that apply:", "type": "multiple-correct", "options": ["A", "B", "C", "D"], "correctAnswers": [0, 2], "timeLimit": 35, "explanation": "A and C are correct", "difficulty": "medium"}',
    NUMERIC: '{"question": "Calculate the value:", "type": "numeric", "correctAnswer": 42, "tolerance": 0, "timeLimit": 25, "explanation": "The answer is 42", "difficulty": "medium"}',
    ORDERING: '{"question": "Arrange in order:", "type": "ordering", "options": ["First", "Second", "Third"], "correctOrder": [0, 1, 2], "timeLimit": 40, "explanation": "Correct sequence", "difficulty": "medium"}',
}

MINIMAL_TYPE_EXAMPLES = {
    MULTIPLE_CHOICE: '{"question":"Q?","type":"multiple-choice","options":["A","B","C","D"],"correctAnswer":0,"timeLimit":30,"difficulty":"medium"}',
    TRUE_FALSE: '{"question":"Statement.","type":"true-false","options":["True","False"],"correctAnswer":"true","timeLimit":20,"difficulty":"easy"}',
    MULTIPLE_CORRECT: '{"question":"Select all.","type":"multiple-correct","options":["A","B","C","D"],"correctAnswers":[0,2],"timeLimit":35,"difficulty":"medium"}',
    NUMERIC: '{"question":"Calculate.","type":"numeric","correctAnswer":42,"tolerance":0,"timeLimit":25,"difficulty":"medium"}',
    ORDERING: '{"question":"Order these.","type":"ordering","options":["B","A","C"],"correctOrder":[1,0,2],"timeLimit":40,"difficulty":"medium"}',
}

BLOOM_DESCRIPTIONS = {
    "remember": {
        "verbs": ["define", "list", "name", "recall", "identify", "recognize", "state"],
        "description": "Focus on RECALL and RECOGNITION of facts",
        "example": "What is the capital of France?",
    },
    "understand": {
        "verbs": ["explain", "describe", "summarize", "interpret", "classify", "compare"],
        "description": "Focus on EXPLAINING and INTERPRETING concepts",
        "example": "Why does water boil at 100°C at sea level?",
    },
    "apply": {
        "verbs": ["apply", "demonstrate", "solve", "use", "implement", "execute"],
        "description": "Focus on USING knowledge in new situations",
        "example": "Calculate the area of a triangle with base 5 and height 8.",
    },
    "analyze": {
        "verbs": ["analyze", "compare", "contrast", "differentiate", "examine", "investigate"],
        "description": "Focus on BREAKING DOWN information and finding relationships",
        "example": "Compare and contrast mitosis and meiosis.",
    },
    "evaluate": {
        "verbs": ["evaluate", "judge", "critique", "justify", "argue", "defend"],
        "description": "Focus on MAKING JUDGMENTS based on criteria",
        "example": "Which solution is most effective for reducing carbon emissions and why?",
    },
    "create": {
        "verbs": ["create", "design", "construct", "develop", "formulate", "propose"],
        "description": "Focus on CREATING new ideas or products",
        "example": "Design an experiment to test plant growth under different light conditions.",
    },
}

TYPE_HINTS = {
    MULTIPLE_CHOICE: "Some questions should be multiple choice (4 options, one correct)",
    TRUE_FALSE: "Some questions should be true/false (single factual statements)",
    MULTIPLE_CORRECT: 'Some questions should allow multiple correct answers (use "correctAnswers" array)',
    NUMERIC: "Some questions should have numeric answers",
    ORDERING: 'Some questions should ask to arrange items in correct order (use "correctOrder" array with indices)',
}


def language_name(code: Optional[str]) -> str:
    return LANGUAGE_NAMES.get((code or "en").lower()[:2], "English")


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def truncate_at_word_boundary(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    space = cut.rfind(" ")
    # Keep the hard cut when the last word boundary is too far back
    return cut[:space] if space > limit * 0.8 else cut


def build_single_question_prompt(kind: str, content: str, difficulty: str) -> str:
    example = TYPE_EXAMPLES.get(kind, TYPE_EXAMPLES[MULTIPLE_CHOICE])
    return f"""Generate exactly ONE {kind} question about this content. Difficulty: {difficulty}.

CONTENT:
{content[:RETRY_CONTENT_CHARS]}

OUTPUT FORMAT - Return ONLY valid JSON (no markdown, no explanation):
{example}

RULES:
1. Output ONLY the JSON object - start with {{ and end with }}
2. Base the question on the content provided
3. Include all required fields: question, type, options (if applicable), correctAnswer/correctAnswers, timeLimit, explanation, difficulty"""


def build_bloom_instructions(cognitive_level: Optional[str]) -> str:
    if cognitive_level == "mixed":
        return """
COGNITIVE LEVELS (Bloom's Taxonomy):
- Mix questions across different cognitive levels for variety
- Include some recall questions (Remember)
- Include some understanding questions (Understand)
- Include some application questions (Apply)
"""
    level = BLOOM_DESCRIPTIONS.get(cognitive_level or "")
    if not level:
        return ""
    return f"""
COGNITIVE LEVEL (Bloom's Taxonomy - {cognitive_level.upper()}):
- {level['description']}
- Use action verbs like: {', '.join(level['verbs'])}
- Example question style: "{level['example']}"
- All questions should target THIS cognitive level
"""


def build_formatting_instructions(info: ContentAnalysis) -> str:
    parts = []
    if info.needs_latex:
        parts.append("""
LATEX FORMATTING (IMPORTANT):
- Use LaTeX syntax for ALL mathematical expressions, formulas, and equations
- Inline math: Use $...$ (e.g., "The formula $E = mc^2$ shows..." or "Calculate $\\frac{x+1}{2}$")
- Display math: Use $$...$$ for standalone equations (e.g., "$$\\int_0^\\infty e^{-x} dx = 1$$")
- Common symbols: $\\alpha$, $\\beta$, $\\gamma$, $\\theta$, $\\pi$, $\\sigma$, $\\Delta$, $\\infty$
- Fractions: $\\frac{numerator}{denominator}$, roots: $\\sqrt{x}$
- Subscripts/superscripts: $x_1$, $x^2$; chemical formulas: $H_2O$, $CO_2$
- Use LaTeX in BOTH questions AND answer options where appropriate
""")
    if info.needs_code_blocks:
        lang_hint = f"Use ```{info.language} for code blocks." if info.language else ""
        parts.append(f"""
CODE FORMATTING (IMPORTANT):
- Wrap ALL code snippets in markdown code blocks with language specification
- Format: ```language
code here
```
{lang_hint}
- Use inline code `like this` for short references (variable names, function names, keywords)
- Ensure code is properly indented and include necessary context when relevant
- For code output questions, show both code and expected output
""")
    parts.append("""
QUESTION QUALITY & FEEDBACK:
- Add an "explanation" field with a BRIEF explanation (1-2 sentences max) of why the correct answer is right
- Add a "difficulty" field with value "easy", "medium", or "hard" based on content complexity
- Add an "optionFeedback" array with SHORT feedback (max 15 words each) for wrong answers explaining WHY incorrect
- Example: "optionFeedback": [{"index": 1, "feedback": "Incorrect - this describes X not Y"}]
- Keep ALL text concise to ensure complete JSON output
- Ensure questions test understanding, not just memorization
""")
    return "".join(parts)


def build_structure_examples(kinds: Iterable[str], info: ContentAnalysis) -> list[str]:
    kinds = set(kinds)
    examples = []
    if MULTIPLE_CHOICE in kinds:
        if info.needs_latex:
            examples.append('{"question": "What is the derivative of $f(x) = x^2 + 3x$?", "type": "multiple-choice", "options": ["$2x + 3$", "$x^2 + 3$", "$2x$", "$3x + 2$"], "correctAnswer": 0, "timeLimit": 30, "explanation": "Power rule: $x^2$ gives $2x$, $3x$ gives $3$", "difficulty": "medium"}')
        elif info.needs_code_blocks:
            lang = info.language or "python"
            examples.append('{"question": "What will this code output?\\n```' + lang
                            + '\\nprint(2 + 3 * 4)\\n```", "type": "multiple-choice", "options": ["14", "20", "24", "Error"], "correctAnswer": 0, "timeLimit": 30, "explanation": "Multiplication binds tighter: 3*4=12, then 2+12=14", "difficulty": "easy"}')
        else:
            examples.append(TYPE_EXAMPLES[MULTIPLE_CHOICE])
    if TRUE_FALSE in kinds:
        if info.needs_latex:
            examples.append('{"question": "The integral $\\\\int x^2 dx = \\\\frac{x^3}{3} + C$", "type": "true-false", "options": ["True", "False"], "correctAnswer": "true", "timeLimit": 20, "explanation": "This is the antiderivative of $x^2$", "difficulty": "medium"}')
        else:
            examples.append(TYPE_EXAMPLES[TRUE_FALSE])
    if MULTIPLE_CORRECT in kinds:
        examples.append('{"question": "Which of the following are TRUE? (Select all)", "type": "multiple-correct", "options": ["Correct A", "Wrong B", "Correct C", "Correct D"], "correctAnswers": [0, 2, 3], "timeLimit": 35, "explanation": "Options A, C, and D are correct because...", "difficulty": "hard"}')
    if NUMERIC in kinds:
        if info.needs_latex:
            examples.append('{"question": "Solve for $x$: $2x + 6 = 14$", "type": "numeric", "correctAnswer": 4, "tolerance": 0, "timeLimit": 25, "explanation": "$2x = 8$, so $x = 4$", "difficulty": "easy"}')
        else:
            examples.append('{"question": "Numeric question from content?", "type": "numeric", "correctAnswer": 1991, "tolerance": 0, "timeLimit": 25, "explanation": "Explanation of the answer", "difficulty": "medium"}')
    if ORDERING in kinds:
        examples.append('{"question": "Arrange the following steps in the correct order:", "type": "ordering", "options": ["Step B", "Step D", "Step A", "Step C"], "correctOrder": [2, 0, 3, 1], "timeLimit": 40, "explanation": "The correct sequence is Step A, Step B, Step C, Step D", "difficulty": "medium"}')
    return examples


def build_main_prompt(*, content: str, question_count: int, difficulty: str, kinds: list[str],
                      info: ContentAnalysis, cognitive_level: Optional[str] = None,
                      language: Optional[str] = "en") -> str:
    target_language = language_name(language)
    plural = _plural(question_count)
    if info.has_existing_questions:
        task = (f"Format and convert the following {question_count} existing question{plural} "
                f"into proper quiz format.")
    else:
        task = (f"Create EXACTLY {question_count} question{plural} about the following content. "
                f"Difficulty: {difficulty}. Content type detected: {info.type}.")
    task += "".join(f"\n- {TYPE_HINTS[k]}" for k in kinds if k in TYPE_HINTS)

    examples = ",\n".join(build_structure_examples(kinds, info))
    source_rule = ("PRESERVE original question text and answers." if info.has_existing_questions
                   else "Base questions on the provided content.")

    return f"""You are a quiz question generator. Output ONLY valid JSON - no markdown, no explanations, no extra text.

{task}
{build_bloom_instructions(cognitive_level)}
CONTENT TO USE:
{content}

OUTPUT FORMAT - Return a JSON array with EXACTLY {question_count} question{plural}:
Return ONLY a valid JSON array with structures like these:
[{examples}]

{build_formatting_instructions(info)}
STRICT RULES:
1. Output ONLY the JSON array - start with [ and end with ]
2. Generate ALL {question_count} questions - do not stop early
3. All questions in {target_language} language
4. Each question MUST have: question, type, options (except numeric), correctAnswer/correctAnswers, timeLimit, explanation, difficulty
5. JSON structures by type:
   - multiple-choice: "correctAnswer": 0-3 (integer index), "options": [4 items]
   - true-false: "options": ["True", "False"], "correctAnswer": "true" or "false" (string)
   - multiple-correct: "correctAnswers": [0, 2, 3] (array of indices), "options": [array]
   - numeric: "correctAnswer": number, "tolerance": number, NO options field
   - ordering: "options": [items], "correctOrder": [indices for correct sequence]
6. Escape special characters in strings (quotes, backslashes, newlines)
7. No trailing commas in JSON
8. Complete EVERY question object before starting the next

{source_rule}

IMPORTANT: You MUST output all {question_count} complete questions. Do not truncate or stop early."""


def retry_question_count(question_count: int, attempt_number: int) -> int:
    """From the third attempt on, ask for half as many questions."""
    if attempt_number >= 3 and question_count > 1:
        return math.ceil(question_count / 2)
    return question_count


def build_retry_prompt(*, content: str, question_count: int, difficulty: str, kinds: list[str],
                       attempt_number: int, language: Optional[str] = "en") -> str:
    count = retry_question_count(question_count, attempt_number)
    examples = ",".join(MINIMAL_TYPE_EXAMPLES[k] for k in kinds if k in MINIMAL_TYPE_EXAMPLES)
    return f"""Generate {count} quiz question{_plural(count)} in {language_name(language)} about:
{truncate_at_word_boundary(content, RETRY_CONTENT_CHARS)}

CRITICAL: Output ONLY a valid JSON array. No markdown, no explanation.

Example format:
[{examples}]

Rules:
- Start with [ end with ]
- {count} questions exactly
- Difficulty: {difficulty}
- Escape quotes with \\
- No trailing commas

JSON array only:"""


def build_excel_conversion_prompt(content: str) -> str:
    return f"""CONVERT SPREADSHEET QUESTIONS TO JSON - DO NOT MAKE UP NEW QUESTIONS

You must convert ONLY the questions that are in this spreadsheet data. Do not create any new questions.

{content}

STEP BY STEP INSTRUCTIONS:
1. Find each "Question X:" section in the data above
2. For each question, copy the exact text and answers
3. Convert to the JSON format shown below
4. Do NOT translate or change any text
5. Do NOT create questions that are not in the data

JSON TEMPLATE - Use exactly this format:
{{"question": "EXACT_QUESTION_TEXT", "type": "multiple-choice", "options": ["EXACT_ANSWER_A", "EXACT_ANSWER_B", "EXACT_ANSWER_C", "EXACT_ANSWER_D"], "correctAnswer": 0, "timeLimit": 30}}

CRITICAL RULES:
- COPY TEXT EXACTLY AS WRITTEN - do NOT rephrase, translate, fix grammar or add punctuation
- Use the CORRECT_ANSWER_INDEX provided for each question as the correctAnswer field
- Do NOT try to figure out the correct answer yourself
- The correctAnswer field must be a number (0, 1, 2, 3), not a letter
- Return a valid JSON array: [{{"question": ...}}, {{"question": ...}}]
- NO explanations, NO extra text, ONLY the JSON array

Start converting now. Return only the JSON array."""


def build_ollama_enhanced_prompt(base_prompt: str, *, rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    session = f"{int(time.time() * 1000)}-{rng.randint(0, 9999)}"
    return f"""[Session: {session}] {base_prompt}

LOCAL MODEL REQUIREMENTS:
- For multiple-choice questions: You MUST provide exactly 4 options in the "options" array
- NEVER generate multiple-choice questions with 3 or fewer options
- If you cannot think of 4 good options, create plausible distractors related to the content

Please respond with only valid JSON. Do not include explanations or additional text."""
