"""Tests for normalization, preview review and the generation pipeline."""

import json

import pytest

from ai_pipeline import (
    BatchInfo,
    GenerationRequest,
    QuestionPipeline,
    QuestionPreview,
    auto_fix_question,
    batch_size_for,
    detect_sheet_format,
    normalize_kind,
    normalize_questions,
    rows_to_structured_text,
)
from errors import ErrorHandler, ProviderError, ProviderTimeout, ResponseParseError, ValidationFailed
from models import MULTIPLE_CHOICE, NUMERIC, ORDERING, Question, Quiz

VALID = json.dumps([{"question": "2 + 2?", "type": "multiple-choice",
                     "options": ["3", "4", "5", "6"], "correctAnswer": "B"}])


class FakeProvider:
    """Replays canned responses; exceptions in the list are raised."""

    name = "Fake"

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []
        self.counts = []

    async def generate(self, prompt, *, question_count=5):
        self.prompts.append(prompt)
        self.counts.append(question_count)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def pipeline_for(provider):
    return QuestionPipeline(lambda request: provider, handler=ErrorHandler())


def request(**kw):
    kw.setdefault("content", "Arithmetic for beginners: addition and subtraction.")
    return GenerationRequest(**kw)


class TestAutoFix:
    """Repairs applied to a single generated question."""

    def test_kind_aliases(self):
        assert normalize_kind("Multiple Choice") == MULTIPLE_CHOICE
        assert normalize_kind("true_false") == "true-false"
        assert normalize_kind("sequence") == ORDERING
        assert normalize_kind("") is None

    def test_letter_answer(self):
        fixed = auto_fix_question({"type": "mcq", "question": " Q? ",
                                   "options": ["a", "b", "c", "d"], "correctAnswer": "B"})
        assert fixed["correctAnswer"] == 1
        assert fixed["question"] == "Q?"

    def test_option_text_answer(self):
        fixed = auto_fix_question({"options": ["Paris", "Rome", "Oslo", "Bern"],
                                   "correctAnswer": "rome"})
        assert fixed["type"] == MULTIPLE_CHOICE
        assert fixed["correctAnswer"] == 1

    def test_local_model_options_are_padded(self):
        fixed = auto_fix_question({"options": ["a", "b"], "correctAnswer": 0}, provider="ollama")
        assert fixed["options"] == ["a", "b", "None of the above", "All of the above"]
        assert len(auto_fix_question({"options": ["a", "b"], "correctAnswer": 0})["options"]) == 2

    def test_true_false(self):
        fixed = auto_fix_question({"type": "true/false", "correctAnswer": "yes"})
        assert fixed["correctAnswer"] is True
        assert fixed["options"] == ["True", "False"]

    def test_numeric(self):
        fixed = auto_fix_question({"type": "number", "correctAnswer": "1,000",
                                   "options": ["x"], "tolerance": None})
        assert fixed["correctAnswer"] == 1000.0
        assert fixed["tolerance"] == 0
        assert "options" not in fixed

    def test_ordering_defaults_to_given_sequence(self):
        fixed = auto_fix_question({"type": "ordering", "items": ["a", "b", "c"]})
        assert fixed["options"] == ["a", "b", "c"]
        assert fixed["correctOrder"] == [0, 1, 2]

    def test_multiple_correct_letters(self):
        fixed = auto_fix_question({"type": "multi-select", "options": ["a", "b", "c"],
                                   "correctAnswer": ["A", "C"]})
        assert fixed["correctAnswers"] == [0, 2]
        assert "correctAnswer" not in fixed

    @pytest.mark.parametrize("raw,expected", [(1000, 300), (1, 5), ("abc", 30), (None, 30), (12.6, 13)])
    def test_time_limit_is_clamped(self, raw, expected):
        assert auto_fix_question({"timeLimit": raw, "options": ["a", "b"]})["timeLimit"] == expected

    def test_unknown_difficulty(self):
        assert auto_fix_question({"difficulty": "EXTREME"})["difficulty"] == "medium"


class TestNormalizeQuestions:
    def test_keeps_valid_and_reports_dropped(self):
        raw = [
            {"question": "Good", "options": ["a", "b"], "correctAnswer": 0},
            {"question": "Out of range", "options": ["a", "b"], "correctAnswer": 7},
            "not a question",
            {"question": "Essay", "type": "essay"},
        ]
        kept, dropped = normalize_questions(raw)
        assert [q.question for q in kept] == ["Good"]
        assert [d["index"] for d in dropped] == [1, 2, 3]
        assert dropped[2]["errors"] == ["Unknown question type: essay"]

    def test_truncates_to_requested(self):
        raw = [{"question": f"Q{i}", "options": ["a", "b"], "correctAnswer": 0} for i in range(6)]
        kept, _ = normalize_questions(raw, requested=4)
        assert len(kept) == 4

    def test_expected_kind_wins(self):
        kept, dropped = normalize_questions([{"question": "Order", "items": ["a", "b", "c"]}],
                                            expected_kind=ORDERING)
        assert not dropped
        assert kept[0].type == ORDERING
        assert kept[0].correctOrder == [0, 1, 2]


class TestQuestionPreview:
    """Reviewing generated questions before they join a quiz."""

    @pytest.fixture
    def preview(self, make_mc):
        return QuestionPreview([make_mc("One?"), make_mc("Two?"), make_mc("Three?")])

    def test_selection(self, preview):
        assert preview.summary() == {"total": 3, "selected": 3}
        preview.select(1, False)
        assert [q.question for q in preview.selected_questions] == ["One?", "Three?"]
        preview.deselect_all()
        assert preview.summary()["selected"] == 0
        preview.select_all()
        assert preview.summary()["selected"] == 3

    def test_missing_item(self, preview):
        with pytest.raises(IndexError):
            preview.select(3)

    def test_edit(self, preview):
        edited = preview.edit(0, {"question": "One, edited?", "correctAnswer": "2"})
        assert edited.correctAnswer == 2
        assert preview.items[0].question.question == "One, edited?"

    def test_invalid_edit_leaves_item(self, preview):
        with pytest.raises(ValidationFailed):
            preview.edit(0, {"question": "", "correctAnswer": 9})
        assert preview.items[0].question.question == "One?"
        assert preview.items[0].question.correctAnswer == 1

    def test_replace_reselects(self, preview, make_mc):
        preview.select(2, False)
        preview.replace(2, make_mc("Fresh?"))
        assert preview.items[2].selected
        assert preview.items[2].question.question == "Fresh?"

    def test_confirm_appends_selected(self, preview, make_mc):
        quiz = Quiz(title="Sums", questions=[make_mc("Existing?")])
        preview.select(0, False)
        updated = preview.confirm(quiz)
        assert [q.question for q in updated.questions] == ["Existing?", "Two?", "Three?"]
        assert len(quiz.questions) == 1

    def test_round_trip_through_documents(self, preview):
        data = preview.to_dict()
        assert data["total"] == 3
        assert data["items"][0]["editor"]
        restored = QuestionPreview.from_documents([i["question"] for i in data["items"]],
                                                  selected=[True, False, True])
        assert restored.summary() == {"total": 3, "selected": 2}
        assert restored.items[0].question.to_document() == preview.items[0].question.to_document()


class TestSpreadsheetRows:
    ROWS = [
        ["Question", "Answer A", "Answer B", "Answer C", "Correct"],
        ["2 + 2?", "3", "4", "5", "B"],
        ["Capital of Peru?", "Lima", "Quito", "Cusco", "1"],
    ]

    def test_header_detection(self):
        fmt = detect_sheet_format(self.ROWS)
        assert fmt.has_headers
        assert fmt.question_col == 0
        assert fmt.answer_cols == [1, 2, 3]
        assert fmt.correct_col == 4

    def test_headerless_uses_longest_cell_as_question(self):
        fmt = detect_sheet_format([["Lima", "Which city is the capital of Peru?", "Quito"],
                                   ["Rome", "Which city is the capital of Italy?", "Milan"]])
        assert not fmt.has_headers
        assert fmt.question_col == 1
        assert fmt.answer_cols == [0, 2]

    def test_structured_text(self):
        text = rows_to_structured_text(self.ROWS, "sums.xlsx")
        assert "Question 1:\n  Question: 2 + 2?\n  Option 1: 3" in text
        assert "CORRECT_ANSWER_INDEX: 1" in text
        assert "CORRECT_ANSWER_INDEX: 0" in text
        assert "- Question Column: Question" in text

    def test_structured_text_skips_blank_rows_before_batching(self):
        rows = [self.ROWS[0], ["", "", "", "", ""], *self.ROWS[1:]]
        text = rows_to_structured_text(rows, "sums.xlsx", batch_start=1, batch_size=1)
        assert "Question 2:\n  Question: Capital of Peru?" in text
        assert "2 + 2?" not in text

    def test_batch_plan(self):
        batch = BatchInfo.plan(12, 5)
        assert batch.totalBatches == 3
        assert batch.bounds(3) == (10, 12)
        assert batch_size_for("Claude") == 10
        assert batch_size_for("mystery") == 5


class TestQuestionPipeline:
    async def test_empty_content(self):
        with pytest.raises(ValidationFailed):
            await pipeline_for(FakeProvider()).generate(request(content="  "))

    async def test_first_attempt(self):
        provider = FakeProvider(VALID)
        result = await pipeline_for(provider).generate(request(questionCount=1, language="es"))
        assert result.attempts == 1
        assert result.questions[0].correctAnswer == 1
        assert "Create EXACTLY 1 question" in provider.prompts[0]
        assert "Spanish" in provider.prompts[0]

    async def test_retries_unparseable_and_timed_out_responses(self):
        provider = FakeProvider("Sorry, no.", ProviderTimeout("slow", provider="Fake"), VALID)
        result = await pipeline_for(provider).generate(request(questionCount=4))
        assert result.attempts == 3
        assert provider.counts == [4, 4, 2]
        assert provider.prompts[1].startswith("Generate 4 quiz questions")
        assert result.to_dict()["preview"]["total"] == 1

    async def test_gives_up_after_max_attempts(self):
        provider = FakeProvider("nope", "still nope", "[]")
        with pytest.raises(ResponseParseError):
            await pipeline_for(provider).generate(request())
        assert len(provider.prompts) == 3

    async def test_provider_errors_are_not_retried(self):
        provider = FakeProvider(ProviderError("Invalid API key", status_code=401), VALID)
        with pytest.raises(ProviderError):
            await pipeline_for(provider).generate(request())
        assert len(provider.prompts) == 1

    async def test_regenerate_single_question(self):
        provider = FakeProvider('{"question": "Speed of sound in m/s?", "correctAnswer": "343"}')
        question = await pipeline_for(provider).regenerate(request(), "numeric")
        assert question.type == NUMERIC
        assert question.correctAnswer == 343
        assert provider.counts == [1]
        assert "Generate exactly ONE numeric question" in provider.prompts[0]

    async def test_convert_rows_skips_failed_batches(self):
        rows = [["Question", "Answer A", "Answer B", "Correct"]]
        rows += [[f"Q{i}?", "yes", "no", "A"] for i in range(1, 8)]
        second = json.dumps([{"question": "Q6?", "options": ["yes", "no"], "correctAnswer": 0},
                             {"question": "Q7?", "options": ["yes", "no"], "correctAnswer": 0}])
        provider = FakeProvider("garbage", second)
        result = await pipeline_for(provider).convert_rows(rows, "qs.xlsx",
                                                           request(content="", provider="ollama"))
        assert [q.question for q in result.questions] == ["Q6?", "Q7?"]
        assert result.failed_batches == [1]
        assert result.batch.totalBatches == 2
        assert provider.counts == [5, 2]
        assert "Questions 6 to 7 (Batch 2 of 2)" in provider.prompts[1]
        assert result.to_dict()["failedBatches"] == [1]

    async def test_convert_rows_ignores_blank_rows(self):
        rows = [["Question", "Answer A", "Answer B", "Correct"], [], ["", "", "", ""]]
        rows += [[f"Q{i}?", "yes", "no", "A"] for i in range(1, 8)]
        first = json.dumps([{"question": f"Q{i}?", "options": ["yes", "no"], "correctAnswer": 0}
                            for i in range(1, 6)])
        second = json.dumps([{"question": f"Q{i}?", "options": ["yes", "no"], "correctAnswer": 0}
                             for i in (6, 7)])
        provider = FakeProvider(first, second)
        result = await pipeline_for(provider).convert_rows(rows, "qs.xlsx",
                                                           request(content="", provider="ollama"))
        assert provider.counts == [5, 2]
        assert "Question: Q5?" in provider.prompts[0]
        assert "Question: Q7?" in provider.prompts[1]
        assert "Question: Q5?" not in provider.prompts[1]
        assert [q.question for q in result.questions] == [f"Q{i}?" for i in range(1, 8)]

    async def test_convert_rows_all_failed(self):
        rows = [["Question", "Answer"], ["Q1?", "A"]]
        with pytest.raises(ResponseParseError):
            await pipeline_for(FakeProvider("garbage")).convert_rows(rows, "qs.xlsx", request())

    async def test_convert_rows_needs_data(self):
        with pytest.raises(ValidationFailed):
            await pipeline_for(FakeProvider()).convert_rows([], "qs.xlsx", request())
