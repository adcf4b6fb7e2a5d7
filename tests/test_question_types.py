"""Tests for the question type registry: validation, scoring, sanitizing, shuffling, editing."""

import random

import pytest

import question_types
from errors import UnknownQuestionTypeError
from models import Question


def mcq(**kw):
    base = dict(question="Capital of France?", type="multiple-choice",
                options=["Berlin", "Paris", "Rome", "Madrid"], correctAnswer=1)
    base.update(kw)
    return Question(**base)


class TestQuestionModel:
    """Alternate document shapes normalize onto one canonical question."""

    def test_true_false_string_answer_becomes_bool(self):
        q = Question(question="Water is wet.", type="true-false", correctAnswer="true")
        assert q.correctAnswer is True

    def test_true_false_persists_as_string(self):
        q = Question(question="Water is dry.", type="true-false", correctAnswer=False)
        assert q.to_document()["correctAnswer"] == "false"

    def test_legacy_field_names(self):
        q = Question.model_validate({"prompt": "Order", "type": "ordering",
                                     "items": ["a", "b"], "correctOrder": [1, 0], "time": 45})
        assert q.question == "Order"
        assert q.options == ["a", "b"]
        assert q.timeLimit == 45

    def test_correct_index_alias(self):
        q = Question.model_validate({"question": "Q", "options": ["a", "b"], "correctIndex": 1})
        assert q.correctAnswer == 1

    def test_option_feedback_list(self):
        q = mcq(optionFeedback=[{"index": 0, "feedback": "Germany"}, {"index": 2}])
        assert q.optionFeedback == {0: "Germany", 2: ""}


class TestValidation:
    """validate() reports every problem with a question."""

    def test_valid_multiple_choice(self):
        assert question_types.validate(mcq()).ok

    def test_index_out_of_range(self):
        result = question_types.validate(mcq(correctAnswer=4))
        assert not result.ok
        assert any("out of range" in e for e in result.errors)

    def test_too_few_options(self):
        result = question_types.validate(mcq(options=["Paris"], correctAnswer=0))
        assert any("between 2 and 6" in e for e in result.errors)

    def test_time_limit_bounds(self):
        assert not question_types.validate(mcq(timeLimit=3)).ok
        assert not question_types.validate(mcq(timeLimit=301)).ok
        assert question_types.validate(mcq(timeLimit=300)).ok

    def test_empty_text_and_option(self):
        result = question_types.validate(mcq(question="  ", options=["a", ""]))
        assert "Question text is required" in result.errors
        assert "Options cannot be empty" in result.errors

    def test_multiple_correct_duplicates(self):
        q = Question(question="Pick", type="multiple-correct", options=["a", "b", "c"],
                     correctAnswers=[0, 0])
        assert "Correct answers contain duplicates" in question_types.validate(q).errors

    def test_ordering_needs_permutation(self):
        q = Question(question="Order", type="ordering", options=["a", "b", "c"],
                     correctOrder=[0, 0, 1])
        assert not question_types.validate(q).ok

    def test_numeric_negative_tolerance(self):
        q = Question(question="How many?", type="numeric", correctAnswer=3, tolerance=-1)
        assert "Tolerance must be a non-negative number" in question_types.validate(q).errors

    def test_feedback_for_missing_option(self):
        result = question_types.validate(mcq(optionFeedback={9: "nope"}))
        assert "Feedback refers to missing option 9" in result.errors

    def test_unknown_type(self):
        with pytest.raises(UnknownQuestionTypeError):
            question_types.get_type("essay")
        assert not question_types.is_known("essay")

    def test_validate_questions_numbers_each_error(self):
        bad = mcq(correctAnswer=7)
        errors = question_types.validate_questions([mcq(), bad, mcq(type="essay")])
        assert errors == ["Question 2: Correct answer index 7 is out of range",
                          "Question 3: Unknown question type: essay"]
        assert question_types.validate_questions([mcq()]) == []

    def test_base_type_is_abstract(self):
        with pytest.raises(TypeError):
            question_types.QuestionType()


class TestScoreAnswer:
    """score_answer per kind."""

    def test_multiple_choice(self):
        assert question_types.score_answer(mcq(), 1) is True
        assert question_types.score_answer(mcq(), 2) is False

    def test_bool_is_not_an_index(self):
        assert question_types.score_answer(mcq(), True) is False

    def test_multiple_correct_is_order_insensitive(self):
        q = Question(question="Pick", type="multiple-correct", options=["a", "b", "c", "d"],
                     correctAnswers=[0, 2])
        assert question_types.score_answer(q, [2, 0]) is True
        assert question_types.score_answer(q, [0]) is False

    def test_true_false_accepts_strings(self):
        q = Question(question="Yes?", type="true-false", correctAnswer=True)
        assert question_types.score_answer(q, "true") is True
        assert question_types.score_answer(q, False) is False

    @pytest.mark.parametrize("submitted,expected", [
        (42.4, True), (42.6, False), (41.5, True), (41.49, False), ("42", True),
    ])
    def test_numeric_tolerance(self, submitted, expected):
        q = Question(question="Answer?", type="numeric", correctAnswer=42, tolerance=0.5)
        assert question_types.score_answer(q, submitted) is expected

    def test_numeric_zero_tolerance_is_exact(self):
        q = Question(question="Sum?", type="numeric", correctAnswer=0.3, tolerance=0)
        assert question_types.score_answer(q, 0.3) is True
        assert question_types.score_answer(q, 0.1 + 0.2) is False
        whole = Question(question="Legs?", type="numeric", correctAnswer=8, tolerance=0)
        assert question_types.score_answer(whole, "8") is True

    def test_ordering_partial_credit(self):
        q = Question(question="Order", type="ordering", options=["a", "b", "c", "d"],
                     correctOrder=[3, 1, 0, 2])
        assert question_types.score_answer(q, [3, 1, 2, 0]) == 0.5
        assert question_types.score_answer(q, [3, 1, 0, 2]) == 1.0
        assert question_types.score_answer(q, [3, 1]) == 0.0

    def test_well_formed(self):
        assert question_types.is_well_formed(mcq(), 3)
        assert not question_types.is_well_formed(mcq(), 4)
        assert not question_types.is_well_formed(mcq(), "1")


class TestSanitize:
    """Players never see the answer."""

    def test_multiple_choice_hides_answer(self):
        payload = question_types.sanitize_for_player(mcq(explanation="Because", image="x.png"))
        assert "correctAnswer" not in payload
        assert "explanation" not in payload
        assert payload["options"] == ["Berlin", "Paris", "Rome", "Madrid"]
        assert payload["image"] == "x.png"

    def test_numeric_has_no_options(self):
        q = Question(question="How many?", type="numeric", correctAnswer=3)
        assert "options" not in question_types.sanitize_for_player(q)

    def test_true_false_default_options(self):
        q = Question(question="Yes?", type="true-false", correctAnswer=True)
        assert question_types.sanitize_for_player(q)["options"] == ["True", "False"]


class TestShuffle:
    """Shuffling options keeps the same option text correct."""

    @pytest.mark.parametrize("seed", range(10))
    def test_multiple_choice(self, seed):
        q = mcq(optionFeedback={0: "Germany"})
        shuffled = question_types.shuffle_options(q, random.Random(seed))
        assert sorted(shuffled.options) == sorted(q.options)
        assert shuffled.options[shuffled.correctAnswer] == "Paris"
        assert shuffled.optionFeedback == {shuffled.options.index("Berlin"): "Germany"}

    @pytest.mark.parametrize("seed", range(10))
    def test_multiple_correct(self, seed):
        q = Question(question="Primes", type="multiple-correct", options=["2", "4", "5", "9"],
                     correctAnswers=[0, 2])
        shuffled = question_types.shuffle_options(q, random.Random(seed))
        assert {shuffled.options[i] for i in shuffled.correctAnswers} == {"2", "5"}


class TestEditing:
    """Editor descriptors and form edits."""

    def test_render_editor_fields(self):
        names = [f["name"] for f in question_types.render_editor(mcq())]
        assert names[:4] == ["question", "difficulty", "timeLimit", "explanation"]
        assert "option-3" in names

    def test_numeric_editor_has_tolerance(self):
        q = Question(question="How many?", type="numeric", correctAnswer=3)
        assert "tolerance" in [f["name"] for f in question_types.render_editor(q)]

    def test_apply_edits(self):
        edited = question_types.apply_edits(mcq(), {
            "question": "  Capital of Italy? ", "correctAnswer": "2", "timeLimit": "45",
            "difficulty": "HARD",
        })
        assert edited.question == "Capital of Italy?"
        assert edited.correctAnswer == 2
        assert edited.timeLimit == 45
        assert edited.difficulty == "hard"

    def test_apply_edits_ordering_positions(self):
        q = Question(question="Order", type="ordering", options=["b", "c", "a"],
                     correctOrder=[0, 1, 2])
        edited = question_types.apply_edits(q, {"positions": ["2", "3", "1"]})
        assert edited.correctOrder == [2, 0, 1]

    def test_extract_answer(self):
        assert question_types.extract_answer("multiple-correct", {"answers": ["2", "0", "2"]}) == [0, 2]
        assert question_types.extract_answer("ordering", {"order": ["1", "0"]}) == [1, 0]
        assert question_types.extract_answer("numeric", {"answer": "3,5"}) == 3.5


class TestTally:
    def test_counts_per_option(self):
        assert question_types.tally(mcq(), [1, 1, 3, None]) == {"1": 2, "3": 1}

    def test_multiple_correct_counts_each_choice(self):
        q = Question(question="Pick", type="multiple-correct", options=["a", "b", "c"],
                     correctAnswers=[0])
        assert question_types.tally(q, [[0, 1], [1]]) == {"0": 1, "1": 2}
