"""Tests for recovering question arrays from messy model output."""

import json

import pytest

from ai_pipeline import normalize_questions
from errors import ResponseParseError
from json_repair import CODE_ONLY_MESSAGE, extract_first_array, parse_questions, repair_json

QUESTION = {"question": "What is 2+2?", "type": "multiple-choice",
            "options": ["3", "4", "5", "6"], "correctAnswer": 1}


class TestRepairJson:
    """Each strategy in turn, from direct parse to plain-text extraction."""

    def test_valid_json_is_unchanged(self):
        text = json.dumps([QUESTION])
        result = repair_json(text)
        assert result.ok
        assert result.strategy == "direct"
        assert result.value == [QUESTION]

    def test_questions_wrapper_object(self):
        result = repair_json(json.dumps({"questions": [QUESTION]}))
        assert result.value == [QUESTION]

    def test_preamble_and_fences(self):
        text = "Here is the JSON you asked for:\n```json\n" + json.dumps([QUESTION]) + "\n```\nEnjoy!"
        result = repair_json(text)
        assert result.ok
        assert result.strategy == "extracted"
        assert result.value == [QUESTION]

    def test_unquoted_keys_and_trailing_commas(self):
        text = '[{question: "Pick one, or ]", type: "numeric", correctAnswer: 4,},]'
        result = repair_json(text)
        assert result.strategy == "repaired"
        assert result.value == [{"question": "Pick one, or ]", "type": "numeric",
                                 "correctAnswer": 4}]

    def test_single_quote_delimiters(self):
        text = ("[{'question': 'Capital of Peru?', 'type': 'multiple-choice', "
                "'options': ['Lima', 'Quito'], 'correctAnswer': 0}]")
        result = repair_json(text)
        assert result.strategy == "repaired"
        assert result.value == [{"question": "Capital of Peru?", "type": "multiple-choice",
                                 "options": ["Lima", "Quito"], "correctAnswer": 0}]

    def test_fenced_loose_array_normalizes_letter_answer(self):
        text = ("```json\n[ { question: 'Q1?', type: 'multiple-choice', "
                "options:['a','b','c','d'], correctAnswer:'A' }, ]\n```")
        result = repair_json(text)
        assert result.ok
        assert len(result.value) == 1
        kept, dropped = normalize_questions(result.value)
        assert not dropped
        assert kept[0].options == ["a", "b", "c", "d"]
        assert kept[0].correctAnswer == 0

    def test_truncated_output_keeps_complete_objects(self):
        text = ('[{"question": "A?", "type": "true-false", "correctAnswer": "true"}, '
                '{"question": "B?", "ty')
        result = repair_json(text)
        assert result.ok
        assert result.value == [{"question": "A?", "type": "true-false", "correctAnswer": "true"}]

    def test_plain_text_questions(self):
        text = "Question 1: What is 2+2? Options: A) 3 B) 4 C) 5 D) 6 Answer: B"
        result = repair_json(text)
        assert result.strategy == "manual"
        question = result.value[0]
        assert question["question"] == "What is 2+2?"
        assert question["options"] == ["3", "4", "5", "6"]
        assert question["correctAnswer"] == 1

    def test_code_only_response(self):
        result = repair_json("def solve():\n    return 4\n")
        assert not result.ok
        assert result.error == CODE_ONLY_MESSAGE

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty(self, text):
        assert not repair_json(text).ok

    def test_repairing_is_idempotent(self):
        messy = '[{question: "Q?", type: "numeric", correctAnswer: 4,}]'
        once = repair_json(messy).value
        assert repair_json(json.dumps(once)).value == once


class TestExtractFirstArray:
    def test_brackets_inside_strings(self):
        text = 'noise [{"question": "a [b] c"}] trailing ]'
        assert extract_first_array(text) == '[{"question": "a [b] c"}]'

    def test_lone_object_is_wrapped(self):
        assert extract_first_array('x {"a": 1} y') == '[{"a": 1}]'


class TestParseQuestions:
    def test_raises_when_nothing_usable(self):
        with pytest.raises(ResponseParseError) as exc:
            parse_questions("Sorry, I cannot help with that.")
        assert exc.value.code == "AI_GENERATION_FAILED"

    def test_limit(self):
        assert len(parse_questions(json.dumps([QUESTION] * 5), limit=3)) == 3
