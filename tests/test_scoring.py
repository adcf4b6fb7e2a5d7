"""Tests for points, time bonus and difficulty multipliers."""

import pytest

from models import Question, ScoringConfig
from scoring import calculate_score, points_available, round_half_up, time_bonus_factor


def question(difficulty="medium"):
    return Question(question="2 + 2?", type="multiple-choice", options=["3", "4", "5", "6"],
                    correctAnswer=1, difficulty=difficulty)


class TestRounding:
    def test_half_rounds_up(self):
        assert round_half_up(202.5) == 203
        assert round_half_up(101.5) == 102
        assert round_half_up(2.4) == 2


class TestTimeBonus:
    """Linear decay to zero, with an optional full-bonus threshold."""

    def test_linear(self):
        assert time_bonus_factor(0) == 1.0
        assert time_bonus_factor(3000) == pytest.approx(0.7)
        assert time_bonus_factor(10_000) == 0.0
        assert time_bonus_factor(15_000) == 0.0

    def test_threshold(self):
        assert time_bonus_factor(4000, threshold_ms=5000) == 1.0
        assert time_bonus_factor(6000, threshold_ms=5000) == pytest.approx(0.4)


class TestCalculateScore:
    """End-to-end scoring of one answer."""

    def test_medium_correct_after_three_seconds(self):
        result = calculate_score(question(), 1, 3000)
        assert result.correct
        assert result.points == 203

    def test_wrong_answer_scores_zero(self):
        result = calculate_score(question(), 0, 3000)
        assert not result.correct
        assert result.points == 0

    def test_double_points(self):
        assert calculate_score(question(), 1, 3000, double_points=True).points == 406

    @pytest.mark.parametrize("difficulty,rt,expected", [
        ("easy", 0, 150),
        ("easy", 10_000, 100),
        ("hard", 10_000, 200),
        ("hard", 0, 300),
    ])
    def test_difficulty(self, difficulty, rt, expected):
        assert calculate_score(question(difficulty), 1, rt).points == expected

    def test_time_bonus_disabled(self):
        config = ScoringConfig(timeBonusEnabled=False)
        assert calculate_score(question(), 1, 0, config).points == 150

    def test_custom_multipliers(self):
        config = ScoringConfig(difficultyMultipliers={"medium": 3})
        assert calculate_score(question(), 1, 3000, config).points == 405

    def test_ordering_partial_credit(self):
        q = Question(question="Order", type="ordering", options=["a", "b", "c", "d"],
                     correctOrder=[3, 1, 0, 2])
        result = calculate_score(q, [3, 1, 2, 0], 3000)
        assert not result.correct
        assert result.partial_credit == 0.5
        assert result.points == 102

    def test_numeric_tolerance(self):
        q = Question(question="Answer?", type="numeric", correctAnswer=42, tolerance=0.5,
                     difficulty="easy")
        assert calculate_score(q, 42.4, 10_000).points == 100
        assert calculate_score(q, 42.6, 10_000).points == 0

    def test_faster_never_scores_less(self):
        points = [points_available(question("hard"), rt) for rt in range(0, 12_000, 250)]
        assert points == sorted(points, reverse=True)
