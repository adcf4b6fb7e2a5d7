"""Answer scoring and the response-time bonus."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

import question_types
from models import Question, ScoringConfig
from settings import BASE_POINTS, DIFFICULTY_MULTIPLIERS, MAX_BONUS_TIME

TIME_BONUS_SHARE = 0.5


@dataclass
class ScoreResult:
    correct: bool
    fraction: float
    points: int
    partial_credit: Optional[float] = None


def round_half_up(value: float) -> int:
    # round() is banker's rounding: round(202.5) == 202
    return int(math.floor(value + 0.5))


def difficulty_multiplier(difficulty: str, config: Optional[ScoringConfig] = None) -> float:
    multipliers = config.difficultyMultipliers if config else DIFFICULTY_MULTIPLIERS
    return multipliers.get(difficulty, DIFFICULTY_MULTIPLIERS.get(difficulty, 1))


def time_bonus_factor(response_time_ms: float, threshold_ms: int = 0) -> float:
    """Share of the maximum time bonus earned, in [0, 1].

    With a threshold, answers at or under it earn the full bonus; slower
    answers (and every answer when the threshold is 0) decay linearly to
    zero at MAX_BONUS_TIME.
    """
    rt = max(0.0, float(response_time_ms))
    if threshold_ms > 0 and rt <= threshold_ms:
        return 1.0
    return max(0.0, (MAX_BONUS_TIME - rt) / MAX_BONUS_TIME)


def points_available(question: Question, response_time_ms: float,
                     config: Optional[ScoringConfig] = None, double_points: bool = False) -> int:
    """Full-credit points for an answer given after `response_time_ms`."""
    config = config or ScoringConfig()
    multiplier = difficulty_multiplier(question.difficulty, config)
    base = BASE_POINTS * multiplier
    bonus = 0.0
    if config.timeBonusEnabled:
        bonus = BASE_POINTS * TIME_BONUS_SHARE * time_bonus_factor(
            response_time_ms, config.timeBonusThreshold) * multiplier
    points = round_half_up(base + bonus)
    return points * 2 if double_points else points


def calculate_score(question: Question, submitted: Any, response_time_ms: float,
                    config: Optional[ScoringConfig] = None,
                    double_points: bool = False) -> ScoreResult:
    result = question_types.score_answer(question, submitted)
    fraction = question_types.correctness_fraction(result)
    partial = fraction if question_types.get_type(question.type).supports_partial_credit else None
    if fraction <= 0:
        return ScoreResult(correct=False, fraction=0.0, points=0, partial_credit=partial)
    points = points_available(question, response_time_ms, config, double_points)
    return ScoreResult(
        correct=fraction >= 1.0,
        fraction=fraction,
        points=round_half_up(points * fraction),
        partial_credit=partial,
    )
