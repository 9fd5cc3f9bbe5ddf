"""Bayesian Knowledge Tracing (BKT) engine for topic mastery tracking."""

from __future__ import annotations

from typing import Sequence

from .models import BKTParams, Difficulty, MasteryLevel, Trend

# Grade-band parameters: younger learners start lower, learn faster, slip more.
BKT_DEFAULTS: dict[str, BKTParams] = {
    "grades_1_3": BKTParams(p_init=0.10, p_learn=0.30, p_guess=0.25, p_slip=0.15),
    "grades_4_6": BKTParams(p_init=0.20, p_learn=0.20, p_guess=0.20, p_slip=0.10),
    "grades_7_8": BKTParams(p_init=0.25, p_learn=0.15, p_guess=0.18, p_slip=0.08),
}
DEFAULT_GRADE_BAND = "grades_4_6"

MASTERED_THRESHOLD = 0.8
LEARNING_THRESHOLD = 0.5

EASY_BELOW = 0.4
MEDIUM_BELOW = 0.7

MIN_TREND_POINTS = 6
TREND_MARGIN = 1


def grade_band(grade: int | None) -> str:
    """Map a school grade (1-8) onto its parameter band."""
    if grade is None:
        return DEFAULT_GRADE_BAND
    if grade <= 3:
        return "grades_1_3"
    if grade <= 6:
        return "grades_4_6"
    return "grades_7_8"


def get_bkt_params(grade: int | None) -> BKTParams:
    return BKT_DEFAULTS.get(grade_band(grade), BKT_DEFAULTS[DEFAULT_GRADE_BAND])


def bkt_update(p_known: float, correct: bool, params: BKTParams) -> float:
    """Learning opportunity first, then Bayes on the observed answer.

    Learn:   P(L') = P(L) + (1 - P(L)) * P(T)
    Correct: P(L|obs) = P(L')*(1-P(S)) / [P(L')*(1-P(S)) + (1-P(L'))*P(G)]
    Wrong:   P(L|obs) = P(L')*P(S) / [P(L')*P(S) + (1-P(L'))*(1-P(G))]
    """
    p_after_learning = p_known + (1 - p_known) * params.p_learn

    if correct:
        numerator = p_after_learning * (1 - params.p_slip)
        denominator = numerator + (1 - p_after_learning) * params.p_guess
    else:
        numerator = p_after_learning * params.p_slip
        denominator = numerator + (1 - p_after_learning) * (1 - params.p_guess)

    if denominator == 0:
        posterior = 0.0
    else:
        posterior = numerator / denominator

    return max(0.0, min(1.0, posterior))


def recommend_difficulty(p_known: float) -> Difficulty:
    if p_known < EASY_BELOW:
        return "easy"
    if p_known < MEDIUM_BELOW:
        return "medium"
    return "hard"


def calculate_trend(performance_window: Sequence[int]) -> Trend:
    """Compare the last three answers against the three before them.

    Fewer than six points is not enough evidence, so the trend stays stable.
    """
    if len(performance_window) < MIN_TREND_POINTS:
        return "stable"

    recent = sum(performance_window[-3:])
    previous = sum(performance_window[-6:-3])

    if recent > previous + TREND_MARGIN:
        return "improving"
    if recent < previous - TREND_MARGIN:
        return "declining"
    return "stable"


def get_mastery_level(p_known: float) -> MasteryLevel:
    if p_known >= MASTERED_THRESHOLD:
        return "mastered"
    if p_known >= LEARNING_THRESHOLD:
        return "learning"
    return "weak"


__all__ = [
    "BKT_DEFAULTS",
    "DEFAULT_GRADE_BAND",
    "LEARNING_THRESHOLD",
    "MASTERED_THRESHOLD",
    "bkt_update",
    "calculate_trend",
    "get_bkt_params",
    "get_mastery_level",
    "grade_band",
    "recommend_difficulty",
]
