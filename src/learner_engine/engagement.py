"""Engagement detection from quiz session behaviour.

Engagement is evidence of how reliable a session's answers are, not of
competence, so the analyzer only ever produces a penalty (or nothing).
"""

from __future__ import annotations

from typing import Sequence

from loguru import logger

from .models import EngagementLevel, EngagementMetrics, EngagementSignal, Signal, SignalType

EXPECTED_TIME_PER_QUESTION_MS = 30_000

RUSH_THRESHOLD = 0.5   # avg answer time < expected * 0.5 => rushing
SLOW_THRESHOLD = 3.0   # avg answer time > expected * 3.0 => slow (not penalised)

AVOIDANCE_COMPLETION_THRESHOLD = 0.5
FULL_COMPLETION = 0.95
MOSTLY_COMPLETE = 0.7

FAST_SESSION_RATIO = 0.6
SLOW_SESSION_RATIO = 2.0

# Share of answers under half the expected time that flags a rushed session
RUSHING_SHARE = 0.8

MASTERY_ADJUSTMENTS: dict[EngagementLevel, float] = {
    "high": 0.0,
    "medium": 0.0,
    "low": -0.05,
    "avoidance": -0.10,
}

MIN_QUESTIONS_FOR_ANALYSIS = 3
INSUFFICIENT_DATA_CONFIDENCE = 0.3

ENGAGEMENT_LABELS: dict[EngagementLevel, str] = {
    "high": "High engagement",
    "medium": "Medium engagement",
    "low": "Low engagement",
    "avoidance": "Avoidance",
}


def analyze_engagement(
    metrics: EngagementMetrics,
    expected_time_per_question_ms: float = EXPECTED_TIME_PER_QUESTION_MS,
) -> EngagementSignal:
    """Classify a session as high / medium / low / avoidance.

    Cues are checked in order: completion and early exit, answer pace, then
    overall session duration. A later cue can lower the level but never lift
    it out of avoidance.
    """
    if expected_time_per_question_ms <= 0:
        raise ValueError("expected_time_per_question_ms must be positive")

    if metrics.questions_answered < MIN_QUESTIONS_FOR_ANALYSIS:
        return EngagementSignal(
            level="medium",
            confidence=INSUFFICIENT_DATA_CONFIDENCE,
            reasoning=["Not enough answers to analyze engagement"],
            impact_on_mastery=0.0,
        )

    reasoning: list[str] = []
    level: EngagementLevel = "medium"
    impact = 0.0
    completion_pct = round(metrics.completion_rate * 100)

    # 1. Completion and early exit
    if metrics.completion_rate < AVOIDANCE_COMPLETION_THRESHOLD and metrics.early_exit_detected:
        level = "avoidance"
        impact = MASTERY_ADJUSTMENTS["avoidance"]
        reasoning.append(f"Left the practice early (completed only {completion_pct}%)")
    elif metrics.completion_rate >= FULL_COMPLETION:
        reasoning.append("Completed the whole practice")
    elif metrics.completion_rate >= MOSTLY_COMPLETE:
        reasoning.append(f"Completed {completion_pct}% of the practice")

    # 2. Answer pace
    avg_ms = metrics.average_time_per_question_ms
    avg_seconds = round(avg_ms / 1000)
    if metrics.rushing_detected or avg_ms < expected_time_per_question_ms * RUSH_THRESHOLD:
        reasoning.append(f"Moving through questions quickly (average {avg_seconds}s)")
        if level != "avoidance":
            level = "low"
            impact = MASTERY_ADJUSTMENTS["low"]
    elif avg_ms > expected_time_per_question_ms * SLOW_THRESHOLD:
        # Could be deep thought or drifting attention: noted, not penalised.
        reasoning.append(f"Taking a long time per question (average {avg_seconds}s)")
        logger.debug(f"Slow pace observed: {avg_ms:.0f}ms per question, no penalty applied")
    else:
        reasoning.append("Normal answer pace")
        if level == "medium" and metrics.completion_rate >= FULL_COMPLETION:
            level = "high"

    # 3. Session duration against expectation
    expected_duration = metrics.questions_answered * expected_time_per_question_ms
    duration_ratio = metrics.session_duration_ms / expected_duration
    if duration_ratio < FAST_SESSION_RATIO:
        reasoning.append("Finished faster than expected")
        if level != "avoidance":
            level = "low"
            impact = min(impact, MASTERY_ADJUSTMENTS["low"])
    elif duration_ratio > SLOW_SESSION_RATIO:
        # Probably a break; not penalised.
        reasoning.append("Session ran long, likely with breaks")
        logger.debug(f"Long session observed: {duration_ratio:.2f}x expected duration, no penalty applied")

    confidence = min(0.95, 0.4 + (metrics.questions_answered / 20) * 0.55)

    return EngagementSignal(
        level=level,
        confidence=confidence,
        reasoning=reasoning,
        impact_on_mastery=min(0.0, impact),
    )


def build_engagement_metrics(
    *,
    session_start_ms: float,
    session_end_ms: float,
    questions_answered: int,
    questions_available: int,
    answer_times_ms: Sequence[float],
    early_exit: bool,
    expected_time_per_question_ms: float = EXPECTED_TIME_PER_QUESTION_MS,
) -> EngagementMetrics:
    """Summarise raw session timing into ``EngagementMetrics``."""
    completion_rate = questions_answered / questions_available if questions_available > 0 else 0.0
    average = sum(answer_times_ms) / len(answer_times_ms) if answer_times_ms else 0.0

    rush_limit = expected_time_per_question_ms * RUSH_THRESHOLD
    rushed = sum(1 for t in answer_times_ms if t < rush_limit)
    rushing = bool(answer_times_ms) and rushed / len(answer_times_ms) > RUSHING_SHARE

    return EngagementMetrics(
        session_duration_ms=session_end_ms - session_start_ms,
        questions_answered=questions_answered,
        questions_available=questions_available,
        completion_rate=completion_rate,
        average_time_per_question_ms=average,
        early_exit_detected=early_exit,
        rushing_detected=rushing,
    )


def engagement_label(level: EngagementLevel) -> str:
    return ENGAGEMENT_LABELS[level]


def engagement_signal_for(p_known: float, engagement: EngagementSignal, questions_answered: int) -> Signal:
    """Turn an engagement penalty into ``engagement`` evidence for fusion."""
    penalised = max(0.0, min(1.0, p_known + engagement.impact_on_mastery))
    return Signal(
        type=SignalType.ENGAGEMENT,
        p_known=penalised,
        recency=0.0,
        sample_size=max(0, questions_answered),
    )


__all__ = [
    "ENGAGEMENT_LABELS",
    "EXPECTED_TIME_PER_QUESTION_MS",
    "MASTERY_ADJUSTMENTS",
    "MIN_QUESTIONS_FOR_ANALYSIS",
    "analyze_engagement",
    "build_engagement_metrics",
    "engagement_label",
    "engagement_signal_for",
]
