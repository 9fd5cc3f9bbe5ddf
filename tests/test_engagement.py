"""Tests for engagement.py: session classification and penalties."""

from __future__ import annotations

import pytest

from learner_engine.engagement import (
    analyze_engagement,
    build_engagement_metrics,
    engagement_label,
    engagement_signal_for,
)
from learner_engine.models import EngagementMetrics, EngagementSignal, SignalType


def _metrics(
    *,
    answered: int = 10,
    available: int = 10,
    avg_ms: float = 30_000,
    duration_ms: float | None = None,
    early_exit: bool = False,
    rushing: bool = False,
) -> EngagementMetrics:
    return EngagementMetrics(
        session_duration_ms=duration_ms if duration_ms is not None else answered * avg_ms,
        questions_answered=answered,
        questions_available=available,
        completion_rate=answered / available,
        average_time_per_question_ms=avg_ms,
        early_exit_detected=early_exit,
        rushing_detected=rushing,
    )


class TestInsufficientData:
    def test_two_answers_is_medium_regardless(self):
        result = analyze_engagement(_metrics(answered=2, available=20, avg_ms=1_000, early_exit=True, rushing=True))
        assert result.level == "medium"
        assert result.confidence == 0.3
        assert result.impact_on_mastery == 0.0
        assert result.reasoning

    def test_non_positive_expected_time_rejected(self):
        with pytest.raises(ValueError):
            analyze_engagement(_metrics(), 0)


class TestClassification:
    def test_full_completion_normal_pace_is_high(self):
        result = analyze_engagement(_metrics())
        assert result.level == "high"
        assert result.impact_on_mastery == 0.0
        assert result.confidence == pytest.approx(0.4 + 0.5 * 0.55)

    def test_early_exit_with_low_completion_is_avoidance(self):
        result = analyze_engagement(_metrics(answered=6, available=20, avg_ms=40_000, early_exit=True))
        assert result.level == "avoidance"
        assert result.impact_on_mastery == pytest.approx(-0.10)

    def test_low_completion_without_exit_flag_is_not_avoidance(self):
        result = analyze_engagement(_metrics(answered=6, available=20, avg_ms=40_000))
        assert result.level == "medium"

    def test_rushing_is_low(self):
        result = analyze_engagement(_metrics(avg_ms=10_000))
        assert result.level == "low"
        assert result.impact_on_mastery == pytest.approx(-0.05)

    def test_rushing_flag_alone_is_low(self):
        result = analyze_engagement(_metrics(rushing=True))
        assert result.level == "low"

    def test_rushing_never_lifts_avoidance(self):
        result = analyze_engagement(
            _metrics(answered=4, available=20, avg_ms=5_000, early_exit=True)
        )
        assert result.level == "avoidance"
        assert result.impact_on_mastery == pytest.approx(-0.10)

    def test_short_session_is_low(self):
        result = analyze_engagement(_metrics(duration_ms=100_000))
        assert result.level == "low"
        assert result.impact_on_mastery == pytest.approx(-0.05)

    def test_slow_pace_and_long_session_are_not_penalised(self):
        result = analyze_engagement(_metrics(avg_ms=100_000))
        assert result.level == "medium"
        assert result.impact_on_mastery == 0.0
        assert len(result.reasoning) == 3

    def test_confidence_capped(self):
        result = analyze_engagement(_metrics(answered=40, available=40))
        assert result.confidence == 0.95

    def test_impact_is_never_positive(self):
        for metrics in [_metrics(), _metrics(avg_ms=100_000), _metrics(avg_ms=1_000)]:
            assert analyze_engagement(metrics).impact_on_mastery <= 0.0


class TestHelpers:
    def test_build_metrics_flags_rushing(self):
        metrics = build_engagement_metrics(
            session_start_ms=0,
            session_end_ms=25_000,
            questions_answered=5,
            questions_available=10,
            answer_times_ms=[5_000] * 5,
            early_exit=False,
        )
        assert metrics.completion_rate == 0.5
        assert metrics.average_time_per_question_ms == 5_000
        assert metrics.session_duration_ms == 25_000
        assert metrics.rushing_detected is True

    def test_build_metrics_without_answers(self):
        metrics = build_engagement_metrics(
            session_start_ms=0,
            session_end_ms=1_000,
            questions_answered=0,
            questions_available=0,
            answer_times_ms=[],
            early_exit=True,
        )
        assert metrics.completion_rate == 0.0
        assert metrics.rushing_detected is False

    def test_label(self):
        assert engagement_label("avoidance") == "Avoidance"

    def test_engagement_signal_applies_penalty(self):
        engagement = EngagementSignal(level="avoidance", confidence=0.6, impact_on_mastery=-0.10)
        signal = engagement_signal_for(0.7, engagement, 6)
        assert signal.type is SignalType.ENGAGEMENT
        assert signal.p_known == pytest.approx(0.6)
        assert signal.sample_size == 6
