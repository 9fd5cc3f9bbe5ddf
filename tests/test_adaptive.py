"""Tests for adaptive.py: difficulty mixing and quiz topic selection."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

from learner_engine.adaptive import (
    DifficultyMix,
    TopicClassification,
    classify_topics,
    has_profile_data,
    mix_difficulty,
    order_topics,
    plan_quiz,
    select_probe_topics,
    select_review_topics,
    should_enter_review_mode,
)
from learner_engine.models import LearnerProfile, TopicMastery

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _mastery(
    topic: str,
    p_known: float,
    *,
    days_ago: float = 1,
    subject: str = "math",
    next_probe_in: float | None = None,
) -> TopicMastery:
    return TopicMastery(
        topic=topic,
        subject_id=subject,
        p_known=p_known,
        attempts=10,
        last_attempt=NOW - timedelta(days=days_ago),
        next_probe_at=NOW + timedelta(days=next_probe_in) if next_probe_in is not None else None,
        probe_interval_days=28 if next_probe_in is not None else None,
    )


def _profile(*masteries: TopicMastery) -> LearnerProfile:
    return LearnerProfile(child_id="c1", topic_mastery={m.topic: m for m in masteries})


def _names(prefix: str, count: int) -> list[str]:
    return [f"{prefix}{i}" for i in range(count)]


class TestClassify:
    def test_thresholds_and_unseen_topics(self):
        profile = _profile(_mastery("a", 0.49), _mastery("b", 0.5), _mastery("c", 0.79), _mastery("d", 0.8))
        result = classify_topics(profile, ["a", "b", "c", "d", "new"])
        assert result.weak == ["a"]
        assert result.learning == ["b", "c", "new"]
        assert result.mastered == ["d"]

    def test_no_profile_means_everything_is_learning(self):
        result = classify_topics(None, ["x", "y"])
        assert result == TopicClassification(learning=["x", "y"])


class TestMixDifficulty:
    def test_twenty_fifty_thirty(self):
        classification = TopicClassification(
            weak=_names("w", 4), learning=_names("l", 6), mastered=_names("m", 3)
        )
        mix = mix_difficulty(classification, 10, rng=random.Random(7))
        assert len(mix.review_topics) == 2
        assert len(mix.target_topics) == 5
        assert len(mix.weak_topics) == 3
        assert mix.question_count == 10
        assert set(mix.review_topics) <= set(classification.mastered)
        assert len(set(mix.weak_topics)) == 3

    def test_frustrated_child_gets_fewer_weak_topics(self):
        classification = TopicClassification(
            weak=_names("w", 4), learning=_names("l", 8), mastered=_names("m", 3)
        )
        mix = mix_difficulty(classification, 10, allow_difficult_questions=False, rng=random.Random(7))
        assert len(mix.weak_topics) == 1
        assert len(mix.review_topics) == 2
        assert len(mix.target_topics) == 7
        assert mix.question_count == 10

    def test_half_counts_round_up(self):
        classification = TopicClassification(
            weak=_names("w", 6), learning=_names("l", 10), mastered=_names("m", 5)
        )
        mix = mix_difficulty(classification, 15, rng=random.Random(3))
        assert len(mix.weak_topics) == 5
        assert len(mix.review_topics) == 3
        assert len(mix.target_topics) == 7

    def test_short_categories_shrink_the_quiz(self):
        classification = TopicClassification(weak=["w0"], learning=["l0", "l1"], mastered=[])
        mix = mix_difficulty(classification, 10)
        assert mix == DifficultyMix(review_topics=[], target_topics=["l0", "l1"], weak_topics=["w0"], question_count=3)

    def test_order_is_review_target_weak(self):
        mix = DifficultyMix(review_topics=["m"], target_topics=["l"], weak_topics=["w"], question_count=3)
        assert order_topics(mix) == ["m", "l", "w"]


class TestReviewMode:
    def test_three_week_gap(self):
        assert should_enter_review_mode(NOW - timedelta(days=21), NOW) is True
        assert should_enter_review_mode(NOW - timedelta(days=20, hours=23), NOW) is False
        assert should_enter_review_mode(None, NOW) is False

    def test_review_topics_are_stale_learned_and_oldest_first(self):
        profile = _profile(
            _mastery("a", 0.7, days_ago=30),
            _mastery("b", 0.9, days_ago=40),
            _mastery("c", 0.6, days_ago=50),
            _mastery("d", 0.9, days_ago=10),
            _mastery("e", 0.9, days_ago=60, subject="english"),
            _mastery("f", 0.8, days_ago=25),
            _mastery("g", 0.66, days_ago=22),
        )
        assert select_review_topics(profile, "math", NOW) == ["b", "a", "f"]
        assert select_review_topics(None, "math", NOW) == []

    def test_due_mastered_topics_most_overdue_first(self):
        profile = _profile(
            _mastery("x", 0.9, next_probe_in=-5),
            _mastery("y", 0.9, next_probe_in=-10),
            _mastery("z", 0.9, next_probe_in=-1),
            _mastery("w", 0.7, next_probe_in=-20),
            _mastery("v", 0.9, next_probe_in=3),
            _mastery("u", 0.9, next_probe_in=-30, subject="english"),
        )
        assert select_probe_topics(profile, "math", NOW) == ["y", "x"]


class TestPlanQuiz:
    def test_profile_needs_three_topics(self):
        assert has_profile_data(None) is False
        assert has_profile_data(_profile(_mastery("a", 0.5), _mastery("b", 0.5))) is False
        assert has_profile_data(_profile(_mastery("a", 0.5), _mastery("b", 0.5), _mastery("c", 0.5))) is True

    def test_thin_profile_gets_plain_plan(self):
        plan = plan_quiz(
            _profile(_mastery("a", 0.2)),
            subject_id="math",
            topics=["a", "b", "c"],
            question_count=2,
            now=NOW,
        )
        assert plan.adaptive is False
        assert [(q.topic, q.target_difficulty) for q in plan.questions] == [("a", "medium"), ("b", "medium")]

    def test_returning_child_gets_due_and_stale_topics_first(self):
        profile = _profile(
            _mastery("add", 0.9, days_ago=2, next_probe_in=-2),
            _mastery("old", 0.85, days_ago=40),
            _mastery("sub", 0.6),
            _mastery("mul", 0.3),
            _mastery("div", 0.7, days_ago=30),
        )
        plan = plan_quiz(
            profile,
            subject_id="math",
            topics=["sub", "mul", "div"],
            question_count=4,
            now=NOW,
            last_session_at=NOW - timedelta(days=30),
        )
        assert plan.adaptive is True
        assert plan.review_mode is True
        assert plan.probe_topics == ["add"]
        assert plan.gap_review_topics == ["old", "div"]
        assert [(q.topic, q.target_difficulty, q.mastery_percentage) for q in plan.questions] == [
            ("add", "easy", 90),
            ("old", "easy", 85),
            ("sub", "medium", 60),
            ("div", "medium", 70),
            ("mul", "easy", 30),
        ]
        assert plan.mix.question_count == 5

    def test_recent_child_skips_gap_review(self):
        profile = _profile(
            _mastery("old", 0.85, days_ago=40),
            _mastery("sub", 0.6),
            _mastery("mul", 0.3),
        )
        plan = plan_quiz(
            profile,
            subject_id="math",
            topics=["sub", "mul"],
            question_count=2,
            now=NOW,
            last_session_at=NOW - timedelta(days=3),
        )
        assert plan.review_mode is False
        assert plan.gap_review_topics == []
        assert "old" not in [q.topic for q in plan.questions]
