"""Multi-factor topic ranking and balanced recommendation sets.

Composite score = mastery need (30%) + test urgency (40%) + goal alignment
(30%). The final set mixes weakness, growth and maintenance topics so a
learner is never handed only their hardest material.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Callable, Iterable, Sequence

from loguru import logger

from .forgetting import apply_forgetting_curve_to_profile
from .models import (
    LearnerProfile,
    LearningGoal,
    Recommendation,
    RecommendationCategory,
    RecommendationOverride,
    RecommendationPriority,
    ScoreConfidence,
    ScoringWeights,
    TopicMastery,
    TopicScore,
    UpcomingTest,
    ensure_override_reason,
)

DEFAULT_SCORING_WEIGHTS = ScoringWeights()
DEFAULT_RECOMMENDATION_COUNT = 5

NEW_TOPIC_SCORE = 50
VERY_WEAK_PKNOWN = 0.3
VERY_WEAK_SCORE = 95
MASTERED_PKNOWN = 0.8
MAINTENANCE_SCORE = 20

URGENCY_HORIZON_DAYS = 30

EXACT_GOAL_SCORE = 100
PARTIAL_GOAL_SCORE = 70
URGENT_GOAL_DAYS = 7
URGENT_GOAL_MULTIPLIER = 1.5
NEAR_GOAL_DAYS = 30
NEAR_GOAL_MULTIPLIER = 1.2

HIGH_CONFIDENCE_ATTEMPTS = 10

WEAKNESS_MIN_SCORE = 60
GROWTH_MIN_SCORE = 30
WEAKNESS_SHARE = 0.3
GROWTH_SHARE = 0.4
MAINTENANCE_SHARE = 0.3

URGENT_MIN_URGENCY = 60
URGENT_MIN_MASTERY = 80
IMPORTANT_MIN_SCORE = 60

REASON_NEEDS_PRACTICE = "Topic needs strengthening"
REASON_TEST_SOON = "A test on this topic is coming up"
REASON_GOAL = "Matches a learning goal you set"
REASON_DECLINING = "Performance has been dropping lately"
REASON_IMPROVING = "Performance is improving, keep going"
REASON_NEW_TOPIC = "New topic, not practiced yet"

OverrideSink = Callable[[RecommendationOverride], None]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp_score(value: float) -> int:
    return max(0, min(100, _round_half_up(value)))


def _days_until(moment: datetime, now: datetime) -> int:
    return math.ceil((moment - now).total_seconds() / 86400)


def calculate_mastery_score(mastery: TopicMastery | None) -> int:
    """Inverted mastery (0-100): the less a topic is known, the higher its need."""
    if mastery is None:
        return NEW_TOPIC_SCORE
    if mastery.p_known < VERY_WEAK_PKNOWN:
        return VERY_WEAK_SCORE
    if mastery.p_known >= MASTERED_PKNOWN:
        return MAINTENANCE_SCORE
    return _clamp_score((1 - mastery.p_known) * 100)


def calculate_urgency_score(topic: str, upcoming_tests: Iterable[UpcomingTest], now: datetime) -> int:
    """Linear 0-100 ramp over the 30 days before the nearest test on ``topic``."""
    days = [
        _days_until(test.date, now)
        for test in upcoming_tests
        if topic in test.topics
    ]
    days = [d for d in days if d >= 0]
    if not days:
        return 0

    nearest = min(days)
    if nearest >= URGENCY_HORIZON_DAYS:
        return 0
    return _clamp_score(100 * (1 - nearest / URGENCY_HORIZON_DAYS))


def calculate_goal_score(topic: str, learning_goals: Sequence[LearningGoal], now: datetime) -> int:
    if not learning_goals:
        return 0

    needle = topic.strip().lower()
    best = 0.0
    for goal in learning_goals:
        goal_topic = goal.topic.strip().lower()
        if not goal_topic or not needle:
            continue
        if goal_topic == needle:
            score = float(EXACT_GOAL_SCORE)
        elif goal_topic in needle or needle in goal_topic:
            score = float(PARTIAL_GOAL_SCORE)
        else:
            continue

        if goal.target_date is not None:
            days = _days_until(goal.target_date, now)
            if days <= URGENT_GOAL_DAYS:
                score = min(100.0, score * URGENT_GOAL_MULTIPLIER)
            elif days <= NEAR_GOAL_DAYS:
                score = min(100.0, score * NEAR_GOAL_MULTIPLIER)

        best = max(best, score)

    return _clamp_score(best)


def score_confidence(attempts: int) -> ScoreConfidence:
    if attempts <= 0:
        return "low"
    if attempts < HIGH_CONFIDENCE_ATTEMPTS:
        return "medium"
    return "high"


def score_topic(
    topic: str,
    profile: LearnerProfile,
    upcoming_tests: Sequence[UpcomingTest],
    learning_goals: Sequence[LearningGoal],
    now: datetime,
    weights: ScoringWeights | None = None,
) -> TopicScore:
    weights = weights or DEFAULT_SCORING_WEIGHTS
    mastery = profile.topic_mastery.get(topic)

    mastery_score = calculate_mastery_score(mastery)
    urgency_score = calculate_urgency_score(topic, upcoming_tests, now)
    goal_score = calculate_goal_score(topic, learning_goals, now)

    composite = _clamp_score(
        mastery_score * weights.mastery
        + urgency_score * weights.urgency
        + goal_score * weights.goals
    )

    reasoning: list[str] = []
    if mastery_score >= WEAKNESS_MIN_SCORE:
        reasoning.append(REASON_NEEDS_PRACTICE)
    if urgency_score >= URGENT_MIN_URGENCY:
        reasoning.append(REASON_TEST_SOON)
    if goal_score >= PARTIAL_GOAL_SCORE:
        reasoning.append(REASON_GOAL)
    if mastery is None:
        reasoning.append(REASON_NEW_TOPIC)
    elif mastery.recent_trend == "declining":
        reasoning.append(REASON_DECLINING)
    elif mastery.recent_trend == "improving":
        reasoning.append(REASON_IMPROVING)

    return TopicScore(
        topic=topic,
        score=composite,
        mastery_score=mastery_score,
        urgency_score=urgency_score,
        goal_score=goal_score,
        confidence=score_confidence(mastery.attempts if mastery else 0),
        reasoning=reasoning,
    )


def categorize(topic_score: TopicScore) -> RecommendationCategory:
    if topic_score.mastery_score >= WEAKNESS_MIN_SCORE:
        return "weakness"
    if topic_score.mastery_score >= GROWTH_MIN_SCORE:
        return "growth"
    return "maintenance"


def prioritize(topic_score: TopicScore) -> RecommendationPriority:
    if topic_score.urgency_score >= URGENT_MIN_URGENCY or topic_score.mastery_score >= URGENT_MIN_MASTERY:
        return "urgent"
    if topic_score.score >= IMPORTANT_MIN_SCORE:
        return "important"
    return "review"


def generate_recommendations(
    scored_topics: Sequence[TopicScore],
    count: int = DEFAULT_RECOMMENDATION_COUNT,
) -> list[Recommendation]:
    """Pick a balanced set: ~30% weakness, ~40% growth, ~30% maintenance.

    Ordering rule everywhere is score descending with ties kept in input
    order. Short buckets are backfilled from the highest remaining scores, and
    the result holds exactly ``count`` distinct topics when enough exist.
    """
    if count <= 0:
        return []

    ranked: list[TopicScore] = []
    seen: set[str] = set()
    for topic_score in sorted(scored_topics, key=lambda t: t.score, reverse=True):
        if topic_score.topic in seen:
            continue
        seen.add(topic_score.topic)
        ranked.append(topic_score)
    rank_of = {t.topic: index for index, t in enumerate(ranked)}

    weakness = [t for t in ranked if categorize(t) == "weakness"]
    growth = [t for t in ranked if categorize(t) == "growth"]
    maintenance = [t for t in ranked if categorize(t) == "maintenance"]

    selected = (
        weakness[: math.ceil(count * WEAKNESS_SHARE)]
        + growth[: math.ceil(count * GROWTH_SHARE)]
        + maintenance[: math.floor(count * MAINTENANCE_SHARE)]
    )

    if len(selected) < count:
        chosen = {t.topic for t in selected}
        backfill = [t for t in ranked if t.topic not in chosen]
        selected.extend(backfill[: count - len(selected)])

    selected.sort(key=lambda t: rank_of[t.topic])

    return [
        Recommendation(
            topic=t.topic,
            priority=prioritize(t),
            score=t.score,
            confidence=t.confidence,
            category=categorize(t),
            reasoning=list(t.reasoning),
        )
        for t in selected[:count]
    ]


def rank_topics(
    topics: Iterable[str],
    profile: LearnerProfile,
    *,
    now: datetime,
    upcoming_tests: Sequence[UpcomingTest] = (),
    learning_goals: Sequence[LearningGoal] = (),
    weights: ScoringWeights | None = None,
    count: int = DEFAULT_RECOMMENDATION_COUNT,
    overridden: Iterable[str] = (),
    decay_enabled: bool | None = None,
) -> list[Recommendation]:
    """Decay the profile, score every candidate topic and build the set.

    Topics the parent has overridden are dropped before selection so their
    slots go to the next candidates.
    """
    decayed = apply_forgetting_curve_to_profile(profile, now, enabled=decay_enabled)
    skipped = set(overridden)
    candidates = [topic for topic in dict.fromkeys(topics) if topic not in skipped]

    scored = [
        score_topic(topic, decayed, upcoming_tests, learning_goals, now, weights)
        for topic in candidates
    ]
    recommendations = generate_recommendations(scored, count)

    logger.debug(
        f"Ranked {len(scored)} topics for child={profile.child_id}: "
        f"{sum(1 for r in recommendations if r.priority == 'urgent')} urgent of {len(recommendations)}"
    )
    return recommendations


def record_override(
    sink: OverrideSink,
    *,
    child_id: str,
    parent_id: str,
    topic: str,
    reason: str,
    now: datetime,
    custom_reason: str | None = None,
) -> None:
    """Store a parent's override. Best effort: failures are logged, never raised."""
    try:
        override = RecommendationOverride(
            child_id=child_id,
            parent_id=parent_id,
            topic=topic,
            reason=ensure_override_reason(reason),
            timestamp=now,
            custom_reason=custom_reason,
        )
        sink(override)
        logger.info(f"Recorded recommendation override child={child_id} topic={topic!r} reason={reason}")
    except Exception as exc:
        logger.warning(f"Failed to record override (non-blocking) child={child_id} topic={topic!r}: {exc}")


__all__ = [
    "DEFAULT_RECOMMENDATION_COUNT",
    "DEFAULT_SCORING_WEIGHTS",
    "OverrideSink",
    "calculate_goal_score",
    "calculate_mastery_score",
    "calculate_urgency_score",
    "categorize",
    "generate_recommendations",
    "prioritize",
    "rank_topics",
    "record_override",
    "score_confidence",
    "score_topic",
]
