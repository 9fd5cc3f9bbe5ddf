"""Adaptive quiz planning: which topics to ask about, and how hard.

A quiz mixes mastered topics for review, learning topics at the child's level
and weak topics for remediation. Children returning after a long gap get
extra review of topics they used to know, and mastered topics that are due
for a check-up are slipped in alongside.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from loguru import logger

from .bkt import LEARNING_THRESHOLD, MASTERED_THRESHOLD
from .forgetting import days_since
from .models import Difficulty, LearnerProfile, TopicMastery
from .probes import needs_probe

REVIEW_RATIO = 0.2
TARGET_RATIO = 0.5
WEAK_RATIO = 0.3
WEAK_RATIO_FRUSTRATED = 0.1
NEUTRAL_P_KNOWN = 0.5
MIN_PROFILE_TOPICS = 3
DEFAULT_QUESTION_COUNT = 10

REVIEW_GAP_DAYS = 21
REVIEW_SHARE = 0.30
MIN_REVIEW_PKNOWN = 0.65
MAX_GAP_REVIEW_TOPICS = 3
MAX_PROBE_TOPICS = 2


@dataclass(slots=True)
class TopicClassification:
    weak: list[str] = field(default_factory=list)
    learning: list[str] = field(default_factory=list)
    mastered: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DifficultyMix:
    review_topics: list[str] = field(default_factory=list)
    target_topics: list[str] = field(default_factory=list)
    weak_topics: list[str] = field(default_factory=list)
    question_count: int = 0


@dataclass(slots=True)
class QuestionRequest:
    topic: str
    mastery_percentage: int
    target_difficulty: Difficulty


@dataclass(slots=True)
class QuizPlan:
    adaptive: bool
    review_mode: bool
    mix: DifficultyMix
    questions: list[QuestionRequest] = field(default_factory=list)
    probe_topics: list[str] = field(default_factory=list)
    gap_review_topics: list[str] = field(default_factory=list)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def classify_topics(profile: LearnerProfile | None, topics: Sequence[str]) -> TopicClassification:
    """Group topics by mastery level; unseen topics count as learning."""
    classification = TopicClassification()
    known = profile.topic_mastery if profile is not None else {}
    for topic in topics:
        mastery = known.get(topic)
        p_known = mastery.p_known if mastery is not None else NEUTRAL_P_KNOWN
        if p_known < LEARNING_THRESHOLD:
            classification.weak.append(topic)
        elif p_known < MASTERED_THRESHOLD:
            classification.learning.append(topic)
        else:
            classification.mastered.append(topic)
    return classification


def _sample(topics: Sequence[str], count: int, rng: random.Random | None) -> list[str]:
    if count <= 0 or not topics:
        return []
    if count >= len(topics):
        return list(topics)
    return (rng or random).sample(list(topics), count)


def mix_difficulty(
    classification: TopicClassification,
    total_questions: int,
    allow_difficult_questions: bool = True,
    *,
    rng: random.Random | None = None,
) -> DifficultyMix:
    """Split a quiz 20/50/30 across review, target and weak topics.

    With difficult questions disallowed the weak share drops to 10%. Short
    categories shrink the quiz: learning topics fill whatever review and weak
    could not, and nothing is padded beyond that.
    """
    weak_ratio = WEAK_RATIO if allow_difficult_questions else WEAK_RATIO_FRUSTRATED
    review_count = _round_half_up(total_questions * REVIEW_RATIO)
    target_count = _round_half_up(total_questions * TARGET_RATIO)
    weak_count = _round_half_up(total_questions * weak_ratio)
    target_count += total_questions - (review_count + target_count + weak_count)

    review_topics = _sample(classification.mastered, review_count, rng)
    weak_topics = _sample(classification.weak, weak_count, rng)
    remaining = total_questions - len(review_topics) - len(weak_topics)
    target_topics = _sample(classification.learning, remaining, rng)

    return DifficultyMix(
        review_topics=review_topics,
        target_topics=target_topics,
        weak_topics=weak_topics,
        question_count=len(review_topics) + len(target_topics) + len(weak_topics),
    )


def order_topics(mix: DifficultyMix) -> list[str]:
    """Easy review first, target in the middle, weak topics last."""
    return [*mix.review_topics, *mix.target_topics, *mix.weak_topics]


def has_profile_data(profile: LearnerProfile | None) -> bool:
    return profile is not None and len(profile.topic_mastery) >= MIN_PROFILE_TOPICS


def should_enter_review_mode(last_session_at: datetime | None, now: datetime) -> bool:
    if last_session_at is None:
        return False
    return days_since(last_session_at, now) >= REVIEW_GAP_DAYS


def _subject_topics(profile: LearnerProfile | None, subject_id: str) -> list[TopicMastery]:
    if profile is None:
        return []
    return [m for m in profile.topic_mastery.values() if m.subject_id == subject_id]


def select_review_topics(profile: LearnerProfile | None, subject_id: str, now: datetime) -> list[str]:
    """Previously learned topics untouched for three weeks, oldest first."""
    eligible = [
        mastery
        for mastery in _subject_topics(profile, subject_id)
        if mastery.p_known >= MIN_REVIEW_PKNOWN and days_since(mastery.last_attempt, now) >= REVIEW_GAP_DAYS
    ]
    eligible.sort(key=lambda m: m.last_attempt)
    return [m.topic for m in eligible[:MAX_GAP_REVIEW_TOPICS]]


def select_probe_topics(profile: LearnerProfile | None, subject_id: str, now: datetime) -> list[str]:
    """Mastered topics due for a spaced re-check, most overdue first."""
    due = [mastery for mastery in _subject_topics(profile, subject_id) if needs_probe(mastery, now)]
    due.sort(key=lambda m: m.next_probe_at)  # type: ignore[arg-type, return-value]
    return [m.topic for m in due[:MAX_PROBE_TOPICS]]


def _target_difficulty(topic: str, mix: DifficultyMix) -> Difficulty:
    if topic in mix.weak_topics or topic in mix.review_topics:
        return "easy"
    return "medium"


def plan_quiz(
    profile: LearnerProfile | None,
    *,
    subject_id: str,
    topics: Sequence[str],
    question_count: int,
    now: datetime,
    last_session_at: datetime | None = None,
    allow_difficult_questions: bool = True,
    rng: random.Random | None = None,
) -> QuizPlan:
    """Choose and order the topics for one quiz.

    Profiles with fewer than three practised topics get a plain, non-adaptive
    plan: the topics in the order given, all at medium difficulty.
    """
    if profile is None or not has_profile_data(profile):
        mix = DifficultyMix(target_topics=list(topics)[:question_count])
        mix.question_count = len(mix.target_topics)
        neutral = _round_half_up(NEUTRAL_P_KNOWN * 100)
        questions = [QuestionRequest(topic, neutral, "medium") for topic in mix.target_topics]
        return QuizPlan(adaptive=False, review_mode=False, mix=mix, questions=questions)

    review_mode = should_enter_review_mode(last_session_at, now)
    due_probes = select_probe_topics(profile, subject_id, now)
    gap_review = select_review_topics(profile, subject_id, now) if review_mode else []

    classification = classify_topics(profile, topics)
    mix = mix_difficulty(classification, question_count, allow_difficult_questions, rng=rng)

    # Extra review topics never repeat a topic already in the quiz.
    planned = set(order_topics(mix))
    for topic in due_probes:
        if topic not in planned:
            mix.review_topics.append(topic)
            planned.add(topic)

    if gap_review:
        allowance = math.ceil(question_count * REVIEW_SHARE)
        added = 0
        for topic in gap_review:
            if added >= allowance:
                break
            if topic not in planned:
                mix.review_topics.append(topic)
                planned.add(topic)
                added += 1
    mix.question_count = len(order_topics(mix))

    logger.debug(
        f"Quiz mix for {profile.child_id!r}: review={len(mix.review_topics)} "
        f"target={len(mix.target_topics)} weak={len(mix.weak_topics)} review_mode={review_mode}"
    )

    questions: list[QuestionRequest] = []
    for topic in order_topics(mix):
        mastery = profile.topic_mastery.get(topic)
        p_known = mastery.p_known if mastery is not None else NEUTRAL_P_KNOWN
        questions.append(QuestionRequest(topic, _round_half_up(p_known * 100), _target_difficulty(topic, mix)))

    return QuizPlan(
        adaptive=True,
        review_mode=review_mode,
        mix=mix,
        questions=questions,
        probe_topics=due_probes,
        gap_review_topics=gap_review,
    )


__all__ = [
    "DEFAULT_QUESTION_COUNT",
    "DifficultyMix",
    "QuestionRequest",
    "QuizPlan",
    "REVIEW_GAP_DAYS",
    "TopicClassification",
    "classify_topics",
    "has_profile_data",
    "mix_difficulty",
    "order_topics",
    "plan_quiz",
    "select_probe_topics",
    "select_review_topics",
    "should_enter_review_mode",
]
