"""Learner profile lifecycle: quiz replay through BKT and fused evidence."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable, Sequence

from loguru import logger

from .bkt import bkt_update, calculate_trend, get_bkt_params
from .models import BKTParams, FusedSignal, LearnerProfile, QuizResult, Signal, TopicMastery
from .signals import fuse_signals

PERFORMANCE_WINDOW_SIZE = 10


def initialize_profile(child_id: str, now: datetime) -> LearnerProfile:
    return LearnerProfile(child_id=child_id, topic_mastery={}, last_updated=now)


def new_topic_mastery(topic: str, subject_id: str, params: BKTParams, now: datetime) -> TopicMastery:
    return TopicMastery(
        topic=topic,
        subject_id=subject_id,
        p_known=params.p_init,
        attempts=0,
        last_attempt=now,
        first_attempt=now,
    )


def _advance(previous: datetime, now: datetime) -> datetime:
    return now if now > previous else previous


def update_topic_mastery(
    existing: TopicMastery | None,
    *,
    topic: str,
    subject_id: str,
    answers: Sequence[bool],
    params: BKTParams,
    now: datetime,
) -> TopicMastery:
    """Run each answer through BKT and return the updated record."""
    base = existing or new_topic_mastery(topic, subject_id, params, now)

    p_known = base.p_known
    correct_count = base.correct_count
    incorrect_count = base.incorrect_count
    window = list(base.performance_window)

    for correct in answers:
        p_known = bkt_update(p_known, correct, params)
        if correct:
            correct_count += 1
        else:
            incorrect_count += 1
        window.append(1 if correct else 0)
    window = window[-PERFORMANCE_WINDOW_SIZE:]

    return replace(
        base,
        p_known=p_known,
        attempts=base.attempts + len(answers),
        correct_count=correct_count,
        incorrect_count=incorrect_count,
        performance_window=window,
        recent_trend=calculate_trend(window),
        last_attempt=_advance(base.last_attempt, now) if answers else base.last_attempt,
    )


def process_quiz_result(
    profile: LearnerProfile,
    quiz: QuizResult,
    *,
    grade: int | None,
    now: datetime,
) -> LearnerProfile:
    """Fold one completed quiz into a copy of ``profile``."""
    params = get_bkt_params(grade)
    topics = dict(profile.topic_mastery)
    topics[quiz.topic] = update_topic_mastery(
        topics.get(quiz.topic),
        topic=quiz.topic,
        subject_id=quiz.subject_id,
        answers=quiz.answers,
        params=params,
        now=now,
    )
    logger.debug(
        f"Processed quiz for child={profile.child_id} topic={quiz.topic!r}: "
        f"{sum(quiz.answers)}/{len(quiz.answers)} correct, p_known={topics[quiz.topic].p_known:.3f}"
    )
    return replace(
        profile,
        topic_mastery=topics,
        total_quizzes=profile.total_quizzes + 1,
        total_questions=profile.total_questions + len(quiz.answers),
        last_updated=now,
    )


def bootstrap_profile(
    child_id: str,
    quizzes: Iterable[QuizResult],
    *,
    grade: int | None,
    now: datetime,
) -> LearnerProfile:
    """Rebuild a profile by replaying quiz history oldest first."""
    profile = initialize_profile(child_id, now)
    history = sorted(quizzes, key=lambda q: q.taken_at)
    for quiz in history:
        profile = process_quiz_result(profile, quiz, grade=grade, now=quiz.taken_at)
    logger.info(
        f"Bootstrapped profile for child={child_id}: {len(history)} quizzes, "
        f"{len(profile.topic_mastery)} topics"
    )
    return replace(profile, last_updated=now)


def apply_fused_signal(mastery: TopicMastery, fused: FusedSignal, now: datetime) -> TopicMastery:
    """Pull ``p_known`` toward the fused estimate in proportion to its confidence."""
    if fused.confidence <= 0:
        return mastery
    weight = min(1.0, fused.confidence)
    p_known = mastery.p_known + weight * (fused.p_known - mastery.p_known)
    return replace(
        mastery,
        p_known=max(0.0, min(1.0, p_known)),
        last_attempt=_advance(mastery.last_attempt, now),
    )


def apply_signals(
    profile: LearnerProfile,
    *,
    topic: str,
    subject_id: str,
    signals: Sequence[Signal],
    grade: int | None,
    now: datetime,
) -> LearnerProfile:
    """Fuse evidence for one topic and fold it into a copy of ``profile``."""
    fused = fuse_signals(signals)
    if fused.confidence <= 0:
        return profile

    topics = dict(profile.topic_mastery)
    current = topics.get(topic) or new_topic_mastery(topic, subject_id, get_bkt_params(grade), now)
    topics[topic] = apply_fused_signal(current, fused, now)
    logger.debug(
        f"Applied {len(signals)} signals to child={profile.child_id} topic={topic!r}: "
        f"fused={fused.p_known:.3f} confidence={fused.confidence:.3f} dominant={fused.dominant_signal.value}"
    )
    return replace(profile, topic_mastery=topics, last_updated=now)


__all__ = [
    "PERFORMANCE_WINDOW_SIZE",
    "apply_fused_signal",
    "apply_signals",
    "bootstrap_profile",
    "initialize_profile",
    "new_topic_mastery",
    "process_quiz_result",
    "update_topic_mastery",
]
