"""Forgetting curve: time-based mastery decay applied when mastery is read.

Decay is a read-only transform. ``last_attempt`` is never rewritten, so two
reads at different times give different results on purpose.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime

from .bkt import LEARNING_THRESHOLD, MASTERED_THRESHOLD
from .models import LearnerProfile, TopicMastery

# Weekly multipliers by current mastery band
DECAY_MASTERED = 0.95
DECAY_LEARNING = 0.92
DECAY_WEAK = 0.88

MIN_PKNOWN = 0.05  # residual knowledge never fully disappears

FORGETTING_ENABLED = True


def days_since(then: datetime, now: datetime) -> int:
    """Whole days elapsed between two instants; future instants count as zero."""
    seconds = (now - then).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 86400)


def decay_rate_for(p_known: float) -> float:
    if p_known >= MASTERED_THRESHOLD:
        return DECAY_MASTERED
    if p_known >= LEARNING_THRESHOLD:
        return DECAY_LEARNING
    return DECAY_WEAK


def decayed_p_known(p_known: float, days: float) -> float:
    weeks = max(0.0, days) / 7
    value = p_known * math.pow(decay_rate_for(p_known), weeks)
    return min(1.0, max(MIN_PKNOWN, value))


def _is_enabled(enabled: bool | None) -> bool:
    return FORGETTING_ENABLED if enabled is None else enabled


def apply_forgetting_curve(
    mastery: TopicMastery,
    now: datetime,
    *,
    enabled: bool | None = None,
) -> TopicMastery:
    """Return a copy of ``mastery`` with ``p_known`` aged to ``now``."""
    if not _is_enabled(enabled):
        return mastery
    days = days_since(mastery.last_attempt, now)
    return replace(mastery, p_known=decayed_p_known(mastery.p_known, days))


def apply_forgetting_curve_to_profile(
    profile: LearnerProfile,
    now: datetime,
    *,
    enabled: bool | None = None,
) -> LearnerProfile:
    if not _is_enabled(enabled):
        return profile
    decayed = {
        key: apply_forgetting_curve(mastery, now, enabled=True)
        for key, mastery in profile.topic_mastery.items()
    }
    return replace(profile, topic_mastery=decayed)


__all__ = [
    "DECAY_LEARNING",
    "DECAY_MASTERED",
    "DECAY_WEAK",
    "FORGETTING_ENABLED",
    "MIN_PKNOWN",
    "apply_forgetting_curve",
    "apply_forgetting_curve_to_profile",
    "days_since",
    "decay_rate_for",
    "decayed_p_known",
]
