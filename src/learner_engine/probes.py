"""Spaced mastery probes: re-check mastered topics at growing intervals."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from loguru import logger

from .models import LearnerProfile, TopicMastery

INITIAL_INTERVAL_DAYS = 28
MAX_INTERVAL_DAYS = 168
PASSING_ACCURACY = 2 / 3  # two of three probe questions
FAILED_PROBE_PKNOWN = 0.75
MIN_PROBE_PKNOWN = 0.8


@dataclass(slots=True)
class ProbeResult:
    correct: int
    total: int
    passed: bool


def needs_probe(mastery: TopicMastery, now: datetime) -> bool:
    if mastery.p_known < MIN_PROBE_PKNOWN:
        return False
    if mastery.next_probe_at is None:
        return False
    return now >= mastery.next_probe_at


def schedule_next_probe(
    mastery: TopicMastery,
    now: datetime,
    result: ProbeResult | None = None,
) -> TopicMastery:
    if not mastery.probe_interval_days:
        interval = INITIAL_INTERVAL_DAYS
    elif result is None:
        interval = mastery.probe_interval_days
    elif result.passed:
        interval = min(mastery.probe_interval_days * 2, MAX_INTERVAL_DAYS)
    else:
        interval = INITIAL_INTERVAL_DAYS

    logger.debug(f"Next probe for {mastery.topic!r} in {interval} days")
    return replace(
        mastery,
        next_probe_at=now + timedelta(days=interval),
        probe_interval_days=interval,
    )


def process_probe_result(mastery: TopicMastery, correct: int, total: int, now: datetime) -> TopicMastery:
    """Demote on a failed probe, refresh ``last_attempt`` on a pass, then reschedule."""
    accuracy = correct / total if total > 0 else 0.0
    result = ProbeResult(correct=correct, total=total, passed=accuracy >= PASSING_ACCURACY)

    if result.passed:
        logger.info(f"Probe passed for {mastery.topic!r} ({accuracy:.0%})")
        updated = replace(mastery, last_attempt=max(mastery.last_attempt, now))
    else:
        logger.info(
            f"Probe failed for {mastery.topic!r} ({accuracy:.0%}), "
            f"demoting {mastery.p_known:.2f} -> {FAILED_PROBE_PKNOWN}"
        )
        updated = replace(mastery, p_known=FAILED_PROBE_PKNOWN)

    return schedule_next_probe(updated, now, result)


def ensure_probes_scheduled(profile: LearnerProfile, now: datetime) -> LearnerProfile:
    """Give every mastered topic without a probe date its first probe."""
    scheduled = {
        topic: schedule_next_probe(mastery, now)
        for topic, mastery in profile.topic_mastery.items()
        if mastery.p_known >= MIN_PROBE_PKNOWN and mastery.next_probe_at is None
    }
    if not scheduled:
        return profile
    return replace(profile, topic_mastery={**profile.topic_mastery, **scheduled})


__all__ = [
    "FAILED_PROBE_PKNOWN",
    "INITIAL_INTERVAL_DAYS",
    "MAX_INTERVAL_DAYS",
    "PASSING_ACCURACY",
    "ProbeResult",
    "ensure_probes_scheduled",
    "needs_probe",
    "process_probe_result",
    "schedule_next_probe",
]
