"""Regression detection: alert parents when a mastered topic slips.

The detector is a pure predicate. Callers persist ``last_alerted_at`` per
(child, topic) and pass it back in; see ``store.py`` for the SQLite version.
"""

from __future__ import annotations

from datetime import datetime
from typing import Mapping

from loguru import logger

from .forgetting import days_since
from .models import LearnerProfile, RegressionAlert, TopicMastery

REGRESSION_THRESHOLD = 0.70          # alert when p_known falls below this
PREVIOUS_MASTERY_THRESHOLD = 0.80    # ...but only if it used to be at least this
MIN_DROP_THRESHOLD = 0.10            # ...and it fell by at least this much
ALERT_COOLDOWN_DAYS = 14


def detect_regression(current: TopicMastery, previous: TopicMastery | None) -> bool:
    if previous is None:
        return False

    was_mastered = previous.p_known >= PREVIOUS_MASTERY_THRESHOLD
    is_below = current.p_known < REGRESSION_THRESHOLD
    drop = previous.p_known - current.p_known
    is_significant = drop >= MIN_DROP_THRESHOLD

    logger.debug(
        f"Regression check for {current.topic!r}: was_mastered={was_mastered} "
        f"below_threshold={is_below} drop={drop:.3f}"
    )
    return was_mastered and is_below and is_significant


def should_alert(
    last_alerted_at: datetime | None,
    now: datetime,
    cooldown_days: int = ALERT_COOLDOWN_DAYS,
) -> bool:
    """True when the topic has never alerted or its cooldown has passed."""
    if last_alerted_at is None:
        return True
    elapsed = days_since(last_alerted_at, now)
    expired = elapsed >= cooldown_days
    logger.debug(f"Alert cooldown: {elapsed} days since last alert, expired={expired}")
    return expired


def format_alert_message(child_name: str, topic: str, subject_name: str) -> str:
    return f"{child_name} seems to be struggling with {topic} ({subject_name})"


def alert_id(child_id: str, topic: str, timestamp: datetime) -> str:
    return f"alert_{child_id}_{topic}_{int(timestamp.timestamp() * 1000)}"


def create_regression_alert(
    *,
    child_id: str,
    child_name: str,
    mastery: TopicMastery,
    subject_name: str,
    previous_p_known: float,
    now: datetime,
) -> RegressionAlert:
    logger.info(
        f"Creating regression alert for child={child_id} topic={mastery.topic!r} "
        f"({previous_p_known:.2f} -> {mastery.p_known:.2f})"
    )
    return RegressionAlert(
        id=alert_id(child_id, mastery.topic, now),
        child_id=child_id,
        child_name=child_name,
        topic=mastery.topic,
        subject_id=mastery.subject_id,
        subject_name=subject_name,
        previous_p_known=previous_p_known,
        current_p_known=mastery.p_known,
        message=format_alert_message(child_name, mastery.topic, subject_name),
        timestamp=now,
        dismissed=False,
        last_alerted_at=now,
    )


def scan_for_regressions(
    previous: LearnerProfile | None,
    current: LearnerProfile,
    *,
    child_name: str,
    now: datetime,
    last_alerted: Mapping[str, datetime] | None = None,
    subject_names: Mapping[str, str] | None = None,
    cooldown_days: int = ALERT_COOLDOWN_DAYS,
) -> list[RegressionAlert]:
    """Compare two snapshots of a profile and build alerts for regressed topics."""
    if previous is None:
        return []

    cooldowns = last_alerted or {}
    names = subject_names or {}
    alerts: list[RegressionAlert] = []

    for topic, mastery in current.topic_mastery.items():
        before = previous.topic_mastery.get(topic)
        if before is None or not detect_regression(mastery, before):
            continue
        if not should_alert(cooldowns.get(topic), now, cooldown_days):
            continue
        alerts.append(
            create_regression_alert(
                child_id=current.child_id,
                child_name=child_name,
                mastery=mastery,
                subject_name=names.get(mastery.subject_id, mastery.subject_id),
                previous_p_known=before.p_known,
                now=now,
            )
        )
    return alerts


__all__ = [
    "ALERT_COOLDOWN_DAYS",
    "MIN_DROP_THRESHOLD",
    "PREVIOUS_MASTERY_THRESHOLD",
    "REGRESSION_THRESHOLD",
    "alert_id",
    "create_regression_alert",
    "detect_regression",
    "format_alert_message",
    "scan_for_regressions",
    "should_alert",
]
