"""AI prerequisite detection: "fix X first, then Y will make sense".

Lookups go to OpenAI and are cached per (child, subject) in a
``PrerequisiteCache`` that the caller owns. Every failure degrades to an
empty result; prerequisite hints are never allowed to break scoring.
"""

from __future__ import annotations

import json
import os
import threading
import time
from typing import Any, Callable, Mapping, Sequence

from loguru import logger

from .bkt import get_mastery_level
from .models import LearnerProfile, PrerequisiteRelationship, TopicMastery

MIN_CONFIDENCE = 0.7
MAX_RESULTS = 5
MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 1.0
DEFAULT_MODEL = "gpt-4o-mini"

# (weak_topics, subject_topics, subject_name, grade) -> relationships
Detector = Callable[..., list[PrerequisiteRelationship]]


def ai_available() -> bool:
    """Return True if an OpenAI API key is configured."""
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return bool(os.environ.get("OPENAI_API_KEY"))


def _get_client() -> Any:
    """Lazy-load the OpenAI client."""
    try:
        from openai import OpenAI
        return OpenAI()
    except Exception as exc:
        logger.warning(f"OpenAI client unavailable: {exc}")
        return None


class PrerequisiteCache:
    """Thread-safe map of (child_id, subject_id) -> detected relationships."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], list[PrerequisiteRelationship]] = {}
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, child_id: str, subject_id: str) -> list[PrerequisiteRelationship] | None:
        with self._lock:
            cached = self._entries.get((child_id, subject_id))
            return list(cached) if cached is not None else None

    def put(self, child_id: str, subject_id: str, relationships: Sequence[PrerequisiteRelationship]) -> None:
        with self._lock:
            self._entries[(child_id, subject_id)] = list(relationships)

    def _key_lock(self, key: tuple[str, str]) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def get_or_compute(
        self,
        child_id: str,
        subject_id: str,
        compute: Callable[[], list[PrerequisiteRelationship]],
    ) -> list[PrerequisiteRelationship]:
        """Return the cached entry, computing it at most once per key.

        Callers for the same key wait on that key's lock while ``compute``
        runs; other keys are served without waiting.
        """
        cached = self.get(child_id, subject_id)
        if cached is not None:
            return cached

        with self._key_lock((child_id, subject_id)):
            cached = self.get(child_id, subject_id)
            if cached is not None:
                return cached
            result = list(compute())
            self.put(child_id, subject_id, result)
            return list(result)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_relationships(text: str) -> list[PrerequisiteRelationship]:
    """Parse the model's JSON reply, keep confident entries, best first."""
    data = json.loads(_strip_code_fence(text))
    if isinstance(data, Mapping):
        data = data.get("relationships", [])
    if not isinstance(data, list):
        logger.warning("Prerequisite reply was not a list, ignoring it")
        return []

    relationships: list[PrerequisiteRelationship] = []
    for entry in data:
        if not isinstance(entry, Mapping):
            continue
        topic = str(entry.get("topic") or "").strip()
        prerequisite = str(entry.get("prerequisite") or "").strip()
        if not topic or not prerequisite:
            continue
        try:
            confidence = float(entry.get("confidence") or 0.0)
        except (TypeError, ValueError):
            continue
        if confidence < MIN_CONFIDENCE:
            continue
        relationships.append(
            PrerequisiteRelationship(
                topic=topic,
                prerequisite=prerequisite,
                confidence=min(1.0, confidence),
                rationale=str(entry.get("rationale") or "").strip(),
            )
        )

    relationships.sort(key=lambda rel: rel.confidence, reverse=True)
    return relationships[:MAX_RESULTS]


def _build_prompt(
    weak_topics: Sequence[TopicMastery],
    all_topics: Sequence[TopicMastery],
    subject_name: str,
    grade: int | None,
) -> str:
    return (
        f"Subject: {subject_name}\n"
        f"Grade: {grade if grade is not None else 'unknown'}\n"
        f"Weak topics: {', '.join(t.topic for t in weak_topics)}\n"
        f"All topics: {', '.join(t.topic for t in all_topics)}\n\n"
        "For each weak topic, name another topic from the list that should be"
        " strengthened first, if one exists. Return JSON with key"
        " 'relationships': a list of objects with topic, prerequisite,"
        " confidence (0-1) and rationale (one short sentence for a parent)."
        " Return an empty list when there are no clear dependencies."
    )


def detect_prerequisites(
    weak_topics: Sequence[TopicMastery],
    all_topics: Sequence[TopicMastery],
    subject_name: str,
    grade: int | None,
    *,
    client: Any = None,
    model: str = DEFAULT_MODEL,
    max_retries: int = MAX_RETRIES,
    retry_delay: float = RETRY_DELAY_SECONDS,
) -> list[PrerequisiteRelationship]:
    """Ask the model for topic dependencies. Returns [] on any failure."""
    if not weak_topics:
        return []

    if client is None:
        if not ai_available():
            logger.warning("Prerequisite detection skipped: no OpenAI API key configured")
            return []
        client = _get_client()
        if client is None:
            return []

    prompt = _build_prompt(weak_topics, all_topics, subject_name, grade)
    attempts = max(1, max_retries + 1)
    for attempt in range(attempts):
        try:
            response = client.chat.completions.create(
                model=model,
                messages=[
                    {
                        "role": "system",
                        "content": "You are an expert primary-school curriculum planner. Reply with STRICT JSON.",
                    },
                    {"role": "user", "content": prompt},
                ],
                temperature=0.2,
                max_tokens=600,
                response_format={"type": "json_object"},
            )
            content = (response.choices[0].message.content or "").strip()
            if not content:
                raise ValueError("empty response from model")
            relationships = parse_relationships(content)
            logger.info(
                f"Detected {len(relationships)} prerequisite relationships for {subject_name!r} "
                f"({len(weak_topics)} weak topics)"
            )
            return relationships
        except Exception as exc:
            logger.warning(
                f"Prerequisite detection attempt {attempt + 1}/{attempts} failed for {subject_name!r}: {exc}"
            )
            if attempt < attempts - 1:
                time.sleep(retry_delay * (2 ** attempt))

    return []


def prerequisites_for_profile(
    profile: LearnerProfile,
    *,
    grade: int | None,
    cache: PrerequisiteCache,
    subject_names: Mapping[str, str] | None = None,
    subject_id: str | None = None,
    detect: Detector | None = None,
) -> list[PrerequisiteRelationship]:
    """Prerequisites for every subject in which the child has weak topics."""
    detector = detect or detect_prerequisites
    names = subject_names or {}

    topics = list(profile.topic_mastery.values())
    if subject_id is not None:
        topics = [t for t in topics if t.subject_id == subject_id]

    by_subject: dict[str, list[TopicMastery]] = {}
    for mastery in topics:
        if get_mastery_level(mastery.p_known) == "weak":
            by_subject.setdefault(mastery.subject_id, []).append(mastery)

    results: list[PrerequisiteRelationship] = []
    for subject, weak in by_subject.items():
        subject_topics = [t for t in topics if t.subject_id == subject]
        results.extend(
            cache.get_or_compute(
                profile.child_id,
                subject,
                lambda weak=weak, subject_topics=subject_topics, subject=subject: detector(
                    weak, subject_topics, names.get(subject, subject), grade
                ),
            )
        )
    return results


def prerequisite_message(relationship: PrerequisiteRelationship) -> str:
    message = f'Strengthen "{relationship.prerequisite}" before "{relationship.topic}".'
    if relationship.rationale:
        message = f"{message} {relationship.rationale}"
    return message


__all__ = [
    "MAX_RESULTS",
    "MIN_CONFIDENCE",
    "PrerequisiteCache",
    "ai_available",
    "detect_prerequisites",
    "parse_relationships",
    "prerequisite_message",
    "prerequisites_for_profile",
]
