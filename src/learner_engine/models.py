from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Mapping, cast

Trend = Literal["improving", "stable", "declining"]
Difficulty = Literal["easy", "medium", "hard"]
MasteryLevel = Literal["weak", "learning", "mastered"]
EngagementLevel = Literal["high", "medium", "low", "avoidance"]
ScoreConfidence = Literal["low", "medium", "high"]
RecommendationCategory = Literal["weakness", "growth", "maintenance"]
RecommendationPriority = Literal["urgent", "important", "review"]
OverrideReason = Literal["too_easy", "too_hard", "wrong_priority", "other"]

TRENDS: tuple[Trend, ...] = ("improving", "stable", "declining")
OVERRIDE_REASONS: tuple[OverrideReason, ...] = ("too_easy", "too_hard", "wrong_priority", "other")


class SignalType(str, Enum):
    """Source of a piece of mastery evidence."""

    EVALUATION = "evaluation"
    QUIZ = "quiz"
    ENGAGEMENT = "engagement"
    PARENT_NOTE = "parent_note"


def _check_probability(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


@dataclass(slots=True, frozen=True)
class BKTParams:
    p_init: float
    p_learn: float
    p_guess: float
    p_slip: float


@dataclass(slots=True)
class TopicMastery:
    topic: str
    subject_id: str
    p_known: float
    attempts: int
    last_attempt: datetime
    recent_trend: Trend = "stable"
    correct_count: int = 0
    incorrect_count: int = 0
    performance_window: list[int] = field(default_factory=list)
    first_attempt: datetime | None = None
    next_probe_at: datetime | None = None
    probe_interval_days: int | None = None


@dataclass(slots=True)
class LearnerProfile:
    child_id: str
    topic_mastery: dict[str, TopicMastery] = field(default_factory=dict)
    total_quizzes: int = 0
    total_questions: int = 0
    last_updated: datetime | None = None
    version: int = 1


@dataclass(slots=True)
class Signal:
    """One piece of evidence about a topic, tagged with where it came from."""

    type: SignalType
    p_known: float
    recency: float = 0.0
    sample_size: int = 1

    def __post_init__(self) -> None:
        self.type = SignalType(self.type)
        _check_probability("p_known", self.p_known)
        if self.recency < 0:
            raise ValueError(f"recency must be >= 0 days, got {self.recency}")
        if self.sample_size < 0:
            raise ValueError(f"sample_size must be >= 0, got {self.sample_size}")


@dataclass(slots=True)
class FusedSignal:
    p_known: float
    confidence: float
    dominant_signal: SignalType


@dataclass(slots=True)
class EngagementMetrics:
    session_duration_ms: float
    questions_answered: int
    questions_available: int
    completion_rate: float
    average_time_per_question_ms: float
    early_exit_detected: bool = False
    rushing_detected: bool = False


@dataclass(slots=True)
class EngagementSignal:
    level: EngagementLevel
    confidence: float
    reasoning: list[str] = field(default_factory=list)
    impact_on_mastery: float = 0.0


@dataclass(slots=True)
class RegressionAlert:
    id: str
    child_id: str
    child_name: str
    topic: str
    subject_id: str
    subject_name: str
    previous_p_known: float
    current_p_known: float
    message: str
    timestamp: datetime
    dismissed: bool = False
    last_alerted_at: datetime | None = None


@dataclass(slots=True)
class ScoringWeights:
    mastery: float = 0.30
    urgency: float = 0.40
    goals: float = 0.30


@dataclass(slots=True)
class TopicScore:
    topic: str
    score: int
    mastery_score: int
    urgency_score: int
    goal_score: int
    confidence: ScoreConfidence
    reasoning: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Recommendation:
    topic: str
    priority: RecommendationPriority
    score: int
    confidence: ScoreConfidence
    category: RecommendationCategory
    reasoning: list[str] = field(default_factory=list)


@dataclass(slots=True)
class LearningGoal:
    id: str
    child_id: str
    subject_id: str
    topic: str
    target_date: datetime | None = None
    description: str = ""


@dataclass(slots=True)
class UpcomingTest:
    id: str
    child_id: str
    subject_id: str
    date: datetime
    topics: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RecommendationOverride:
    child_id: str
    parent_id: str
    topic: str
    reason: OverrideReason
    timestamp: datetime
    custom_reason: str | None = None


@dataclass(slots=True)
class QuizResult:
    """Answers from one completed quiz on a single topic."""

    topic: str
    subject_id: str
    answers: list[bool]
    taken_at: datetime


@dataclass(slots=True)
class PrerequisiteRelationship:
    topic: str
    prerequisite: str
    confidence: float
    rationale: str = ""


# ── Serialisation helpers ─────────────────────────────────────────────────────


def parse_datetime(value: Any) -> datetime | None:
    """Accept datetimes, ISO 8601 strings or epoch milliseconds; return aware UTC."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, (int, float)):
        moment = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _require_datetime(value: Any, name: str) -> datetime:
    moment = parse_datetime(value)
    if moment is None:
        raise ValueError(f"{name} is required")
    return moment


def _require_mapping(data: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise TypeError(f"{name} must be an object, got {type(data).__name__}")
    return data


def ensure_trend(value: str | None) -> Trend:
    normalized = (value or "stable").strip().lower()
    if normalized not in TRENDS:
        raise ValueError(f"Unsupported trend: {value}")
    return cast(Trend, normalized)


def ensure_override_reason(value: str) -> OverrideReason:
    normalized = value.strip().lower()
    if normalized not in OVERRIDE_REASONS:
        raise ValueError(f"Unsupported override reason: {value}")
    return cast(OverrideReason, normalized)


def mastery_from_dict(data: Mapping[str, Any]) -> TopicMastery:
    data = _require_mapping(data, "topic mastery")
    return TopicMastery(
        topic=str(data["topic"]),
        subject_id=str(data.get("subject_id") or ""),
        p_known=float(data["p_known"]),
        attempts=int(data.get("attempts") or 0),
        last_attempt=_require_datetime(data.get("last_attempt"), "last_attempt"),
        recent_trend=ensure_trend(data.get("recent_trend")),
        correct_count=int(data.get("correct_count") or 0),
        incorrect_count=int(data.get("incorrect_count") or 0),
        performance_window=[int(v) for v in data.get("performance_window") or []],
        first_attempt=parse_datetime(data.get("first_attempt")),
        next_probe_at=parse_datetime(data.get("next_probe_at")),
        probe_interval_days=data.get("probe_interval_days"),
    )


def profile_from_dict(data: Mapping[str, Any]) -> LearnerProfile:
    data = _require_mapping(data, "profile")
    raw_topics = _require_mapping(data.get("topic_mastery") or {}, "topic_mastery")
    return LearnerProfile(
        child_id=str(data["child_id"]),
        topic_mastery={str(key): mastery_from_dict(value) for key, value in raw_topics.items()},
        total_quizzes=int(data.get("total_quizzes") or 0),
        total_questions=int(data.get("total_questions") or 0),
        last_updated=parse_datetime(data.get("last_updated")),
        version=int(data.get("version") or 1),
    )


def signal_from_dict(data: Mapping[str, Any]) -> Signal:
    data = _require_mapping(data, "signal")
    return Signal(
        type=SignalType(str(data["type"])),
        p_known=float(data["p_known"]),
        recency=float(data.get("recency") or 0.0),
        sample_size=int(data.get("sample_size", 1)),
    )


def metrics_from_dict(data: Mapping[str, Any]) -> EngagementMetrics:
    data = _require_mapping(data, "metrics")
    return EngagementMetrics(
        session_duration_ms=float(data["session_duration_ms"]),
        questions_answered=int(data["questions_answered"]),
        questions_available=int(data.get("questions_available") or 0),
        completion_rate=float(data["completion_rate"]),
        average_time_per_question_ms=float(data["average_time_per_question_ms"]),
        early_exit_detected=bool(data.get("early_exit_detected", False)),
        rushing_detected=bool(data.get("rushing_detected", False)),
    )


def goal_from_dict(data: Mapping[str, Any]) -> LearningGoal:
    data = _require_mapping(data, "learning goal")
    return LearningGoal(
        id=str(data.get("id") or ""),
        child_id=str(data.get("child_id") or ""),
        subject_id=str(data.get("subject_id") or ""),
        topic=str(data["topic"]),
        target_date=parse_datetime(data.get("target_date")),
        description=str(data.get("description") or ""),
    )


def upcoming_test_from_dict(data: Mapping[str, Any]) -> UpcomingTest:
    data = _require_mapping(data, "upcoming test")
    return UpcomingTest(
        id=str(data.get("id") or ""),
        child_id=str(data.get("child_id") or ""),
        subject_id=str(data.get("subject_id") or ""),
        date=_require_datetime(data.get("date"), "date"),
        topics=[str(t) for t in data.get("topics") or []],
    )


def quiz_from_dict(data: Mapping[str, Any]) -> QuizResult:
    data = _require_mapping(data, "quiz")
    return QuizResult(
        topic=str(data["topic"]),
        subject_id=str(data.get("subject_id") or ""),
        answers=[bool(a) for a in data.get("answers") or []],
        taken_at=_require_datetime(data.get("taken_at"), "taken_at"),
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def to_dict(obj: Any) -> dict[str, Any]:
    """Convert any model dataclass into a JSON-ready dict."""

    return _jsonable(asdict(obj))


__all__ = [
    "BKTParams",
    "Difficulty",
    "EngagementLevel",
    "EngagementMetrics",
    "EngagementSignal",
    "FusedSignal",
    "LearnerProfile",
    "LearningGoal",
    "MasteryLevel",
    "OVERRIDE_REASONS",
    "OverrideReason",
    "PrerequisiteRelationship",
    "QuizResult",
    "Recommendation",
    "RecommendationCategory",
    "RecommendationOverride",
    "RecommendationPriority",
    "RegressionAlert",
    "ScoreConfidence",
    "ScoringWeights",
    "Signal",
    "SignalType",
    "TRENDS",
    "TopicMastery",
    "TopicScore",
    "Trend",
    "UpcomingTest",
    "ensure_override_reason",
    "ensure_trend",
    "goal_from_dict",
    "mastery_from_dict",
    "metrics_from_dict",
    "parse_datetime",
    "profile_from_dict",
    "quiz_from_dict",
    "signal_from_dict",
    "upcoming_test_from_dict",
    "to_dict",
]
