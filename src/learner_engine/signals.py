"""Evidence hierarchy: per-signal confidence and confidence-weighted fusion.

Evaluation (teacher-validated) > quiz > engagement > parent note. Each
signal's base weight is discounted by age and scaled by how many
observations back it, then signals are averaged by that confidence.
"""

from __future__ import annotations

import math
from typing import Sequence

from .models import FusedSignal, Signal, SignalType

SIGNAL_WEIGHTS: dict[SignalType, float] = {
    SignalType.EVALUATION: 0.95,
    SignalType.QUIZ: 0.70,
    SignalType.ENGAGEMENT: 0.60,
    SignalType.PARENT_NOTE: 0.40,
}

# Tie-break order for the dominant signal. Equal confidences resolve to the
# earlier type here, then to the earlier signal in the input list.
SIGNAL_PRIORITY: tuple[SignalType, ...] = (
    SignalType.EVALUATION,
    SignalType.QUIZ,
    SignalType.ENGAGEMENT,
    SignalType.PARENT_NOTE,
)

HALF_LIFE_DAYS = 30
RECENCY_DECAY_RATE = 0.5
SATURATION_POINT = 10

MIN_CONFIDENCE = 0.05
MAX_CONFIDENCE = 0.95

NEUTRAL_PKNOWN = 0.5
DEFAULT_DOMINANT = SignalType.QUIZ


def get_base_confidence(signal_type: SignalType) -> float:
    return SIGNAL_WEIGHTS[SignalType(signal_type)]


def apply_recency_decay(base_confidence: float, days_ago: float) -> float:
    """confidence * e^(-0.5 * days / 30), never below MIN_CONFIDENCE."""
    factor = math.exp(-RECENCY_DECAY_RATE * days_ago / HALF_LIFE_DAYS)
    return max(MIN_CONFIDENCE, base_confidence * factor)


def apply_sample_size_boost(base_confidence: float, sample_size: int) -> float:
    """Scale toward the base as observations accumulate (~63% of base at 10)."""
    if sample_size < 0:
        raise ValueError(f"sample_size must be >= 0, got {sample_size}")
    boost = 1 - math.exp(-sample_size / SATURATION_POINT)
    return base_confidence * boost


def calculate_signal_confidence(signal: Signal) -> float:
    base = get_base_confidence(signal.type)
    with_recency = apply_recency_decay(base, signal.recency)
    adjusted = apply_sample_size_boost(with_recency, signal.sample_size)
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, adjusted))


def _dominance_key(item: tuple[int, Signal, float]) -> tuple[float, int, int]:
    index, signal, confidence = item
    return (confidence, -SIGNAL_PRIORITY.index(signal.type), -index)


def fuse_signals(signals: Sequence[Signal]) -> FusedSignal:
    """Fuse signals into one estimate: sum(c_i * p_i) / sum(c_i).

    An empty list (or one carrying no weight) yields the neutral prior with
    zero confidence.
    """
    if not signals:
        return FusedSignal(p_known=NEUTRAL_PKNOWN, confidence=0.0, dominant_signal=DEFAULT_DOMINANT)

    weighted = [
        (index, signal, max(0.0, calculate_signal_confidence(signal)))
        for index, signal in enumerate(signals)
    ]
    total_weight = sum(confidence for _, _, confidence in weighted)
    if total_weight == 0:
        return FusedSignal(p_known=NEUTRAL_PKNOWN, confidence=0.0, dominant_signal=signals[0].type)

    weighted_sum = sum(confidence * signal.p_known for _, signal, confidence in weighted)
    fused = weighted_sum / total_weight
    composite = total_weight / len(weighted)
    _, dominant, _ = max(weighted, key=_dominance_key)

    return FusedSignal(
        p_known=max(0.0, min(1.0, fused)),
        confidence=max(0.0, min(1.0, composite)),
        dominant_signal=dominant.type,
    )


# ── Signal builders ───────────────────────────────────────────────────────────


def quiz_signal(correct: int, total: int, days_ago: float = 0.0) -> Signal:
    """Accuracy over a quiz as quiz evidence; an empty quiz carries no samples."""
    if total <= 0:
        return Signal(type=SignalType.QUIZ, p_known=NEUTRAL_PKNOWN, recency=days_ago, sample_size=0)
    accuracy = max(0.0, min(1.0, correct / total))
    return Signal(type=SignalType.QUIZ, p_known=accuracy, recency=days_ago, sample_size=total)


def evaluation_signal(score_fraction: float, days_ago: float = 0.0, sample_size: int = 10) -> Signal:
    """A teacher evaluation, expressed as the fraction of the rubric achieved."""
    return Signal(
        type=SignalType.EVALUATION,
        p_known=max(0.0, min(1.0, score_fraction)),
        recency=days_ago,
        sample_size=sample_size,
    )


def parent_note_signal(p_known: float, days_ago: float = 0.0) -> Signal:
    return Signal(
        type=SignalType.PARENT_NOTE,
        p_known=max(0.0, min(1.0, p_known)),
        recency=days_ago,
        sample_size=1,
    )


__all__ = [
    "HALF_LIFE_DAYS",
    "MAX_CONFIDENCE",
    "MIN_CONFIDENCE",
    "NEUTRAL_PKNOWN",
    "SATURATION_POINT",
    "SIGNAL_PRIORITY",
    "SIGNAL_WEIGHTS",
    "apply_recency_decay",
    "apply_sample_size_boost",
    "calculate_signal_confidence",
    "evaluation_signal",
    "fuse_signals",
    "get_base_confidence",
    "parent_note_signal",
    "quiz_signal",
]
