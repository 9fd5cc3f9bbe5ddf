"""Learner modelling engine: mastery tracking, alerts and recommendations."""

from .adaptive import classify_topics, mix_difficulty, plan_quiz, select_probe_topics, select_review_topics
from .bkt import bkt_update, get_bkt_params, get_mastery_level
from .engagement import analyze_engagement
from .forgetting import apply_forgetting_curve, apply_forgetting_curve_to_profile
from .models import LearnerProfile, Signal, SignalType, TopicMastery
from .prerequisites import PrerequisiteCache, prerequisites_for_profile
from .recommendations import generate_recommendations, rank_topics, score_topic
from .signals import fuse_signals

__all__ = [
    "LearnerProfile",
    "PrerequisiteCache",
    "Signal",
    "SignalType",
    "TopicMastery",
    "analyze_engagement",
    "apply_forgetting_curve",
    "apply_forgetting_curve_to_profile",
    "bkt_update",
    "classify_topics",
    "fuse_signals",
    "generate_recommendations",
    "get_bkt_params",
    "get_mastery_level",
    "mix_difficulty",
    "plan_quiz",
    "prerequisites_for_profile",
    "rank_topics",
    "score_topic",
    "select_probe_topics",
    "select_review_topics",
]
