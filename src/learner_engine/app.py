from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Iterator

from fastapi import Body, FastAPI, HTTPException, status
from loguru import logger

from . import store
from .adaptive import DEFAULT_QUESTION_COUNT, plan_quiz
from .alerts import scan_for_regressions
from .config import configure_logging, load_settings
from .engagement import analyze_engagement, engagement_label
from .forgetting import apply_forgetting_curve_to_profile
from .models import (
    goal_from_dict,
    metrics_from_dict,
    parse_datetime,
    profile_from_dict,
    quiz_from_dict,
    signal_from_dict,
    to_dict,
    upcoming_test_from_dict,
)
from .prerequisites import PrerequisiteCache, detect_prerequisites, prerequisite_message, prerequisites_for_profile
from .probes import ensure_probes_scheduled, process_probe_result
from .profiles import initialize_profile, process_quiz_result
from .recommendations import rank_topics, record_override
from .signals import fuse_signals

settings = load_settings()
configure_logging(settings.log_level)

# Ensure the database schema exists even when lifespan hooks are not triggered (e.g. in tests).
store.init_db()

prerequisite_cache = PrerequisiteCache()


@asynccontextmanager
async def lifespan(_: FastAPI):
    store.init_db()
    yield


app = FastAPI(title="Learner Engine", lifespan=lifespan)


@contextmanager
def _bad_request() -> Iterator[None]:
    """Turn payload decoding errors into a 400."""
    try:
        yield
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.debug(f"Rejected payload: {exc!r}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid payload: {exc}") from exc


@app.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "decay_enabled": settings.decay_enabled}


@app.post("/profiles/quiz")
async def submit_quiz(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Fold a quiz into the profile and raise alerts for regressed topics."""
    now = datetime.now(timezone.utc)
    with _bad_request():
        quiz = quiz_from_dict(payload["quiz"])
        raw_profile = payload.get("profile")
        previous = profile_from_dict(raw_profile) if raw_profile else None
        child_id = previous.child_id if previous else str(payload["child_id"])
        grade = payload.get("grade")
        grade = int(grade) if grade is not None else None
        child_name = str(payload.get("child_name") or child_id)
        subject_names = dict(payload.get("subject_names") or {})

    profile = process_quiz_result(previous or initialize_profile(child_id, now), quiz, grade=grade, now=now)
    profile = ensure_probes_scheduled(profile, now)

    alerts = scan_for_regressions(
        previous,
        profile,
        child_name=child_name,
        now=now,
        last_alerted=store.get_alert_cooldowns(child_id),
        subject_names=subject_names,
        cooldown_days=settings.alert_cooldown_days,
    )
    for alert in alerts:
        store.save_alert(alert)

    return {"profile": to_dict(profile), "alerts": [to_dict(alert) for alert in alerts]}


@app.post("/profiles/decayed")
async def decayed_profile(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    with _bad_request():
        profile = profile_from_dict(payload["profile"])
    decayed = apply_forgetting_curve_to_profile(profile, now, enabled=settings.decay_enabled)
    return to_dict(decayed)


@app.post("/profiles/probe-result")
async def probe_result(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Record a mastery probe for one topic and reschedule the next one."""
    now = datetime.now(timezone.utc)
    with _bad_request():
        profile = profile_from_dict(payload["profile"])
        topic = str(payload["topic"])
        correct = int(payload["correct"])
        total = int(payload["total"])
        if correct < 0 or total < 0 or correct > total:
            raise ValueError("correct must be between 0 and total")

    mastery = profile.topic_mastery.get(topic)
    if mastery is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown topic {topic!r}")

    updated = process_probe_result(mastery, correct, total, now)
    profile = replace(profile, topic_mastery={**profile.topic_mastery, topic: updated}, last_updated=now)
    return to_dict(profile)


@app.post("/signals/fuse")
async def fuse(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    with _bad_request():
        signals = [signal_from_dict(item) for item in payload.get("signals") or []]
    return to_dict(fuse_signals(signals))


@app.post("/engagement/analyze")
async def engagement(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    with _bad_request():
        metrics = metrics_from_dict(payload["metrics"])
        expected = int(payload.get("expected_time_per_question_ms") or settings.expected_time_per_question_ms)
        result = analyze_engagement(metrics, expected)
    return {**to_dict(result), "label": engagement_label(result.level)}


@app.post("/recommendations")
async def recommendations(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    with _bad_request():
        profile = profile_from_dict(payload["profile"])
        topics = [str(topic) for topic in payload.get("topics") or profile.topic_mastery.keys()]
        tests = [upcoming_test_from_dict(item) for item in payload.get("upcoming_tests") or []]
        goals = [goal_from_dict(item) for item in payload.get("learning_goals") or []]
        count = int(payload.get("count") or settings.recommendation_count)

    window = settings.override_window_days
    since = now - timedelta(days=window) if window is not None else None
    ranked = rank_topics(
        topics,
        profile,
        now=now,
        upcoming_tests=tests,
        learning_goals=goals,
        weights=settings.scoring_weights,
        count=count,
        overridden=store.overridden_topics(profile.child_id, since=since),
        decay_enabled=settings.decay_enabled,
    )
    return {"child_id": profile.child_id, "recommendations": [to_dict(r) for r in ranked]}


@app.post("/recommendations/overrides", status_code=status.HTTP_202_ACCEPTED)
async def override_recommendation(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Best effort: always accepted, failures only show up in the log."""
    now = datetime.now(timezone.utc)
    record_override(
        store.save_override,
        child_id=str(payload.get("child_id") or ""),
        parent_id=str(payload.get("parent_id") or ""),
        topic=str(payload.get("topic") or ""),
        reason=str(payload.get("reason") or ""),
        now=now,
        custom_reason=payload.get("custom_reason"),
    )
    return {"status": "accepted"}


@app.post("/recommendations/overrides/{child_id}/clear")
async def clear_overrides(child_id: str) -> dict[str, Any]:
    cleared = store.clear_overrides(child_id)
    logger.info(f"Cleared {cleared} recommendation overrides for {child_id!r}")
    return {"child_id": child_id, "cleared": cleared}


@app.post("/quizzes/plan")
async def quiz_plan(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Pick and order quiz topics from the child's profile."""
    now = datetime.now(timezone.utc)
    with _bad_request():
        raw_profile = payload.get("profile")
        profile = profile_from_dict(raw_profile) if raw_profile else None
        subject_id = str(payload["subject_id"])
        topics = [str(topic) for topic in payload.get("topics") or []]
        question_count = int(payload.get("question_count") or DEFAULT_QUESTION_COUNT)
        if question_count < 0:
            raise ValueError("question_count must be >= 0")
        last_session_at = parse_datetime(payload.get("last_session_at"))
        allow_difficult = bool(payload.get("allow_difficult_questions", True))

    plan = plan_quiz(
        profile,
        subject_id=subject_id,
        topics=topics,
        question_count=question_count,
        now=now,
        last_session_at=last_session_at,
        allow_difficult_questions=allow_difficult,
    )
    return to_dict(plan)


@app.post("/prerequisites")
def prerequisites(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """AI prerequisite hints for the child's weak topics, cached per subject.

    Plain ``def`` so the blocking model call runs in the threadpool.
    """
    with _bad_request():
        profile = profile_from_dict(payload["profile"])
        grade = payload.get("grade")
        grade = int(grade) if grade is not None else None
        subject_names = {str(k): str(v) for k, v in dict(payload.get("subject_names") or {}).items()}
        subject_id = payload.get("subject_id")
        subject_id = str(subject_id) if subject_id is not None else None

    detect = partial(detect_prerequisites, model=settings.ai_model, max_retries=settings.ai_max_retries)
    relationships = prerequisites_for_profile(
        profile,
        grade=grade,
        cache=prerequisite_cache,
        subject_names=subject_names,
        subject_id=subject_id,
        detect=detect,
    )
    return {
        "child_id": profile.child_id,
        "relationships": [to_dict(rel) for rel in relationships],
        "messages": [prerequisite_message(rel) for rel in relationships],
    }


@app.get("/alerts/{child_id}")
async def alerts(child_id: str, include_dismissed: bool = False) -> dict[str, Any]:
    items = store.list_alerts(child_id, include_dismissed=include_dismissed)
    return {"child_id": child_id, "alerts": [to_dict(alert) for alert in items]}


@app.post("/alerts/{alert_id}/dismiss")
async def dismiss(alert_id: str) -> dict[str, Any]:
    if not store.dismiss_alert(alert_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    return {"id": alert_id, "dismissed": True}


def main() -> None:
    import uvicorn

    uvicorn.run("learner_engine.app:app", host="127.0.0.1", port=8000, reload=True)
