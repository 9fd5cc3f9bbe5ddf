"""Route tests for app.py."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from learner_engine.models import PrerequisiteRelationship, RecommendationOverride


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    from learner_engine import store
    db_path = tmp_path / "test.db"
    store.DB_PATH = db_path
    store.init_db()
    yield
    if db_path.exists():
        db_path.unlink()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from learner_engine.app import app
    return TestClient(app)


def _iso(days_ago: float = 0) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days_ago)).isoformat()


def _profile(**topics: float) -> dict:
    return {
        "child_id": "c1",
        "topic_mastery": {
            name: {
                "topic": name,
                "subject_id": "math",
                "p_known": p_known,
                "attempts": 12,
                "last_attempt": _iso(),
            }
            for name, p_known in topics.items()
        },
        "total_quizzes": 3,
        "total_questions": 12,
    }


def _quiz(answers: list[bool], topic: str = "fractions") -> dict:
    return {"topic": topic, "subject_id": "math", "answers": answers, "taken_at": _iso()}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestQuizRoute:
    def test_new_learner(self, client):
        response = client.post("/profiles/quiz", json={"child_id": "c1", "grade": 5, "quiz": _quiz([True, True])})
        assert response.status_code == 200
        body = response.json()
        assert body["profile"]["child_id"] == "c1"
        assert body["profile"]["topic_mastery"]["fractions"]["attempts"] == 2
        assert body["alerts"] == []

    def test_regression_raises_one_alert_then_cools_down(self, client):
        payload = {
            "profile": _profile(fractions=0.9),
            "grade": 5,
            "child_name": "Maya",
            "subject_names": {"math": "Math"},
            "quiz": _quiz([False]),
        }
        first = client.post("/profiles/quiz", json=payload).json()
        assert len(first["alerts"]) == 1
        alert = first["alerts"][0]
        assert alert["message"] == "Maya seems to be struggling with fractions (Math)"

        second = client.post("/profiles/quiz", json=payload).json()
        assert second["alerts"] == []

        listed = client.get("/alerts/c1").json()["alerts"]
        assert [a["id"] for a in listed] == [alert["id"]]

        dismissed = client.post(f"/alerts/{alert['id']}/dismiss")
        assert dismissed.status_code == 200
        assert client.get("/alerts/c1").json()["alerts"] == []
        assert len(client.get("/alerts/c1", params={"include_dismissed": True}).json()["alerts"]) == 1

    def test_bad_payload(self, client):
        response = client.post("/profiles/quiz", json={"child_id": "c1", "quiz": {"topic": "fractions"}})
        assert response.status_code == 400


class TestProfileRoutes:
    def test_decayed_profile(self, client):
        profile = _profile(fractions=0.85)
        profile["topic_mastery"]["fractions"]["last_attempt"] = _iso(days_ago=56.5)
        response = client.post("/profiles/decayed", json={"profile": profile})
        assert response.status_code == 200
        assert response.json()["topic_mastery"]["fractions"]["p_known"] == pytest.approx(0.564, abs=1e-3)

    def test_topic_list_instead_of_mapping_is_rejected(self, client):
        response = client.post("/profiles/decayed", json={"profile": {"child_id": "c", "topic_mastery": [{"topic": "x"}]}})
        assert response.status_code == 400

    def test_mastered_topic_gets_first_probe_date(self, client):
        payload = {"profile": _profile(fractions=0.85), "grade": 5, "quiz": _quiz([True])}
        mastery = client.post("/profiles/quiz", json=payload).json()["profile"]["topic_mastery"]["fractions"]
        assert mastery["probe_interval_days"] == 28
        assert mastery["next_probe_at"] is not None

    def test_failed_probe_demotes_topic(self, client):
        profile = _profile(fractions=0.9)
        profile["topic_mastery"]["fractions"]["next_probe_at"] = _iso(days_ago=1)
        profile["topic_mastery"]["fractions"]["probe_interval_days"] = 56
        response = client.post(
            "/profiles/probe-result", json={"profile": profile, "topic": "fractions", "correct": 1, "total": 3}
        )
        assert response.status_code == 200
        mastery = response.json()["topic_mastery"]["fractions"]
        assert mastery["p_known"] == 0.75
        assert mastery["probe_interval_days"] == 28

    def test_probe_result_for_unknown_topic(self, client):
        response = client.post(
            "/profiles/probe-result", json={"profile": _profile(fractions=0.9), "topic": "shapes", "correct": 3, "total": 3}
        )
        assert response.status_code == 404

    def test_probe_result_with_more_correct_than_asked(self, client):
        response = client.post(
            "/profiles/probe-result", json={"profile": _profile(fractions=0.9), "topic": "fractions", "correct": 4, "total": 3}
        )
        assert response.status_code == 400


class TestSignalRoutes:
    def test_fuse_empty(self, client):
        body = client.post("/signals/fuse", json={"signals": []}).json()
        assert body["p_known"] == 0.5
        assert body["confidence"] == 0.0

    def test_fuse_rejects_invalid_signal(self, client):
        response = client.post("/signals/fuse", json={"signals": [{"type": "quiz", "p_known": 1.5}]})
        assert response.status_code == 400

    def test_engagement_insufficient(self, client):
        metrics = {
            "session_duration_ms": 10_000,
            "questions_answered": 2,
            "questions_available": 10,
            "completion_rate": 0.2,
            "average_time_per_question_ms": 5_000,
        }
        body = client.post("/engagement/analyze", json={"metrics": metrics}).json()
        assert body["level"] == "medium"
        assert body["confidence"] == 0.3
        assert body["label"] == "Medium engagement"

    def test_engagement_missing_metrics(self, client):
        assert client.post("/engagement/analyze", json={}).status_code == 400


class TestRecommendationRoutes:
    def test_recommendations_respect_overrides(self, client):
        profile = _profile(fractions=0.2, decimals=0.6, shapes=0.9)
        response = client.post(
            "/recommendations/overrides",
            json={"child_id": "c1", "parent_id": "p1", "topic": "fractions", "reason": "too_hard"},
        )
        assert response.status_code == 202

        body = client.post(
            "/recommendations",
            json={"profile": profile, "topics": ["fractions", "decimals", "shapes", "angles"], "count": 3},
        ).json()
        topics = [r["topic"] for r in body["recommendations"]]
        assert len(topics) == 3
        assert "fractions" not in topics

    def test_profile_that_is_not_an_object_is_rejected(self, client):
        assert client.post("/recommendations", json={"profile": "oops"}).status_code == 400

    def test_cleared_override_topic_comes_back(self, client):
        profile = _profile(fractions=0.2, decimals=0.6, shapes=0.9)
        topics = ["fractions", "decimals", "shapes", "angles"]
        client.post(
            "/recommendations/overrides",
            json={"child_id": "c1", "parent_id": "p1", "topic": "fractions", "reason": "too_hard"},
        )
        hidden = client.post("/recommendations", json={"profile": profile, "topics": topics, "count": 4}).json()
        assert "fractions" not in [r["topic"] for r in hidden["recommendations"]]

        cleared = client.post("/recommendations/overrides/c1/clear")
        assert cleared.status_code == 200
        assert cleared.json()["cleared"] == 1

        shown = client.post("/recommendations", json={"profile": profile, "topics": topics, "count": 4}).json()
        assert "fractions" in [r["topic"] for r in shown["recommendations"]]

    def test_old_override_no_longer_hides_topic(self, client):
        from learner_engine import store
        store.save_override(
            RecommendationOverride(
                child_id="c1",
                parent_id="p1",
                topic="fractions",
                reason="too_hard",
                timestamp=datetime.now(timezone.utc) - timedelta(days=40),
            )
        )
        profile = _profile(fractions=0.2, decimals=0.6, shapes=0.9)
        body = client.post(
            "/recommendations",
            json={"profile": profile, "topics": ["fractions", "decimals", "shapes", "angles"], "count": 4},
        ).json()
        assert "fractions" in [r["topic"] for r in body["recommendations"]]

    def test_override_with_bad_reason_is_still_accepted(self, client):
        response = client.post(
            "/recommendations/overrides",
            json={"child_id": "c1", "parent_id": "p1", "topic": "fractions", "reason": "whatever"},
        )
        assert response.status_code == 202

    def test_upcoming_test_makes_topic_urgent(self, client):
        profile = _profile(decimals=0.6)
        test = {"id": "t1", "subject_id": "math", "date": _iso(days_ago=-3), "topics": ["decimals"]}
        body = client.post(
            "/recommendations",
            json={"profile": profile, "upcoming_tests": [test], "count": 1},
        ).json()
        assert body["recommendations"][0]["topic"] == "decimals"
        assert body["recommendations"][0]["priority"] == "urgent"


class TestAlertRoutes:
    def test_dismiss_unknown_alert(self, client):
        assert client.post("/alerts/missing/dismiss").status_code == 404


class TestQuizPlanRoute:
    def test_plan_orders_easy_to_hard(self, client):
        profile = _profile(sub=0.6, mul=0.3, add=0.9)
        response = client.post(
            "/quizzes/plan",
            json={"profile": profile, "subject_id": "math", "topics": ["sub", "mul", "add"], "question_count": 3},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["adaptive"] is True
        assert body["review_mode"] is False
        assert [(q["topic"], q["target_difficulty"]) for q in body["questions"]] == [
            ("add", "easy"),
            ("sub", "medium"),
            ("mul", "easy"),
        ]

    def test_plan_without_profile(self, client):
        body = client.post("/quizzes/plan", json={"subject_id": "math", "topics": ["a", "b"], "question_count": 5}).json()
        assert body["adaptive"] is False
        assert [q["topic"] for q in body["questions"]] == ["a", "b"]

    def test_plan_needs_subject(self, client):
        assert client.post("/quizzes/plan", json={"topics": ["a"]}).status_code == 400


@pytest.fixture
def detector(monkeypatch):
    import learner_engine.app as app_module

    app_module.prerequisite_cache.clear()
    mock = MagicMock(
        return_value=[PrerequisiteRelationship("fractions", "decimals", 0.9, "Decimals are fractions in disguise.")]
    )
    monkeypatch.setattr(app_module, "detect_prerequisites", mock)
    yield mock
    app_module.prerequisite_cache.clear()


class TestPrerequisiteRoute:
    def test_uses_configured_model_and_caches(self, client, detector):
        from learner_engine.app import settings

        payload = {"profile": _profile(fractions=0.3, decimals=0.6), "grade": 4, "subject_names": {"math": "Math"}}
        first = client.post("/prerequisites", json=payload)
        second = client.post("/prerequisites", json=payload)

        assert first.status_code == 200
        assert first.json() == second.json()
        assert first.json()["messages"] == [
            'Strengthen "decimals" before "fractions". Decimals are fractions in disguise.'
        ]
        detector.assert_called_once()
        weak, subject_topics, subject_name, grade = detector.call_args.args
        assert [t.topic for t in weak] == ["fractions"]
        assert subject_name == "Math"
        assert grade == 4
        assert detector.call_args.kwargs == {"model": settings.ai_model, "max_retries": settings.ai_max_retries}

    def test_no_weak_topics_skips_detection(self, client, detector):
        body = client.post("/prerequisites", json={"profile": _profile(shapes=0.9)}).json()
        assert body["relationships"] == []
        detector.assert_not_called()

    def test_missing_profile(self, client, detector):
        assert client.post("/prerequisites", json={}).status_code == 400
