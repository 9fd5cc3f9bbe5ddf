"""SQLite stores for the engine's output collaborators.

Holds recommendation overrides, regression alerts and the per-topic
``last_alerted_at`` values the regression detector needs for its cooldown.
"""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from .models import RecommendationOverride, RegressionAlert, parse_datetime

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent.parent
DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_DB_PATH = DATA_DIR / "learner_engine.db"
DB_PATH = Path(os.environ.get("LEARNER_ENGINE_DB_PATH", DEFAULT_DB_PATH))


def _open_connection() -> sqlite3.Connection:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(DB_PATH)
    connection.row_factory = sqlite3.Row
    return connection


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    """Yield a connection that commits on success and always closes."""
    connection = _open_connection()
    try:
        yield connection
        connection.commit()
    finally:
        connection.close()


def _iso(value: datetime) -> str:
    moment = parse_datetime(value)
    if moment is None:
        raise ValueError("timestamp is required")
    return moment.isoformat(timespec="milliseconds")


def init_db() -> None:
    """Initialise the schema if tables are missing."""
    with connect() as connection:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS recommendation_overrides (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                child_id TEXT NOT NULL,
                parent_id TEXT NOT NULL,
                topic TEXT NOT NULL,
                reason TEXT NOT NULL,
                custom_reason TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS regression_alerts (
                id TEXT PRIMARY KEY,
                child_id TEXT NOT NULL,
                child_name TEXT NOT NULL,
                topic TEXT NOT NULL,
                subject_id TEXT NOT NULL,
                subject_name TEXT NOT NULL,
                previous_p_known REAL NOT NULL,
                current_p_known REAL NOT NULL,
                message TEXT NOT NULL,
                created_at TEXT NOT NULL,
                dismissed INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS alert_cooldowns (
                child_id TEXT NOT NULL,
                topic TEXT NOT NULL,
                last_alerted_at TEXT NOT NULL,
                PRIMARY KEY (child_id, topic)
            )
            """
        )


# ── Overrides ─────────────────────────────────────────────────────────────────


def save_override(override: RecommendationOverride) -> None:
    with connect() as connection:
        connection.execute(
            """
            INSERT INTO recommendation_overrides (child_id, parent_id, topic, reason, custom_reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                override.child_id,
                override.parent_id,
                override.topic,
                override.reason,
                override.custom_reason,
                _iso(override.timestamp),
            ),
        )


def list_overrides(child_id: str) -> list[RecommendationOverride]:
    with connect() as connection:
        rows = connection.execute(
            "SELECT * FROM recommendation_overrides WHERE child_id = ? ORDER BY id ASC",
            (child_id,),
        ).fetchall()
    return [
        RecommendationOverride(
            child_id=row["child_id"],
            parent_id=row["parent_id"],
            topic=row["topic"],
            reason=row["reason"],
            timestamp=parse_datetime(row["created_at"]),  # type: ignore[arg-type]
            custom_reason=row["custom_reason"],
        )
        for row in rows
    ]


def overridden_topics(child_id: str, *, since: datetime | None = None) -> set[str]:
    """Topics a parent has set aside, optionally only those set aside since ``since``."""
    query = "SELECT DISTINCT topic FROM recommendation_overrides WHERE child_id = ?"
    params: list[str] = [child_id]
    if since is not None:
        query += " AND created_at >= ?"
        params.append(_iso(since))
    with connect() as connection:
        rows = connection.execute(query, params).fetchall()
    return {row["topic"] for row in rows}


def clear_overrides(child_id: str) -> int:
    """Forget every override for a child. Returns the number removed."""
    with connect() as connection:
        cursor = connection.execute(
            "DELETE FROM recommendation_overrides WHERE child_id = ?",
            (child_id,),
        )
        return cursor.rowcount


# ── Regression alerts ─────────────────────────────────────────────────────────


def _row_to_alert(row: sqlite3.Row) -> RegressionAlert:
    created_at = parse_datetime(row["created_at"])
    if created_at is None:
        raise ValueError(f"alert {row['id']} has no created_at")
    return RegressionAlert(
        id=row["id"],
        child_id=row["child_id"],
        child_name=row["child_name"],
        topic=row["topic"],
        subject_id=row["subject_id"],
        subject_name=row["subject_name"],
        previous_p_known=float(row["previous_p_known"]),
        current_p_known=float(row["current_p_known"]),
        message=row["message"],
        timestamp=created_at,
        dismissed=bool(row["dismissed"]),
        last_alerted_at=created_at,
    )


def save_alert(alert: RegressionAlert) -> None:
    """Persist an alert and move the topic's cooldown clock forward."""
    alerted_at = alert.last_alerted_at or alert.timestamp
    with connect() as connection:
        connection.execute(
            """
            INSERT OR REPLACE INTO regression_alerts
                (id, child_id, child_name, topic, subject_id, subject_name,
                 previous_p_known, current_p_known, message, created_at, dismissed)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.id,
                alert.child_id,
                alert.child_name,
                alert.topic,
                alert.subject_id,
                alert.subject_name,
                alert.previous_p_known,
                alert.current_p_known,
                alert.message,
                _iso(alert.timestamp),
                int(alert.dismissed),
            ),
        )
        connection.execute(
            """
            INSERT INTO alert_cooldowns (child_id, topic, last_alerted_at)
            VALUES (?, ?, ?)
            ON CONFLICT(child_id, topic) DO UPDATE SET
                last_alerted_at = MAX(alert_cooldowns.last_alerted_at, excluded.last_alerted_at)
            """,
            (alert.child_id, alert.topic, _iso(alerted_at)),
        )


def list_alerts(child_id: str, *, include_dismissed: bool = False) -> list[RegressionAlert]:
    query = "SELECT * FROM regression_alerts WHERE child_id = ?"
    if not include_dismissed:
        query += " AND dismissed = 0"
    query += " ORDER BY created_at DESC"
    with connect() as connection:
        rows = connection.execute(query, (child_id,)).fetchall()
    return [_row_to_alert(row) for row in rows]


def dismiss_alert(alert_id: str) -> bool:
    """Mark an alert dismissed. Returns False when no such alert exists."""
    with connect() as connection:
        cursor = connection.execute(
            "UPDATE regression_alerts SET dismissed = 1 WHERE id = ?",
            (alert_id,),
        )
        return cursor.rowcount > 0


def get_alert_cooldowns(child_id: str) -> dict[str, datetime]:
    """Topic -> last_alerted_at for one child."""
    with connect() as connection:
        rows = connection.execute(
            "SELECT topic, last_alerted_at FROM alert_cooldowns WHERE child_id = ?",
            (child_id,),
        ).fetchall()
    cooldowns: dict[str, datetime] = {}
    for row in rows:
        moment = parse_datetime(row["last_alerted_at"])
        if moment is not None:
            cooldowns[row["topic"]] = moment
    return cooldowns


__all__ = [
    "DB_PATH",
    "clear_overrides",
    "connect",
    "dismiss_alert",
    "get_alert_cooldowns",
    "init_db",
    "list_alerts",
    "list_overrides",
    "overridden_topics",
    "save_alert",
    "save_override",
]
