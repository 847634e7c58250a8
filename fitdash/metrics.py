from __future__ import annotations

import sqlite3
from typing import Any, Iterable

from .consistency import recalculate_sleep_consistency
from .db import db, now_iso

METRIC_FIELDS = [
    "rhr",
    "hrv",
    "sleep_score",
    "sleep_consistency",
    "workout_intensity",
    "calories",
    "protein",
    "carbs",
    "fats",
    "steps",
    "deep_sleep_minutes",
    "total_sleep_minutes",
    "spo2",
    "recovery_score",
]


def get_metrics(user_id: str, days: int = 30) -> list[dict]:
    """Newest `days` rows, returned oldest -> newest."""
    with db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM daily_metrics
            WHERE user_id = ?
            ORDER BY date DESC
            LIMIT ?
            """,
            (user_id, days),
        ).fetchall()
    return [dict(r) for r in reversed(rows)]


def get_metric_by_date(user_id: str, date: str) -> dict | None:
    with db() as conn:
        row = conn.execute(
            "SELECT * FROM daily_metrics WHERE user_id = ? AND date = ?", (user_id, date)
        ).fetchone()
    return dict(row) if row else None


def _write_metric(conn: sqlite3.Connection, user_id: str, metric: dict[str, Any]) -> None:
    # Only the fields present in `metric` are written on update; absent ones keep their value.
    fields = [f for f in METRIC_FIELDS if f in metric]
    now = now_iso()
    params: dict[str, Any] = {f: metric[f] for f in fields}
    params.update(user_id=user_id, date=metric["date"], created_at=now, updated_at=now)

    columns = ["user_id", "date", *fields, "created_at", "updated_at"]
    placeholders = ", ".join(f":{c}" for c in columns)
    assignments = ",\n              ".join(f"{f}=excluded.{f}" for f in [*fields, "updated_at"])
    conn.execute(
        f"""
        INSERT INTO daily_metrics({", ".join(columns)})
        VALUES({placeholders})
        ON CONFLICT(user_id, date) DO UPDATE SET
              {assignments}
        """,
        params,
    )


def upsert_metric(user_id: str, metric: dict[str, Any]) -> dict:
    """Insert or update one day, then recompute rolling sleep consistency."""
    with db() as conn:
        _write_metric(conn, user_id, metric)
        recalculate_sleep_consistency(conn, user_id)
    return get_metric_by_date(user_id, metric["date"])  # type: ignore[return-value]


def save_metrics(user_id: str, metrics: Iterable[dict[str, Any]]) -> int:
    """Upsert a batch in one transaction; consistency is recomputed once at the end."""
    count = 0
    with db() as conn:
        for m in metrics:
            _write_metric(conn, user_id, m)
            count += 1
        if count:
            recalculate_sleep_consistency(conn, user_id)
    return count
