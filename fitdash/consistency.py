from __future__ import annotations

import sqlite3
from typing import Any, Sequence

from .transform import population_stddev, round_half_up

WINDOW_DAYS = 7
MIN_ROWS = 3
MIN_PRECEDING = 2
STDDEV_WEIGHT = 2.0


def consistency_from_scores(scores: list[float]) -> int:
    return round_half_up(max(0.0, 100.0 - population_stddev(scores) * STDDEV_WEIGHT))


def compute_sleep_consistency(rows: Sequence[dict[str, Any]]) -> dict[str, int]:
    """Rolling sleep consistency for rows ordered oldest -> newest.

    Row i (i >= 2) is scored over up to 7 preceding rows plus itself, using
    only the non-null sleep scores. Rows without a sleep score, and the first
    two rows, are left out of the result (their stored value is kept).
    """
    out: dict[str, int] = {}
    if len(rows) < MIN_ROWS:
        return out

    for i in range(MIN_PRECEDING, len(rows)):
        current = rows[i].get("sleep_score")
        if current is None:
            continue
        preceding = rows[max(0, i - WINDOW_DAYS) : i]
        if len(preceding) < MIN_PRECEDING:
            continue
        scores = [float(r["sleep_score"]) for r in preceding if r.get("sleep_score") is not None]
        scores.append(float(current))
        out[rows[i]["date"]] = consistency_from_scores(scores)
    return out


def recalculate_sleep_consistency(conn: sqlite3.Connection, user_id: str) -> int:
    """Recompute and store consistency over the user's full history. Returns rows updated."""
    rows = conn.execute(
        "SELECT date, sleep_score FROM daily_metrics WHERE user_id = ? ORDER BY date ASC",
        (user_id,),
    ).fetchall()
    updates = compute_sleep_consistency([dict(r) for r in rows])
    if not updates:
        return 0
    conn.executemany(
        "UPDATE daily_metrics SET sleep_consistency = ? WHERE user_id = ? AND date = ?",
        [(value, user_id, day) for day, value in updates.items()],
    )
    return len(updates)
