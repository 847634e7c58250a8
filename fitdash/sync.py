from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from . import config
from .db import db, now_iso, today_iso
from .google_fit import fetch_fit_data
from .metrics import save_metrics
from .transform import transform_fit_data

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    start_date: str
    end_date: str
    days_synced: int


def default_range(start_date: str | None, end_date: str | None) -> tuple[str, str]:
    end = end_date or today_iso()
    start = start_date or (date.fromisoformat(today_iso()) - timedelta(days=config.SYNC_DEFAULT_DAYS)).isoformat()
    return start, end


def _start_run(user_id: str, start: str, end: str) -> int:
    with db() as conn:
        cur = conn.execute(
            """
            INSERT INTO sync_runs(user_id, started_at, range_start, range_end, status)
            VALUES(?, ?, ?, ?, 'running')
            """,
            (user_id, now_iso(), start, end),
        )
        return int(cur.lastrowid)


def _finish_run(run_id: int, *, status: str, days_synced: int = 0, error: str | None = None) -> None:
    with db() as conn:
        conn.execute(
            "UPDATE sync_runs SET finished_at=?, status=?, days_synced=?, error=? WHERE id=?",
            (now_iso(), status, days_synced, error, run_id),
        )


def sync_user(user_id: str, start_date: str | None = None, end_date: str | None = None) -> SyncResult:
    """Pull Google Fit buckets for the range, derive daily metrics and store them."""
    start, end = default_range(start_date, end_date)
    logger.info("Starting sync for user %s from %s to %s", user_id, start, end)

    run_id = _start_run(user_id, start, end)
    try:
        data = fetch_fit_data(user_id, start, end)
        metrics = transform_fit_data(data, user_id)
        logger.info("Transformed %d days of metrics", len(metrics))
        saved = save_metrics(user_id, metrics)
    except Exception as e:
        _finish_run(run_id, status="failed", error=str(e))
        raise

    _finish_run(run_id, status="ok", days_synced=saved)
    logger.info("Saved %d days of metrics for user %s", saved, user_id)
    return SyncResult(start_date=start, end_date=end, days_synced=saved)


def last_sync_run(user_id: str) -> dict | None:
    with db() as conn:
        row = conn.execute(
            "SELECT * FROM sync_runs WHERE user_id = ? ORDER BY started_at DESC, id DESC LIMIT 1",
            (user_id,),
        ).fetchone()
    return dict(row) if row else None
