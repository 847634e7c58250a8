from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

DB_PATH = os.getenv("DB_PATH", os.path.join(os.path.dirname(__file__), "..", "fitdash.db"))


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


@contextmanager
def db() -> Iterator[sqlite3.Connection]:
    conn = _connect()
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def init_db() -> None:
    with db() as conn:
        # Identity comes from an external provider; we only mirror the profile.
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
              id TEXT PRIMARY KEY,
              email TEXT UNIQUE,
              first_name TEXT,
              last_name TEXT,
              profile_image_url TEXT,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS oauth_tokens (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL UNIQUE,
              provider TEXT NOT NULL DEFAULT 'google_fit',
              access_token TEXT NOT NULL,
              refresh_token TEXT,
              expires_at TEXT NOT NULL,
              scope TEXT NOT NULL DEFAULT '',
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS daily_metrics (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL,
              date TEXT NOT NULL,
              rhr INTEGER,
              hrv INTEGER,
              sleep_score INTEGER,
              sleep_consistency INTEGER,
              workout_intensity INTEGER,
              calories INTEGER,
              protein INTEGER,
              carbs INTEGER,
              fats INTEGER,
              steps INTEGER,
              deep_sleep_minutes INTEGER,
              total_sleep_minutes INTEGER,
              spo2 REAL,
              recovery_score INTEGER,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL,
              UNIQUE(user_id, date)
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_daily_metrics_user_date ON daily_metrics(user_id, date);")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS insights (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL,
              content TEXT NOT NULL,
              type TEXT NOT NULL DEFAULT 'daily',
              generated_at TEXT NOT NULL,
              is_read INTEGER NOT NULL DEFAULT 0
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_insights_user_generated ON insights(user_id, generated_at);")

        # One row per sync attempt (success or failure)
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL,
              started_at TEXT NOT NULL,
              finished_at TEXT,
              range_start TEXT NOT NULL,
              range_end TEXT NOT NULL,
              days_synced INTEGER NOT NULL DEFAULT 0,
              status TEXT NOT NULL,
              error TEXT
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sync_runs_user_started ON sync_runs(user_id, started_at);")


def iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso(s: str | None) -> datetime | None:
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def today_iso() -> str:
    return datetime.now(timezone.utc).date().isoformat()
