from __future__ import annotations

import logging
from typing import Any

from openai import OpenAI

from . import config
from .db import db, now_iso
from .metrics import get_metrics
from .transform import round_half_up

logger = logging.getLogger(__name__)

INSIGHT_DAYS = 7

NO_DATA_TEXT = (
    "• Sync your Google Fit data to get started\n"
    "• Receive personalized AI insights daily\n"
    "• Track health and performance trends"
)
EMPTY_RESPONSE_TEXT = (
    "• Your biometric data shows consistent patterns\n"
    "• Recovery metrics are within normal range\n"
    "• Keep monitoring your progress for trends"
)
ERROR_FALLBACK_TEXT = (
    "• Unable to generate insights at the moment\n"
    "• Your data trends look stable overall\n"
    "• Try syncing more fitness data"
)
NO_INSIGHT_TEXT = "No insights yet. Sync your Google Fit data to get started!"

SYSTEM_PROMPT = """You are an expert fitness and health analyst. Analyze the user's fitness data and provide 3 focused, scannable insights as bullet points. Each insight should be ONE short sentence (max 12 words).

Format EXACTLY as:
• [Insight 1]
• [Insight 2]
• [Insight 3]

Focus on:
- Sleep quality vs. Recovery
- Heart rate variability vs. Workout intensity
- Energy trends and patterns

Be specific, data-driven, and motivating. Use active language."""


def _signed(n: int, fmt: str = "") -> str:
    return f"{'+' if n > 0 else ''}{n:{fmt}}"


def _avg(values: list[Any]) -> float | None:
    vals = [float(v) for v in values if v is not None]
    if not vals:
        return None
    return sum(vals) / len(vals)


def prepare_data_summary(metrics: list[dict[str, Any]]) -> str:
    """Plain-text digest of recent metrics (oldest -> newest) for the model prompt."""
    latest = metrics[-1]
    previous = metrics[-2] if len(metrics) > 1 else None

    lines = [f"Recent Metrics (last {len(metrics)} days):", "", f"Latest Day ({latest['date']}):"]
    if latest.get("rhr") is not None:
        lines.append(f"- Resting Heart Rate: {latest['rhr']} bpm")
    if latest.get("hrv") is not None:
        lines.append(f"- HRV: {latest['hrv']}")
    if latest.get("sleep_score") is not None:
        lines.append(f"- Sleep Score: {latest['sleep_score']}/100")
    if latest.get("deep_sleep_minutes") is not None:
        lines.append(f"- Deep Sleep: {latest['deep_sleep_minutes']} minutes")
    if latest.get("steps") is not None:
        lines.append(f"- Steps: {latest['steps']:,}")
    if latest.get("calories") is not None:
        lines.append(f"- Calories: {latest['calories']}")
    if latest.get("recovery_score") is not None:
        lines.append(f"- Recovery Score: {latest['recovery_score']}/100")

    if previous:
        lines += ["", "Changes from Previous Day:"]
        if latest.get("rhr") is not None and previous.get("rhr") is not None:
            lines.append(f"- RHR: {_signed(latest['rhr'] - previous['rhr'])} bpm")
        if latest.get("sleep_score") is not None and previous.get("sleep_score") is not None:
            lines.append(f"- Sleep Score: {_signed(latest['sleep_score'] - previous['sleep_score'])}")
        if latest.get("steps") is not None and previous.get("steps") is not None:
            lines.append(f"- Steps: {_signed(latest['steps'] - previous['steps'], ',')}")

    avg_rhr = _avg([m.get("rhr") for m in metrics])
    avg_sleep = _avg([m.get("sleep_score") for m in metrics])
    avg_steps = _avg([m.get("steps") for m in metrics])

    lines += ["", "Weekly Averages:"]
    if avg_rhr is not None:
        lines.append(f"- Avg RHR: {round_half_up(avg_rhr)} bpm")
    if avg_sleep is not None:
        lines.append(f"- Avg Sleep Score: {round_half_up(avg_sleep)}/100")
    if avg_steps is not None:
        lines.append(f"- Avg Steps: {round_half_up(avg_steps):,}")

    return "\n".join(lines) + "\n"


def _default_client() -> OpenAI:
    return OpenAI(api_key=config.OPENAI_API_KEY or None, base_url=config.OPENAI_BASE_URL)


def generate_daily_insight(user_id: str, client: Any = None) -> str:
    """Summarize the last week through the LLM and store the result.

    Never raises for model/API failures; a static fallback is returned instead
    (and nothing is stored).
    """
    metrics = get_metrics(user_id, INSIGHT_DAYS)
    if not metrics:
        return NO_DATA_TEXT

    data_summary = prepare_data_summary(metrics)
    try:
        client = client or _default_client()
        completion = client.chat.completions.create(
            model=config.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Analyze this week's fitness data and provide exactly 3 bullet points:\n\n{data_summary}",
                },
            ],
            temperature=0.7,
            max_tokens=200,
        )
    except Exception:
        logger.exception("Error generating AI insight for user %s", user_id)
        return ERROR_FALLBACK_TEXT

    content = None
    if completion.choices:
        content = completion.choices[0].message.content
    insight = content or EMPTY_RESPONSE_TEXT

    save_insight(user_id, insight, insight_type="daily")
    return insight


def save_insight(user_id: str, content: str, *, insight_type: str = "daily") -> dict:
    with db() as conn:
        cur = conn.execute(
            "INSERT INTO insights(user_id, content, type, generated_at, is_read) VALUES(?, ?, ?, ?, 0)",
            (user_id, content, insight_type, now_iso()),
        )
        insight_id = cur.lastrowid
    return get_insight(insight_id)  # type: ignore[arg-type]


def get_insight(insight_id: int) -> dict | None:
    with db() as conn:
        row = conn.execute("SELECT * FROM insights WHERE id = ?", (insight_id,)).fetchone()
    return _row_to_insight(row) if row else None


def get_latest_insight(user_id: str) -> dict | None:
    with db() as conn:
        row = conn.execute(
            "SELECT * FROM insights WHERE user_id = ? ORDER BY generated_at DESC, id DESC LIMIT 1",
            (user_id,),
        ).fetchone()
    return _row_to_insight(row) if row else None


def list_insights(user_id: str, *, limit: int = 20) -> list[dict]:
    with db() as conn:
        rows = conn.execute(
            "SELECT * FROM insights WHERE user_id = ? ORDER BY generated_at DESC, id DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
    return [_row_to_insight(r) for r in rows]


def mark_insight_read(insight_id: int, user_id: str | None = None) -> bool:
    with db() as conn:
        if user_id is None:
            cur = conn.execute("UPDATE insights SET is_read = 1 WHERE id = ?", (insight_id,))
        else:
            cur = conn.execute(
                "UPDATE insights SET is_read = 1 WHERE id = ? AND user_id = ?", (insight_id, user_id)
            )
    return cur.rowcount > 0


def _row_to_insight(row: Any) -> dict:
    d = dict(row)
    d["is_read"] = bool(d.get("is_read"))
    return d
