from __future__ import annotations

from typing import Any

WEEKDAYS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
HEATMAP_WEEKS = 4


def _v(m: dict[str, Any], key: str, default: float = 0) -> Any:
    value = m.get(key)
    return default if value is None else value


def recovery_radar(metrics: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "x": _v(m, "workout_intensity"),
            "y": _v(m, "sleep_score"),
            "z": m.get("rhr") or 60,
            "name": m["date"],
        }
        for m in metrics[-7:]
    ]


def nerve_check(metrics: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {"date": m["date"], "hrv": _v(m, "hrv"), "sleepConsistency": _v(m, "sleep_consistency")}
        for m in metrics[-14:]
    ]


def mind_shield(metrics: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """4x7 heatmap of sleep consistency over the last 28 rows; gaps are 0."""
    n_cells = HEATMAP_WEEKS * 7
    offset = len(metrics) - n_cells
    cells = []
    for week in range(HEATMAP_WEEKS):
        for day in range(7):
            idx = offset + week * 7 + day
            m = metrics[idx] if 0 <= idx < len(metrics) else None
            cells.append(
                {
                    "day": WEEKDAYS[day],
                    "week": f"W{week + 1}",
                    "value": _v(m, "sleep_consistency") if m else 0,
                }
            )
    return cells


def normalize_rhr(rhr: float | None) -> float:
    # 40 bpm -> 100, 90 bpm -> 0
    if not rhr:
        return 0
    return max(0, min(100, 100 - (rhr - 40) * 2))


def wellness_triangle(metrics: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not metrics:
        return []
    latest = metrics[-1]
    return [
        {"subject": "Recovery", "A": _v(latest, "recovery_score"), "fullMark": 100},
        {"subject": "HRV", "A": _v(latest, "hrv"), "fullMark": 100},
        {"subject": "Sleep", "A": _v(latest, "sleep_score"), "fullMark": 100},
        {"subject": "RHR", "A": normalize_rhr(latest.get("rhr")), "fullMark": 100},
    ]


def load_balancer(metrics: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {"date": m["date"], "strain": _v(m, "workout_intensity"), "recovery": _v(m, "recovery_score")}
        for m in metrics[-7:]
    ]


def sync_index(metrics: list[dict[str, Any]]) -> dict[str, Any]:
    if not metrics:
        return {"hrv": 0, "sleep": 0, "recovery": 0}
    latest = metrics[-1]
    return {
        "hrv": _v(latest, "hrv"),
        "sleep": _v(latest, "sleep_score"),
        "recovery": _v(latest, "recovery_score"),
    }


def build_dashboard(metrics: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "recoveryRadar": recovery_radar(metrics),
        "nerveCheck": nerve_check(metrics),
        "mindShield": mind_shield(metrics),
        "wellnessTriangle": wellness_triangle(metrics),
        "loadBalancer": load_balancer(metrics),
        "syncIndex": sync_index(metrics),
    }
