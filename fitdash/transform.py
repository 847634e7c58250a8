from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable

logger = logging.getLogger(__name__)

STEP_COUNT = "com.google.step_count.delta"
CALORIES = "com.google.calories.expended"
HEART_RATE_BPM = "com.google.heart_rate.bpm"
HEART_RATE_SUMMARY = "com.google.heart_rate.summary"
SLEEP_SEGMENT = "com.google.sleep.segment"

SLEEP_STAGE_DEEP = 4

# Scoring heuristics
SLEEP_OPTIMAL_MIN_H = 7.0
SLEEP_OPTIMAL_MAX_H = 9.0
SLEEP_OVERSLEEP_PENALTY_PER_H = 10.0
DEFAULT_DEEP_SLEEP_RATIO = 0.15

RECOVERY_BASELINE = 85
RECOVERY_RHR_PIVOT = 60
RECOVERY_PENALTY_PER_BPM = 1.5

INTENSITY_MAX_STEPS = 15000
INTENSITY_MAX_CALORIES = 3000

HR_PLAUSIBLE_MAX = 200
HRV_MIN_READINGS = 10  # need strictly more than this for the stddev path
HRV_FLOOR = 20
HRV_CEIL = 100
HRV_FALLBACK_CEIL = 80

ACTIVE_DAY_STEPS = 8000
ACTIVE_MACRO_SPLIT = (0.30, 0.50, 0.20)  # protein, carbs, fat
SEDENTARY_MACRO_SPLIT = (0.25, 0.45, 0.30)
KCAL_PER_G_PROTEIN = 4
KCAL_PER_G_CARBS = 4
KCAL_PER_G_FAT = 9


def round_half_up(x: float) -> int:
    """Round .5 towards +inf, so 2.5 -> 3 (Python's round() would give 2)."""
    return int(math.floor(x + 0.5))


def population_stddev(values: list[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _utc_day_from_millis(ms: Any) -> str:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc).date().isoformat()


def dataset_type_name(dataset: dict[str, Any]) -> str | None:
    # Aggregate responses carry dataType; raw stream datasets only have
    # a dataSourceId like "derived:com.google.step_count.delta:com.google.android.gms:...".
    name = (dataset.get("dataType") or {}).get("name")
    if name:
        return name
    source_id = dataset.get("dataSourceId")
    if not source_id:
        return None
    parts = str(source_id).split(":")
    return parts[1] if len(parts) > 1 else parts[0]


def _first_value(point: dict[str, Any]) -> dict[str, Any]:
    values = point.get("value") or []
    if values and isinstance(values[0], dict):
        return values[0]
    return {}


def heart_rate_from_point(point: dict[str, Any]) -> int:
    """Return the bpm carried by a point, or 0 when there is none.

    Third-party apps (Zepp/Amazfit) write a bare fpVal. Google's own
    summaries carry a mapVal with min/max/average, and we prefer min.
    """
    v = _first_value(point)
    fp = _to_float(v.get("fpVal"))
    if fp:
        return round_half_up(fp)
    map_val = v.get("mapVal")
    if isinstance(map_val, list):
        entries = {m.get("key"): m.get("value") or {} for m in map_val if isinstance(m, dict)}
        for key in ("min", "average"):
            if key in entries:
                hr = _to_float(entries[key].get("fpVal"))
                return round_half_up(hr) if hr is not None else 0
    return 0


def sleep_score(total_sleep_minutes: int, deep_sleep_minutes: int | None) -> int | None:
    if not total_sleep_minutes or total_sleep_minutes <= 0:
        return None
    hours = total_sleep_minutes / 60.0
    deep_ratio = (deep_sleep_minutes / total_sleep_minutes) if deep_sleep_minutes else DEFAULT_DEEP_SLEEP_RATIO

    quality = 100.0
    if hours < SLEEP_OPTIMAL_MIN_H:
        quality = (hours / SLEEP_OPTIMAL_MIN_H) * 100.0
    elif hours > SLEEP_OPTIMAL_MAX_H:
        quality = 100.0 - (hours - SLEEP_OPTIMAL_MAX_H) * SLEEP_OVERSLEEP_PENALTY_PER_H

    return min(100, round_half_up(quality * 0.7 + deep_ratio * 100.0 * 0.3))


def recovery_score(rhr: int | None) -> int | None:
    if not rhr:
        return None
    if rhr < RECOVERY_RHR_PIVOT:
        score = min(100, RECOVERY_BASELINE + (RECOVERY_RHR_PIVOT - rhr))
    else:
        score = max(0, RECOVERY_BASELINE - (rhr - RECOVERY_RHR_PIVOT) * RECOVERY_PENALTY_PER_BPM)
    return round_half_up(score)


def workout_intensity(steps: int, calories: int) -> int | None:
    if steps <= 0 and calories <= 0:
        return None
    step_intensity = min(100.0, (steps / INTENSITY_MAX_STEPS) * 100.0)
    calorie_intensity = min(100.0, (calories / INTENSITY_MAX_CALORIES) * 100.0)
    return round_half_up(max(step_intensity, calorie_intensity))


def hrv_estimate(readings: list[int], rhr: int | None) -> int | None:
    """Volatility of the day's HR samples, scaled into a 20-100 "ms-like" range.

    With too few samples we fall back to an RHR-based guess.
    """
    if len(readings) > HRV_MIN_READINGS:
        sd = population_stddev([float(r) for r in readings])
        return round_half_up(min(float(HRV_CEIL), max(float(HRV_FLOOR), sd * 3)))
    if rhr:
        return max(HRV_FLOOR, min(HRV_FALLBACK_CEIL, 60 - (rhr - 60)))
    return None


def estimate_macros(calories: int, steps: int) -> tuple[int, int, int]:
    """Split expended calories into (protein, carbs, fats) grams."""
    if calories <= 0:
        return 0, 0, 0
    split = ACTIVE_MACRO_SPLIT if steps > ACTIVE_DAY_STEPS else SEDENTARY_MACRO_SPLIT
    p, c, f = split
    return (
        round_half_up(calories * p / KCAL_PER_G_PROTEIN),
        round_half_up(calories * c / KCAL_PER_G_CARBS),
        round_half_up(calories * f / KCAL_PER_G_FAT),
    )


def _empty_metric(user_id: str, day: str) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "date": day,
        "steps": 0,
        "calories": 0,
        "rhr": None,
        "hrv": None,
        "sleep_score": None,
        "sleep_consistency": None,
        "workout_intensity": None,
        "protein": 0,
        "carbs": 0,
        "fats": 0,
        "deep_sleep_minutes": None,
        "total_sleep_minutes": 0,
        "spo2": None,
        "recovery_score": None,
    }


def _iter_points(bucket: dict[str, Any]) -> Iterable[tuple[str | None, dict[str, Any]]]:
    for dataset in bucket.get("dataset") or []:
        if not isinstance(dataset, dict):
            continue
        type_name = dataset_type_name(dataset)
        for point in dataset.get("point") or []:
            if isinstance(point, dict):
                yield type_name, point


def transform_bucket(bucket: dict[str, Any], user_id: str) -> dict[str, Any]:
    day = _utc_day_from_millis(bucket.get("startTimeMillis") or 0)
    metric = _empty_metric(user_id, day)
    hr_readings: list[int] = []
    types_found: set[str] = set()

    for type_name, point in _iter_points(bucket):
        if type_name:
            types_found.add(type_name)

        if type_name == STEP_COUNT:
            metric["steps"] += int(_first_value(point).get("intVal") or 0)
        elif type_name == CALORIES:
            metric["calories"] += round_half_up(_to_float(_first_value(point).get("fpVal")) or 0.0)
        elif type_name in (HEART_RATE_BPM, HEART_RATE_SUMMARY):
            hr = heart_rate_from_point(point)
            if 0 < hr < HR_PLAUSIBLE_MAX:
                hr_readings.append(hr)
                metric["rhr"] = min(metric["rhr"], hr) if metric["rhr"] else hr
        elif type_name == SLEEP_SEGMENT:
            try:
                duration_min = (int(point["endTimeNanos"]) - int(point["startTimeNanos"])) / 1e9 / 60
            except (KeyError, TypeError, ValueError):
                continue
            minutes = round_half_up(duration_min)
            metric["total_sleep_minutes"] += minutes
            if _first_value(point).get("intVal") == SLEEP_STAGE_DEEP:
                metric["deep_sleep_minutes"] = (metric["deep_sleep_minutes"] or 0) + minutes

    if types_found:
        logger.debug("%s: found data types: %s", day, ", ".join(sorted(types_found)))

    metric["sleep_score"] = sleep_score(metric["total_sleep_minutes"], metric["deep_sleep_minutes"])
    metric["recovery_score"] = recovery_score(metric["rhr"])
    metric["workout_intensity"] = workout_intensity(metric["steps"], metric["calories"])
    metric["hrv"] = hrv_estimate(hr_readings, metric["rhr"])

    if metric["calories"] > 0 and metric["protein"] == 0 and metric["carbs"] == 0 and metric["fats"] == 0:
        metric["protein"], metric["carbs"], metric["fats"] = estimate_macros(metric["calories"], metric["steps"])

    return metric


def has_meaningful_data(metric: dict[str, Any]) -> bool:
    return (
        metric["steps"] > 0
        or metric["calories"] > 0
        or metric["total_sleep_minutes"] > 0
        or metric["rhr"] is not None
    )


def transform_fit_data(api_data: dict[str, Any], user_id: str) -> list[dict[str, Any]]:
    """Turn a (merged) Google Fit aggregate response into per-day metric records."""
    buckets = api_data.get("bucket") if isinstance(api_data, dict) else None
    if not buckets:
        return []
    metrics = [transform_bucket(b, user_id) for b in buckets if isinstance(b, dict)]
    return [m for m in metrics if has_meaningful_data(m)]
