from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote, urlencode

import requests

from . import config
from .db import parse_iso
from .tokens import get_token, save_token, update_token
from .transform import HEART_RATE_BPM, SLEEP_SEGMENT

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
FITNESS_API = "https://www.googleapis.com/fitness/v1/users/me"

SCOPES = [
    "https://www.googleapis.com/auth/fitness.activity.read",
    "https://www.googleapis.com/auth/fitness.heart_rate.read",
    "https://www.googleapis.com/auth/fitness.sleep.read",
    "https://www.googleapis.com/auth/fitness.nutrition.read",
    "https://www.googleapis.com/auth/fitness.body.read",
]

AGGREGATE_TYPES = [
    "com.google.step_count.delta",
    "com.google.calories.expended",
    "com.google.sleep.segment",
]
DAY_MILLIS = 86_400_000


class GoogleFitError(Exception):
    pass


class NotConnectedError(GoogleFitError):
    pass


class ReconnectRequiredError(GoogleFitError):
    pass


def get_auth_url(user_id: str, redirect_uri: str | None = None) -> str:
    params = {
        "client_id": config.GOOGLE_CLIENT_ID,
        "redirect_uri": redirect_uri or config.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "access_type": "offline",
        # Force consent so Google hands out a refresh token every time.
        "prompt": "consent",
        "scope": " ".join(SCOPES),
        "state": user_id,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _token_request(data: dict[str, str]) -> dict[str, Any]:
    payload = {
        "client_id": config.GOOGLE_CLIENT_ID,
        "client_secret": config.GOOGLE_CLIENT_SECRET,
        **data,
    }
    try:
        resp = requests.post(TOKEN_URL, data=payload, timeout=config.GOOGLE_FIT_TIMEOUT_S)
        resp.raise_for_status()
        return resp.json()
    except requests.RequestException as e:
        raise GoogleFitError(f"Token request failed: {e}") from e


def _expires_at(token_data: dict[str, Any]) -> datetime:
    expires_in = int(token_data.get("expires_in") or 3600)
    return datetime.now(timezone.utc) + timedelta(seconds=expires_in)


def exchange_code_for_tokens(code: str, user_id: str, redirect_uri: str | None = None) -> dict[str, Any]:
    token_data = _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or config.GOOGLE_REDIRECT_URI,
        }
    )
    if not token_data.get("access_token"):
        raise GoogleFitError("Token response did not include an access token")

    save_token(
        user_id,
        access_token=token_data["access_token"],
        refresh_token=token_data.get("refresh_token"),
        expires_at=_expires_at(token_data),
        scope=token_data.get("scope") or " ".join(SCOPES),
    )
    return token_data


def get_valid_access_token(user_id: str) -> str:
    token = get_token(user_id)
    if not token:
        raise NotConnectedError("No Google Fit token found. Please connect your Google Fit account.")

    expires_at = parse_iso(token["expires_at"])
    if expires_at is not None and expires_at > datetime.now(timezone.utc):
        return token["access_token"]

    if not token.get("refresh_token"):
        raise ReconnectRequiredError("Refresh token not available. Please reconnect your Google Fit account.")

    logger.info("Refreshing Google Fit access token for user %s", user_id)
    refreshed = _token_request({"grant_type": "refresh_token", "refresh_token": token["refresh_token"]})
    access_token = refreshed.get("access_token")
    if not access_token:
        raise GoogleFitError("Refresh response did not include an access token")

    update_token(user_id, access_token=access_token, expires_at=_expires_at(refreshed))
    return access_token


def _api(method: str, path: str, access_token: str, **kwargs: Any) -> dict[str, Any]:
    resp = requests.request(
        method,
        f"{FITNESS_API}/{path}",
        headers={"Authorization": f"Bearer {access_token}"},
        timeout=config.GOOGLE_FIT_TIMEOUT_S,
        **kwargs,
    )
    resp.raise_for_status()
    return resp.json()


def list_data_sources(user_id: str) -> list[dict[str, Any]]:
    access_token = get_valid_access_token(user_id)
    try:
        data = _api("GET", "dataSources", access_token)
    except requests.RequestException as e:
        raise GoogleFitError(f"Failed to list data sources: {e}") from e

    return [
        {
            "dataStreamId": ds.get("dataStreamId"),
            "dataType": (ds.get("dataType") or {}).get("name"),
            "device": (ds.get("device") or {}).get("model") or "Unknown",
            "application": (ds.get("application") or {}).get("name") or "Unknown",
        }
        for ds in data.get("dataSource") or []
    ]


def _date_to_millis(d: str) -> int:
    day = date.fromisoformat(d)
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp() * 1000)


def _utc_day(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc).date().isoformat()


def merge_points_into_buckets(buckets: list[dict[str, Any]], data_source_id: str, points: list[dict[str, Any]]) -> int:
    """Attach raw stream points to the daily bucket that starts on the same UTC day.

    Returns the number of buckets that received points.
    """
    by_day: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for p in points:
        try:
            by_day[_utc_day(int(p["startTimeNanos"]) // 1_000_000)].append(p)
        except (KeyError, TypeError, ValueError):
            continue

    merged = 0
    for bucket in buckets:
        day_points = by_day.get(_utc_day(int(bucket.get("startTimeMillis") or 0)))
        if not day_points:
            continue
        bucket["dataset"] = [*(bucket.get("dataset") or []), {"dataSourceId": data_source_id, "point": day_points}]
        merged += 1
    return merged


def _merge_stream_data(
    access_token: str, buckets: list[dict[str, Any]], start_ms: int, end_ms: int
) -> None:
    # Zepp/Amazfit and other third-party writers are invisible to the aggregate
    # endpoint, so read their raw streams and splice them into the buckets.
    sources = _api("GET", "dataSources", access_token).get("dataSource") or []

    def find(type_name: str) -> dict[str, Any] | None:
        return next((ds for ds in sources if (ds.get("dataType") or {}).get("name") == type_name), None)

    dataset_id = f"{start_ms * 1_000_000}-{end_ms * 1_000_000}"
    for label, type_name in (("heart rate", HEART_RATE_BPM), ("sleep", SLEEP_SEGMENT)):
        source = find(type_name)
        stream_id = source.get("dataStreamId") if source else None
        if not stream_id:
            logger.info("No %s data source found", label)
            continue
        data = _api("GET", f"dataSources/{quote(stream_id, safe='')}/datasets/{dataset_id}", access_token)
        points = data.get("point") or []
        if not points:
            logger.info("No %s data points in range (%s)", label, stream_id)
            continue
        merged = merge_points_into_buckets(buckets, stream_id, points)
        logger.info("Merged %d %s points from %s into %d buckets", len(points), label, stream_id, merged)


def fetch_fit_data(user_id: str, start_date: str, end_date: str) -> dict[str, Any]:
    """Daily aggregate buckets for [start_date, end_date), with raw HR/sleep streams merged in."""
    access_token = get_valid_access_token(user_id)
    start_ms = _date_to_millis(start_date)
    end_ms = _date_to_millis(end_date)

    body = {
        "aggregateBy": [{"dataTypeName": t} for t in AGGREGATE_TYPES],
        "bucketByTime": {"durationMillis": str(DAY_MILLIS)},
        "startTimeMillis": str(start_ms),
        "endTimeMillis": str(end_ms),
    }
    try:
        data = _api("POST", "dataset:aggregate", access_token, json=body)
    except requests.RequestException as e:
        logger.error("Error fetching Google Fit data: %s", e)
        raise GoogleFitError(f"Failed to fetch Google Fit data: {e}") from e

    buckets = data.setdefault("bucket", [])
    try:
        _merge_stream_data(access_token, buckets, start_ms, end_ms)
    except Exception as e:
        logger.warning("Error fetching additional stream data: %s", e)

    return data
