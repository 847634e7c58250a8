from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, Field


class UserUpdateRequest(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None


class MetricUpsertRequest(BaseModel):
    date: dt.date
    rhr: Optional[int] = Field(default=None, ge=0, le=250)
    hrv: Optional[int] = Field(default=None, ge=0)
    sleep_score: Optional[int] = Field(default=None, ge=0, le=100)
    sleep_consistency: Optional[int] = Field(default=None, ge=0, le=100)
    workout_intensity: Optional[int] = Field(default=None, ge=0, le=100)
    calories: Optional[int] = Field(default=None, ge=0)
    protein: Optional[int] = Field(default=None, ge=0)
    carbs: Optional[int] = Field(default=None, ge=0)
    fats: Optional[int] = Field(default=None, ge=0)
    steps: Optional[int] = Field(default=None, ge=0)
    deep_sleep_minutes: Optional[int] = Field(default=None, ge=0)
    total_sleep_minutes: Optional[int] = Field(default=None, ge=0)
    spo2: Optional[float] = Field(default=None, ge=0, le=100)
    recovery_score: Optional[int] = Field(default=None, ge=0, le=100)


class SyncRequest(BaseModel):
    startDate: Optional[dt.date] = None
    endDate: Optional[dt.date] = None


class SyncDetails(BaseModel):
    startDate: str
    endDate: str
    metricsCount: int


class SyncResponse(BaseModel):
    success: bool
    synced: int
    message: str
    details: SyncDetails


class ConnectResponse(BaseModel):
    authUrl: str
    redirectUri: str


class ConnectionStatusResponse(BaseModel):
    connected: bool
    expiresAt: Optional[str] = None


class InsightContentResponse(BaseModel):
    content: str


class SuccessResponse(BaseModel):
    success: bool


class DashboardResponse(BaseModel):
    days: int
    metrics: list[dict[str, Any]]
    charts: dict[str, Any]
