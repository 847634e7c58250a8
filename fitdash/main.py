from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, RedirectResponse

from . import config
from .charts import build_dashboard
from .db import init_db, now_iso
from .google_fit import (
    GoogleFitError,
    NotConnectedError,
    ReconnectRequiredError,
    exchange_code_for_tokens,
    get_auth_url,
    list_data_sources,
)
from .insights import (
    NO_INSIGHT_TEXT,
    generate_daily_insight,
    get_latest_insight,
    list_insights,
    mark_insight_read,
)
from .metrics import get_metric_by_date, get_metrics, upsert_metric
from .models import (
    ConnectionStatusResponse,
    ConnectResponse,
    DashboardResponse,
    InsightContentResponse,
    MetricUpsertRequest,
    SuccessResponse,
    SyncDetails,
    SyncRequest,
    SyncResponse,
    UserUpdateRequest,
)
from .security import current_user_id
from .sync import last_sync_run, sync_user
from .tokens import delete_token, get_token
from .users import get_user, upsert_user

logger = logging.getLogger(__name__)

app = FastAPI(title="Fitness Dashboard API", version="0.1.0")


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.get("/api/health")
def health() -> dict[str, Any]:
    return {"ok": True, "ts": now_iso()}


# ---- auth ----


@app.get("/api/auth/user")
def auth_user(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    user = get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.put("/api/auth/user")
def update_auth_user(req: UserUpdateRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return upsert_user(user_id, **req.model_dump(exclude_unset=True))


# ---- google fit ----


@app.get("/api/google-fit/connect", response_model=ConnectResponse)
def google_fit_connect(user_id: str = Depends(current_user_id)) -> ConnectResponse:
    redirect_uri = config.GOOGLE_REDIRECT_URI
    auth_url = get_auth_url(user_id, redirect_uri)
    logger.info("Google Fit connect for user %s, redirect URI %s", user_id, redirect_uri)
    return ConnectResponse(authUrl=auth_url, redirectUri=redirect_uri)


@app.get("/api/google-fit/callback")
def google_fit_callback(code: str | None = None, state: str | None = None, error: str | None = None):
    # Browser redirect from Google: no API key here, the user id rides in `state`.
    if error:
        logger.error("Google Fit OAuth error: %s", error)
        return RedirectResponse(url=f"/?error={quote(error)}", status_code=302)
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state parameter")

    try:
        exchange_code_for_tokens(code, state)
    except GoogleFitError:
        logger.exception("Google Fit token exchange failed for user %s", state)
        return RedirectResponse(url="/?error=connection_failed", status_code=302)
    return RedirectResponse(url="/?connected=true", status_code=302)


@app.get("/api/google-fit/status", response_model=ConnectionStatusResponse)
def google_fit_status(user_id: str = Depends(current_user_id)) -> ConnectionStatusResponse:
    token = get_token(user_id)
    return ConnectionStatusResponse(connected=token is not None, expiresAt=token["expires_at"] if token else None)


@app.delete("/api/google-fit/disconnect", response_model=SuccessResponse)
def google_fit_disconnect(user_id: str = Depends(current_user_id)) -> SuccessResponse:
    delete_token(user_id)
    return SuccessResponse(success=True)


def _google_fit_error_response(e: GoogleFitError) -> JSONResponse:
    status = 400 if isinstance(e, (NotConnectedError, ReconnectRequiredError)) else 502
    return JSONResponse(
        status_code=status,
        content={"success": False, "message": str(e), "errorType": type(e).__name__},
    )


@app.get("/api/google-fit/datasources")
def google_fit_datasources(user_id: str = Depends(current_user_id)):
    try:
        sources = list_data_sources(user_id)
    except GoogleFitError as e:
        logger.error("Error listing data sources: %s", e)
        return _google_fit_error_response(e)
    return {"dataSources": sources, "totalSources": len(sources)}


@app.get("/api/google-fit/last-sync")
def google_fit_last_sync(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return {"lastSync": last_sync_run(user_id)}


@app.post("/api/google-fit/sync", response_model=SyncResponse)
def google_fit_sync(req: SyncRequest | None = None, user_id: str = Depends(current_user_id)):
    req = req or SyncRequest()
    start_date = req.startDate.isoformat() if req.startDate else None
    end_date = req.endDate.isoformat() if req.endDate else None
    try:
        result = sync_user(user_id, start_date, end_date)
    except GoogleFitError as e:
        logger.error("Google Fit sync failed for user %s: %s", user_id, e)
        return _google_fit_error_response(e)
    except Exception as e:
        logger.exception("Sync failed for user %s", user_id)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": str(e), "errorType": type(e).__name__},
        )

    # Insight generation must not fail the sync.
    try:
        generate_daily_insight(user_id)
    except Exception:
        logger.exception("Failed to generate AI insight after sync for user %s", user_id)

    return SyncResponse(
        success=True,
        synced=result.days_synced,
        message=f"Successfully synced {result.days_synced} days of fitness data",
        details=SyncDetails(
            startDate=result.start_date,
            endDate=result.end_date,
            metricsCount=result.days_synced,
        ),
    )


# ---- metrics ----


@app.get("/api/metrics")
def metrics_list(
    days: int = Query(default=30, ge=1, le=3650),
    user_id: str = Depends(current_user_id),
) -> list[dict[str, Any]]:
    return get_metrics(user_id, days)


@app.post("/api/metrics")
def metrics_upsert(req: MetricUpsertRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    metric = req.model_dump(exclude_unset=True)
    metric["date"] = req.date.isoformat()
    return upsert_metric(user_id, metric)


@app.get("/api/metrics/{date}")
def metrics_by_date(date: str, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    metric = get_metric_by_date(user_id, date)
    if metric is None:
        raise HTTPException(status_code=404, detail="Not found")
    return metric


@app.get("/api/dashboard", response_model=DashboardResponse)
def dashboard(
    days: int = Query(default=30, ge=1, le=3650),
    user_id: str = Depends(current_user_id),
) -> DashboardResponse:
    metrics = get_metrics(user_id, days)
    return DashboardResponse(days=days, metrics=metrics, charts=build_dashboard(metrics))


# ---- insights ----


@app.get("/api/insights/latest")
def insights_latest(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return get_latest_insight(user_id) or {"content": NO_INSIGHT_TEXT}


@app.post("/api/insights/generate", response_model=InsightContentResponse)
def insights_generate(user_id: str = Depends(current_user_id)) -> InsightContentResponse:
    return InsightContentResponse(content=generate_daily_insight(user_id))


@app.get("/api/insights")
def insights_list(
    limit: int = Query(default=20, ge=1, le=200),
    user_id: str = Depends(current_user_id),
) -> dict[str, Any]:
    return {"insights": list_insights(user_id, limit=limit)}


@app.patch("/api/insights/{insight_id}/read", response_model=SuccessResponse)
def insights_mark_read(insight_id: int, user_id: str = Depends(current_user_id)) -> SuccessResponse:
    if not mark_insight_read(insight_id, user_id):
        raise HTTPException(status_code=404, detail="Not found")
    return SuccessResponse(success=True)
