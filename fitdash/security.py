from __future__ import annotations

import os

from fastapi import Depends, Header, HTTPException

from . import config


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-Api-Key")) -> None:
    expected = os.getenv("API_KEY")
    if not expected:
        # Fail closed: if API_KEY not set, do not accept requests.
        raise HTTPException(status_code=500, detail="Server misconfigured: API_KEY not set")
    if not x_api_key or x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    _: None = Depends(require_api_key),
) -> str:
    # The identity provider in front of us forwards the subject in X-User-Id.
    return (x_user_id or "").strip() or config.DEFAULT_USER_ID
