from __future__ import annotations

import os

DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "me")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv(
    "GOOGLE_REDIRECT_URI", "http://localhost:8765/api/google-fit/callback"
)
GOOGLE_FIT_TIMEOUT_S = float(os.getenv("GOOGLE_FIT_TIMEOUT_S", "30"))

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL")  # optional; proxies / compatible gateways
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

SYNC_DEFAULT_DAYS = int(os.getenv("SYNC_DEFAULT_DAYS", "30"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
