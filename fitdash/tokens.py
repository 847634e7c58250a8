from __future__ import annotations

from datetime import datetime

from .db import db, iso, now_iso

UPDATABLE_FIELDS = ("access_token", "refresh_token", "expires_at", "scope")


def get_token(user_id: str) -> dict | None:
    with db() as conn:
        row = conn.execute("SELECT * FROM oauth_tokens WHERE user_id = ?", (user_id,)).fetchone()
    return dict(row) if row else None


def save_token(
    user_id: str,
    *,
    access_token: str,
    refresh_token: str | None,
    expires_at: datetime,
    scope: str,
) -> dict:
    now = now_iso()
    with db() as conn:
        conn.execute(
            """
            INSERT INTO oauth_tokens(user_id, access_token, refresh_token, expires_at, scope, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?)
            ON CONFLICT(user_id) DO UPDATE SET
              access_token=excluded.access_token,
              refresh_token=excluded.refresh_token,
              expires_at=excluded.expires_at,
              scope=excluded.scope,
              updated_at=excluded.updated_at
            """,
            (user_id, access_token, refresh_token, iso(expires_at), scope or "", now, now),
        )
    return get_token(user_id)  # type: ignore[return-value]


def update_token(user_id: str, **fields) -> dict | None:
    """Update a subset of token columns. Returns None if the user has no token."""
    updates = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
    if isinstance(updates.get("expires_at"), datetime):
        updates["expires_at"] = iso(updates["expires_at"])
    updates["updated_at"] = now_iso()

    assignments = ", ".join(f"{k} = :{k}" for k in updates)
    with db() as conn:
        cur = conn.execute(
            f"UPDATE oauth_tokens SET {assignments} WHERE user_id = :user_id",
            {**updates, "user_id": user_id},
        )
    if cur.rowcount == 0:
        return None
    return get_token(user_id)


def delete_token(user_id: str) -> bool:
    with db() as conn:
        cur = conn.execute("DELETE FROM oauth_tokens WHERE user_id = ?", (user_id,))
    return cur.rowcount > 0
