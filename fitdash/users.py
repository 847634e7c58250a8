from __future__ import annotations

from .db import db, now_iso

USER_FIELDS = ["email", "first_name", "last_name", "profile_image_url"]


def get_user(user_id: str) -> dict | None:
    with db() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    return dict(row)


def upsert_user(user_id: str, **kwargs) -> dict:
    """Partial update. Keys not passed keep their stored value."""
    current = get_user(user_id) or {}
    merged = {f: kwargs.get(f, current.get(f)) for f in USER_FIELDS}
    now = now_iso()
    merged["id"] = user_id
    merged["created_at"] = current.get("created_at") or now
    merged["updated_at"] = now

    with db() as conn:
        conn.execute(
            """
            INSERT INTO users(id, email, first_name, last_name, profile_image_url, created_at, updated_at)
            VALUES(:id, :email, :first_name, :last_name, :profile_image_url, :created_at, :updated_at)
            ON CONFLICT(id) DO UPDATE SET
              email=excluded.email,
              first_name=excluded.first_name,
              last_name=excluded.last_name,
              profile_image_url=excluded.profile_image_url,
              updated_at=excluded.updated_at
            """,
            merged,
        )

    return get_user(user_id)  # type: ignore[return-value]
