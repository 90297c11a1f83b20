"""Password login and cookie sessions for the admin panel."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, UTC

from fastapi import Cookie, HTTPException, Request, status

from ..db import CatalogDatabase

SESSION_COOKIE = "session_token"


def verify_password(password: str, expected: str) -> bool:
    """Constant-time comparison against the configured admin password."""
    return secrets.compare_digest(password.encode(), expected.encode())


def create_session(db: CatalogDatabase, ttl_hours: int) -> str:
    """Create a new session token valid for ttl_hours."""
    token = secrets.token_urlsafe(32)
    now = datetime.now(UTC)
    with db.connect() as conn:
        conn.execute(
            "INSERT INTO admin_sessions (token, created_at, expires_at) VALUES (?, ?, ?)",
            (token, now.isoformat(), (now + timedelta(hours=ttl_hours)).isoformat()),
        )
        # Drop expired sessions while we are here
        conn.execute("DELETE FROM admin_sessions WHERE expires_at < ?", (now.isoformat(),))
    return token


def is_valid_session(db: CatalogDatabase, token: str | None) -> bool:
    """Check if a session token exists and has not expired."""
    if not token:
        return False
    with db.connect() as conn:
        row = conn.execute(
            "SELECT expires_at FROM admin_sessions WHERE token = ?", (token,)
        ).fetchone()
    return bool(row) and datetime.fromisoformat(row["expires_at"]) > datetime.now(UTC)


def invalidate_session(db: CatalogDatabase, token: str) -> None:
    """Invalidate a session token."""
    with db.connect() as conn:
        conn.execute("DELETE FROM admin_sessions WHERE token = ?", (token,))


async def require_auth(
    request: Request,
    session_token: str | None = Cookie(None, alias=SESSION_COOKIE),
) -> str:
    """Dependency that requires an admin session. Returns 401 otherwise."""
    if not is_valid_session(request.app.state.db, session_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return session_token
