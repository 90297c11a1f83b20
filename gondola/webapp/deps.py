"""Shared request helpers for the route modules."""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from ..db import CatalogDatabase
from ..job_queue import JobQueue
from ..security.gate import GateDecision


def ok(data: Any = None, message: str | None = None) -> dict:
    """Success envelope used by every panel route."""
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def get_db(request: Request) -> CatalogDatabase:
    """Get database instance from app state."""
    return request.app.state.db


def get_queue(request: Request) -> JobQueue:
    return request.app.state.queue


def client_ip(request: Request) -> str:
    """Client IP, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rejection_response(decision: GateDecision) -> JSONResponse:
    headers = {}
    if decision.retry_after:
        headers["Retry-After"] = str(decision.retry_after)
    return JSONResponse(
        {
            "success": False,
            "message": decision.reason or "Request rejected",
            "visitorState": decision.visitor_state,
        },
        status_code=decision.status_code,
        headers=headers,
    )
