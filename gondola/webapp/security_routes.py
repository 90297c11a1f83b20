"""Admin panel routes for security logs, IP rules and the image proxy config."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic import BaseModel

from .auth import require_auth
from .deps import ok

router = APIRouter(prefix="/api/panel", dependencies=[Depends(require_auth)])


class IPRuleCreate(BaseModel):
    ip: str
    type: str
    reason: str | None = None


class BlockRequest(BaseModel):
    ip: str
    reason: str | None = None


@router.get("/security/logs")
async def security_logs(
    request: Request,
    ip: str | None = None,
    visitor_state: str | None = Query(None, alias="visitorState"),
    event_type: str | None = Query(None, alias="eventType"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    result = request.app.state.security_logs.list_logs(
        ip=ip,
        visitor_state=visitor_state,
        event_type=event_type,
        page=page,
        limit=limit,
    )
    return ok(result)


@router.get("/security/metrics")
async def security_metrics(request: Request):
    return ok(request.app.state.security_logs.metrics())


@router.get("/security/ip-rules")
async def list_ip_rules(request: Request, type: str | None = None):
    return ok(request.app.state.ip_rules.list_rules(type))


@router.post("/security/ip-rules")
async def create_ip_rule(request: Request, body: IPRuleCreate):
    rule = request.app.state.ip_rules.add_rule(body.ip, body.type, reason=body.reason, created_by="admin")
    return ok(rule, message=f"{body.type.title()} rule created")


@router.delete("/security/ip-rules/{rule_id}")
async def delete_ip_rule(request: Request, rule_id: int):
    request.app.state.ip_rules.delete_rule(rule_id)
    return ok(message="Rule deleted")


@router.get("/image-proxy/config")
async def get_proxy_config(request: Request):
    return ok(request.app.state.proxy_config.get().to_dict())


@router.put("/image-proxy/config")
async def update_proxy_config(request: Request, changes: dict[str, Any] = Body(...)):
    config = request.app.state.proxy_config.update(changes)
    request.app.state.image_cache.configure(config.cache_max_size, config.cache_ttl)
    return ok(config.to_dict(), message="Configuration saved")


@router.post("/image-proxy/block")
async def block_ip(request: Request, body: BlockRequest):
    config = request.app.state.proxy_config.block_ip(body.ip, body.reason)
    return ok({"blacklistedIPs": config.blacklisted_ips}, message=f"{body.ip} blocked")


@router.post("/image-proxy/unblock")
async def unblock_ip(request: Request, body: BlockRequest):
    config = request.app.state.proxy_config.unblock_ip(body.ip)
    return ok({"blacklistedIPs": config.blacklisted_ips}, message=f"{body.ip} unblocked")
