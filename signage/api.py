"""HTTP API for Signage Sync.

Settings reads, the display push channel, display listing and the status
endpoints are public; displays are unattended and hold no credentials.
Every mutating endpoint requires a live session token in the
``X-Session-Token`` header (see :mod:`signage.auth`).

Mutating endpoints read their JSON body themselves, after the session
check has run, so a request without a token is always a 401 whatever its
body.  A malformed body is a 400.
"""

from __future__ import annotations

import math
import secrets
from typing import Any, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from signage.auth import AuthError, LoginLockedOut, require_session
from signage.schema import SettingsValidationError
from signage.service import SignageService
from signage.store import StoreError

router = APIRouter(prefix="/api", tags=["signage"])

M = TypeVar("M", bound=BaseModel)


# ── Helpers ───────────────────────────────────────────────────────

def _service(request: Request) -> SignageService:
    return request.app.state.service


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")


def _parse(model: type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        raise HTTPException(status_code=400, detail=f"Invalid request: {problems}")


# ══════════════════════════════════════════════════════════════════
# AUTH
# ══════════════════════════════════════════════════════════════════

class LoginRequest(BaseModel):
    apiKey: str = Field(min_length=1, max_length=256)


@router.post("/auth/login")
async def login(request: Request, service: SignageService = Depends(_service)):
    req = _parse(LoginRequest, await _json_body(request))
    try:
        token = service.sessions.login(req.apiKey, client=_client_ip(request))
    except LoginLockedOut as exc:
        raise HTTPException(
            status_code=429,
            detail=str(exc),
            headers={"Retry-After": str(math.ceil(exc.retry_after))},
        )
    except AuthError:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {
        "success": True,
        "sessionToken": token,
        "expiresIn": int(service.sessions.idle_seconds * 1000),
    }


@router.post("/auth/logout")
async def logout(
    token: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    service.sessions.logout(token)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/auth/validate")
async def validate(token: str = Depends(require_session), service: SignageService = Depends(_service)):
    session = service.sessions.get(token)
    created = int(session.created_at * 1000) if session else None
    return {"valid": True, "createdAt": created}


# ══════════════════════════════════════════════════════════════════
# SETTINGS
# ══════════════════════════════════════════════════════════════════

class SettingValue(BaseModel):
    value: Any


@router.get("/settings")
async def get_settings(service: SignageService = Depends(_service)):
    return service.store.get_all()


@router.post("/settings")
async def save_settings(
    request: Request,
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    payload = await _json_body(request)
    try:
        clients = await service.hub.set_settings(payload)
    except SettingsValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to save settings")
    return {"success": True, "message": "Settings saved and broadcast", "clients": clients}


@router.get("/settings/stream")
async def settings_stream(
    request: Request,
    displayId: str | None = Query(None, max_length=128),
    name: str | None = Query(None, max_length=200),
    location: str | None = Query(None, max_length=200),
    resolution: str | None = Query(None, max_length=32),
    page: str | None = Query(None, max_length=200),
    tags: str | None = Query(None, max_length=1000),
    service: SignageService = Depends(_service),
):
    display_id = displayId or f"display_{secrets.token_hex(8)}"
    frames = service.display_stream(
        display_id,
        name=name,
        location=location,
        resolution=resolution,
        page=page,
        tags=tags,
        client_ip=_client_ip(request),
    )
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/settings/{key}")
async def get_setting(key: str, service: SignageService = Depends(_service)):
    if key not in service.store:
        raise HTTPException(status_code=404, detail=f"Setting '{key}' not found")
    return {"key": key, "value": service.store.get(key)}


@router.post("/settings/{key}")
async def save_setting(
    key: str,
    request: Request,
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    req = _parse(SettingValue, await _json_body(request))
    try:
        clients = await service.hub.set_setting(key, req.value)
    except SettingsValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to update setting")
    return {
        "success": True,
        "message": f"Setting '{key}' updated and broadcast",
        "clients": clients,
    }


# ══════════════════════════════════════════════════════════════════
# DISPLAYS
# ══════════════════════════════════════════════════════════════════

class TagsRequest(BaseModel):
    tags: list[str] = Field(default_factory=list)


class CommandRequest(BaseModel):
    command: str = Field(min_length=1, max_length=64)
    params: dict[str, Any] = Field(default_factory=dict)


@router.get("/displays")
async def list_displays(service: SignageService = Depends(_service)):
    displays = sorted(
        (c.summary() for c in service.registry.connections()),
        key=lambda d: (d["name"] or "").lower(),
    )
    return {"total": len(displays), "displays": displays}


# Must be registered before /displays/{display_id}/... routes
@router.post("/displays/broadcast")
async def broadcast_command(
    request: Request,
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    req = _parse(CommandRequest, await _json_body(request))
    clients = service.hub.command(req.command, req.params)
    return {"success": True, "clients": clients}


@router.post("/displays/{display_id}/tags")
async def set_display_tags(
    display_id: str,
    request: Request,
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    req = _parse(TagsRequest, await _json_body(request))
    if not service.registry.known(display_id):
        raise HTTPException(status_code=404, detail="Display not found")
    tags = service.hub.retag(display_id, req.tags)
    return {"success": True, "id": display_id, "tags": tags}


@router.post("/displays/{display_id}/command")
async def display_command(
    display_id: str,
    request: Request,
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    req = _parse(CommandRequest, await _json_body(request))
    if service.registry.get(display_id) is None:
        raise HTTPException(status_code=404, detail="Display not connected")
    service.hub.command(req.command, req.params, target=display_id)
    return {"success": True, "message": f"Command '{req.command}' sent to display {display_id}"}


# ══════════════════════════════════════════════════════════════════
# EMERGENCY ALERTS
# ══════════════════════════════════════════════════════════════════

@router.post("/emergency/alert")
async def emergency_alert(
    request: Request,
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    alert = await _json_body(request)
    if not isinstance(alert, dict) or not alert.get("message"):
        raise HTTPException(status_code=400, detail="Alert message required")
    clients = service.hub.emergency_alert(alert)
    return {"success": True, "message": "Emergency alert broadcast", "clients": clients}


@router.post("/emergency/cancel")
async def emergency_cancel(
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    was_active = service.hub.emergency.active
    clients = service.hub.emergency_cancel()
    return {
        "success": True,
        "message": "Emergency alert cancelled" if was_active else "No active alert",
        "clients": clients,
    }


@router.get("/emergency/status")
async def emergency_status(service: SignageService = Depends(_service)):
    state = service.hub.emergency
    return {"active": state.active, "alert": state.alert}


# ══════════════════════════════════════════════════════════════════
# DISMISSAL
# ══════════════════════════════════════════════════════════════════

@router.post("/dismissal/start")
async def dismissal_start(
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    clients = service.hub.dismissal_start()
    return {"success": True, "message": "Dismissal started", "clients": clients}


@router.post("/dismissal/end")
async def dismissal_end(
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    clients = service.hub.dismissal_end()
    return {"success": True, "message": "Dismissal ended", "clients": clients}


@router.post("/dismissal/batch")
async def dismissal_batch(
    request: Request,
    _: str = Depends(require_session),
    service: SignageService = Depends(_service),
):
    payload = await _json_body(request)
    students = payload.get("students") if isinstance(payload, dict) else None
    if not isinstance(students, list):
        raise HTTPException(status_code=400, detail="Students must be an array")
    clients = service.hub.dismissal_update(students)
    return {"success": True, "students": len(students), "clients": clients}


@router.get("/dismissal/status")
async def dismissal_status(service: SignageService = Depends(_service)):
    state = service.hub.dismissal
    return {"active": state.active, "students": state.students, "startTime": state.start_time}
