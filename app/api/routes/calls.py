"""
Call API Routes

Endpoints driving the call state machine:
- Start / accept / decline / end a call
- Audio and video toggles on the active call
- Call status, recent notices and the ICE configuration for browser peers
"""

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from app.i18n import get_language_from_request, translate

router = APIRouter(prefix="/api/calls", tags=["calls"])

# Service reference (set by main.py)
_call_service = None

# Result error codes that mean "not possible in the current call state"
STATE_ERRORS = {"call_in_progress", "no_incoming_call", "no_active_call", "cancelled"}
INVALID_REQUEST_ERRORS = {"invalid_peer"}


def set_call_service(service):
    """Set the call service instance"""
    global _call_service
    _call_service = service


# ── Pydantic Models ──────────────────────────────────────────────────────────


class StartCallRequest(BaseModel):
    peer_uid: str = Field(min_length=1)


class ToggleRequest(BaseModel):
    enabled: Optional[bool] = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _require_service(lang: str):
    if not _call_service:
        raise HTTPException(status_code=503, detail=translate("calls.not_initialized", lang))
    return _call_service


def _check(result: Dict[str, Any], lang: str) -> Dict[str, Any]:
    if result.get("success"):
        return result
    code = result.get("error", "error")
    if code in STATE_ERRORS:
        status_code = 409
    elif code in INVALID_REQUEST_ERRORS:
        status_code = 400
    else:
        status_code = 502
    raise HTTPException(status_code=status_code, detail=translate(f"calls.{code}", lang))


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status(request: Request):
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return {**service.get_status(), "history": service.get_history()}


@router.post("/start")
async def start_call(req: StartCallRequest, request: Request):
    """Call another user; returns once the offer is on its way"""
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return _check(await service.start_call(req.peer_uid), lang)


@router.post("/accept")
async def accept_call(request: Request):
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return _check(await service.accept(), lang)


@router.post("/decline")
async def decline_call(request: Request):
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return _check(await service.decline(), lang)


@router.post("/end")
async def end_call(request: Request):
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return _check(service.end_call(), lang)


@router.post("/audio")
async def toggle_audio(req: ToggleRequest, request: Request):
    """Mute/unmute; omit 'enabled' to toggle"""
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return _check(service.toggle_audio(req.enabled), lang)


@router.post("/video")
async def toggle_video(req: ToggleRequest, request: Request):
    """Camera on/off; omit 'enabled' to toggle"""
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return _check(service.toggle_video(req.enabled), lang)


@router.get("/notices")
async def get_notices(request: Request, limit: int = 20):
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return {"notices": service.get_notices(limit)}


@router.get("/ice-config")
async def get_ice_config(request: Request):
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return service.get_ice_config()
