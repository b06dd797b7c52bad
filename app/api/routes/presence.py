"""
Presence API Routes
"""

from fastapi import APIRouter, HTTPException, Request
from app.i18n import get_language_from_request, translate

router = APIRouter(prefix="/api/presence", tags=["presence"])

# Service reference (set by main.py)
_presence_service = None


def set_presence_service(service):
    """Set the presence service instance"""
    global _presence_service
    _presence_service = service


@router.get("/roster")
async def get_roster(request: Request):
    """Contacts with their online / last seen status"""
    lang = get_language_from_request(request)
    if not _presence_service:
        raise HTTPException(status_code=503, detail=translate("presence.not_initialized", lang))
    return {"contacts": _presence_service.get_roster()}


@router.get("/me")
async def get_me(request: Request):
    lang = get_language_from_request(request)
    if not _presence_service:
        raise HTTPException(status_code=503, detail=translate("presence.not_initialized", lang))
    return _presence_service.get_me()
