"""
System API Routes
Preferences and the registered store, media and upload backends
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from app.i18n import get_language_from_request, translate
from app.providers import get_provider_registry
from app.services.preferences import get_preferences

router = APIRouter(prefix="/api/system", tags=["system"])


class CallsUpdate(BaseModel):
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    ice_servers: Optional[List[str]] = None
    ice_candidate_pool_size: Optional[int] = Field(default=None, ge=0)


class PreferencesUpdate(BaseModel):
    """Partial update; sections left out are untouched"""

    calls: Optional[CallsUpdate] = None
    ui: Optional[Dict[str, Any]] = None


@router.get("/preferences")
async def get_preferences_all():
    """Get all preferences"""
    return get_preferences().get_all_preferences()


@router.post("/preferences")
async def update_preferences(req: PreferencesUpdate, request: Request):
    """Update preferences (partial update)"""
    lang = get_language_from_request(request)
    prefs = get_preferences()

    saved = True
    if req.calls is not None:
        calls = req.calls.model_dump(exclude_none=True)
        if calls:
            saved = prefs.set_calls_config(calls) and saved
    if req.ui:
        for key, value in req.ui.items():
            saved = prefs.set_ui_preference(key, value) and saved

    if not saved:
        return {"success": False, "message": translate("system.preferences_save_failed", lang)}
    return {
        "success": True,
        "message": translate("system.preferences_saved", lang),
        "note": translate("system.restart_required", lang),
    }


@router.post("/preferences/reset")
async def reset_preferences(request: Request):
    """Reset all preferences to defaults"""
    lang = get_language_from_request(request)
    if get_preferences().reset_preferences():
        return {"success": True, "message": translate("system.preferences_reset_success", lang)}
    return {"success": False, "message": translate("system.preferences_reset_failed", lang)}


@router.get("/providers")
async def get_available_providers():
    """Registered store, media and upload backends, selectable by name in preferences"""
    providers = get_provider_registry().get_available_providers()
    return {"success": True, "providers": providers, "count": sum(len(items) for items in providers.values())}
