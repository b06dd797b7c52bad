"""
Messages API Routes

One-to-one conversations: read (and mirror over the WebSocket), send text,
upload and send a file.
"""

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field
from typing import Dict, Any
from app.i18n import get_language_from_request, translate

router = APIRouter(prefix="/api/messages", tags=["messages"])

# Service reference (set by main.py)
_messaging_service = None


def set_messaging_service(service):
    """Set the messaging service instance"""
    global _messaging_service
    _messaging_service = service


class SendMessageRequest(BaseModel):
    text: str = Field(min_length=1, max_length=4000)


def _require_service(lang: str):
    if not _messaging_service:
        raise HTTPException(status_code=503, detail=translate("messages.not_initialized", lang))
    return _messaging_service


def _check(result: Dict[str, Any], lang: str) -> Dict[str, Any]:
    if result.get("success"):
        return result
    code = result.get("error", "error")
    if code == "upload_failed":
        raise HTTPException(
            status_code=502, detail=translate("messages.upload_failed", lang, error=result.get("detail", ""))
        )
    if code == "connectivity_error":
        raise HTTPException(status_code=502, detail=translate("messages.connectivity_error", lang))
    raise HTTPException(status_code=400, detail=translate(f"messages.{code}", lang))


@router.get("/{peer_uid}")
async def get_messages(peer_uid: str, request: Request):
    """Open the conversation with peer_uid and return its messages"""
    lang = get_language_from_request(request)
    service = _require_service(lang)
    service.open_conversation(peer_uid)
    result = _check(await service.get_messages(peer_uid), lang)
    return {"peer_uid": peer_uid, "messages": result["messages"]}


@router.post("/{peer_uid}")
async def send_message(peer_uid: str, req: SendMessageRequest, request: Request):
    lang = get_language_from_request(request)
    service = _require_service(lang)
    return _check(await service.send_message(peer_uid, req.text), lang)


@router.post("/{peer_uid}/file")
async def send_file(peer_uid: str, request: Request, file: UploadFile = File(...)):
    lang = get_language_from_request(request)
    service = _require_service(lang)
    data = await file.read()
    content_type = file.content_type or "application/octet-stream"
    return _check(await service.send_file(peer_uid, file.filename or "file", data, content_type), lang)
