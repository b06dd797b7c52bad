"""
Messaging Service

One-to-one conversations persisted as timestamp-ordered records under
``private_messages/{chatId}``, where chatId is the sorted, "_"-joined pair
of uids. File attachments go through the configured upload provider first;
the message only carries the resulting URL.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from app.providers.base import KeyValueStore, StoreSubscription, UploadProvider
from app.services.call_errors import ConnectivityError, UploadError
from app.services.presence_service import Identity
from app.services.signaling import now_ms

logger = logging.getLogger(__name__)

MESSAGES_ROOT = "private_messages"


def chat_id(uid_a: str, uid_b: str) -> str:
    """Conversation id shared by both participants"""
    return "_".join(sorted([uid_a, uid_b]))


def file_type_of(content_type: Optional[str]) -> str:
    """MIME major type ('image/png' -> 'image'); 'file' when unknown"""
    if not content_type or "/" not in content_type:
        return "file"
    return content_type.split("/", 1)[0]


def _ordered(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, dict):
        return []
    messages = []
    for key, record in value.items():
        if isinstance(record, dict):
            messages.append({"id": key, **record})
    messages.sort(key=lambda m: (m.get("timestamp") or 0, m["id"]))
    return messages


class MessagingService:
    def __init__(
        self,
        store: KeyValueStore,
        identity: Identity,
        upload_provider: Optional[UploadProvider] = None,
        websocket_manager=None,
    ):
        self.store = store
        self.identity = identity
        self.upload_provider = upload_provider
        self.websocket_manager = websocket_manager
        self.active_peer: Optional[str] = None
        self._messages: List[Dict[str, Any]] = []
        self._subscription: Optional[StoreSubscription] = None

    def _path(self, peer_uid: str) -> str:
        return f"{MESSAGES_ROOT}/{chat_id(self.identity.uid, peer_uid)}"

    async def send_message(
        self,
        peer_uid: str,
        text: str = "",
        file_url: Optional[str] = None,
        file_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Append a message to the conversation with peer_uid"""
        text = (text or "").strip()
        if not text and not file_url:
            return {"success": False, "error": "empty_message"}
        if not peer_uid or peer_uid == self.identity.uid:
            return {"success": False, "error": "invalid_peer"}

        message = {
            "text": text,
            "sender": self.identity.uid,
            "receiver": peer_uid,
            "senderName": self.identity.display_name or self.identity.uid,
            "timestamp": now_ms(),
            "read": False,
            "fileUrl": file_url,
            "fileType": file_type,
        }
        try:
            key = await self.store.push(self._path(peer_uid), message)
        except ConnectivityError as e:
            logger.error(f"Could not send message to {peer_uid}: {e}")
            return {"success": False, "error": e.code}
        return {"success": True, "id": key, "message": message}

    async def send_file(self, peer_uid: str, filename: str, data: bytes, content_type: str) -> Dict[str, Any]:
        """Upload a file and send it as a message"""
        if self.upload_provider is None:
            return {"success": False, "error": "upload_unavailable"}
        if not data:
            return {"success": False, "error": "empty_file"}

        try:
            uploaded = await asyncio.to_thread(self.upload_provider.upload, filename, data, content_type)
        except UploadError as e:
            logger.error(f"Upload of {filename} failed: {e}")
            return {"success": False, "error": e.code, "detail": str(e)}

        logger.info(f"Uploaded {filename} ({len(data)} bytes) for {peer_uid}")
        return await self.send_message(peer_uid, "", file_url=uploaded["url"], file_type=file_type_of(content_type))

    def open_conversation(self, peer_uid: str) -> None:
        """Switch the mirrored conversation (only one is live at a time)"""
        if peer_uid == self.active_peer and self._subscription is not None:
            return
        self.close_conversation()
        self.active_peer = peer_uid
        self._subscription = self.store.subscribe(
            self._path(peer_uid), lambda value: self._on_messages(peer_uid, value)
        )

    def close_conversation(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self.active_peer = None
        self._messages = []

    def _on_messages(self, peer_uid: str, value: Any) -> None:
        if peer_uid != self.active_peer:
            return
        self._messages = _ordered(value)
        if self.websocket_manager is not None:
            self.websocket_manager.schedule_broadcast("messages", {"peer_uid": peer_uid, "messages": self._messages})

    async def get_messages(self, peer_uid: str) -> Dict[str, Any]:
        """Read the conversation (mirrored copy when it is the open one)"""
        if peer_uid == self.active_peer and self._messages:
            return {"success": True, "messages": list(self._messages)}
        try:
            value = await self.store.get(self._path(peer_uid))
        except ConnectivityError as e:
            logger.error(f"Could not read conversation with {peer_uid}: {e}")
            return {"success": False, "error": e.code}
        return {"success": True, "messages": _ordered(value)}


# Global instance
_messaging_service: Optional[MessagingService] = None


def get_messaging_service() -> Optional[MessagingService]:
    return _messaging_service


def init_messaging_service(*args, **kwargs) -> MessagingService:
    global _messaging_service
    _messaging_service = MessagingService(*args, **kwargs)
    return _messaging_service
