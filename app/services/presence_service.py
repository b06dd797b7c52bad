"""
Presence / Directory Sync

Publishes this user's presence at ``users/{uid}`` and mirrors the whole
``users`` directory into a read-only roster for the contact list.

Wire record:
    {"online": bool, "lastSeen": <ms>, "displayName": str, "photoURL": str | None}
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.i18n import translate
from app.providers.base import KeyValueStore, StoreSubscription
from app.services.call_errors import ConnectivityError
from app.services.signaling import now_ms

logger = logging.getLogger(__name__)

USERS_ROOT = "users"


@dataclass
class Identity:
    """The authenticated user this process acts for"""

    uid: str
    display_name: str = ""
    photo_url: Optional[str] = None


@dataclass
class PresenceRecord:
    uid: str
    online: bool = False
    last_seen_at: Optional[int] = None
    display_name: str = ""
    avatar_url: Optional[str] = None

    @classmethod
    def from_record(cls, uid: str, record: Any) -> "PresenceRecord":
        if not isinstance(record, dict):
            return cls(uid=uid)
        last_seen = record.get("lastSeen")
        return cls(
            uid=uid,
            online=bool(record.get("online", False)),
            last_seen_at=int(last_seen) if isinstance(last_seen, (int, float)) else None,
            display_name=record.get("displayName") or "",
            avatar_url=record.get("photoURL"),
        )

    def status_line(self, language: str = "en") -> str:
        if self.online:
            return translate("presence.online", language)
        if not self.last_seen_at:
            return translate("presence.never", language)
        when = datetime.fromtimestamp(self.last_seen_at / 1000).strftime("%Y-%m-%d %H:%M")
        return translate("presence.last_seen", language, time=when)

    def to_dict(self, language: str = "en") -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
            "online": self.online,
            "last_seen_at": self.last_seen_at,
            "status": self.status_line(language),
        }


class PresenceService:
    def __init__(self, store: KeyValueStore, identity: Identity, websocket_manager=None, language: str = "en"):
        self.store = store
        self.identity = identity
        self.websocket_manager = websocket_manager
        self.language = language
        self.online = False
        self._roster: Dict[str, PresenceRecord] = {}
        self._subscription: Optional[StoreSubscription] = None

    def _user_key(self, uid: str) -> str:
        return f"{USERS_ROOT}/{uid}"

    def _record(self, online: bool) -> Dict[str, Any]:
        return {
            "online": online,
            "lastSeen": now_ms(),
            "displayName": self.identity.display_name or self.identity.uid,
            "photoURL": self.identity.photo_url,
        }

    async def start(self) -> Dict[str, Any]:
        """Mark this user online and start mirroring the directory"""
        try:
            await self.store.set(self._user_key(self.identity.uid), self._record(True))
        except ConnectivityError as e:
            logger.error(f"Could not publish presence: {e}")
            return {"success": False, "error": e.code}

        self.online = True
        if self._subscription is None:
            self._subscription = self.store.subscribe(USERS_ROOT, self._on_users)
        logger.info(f"Presence online as {self.identity.uid}")
        return {"success": True}

    async def stop(self) -> Dict[str, Any]:
        """Mark this user offline and stop mirroring"""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if not self.online:
            return {"success": True}

        self.online = False
        try:
            await self.store.set(self._user_key(self.identity.uid), self._record(False))
        except ConnectivityError as e:
            logger.warning(f"Could not publish offline presence: {e}")
            return {"success": False, "error": e.code}
        logger.info(f"Presence offline for {self.identity.uid}")
        return {"success": True}

    def _on_users(self, value: Any) -> None:
        users = value if isinstance(value, dict) else {}
        self._roster = {uid: PresenceRecord.from_record(uid, record) for uid, record in users.items()}
        if self.websocket_manager is not None:
            self.websocket_manager.schedule_broadcast("roster", {"contacts": self.get_roster()})

    # ── Read-only roster ─────────────────────────────────────────────────────

    def get(self, uid: str) -> Optional[PresenceRecord]:
        return self._roster.get(uid)

    def display_name(self, uid: str) -> Optional[str]:
        record = self._roster.get(uid)
        return record.display_name if record and record.display_name else None

    def get_roster(self) -> List[Dict[str, Any]]:
        """Contacts (everyone but this user): online first, then by name"""
        contacts = [record for uid, record in self._roster.items() if uid != self.identity.uid]
        contacts.sort(key=lambda r: (not r.online, (r.display_name or r.uid).lower()))
        return [record.to_dict(self.language) for record in contacts]

    def get_me(self) -> Dict[str, Any]:
        return {
            "uid": self.identity.uid,
            "display_name": self.identity.display_name,
            "photo_url": self.identity.photo_url,
            "online": self.online,
        }


# Global instance
_presence_service: Optional[PresenceService] = None


def get_presence_service() -> Optional[PresenceService]:
    return _presence_service


def init_presence_service(*args, **kwargs) -> PresenceService:
    global _presence_service
    _presence_service = PresenceService(*args, **kwargs)
    return _presence_service
