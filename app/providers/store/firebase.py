"""
Firebase Realtime Database store

Realtime Database paths used by the client:
- calls/{uid}: one-slot signaling mailbox (offer/answer/decline)
- users/{uid}: presence record
- private_messages/{chatId}/{pushId}: conversation messages

The firebase-admin SDK is blocking: reads/writes run in a worker thread and
listener callbacks (delivered on SDK threads) are marshalled back onto the
event loop before any subscriber code runs.
"""

import asyncio
import copy
import json
import logging
import os
import threading
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import credentials, db
from firebase_admin.exceptions import FirebaseError
from google.auth.exceptions import GoogleAuthError

from ..base.store_provider import KeyValueStore, StoreSubscription, ChangeCallback, split_path
from app.services.call_errors import ConnectivityError

logger = logging.getLogger(__name__)

APP_NAME = "peerchat"

# Admin SDK and google-auth failures that leave the database unreachable
SDK_ERRORS = (FirebaseError, GoogleAuthError, OSError, ValueError)


def get_firebase_app(database_url: str) -> firebase_admin.App:
    """Get or initialize the Firebase Admin app used by the store"""
    try:
        return firebase_admin.get_app(APP_NAME)
    except ValueError:
        pass

    emulator_host = os.environ.get("FIREBASE_DATABASE_EMULATOR_HOST")
    options = {"databaseURL": database_url}

    if emulator_host:
        # The SDK swaps in emulator credentials for database calls
        logger.info(f"Firebase Admin using Realtime Database emulator at {emulator_host}")
        return firebase_admin.initialize_app(credential=None, options=options, name=APP_NAME)

    service_account_json = os.environ.get("FIREBASE_SERVICE_ACCOUNT")
    service_account_path = os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH")

    cred = None
    if service_account_json:
        try:
            cred = credentials.Certificate(json.loads(service_account_json))
            logger.info("Using FIREBASE_SERVICE_ACCOUNT env var")
        except json.JSONDecodeError as e:
            logger.error(f"Invalid FIREBASE_SERVICE_ACCOUNT JSON: {e}")
    elif service_account_path and os.path.exists(service_account_path):
        cred = credentials.Certificate(service_account_path)
        logger.info(f"Using service account from {service_account_path}")

    if cred is None:
        logger.warning("Firebase credentials not found - falling back to application default credentials")
        cred = credentials.ApplicationDefault()

    app = firebase_admin.initialize_app(cred, options, name=APP_NAME)
    logger.info("Firebase Admin initialized (production)")
    return app


def _apply_event(snapshot: Any, path: str, data: Any, merge: bool) -> Any:
    """Apply a listener put/patch event (path relative to the listened ref)"""
    parts = split_path(path)
    if not parts:
        if merge and isinstance(snapshot, dict) and isinstance(data, dict):
            merged = dict(snapshot)
            for key, value in data.items():
                if value is None:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            return merged or None
        return data

    root = snapshot if isinstance(snapshot, dict) else {}
    node = root
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child

    leaf = parts[-1]
    if merge and isinstance(data, dict):
        target = node.get(leaf) if isinstance(node.get(leaf), dict) else {}
        for key, value in data.items():
            if value is None:
                target.pop(key, None)
            else:
                target[key] = value
        data = target or None

    if data is None:
        node.pop(leaf, None)
    else:
        node[leaf] = data
    return root or None


class _Listener:
    """One SDK listener, bridged onto the event loop"""

    def __init__(self, path: str, callback: ChangeCallback, loop: asyncio.AbstractEventLoop):
        self.path = path
        self.callback = callback
        self.loop = loop
        self.subscription: Optional[StoreSubscription] = None
        self.registration = None
        self._lock = threading.Lock()
        self._snapshot: Any = None
        self._scheduled = False

    def on_event(self, event) -> None:
        # SDK thread
        with self._lock:
            merge = event.event_type == "patch"
            self._snapshot = _apply_event(self._snapshot, event.path, event.data, merge)
            if self._scheduled:
                return
            self._scheduled = True
        try:
            self.loop.call_soon_threadsafe(self._deliver)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def _deliver(self) -> None:
        with self._lock:
            self._scheduled = False
            value = copy.deepcopy(self._snapshot)
        if self.subscription is None or not self.subscription.active:
            return
        try:
            self.callback(value)
        except Exception as e:
            logger.error(f"Subscriber callback for '{self.path}' failed: {e}", exc_info=True)

    def close(self) -> None:
        if self.registration is not None:
            try:
                self.registration.close()
            except Exception as e:
                logger.warning(f"Error closing listener on '{self.path}': {e}")
            self.registration = None


class FirebaseRealtimeStore(KeyValueStore):
    """Store backed by the Firebase Realtime Database"""

    def __init__(self, database_url: str = "", **_options):
        super().__init__()
        self.name = "firebase"
        self.display_name = "Firebase Realtime Database"
        self.database_url = database_url or os.environ.get("FIREBASE_DATABASE_URL", "")
        self._app: Optional[firebase_admin.App] = None
        self._listeners: Dict[int, _Listener] = {}

    @property
    def app(self) -> firebase_admin.App:
        """Lazy initialization of the Firebase Admin app"""
        if self._app is None:
            if not self.database_url:
                raise ConnectivityError("Firebase database URL is not configured")
            try:
                self._app = get_firebase_app(self.database_url)
            except SDK_ERRORS as e:
                logger.error(f"Firebase initialization failed: {e}")
                raise ConnectivityError(f"Firebase initialization failed: {e}") from e
        return self._app

    def _ref(self, path: str):
        return db.reference("/" + "/".join(split_path(path)), app=self.app)

    async def _run(self, description: str, func, *args) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except SDK_ERRORS as e:
            logger.error(f"Firebase {description} failed: {e}")
            raise ConnectivityError(f"{description} failed: {e}") from e

    async def get(self, path: str) -> Any:
        return await self._run(f"read {path}", lambda: self._ref(path).get())

    async def set(self, path: str, value: Any) -> None:
        if value is None:
            await self._run(f"delete {path}", lambda: self._ref(path).delete())
        else:
            await self._run(f"write {path}", lambda: self._ref(path).set(value))

    async def push(self, path: str, value: Any) -> str:
        child = await self._run(f"push {path}", lambda: self._ref(path).push(value))
        return child.key

    def subscribe(self, path: str, callback: ChangeCallback) -> StoreSubscription:
        listener = _Listener(path, callback, asyncio.get_running_loop())
        subscription = StoreSubscription(path, self._remove_listener)
        listener.subscription = subscription
        self._listeners[id(subscription)] = listener

        try:
            listener.registration = self._ref(path).listen(listener.on_event)
        except SDK_ERRORS + (ConnectivityError,) as e:
            # Keep the handle valid; the subscriber just never hears anything
            logger.error(f"Firebase listen on '{path}' failed: {e}")
        return subscription

    def _remove_listener(self, subscription: StoreSubscription) -> None:
        listener = self._listeners.pop(id(subscription), None)
        if listener:
            # registration.close() joins the SDK thread; keep it off the loop
            threading.Thread(target=listener.close, daemon=True, name="FirebaseListenerClose").start()

    async def close(self) -> None:
        listeners = list(self._listeners.values())
        self._listeners.clear()
        for listener in listeners:
            if listener.subscription:
                listener.subscription.active = False
            await asyncio.to_thread(listener.close)
        if self._app is not None:
            firebase_admin.delete_app(self._app)
            self._app = None

    def get_info(self) -> dict:
        info = super().get_info()
        info["database_url"] = self.database_url
        info["emulator"] = os.environ.get("FIREBASE_DATABASE_EMULATOR_HOST")
        return info
