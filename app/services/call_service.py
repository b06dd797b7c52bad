"""
Call Signaling Service

The call state machine of one PeerChat process:

    caller:   idle → calling → connected → idle
    receiver: idle → receiving → connected → idle
    any state → idle via teardown (error, decline, timeout, hangup)

Signaling goes through the one-slot mailboxes of the notification channel:
the caller writes its offer to ``calls/{callee}``, the callee answers or
declines into ``calls/{caller}``. Each side only ever reads its own mailbox.

Everything runs on the asyncio event loop; handlers for one session never
run concurrently, so state is guarded by re-entrancy checks ("is this still
the current session?") rather than locks.
"""

import asyncio
import json
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from app.i18n import translate, translate_notice
from app.providers.base import LocalStream, MediaCaptureProvider, MediaConstraints, StoreSubscription
from app.services.call_errors import (
    CallError,
    CallTimeout,
    ConnectivityError,
    PeerConnectionFailed,
    PeerDeclined,
    ProtocolError,
)
from app.services.media_session import MediaSession
from app.services.peer_connection import (
    PeerConnectionAdapter,
    PeerEvent,
    PeerEventType,
    PeerRole,
    TransportConfig,
)
from app.services.signaling import CallSignal, NotificationChannel, SignalKind

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT = 30.0
HISTORY_SIZE = 50
NOTICE_BUFFER_SIZE = 50


class CallRole(Enum):
    IDLE = "idle"
    CALLING = "calling"
    RECEIVING = "receiving"


class CallState(Enum):
    IDLE = "idle"
    CALLING = "calling"
    RECEIVING = "receiving"
    CONNECTED = "connected"


@dataclass
class CallSession:
    """The single active call of this process (owned exclusively by CallService)"""

    call_id: str
    role: CallRole
    peer_user_id: str
    media: MediaSession
    signal_key: str  # mailbox this session writes to: calls/{peer}
    state: CallState
    started_at: float = field(default_factory=time.time)
    connected_at: Optional[float] = None
    peer_connection: Any = None
    subscription: Optional[StoreSubscription] = None
    timer: Optional[asyncio.TimerHandle] = None
    remote_stream: Any = None
    offer_created_at: Optional[int] = None
    wrote_signal: bool = False
    description_sent: bool = False
    peer_seen: bool = False
    applied_payloads: Set[str] = field(default_factory=set)
    torn_down: bool = False

    @property
    def audio_enabled(self) -> bool:
        return self.media.audio_enabled

    @property
    def video_enabled(self) -> bool:
        return self.media.video_enabled


@dataclass
class IncomingCall:
    """An offer waiting for the user's accept/decline choice"""

    from_user_id: str
    caller_name: str
    payload: Dict[str, Any]
    created_at: Optional[int]
    received_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_uid": self.from_user_id,
            "caller_name": self.caller_name,
            "created_at": self.created_at,
            "received_at": self.received_at,
        }


@dataclass
class CallRecord:
    peer_uid: str
    direction: str  # outgoing | incoming
    outcome: str  # completed | declined | timeout | failed | cancelled | missed | rejected
    started_at: float
    ended_at: float
    connected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peer_uid": self.peer_uid,
            "direction": self.direction,
            "outcome": self.outcome,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration": round(self.ended_at - self.started_at, 1),
            "connected": self.connected,
        }


@dataclass
class Notice:
    """Transient user-visible notification"""

    level: str  # info | success | warning | error
    code: str
    title: str
    description: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "code": self.code,
            "title": self.title,
            "description": self.description,
            "timestamp": self.timestamp,
        }


def _fingerprint(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, default=str)


AdapterFactory = Callable[[PeerRole, LocalStream, Callable[[PeerEvent], None]], Any]
EventListener = Callable[[str, Dict[str, Any]], None]


class CallService:
    """
    Call signaling state machine (see module docstring).

    UI operations return result dicts ({'success': bool, 'error': code, ...});
    collaborator failures are handled here by teardown plus a notice.
    """

    def __init__(
        self,
        uid: str,
        channel: NotificationChannel,
        media_provider: MediaCaptureProvider,
        adapter_factory: Optional[AdapterFactory] = None,
        transport_config: Optional[TransportConfig] = None,
        constraints: Optional[MediaConstraints] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        name_lookup: Optional[Callable[[str], Optional[str]]] = None,
        websocket_manager=None,
        language: str = "en",
    ):
        self.uid = uid
        self.channel = channel
        self.media_provider = media_provider
        self.transport_config = (transport_config or TransportConfig()).validated()
        self.adapter_factory = adapter_factory or self._default_adapter_factory
        self.constraints = constraints or MediaConstraints()
        self.call_timeout = call_timeout
        self.name_lookup = name_lookup
        self.websocket_manager = websocket_manager
        self.language = language

        self._session: Optional[CallSession] = None
        self._incoming: Optional[IncomingCall] = None
        self._inbox: Optional[StoreSubscription] = None
        self._listeners: List[EventListener] = []
        self._tasks: Set[asyncio.Future] = set()
        self._notices: deque = deque(maxlen=NOTICE_BUFFER_SIZE)
        self._history: deque = deque(maxlen=HISTORY_SIZE)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    @property
    def inbox_key(self) -> str:
        return NotificationChannel.call_key(self.uid)

    @property
    def is_listening(self) -> bool:
        return self._inbox is not None and self._inbox.active

    def start(self) -> None:
        """Start listening for incoming calls"""
        if self.is_listening:
            return
        self._inbox = self.channel.subscribe(self.inbox_key, self._on_inbox_signal)
        logger.info(f"Listening for calls on {self.inbox_key}")

    async def stop(self) -> None:
        """End any call and stop listening (process/session teardown)"""
        if self._session is not None:
            self._teardown(self._session, outcome="cancelled")
        self._incoming = None
        if self._inbox is not None:
            self._inbox.unsubscribe()
            self._inbox = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("Call service stopped")

    # ── Observers ────────────────────────────────────────────────────────────

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def state(self) -> CallState:
        return self._session.state if self._session else CallState.IDLE

    @property
    def session(self) -> Optional[CallSession]:
        return self._session

    @property
    def incoming(self) -> Optional[IncomingCall]:
        return self._incoming

    # ── Caller path ──────────────────────────────────────────────────────────

    async def start_call(self, peer_uid: str) -> Dict[str, Any]:
        """Call peer_uid (rejected unless idle)"""
        if not peer_uid or peer_uid == self.uid:
            return self._failure("invalid_peer")

        if self._session is not None:
            self._notify("warning", "in_progress")
            return self._failure("call_in_progress", "notices.in_progress")

        if self._incoming is not None and self._incoming.from_user_id == peer_uid:
            # They are already calling us: answer instead of racing a second offer
            logger.info(f"{peer_uid} is already calling; accepting their offer")
            return await self.accept()

        session = CallSession(
            call_id=uuid.uuid4().hex[:12],
            role=CallRole.CALLING,
            peer_user_id=peer_uid,
            media=MediaSession(self.media_provider),
            signal_key=NotificationChannel.call_key(peer_uid),
            state=CallState.CALLING,
        )
        self._session = session
        session.timer = asyncio.get_running_loop().call_later(self.call_timeout, self._on_call_timeout, session)
        logger.info(f"Call {session.call_id}: calling {peer_uid}")
        self._broadcast_status()

        try:
            stream = await session.media.acquire(self.constraints)
        except CallError as e:
            logger.warning(f"Call {session.call_id}: media acquisition failed: {e}")
            self._teardown(session, outcome="failed", error=e)
            return self._failure(e.code, e.notice_key)
        if not self._is_current(session):
            return self._failure("cancelled")

        # Fresh call: drop whatever an earlier call left in our own mailbox
        try:
            await self.channel.clear(self.inbox_key)
        except ConnectivityError as e:
            self._teardown(session, outcome="failed", error=e)
            return self._failure(e.code, e.notice_key)
        if not self._is_current(session):
            return self._failure("cancelled")

        session.subscription = self.channel.subscribe(
            self.inbox_key, lambda signal: self._on_caller_signal(session, signal)
        )

        try:
            session.peer_connection = self.adapter_factory(
                PeerRole.INITIATOR, stream, lambda event: self._on_peer_event(session, event)
            )
            await session.peer_connection.start()
        except Exception as e:
            return self._fail_negotiation(session, e)

        if not self._is_current(session):
            return self._failure("cancelled")
        return {"success": True, "call_id": session.call_id, "state": session.state.value}

    def _on_caller_signal(self, session: CallSession, signal: Optional[CallSignal]) -> None:
        if not self._is_current(session):
            return

        if signal is None:
            if session.peer_seen:
                logger.info(f"Call {session.call_id}: {session.peer_user_id} hung up")
                self._teardown(session, outcome="completed", notice_key="ended_by_peer")
            return

        if signal.from_user_id != session.peer_user_id or not session.description_sent:
            # Another caller (handled by the inbox) or a leftover from an older call
            return

        if signal.kind is SignalKind.ANSWER:
            session.peer_seen = True
            self._apply_remote(session, signal.payload)
        elif signal.kind is SignalKind.OFFER:
            # Before an answer a peer offer is a simultaneous call (see _resolve_glare)
            if session.peer_seen and self._is_redial(session, signal):
                self._restart_for_redial(session, signal)
        elif signal.kind is SignalKind.DECLINE:
            logger.info(f"Call {session.call_id}: declined by {session.peer_user_id}")
            self._teardown(session, outcome="declined", error=PeerDeclined())

    def _on_call_timeout(self, session: CallSession) -> None:
        if not self._is_current(session) or session.state is not CallState.CALLING:
            return
        logger.info(f"Call {session.call_id}: no answer after {self.call_timeout:.0f}s")
        self._teardown(session, outcome="timeout", error=CallTimeout())

    # ── Receiver path ────────────────────────────────────────────────────────

    def _on_inbox_signal(self, signal: Optional[CallSignal]) -> None:
        if signal is None:
            if self._incoming is not None:
                self._dismiss_incoming()
            return

        if signal.from_user_id == self.uid:
            return

        if signal.kind is not SignalKind.OFFER:
            # Answers/declines belong to the active session; one from someone
            # else overwrote the pending offer
            if self._incoming is not None and signal.from_user_id != self._incoming.from_user_id:
                self._dismiss_incoming()
            return

        if signal.is_stale(self.call_timeout):
            logger.debug(f"Ignoring stale offer from {signal.from_user_id}")
            return

        session = self._session
        if session is not None:
            if session.peer_user_id == signal.from_user_id and session.state is CallState.CALLING:
                self._resolve_glare(session, signal)
            elif session.peer_user_id != signal.from_user_id:
                logger.info(f"Busy: ignoring offer from {signal.from_user_id}")
            return

        if self._incoming is not None:
            if self._incoming.from_user_id == signal.from_user_id and self._incoming.created_at == signal.created_at:
                return
            self._dismiss_incoming()

        caller_name = self._display_name(signal.from_user_id)
        self._incoming = IncomingCall(
            from_user_id=signal.from_user_id,
            caller_name=caller_name,
            payload=signal.payload,
            created_at=signal.created_at,
        )
        logger.info(f"Incoming call from {signal.from_user_id}")
        self._notify("info", "incoming", caller=caller_name)
        self._emit("incoming_call", self._incoming.to_dict())
        self._broadcast_status()

    def _resolve_glare(self, session: CallSession, signal: CallSignal) -> None:
        """Both sides called each other: the lower uid's offer wins"""
        if self.uid < signal.from_user_id:
            logger.info(f"Call {session.call_id}: simultaneous call with {signal.from_user_id}, keeping our offer")
            return

        logger.info(f"Call {session.call_id}: simultaneous call with {signal.from_user_id}, answering theirs")
        # Keep calls/{peer} as is: our answer is about to overwrite it
        self._teardown(session, outcome="cancelled", clear_signal=False, quiet=True)
        self._incoming = IncomingCall(
            from_user_id=signal.from_user_id,
            caller_name=self._display_name(signal.from_user_id),
            payload=signal.payload,
            created_at=signal.created_at,
        )
        self._spawn(self.accept())

    def _dismiss_incoming(self) -> None:
        incoming = self._incoming
        self._incoming = None
        logger.info(f"Offer from {incoming.from_user_id} withdrawn")
        self._record(incoming.from_user_id, "incoming", "missed", incoming.received_at)
        self._notify("info", "missed", caller=incoming.caller_name)
        self._broadcast_status()

    async def accept(self) -> Dict[str, Any]:
        """Accept the pending incoming call"""
        incoming = self._incoming
        if incoming is None:
            return self._failure("no_incoming_call", "notices.no_incoming_call")
        if self._session is not None:
            self._notify("warning", "in_progress")
            return self._failure("call_in_progress", "notices.in_progress")

        self._incoming = None
        session = CallSession(
            call_id=uuid.uuid4().hex[:12],
            role=CallRole.RECEIVING,
            peer_user_id=incoming.from_user_id,
            media=MediaSession(self.media_provider),
            signal_key=NotificationChannel.call_key(incoming.from_user_id),
            state=CallState.RECEIVING,
            offer_created_at=incoming.created_at,
        )
        session.applied_payloads.add(_fingerprint(incoming.payload))
        self._session = session
        logger.info(f"Call {session.call_id}: accepting call from {incoming.from_user_id}")
        self._broadcast_status()

        try:
            stream = await session.media.acquire(self.constraints)
        except CallError as e:
            # Offer stays unanswered; the caller's timeout cleans up
            logger.warning(f"Call {session.call_id}: media acquisition failed: {e}")
            self._teardown(session, outcome="failed", error=e)
            return self._failure(e.code, e.notice_key)
        if not self._is_current(session):
            return self._failure("cancelled")

        session.subscription = self.channel.subscribe(
            self.inbox_key, lambda signal: self._on_receiver_signal(session, signal)
        )

        try:
            session.peer_connection = self.adapter_factory(
                PeerRole.RESPONDER, stream, lambda event: self._on_peer_event(session, event)
            )
            await session.peer_connection.start(incoming.payload)
        except Exception as e:
            return self._fail_negotiation(session, e)

        if not self._is_current(session):
            return self._failure("cancelled")
        return {"success": True, "call_id": session.call_id, "state": session.state.value}

    def _on_receiver_signal(self, session: CallSession, signal: Optional[CallSignal]) -> None:
        if not self._is_current(session):
            return

        if signal is None:
            if session.peer_seen:
                logger.info(f"Call {session.call_id}: {session.peer_user_id} hung up")
                self._teardown(session, outcome="completed", notice_key="ended_by_peer")
            return

        if signal.from_user_id != session.peer_user_id or signal.kind is not SignalKind.OFFER:
            return
        session.peer_seen = True

        if self._is_redial(session, signal):
            self._restart_for_redial(session, signal)
            return

        self._apply_remote(session, signal.payload)

    @staticmethod
    def _is_redial(session: CallSession, signal: CallSignal) -> bool:
        """A fresh offer from the peer, newer than the one this call was built on"""
        return (
            "candidate" not in signal.payload
            and signal.created_at is not None
            and session.offer_created_at is not None
            and signal.created_at > session.offer_created_at
        )

    def _restart_for_redial(self, session: CallSession, signal: CallSignal) -> None:
        # The peer hung up and redialled; the cleared record may never have been observed
        logger.info(f"Call {session.call_id}: {session.peer_user_id} started a new call")
        self._teardown(session, outcome="completed", notice_key="ended_by_peer")
        self._on_inbox_signal(signal)

    async def decline(self) -> Dict[str, Any]:
        """Decline the pending incoming call; this side stays idle"""
        incoming = self._incoming
        if incoming is None:
            return self._failure("no_incoming_call", "notices.no_incoming_call")

        self._incoming = None
        self._broadcast_status()
        try:
            await self.channel.publish(
                NotificationChannel.call_key(incoming.from_user_id), CallSignal.decline(self.uid)
            )
        except ConnectivityError as e:
            logger.error(f"Could not send decline to {incoming.from_user_id}: {e}")
            self._notify("error", "connectivity_error")
            return self._failure(e.code, e.notice_key)

        logger.info(f"Declined call from {incoming.from_user_id}")
        self._record(incoming.from_user_id, "incoming", "rejected", incoming.received_at)
        return {"success": True}

    # ── Shared call handling ─────────────────────────────────────────────────

    def _on_peer_event(self, session: CallSession, event: PeerEvent) -> None:
        if not self._is_current(session):
            return

        if event.type is PeerEventType.LOCAL_DESCRIPTION:
            if session.role is CallRole.CALLING:
                signal = CallSignal.offer(self.uid, event.payload)
            else:
                signal = CallSignal.answer(self.uid, event.payload)
            self._spawn(self._send_description(session, signal))

        elif event.type is PeerEventType.CONNECTED:
            if session.timer is not None:
                session.timer.cancel()
                session.timer = None
            session.state = CallState.CONNECTED
            session.connected_at = time.time()
            logger.info(f"Call {session.call_id}: connected with {session.peer_user_id}")
            self._notify("success", "connected")
            self._broadcast_status()

        elif event.type is PeerEventType.REMOTE_STREAM:
            session.remote_stream = event.payload
            self._emit("remote_stream", {"call_id": session.call_id, "kinds": getattr(event.payload, "kinds", [])})

        elif event.type is PeerEventType.ERROR:
            error = event.payload if isinstance(event.payload, CallError) else PeerConnectionFailed(str(event.payload))
            logger.error(f"Call {session.call_id}: peer connection error: {error}")
            self._teardown(session, outcome="failed", error=error)

        elif event.type is PeerEventType.CLOSED:
            if session.state is CallState.CONNECTED:
                self._teardown(session, outcome="completed", notice_key="ended")
            else:
                self._teardown(
                    session, outcome="failed", error=PeerConnectionFailed("connection closed before connecting")
                )

    async def _send_description(self, session: CallSession, signal: CallSignal) -> None:
        session.wrote_signal = True
        try:
            await self.channel.publish(session.signal_key, signal)
        except ConnectivityError as e:
            logger.error(f"Call {session.call_id}: sending {signal.kind.value} failed: {e}")
            self._teardown(session, outcome="failed", error=e)
            return

        if session.torn_down:
            # Ended while the write was in flight: do not leave the record behind
            await self._clear_signal(session.signal_key)
            return
        if signal.kind is SignalKind.OFFER:
            session.offer_created_at = signal.created_at
        session.description_sent = True

    def _apply_remote(self, session: CallSession, payload: Dict[str, Any]) -> None:
        fingerprint = _fingerprint(payload)
        if fingerprint in session.applied_payloads:
            return
        session.applied_payloads.add(fingerprint)

        adapter = session.peer_connection
        if adapter is None:
            return
        if "candidate" in payload and adapter.connected:
            return
        self._spawn(self._accept_remote(session, adapter, payload))

    async def _accept_remote(self, session: CallSession, adapter, payload: Dict[str, Any]) -> None:
        try:
            await adapter.accept_remote_description(payload)
        except ProtocolError as e:
            if not self._is_current(session):
                return
            logger.error(f"Call {session.call_id}: could not apply remote description: {e}")
            self._teardown(session, outcome="failed", error=e)

    def _fail_negotiation(self, session: CallSession, error: Exception) -> Dict[str, Any]:
        if not self._is_current(session):
            logger.info(f"Call {session.call_id}: negotiation aborted by hangup ({error})")
            return self._failure("cancelled")
        if not isinstance(error, CallError):
            logger.error(f"Call {session.call_id}: negotiation failed: {error}", exc_info=True)
            error = PeerConnectionFailed(str(error))
        else:
            logger.error(f"Call {session.call_id}: negotiation failed: {error}")
        self._teardown(session, outcome="failed", error=error)
        return self._failure(error.code, error.notice_key)

    # ── UI operations on the active call ─────────────────────────────────────

    def end_call(self) -> Dict[str, Any]:
        """Hang up; adapter and media release is requested synchronously"""
        session = self._session
        if session is None:
            return self._failure("no_active_call", "notices.no_active_call")
        outcome = "completed" if session.state is CallState.CONNECTED else "cancelled"
        self._teardown(session, outcome=outcome, notice_key="ended")
        return {"success": True}

    def toggle_audio(self, enabled: Optional[bool] = None) -> Dict[str, Any]:
        session = self._session
        if session is None or not session.media.is_active:
            return self._failure("no_active_call", "notices.no_active_call")
        value = (not session.media.audio_enabled) if enabled is None else enabled
        session.media.set_audio_enabled(value)
        self._broadcast_status()
        return {"success": True, "audio_enabled": value}

    def toggle_video(self, enabled: Optional[bool] = None) -> Dict[str, Any]:
        session = self._session
        if session is None or not session.media.is_active:
            return self._failure("no_active_call", "notices.no_active_call")
        value = (not session.media.video_enabled) if enabled is None else enabled
        session.media.set_video_enabled(value)
        self._broadcast_status()
        return {"success": True, "video_enabled": value}

    # ── Teardown ─────────────────────────────────────────────────────────────

    def _teardown(
        self,
        session: CallSession,
        outcome: str,
        error: Optional[CallError] = None,
        notice_key: Optional[str] = None,
        clear_signal: Optional[bool] = None,
        quiet: bool = False,
    ) -> None:
        """Return to idle; safe to call any number of times for the same session"""
        if session.torn_down:
            return
        session.torn_down = True

        if session.timer is not None:
            session.timer.cancel()
            session.timer = None
        if session.subscription is not None:
            session.subscription.unsubscribe()
            session.subscription = None
        if session.peer_connection is not None:
            session.peer_connection.destroy()
        session.media.release()

        if self._session is session:
            self._session = None

        if session.wrote_signal if clear_signal is None else clear_signal:
            self._spawn(self._clear_signal(session.signal_key))

        direction = "outgoing" if session.role is CallRole.CALLING else "incoming"
        self._record(session.peer_user_id, direction, outcome, session.started_at, session.connected_at is not None)
        logger.info(f"Call {session.call_id}: ended ({outcome}{f': {error}' if error else ''})")

        if not quiet:
            if error is not None:
                level = "error"
                if isinstance(error, PeerDeclined):
                    level = "info"
                elif isinstance(error, CallTimeout):
                    level = "warning"
                self._notify(level, error.notice_key.split(".", 1)[1], peer=self._display_name(session.peer_user_id))
            elif notice_key:
                self._notify("info", notice_key, peer=self._display_name(session.peer_user_id))
        self._broadcast_status()

    async def _clear_signal(self, key: str) -> None:
        """Best effort; the peer ignores a leftover record once it is stale"""
        try:
            await self.channel.clear(key)
        except ConnectivityError as e:
            logger.warning(f"Could not clear {key}: {e}")

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _is_current(self, session: CallSession) -> bool:
        return self._session is session and not session.torn_down

    def _default_adapter_factory(self, role: PeerRole, stream: LocalStream, on_event) -> PeerConnectionAdapter:
        return PeerConnectionAdapter(role, stream, on_event, self.transport_config)

    def _display_name(self, uid: str) -> str:
        name = self.name_lookup(uid) if self.name_lookup else None
        return name or translate("calls.someone", self.language)

    def _spawn(self, coro) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Call task failed: {exc}", exc_info=exc)

    def _failure(self, code: str, message_key: Optional[str] = None) -> Dict[str, Any]:
        result = {"success": False, "error": code}
        if message_key:
            result["message"] = translate(f"{message_key}.description", self.language)
        return result

    def _record(self, peer_uid: str, direction: str, outcome: str, started_at: float, connected: bool = False):
        self._history.append(
            CallRecord(
                peer_uid=peer_uid,
                direction=direction,
                outcome=outcome,
                started_at=started_at,
                ended_at=time.time(),
                connected=connected,
            )
        )

    def _notify(self, level: str, key: str, **kwargs) -> Notice:
        notice = Notice(level=level, code=key, **translate_notice(key, self.language, **kwargs))
        self._notices.append(notice)
        self._emit("notice", notice.to_dict())
        return notice

    def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event_type, data)
            except Exception as e:
                logger.error(f"Call listener failed on {event_type}: {e}")
        if self.websocket_manager is not None:
            self._spawn(self.websocket_manager.broadcast(event_type, data))

    def _broadcast_status(self) -> None:
        self._emit("call_status", self.get_status())

    # ── Status ───────────────────────────────────────────────────────────────

    def get_status(self) -> Dict[str, Any]:
        session = self._session
        status: Dict[str, Any] = {
            "state": self.state.value,
            "listening": self.is_listening,
            "incoming": self._incoming.to_dict() if self._incoming else None,
            "call": None,
        }
        if session is not None:
            status["call"] = {
                "call_id": session.call_id,
                "role": session.role.value,
                "peer_uid": session.peer_user_id,
                "peer_name": self._display_name(session.peer_user_id),
                "audio_enabled": session.audio_enabled,
                "video_enabled": session.video_enabled,
                "started_at": session.started_at,
                "connected_at": session.connected_at,
                "has_remote_stream": session.remote_stream is not None,
            }
        return status

    def get_notices(self, limit: int = 20) -> List[Dict[str, Any]]:
        return [notice.to_dict() for notice in list(self._notices)[-limit:]]

    def get_history(self, limit: int = HISTORY_SIZE) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in list(self._history)[-limit:]]

    def get_ice_config(self) -> Dict[str, Any]:
        return self.transport_config.to_browser_config()


# Global instance
_call_service: Optional[CallService] = None


def get_call_service() -> Optional[CallService]:
    return _call_service


def init_call_service(*args, **kwargs) -> CallService:
    global _call_service
    _call_service = CallService(*args, **kwargs)
    return _call_service
