"""
Peer Connection Adapter

Wraps one aiortc RTCPeerConnection for a one-to-one call:
- Initiator (caller): adds the local tracks, produces the offer
- Responder (receiver): applies the caller's offer, produces the answer
- Surfaces a fixed set of events to the call service (see PeerEventType)

Payloads travel verbatim through the signaling channel:
    {"type": "offer"|"answer", "sdp": "..."}
    {"candidate": {"candidate": "...", "sdpMid": "0", "sdpMLineIndex": 0}}

aiortc finishes ICE gathering inside setLocalDescription(), so exactly one
description payload is produced per adapter. Trickled candidates from a
browser peer are still accepted.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.exceptions import InvalidAccessError, InvalidStateError
from aiortc.sdp import candidate_from_sdp

from app.providers.base import LocalStream
from app.services.call_errors import ProtocolError, PeerConnectionFailed

logger = logging.getLogger(__name__)

# Public STUN from two independent providers
DEFAULT_ICE_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:global.stun.twilio.com:3478",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
    "stun:stun3.l.google.com:19302",
    "stun:stun4.l.google.com:19302",
]
DEFAULT_CANDIDATE_POOL_SIZE = 10
MIN_ICE_PROVIDERS = 2


def ice_provider(url: str) -> str:
    """Registrable domain of a stun:/turn: URL ('stun:stun1.l.google.com:19302' -> 'google.com')"""
    address = url.split(":", 1)[1] if ":" in url else url
    host = address.split("?")[0].split(":")[0]
    labels = [label for label in host.split(".") if label]
    return ".".join(labels[-2:]).lower()


@dataclass
class TransportConfig:
    """ICE configuration for the peer transport (STUN only, no relay)"""

    ice_servers: List[str] = field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))
    ice_candidate_pool_size: int = DEFAULT_CANDIDATE_POOL_SIZE

    @property
    def providers(self) -> set:
        return {ice_provider(url) for url in self.ice_servers if ice_provider(url)}

    def validated(self) -> "TransportConfig":
        """Return self if usable, otherwise the defaults"""
        if len(self.providers) < MIN_ICE_PROVIDERS:
            logger.warning(
                f"ICE servers span {len(self.providers)} provider(s), need {MIN_ICE_PROVIDERS}; using defaults"
            )
            return TransportConfig()
        if self.ice_candidate_pool_size < DEFAULT_CANDIDATE_POOL_SIZE:
            logger.warning(
                f"ICE candidate pool size {self.ice_candidate_pool_size} below {DEFAULT_CANDIDATE_POOL_SIZE}; "
                "using defaults"
            )
            return TransportConfig(ice_servers=list(self.ice_servers))
        return self

    def to_rtc_configuration(self) -> RTCConfiguration:
        # aiortc has no candidate pool setting; the size is published for browser peers
        return RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in self.ice_servers])

    def to_browser_config(self) -> Dict[str, Any]:
        return {
            "iceServers": [{"urls": url} for url in self.ice_servers],
            "iceCandidatePoolSize": self.ice_candidate_pool_size,
        }


class PeerRole(Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class PeerEventType(Enum):
    LOCAL_DESCRIPTION = "local_description"  # payload: description dict to forward to the peer
    CONNECTED = "connected"
    REMOTE_STREAM = "remote_stream"  # payload: RemoteStream
    ERROR = "error"  # payload: exception
    CLOSED = "closed"


@dataclass
class PeerEvent:
    type: PeerEventType
    payload: Any = None


PeerEventHandler = Callable[[PeerEvent], None]


class RemoteStream:
    """Tracks received from the peer; handed to the remote media sink"""

    def __init__(self):
        self.tracks: List[Any] = []

    def add_track(self, track) -> None:
        self.tracks.append(track)

    @property
    def kinds(self) -> List[str]:
        return [track.kind for track in self.tracks]


class PeerConnectionAdapter:
    """One direct peer media connection (see module docstring)"""

    def __init__(
        self,
        role: PeerRole,
        local_stream: LocalStream,
        on_event: PeerEventHandler,
        config: Optional[TransportConfig] = None,
    ):
        self.role = role
        self.config = (config or TransportConfig()).validated()
        self._on_event = on_event
        self._connected = False
        self._destroyed = False
        self._remote_description_set = False
        self._close_task: Optional[asyncio.Future] = None
        self.remote_stream: Optional[RemoteStream] = None

        self._pc = RTCPeerConnection(configuration=self.config.to_rtc_configuration())
        self._pc.on("connectionstatechange", self._on_connection_state_change)
        self._pc.on("track", self._on_track)

        for track in local_stream.tracks:
            self._pc.addTrack(track)

        logger.info(f"Peer connection created ({role.value}, {len(local_stream.tracks)} local track(s))")

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    # ── Negotiation ──────────────────────────────────────────────────────────

    async def start(self, remote_offer: Optional[Dict[str, Any]] = None) -> None:
        """
        Begin negotiation: the initiator creates its offer, the responder
        applies remote_offer and creates its answer. The resulting description
        is delivered as a LOCAL_DESCRIPTION event.
        """
        if self.role is PeerRole.RESPONDER:
            if not remote_offer:
                raise ProtocolError("responder needs the caller's offer")
            await self.accept_remote_description(remote_offer)
            return

        if self._destroyed:
            raise ProtocolError("peer connection destroyed")
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        self._emit_local_description()

    async def accept_remote_description(self, payload: Dict[str, Any]) -> None:
        """
        Feed the peer's description (offer into a responder, answer into an
        initiator) or a trickled ICE candidate.

        Raises:
            ProtocolError: adapter destroyed or already connected, wrong
                description type, or a second description
        """
        if self._destroyed:
            raise ProtocolError("peer connection destroyed")
        if self._connected:
            raise ProtocolError("peer connection already connected")
        if not isinstance(payload, dict):
            raise ProtocolError("description payload must be an object")

        if "candidate" in payload:
            await self._add_candidate(payload["candidate"])
            return

        expected = "offer" if self.role is PeerRole.RESPONDER else "answer"
        if payload.get("type") != expected or not payload.get("sdp"):
            raise ProtocolError(f"{self.role.value} expects an {expected}, got {payload.get('type')!r}")
        if self._remote_description_set:
            raise ProtocolError("remote description already applied")

        try:
            await self._pc.setRemoteDescription(RTCSessionDescription(sdp=payload["sdp"], type=payload["type"]))
            self._remote_description_set = True
            if self.role is PeerRole.RESPONDER and not self._destroyed:
                answer = await self._pc.createAnswer()
                await self._pc.setLocalDescription(answer)
        except (ValueError, InvalidStateError, InvalidAccessError) as e:
            raise ProtocolError(f"could not apply {expected}: {e}") from e

        if self.role is PeerRole.RESPONDER:
            self._emit_local_description()

    async def _add_candidate(self, candidate: Any) -> None:
        if not isinstance(candidate, dict) or not candidate.get("candidate"):
            # End-of-candidates marker
            return
        try:
            line = candidate["candidate"]
            if line.startswith("candidate:"):
                line = line[len("candidate:"):]
            ice = candidate_from_sdp(line)
            ice.sdpMid = candidate.get("sdpMid", "0")
            ice.sdpMLineIndex = candidate.get("sdpMLineIndex", 0)
            await self._pc.addIceCandidate(ice)
        except (ValueError, IndexError) as e:
            logger.debug(f"ICE candidate add error (non-fatal): {e}")

    def _emit_local_description(self) -> None:
        description = self._pc.localDescription
        if description is None:
            return
        self._emit(PeerEventType.LOCAL_DESCRIPTION, {"type": description.type, "sdp": description.sdp})

    # ── aiortc events ────────────────────────────────────────────────────────

    async def _on_connection_state_change(self) -> None:
        state = self._pc.connectionState
        logger.info(f"Peer connection ({self.role.value}): state → {state}")
        if state == "connected" and not self._connected:
            self._connected = True
            self._emit(PeerEventType.CONNECTED)
        elif state == "failed":
            self._emit(PeerEventType.ERROR, PeerConnectionFailed("ICE/DTLS negotiation failed"))
        elif state == "closed":
            self._emit(PeerEventType.CLOSED)

    def _on_track(self, track) -> None:
        logger.info(f"Received remote track: {track.kind}")
        first = self.remote_stream is None
        if first:
            self.remote_stream = RemoteStream()
        self.remote_stream.add_track(track)
        if first:
            self._emit(PeerEventType.REMOTE_STREAM, self.remote_stream)

    def _emit(self, event_type: PeerEventType, payload: Any = None) -> None:
        if self._destroyed:
            return
        try:
            self._on_event(PeerEvent(event_type, payload))
        except Exception as e:
            logger.error(f"Peer event handler failed on {event_type.value}: {e}", exc_info=True)

    # ── Teardown ─────────────────────────────────────────────────────────────

    def destroy(self) -> None:
        """Close the transport (idempotent); no events are emitted afterwards"""
        if self._destroyed:
            return
        self._destroyed = True
        self._close_task = asyncio.ensure_future(self._pc.close())
        logger.info(f"Peer connection ({self.role.value}) destroyed")

    async def wait_closed(self) -> None:
        if self._close_task is not None:
            await self._close_task
