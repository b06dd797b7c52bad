"""
Test doubles for PeerChat tests

Stand-ins for the parts that need real hardware or a network: capture
devices (FakeMediaProvider) and the peer transport (FakePeerNetwork).
"""

import asyncio
from typing import Callable, Dict, List, Optional

from app.providers.base import LocalStream, MediaCaptureProvider, MediaConstraints
from app.services.call_errors import ProtocolError
from app.services.peer_connection import PeerEvent, PeerEventType, PeerRole


async def settle(rounds: int = 50):
    """Let queued store deliveries and spawned tasks run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind
        self.enabled = True
        self.stop_count = 0

    def stop(self):
        self.stop_count += 1


class FakeMediaProvider(MediaCaptureProvider):
    """Capture provider handing out fake tracks; can be told to fail"""

    def __init__(self, error: Optional[Exception] = None):
        super().__init__()
        self.name = "fake"
        self.display_name = "Fake capture"
        self.error = error
        self.streams: List[LocalStream] = []
        self.constraints: List[MediaConstraints] = []

    async def open(self, constraints: MediaConstraints) -> LocalStream:
        self.constraints.append(constraints)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        stream = LocalStream([FakeTrack("audio")], [FakeTrack("video")], source=self.name)
        self.streams.append(stream)
        return stream

    @property
    def open_count(self) -> int:
        return len(self.streams)


class FakePeerAdapter:
    """
    Scripted peer connection: the initiator's offer and the responder's
    answer carry a shared pairing id; once the initiator accepts the answer
    both sides connect and receive each other's stream.
    """

    def __init__(self, network: "FakePeerNetwork", role: PeerRole, local_stream: LocalStream, on_event):
        self.network = network
        self.role = role
        self.local_stream = local_stream
        self.on_event = on_event
        self.partner: Optional["FakePeerAdapter"] = None
        self.pair_id: Optional[int] = None
        self.connected = False
        self.destroyed = False
        self.destroy_count = 0
        self.remote_descriptions: List[dict] = []
        self.events: List[PeerEventType] = []

    def emit(self, event_type: PeerEventType, payload=None):
        if self.destroyed:
            return
        self.events.append(event_type)
        self.on_event(PeerEvent(event_type, payload))

    async def start(self, remote_offer: Optional[dict] = None):
        await asyncio.sleep(0)
        if self.network.before_start is not None:
            self.network.before_start()
        if self.network.fail_start:
            raise ProtocolError("scripted start failure")
        if self.role is PeerRole.INITIATOR:
            self.pair_id = self.network.register_initiator(self)
            self.emit(PeerEventType.LOCAL_DESCRIPTION, {"type": "offer", "sdp": f"offer:{self.pair_id}"})
        else:
            await self.accept_remote_description(remote_offer)

    async def accept_remote_description(self, payload: dict):
        if self.destroyed:
            raise ProtocolError("peer connection destroyed")
        if self.connected:
            raise ProtocolError("peer connection already connected")
        self.remote_descriptions.append(payload)
        if "candidate" in payload:
            return
        pair_id = int(payload["sdp"].split(":", 1)[1])
        if self.role is PeerRole.RESPONDER:
            self.pair_id = pair_id
            self.partner = self.network.initiators.get(pair_id)
            if self.partner is not None:
                self.partner.partner = self
            self.network.responders[pair_id] = self
            self.emit(PeerEventType.LOCAL_DESCRIPTION, {"type": "answer", "sdp": f"answer:{pair_id}"})
        elif self.partner is not None and self.network.auto_connect:
            self.network.connect(self, self.partner)

    def destroy(self):
        self.destroy_count += 1
        if self.destroyed:
            return
        self.destroyed = True
        partner = self.partner
        if partner is not None and self.network.close_partner_on_destroy:
            asyncio.get_running_loop().call_soon(partner.emit, PeerEventType.CLOSED)


class FakePeerNetwork:
    """Factory for FakePeerAdapter instances sharing one pairing table"""

    def __init__(self):
        self.adapters: List[FakePeerAdapter] = []
        self.initiators: Dict[int, FakePeerAdapter] = {}
        self.responders: Dict[int, FakePeerAdapter] = {}
        self.auto_connect = True
        self.close_partner_on_destroy = True
        self.fail_start = False
        self.before_start: Optional[Callable[[], None]] = None
        self._next_id = 0

    def factory(self, role: PeerRole, local_stream: LocalStream, on_event) -> FakePeerAdapter:
        adapter = FakePeerAdapter(self, role, local_stream, on_event)
        self.adapters.append(adapter)
        return adapter

    def register_initiator(self, adapter: FakePeerAdapter) -> int:
        self._next_id += 1
        self.initiators[self._next_id] = adapter
        return self._next_id

    def connect(self, initiator: FakePeerAdapter, responder: FakePeerAdapter):
        for adapter in (initiator, responder):
            adapter.connected = True
            adapter.emit(PeerEventType.CONNECTED)
        initiator.emit(PeerEventType.REMOTE_STREAM, responder.local_stream)
        responder.emit(PeerEventType.REMOTE_STREAM, initiator.local_stream)


class EventRecorder:
    """Collects call service events by type"""

    def __init__(self):
        self.events: List[tuple] = []

    def __call__(self, event_type: str, data: dict):
        self.events.append((event_type, data))

    def of(self, event_type: str) -> List[dict]:
        return [data for kind, data in self.events if kind == event_type]

    def notice_codes(self) -> List[str]:
        return [notice["code"] for notice in self.of("notice")]


