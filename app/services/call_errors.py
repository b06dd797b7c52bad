"""
Call error taxonomy

Every failure a call can run into is one of these. They are raised by the
collaborators (store, capture device, peer transport, uploader) and handled
by the call service through teardown plus a user notice; none of them
escapes to the UI as an uncaught fault.
"""


class PeerChatError(Exception):
    """Base class for all PeerChat errors"""

    code = "error"
    notice_key = "notices.generic"


class CallError(PeerChatError):
    """Failure that ends (or prevents) a call"""


class PermissionDenied(CallError):
    """The user refused camera/microphone access"""

    code = "permission_denied"
    notice_key = "notices.permission_denied"


class DeviceUnavailable(CallError):
    """No usable capture device"""

    code = "device_unavailable"
    notice_key = "notices.device_unavailable"


class ConnectivityError(CallError):
    """Signaling store read/write failed (usually: offline)"""

    code = "connectivity_error"
    notice_key = "notices.connectivity_error"


class ProtocolError(CallError):
    """Peer adapter misuse, e.g. feeding a description into a destroyed adapter"""

    code = "protocol_error"
    notice_key = "notices.connection_failed"


class CallTimeout(CallError):
    """No answer within the call timeout"""

    code = "timeout"
    notice_key = "notices.timed_out"


class PeerDeclined(CallError):
    """The callee explicitly declined"""

    code = "declined"
    notice_key = "notices.declined"


class PeerConnectionFailed(CallError):
    """Transport error or close before the call reached Connected"""

    code = "connection_failed"
    notice_key = "notices.connection_failed"


class UploadError(PeerChatError):
    """File upload collaborator failed"""

    code = "upload_failed"
    notice_key = "notices.upload_failed"
