"""Session-key negotiation (protocol v3.5).

- message.py: request/response message construction
- negotiator.py: per-device handshake state machine
- manager.py: batch negotiation, response routing, offline escalation
- session_cache.py: committed session material
- batch.py: multi-device broadcast frames
- events.py: result values and lifecycle events
"""

from .batch import BatchDevice, BatchPacket, build_batch_packet, parse_batch_packet
from .events import BatchResult, DeviceOffline, NegotiationFailure, NegotiationSuccess
from .manager import NegotiatorManager
from .message import NegotiationRequest, build_negotiation_frame, device_uuid
from .negotiator import NegotiationState, SessionNegotiator
from .session_cache import CachedSession, SessionCache

__all__ = [
    "BatchDevice",
    "BatchPacket",
    "BatchResult",
    "CachedSession",
    "DeviceOffline",
    "NegotiationFailure",
    "NegotiationRequest",
    "NegotiationState",
    "NegotiationSuccess",
    "NegotiatorManager",
    "SessionCache",
    "SessionNegotiator",
    "build_batch_packet",
    "build_negotiation_frame",
    "device_uuid",
    "parse_batch_packet",
]
