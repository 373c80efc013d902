"""UDP transport, discovery and encrypted command sending."""

from .discovery import TuyaDiscovery, parse_discovery_datagram
from .exceptions import SessionNotEstablishedError, TransportError
from .secure_sender import SecureSender
from .udp import DatagramSender, UDPTransport

__all__ = [
    "DatagramSender",
    "SecureSender",
    "SessionNotEstablishedError",
    "TransportError",
    "TuyaDiscovery",
    "UDPTransport",
    "parse_discovery_datagram",
]
