"""Negotiation result values and lifecycle events.

Negotiators return these instead of emitting callbacks; the manager fans
them in, updates failure counts, and republishes them to subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class NegotiationSuccess:
    """Handshake completed and the session key was derived.

    Attributes:
        device_id: Device the session belongs to
        session_key: 16-byte derived session key (kept out of repr)
        device_random: 16 bytes returned by the device
        client_random: 16 bytes sent in the request
        ip: Address the response came from, when known
        port: Port the response came from, when known
        established_at: Unix time the session was established

    """

    device_id: str
    session_key: bytes = field(repr=False)
    device_random: bytes = field(repr=False)
    client_random: bytes = field(repr=False)
    ip: str | None = None
    port: int | None = None
    established_at: float = 0.0


@dataclass(frozen=True)
class NegotiationFailure:
    """Handshake ended without a session.

    ``reason`` is one of: malformed_frame, crc_mismatch, unexpected_command,
    decryption_failed, invalid_payload, uuid_mismatch, gwid_mismatch, timeout,
    transport_error, cancelled.
    """

    device_id: str
    reason: str
    error: Exception | None = field(default=None, compare=False)


@dataclass(frozen=True)
class DeviceOffline:
    """A device reached the consecutive-failure threshold."""

    device_id: str
    failure_count: int


NegotiationOutcome = NegotiationSuccess | NegotiationFailure
NegotiationEvent = NegotiationSuccess | NegotiationFailure | DeviceOffline


@dataclass(frozen=True)
class BatchResult:
    """Per-device outcomes of one batch negotiation."""

    succeeded: dict[str, NegotiationSuccess] = field(default_factory=dict)
    failed: dict[str, NegotiationFailure] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def outcome_for(self, device_id: str) -> NegotiationOutcome | None:
        """Return the outcome recorded for ``device_id``, if it was part of the batch."""
        return self.succeeded.get(device_id) or self.failed.get(device_id)
