"""Custom exception types for Tuya LAN protocol errors.

This module defines the exception hierarchy for frame, crypto and negotiation
errors. Low-level functions raise these; the GCM parser and the session
negotiator convert them into ``None`` results or failure values at their
public boundaries.
"""

from __future__ import annotations


class TuyaProtocolError(Exception):
    """Base exception for all Tuya LAN protocol errors.

    Every subclass carries a machine-readable ``reason`` so callers can
    aggregate failures without parsing messages.
    """

    reason: str = "protocol_error"


class MalformedFrameError(TuyaProtocolError):
    """Frame cannot be parsed.

    Raised when the buffer is shorter than the minimum frame, the prefix is not
    recognized, or the declared payload length runs past the end of the buffer.

    Attributes:
        reason: Specific failure reason (e.g., "too_short", "invalid_prefix", "truncated")
        data_preview: First 16 bytes of the frame (never the whole payload)

    """

    def __init__(self, reason: str, data: bytes = b"") -> None:
        """Initialize with failure reason and a bounded preview of the data."""
        self.reason: str = reason
        # Only keep the header bytes so encrypted payloads never end up in logs
        self.data_preview: bytes = bytes(data[:16]) if data else b""
        super().__init__(f"Malformed frame: {reason}")


class CrcMismatchError(TuyaProtocolError):
    """Frame CRC does not match the computed CRC.

    Attributes:
        expected: CRC carried in the frame
        actual: CRC computed over header and payload

    """

    reason = "crc_mismatch"

    def __init__(self, expected: int, actual: int) -> None:
        """Initialize with the carried and computed CRC values."""
        self.expected: int = expected
        self.actual: int = actual
        super().__init__(f"CRC mismatch: frame=0x{expected:08x} computed=0x{actual:08x}")


class AuthenticationError(TuyaProtocolError):
    """AES-GCM authentication failed (tag mismatch or malformed AEAD input).

    Never carries any plaintext.
    """

    def __init__(self, reason: str = "tag_mismatch") -> None:
        """Initialize with failure reason."""
        self.reason: str = reason
        super().__init__(f"Authentication failed: {reason}")


class IdentityMismatchError(TuyaProtocolError):
    """Negotiation response names a different uuid or gwId than the request.

    Attributes:
        field: Name of the mismatched field ("uuid" or "gwId")
        expected: Value sent in the request
        actual: Value returned by the peer

    """

    def __init__(self, field: str, expected: str, actual: str) -> None:
        """Initialize with the mismatched field and both values."""
        self.field: str = field
        self.reason: str = "uuid_mismatch" if field == "uuid" else "gwid_mismatch"
        self.expected: str = expected
        self.actual: str = actual
        super().__init__(f"Identity mismatch on {field}: expected {expected!r}, got {actual!r}")


class NegotiationError(TuyaProtocolError):
    """Session negotiation failed.

    Attributes:
        reason: Specific failure reason (e.g., "invalid_payload", "transport_error")
        device_id: Device whose negotiation failed

    """

    def __init__(self, reason: str, device_id: str = "") -> None:
        """Initialize with failure reason and device id."""
        self.reason: str = reason
        self.device_id: str = device_id
        super().__init__(f"Negotiation failed for {device_id or '<unknown>'}: {reason}")


class NegotiationTimeoutError(NegotiationError):
    """Negotiation did not complete before the batch deadline."""

    def __init__(self, device_id: str, timeout_ms: int) -> None:
        """Initialize with device id and the deadline that expired."""
        self.timeout_ms: int = timeout_ms
        super().__init__("timeout", device_id)


class NegotiationStateError(NegotiationError):
    """Operation is not valid in the negotiator's current state.

    Attributes:
        state: State the negotiator was in

    """

    def __init__(self, device_id: str, state: str) -> None:
        """Initialize with device id and current state."""
        self.state: str = state
        super().__init__(f"invalid_state:{state}", device_id)


class UnexpectedCommandError(TuyaProtocolError):
    """Frame command code differs from the one the caller expected.

    Attributes:
        expected: Command code the caller was waiting for
        actual: Command code carried in the frame

    """

    reason = "unexpected_command"

    def __init__(self, expected: int, actual: int) -> None:
        """Initialize with the expected and received command codes."""
        self.expected: int = expected
        self.actual: int = actual
        super().__init__(f"Unexpected command 0x{actual:02x}, expected 0x{expected:02x}")
