"""Custom exception types for transport-level errors.

Socket failures are surfaced to the caller and never retried here.
"""

from __future__ import annotations

from tuya_lan.protocol.exceptions import TuyaProtocolError


class TransportError(TuyaProtocolError):
    """Socket bind or send failure.

    Raised when:
    - The shared UDP socket cannot be bound
    - A datagram cannot be sent
    - The transport is used before ``open()`` or after ``close()``

    Attributes:
        reason: Specific failure reason ("bind_failed", "send_failed", "not_open")
        address: Remote or local address involved, if any

    """

    def __init__(self, reason: str, address: tuple[str, int] | None = None) -> None:
        """Initialize with failure reason and the address involved."""
        self.reason: str = reason
        self.address: tuple[str, int] | None = address
        where = f" ({address[0]}:{address[1]})" if address else ""
        super().__init__(f"Transport error: {reason}{where}")


class SessionNotEstablishedError(TuyaProtocolError):
    """No cached session exists for the device a command is addressed to.

    Attributes:
        device_id: Device without a session

    """

    reason = "session_not_established"

    def __init__(self, device_id: str) -> None:
        """Initialize with the device id."""
        self.device_id: str = device_id
        super().__init__(f"No session established for {device_id}")
