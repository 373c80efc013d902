"""Encrypted control commands for devices with an established session.

Commands are 55AA frames (command 0x07) whose payload is
``nonce | ciphertext | tag`` under the device's cached session key, with a
fresh random nonce per frame and a per-sender sequence number.
"""

from __future__ import annotations

import json
from collections.abc import Mapping

from tuya_lan.const import TUYA_LAN_COMMAND_PORT
from tuya_lan.logging_abstraction import TuyaLogger, get_logger
from tuya_lan.negotiation.session_cache import SessionCache
from tuya_lan.protocol.gcm_parser import build_gcm_frame
from tuya_lan.protocol.packet_types import PREFIX_55AA, TuyaCommand
from tuya_lan.transport.exceptions import SessionNotEstablishedError, TransportError
from tuya_lan.transport.udp import DatagramSender

_UINT32_MAX = 0xFFFFFFFF


class SecureSender:
    """Sends data point updates encrypted under cached session keys.

    Commands go to ``command_port`` on the session's cached IP. The cached
    port is the one the negotiation response came from and is not used here.
    """

    def __init__(
        self,
        transport: DatagramSender,
        session_cache: SessionCache,
        *,
        command_port: int = TUYA_LAN_COMMAND_PORT,
        logger: TuyaLogger | None = None,
    ) -> None:
        self.transport = transport
        self.session_cache = session_cache
        self.command_port = command_port
        self.logger: TuyaLogger = logger or get_logger(__name__)
        self.sequence = 0

    def _next_sequence(self) -> int:
        self.sequence = self.sequence + 1 if self.sequence < _UINT32_MAX else 1
        return self.sequence

    def build_packet(self, session_key: bytes, payload: bytes) -> bytes:
        """Encrypt ``payload`` and frame it as a control command."""
        return build_gcm_frame(session_key, PREFIX_55AA, self._next_sequence(), TuyaCommand.CONTROL, payload)

    async def send(self, device_id: str, dps: Mapping[str, object] | str | bytes) -> int:
        """Send a control command to ``device_id`` at ``(session.ip, command_port)``.

        Args:
            device_id: Target device
            dps: Payload; mappings are serialized as compact JSON

        Returns:
            Sequence number used

        Raises:
            SessionNotEstablishedError: If no session is cached for the device
            TransportError: If the device address is unknown or the send fails

        """
        session = self.session_cache.get(device_id)
        if session is None:
            raise SessionNotEstablishedError(device_id)
        if session.ip is None:
            raise TransportError("no_address")

        if isinstance(dps, bytes):
            payload = dps
        elif isinstance(dps, str):
            payload = dps.encode("utf-8")
        else:
            payload = json.dumps(dict(dps), separators=(",", ":")).encode("utf-8")

        packet = self.build_packet(session.session_key, payload)
        await self.transport.send(packet, (session.ip, self.command_port))
        self.logger.debug(
            "→ Control command sent",
            extra={"device_id": device_id, "sequence": self.sequence, "bytes": len(packet)},
        )
        return self.sequence
