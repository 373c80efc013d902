"""Discovery of Tuya devices from their UDP broadcasts.

Devices announce themselves on the discovery port, either as a 6699 frame
(command 0x13) encrypted under the discovery key, or as a 55AA frame whose
payload is plaintext JSON (older firmware, optionally behind a 4-byte return
code). Both carry a body like::

    {"ip": "192.168.1.20", "gwId": "bf...", "productKey": "...", "version": "3.5"}
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

from tuya_lan.const import (
    DISCOVERY_KEY,
    TUYA_LAN_BIND_HOST,
    TUYA_LAN_BROADCAST_ADDRESS,
    TUYA_LAN_DISCOVERY_PORT,
    TUYA_LAN_NEGOTIATION_PORT,
)
from tuya_lan.logging_abstraction import TuyaLogger, get_logger
from tuya_lan.metrics import registry
from tuya_lan.protocol.exceptions import CrcMismatchError, MalformedFrameError, TuyaProtocolError
from tuya_lan.protocol.frame_codec import parse_frame
from tuya_lan.protocol.gcm_parser import decrypt_frame
from tuya_lan.protocol.packet_types import PREFIX_6699
from tuya_lan.structs import DiscoveredDevice
from tuya_lan.transport.exceptions import TransportError
from tuya_lan.transport.udp import Address, UDPTransport

DeviceCallback = Callable[[DiscoveredDevice], None]


def _decode_body(payload: bytes, data: bytes) -> dict[str, object]:
    start = payload.find(b"{")
    if start < 0:
        raise MalformedFrameError("no_json", data)
    try:
        body = json.loads(payload[start:].rstrip(b"\x00"))
    except ValueError as e:
        raise MalformedFrameError("invalid_json", data) from e
    if not isinstance(body, dict):
        raise MalformedFrameError("invalid_json", data)
    return body


def parse_discovery_datagram(data: bytes, addr: Address, key: bytes = DISCOVERY_KEY) -> DiscoveredDevice:
    """Decode one discovery broadcast.

    Raises:
        MalformedFrameError: If the frame, its JSON body or the gwId is missing or invalid
        CrcMismatchError: If the frame CRC does not match
        AuthenticationError: If an encrypted announcement does not authenticate

    """
    frame = parse_frame(data)
    if not frame.crc_valid:
        raise CrcMismatchError(frame.crc, frame.computed_crc)

    if frame.prefix == PREFIX_6699:
        payload, _ = decrypt_frame(frame, key)
    else:
        payload = frame.payload
    body = _decode_body(payload, data)

    device_id = body.get("gwId") or body.get("devId")
    if not isinstance(device_id, str) or not device_id:
        raise MalformedFrameError("missing_gwid", data)

    ip = body.get("ip")
    product_key = body.get("productKey")
    version = body.get("version")
    mac = body.get("mac")
    return DiscoveredDevice(
        device_id=device_id,
        ip=ip if isinstance(ip, str) and ip else addr[0],
        port=TUYA_LAN_NEGOTIATION_PORT,
        product_key=product_key if isinstance(product_key, str) else None,
        protocol_version=str(version) if version is not None else None,
        mac=mac if isinstance(mac, str) else None,
    )


class TuyaDiscovery:
    """Collects device announcements for a fixed listening window."""

    def __init__(
        self,
        port: int = TUYA_LAN_DISCOVERY_PORT,
        bind_host: str = TUYA_LAN_BIND_HOST,
        broadcast_address: str = TUYA_LAN_BROADCAST_ADDRESS,
        retries: int = 3,
        probe: bytes | None = None,
        on_device: DeviceCallback | None = None,
        logger: TuyaLogger | None = None,
        transport_factory: Callable[..., UDPTransport] = UDPTransport,
    ) -> None:
        """Initialize discovery.

        Args:
            port: Port devices broadcast on
            bind_host: Local address to listen on
            broadcast_address: Where the optional probe is sent
            retries: Number of rounds the listening window is split into
            probe: Datagram broadcast at the start of each round (None to only listen)
            on_device: Called for each new or changed device
            logger: Logger to use (defaults to this module's TuyaLogger)
            transport_factory: Builds the listening transport

        """
        self.port = port
        self.bind_host = bind_host
        self.broadcast_address = broadcast_address
        self.retries = max(1, retries)
        self.probe = probe
        self.on_device = on_device
        self.logger: TuyaLogger = logger or get_logger(__name__)
        self._transport_factory = transport_factory
        self.devices: dict[str, DiscoveredDevice] = {}
        self._running = False

    def handle_datagram(self, data: bytes, addr: Address) -> None:
        """Record the device announced by one datagram; invalid datagrams are skipped."""
        try:
            device = parse_discovery_datagram(data, addr)
        except TuyaProtocolError as e:
            registry.record_frame_dropped(f"discovery_{e.reason}")
            self.logger.debug(
                "Skipping invalid discovery datagram",
                extra={"source": addr[0], "reason": e.reason},
            )
            return

        if self.devices.get(device.device_id) == device:
            return
        self.devices[device.device_id] = device
        self.logger.info(
            "Device found: %s (%s)",
            device.device_id,
            device.ip,
            extra={"device_id": device.device_id, "ip": device.ip, "version": device.protocol_version},
        )
        if self.on_device is not None:
            self.on_device(device)

    async def discover(self, timeout: float = 5.0) -> list[DiscoveredDevice]:
        """Listen for ``timeout`` seconds and return every device seen.

        Raises:
            TransportError: If discovery is already running or the socket cannot be bound

        """
        if self._running:
            raise TransportError("already_running")
        self._running = True
        self.devices = {}

        transport = self._transport_factory(
            bind_host=self.bind_host,
            bind_port=self.port,
            broadcast_address=self.broadcast_address,
            on_datagram=self.handle_datagram,
            reuse_port=True,
        )
        self.logger.info("Starting Tuya device discovery", extra={"port": self.port, "timeout": timeout})
        try:
            await transport.open()
            for attempt in range(self.retries):
                if self.probe is not None:
                    try:
                        await transport.broadcast(self.probe, self.port)
                    except TransportError as e:
                        self.logger.warning(
                            "Discovery probe failed (round %d/%d)",
                            attempt + 1,
                            self.retries,
                            extra={"reason": e.reason},
                        )
                await asyncio.sleep(timeout / self.retries)
        finally:
            transport.close()
            self._running = False

        self.logger.info("Discovery complete, found %d devices", len(self.devices))
        return list(self.devices.values())
