"""Shared asyncio UDP socket for negotiation traffic.

One socket, bound once, with broadcast enabled. Outbound requests go out
unicast or broadcast; every inbound datagram is handed to a single injected
handler (normally ``NegotiatorManager.route_response``).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from tuya_lan.const import TUYA_LAN_BIND_HOST, TUYA_LAN_BIND_PORT, TUYA_LAN_BROADCAST_ADDRESS
from tuya_lan.metrics import registry
from tuya_lan.transport.exceptions import TransportError

logger = logging.getLogger(__name__)

Address = tuple[str, int]
DatagramHandler = Callable[[bytes, Address], None]


class DatagramSender(Protocol):
    """What the negotiator manager needs from a transport."""

    async def send(self, data: bytes, addr: Address) -> None:
        """Send one datagram to ``addr``."""
        ...

    async def broadcast(self, data: bytes, port: int) -> None:
        """Send one datagram to the broadcast address on ``port``."""
        ...


class _DatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, owner: UDPTransport) -> None:
        self._owner = owner

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self._owner._dispatch(data, addr)

    def error_received(self, exc: Exception) -> None:
        registry.record_datagram("recv", "error")
        logger.warning("UDP socket error: %s", exc, extra={"error": str(exc)})

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            logger.warning("UDP socket closed with error: %s", exc, extra={"error": str(exc)})


class UDPTransport:
    """Async UDP endpoint with broadcast support."""

    def __init__(
        self,
        bind_host: str = TUYA_LAN_BIND_HOST,
        bind_port: int = TUYA_LAN_BIND_PORT,
        broadcast_address: str = TUYA_LAN_BROADCAST_ADDRESS,
        on_datagram: DatagramHandler | None = None,
        reuse_port: bool = False,
    ) -> None:
        """
        Initialize UDP transport parameters.

        Args:
            bind_host: Local address to bind
            bind_port: Local port to bind (0 picks an ephemeral port)
            broadcast_address: Destination used by ``broadcast``
            on_datagram: Handler called with (data, addr) for each inbound datagram
            reuse_port: Set SO_REUSEPORT so several listeners can share a port
        """
        self.bind_host = bind_host
        self.bind_port = bind_port
        self.broadcast_address = broadcast_address
        self.reuse_port = reuse_port
        self._handler: DatagramHandler | None = on_datagram
        self._transport: asyncio.DatagramTransport | None = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    @property
    def local_address(self) -> Address | None:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")

    def set_handler(self, handler: DatagramHandler | None) -> None:
        """Replace the inbound datagram handler."""
        self._handler = handler

    async def open(self) -> None:
        """
        Bind the socket.

        Raises:
            TransportError: If binding fails
        """
        if self.is_open:
            return
        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramProtocol(self),
                local_addr=(self.bind_host, self.bind_port),
                allow_broadcast=True,
                reuse_port=self.reuse_port or None,
            )
        except OSError as e:
            logger.exception(
                "Failed to bind UDP socket on %s:%d",
                self.bind_host,
                self.bind_port,
                extra={"host": self.bind_host, "port": self.bind_port, "error": str(e)},
            )
            raise TransportError("bind_failed", (self.bind_host, self.bind_port)) from e

        self._transport = transport
        logger.info(
            "UDP socket bound on %s",
            self.local_address,
            extra={"host": self.bind_host, "port": self.bind_port},
        )

    async def send(self, data: bytes, addr: Address) -> None:
        """
        Send one datagram.

        Raises:
            TransportError: If the socket is not open or the send fails
        """
        if self._transport is None or self._transport.is_closing():
            raise TransportError("not_open", addr)
        try:
            self._transport.sendto(data, addr)
        except OSError as e:
            registry.record_datagram("send", "error")
            logger.warning(
                "UDP send to %s:%d failed: %s",
                addr[0],
                addr[1],
                e,
                extra={"host": addr[0], "port": addr[1], "error": str(e)},
            )
            raise TransportError("send_failed", addr) from e

        registry.record_datagram("send", "success")
        logger.debug(
            "→ Sent %d bytes to %s:%d",
            len(data),
            addr[0],
            addr[1],
            extra={"host": addr[0], "port": addr[1], "bytes": len(data)},
        )

    async def broadcast(self, data: bytes, port: int) -> None:
        """Send one datagram to the broadcast address on ``port``."""
        await self.send(data, (self.broadcast_address, port))

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info("UDP socket closed")

    async def __aenter__(self) -> UDPTransport:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def _dispatch(self, data: bytes, addr: Address) -> None:
        registry.record_datagram("recv", "success")
        if self._handler is None:
            logger.debug("Dropping datagram from %s, no handler", addr)
            return
        try:
            self._handler(data, addr)
        except Exception:
            # Keep the socket serving other devices
            logger.exception("Datagram handler failed", extra={"host": addr[0], "port": addr[1]})
