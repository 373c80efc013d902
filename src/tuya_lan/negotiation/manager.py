"""Negotiator manager: batch negotiation, response routing and offline escalation.

The manager exclusively owns the routing tables, failure counters and the
negotiator collection. Every mutation happens on the event loop thread,
either inside ``start_batch_negotiation`` or inside ``route_response``
(called from the UDP transport's datagram callback).

Response routing keys, in order:
1. an explicit ``crc`` passed by the caller,
2. the CRC field carried by the inbound frame,
3. the source IP of a device whose request was sent unicast, for intact
   negotiation responses only (valid CRC, 6699 markers, command 0x06).

Frames matching none of them are dropped without side effects.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from tuya_lan.const import (
    TUYA_LAN_NEGOTIATION_PORT,
    TUYA_LAN_NEGOTIATION_TIMEOUT_MS,
    TUYA_LAN_OFFLINE_THRESHOLD,
)
from tuya_lan.correlation import correlation_context
from tuya_lan.instrumentation import timed_async
from tuya_lan.logging_abstraction import TuyaLogger, get_logger
from tuya_lan.metrics import registry
from tuya_lan.negotiation.events import (
    BatchResult,
    DeviceOffline,
    NegotiationEvent,
    NegotiationFailure,
    NegotiationOutcome,
    NegotiationSuccess,
)
from tuya_lan.negotiation.negotiator import NegotiationState, SessionNegotiator
from tuya_lan.negotiation.session_cache import SessionCache
from tuya_lan.protocol.exceptions import MalformedFrameError, NegotiationTimeoutError
from tuya_lan.protocol.frame_codec import parse_frame
from tuya_lan.protocol.packet_types import TuyaCommand
from tuya_lan.structs import DeviceIdentity
from tuya_lan.transport.exceptions import TransportError
from tuya_lan.transport.udp import Address, DatagramSender, UDPTransport

OfflineCallback = Callable[[DeviceOffline], None]


@dataclass
class _Batch:
    """Bookkeeping for one in-flight batch."""

    done: asyncio.Event
    pending: set[str] = field(default_factory=set)
    succeeded: dict[str, NegotiationSuccess] = field(default_factory=dict)
    failed: dict[str, NegotiationFailure] = field(default_factory=dict)
    sending: bool = True

    def record(self, outcome: NegotiationOutcome) -> None:
        if outcome.device_id not in self.pending:
            return
        self.pending.discard(outcome.device_id)
        if isinstance(outcome, NegotiationSuccess):
            self.succeeded[outcome.device_id] = outcome
        else:
            self.failed[outcome.device_id] = outcome
        self.maybe_finish()

    def maybe_finish(self) -> None:
        if not self.sending and not self.pending:
            self.done.set()


class NegotiatorManager:
    """Owns one SessionNegotiator per device and the shared response routing.

    Lifecycle events (NegotiationSuccess, NegotiationFailure, DeviceOffline)
    are fanned in from every negotiator and published to ``subscribe()``
    queues; ``on_offline`` is called in addition when a device goes offline.
    """

    def __init__(
        self,
        transport: DatagramSender | None = None,
        *,
        session_cache: SessionCache | None = None,
        offline_threshold: int = TUYA_LAN_OFFLINE_THRESHOLD,
        negotiation_port: int = TUYA_LAN_NEGOTIATION_PORT,
        default_timeout_ms: int = TUYA_LAN_NEGOTIATION_TIMEOUT_MS,
        on_offline: OfflineCallback | None = None,
        logger: TuyaLogger | None = None,
        negotiator_factory: Callable[..., SessionNegotiator] = SessionNegotiator,
    ) -> None:
        """Initialize negotiator manager.

        Args:
            transport: Shared datagram transport used for requests
            session_cache: Where successful sessions are committed (a new cache if None)
            offline_threshold: Consecutive failures that escalate a device to offline
            negotiation_port: Port broadcast requests are sent to
            default_timeout_ms: Batch deadline used when none is given
            on_offline: Optional callback for offline escalations
            logger: Logger to use (defaults to this module's TuyaLogger)
            negotiator_factory: Builds negotiators; receives the identity and keyword
                arguments ``route_registrar`` and ``logger``

        """
        self.transport: DatagramSender | None = transport
        self.session_cache: SessionCache = session_cache if session_cache is not None else SessionCache()
        self.offline_threshold: int = offline_threshold
        self.negotiation_port: int = negotiation_port
        self.default_timeout_ms: int = default_timeout_ms
        self.on_offline: OfflineCallback | None = on_offline
        self.logger: TuyaLogger = logger or get_logger(__name__)
        self._negotiator_factory = negotiator_factory

        self._negotiators: dict[str, SessionNegotiator] = {}
        self._failure_counts: dict[str, int] = {}
        self._routes: dict[int, str] = {}
        self._address_routes: dict[str, str] = {}
        self._batches: list[_Batch] = []
        self._subscribers: list[asyncio.Queue[NegotiationEvent]] = []

    def attach(self, transport: UDPTransport) -> None:
        """Use ``transport`` for requests and route its inbound datagrams here."""
        self.transport = transport
        transport.set_handler(self.handle_datagram)

    # Negotiator collection

    def create(self, identity: DeviceIdentity) -> SessionNegotiator:
        """Return the negotiator for ``identity.device_id``, creating it if needed."""
        existing = self._negotiators.get(identity.device_id)
        if existing is not None:
            return existing

        negotiator = self._negotiator_factory(
            identity,
            route_registrar=self.register_route,
            logger=self.logger,
        )
        self._negotiators[identity.device_id] = negotiator
        self._failure_counts.setdefault(identity.device_id, 0)
        return negotiator

    def get(self, device_id: str) -> SessionNegotiator | None:
        return self._negotiators.get(device_id)

    def remove(self, device_id: str) -> None:
        """Cancel and forget a device's negotiator, whatever batch it belongs to."""
        negotiator = self._negotiators.pop(device_id, None)
        if negotiator is None:
            return

        self._cancel(negotiator)
        self._failure_counts.pop(device_id, None)
        self.logger.debug("Negotiator removed", extra={"device_id": device_id})

    def _cancel(self, negotiator: SessionNegotiator) -> NegotiationFailure | None:
        """Fail a pending negotiation with "cancelled" without counting it toward offline."""
        failure = negotiator.fail("cancelled")
        negotiator.cleanup()
        self._unregister_routes(negotiator.device_id)

        if failure is not None:
            registry.record_negotiation_failure(negotiator.device_id, failure.reason)
            self._publish(failure)
            for batch in self._batches:
                batch.record(failure)
        return failure

    def failure_count(self, device_id: str) -> int:
        return self._failure_counts.get(device_id, 0)

    @property
    def device_ids(self) -> list[str]:
        return list(self._negotiators)

    # Routing table

    def register_route(self, crc: int, device_id: str) -> None:
        """Route responses keyed by ``crc`` to ``device_id``'s negotiator."""
        self._routes[crc] = device_id

    def routes(self) -> dict[int, str]:
        """Return a copy of the CRC routing table."""
        return dict(self._routes)

    def _unregister_routes(self, device_id: str) -> None:
        for crc in [crc for crc, owner in self._routes.items() if owner == device_id]:
            del self._routes[crc]
        for ip in [ip for ip, owner in self._address_routes.items() if owner == device_id]:
            del self._address_routes[ip]

    def _resolve_route(self, frame: bytes, source_addr: Address | None, crc: int | None) -> str | None:
        if crc is not None and crc in self._routes:
            return self._routes[crc]
        try:
            parsed = parse_frame(frame)
        except MalformedFrameError:
            return None
        if parsed.crc in self._routes:
            return self._routes[parsed.crc]
        if source_addr is None or not parsed.crc_valid or not parsed.is_negotiation_family:
            return None
        if parsed.command != TuyaCommand.SESS_KEY_NEG_RESP:
            return None
        return self._address_routes.get(source_addr[0])

    def route_response(
        self,
        frame: bytes,
        source_addr: Address | None = None,
        crc: int | None = None,
    ) -> NegotiationOutcome | None:
        """Hand an inbound frame to the negotiator that owns it.

        Frames with no registered owner are dropped silently. Never raises on
        network noise.

        Returns:
            The outcome produced by the negotiator, or None if the frame was
            dropped or ignored

        """
        device_id = self._resolve_route(frame, source_addr, crc)
        if device_id is None:
            registry.record_frame_dropped("unrouted")
            self.logger.debug(
                "Dropping unrouted frame",
                extra={"bytes": len(frame), "source": source_addr},
            )
            return None

        negotiator = self._negotiators.get(device_id)
        if negotiator is None:
            registry.record_frame_dropped("no_negotiator")
            return None

        outcome = negotiator.process_response(frame, source_addr)
        if outcome is not None:
            self._handle_outcome(outcome)
        return outcome

    def handle_datagram(self, data: bytes, addr: Address) -> None:
        """Datagram handler for the shared UDP transport."""
        self.route_response(data, addr)

    # Events

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue[NegotiationEvent]:
        """Return a queue receiving every lifecycle event from now on."""
        queue: asyncio.Queue[NegotiationEvent] = asyncio.Queue(maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[NegotiationEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self, event: NegotiationEvent) -> None:
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.logger.warning(
                    "Event queue full, dropping %s",
                    type(event).__name__,
                    extra={"device_id": event.device_id},
                )

    def _handle_outcome(self, outcome: NegotiationOutcome) -> None:
        device_id = outcome.device_id
        self._unregister_routes(device_id)

        if isinstance(outcome, NegotiationSuccess):
            self._failure_counts[device_id] = 0
            self.session_cache.store(outcome)
            registry.record_negotiation(device_id, "success")
            self._publish(outcome)
        else:
            count = self._failure_counts.get(device_id, 0) + 1
            self._failure_counts[device_id] = count
            negotiator = self._negotiators.get(device_id)
            if negotiator is not None:
                negotiator.cleanup()
            registry.record_negotiation(device_id, "failure")
            registry.record_negotiation_failure(device_id, outcome.reason)
            self._publish(outcome)
            if count == self.offline_threshold:
                self._escalate_offline(device_id, count)

        for batch in self._batches:
            batch.record(outcome)

    def _escalate_offline(self, device_id: str, count: int) -> None:
        event = DeviceOffline(device_id=device_id, failure_count=count)
        registry.record_device_offline(device_id)
        self.logger.warning(
            "Device offline after %d consecutive negotiation failures",
            count,
            extra={"device_id": device_id, "failure_count": count},
        )
        self._publish(event)
        if self.on_offline is not None:
            try:
                self.on_offline(event)
            except Exception:
                self.logger.exception("Offline callback failed", extra={"device_id": device_id})

    # Batch negotiation

    async def _send_request(self, negotiator: SessionNegotiator, frame: bytes) -> None:
        if self.transport is None:
            raise TransportError("not_open")
        address = negotiator.identity.address
        if address is not None:
            self._address_routes[address[0]] = negotiator.device_id
            await self.transport.send(frame, address)
        else:
            await self.transport.broadcast(frame, self.negotiation_port)

    @timed_async("batch_negotiation")
    async def start_batch_negotiation(
        self,
        devices: Iterable[DeviceIdentity],
        timeout_ms: int | None = None,
    ) -> BatchResult:
        """Negotiate with every device concurrently under one deadline.

        Devices whose negotiation is already in flight (from another batch) are
        waited on rather than re-sent. When the deadline expires, every device
        still pending is failed with reason "timeout" and cleaned up. The call
        returns as soon as all devices have an outcome.

        Args:
            devices: Devices to negotiate with
            timeout_ms: Deadline for the whole batch (defaults to the manager's)

        Returns:
            BatchResult with one outcome per device

        """
        timeout_ms = timeout_ms if timeout_ms is not None else self.default_timeout_ms
        identities = list(devices)
        start = time.perf_counter()

        with correlation_context() as corr_id:
            batch = _Batch(done=asyncio.Event())
            self._batches.append(batch)
            self.logger.info(
                "→ Starting batch negotiation for %d devices",
                len(identities),
                extra={"device_count": len(identities), "timeout_ms": timeout_ms, "correlation_id": corr_id},
            )
            try:
                for identity in identities:
                    await self._start_one(batch, identity)

                batch.sending = False
                batch.maybe_finish()
                if batch.pending:
                    try:
                        await asyncio.wait_for(batch.done.wait(), timeout=timeout_ms / 1000)
                    except TimeoutError:
                        self._expire(batch, timeout_ms)
            except asyncio.CancelledError:
                self._abandon(batch)
                raise
            finally:
                self._batches.remove(batch)

            registry.record_batch(len(identities), time.perf_counter() - start)
            self.logger.info(
                "✓ Batch negotiation finished: %d succeeded, %d failed",
                len(batch.succeeded),
                len(batch.failed),
                extra={"succeeded": len(batch.succeeded), "failed": len(batch.failed)},
            )
            return BatchResult(succeeded=dict(batch.succeeded), failed=dict(batch.failed))

    async def _start_one(self, batch: _Batch, identity: DeviceIdentity) -> None:
        existing = self._negotiators.get(identity.device_id)
        if existing is not None and existing.identity != identity and not existing.is_pending:
            # Rediscovered at a new address or with a new key
            self._unregister_routes(identity.device_id)
            del self._negotiators[identity.device_id]
            self.logger.info(
                "Device identity changed, replacing negotiator",
                extra={"device_id": identity.device_id, "ip": identity.ip},
            )
        negotiator = self.create(identity)
        device_id = negotiator.device_id
        if negotiator.is_pending:
            batch.pending.add(device_id)
            return
        if negotiator.state is not NegotiationState.IDLE:
            negotiator.cleanup()

        frame = negotiator.build_request()
        batch.pending.add(device_id)
        try:
            await self._send_request(negotiator, frame)
        except TransportError as e:
            failure = negotiator.fail("transport_error", e)
            if failure is not None:
                self._handle_outcome(failure)

    def _abandon(self, batch: _Batch) -> None:
        """Cancel a batch's pending devices that no other batch is waiting on."""
        awaited = {device_id for other in self._batches if other is not batch for device_id in other.pending}
        abandoned = sorted(batch.pending - awaited)
        for device_id in abandoned:
            negotiator = self._negotiators.get(device_id)
            if negotiator is not None:
                self._cancel(negotiator)
        self.logger.info(
            "Batch negotiation cancelled",
            extra={"cancelled": len(abandoned), "succeeded": len(batch.succeeded)},
        )

    def _expire(self, batch: _Batch, timeout_ms: int) -> None:
        for device_id in sorted(batch.pending):
            negotiator = self._negotiators.get(device_id)
            failure = None
            if negotiator is not None:
                failure = negotiator.fail("timeout", NegotiationTimeoutError(device_id, timeout_ms))
            if failure is not None:
                self._handle_outcome(failure)
            else:
                batch.pending.discard(device_id)
