"""Unit tests for NegotiatorManager.

Tests cover:
- Batch negotiation with per-device outcomes under one deadline
- Response routing by explicit CRC, frame CRC and source address
- Isolation of unrouted frames
- Consecutive-failure counting and offline escalation
- Cancellation, transport errors and event subscription
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from helpers.device_simulator import DeviceSimulator

from tuya_lan.negotiation.events import DeviceOffline, NegotiationFailure, NegotiationSuccess
from tuya_lan.negotiation.manager import NegotiatorManager
from tuya_lan.negotiation.message import build_negotiation_response
from tuya_lan.negotiation.negotiator import NegotiationState
from tuya_lan.protocol.exceptions import NegotiationTimeoutError
from tuya_lan.protocol.frame_codec import extract_crc
from tuya_lan.protocol.packet_types import TuyaCommand

FAST_TIMEOUT_MS = 50


def responder(manager: NegotiatorManager, simulators: list[DeviceSimulator], **answer_kwargs):
    """Build a FakeTransport.on_send callback answering for ``simulators``."""
    by_address = {sim.address: sim for sim in simulators}

    def on_send(data: bytes, addr: tuple[str, int]) -> None:
        sim = by_address.get(addr)
        if sim is not None:
            manager.route_response(sim.answer(data, **answer_kwargs), addr)

    return on_send


def drain(queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.fixture
def devices(make_identity):
    return [make_identity(f"bfdevice{i:02d}", ip=f"192.168.1.{60 + i}") for i in range(3)]


@pytest.fixture
def simulators(devices, local_key):
    return [
        DeviceSimulator(d.device_id, local_key, ip=d.ip, device_random=bytes([i + 1]) * 16)
        for i, d in enumerate(devices)
    ]


class TestBatchNegotiation:
    """Tests for start_batch_negotiation."""

    @pytest.mark.asyncio
    async def test_all_devices_succeed(self, manager, fake_transport, devices, simulators, session_cache):
        fake_transport.on_send = responder(manager, simulators)

        result = await manager.start_batch_negotiation(devices, timeout_ms=1000)

        assert result.all_succeeded
        assert set(result.succeeded) == {d.device_id for d in devices}
        for device, sim in zip(devices, simulators, strict=True):
            success = result.succeeded[device.device_id]
            negotiator = manager.get(device.device_id)
            assert success.session_key == sim.expected_session_key(negotiator.client_random)
            assert session_cache.get(device.device_id).session_key == success.session_key
        assert manager.routes() == {}

    @pytest.mark.asyncio
    async def test_requests_sent_unicast(self, manager, fake_transport, devices):
        await manager.start_batch_negotiation(devices, timeout_ms=FAST_TIMEOUT_MS)

        assert [addr for _, addr in fake_transport.sent] == [d.address for d in devices]
        assert fake_transport.broadcasts == []

    @pytest.mark.asyncio
    async def test_unknown_address_is_broadcast(self, manager, fake_transport, make_identity):
        device = make_identity("bfnoaddress", ip=None)

        result = await manager.start_batch_negotiation([device], timeout_ms=FAST_TIMEOUT_MS)

        assert fake_transport.sent == []
        assert len(fake_transport.broadcasts) == 1
        assert fake_transport.broadcasts[0][1] == 6669
        assert result.failed["bfnoaddress"].reason == "timeout"

    @pytest.mark.asyncio
    async def test_partial_timeout(self, manager, fake_transport, devices, simulators):
        fake_transport.on_send = responder(manager, simulators[:1])

        result = await manager.start_batch_negotiation(devices, timeout_ms=FAST_TIMEOUT_MS)

        assert set(result.succeeded) == {devices[0].device_id}
        assert set(result.failed) == {devices[1].device_id, devices[2].device_id}
        for failure in result.failed.values():
            assert failure.reason == "timeout"
            assert isinstance(failure.error, NegotiationTimeoutError)
        assert manager.routes() == {}
        assert manager.failure_count(devices[0].device_id) == 0
        assert manager.failure_count(devices[1].device_id) == 1
        assert manager.get(devices[1].device_id).state is NegotiationState.IDLE

    @pytest.mark.asyncio
    async def test_late_response_after_timeout_ignored(
        self, manager, fake_transport, identity, simulator, session_cache,
    ):
        await manager.start_batch_negotiation([identity], timeout_ms=FAST_TIMEOUT_MS)
        request = fake_transport.sent[0][0]

        outcome = manager.route_response(simulator.answer(request), simulator.address)

        assert outcome is None
        assert identity.device_id not in session_cache
        assert manager.failure_count(identity.device_id) == 1

    @pytest.mark.asyncio
    async def test_renegotiates_established_device(self, manager, fake_transport, identity, simulator):
        fake_transport.on_send = responder(manager, [simulator])

        first = await manager.start_batch_negotiation([identity], timeout_ms=1000)
        second = await manager.start_batch_negotiation([identity], timeout_ms=1000)

        assert first.all_succeeded
        assert second.all_succeeded
        assert len(fake_transport.sent) == 2
        assert first.succeeded[identity.device_id].client_random != second.succeeded[identity.device_id].client_random

    @pytest.mark.asyncio
    async def test_duplicate_response_is_noop(self, manager, fake_transport, identity, simulator):
        events = manager.subscribe()

        def answer_twice(data, addr):
            response = simulator.answer(data)
            manager.route_response(response, addr)
            assert manager.route_response(response, addr) is None

        fake_transport.on_send = answer_twice

        result = await manager.start_batch_negotiation([identity], timeout_ms=1000)

        assert result.all_succeeded
        assert [type(e) for e in drain(events)] == [NegotiationSuccess]

    @pytest.mark.asyncio
    async def test_transport_error(self, manager, fake_transport, identity):
        fake_transport.failing.add(identity.address)

        result = await manager.start_batch_negotiation([identity], timeout_ms=5000)

        assert result.failed[identity.device_id].reason == "transport_error"
        assert manager.failure_count(identity.device_id) == 1
        assert manager.routes() == {}

    @pytest.mark.asyncio
    async def test_validation_failure_reported(self, manager, fake_transport, identity, simulator, local_key):
        fake_transport.on_send = responder(manager, [simulator], key=local_key)

        result = await manager.start_batch_negotiation([identity], timeout_ms=1000)

        assert result.failed[identity.device_id].reason == "decryption_failed"

    @pytest.mark.asyncio
    async def test_new_address_used_after_rediscovery(self, manager, fake_transport, make_identity, local_key):
        old = make_identity(ip="192.168.1.50")
        moved = make_identity(ip="192.168.1.99")
        fake_transport.on_send = responder(manager, [DeviceSimulator(moved.device_id, local_key, ip="192.168.1.99")])

        first = await manager.start_batch_negotiation([old], timeout_ms=FAST_TIMEOUT_MS)
        second = await manager.start_batch_negotiation([moved], timeout_ms=1000)

        assert first.failed[old.device_id].reason == "timeout"
        assert second.all_succeeded
        assert [addr for _, addr in fake_transport.sent] == [("192.168.1.50", 6669), ("192.168.1.99", 6669)]
        assert manager.get(moved.device_id).identity.ip == "192.168.1.99"
        assert manager.failure_count(moved.device_id) == 0

    @pytest.mark.asyncio
    async def test_cancelled_batch_releases_devices(self, manager, fake_transport, identity, simulator):
        events = manager.subscribe()
        task = asyncio.create_task(manager.start_batch_negotiation([identity], timeout_ms=5000))
        await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert manager.get(identity.device_id).state is NegotiationState.IDLE
        assert manager.routes() == {}
        assert manager.failure_count(identity.device_id) == 0
        assert drain(events) == [NegotiationFailure(identity.device_id, "cancelled")]

        fake_transport.on_send = responder(manager, [simulator])
        result = await manager.start_batch_negotiation([identity], timeout_ms=1000)

        assert result.all_succeeded
        assert len(fake_transport.sent) == 2

    @pytest.mark.asyncio
    async def test_cancelled_batch_keeps_devices_awaited_elsewhere(self, manager, fake_transport, identity, simulator):
        first = asyncio.create_task(manager.start_batch_negotiation([identity], timeout_ms=5000))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(manager.start_batch_negotiation([identity], timeout_ms=5000))
        await asyncio.sleep(0.01)

        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second

        negotiator = manager.get(identity.device_id)
        assert negotiator.state is NegotiationState.REQUEST_SENT
        manager.route_response(simulator.answer(fake_transport.sent[0][0]), simulator.address)
        result = await first
        assert result.all_succeeded
        assert len(fake_transport.sent) == 1

    @pytest.mark.asyncio
    async def test_empty_batch(self, manager):
        result = await manager.start_batch_negotiation([], timeout_ms=FAST_TIMEOUT_MS)

        assert result.succeeded == {}
        assert result.failed == {}


class TestRouting:
    """Tests for route_response."""

    def test_explicit_crc(self, manager, identity, simulator, session_cache):
        negotiator = manager.create(identity)
        response = simulator.answer(negotiator.build_request())

        outcome = manager.route_response(response, crc=negotiator.request_crc)

        assert isinstance(outcome, NegotiationSuccess)
        assert identity.device_id in session_cache
        assert manager.routes() == {}

    def test_frame_crc(self, manager, identity, simulator):
        negotiator = manager.create(identity)
        response = simulator.answer(negotiator.build_request())
        manager.register_route(extract_crc(response), identity.device_id)

        assert isinstance(manager.route_response(response), NegotiationSuccess)

    def test_unrouted_frame_has_no_side_effects(self, manager, identity, session_cache):
        negotiator = manager.create(identity)
        negotiator.build_request()
        routes = manager.routes()
        events = manager.subscribe()
        stray = build_negotiation_response(identity.device_id, "uuid", bytes(16))

        outcome = manager.route_response(stray, ("10.0.0.9", 6669), crc=0xDEADBEEF)

        assert outcome is None
        assert negotiator.state is NegotiationState.REQUEST_SENT
        assert manager.routes() == routes
        assert manager.failure_count(identity.device_id) == 0
        assert len(session_cache) == 0
        assert drain(events) == []

    @pytest.mark.asyncio
    async def test_noise_from_device_address_does_not_fail_negotiation(
        self, manager, fake_transport, identity, simulator,
    ):
        dropped = []

        def noisy(data, addr):
            dropped.append(manager.route_response(b"\x00" * 7, addr))
            dropped.append(manager.route_response(simulator.answer(data, command=TuyaCommand.STATUS), addr))
            manager.route_response(simulator.answer(data), addr)

        fake_transport.on_send = noisy

        result = await manager.start_batch_negotiation([identity], timeout_ms=1000)

        assert dropped == [None, None]
        assert result.all_succeeded
        assert manager.failure_count(identity.device_id) == 0

    @pytest.mark.asyncio
    async def test_corrupted_response_from_device_address_dropped(
        self, manager, fake_transport, identity, simulator,
    ):
        dropped = []

        def corrupt_then_answer(data, addr):
            response = simulator.answer(data)
            corrupted = bytearray(response)
            corrupted[-8] ^= 0xFF
            dropped.append(manager.route_response(bytes(corrupted), addr))
            manager.route_response(response, addr)

        fake_transport.on_send = corrupt_then_answer

        result = await manager.start_batch_negotiation([identity], timeout_ms=1000)

        assert dropped == [None]
        assert result.all_succeeded

    def test_garbage_never_raises(self, manager):
        assert manager.route_response(b"") is None
        assert manager.route_response(b"\x00" * 64, ("10.0.0.9", 1)) is None

    def test_route_registered_on_request(self, manager, identity):
        negotiator = manager.create(identity)
        negotiator.build_request()

        assert manager.routes() == {negotiator.request_crc: identity.device_id}

    def test_handle_datagram_routes(self, manager, identity, simulator):
        negotiator = manager.create(identity)
        response = simulator.answer(negotiator.build_request())
        manager.register_route(extract_crc(response), identity.device_id)

        manager.handle_datagram(response, simulator.address)

        assert negotiator.state is NegotiationState.ESTABLISHED


class TestOfflineEscalation:
    """Tests for consecutive-failure counting."""

    @pytest.mark.asyncio
    async def test_offline_after_threshold(self, fake_transport, session_cache, identity):
        on_offline = MagicMock()
        manager = NegotiatorManager(
            fake_transport, session_cache=session_cache, offline_threshold=3, on_offline=on_offline,
        )
        events = manager.subscribe()

        for _ in range(2):
            await manager.start_batch_negotiation([identity], timeout_ms=FAST_TIMEOUT_MS)
        assert on_offline.call_count == 0

        await manager.start_batch_negotiation([identity], timeout_ms=FAST_TIMEOUT_MS)

        on_offline.assert_called_once_with(DeviceOffline(identity.device_id, 3))
        offline = [e for e in drain(events) if isinstance(e, DeviceOffline)]
        assert offline == [DeviceOffline(identity.device_id, 3)]

    @pytest.mark.asyncio
    async def test_offline_fires_once(self, manager, identity):
        events = manager.subscribe()

        for _ in range(5):
            await manager.start_batch_negotiation([identity], timeout_ms=FAST_TIMEOUT_MS)

        assert manager.failure_count(identity.device_id) == 5
        assert sum(isinstance(e, DeviceOffline) for e in drain(events)) == 1

    @pytest.mark.asyncio
    async def test_success_resets_count(self, manager, fake_transport, identity, simulator):
        for _ in range(2):
            await manager.start_batch_negotiation([identity], timeout_ms=FAST_TIMEOUT_MS)
        assert manager.failure_count(identity.device_id) == 2

        fake_transport.on_send = responder(manager, [simulator])
        await manager.start_batch_negotiation([identity], timeout_ms=1000)
        assert manager.failure_count(identity.device_id) == 0

        fake_transport.on_send = None
        events = manager.subscribe()
        for _ in range(2):
            await manager.start_batch_negotiation([identity], timeout_ms=FAST_TIMEOUT_MS)
        assert not any(isinstance(e, DeviceOffline) for e in drain(events))

    @pytest.mark.asyncio
    async def test_offline_callback_error_is_contained(self, fake_transport, identity):
        manager = NegotiatorManager(fake_transport, offline_threshold=1, on_offline=MagicMock(side_effect=RuntimeError))

        result = await manager.start_batch_negotiation([identity], timeout_ms=FAST_TIMEOUT_MS)

        assert result.failed[identity.device_id].reason == "timeout"
        manager.on_offline.assert_called_once()


class TestCollection:
    """Tests for create/get/remove."""

    def test_create_is_idempotent(self, manager, identity):
        assert manager.create(identity) is manager.create(identity)
        assert manager.device_ids == [identity.device_id]

    def test_get_unknown(self, manager):
        assert manager.get("missing") is None

    def test_remove_pending_publishes_cancelled(self, manager, identity):
        events = manager.subscribe()
        manager.create(identity).build_request()

        manager.remove(identity.device_id)

        assert manager.get(identity.device_id) is None
        assert manager.routes() == {}
        assert manager.failure_count(identity.device_id) == 0
        assert drain(events) == [NegotiationFailure(identity.device_id, "cancelled")]

    def test_remove_unknown_is_noop(self, manager):
        manager.remove("missing")

    @pytest.mark.asyncio
    async def test_remove_during_batch(self, manager, fake_transport, identity):
        fake_transport.on_send = lambda data, addr: manager.remove(identity.device_id)

        result = await manager.start_batch_negotiation([identity], timeout_ms=5000)

        assert result.failed[identity.device_id].reason == "cancelled"

    def test_unsubscribe(self, manager, identity):
        queue = manager.subscribe()
        manager.unsubscribe(queue)
        manager.create(identity).build_request()

        manager.remove(identity.device_id)

        assert queue.empty()
