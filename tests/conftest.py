"""
Shared fixtures for Tuya LAN unit tests.

Provides device identities with known keys, simulated devices and an
in-memory transport so negotiation can run without sockets.
"""

from __future__ import annotations

import pytest
from helpers.device_simulator import DeviceSimulator, FakeTransport

from tuya_lan.negotiation.manager import NegotiatorManager
from tuya_lan.negotiation.session_cache import SessionCache
from tuya_lan.structs import DeviceIdentity

LOCAL_KEY_HEX = "00112233445566778899aabbccddeeff"
LOCAL_KEY = bytes.fromhex(LOCAL_KEY_HEX)


@pytest.fixture
def local_key() -> bytes:
    """16-byte local key shared by the test devices."""
    return LOCAL_KEY


@pytest.fixture
def make_identity():
    """Factory for DeviceIdentity with the shared local key."""

    def _make(device_id: str = "bf1234567890abcdef", ip: str | None = "192.168.1.50", port: int = 6669):
        return DeviceIdentity(device_id=device_id, ip=ip, port=port, local_key=LOCAL_KEY_HEX)

    return _make


@pytest.fixture
def identity(make_identity) -> DeviceIdentity:
    """Single device identity at 192.168.1.50."""
    return make_identity()


@pytest.fixture
def simulator(identity) -> DeviceSimulator:
    """Simulated device matching ``identity``."""
    return DeviceSimulator(identity.device_id, LOCAL_KEY, ip=identity.ip or "192.168.1.50")


@pytest.fixture
def fake_transport() -> FakeTransport:
    """In-memory transport recording every datagram."""
    return FakeTransport()


@pytest.fixture
def session_cache() -> SessionCache:
    return SessionCache()


@pytest.fixture
def manager(fake_transport, session_cache) -> NegotiatorManager:
    """NegotiatorManager wired to the fake transport with the default threshold of 3."""
    return NegotiatorManager(fake_transport, session_cache=session_cache, offline_threshold=3)
