"""Unit tests for device models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from tuya_lan.structs import DeviceIdentity, DiscoveredDevice

KEY_HEX = "00112233445566778899aabbccddeeff"


class TestDeviceIdentity:
    """Tests for DeviceIdentity."""

    def test_defaults(self):
        identity = DeviceIdentity(device_id="bf01", local_key=KEY_HEX)

        assert identity.ip is None
        assert identity.port == 6669
        assert identity.protocol_version == "3.5"
        assert identity.address is None

    def test_address(self):
        identity = DeviceIdentity(device_id="bf01", ip="10.0.0.5", port=7000, local_key=KEY_HEX)

        assert identity.address == ("10.0.0.5", 7000)

    @pytest.mark.parametrize(
        ("local_key", "expected"),
        [
            (KEY_HEX, bytes.fromhex(KEY_HEX)),
            ("abcdefghijklmnop", b"abcdefghijklmnop"),
        ],
    )
    def test_key_bytes(self, local_key, expected):
        assert DeviceIdentity(device_id="bf01", local_key=local_key).key_bytes() == expected

    @pytest.mark.parametrize("local_key", ["short", "", "00" * 17])
    def test_invalid_local_key(self, local_key):
        with pytest.raises(ValidationError):
            DeviceIdentity(device_id="bf01", local_key=local_key)

    def test_empty_device_id(self):
        with pytest.raises(ValidationError):
            DeviceIdentity(device_id="", local_key=KEY_HEX)

    def test_port_range(self):
        with pytest.raises(ValidationError):
            DeviceIdentity(device_id="bf01", port=70000, local_key=KEY_HEX)

    def test_frozen(self):
        identity = DeviceIdentity(device_id="bf01", local_key=KEY_HEX)
        with pytest.raises(ValidationError):
            identity.ip = "10.0.0.1"


class TestDiscoveredDevice:
    """Tests for DiscoveredDevice."""

    def test_to_identity(self):
        device = DiscoveredDevice(device_id="bf01", ip="10.0.0.5", protocol_version="3.4")

        identity = device.to_identity(KEY_HEX)

        assert identity.device_id == "bf01"
        assert identity.address == ("10.0.0.5", 6669)
        assert identity.protocol_version == "3.4"
        assert identity.key_bytes() == bytes.fromhex(KEY_HEX)

    def test_to_identity_default_version(self):
        identity = DiscoveredDevice(device_id="bf01", ip="10.0.0.5").to_identity(KEY_HEX)

        assert identity.protocol_version == "3.5"
