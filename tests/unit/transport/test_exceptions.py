"""Unit tests for transport layer exceptions."""

from __future__ import annotations

from tuya_lan.protocol.exceptions import TuyaProtocolError
from tuya_lan.transport.exceptions import SessionNotEstablishedError, TransportError


class TestExceptionHierarchy:
    """Tests for exception inheritance."""

    def test_all_exceptions_inherit_from_tuya_protocol_error(self):
        """Test that all transport exceptions inherit from TuyaProtocolError."""
        assert issubclass(TransportError, TuyaProtocolError)
        assert issubclass(SessionNotEstablishedError, TuyaProtocolError)


class TestTransportError:
    """Tests for TransportError."""

    def test_transport_error_with_reason(self):
        """Test TransportError with reason only."""
        error = TransportError(reason="not_open")
        assert error.reason == "not_open"
        assert error.address is None
        assert "not_open" in str(error)

    def test_transport_error_with_address(self):
        """Test TransportError with reason and address."""
        error = TransportError(reason="bind_failed", address=("0.0.0.0", 6669))
        assert error.address == ("0.0.0.0", 6669)
        assert "bind_failed" in str(error)
        assert "0.0.0.0:6669" in str(error)


class TestSessionNotEstablishedError:
    """Tests for SessionNotEstablishedError."""

    def test_session_not_established(self):
        """Test SessionNotEstablishedError carries the device id."""
        error = SessionNotEstablishedError("bf0001")
        assert error.reason == "session_not_established"
        assert error.device_id == "bf0001"
        assert "bf0001" in str(error)
