"""Per-device session negotiation state machine.

One SessionNegotiator drives one v3.5 handshake:

    IDLE --build_request()--> REQUEST_SENT --process_response()--> ESTABLISHED
                                          \\--(any check fails)--> FAILED

Terminal states are left only through ``cleanup()``, which returns the
negotiator to IDLE for a later retry. All transitions happen on the event
loop thread; the negotiator holds no locks.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum

from tuya_lan.const import DISCOVERY_KEY
from tuya_lan.logging_abstraction import TuyaLogger, get_logger
from tuya_lan.metrics import registry
from tuya_lan.negotiation.events import NegotiationFailure, NegotiationOutcome, NegotiationSuccess
from tuya_lan.negotiation.message import (
    NegotiationRequest,
    build_negotiation_frame,
    normalize_uuid,
    parse_response_body,
)
from tuya_lan.protocol import aead
from tuya_lan.protocol.exceptions import (
    AuthenticationError,
    CrcMismatchError,
    IdentityMismatchError,
    MalformedFrameError,
    NegotiationStateError,
    TuyaProtocolError,
    UnexpectedCommandError,
)
from tuya_lan.protocol.frame_codec import parse_frame
from tuya_lan.protocol.gcm_parser import GcmFrameParser
from tuya_lan.protocol.packet_types import TuyaCommand
from tuya_lan.structs import DeviceIdentity

# Failure reasons reported for each protocol error raised while checking a response
_FAILURE_REASONS: dict[type[TuyaProtocolError], str] = {
    MalformedFrameError: "malformed_frame",
    CrcMismatchError: "crc_mismatch",
    UnexpectedCommandError: "unexpected_command",
    AuthenticationError: "decryption_failed",
}

RouteRegistrar = Callable[[int, str], None]


class NegotiationState(Enum):
    """Negotiator state enumeration."""

    IDLE = "idle"
    REQUEST_SENT = "request_sent"
    ESTABLISHED = "established"
    FAILED = "failed"


class SessionNegotiator:
    """Drives one device's session-key handshake to success or failure.

    Results are returned as values (NegotiationSuccess / NegotiationFailure)
    rather than emitted; the manager aggregates them.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        *,
        route_registrar: RouteRegistrar | None = None,
        response_key: bytes = DISCOVERY_KEY,
        logger: TuyaLogger | None = None,
        clock: Callable[[], float] = time.time,
        random_source: Callable[[], bytes] = aead.random_bytes,
    ) -> None:
        """Initialize negotiator.

        Args:
            identity: Device to negotiate with (carries the local key)
            route_registrar: Called with (request_crc, device_id) whenever a
                request is built, so responses can be routed back
            response_key: Key responses are encrypted under
            logger: Logger to use (defaults to this module's TuyaLogger)
            clock: Time source for request timestamps and session times
            random_source: Source of the 16-byte client random

        """
        self.identity: DeviceIdentity = identity
        self._local_key: bytes = identity.key_bytes()
        self._route_registrar = route_registrar
        self._parser = GcmFrameParser(response_key)
        self.logger: TuyaLogger = logger or get_logger(__name__)
        self._clock = clock
        self._random_source = random_source

        self.state: NegotiationState = NegotiationState.IDLE
        self.uuid: str | None = None
        self.client_random: bytes | None = None
        self.request_crc: int | None = None
        self.outcome: NegotiationOutcome | None = None

    @property
    def device_id(self) -> str:
        return self.identity.device_id

    @property
    def is_pending(self) -> bool:
        """Whether a request is outstanding."""
        return self.state is NegotiationState.REQUEST_SENT

    @property
    def session_key(self) -> bytes | None:
        if isinstance(self.outcome, NegotiationSuccess):
            return self.outcome.session_key
        return None

    def build_request(self) -> bytes:
        """Start a handshake and return the request frame to send.

        Generates a fresh client random, derives the UUID from the device id,
        and registers the request's CRC as the routing key.

        Raises:
            NegotiationStateError: If the negotiator is not IDLE

        """
        if self.state is not NegotiationState.IDLE:
            raise NegotiationStateError(self.device_id, self.state.value)

        client_random = self._random_source()
        request = NegotiationRequest.create(
            self.device_id,
            self._local_key,
            client_random=client_random,
            timestamp=int(self._clock()),
        )
        frame = build_negotiation_frame(request)

        self.uuid = request.uuid
        self.client_random = client_random
        self.request_crc = parse_frame(frame).crc
        self.state = NegotiationState.REQUEST_SENT

        if self._route_registrar is not None:
            self._route_registrar(self.request_crc, self.device_id)

        self.logger.debug(
            "→ Negotiation request built",
            extra={"device_id": self.device_id, "request_crc": f"0x{self.request_crc:08x}"},
        )
        return frame

    def process_response(
        self,
        frame: bytes,
        source_addr: tuple[str, int] | None = None,
    ) -> NegotiationOutcome | None:
        """Handle a response routed to this negotiator.

        Returns None (and changes nothing) unless a request is outstanding, so
        duplicate and late responses are no-ops. Otherwise returns the outcome;
        every failed check moves the negotiator to FAILED.
        """
        if self.state is not NegotiationState.REQUEST_SENT:
            registry.record_duplicate_response(self.device_id)
            self.logger.debug(
                "Ignoring response, negotiator not waiting",
                extra={"device_id": self.device_id, "state": self.state.value},
            )
            return None

        try:
            parsed = self._parser.parse_or_raise(frame, expected_command=TuyaCommand.SESS_KEY_NEG_RESP)
        except TuyaProtocolError as e:
            return self._fail(_FAILURE_REASONS.get(type(e), e.reason), e)

        try:
            response = parse_response_body(parsed.plaintext)
        except ValueError as e:
            return self._fail("invalid_payload", e)

        # Identity checks: a mismatch means the frame was meant for someone else, or was forged
        if normalize_uuid(response.uuid) != normalize_uuid(self.uuid or ""):
            return self._fail(
                "uuid_mismatch",
                IdentityMismatchError("uuid", self.uuid or "", response.uuid),
            )
        if response.device_id != self.device_id:
            return self._fail(
                "gwid_mismatch",
                IdentityMismatchError("gwId", self.device_id, response.device_id),
            )

        client_random = self.client_random or b""
        session_key = aead.derive_session_key(self._local_key, client_random, response.device_random)
        ip, port = source_addr if source_addr else (self.identity.ip, self.identity.port)
        success = NegotiationSuccess(
            device_id=self.device_id,
            session_key=session_key,
            device_random=response.device_random,
            client_random=client_random,
            ip=ip,
            port=port,
            established_at=self._clock(),
        )
        self.state = NegotiationState.ESTABLISHED
        self.outcome = success
        self.logger.info(
            "✓ Session established",
            extra={"device_id": self.device_id, "ip": ip, "port": port},
        )
        return success

    def fail(self, reason: str, error: Exception | None = None) -> NegotiationFailure | None:
        """Force a pending negotiation into FAILED (timeouts, cancellation).

        Returns None if no request was outstanding.
        """
        if self.state is not NegotiationState.REQUEST_SENT:
            return None
        return self._fail(reason, error)

    def _fail(self, reason: str, error: Exception | None) -> NegotiationFailure:
        self.state = NegotiationState.FAILED
        failure = NegotiationFailure(device_id=self.device_id, reason=reason, error=error)
        self.outcome = failure
        level = self.logger.warning if reason in ("uuid_mismatch", "gwid_mismatch") else self.logger.info
        level(
            "✗ Negotiation failed: %s",
            reason,
            extra={"device_id": self.device_id, "reason": reason},
        )
        return failure

    def cleanup(self) -> None:
        """Clear session material and return to IDLE."""
        self.state = NegotiationState.IDLE
        self.uuid = None
        self.client_random = None
        self.request_crc = None
        self.outcome = None

