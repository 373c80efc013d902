"""GCM-encrypted frame parsing and building.

Composes the frame codec and the AEAD layer. Payloads are laid out as
``nonce(12) | ciphertext | tag(16)`` and authenticated with the 12-byte
family AAD rebuilt from the frame's command, sequence and ciphertext length.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tuya_lan.const import DISCOVERY_KEY
from tuya_lan.protocol import aead
from tuya_lan.protocol.exceptions import (
    AuthenticationError,
    CrcMismatchError,
    TuyaProtocolError,
    UnexpectedCommandError,
)
from tuya_lan.protocol.frame_codec import build_frame, parse_frame
from tuya_lan.protocol.packet_types import NONCE_LENGTH, TAG_LENGTH, ParsedFrame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GcmParseResult:
    """Authenticated frame contents.

    Attributes:
        frame: Parsed frame metadata (CRC already verified)
        plaintext: Decrypted payload
        nonce_hex: Nonce taken from the payload, hex encoded

    """

    frame: ParsedFrame
    plaintext: bytes
    nonce_hex: str


def split_payload(payload: bytes) -> tuple[bytes, bytes, bytes]:
    """Split an AEAD payload into (nonce, ciphertext, tag).

    Raises:
        AuthenticationError: If the payload cannot hold a nonce and a tag

    """
    if len(payload) < NONCE_LENGTH + TAG_LENGTH:
        raise AuthenticationError("payload_too_short")
    return payload[:NONCE_LENGTH], payload[NONCE_LENGTH:-TAG_LENGTH], payload[-TAG_LENGTH:]


def decrypt_frame(frame: ParsedFrame, key: bytes) -> tuple[bytes, bytes]:
    """Authenticate and decrypt a parsed frame's payload.

    Returns:
        (plaintext, nonce)

    Raises:
        AuthenticationError: On short payload or tag mismatch

    """
    nonce, ciphertext, tag = split_payload(frame.payload)
    aad = aead.create_aad(frame.command & 0xFF, frame.sequence, len(ciphertext))
    return aead.decrypt(ciphertext, key, nonce, tag, aad), nonce


def build_gcm_frame(
    key: bytes,
    prefix: int,
    sequence: int,
    command: int,
    plaintext: bytes,
    nonce: bytes | None = None,
) -> bytes:
    """Encrypt ``plaintext`` and wrap it in a frame.

    Args:
        key: 16-byte AES key
        prefix: Frame family prefix
        sequence: Sequence number (also bound into the AAD)
        command: Command code (also bound into the AAD)
        plaintext: Payload to encrypt
        nonce: 12-byte nonce; a fresh random one when omitted

    Returns:
        Complete frame bytes

    """
    if nonce is None:
        nonce = aead.random_nonce()
    aad = aead.create_aad(command & 0xFF, sequence, len(plaintext))
    sealed = aead.encrypt(plaintext, key, nonce, aad)
    return build_frame(prefix, sequence, command, nonce + sealed.ciphertext + sealed.tag)


class GcmFrameParser:
    """Decrypts inbound frames under one fixed key.

    Defaults to the well-known discovery key used before a per-device session
    key exists.
    """

    def __init__(self, key: bytes = DISCOVERY_KEY) -> None:
        if len(key) != aead.KEY_LENGTH:
            msg = f"key must be {aead.KEY_LENGTH} bytes"
            raise ValueError(msg)
        self._key = key

    def parse(self, data: bytes, expected_command: int | None = None) -> GcmParseResult | None:
        """Parse, verify and decrypt a frame.

        Returns None when the frame is malformed, its CRC is invalid, its command
        differs from ``expected_command``, or AEAD authentication fails.
        """
        try:
            return self.parse_or_raise(data, expected_command)
        except TuyaProtocolError as e:
            logger.debug("GCM frame rejected: %s", e.reason, extra={"reason": e.reason})
            return None

    def parse_or_raise(self, data: bytes, expected_command: int | None = None) -> GcmParseResult:
        """Like ``parse`` but raises the underlying protocol error."""
        frame = parse_frame(data)
        if not frame.crc_valid:
            raise CrcMismatchError(frame.crc, frame.computed_crc)
        if expected_command is not None and frame.command != expected_command:
            raise UnexpectedCommandError(expected_command, frame.command)
        plaintext, nonce = decrypt_frame(frame, self._key)
        return GcmParseResult(frame=frame, plaintext=plaintext, nonce_hex=nonce.hex())

