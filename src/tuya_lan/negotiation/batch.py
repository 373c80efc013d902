"""Batch negotiation frames addressing many devices at once.

Payload layout (inside a 6699 frame):

    aad(16) | base_nonce(12) | entry * device_count
    entry = token(4) | ciphertext_length(4) | ciphertext | tag(16)

The AAD is four big-endian words: sequence, message type, batch CRC and
device count, where the batch CRC is the CRC32 of all tokens concatenated.
Each device's plaintext ``00000000 | token | random`` is encrypted under the
broadcast key with the base nonce whose last four bytes are XORed with the
device's index, so no nonce repeats within a frame.

This layout is not wire-compatible with builders that prepend a reserved
zero word to the AAD (20 bytes) and seal every entry under the same nonce.
Such frames are rejected by :func:`parse_batch_packet`, and frames built here
are rejected by them.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from tuya_lan.const import BROADCAST_KEY
from tuya_lan.instrumentation import timed
from tuya_lan.protocol import aead
from tuya_lan.protocol.exceptions import AuthenticationError, MalformedFrameError
from tuya_lan.protocol.frame_codec import build_frame, crc32, parse_frame
from tuya_lan.protocol.packet_types import NONCE_LENGTH, PREFIX_6699, TAG_LENGTH, TuyaCommand

_ENTRY_HEADER_FMT = ">2I"  # token, ciphertext length
_ENTRY_HEADER_LENGTH = 8
_PLAINTEXT_PREFIX = b"\x00\x00\x00\x00"


@dataclass(frozen=True)
class BatchDevice:
    """One device addressed by a batch frame.

    Attributes:
        token: 4-byte routing token (the device's request CRC)
        random: 16-byte random for this device (kept out of repr)

    """

    token: int
    random: bytes = field(repr=False)


@dataclass(frozen=True)
class BatchPacket:
    """Decoded batch frame."""

    sequence: int
    message_type: int
    batch_crc: int
    devices: list[BatchDevice]


def compute_batch_crc(tokens: list[int]) -> int:
    """CRC32 over the tokens, each as a 4-byte big-endian word, in order."""
    return crc32(b"".join(struct.pack(">I", token) for token in tokens))


def device_nonce(base_nonce: bytes, index: int) -> bytes:
    """Derive the nonce for the device at ``index`` from the frame's base nonce."""
    counter = int.from_bytes(base_nonce[-4:], "big") ^ index
    return base_nonce[:-4] + counter.to_bytes(4, "big")


@timed("build_batch_packet")
def build_batch_packet(
    devices: list[BatchDevice],
    sequence: int = 0,
    message_type: int = TuyaCommand.SESS_KEY_NEG_REQ,
    key: bytes = BROADCAST_KEY,
    base_nonce: bytes | None = None,
) -> bytes:
    """Build one frame carrying an encrypted entry per device.

    Raises:
        ValueError: If ``devices`` is empty or a device random is not 16 bytes

    """
    if not devices:
        msg = "devices list required"
        raise ValueError(msg)
    if base_nonce is None:
        base_nonce = aead.random_nonce()

    tokens = [device.token for device in devices]
    batch_crc = compute_batch_crc(tokens)
    aad = aead.create_batch_aad(sequence, message_type, batch_crc, len(devices))

    entries = []
    for index, device in enumerate(devices):
        if len(device.random) != aead.RANDOM_LENGTH:
            msg = f"device random must be {aead.RANDOM_LENGTH} bytes"
            raise ValueError(msg)
        plaintext = _PLAINTEXT_PREFIX + struct.pack(">I", device.token) + device.random
        sealed = aead.encrypt(plaintext, key, device_nonce(base_nonce, index), aad)
        entries.append(struct.pack(_ENTRY_HEADER_FMT, device.token, len(sealed.ciphertext)))
        entries.append(sealed.ciphertext + sealed.tag)

    payload = aad + base_nonce + b"".join(entries)
    return build_frame(PREFIX_6699, sequence, message_type, payload)


def parse_batch_packet(data: bytes, key: bytes = BROADCAST_KEY) -> BatchPacket:
    """Decode and authenticate a batch frame.

    Raises:
        MalformedFrameError: If the frame fails its CRC, its entry table is malformed, or
            the AAD disagrees with the frame
        AuthenticationError: If any entry fails to authenticate

    """
    frame = parse_frame(data)
    if not frame.crc_valid:
        raise MalformedFrameError("crc_mismatch", data)

    payload = frame.payload
    header_length = aead.BATCH_AAD_LENGTH + NONCE_LENGTH
    if len(payload) < header_length:
        raise MalformedFrameError("truncated", data)

    aad = payload[: aead.BATCH_AAD_LENGTH]
    sequence, message_type, batch_crc, device_count = struct.unpack(">4I", aad)
    if sequence != frame.sequence or message_type != frame.command:
        raise MalformedFrameError("aad_mismatch", data)
    base_nonce = payload[aead.BATCH_AAD_LENGTH : header_length]

    devices: list[BatchDevice] = []
    offset = header_length
    for index in range(device_count):
        if offset + _ENTRY_HEADER_LENGTH > len(payload):
            raise MalformedFrameError("truncated", data)
        token, ct_length = struct.unpack_from(_ENTRY_HEADER_FMT, payload, offset)
        offset += _ENTRY_HEADER_LENGTH
        end = offset + ct_length + TAG_LENGTH
        if end > len(payload):
            raise MalformedFrameError("truncated", data)
        ciphertext = payload[offset : offset + ct_length]
        tag = payload[offset + ct_length : end]
        offset = end

        plaintext = aead.decrypt(ciphertext, key, device_nonce(base_nonce, index), tag, aad)
        if len(plaintext) != 8 + aead.RANDOM_LENGTH or plaintext[4:8] != struct.pack(">I", token):
            raise AuthenticationError("entry_mismatch")
        devices.append(BatchDevice(token=token, random=plaintext[8:]))

    if compute_batch_crc([device.token for device in devices]) != batch_crc:
        raise MalformedFrameError("batch_crc_mismatch", data)

    return BatchPacket(sequence=sequence, message_type=message_type, batch_crc=batch_crc, devices=devices)
