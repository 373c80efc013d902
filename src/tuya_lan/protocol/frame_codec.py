"""Tuya frame encoder/decoder.

Builds and parses both frame families and computes the frame CRC32
(polynomial 0xEDB88320, reflected, init 0xFFFFFFFF, final complement), which
is the same CRC as ``binascii.crc32``.
"""

from __future__ import annotations

import binascii
import logging
import struct

from tuya_lan.protocol.exceptions import CrcMismatchError, MalformedFrameError
from tuya_lan.protocol.packet_types import (
    HEADER_LENGTH,
    MIN_FRAME_LENGTH,
    SUFFIX_FOR_PREFIX,
    TRAILER_LENGTH,
    ParsedFrame,
    length_field_for,
    payload_length_from,
)

HEADER_FMT = ">4I"  # prefix, sequence, command, length
TRAILER_FMT = ">2I"  # crc32, suffix
_UINT32_MAX = 0xFFFFFFFF

logger = logging.getLogger(__name__)


def crc32(data: bytes) -> int:
    """Compute the frame CRC32 over ``data``.

    Example:
        >>> hex(crc32(b"123456789"))
        '0xcbf43926'

    """
    return binascii.crc32(data) & _UINT32_MAX


def build_frame(
    prefix: int,
    sequence: int,
    command: int,
    payload: bytes,
    suffix: int | None = None,
) -> bytes:
    """Assemble a frame and compute its CRC over header + payload.

    The CRC is always recomputed from the assembled bytes.

    Args:
        prefix: Prefix word (PREFIX_55AA or PREFIX_6699)
        sequence: Sequence number (uint32)
        command: Command code (uint32)
        payload: Payload bytes (already encrypted where applicable)
        suffix: Suffix word; defaults to the suffix paired with ``prefix``

    Returns:
        Complete frame bytes

    Raises:
        ValueError: If the prefix is unknown or a header field does not fit in uint32

    """
    if prefix not in SUFFIX_FOR_PREFIX:
        msg = f"Unknown frame prefix 0x{prefix:08x}"
        raise ValueError(msg)
    if suffix is None:
        suffix = SUFFIX_FOR_PREFIX[prefix]
    for name, value in (("sequence", sequence), ("command", command), ("suffix", suffix)):
        if not 0 <= value <= _UINT32_MAX:
            msg = f"{name} out of uint32 range: {value}"
            raise ValueError(msg)

    header = struct.pack(HEADER_FMT, prefix, sequence, command, length_field_for(prefix, len(payload)))
    body = header + payload
    frame = body + struct.pack(TRAILER_FMT, crc32(body), suffix)

    logger.debug(
        "Built frame: prefix=0x%08x seq=%d cmd=0x%02x payload=%d bytes",
        prefix,
        sequence,
        command,
        len(payload),
    )
    return frame


def parse_frame(data: bytes) -> ParsedFrame:
    """Parse a frame without trusting its CRC.

    Args:
        data: Frame bytes (trailing bytes past the suffix are ignored)

    Returns:
        ParsedFrame; check ``crc_valid`` before using the payload

    Raises:
        MalformedFrameError: If the buffer is too short, the prefix is unknown,
            or the declared length runs past the end of the buffer

    """
    if len(data) < MIN_FRAME_LENGTH:
        raise MalformedFrameError("too_short", data)

    prefix, sequence, command, length_field = struct.unpack_from(HEADER_FMT, data, 0)
    if prefix not in SUFFIX_FOR_PREFIX:
        raise MalformedFrameError("invalid_prefix", data)

    payload_length = payload_length_from(prefix, length_field)
    if payload_length < 0:
        raise MalformedFrameError("invalid_length", data)

    payload_end = HEADER_LENGTH + payload_length
    if len(data) < payload_end + TRAILER_LENGTH:
        raise MalformedFrameError("truncated", data)

    crc, suffix = struct.unpack_from(TRAILER_FMT, data, payload_end)
    computed = crc32(data[:payload_end])

    if crc != computed:
        logger.debug(
            "CRC mismatch: frame=0x%08x computed=0x%08x",
            crc,
            computed,
            extra={"sequence": sequence, "command": command},
        )

    return ParsedFrame(
        prefix=prefix,
        sequence=sequence,
        command=command,
        payload_length=length_field,
        payload=bytes(data[HEADER_LENGTH:payload_end]),
        crc=crc,
        computed_crc=computed,
        suffix=suffix,
        raw=bytes(data[: payload_end + TRAILER_LENGTH]),
    )


def parse_verified_frame(data: bytes) -> ParsedFrame:
    """Parse a frame and require a valid CRC.

    Raises:
        MalformedFrameError: If the frame cannot be parsed
        CrcMismatchError: If the carried CRC does not match

    """
    frame = parse_frame(data)
    if not frame.crc_valid:
        raise CrcMismatchError(frame.crc, frame.computed_crc)
    return frame


def extract_crc(data: bytes) -> int | None:
    """Return the CRC field of a frame, or None if the frame cannot be parsed.

    Used for response routing, where unparseable datagrams are simply not ours.
    """
    try:
        return parse_frame(data).crc
    except MalformedFrameError:
        return None
