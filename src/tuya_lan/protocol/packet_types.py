"""Tuya LAN frame constants and dataclass structures.

Frame layout (all integers big-endian uint32):

    prefix | sequence | command | length | payload | crc32 | suffix

Frame families:
- 0x000055AA / 0x0000AA55: legacy data frames (length = len(payload) + 8)
- 0x00006699 / 0x00009966: v3.5 negotiation frames (length = len(payload))

Command Overview:
- 0x05/0x06: Session key negotiation (client → device, device → client)
- 0x07: Control command (client → device)
- 0x08: Status report
- 0x09: Heartbeat
- 0x0A: Data point query
- 0x13: Encrypted UDP discovery broadcast (device → network)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

# Frame markers
PREFIX_55AA = 0x000055AA
SUFFIX_55AA = 0x0000AA55
PREFIX_6699 = 0x00006699
SUFFIX_6699 = 0x00009966

SUFFIX_FOR_PREFIX: dict[int, int] = {
    PREFIX_55AA: SUFFIX_55AA,
    PREFIX_6699: SUFFIX_6699,
}

HEADER_LENGTH = 16  # prefix + sequence + command + length
TRAILER_LENGTH = 8  # crc32 + suffix
MIN_FRAME_LENGTH = 20  # header + crc32, the shortest buffer worth inspecting

# AEAD payload layout
NONCE_LENGTH = 12
TAG_LENGTH = 16


class TuyaCommand(IntEnum):
    """Command codes carried in the frame header."""

    SESS_KEY_NEG_REQ = 0x05  # Client → Device: negotiation request
    SESS_KEY_NEG_RESP = 0x06  # Device → Client: negotiation response
    CONTROL = 0x07  # Client → Device: set data points
    STATUS = 0x08  # Device → Client: status report
    HEART_BEAT = 0x09
    DP_QUERY = 0x0A
    UDP_NEW = 0x13  # Device → Network: encrypted discovery broadcast


def length_field_for(prefix: int, payload_length: int) -> int:
    """Return the header length field for a payload in the given frame family."""
    if prefix == PREFIX_55AA:
        return payload_length + TRAILER_LENGTH
    return payload_length


def payload_length_from(prefix: int, length_field: int) -> int:
    """Return the payload length implied by a header length field.

    Returns a negative number when a 55AA header declares less than its own trailer.
    """
    if prefix == PREFIX_55AA:
        return length_field - TRAILER_LENGTH
    return length_field


@dataclass(frozen=True)
class ParsedFrame:
    """Decoded frame with CRC verdict.

    A CRC mismatch does not make a frame unparseable; ``crc_valid`` reports it
    so the caller decides whether to discard or log.

    Attributes:
        prefix: Prefix word (PREFIX_55AA or PREFIX_6699)
        sequence: Sequence number
        command: Command code (see TuyaCommand)
        payload_length: Length field exactly as carried in the header
        payload: Payload bytes
        crc: CRC32 carried in the frame
        computed_crc: CRC32 computed over header + payload
        suffix: Suffix word as carried in the frame
        raw: Complete frame bytes

    """

    prefix: int
    sequence: int
    command: int
    payload_length: int
    payload: bytes
    crc: int
    computed_crc: int
    suffix: int
    raw: bytes

    @property
    def crc_valid(self) -> bool:
        """Whether the carried CRC matches the computed CRC."""
        return self.crc == self.computed_crc

    @property
    def suffix_valid(self) -> bool:
        """Whether the suffix matches the prefix's frame family."""
        return SUFFIX_FOR_PREFIX.get(self.prefix) == self.suffix

    @property
    def is_negotiation_family(self) -> bool:
        """Whether the frame uses the v3.5 negotiation markers."""
        return self.prefix == PREFIX_6699
