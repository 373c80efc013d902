"""Tuya LAN wire protocol: frame codec, AES-GCM layer and GCM frame parser."""

from .aead import AeadResult, create_aad, decrypt, derive_session_key, encrypt
from .exceptions import (
    AuthenticationError,
    CrcMismatchError,
    IdentityMismatchError,
    MalformedFrameError,
    NegotiationError,
    NegotiationStateError,
    NegotiationTimeoutError,
    TuyaProtocolError,
    UnexpectedCommandError,
)
from .frame_codec import build_frame, crc32, extract_crc, parse_frame
from .gcm_parser import GcmFrameParser, GcmParseResult, build_gcm_frame
from .packet_types import ParsedFrame, TuyaCommand

__all__ = [
    "AeadResult",
    "AuthenticationError",
    "CrcMismatchError",
    "GcmFrameParser",
    "GcmParseResult",
    "IdentityMismatchError",
    "MalformedFrameError",
    "NegotiationError",
    "NegotiationStateError",
    "NegotiationTimeoutError",
    "ParsedFrame",
    "TuyaCommand",
    "TuyaProtocolError",
    "UnexpectedCommandError",
    "build_frame",
    "build_gcm_frame",
    "crc32",
    "create_aad",
    "decrypt",
    "derive_session_key",
    "encrypt",
    "extract_crc",
    "parse_frame",
]
