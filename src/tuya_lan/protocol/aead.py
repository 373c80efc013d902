"""AES-128-GCM layer and key helpers for the Tuya v3.5 protocol.

Encryption keeps nonce, AAD and tag explicit so each message family can
lay them out on the wire itself. Decryption failures raise
``AuthenticationError``; no partial plaintext is ever returned.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import struct
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from tuya_lan.protocol.exceptions import AuthenticationError
from tuya_lan.protocol.packet_types import NONCE_LENGTH, TAG_LENGTH

KEY_LENGTH = 16
RANDOM_LENGTH = 16
AAD_LENGTH = 12
BATCH_AAD_LENGTH = 16
_MAX_AAD_PAYLOAD_LENGTH = 0xFFFFFF  # 3-byte field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AeadResult:
    """Output of ``encrypt``: ciphertext and its 16-byte authentication tag."""

    ciphertext: bytes
    tag: bytes


def _require_length(name: str, value: bytes, expected: int) -> None:
    if len(value) != expected:
        msg = f"{name} must be {expected} bytes, got {len(value)}"
        raise ValueError(msg)


def encrypt(plaintext: bytes, key: bytes, nonce: bytes, aad: bytes | None = None) -> AeadResult:
    """Encrypt with AES-128-GCM.

    Args:
        plaintext: Data to encrypt
        key: 16-byte key
        nonce: 12-byte nonce, unique per encryption under ``key``
        aad: Additional authenticated data (authenticated, not encrypted)

    Returns:
        AeadResult with ciphertext (same length as plaintext) and 16-byte tag

    Raises:
        ValueError: If key or nonce has the wrong length

    """
    _require_length("key", key, KEY_LENGTH)
    _require_length("nonce", nonce, NONCE_LENGTH)

    encryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).encryptor()
    if aad:
        encryptor.authenticate_additional_data(aad)
    ciphertext = encryptor.update(plaintext) + encryptor.finalize()
    return AeadResult(ciphertext=ciphertext, tag=encryptor.tag)


def decrypt(ciphertext: bytes, key: bytes, nonce: bytes, tag: bytes, aad: bytes | None = None) -> bytes:
    """Decrypt and authenticate with AES-128-GCM.

    Args:
        ciphertext: Encrypted data
        key: 16-byte key
        nonce: 12-byte nonce used for encryption
        tag: 16-byte authentication tag
        aad: Additional authenticated data used for encryption

    Returns:
        Plaintext bytes

    Raises:
        AuthenticationError: On tag mismatch or malformed input (wrong key,
            nonce or tag length)

    """
    if len(key) != KEY_LENGTH:
        raise AuthenticationError("invalid_key_length")
    if len(nonce) != NONCE_LENGTH:
        raise AuthenticationError("invalid_nonce_length")
    if len(tag) != TAG_LENGTH:
        raise AuthenticationError("invalid_tag_length")

    decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce, tag)).decryptor()
    if aad:
        decryptor.authenticate_additional_data(aad)
    plaintext = decryptor.update(ciphertext)
    try:
        return plaintext + decryptor.finalize()
    except InvalidTag as e:
        raise AuthenticationError("tag_mismatch") from e


def create_aad(command: int, sequence: int | bytes, payload_length: int) -> bytes:
    """Build the 12-byte AAD used by single-device GCM frames.

    Layout:
    - Bytes 0-3: version/reserved (zero)
    - Bytes 4-7: sequence number (big-endian)
    - Byte 8: command code
    - Bytes 9-11: plaintext length (3-byte big-endian)

    Args:
        command: Command code (must fit in one byte)
        sequence: Sequence number as int or its 4-byte big-endian encoding
        payload_length: Plaintext length

    Returns:
        12-byte AAD

    """
    seq_bytes = struct.pack(">I", sequence) if isinstance(sequence, int) else bytes(sequence[:4])
    if len(seq_bytes) != 4:
        msg = "sequence must encode to 4 bytes"
        raise ValueError(msg)
    if not 0 <= command <= 0xFF:
        msg = f"command does not fit in one byte: {command}"
        raise ValueError(msg)
    if not 0 <= payload_length <= _MAX_AAD_PAYLOAD_LENGTH:
        msg = f"payload length does not fit in 3 bytes: {payload_length}"
        raise ValueError(msg)
    return b"\x00\x00\x00\x00" + seq_bytes + bytes([command]) + payload_length.to_bytes(3, "big")


def create_batch_aad(sequence: int, message_type: int, batch_crc: int, device_count: int) -> bytes:
    """Build the 16-byte AAD covering a whole batch frame.

    Four big-endian uint32 words: sequence, message type, batch CRC, device count.
    """
    return struct.pack(">4I", sequence, message_type, batch_crc & 0xFFFFFFFF, device_count)


def derive_session_key(local_key: bytes | str, client_random: bytes | str, device_random: bytes | str) -> bytes:
    """Derive the 16-byte session key: MD5(local_key || client_random || device_random).

    String arguments are hex-decoded before concatenation.
    """
    material = _as_bytes(local_key) + _as_bytes(client_random) + _as_bytes(device_random)
    return hashlib.md5(material).digest()


def _as_bytes(value: bytes | str) -> bytes:
    if isinstance(value, str):
        return bytes.fromhex(value)
    return bytes(value)


def normalize_local_key(local_key: str | bytes) -> bytes:
    """Return the 16 raw key bytes for a provisioned local key.

    Accepts 16 raw bytes, 32 hex digits, or a 16-character ASCII key (the form
    the Tuya cloud hands out).

    Raises:
        ValueError: If the key does not resolve to exactly 16 bytes

    """
    if isinstance(local_key, bytes):
        key = local_key
    elif len(local_key) == KEY_LENGTH * 2:
        try:
            key = bytes.fromhex(local_key)
        except ValueError:
            key = local_key.encode("utf-8")
    else:
        key = local_key.encode("utf-8")
    if len(key) != KEY_LENGTH:
        msg = f"local key must resolve to {KEY_LENGTH} bytes, got {len(key)}"
        raise ValueError(msg)
    return key


def md5_hex(data: bytes | str) -> str:
    """Return the hex MD5 digest of ``data`` (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.md5(data).hexdigest()


def hmac_sha256(data: bytes | str, key: bytes) -> bytes:
    """Return the HMAC-SHA256 of ``data`` under ``key``."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hmac.new(key, data, hashlib.sha256).digest()


def random_bytes(length: int = RANDOM_LENGTH) -> bytes:
    """Return ``length`` cryptographically secure random bytes."""
    return secrets.token_bytes(length)


def random_nonce() -> bytes:
    """Return a fresh 12-byte GCM nonce."""
    return secrets.token_bytes(NONCE_LENGTH)
