"""Negotiation request and response messages (protocol v3.5).

The request carries ``{"gwId", "random", "t", "uuid"}`` encrypted under the
device's local key and framed with the 6699 markers at sequence 1. The
16-byte client random doubles as nonce material: its first 12 bytes are the
GCM nonce. The response is encrypted under the discovery key and carries
``{"gwId", "random", "uuid"}``.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field

from tuya_lan.const import DISCOVERY_KEY
from tuya_lan.protocol import aead
from tuya_lan.protocol.gcm_parser import build_gcm_frame, decrypt_frame
from tuya_lan.protocol.packet_types import NONCE_LENGTH, PREFIX_6699, ParsedFrame, TuyaCommand

INITIAL_SEQUENCE = 1
_JSON_SEPARATORS = (",", ":")


def device_uuid(device_id: str) -> str:
    """Derive the request UUID from a device id.

    MD5 of the id, as 32 hex digits regrouped into four dash-separated groups
    of eight, e.g. ``0123abcd-4567ef01-89ab2345-cdef6789``.
    """
    digest = hashlib.md5(device_id.encode("utf-8")).hexdigest()
    return "-".join(digest[i : i + 8] for i in range(0, 32, 8))


def normalize_uuid(value: str) -> str:
    """Strip dashes and lowercase, for comparing UUIDs sent in either form."""
    return value.replace("-", "").lower()


@dataclass(frozen=True)
class NegotiationRequest:
    """Inputs of one negotiation request.

    Attributes:
        device_id: gwId of the target device
        local_key: 16-byte local key (kept out of repr)
        uuid: Request UUID (dashed or not)
        client_random: 16 fresh random bytes (kept out of repr)
        timestamp: Unix time in seconds

    """

    device_id: str
    local_key: bytes = field(repr=False)
    uuid: str
    client_random: bytes = field(repr=False)
    timestamp: int

    @classmethod
    def create(
        cls,
        device_id: str,
        local_key: bytes,
        client_random: bytes | None = None,
        timestamp: int | None = None,
    ) -> NegotiationRequest:
        """Build a request with a derived UUID, defaulting to a fresh random and the current time."""
        return cls(
            device_id=device_id,
            local_key=local_key,
            uuid=device_uuid(device_id),
            client_random=client_random if client_random is not None else aead.random_bytes(),
            timestamp=timestamp if timestamp is not None else int(time.time()),
        )

    def to_json(self) -> bytes:
        body = {
            "gwId": self.device_id,
            "random": self.client_random.hex(),
            "t": self.timestamp,
            "uuid": normalize_uuid(self.uuid),
        }
        return json.dumps(body, separators=_JSON_SEPARATORS).encode("utf-8")


def build_negotiation_frame(request: NegotiationRequest, sequence: int = INITIAL_SEQUENCE) -> bytes:
    """Encrypt the request body under the local key and frame it.

    Raises:
        ValueError: If the local key or client random has the wrong length

    """
    if len(request.client_random) != aead.RANDOM_LENGTH:
        msg = f"client random must be {aead.RANDOM_LENGTH} bytes"
        raise ValueError(msg)
    return build_gcm_frame(
        request.local_key,
        PREFIX_6699,
        sequence,
        TuyaCommand.SESS_KEY_NEG_REQ,
        request.to_json(),
        nonce=request.client_random[:NONCE_LENGTH],
    )


def decode_negotiation_request(frame: ParsedFrame, local_key: bytes) -> dict[str, object]:
    """Decrypt a request frame with the device's local key (device side).

    Raises:
        AuthenticationError: If the frame does not authenticate under ``local_key``
        ValueError: If the plaintext is not a JSON object

    """
    plaintext, _ = decrypt_frame(frame, local_key)
    body = json.loads(plaintext)
    if not isinstance(body, dict):
        msg = "negotiation request body is not an object"
        raise ValueError(msg)
    return body


def build_negotiation_response(
    device_id: str,
    uuid: str,
    device_random: bytes,
    sequence: int = INITIAL_SEQUENCE,
    key: bytes = DISCOVERY_KEY,
    nonce: bytes | None = None,
) -> bytes:
    """Build the device's answer to a negotiation request (device side)."""
    body = {"gwId": device_id, "random": device_random.hex(), "uuid": uuid}
    return build_gcm_frame(
        key,
        PREFIX_6699,
        sequence,
        TuyaCommand.SESS_KEY_NEG_RESP,
        json.dumps(body, separators=_JSON_SEPARATORS).encode("utf-8"),
        nonce=nonce,
    )


@dataclass(frozen=True)
class NegotiationResponse:
    """Decoded response body."""

    device_id: str
    uuid: str
    device_random: bytes = field(repr=False)


def parse_response_body(plaintext: bytes) -> NegotiationResponse:
    """Validate and decode a decrypted response body.

    Raises:
        ValueError: If the body is not JSON, a field is missing or mistyped, or
            ``random`` is not 16 bytes of hex

    """
    body = json.loads(plaintext)
    if not isinstance(body, dict):
        msg = "response body is not an object"
        raise ValueError(msg)

    gw_id = body.get("gwId")
    uuid = body.get("uuid")
    random_hex = body.get("random")
    if not isinstance(gw_id, str) or not isinstance(uuid, str) or not isinstance(random_hex, str):
        msg = "response body missing gwId, uuid or random"
        raise ValueError(msg)

    device_random = bytes.fromhex(random_hex)
    if len(device_random) != aead.RANDOM_LENGTH:
        msg = f"device random must be {aead.RANDOM_LENGTH} bytes, got {len(device_random)}"
        raise ValueError(msg)
    return NegotiationResponse(device_id=gw_id, uuid=uuid, device_random=device_random)
