"""Device models shared by discovery, negotiation and the secure sender."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tuya_lan.const import TUYA_LAN_NEGOTIATION_PORT
from tuya_lan.protocol.aead import normalize_local_key


class DeviceIdentity(BaseModel):
    """A device the engine can negotiate with.

    ``ip`` is None when the address is not known yet; requests for such a
    device are broadcast instead of sent unicast.
    """

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(min_length=1)
    ip: str | None = None
    port: int = Field(default=TUYA_LAN_NEGOTIATION_PORT, ge=1, le=65535)
    local_key: str
    protocol_version: str = "3.5"

    @field_validator("local_key")
    @classmethod
    def _validate_local_key(cls, value: str) -> str:
        # Raises ValueError (reported by pydantic) unless the key resolves to 16 bytes
        normalize_local_key(value)
        return value

    def key_bytes(self) -> bytes:
        """Return the 16 raw local key bytes."""
        return normalize_local_key(self.local_key)

    @property
    def address(self) -> tuple[str, int] | None:
        return (self.ip, self.port) if self.ip else None


class DiscoveredDevice(BaseModel):
    """A device seen on the network by discovery.

    Carries no key material; join it with a provisioned local key via
    ``to_identity`` before negotiating.
    """

    device_id: str
    ip: str
    port: int = TUYA_LAN_NEGOTIATION_PORT
    product_key: str | None = None
    protocol_version: str | None = None
    mac: str | None = None

    def to_identity(self, local_key: str) -> DeviceIdentity:
        """Build the negotiation identity for this device."""
        return DeviceIdentity(
            device_id=self.device_id,
            ip=self.ip,
            port=self.port,
            local_key=local_key,
            protocol_version=self.protocol_version or "3.5",
        )
