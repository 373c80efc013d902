"""Committed session material, keyed by device id.

Writes come from the manager's success path; reads come from the control
layer (possibly on another thread), so access is serialized with a lock.
Entries never expire on their own.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from tuya_lan.metrics import registry
from tuya_lan.negotiation.events import NegotiationSuccess


@dataclass(frozen=True)
class CachedSession:
    """Session material for one device.

    Attributes:
        session_key: 16-byte session key (kept out of repr)
        client_random: Client random used in the handshake
        device_random: Device random returned in the handshake
        ip: Device address at negotiation time
        port: Port the negotiation response came from (commands use the command port)
        established_at: Unix time the session was established

    """

    session_key: bytes = field(repr=False)
    client_random: bytes = field(repr=False)
    device_random: bytes = field(repr=False)
    ip: str | None = None
    port: int | None = None
    established_at: float = 0.0

    @classmethod
    def from_success(cls, success: NegotiationSuccess) -> CachedSession:
        return cls(
            session_key=bytes(success.session_key),
            client_random=bytes(success.client_random),
            device_random=bytes(success.device_random),
            ip=success.ip,
            port=success.port,
            established_at=success.established_at,
        )


class SessionCache:
    """Thread-safe device id → CachedSession store (last write wins)."""

    def __init__(self) -> None:
        self._sessions: dict[str, CachedSession] = {}
        self._lock = threading.RLock()

    def set(self, device_id: str, session: CachedSession) -> None:
        with self._lock:
            self._sessions[device_id] = session
            registry.record_session_cache_size(len(self._sessions))

    def store(self, success: NegotiationSuccess) -> CachedSession:
        """Copy a successful negotiation into the cache and return the entry."""
        session = CachedSession.from_success(success)
        self.set(success.device_id, session)
        return session

    def get(self, device_id: str) -> CachedSession | None:
        with self._lock:
            return self._sessions.get(device_id)

    def delete(self, device_id: str) -> None:
        with self._lock:
            self._sessions.pop(device_id, None)
            registry.record_session_cache_size(len(self._sessions))

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            registry.record_session_cache_size(0)

    def device_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, device_id: object) -> bool:
        with self._lock:
            return device_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
