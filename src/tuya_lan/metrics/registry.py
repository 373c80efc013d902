"""Prometheus metrics registry for Tuya LAN negotiation and transport."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

# Negotiation metrics
tuya_lan_negotiation_total: Final = Counter(  # type: ignore[assignment]
    "tuya_lan_negotiation_total",
    "Total completed negotiations",
    ["device_id", "outcome"],
)

tuya_lan_negotiation_failure_total: Final = Counter(  # type: ignore[assignment]
    "tuya_lan_negotiation_failure_total",
    "Total negotiation failures by reason",
    ["device_id", "reason"],
)

tuya_lan_device_offline_total: Final = Counter(  # type: ignore[assignment]
    "tuya_lan_device_offline_total",
    "Total offline escalations",
    ["device_id"],
)

tuya_lan_duplicate_response_total: Final = Counter(  # type: ignore[assignment]
    "tuya_lan_duplicate_response_total",
    "Total responses dropped because the negotiator was not waiting for one",
    ["device_id"],
)

tuya_lan_batch_duration_seconds: Final = Histogram(  # type: ignore[assignment]
    "tuya_lan_batch_duration_seconds",
    "Batch negotiation duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

tuya_lan_batch_size: Final = Histogram(  # type: ignore[assignment]
    "tuya_lan_batch_size",
    "Number of devices per batch negotiation",
    buckets=(1, 2, 5, 10, 25, 50, 100, 250),
)

# Transport metrics
tuya_lan_frames_dropped_total: Final = Counter(  # type: ignore[assignment]
    "tuya_lan_frames_dropped_total",
    "Total inbound frames dropped before reaching a negotiator",
    ["reason"],
)

tuya_lan_datagrams_total: Final = Counter(  # type: ignore[assignment]
    "tuya_lan_datagrams_total",
    "Total UDP datagrams",
    ["direction", "outcome"],
)

# Session cache metrics
tuya_lan_session_cache_size: Final = Gauge(  # type: ignore[assignment]
    "tuya_lan_session_cache_size",
    "Current number of cached sessions",
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_negotiation(device_id: str, outcome: str) -> None:
    """Record a completed negotiation."""
    tuya_lan_negotiation_total.labels(device_id=device_id, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_negotiation_failure(device_id: str, reason: str) -> None:
    """Record a negotiation failure."""
    tuya_lan_negotiation_failure_total.labels(device_id=device_id, reason=reason).inc()  # type: ignore[no-untyped-call]


def record_device_offline(device_id: str) -> None:
    """Record an offline escalation."""
    tuya_lan_device_offline_total.labels(device_id=device_id).inc()  # type: ignore[no-untyped-call]


def record_duplicate_response(device_id: str) -> None:
    """Record a duplicate or late response dropped."""
    tuya_lan_duplicate_response_total.labels(device_id=device_id).inc()  # type: ignore[no-untyped-call]


def record_batch(size: int, duration_seconds: float) -> None:
    """Record a finished batch negotiation."""
    tuya_lan_batch_size.observe(size)  # type: ignore[no-untyped-call]
    tuya_lan_batch_duration_seconds.observe(duration_seconds)  # type: ignore[no-untyped-call]


def record_frame_dropped(reason: str) -> None:
    """Record an inbound frame dropped before routing."""
    tuya_lan_frames_dropped_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_datagram(direction: str, outcome: str) -> None:
    """Record a datagram sent or received."""
    tuya_lan_datagrams_total.labels(direction=direction, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_session_cache_size(size: int) -> None:
    """Record session cache size."""
    tuya_lan_session_cache_size.set(size)  # type: ignore[no-untyped-call]
