"""Metrics module."""

from . import registry
from .registry import (
    record_batch,
    record_datagram,
    record_device_offline,
    record_duplicate_response,
    record_frame_dropped,
    record_negotiation,
    record_negotiation_failure,
    record_session_cache_size,
    start_metrics_server,
)

__all__ = [
    "record_batch",
    "record_datagram",
    "record_device_offline",
    "record_duplicate_response",
    "record_frame_dropped",
    "record_negotiation",
    "record_negotiation_failure",
    "record_session_cache_size",
    "registry",
    "start_metrics_server",
]
