"""
Timing decorators for negotiation and transport operations.

Durations are logged at DEBUG, or at WARNING once they exceed
TUYA_LAN_PERF_THRESHOLD_MS. Setting TUYA_LAN_PERF_TRACKING to a false value
turns the decorators into pass-throughs.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

__all__ = [
    "measure_time",
    "timed",
    "timed_async",
]

P = ParamSpec("P")
T = TypeVar("T")


def measure_time(start_time: float) -> float:
    """Return milliseconds elapsed since ``start_time`` (a time.perf_counter() value)."""
    return (time.perf_counter() - start_time) * 1000


def _perf_settings() -> tuple[bool, int]:
    # Imported lazily so tests can patch the constants on the module
    from tuya_lan import const  # noqa: PLC0415

    return const.TUYA_LAN_PERF_TRACKING, const.TUYA_LAN_PERF_THRESHOLD_MS


def timed(operation_name: str | None = None) -> Callable:
    """
    Time a synchronous function.

    Args:
        operation_name: Name to log under (defaults to the function name)

    Example:
        @timed("build_batch_packet")
        def build(devices):
            ...
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            enabled, threshold_ms = _perf_settings()
            if not enabled:
                return func(*args, **kwargs)

            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _log_timing(operation_name or func.__name__, measure_time(start_time), threshold_ms)

        return wrapper

    return decorator


def timed_async(operation_name: str | None = None) -> Callable:
    """
    Time a coroutine function.

    Args:
        operation_name: Name to log under (defaults to the function name)

    Example:
        @timed_async("batch_negotiation")
        async def start_batch_negotiation(self, devices, timeout_ms):
            ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            enabled, threshold_ms = _perf_settings()
            if not enabled:
                return await func(*args, **kwargs)

            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _log_timing(operation_name or func.__name__, measure_time(start_time), threshold_ms)

        return wrapper

    return decorator


def _log_timing(operation_name: str, elapsed_ms: float, threshold_ms: int) -> None:
    from tuya_lan.logging_abstraction import get_logger  # noqa: PLC0415

    logger: Any = get_logger(__name__)
    exceeded = elapsed_ms > threshold_ms
    extra = {
        "operation": operation_name,
        "duration_ms": round(elapsed_ms, 2),
        "threshold_ms": threshold_ms,
        "exceeded_threshold": exceeded,
    }
    if exceeded:
        logger.warning(
            "⏱️ [%s] completed in %.1fms (threshold: %dms)",
            operation_name,
            elapsed_ms,
            threshold_ms,
            extra=extra,
        )
    else:
        logger.debug("⏱️ [%s] completed in %.1fms", operation_name, elapsed_ms, extra=extra)
