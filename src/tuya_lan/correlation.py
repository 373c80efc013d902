"""
Correlation ids for negotiation batches.

Each batch negotiation runs under one id held in a ContextVar, so every log
line emitted while the batch is in flight (including from callbacks driven
by the shared UDP socket inside the batch's task) can be tied together.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tuya_lan_correlation_id",
    default=None,
)


def generate_correlation_id() -> str:
    """Return a new correlation id (UUID4 hex, no dashes)."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    """Return the correlation id of the current context, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set (or clear, with None) the correlation id of the current context."""
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
    auto_generate: bool = True,
) -> Generator[str | None]:
    """
    Scope a correlation id to a block.

    Args:
        correlation_id: Id to use; a fresh one is generated when None and
            ``auto_generate`` is set
        auto_generate: Whether to generate an id when none is given

    Yields:
        The id active inside the block

    Example:
        with correlation_context() as corr_id:
            await manager.start_batch_negotiation(devices)
    """
    previous_id = get_correlation_id()
    if correlation_id is None and auto_generate:
        correlation_id = generate_correlation_id()

    set_correlation_id(correlation_id)
    try:
        yield correlation_id
    finally:
        set_correlation_id(previous_id)


def ensure_correlation_id() -> str:
    """Return the current correlation id, generating and setting one if missing."""
    current_id = get_correlation_id()
    if current_id is None:
        current_id = generate_correlation_id()
        set_correlation_id(current_id)
    return current_id
