"""Observability infrastructure for structured logging."""

from mutespot.infrastructure.observability.logging import (
    configure_logging,
    get_batch_id,
    get_correlation_id,
    reset_batch_id,
    set_batch_id,
    set_correlation_id,
)
from mutespot.infrastructure.observability.middleware import RequestLoggingMiddleware

__all__ = [
    "RequestLoggingMiddleware",
    "configure_logging",
    "get_batch_id",
    "get_correlation_id",
    "reset_batch_id",
    "set_batch_id",
    "set_correlation_id",
]
