"""Structured logging."""

from parimutuel_core.logging.setup import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)

__all__ = ["bind_request_context", "clear_request_context", "get_logger", "setup_logging"]
