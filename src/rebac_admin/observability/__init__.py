"""Logging for the ReBAC admin backend."""

from .logging import clear_log_context, configure_logging, set_log_context

__all__ = [
    "configure_logging",
    "set_log_context",
    "clear_log_context",
]
