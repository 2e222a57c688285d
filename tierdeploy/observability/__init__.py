"""Observability: logging."""

from .logging import RunLoggerAdapter, setup_logging

__all__ = [
    "RunLoggerAdapter",
    "setup_logging",
]
