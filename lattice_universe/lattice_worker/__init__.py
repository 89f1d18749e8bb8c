"""
Worker boundary for the lattice kernel.

Modules:
- worker.py: compute message handling, error payloads, JSON-lines serve loop
- logs.py: setup_logger for entry points
"""

from .logs import setup_logger
from .worker import DEFAULT_ERROR_MESSAGE, handle_message, serialize_error, serve

__all__ = [
    "DEFAULT_ERROR_MESSAGE",
    "handle_message",
    "serialize_error",
    "serve",
    "setup_logger",
]
