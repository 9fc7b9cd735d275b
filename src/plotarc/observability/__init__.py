"""Observability module for plotarc.

Provides structured logging shared by the arc engine, the profile store
and the CLI.
"""

from plotarc.observability.logging import (
    bind_conversation,
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
)

__all__ = [
    "bind_conversation",
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
]
