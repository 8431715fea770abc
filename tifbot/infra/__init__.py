"""
Infrastructure package.

Logging configuration shared by the engine and the CLI.
"""

from tifbot.infra.logging_cfg import build_logger, log_event

__all__ = [
    "build_logger",
    "log_event",
]
