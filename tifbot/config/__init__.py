"""
Configuration package.

Environment loading and validation.
"""

from tifbot.config.config import Settings

__all__ = [
    "Settings",
]
