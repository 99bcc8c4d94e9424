"""Utility functions.

Modules:
    time: Reset-timestamp parsing and formatting
"""

from claude_usage.utils.time import format_relative_time, parse_reset_time

__all__ = ["parse_reset_time", "format_relative_time"]
