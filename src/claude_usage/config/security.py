"""Helpers that keep OAuth secrets out of logs and diagnostics."""

from __future__ import annotations

import stat
from pathlib import Path

SENSITIVE_KEYS = ("token", "key", "password", "secret", "authorization")


def mask_token(token: str | None, prefix_len: int = 8, suffix_len: int = 4) -> str:
    """Shorten a token to its first and last characters.

    Returns:
        e.g. "sk-ant-o...2345"; tokens too short to shorten are fully starred.
    """
    if not token:
        return "<empty>"

    if len(token) <= prefix_len + suffix_len:
        return "*" * len(token)

    return f"{token[:prefix_len]}...{token[-suffix_len:]}"


def check_file_permissions(path: Path) -> tuple[bool, str | None]:
    """Report whether a credentials file is readable by group or others.

    A missing file counts as secure; the resolver reports it separately.

    Returns:
        Tuple of (is_secure, warning_message).
    """
    try:
        mode = path.stat().st_mode
    except FileNotFoundError:
        return True, None
    except OSError as e:
        return False, f"Cannot check permissions for {path}: {e}"

    exposed = stat.S_IMODE(mode) & (stat.S_IRWXG | stat.S_IRWXO)
    if exposed:
        return False, f"{path} is accessible to other users (mode {stat.S_IMODE(mode):o}); run: chmod 600 {path}"
    return True, None


def sanitize_details(details: dict) -> dict:
    """Copy of an audit details dict with secret-looking values masked.

    Keys are matched case-insensitively against ``SENSITIVE_KEYS``; nested
    dicts are sanitized recursively.
    """
    sanitized = {}
    for key, value in details.items():
        if any(s in key.lower() for s in SENSITIVE_KEYS):
            sanitized[key] = mask_token(value) if isinstance(value, str) else "***"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_details(value)
        else:
            sanitized[key] = value
    return sanitized


__all__ = [
    "SENSITIVE_KEYS",
    "mask_token",
    "check_file_permissions",
    "sanitize_details",
]
