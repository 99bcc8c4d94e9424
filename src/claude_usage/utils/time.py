"""Reset-timestamp parsing and formatting for the command-line output."""

from __future__ import annotations

from datetime import datetime, timezone


def parse_reset_time(iso_str: str) -> datetime:
    """Parse an ISO 8601 timestamp as sent in ``resets_at``.

    Accepts a trailing ``Z`` and fractional seconds of any precision,
    which ``datetime.fromisoformat`` rejects before Python 3.11.

    Raises:
        ValueError: If the string is not an ISO 8601 timestamp.
    """
    value = iso_str.strip().replace("Z", "+00:00")
    if "." in value:
        head, _, tail = value.partition(".")
        offset = ""
        for sign in ("+", "-"):
            if sign in tail:
                offset = sign + tail.split(sign, 1)[1]
                break
        value = head + offset
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_relative_time(reset_at: str | None, now: datetime | None = None) -> str:
    """Format a reset time as the duration left until it.

    Returns:
        Strings like "4 d 3 hr", "2 hr 30 min", "< 1 min", or "unknown"
        when the timestamp is missing or unparseable.
    """
    if not reset_at:
        return "unknown"
    try:
        reset_dt = parse_reset_time(reset_at)
    except ValueError:
        return "unknown"

    now = now or datetime.now(timezone.utc)
    total_seconds = max(0, int((reset_dt - now).total_seconds()))

    days = total_seconds // 86400
    hours = (total_seconds % 86400) // 3600
    minutes = (total_seconds % 3600) // 60

    if days > 0:
        return f"{days} d {hours} hr"
    if hours > 0:
        return f"{hours} hr {minutes} min"
    if minutes > 0:
        return f"{minutes} min"
    return "< 1 min"


__all__ = ["parse_reset_time", "format_relative_time"]
