import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Current unix time in milliseconds."""
    return int(time.time() * 1000)


def to_unix_ms(value: datetime) -> int:
    """Convert a datetime to unix milliseconds. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def format_duration(duration_ms: int) -> str:
    """Render a duration as ``1h 2m 3s`` / ``2m 3s`` / ``3s``.

    Negative durations are clamped to zero.
    """
    total = max(0, int(duration_ms) // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def truncate(text: str, limit: int) -> str:
    """Cut `text` to at most `limit` characters, ending with an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 1)] + "…"
