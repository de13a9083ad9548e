"""Fixed time-window helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

DEFAULT_WINDOW_SECONDS = 60


def window_start(now: datetime, window_seconds: int = DEFAULT_WINDOW_SECONDS) -> datetime:
    """Truncate ``now`` (UTC) down to the enclosing window boundary."""

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    epoch = int(now.timestamp())
    return datetime.fromtimestamp(epoch - epoch % window_seconds, tz=timezone.utc)


def window_reset(start: datetime, window_seconds: int = DEFAULT_WINDOW_SECONDS) -> datetime:
    return start + timedelta(seconds=window_seconds)
