"""Shared timestamp normalization helpers."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y/%m/%d %H:%M:%S", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def to_epoch_ms(value: Any, default: int | None = None) -> int:
    """Convert transcript timestamps (ISO strings or epoch numbers) to epoch ms.

    Epoch values below 1e11 are treated as seconds. Unparseable input falls
    back to `default`, or the current time when no default is given.
    """
    if isinstance(value, bool):
        value = None
    if isinstance(value, (int, float)) and value > 0:
        return int(value * 1000) if value < 1e11 else int(value)
    if isinstance(value, str):
        parsed = _parse_datetime_token(value)
        if parsed:
            dt = parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
            return int(dt.astimezone(timezone.utc).timestamp() * 1000)
    return now_ms() if default is None else default
