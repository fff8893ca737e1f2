from __future__ import annotations

import math
import re
import time
from datetime import UTC, datetime

ANSI_REGEX = re.compile(r"\x1B\[[0-9;]*[mK]")


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def ms_to_iso(value_ms: int) -> str:
    return datetime.fromtimestamp(value_ms / 1000, UTC).isoformat().replace("+00:00", "Z")


def strip_ansi(text: str) -> str:
    return ANSI_REGEX.sub("", text)


def truncate(text: str, limit: int, ellipsis: str = "") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + ellipsis


def as_int(value: object, default: int = 0) -> int:
    """Coerce registry numbers (which may be missing, null or strings) to int."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return default
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else default
    return default
