from __future__ import annotations

import time
from datetime import datetime, timezone

# Largest value a BIGINT column holds.
MAX_EPOCH_MS = 2**63 - 1


def now_ms() -> int:
    """Current Unix epoch time in integer milliseconds."""
    return time.time_ns() // 1_000_000


def ms_to_utc(ms: int) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)


def ms_to_iso(ms: int | None) -> str | None:
    # Display helper only; persisted values stay integer milliseconds.
    if ms is None:
        return None
    return ms_to_utc(ms).isoformat(timespec="milliseconds")
