from __future__ import annotations

import re
from datetime import timedelta
from typing import Sequence

from wosync.config import get_settings

# Known provider throttling signatures, matched case-insensitively.
# Sheets returns 429 with "Quota exceeded for quota metric ..." or RESOURCE_EXHAUSTED.
QUOTA_ERROR_SIGNATURES: tuple[str, ...] = (
    "quota",
    "rate limit",
    "ratelimitexceeded",
    "resource_exhausted",
    "too many requests",
)

# A bare 429 also shows up inside work order numbers and ids, so only the
# status-code forms count: "HTTP 429", "status: 429", "code=429", "(429)".
QUOTA_STATUS_PATTERN = re.compile(r"(?:\bhttp\S*|\bstatus(?:[ _]code)?|\bcode)[\s:=]*429\b|\(429\)", re.IGNORECASE)


def delay_for_attempt(attempt: int, delays_seconds: Sequence[int] | None = None) -> timedelta:
    """
    Capped exponential backoff looked up from a fixed table.

    attempt is 1-based; anything past the end of the table clamps to the last
    entry so a persistently failing job is retried at most once per day.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    table = list(delays_seconds if delays_seconds is not None else get_settings().backoff_delays_seconds)
    if not table:
        raise ValueError("backoff table must not be empty")
    index = min(attempt - 1, len(table) - 1)
    return timedelta(seconds=table[index])


def is_quota_error(message: str | None) -> bool:
    """
    Classify provider throttling from error text.

    Anything not matching a known signature is treated as an ordinary,
    retryable application error.
    """
    if not message:
        return False
    lowered = message.lower()
    if any(signature in lowered for signature in QUOTA_ERROR_SIGNATURES):
        return True
    return QUOTA_STATUS_PATTERN.search(message) is not None


def max_attempts() -> int:
    return get_settings().max_attempts
