"""Time window checks for assessments.

All instants are UTC epoch seconds.  Callers pass `now` explicitly so the
checks stay pure; now_ts() is the single place the wall clock is read.
"""

from __future__ import annotations

import datetime


def now_ts() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


def is_within(starts_at: int, ends_at: int, now: int) -> bool:
    """True iff now is strictly after starts_at and strictly before ends_at."""
    return starts_at < now < ends_at


def has_started(starts_at: int, now: int) -> bool:
    return now >= starts_at


def has_ended(ends_at: int, now: int) -> bool:
    return now >= ends_at
