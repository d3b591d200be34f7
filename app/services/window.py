from datetime import datetime, timedelta
from typing import NamedTuple

from app.utils.dates import to_utc


class QueryWindow(NamedTuple):
    """Half-open interval [start, end) queried in one tick."""
    start: datetime
    end: datetime

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start


def compute_window(
    watermark: datetime | None,
    default_start: datetime,
    catchup: timedelta,
    now: datetime,
) -> QueryWindow:
    """
    start = watermark (or default_start), end = min(start + catchup, now).
    A start at or past `now` yields an empty window ending at start, so the
    watermark never moves backwards.
    """
    start = to_utc(watermark if watermark is not None else default_start)
    now = to_utc(now)
    if start >= now:
        return QueryWindow(start, start)
    return QueryWindow(start, min(start + catchup, now))
