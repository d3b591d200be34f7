from datetime import datetime, timezone
from typing import Any

WEBHOOK_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.000+0000"


def to_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    """Parse '2021-07-01', '2021-07-01T10:00:00.123Z' etc. into a UTC datetime.

    Raises ValueError for text that is not ISO-8601 or falls outside the
    representable UTC range once its offset is applied.
    """
    parsed = datetime.fromisoformat(value.strip())
    try:
        return to_utc(parsed)
    except OverflowError as e:
        raise ValueError(f"{value!r} is out of range in UTC") from e


def format_timestamp(value: Any) -> Any:
    """Convert '2021-07-01T10:00:00.123Z' → '2021-07-01T10:00:00.000+0000'.

    Values that cannot be read as a date are returned untouched.
    """
    if not isinstance(value, (datetime, str)):
        return value
    try:
        if isinstance(value, datetime):
            parsed = to_utc(value)
        elif value.strip():
            parsed = parse_iso_datetime(value)
        else:
            return value
        return parsed.strftime(WEBHOOK_TIMESTAMP_FORMAT)
    except (ValueError, OverflowError):
        return value
