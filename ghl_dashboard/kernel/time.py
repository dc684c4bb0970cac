from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

UTC = timezone.utc


def utc_now() -> datetime:
    """Return a tz-aware UTC timestamp."""
    return datetime.now(UTC)


def coerce_utc(value: datetime, *, assume_naive_is_utc: bool = True) -> datetime:
    """Coerce any datetime to tz-aware UTC.

    Rows read back from `timestamp without time zone` columns arrive naive.
    """
    if value.tzinfo is not None and value.utcoffset() is not None:
        return value.astimezone(UTC)

    if not assume_naive_is_utc:
        raise ValueError("Naive datetime cannot be coerced without an explicit assumption")

    return value.replace(tzinfo=UTC)


def to_epoch_ms(value: datetime) -> int:
    return int(coerce_utc(value).timestamp() * 1000)


def day_bounds_ms(day: date) -> tuple[int, int]:
    """Epoch-millisecond window covering one UTC calendar day, end exclusive."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    end = start + timedelta(days=1)
    return to_epoch_ms(start), to_epoch_ms(end)
