"""Resolve merchant-local date ranges to absolute UTC bounds.

Two flavours exist. Calendar ranges cover whole local days, from local
midnight of the first day to 23:59:59.999 of the last. Relative windows end
at "now", so the current day is only covered up to the present moment.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shopincome.core.errors import InvalidRangeError

ALLOWED_WINDOW_DAYS: tuple[int, ...] = (1, 2, 3, 7, 14, 30, 90, 365)

END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class LocalRange:
    """Inclusive local calendar span plus the UTC instants bounding it."""

    from_date: date
    to_date: date
    timezone: str
    start: datetime
    end: datetime

    @property
    def zone(self) -> ZoneInfo:
        return load_zone(self.timezone)

    @property
    def day_count(self) -> int:
        return (self.to_date - self.from_date).days + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_date.isoformat(),
            "to": self.to_date.isoformat(),
            "timezone": self.timezone,
            "start_utc": self.start.isoformat(),
            "end_utc": self.end.isoformat(),
        }


def load_zone(timezone: str) -> ZoneInfo:
    """Look up an IANA zone, raising InvalidRangeError for unknown names."""
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidRangeError(f"Unknown timezone: {timezone!r}") from e


def parse_local_date(value: str | date) -> date:
    """Accept a ``date`` or a strict ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        raise InvalidRangeError(f"Expected a calendar date, got datetime {value!r}")
    if isinstance(value, date):
        return value
    try:
        parsed = date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as e:
        raise InvalidRangeError(f"Invalid local date: {value!r}") from e
    if parsed.isoformat() != value.strip():
        raise InvalidRangeError(f"Invalid local date: {value!r}")
    return parsed


def local_midnight(day: date, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=zone)


def resolve_calendar_range(
    from_date: str | date, to_date: str | date, timezone: str
) -> LocalRange:
    """Whole local days ``from_date`` through ``to_date`` as UTC instants.

    Raises:
        InvalidRangeError: Malformed dates, ``from_date > to_date`` or an
            unknown timezone.
    """
    zone = load_zone(timezone)
    start_day = parse_local_date(from_date)
    end_day = parse_local_date(to_date)
    if start_day > end_day:
        raise InvalidRangeError(
            f"from ({start_day.isoformat()}) must be <= to ({end_day.isoformat()})"
        )
    start = local_midnight(start_day, zone).astimezone(UTC)
    end = datetime.combine(end_day, END_OF_DAY, tzinfo=zone).astimezone(UTC)
    return LocalRange(
        from_date=start_day,
        to_date=end_day,
        timezone=timezone,
        start=start,
        end=end,
    )


def resolve_relative_window(
    days: int, timezone: str, now: datetime | None = None
) -> LocalRange:
    """Last ``days`` local days ending at ``now`` ("today so far").

    ``days=1`` is local midnight today through now.
    """
    if days < 1:
        raise InvalidRangeError(f"days must be >= 1, got {days}")
    zone = load_zone(timezone)
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        raise InvalidRangeError("now must be timezone-aware")
    local_now = now.astimezone(zone)
    end_day = local_now.date()
    start_day = end_day - timedelta(days=days - 1)
    return LocalRange(
        from_date=start_day,
        to_date=end_day,
        timezone=timezone,
        start=local_midnight(start_day, zone).astimezone(UTC),
        end=now.astimezone(UTC),
    )


def previous_period(
    from_date: str | date, to_date: str | date, timezone: str
) -> tuple[date, date]:
    """Same number of local calendar days, ending the day before ``from_date``."""
    load_zone(timezone)
    start_day = parse_local_date(from_date)
    end_day = parse_local_date(to_date)
    if start_day > end_day:
        raise InvalidRangeError(
            f"Invalid local range order: from={start_day} to={end_day}"
        )
    span_days = (end_day - start_day).days + 1
    previous_end = start_day - timedelta(days=1)
    previous_start = previous_end - timedelta(days=span_days - 1)
    return previous_start, previous_end


def previous_range(local_range: LocalRange) -> LocalRange:
    """Calendar range for the period immediately before ``local_range``."""
    previous_start, previous_end = previous_period(
        local_range.from_date, local_range.to_date, local_range.timezone
    )
    return resolve_calendar_range(previous_start, previous_end, local_range.timezone)


@dataclass(frozen=True)
class RangeRequest:
    """Either a relative ``days`` window or an explicit ``from``/``to`` pair."""

    days: int | None = None
    from_date: str | date | None = None
    to_date: str | date | None = None

    def validate(self) -> None:
        has_dates = self.from_date is not None or self.to_date is not None
        if self.days is not None and has_dates:
            raise InvalidRangeError("Provide either days or from/to, not both")
        if self.days is not None:
            if self.days not in ALLOWED_WINDOW_DAYS:
                allowed = ", ".join(str(d) for d in ALLOWED_WINDOW_DAYS)
                raise InvalidRangeError(f"days must be one of: {allowed}")
            return
        if self.from_date is None or self.to_date is None:
            raise InvalidRangeError("Provide either days or both from and to")

    def resolve(self, timezone: str, now: datetime | None = None) -> LocalRange:
        self.validate()
        if self.days is not None:
            return resolve_relative_window(self.days, timezone, now)
        assert self.from_date is not None and self.to_date is not None  # noqa: S101
        return resolve_calendar_range(self.from_date, self.to_date, timezone)
