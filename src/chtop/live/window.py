"""
Time window handling for live and historical views.

A TimeWindow is either LIVE (always evaluated against "now") or
HISTORICAL (a fixed [start, end) interval used verbatim). Windows are
immutable; the LiveScheduler is the only owner and replaces its window on
seek, set_live and set_time_interval.

Also provides parsing for relative durations ("10m", "1h30m", "-90s") and
absolute datetimes/dates used by the CLI.
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum

DEFAULT_SPAN = timedelta(hours=1)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*(ms|us|secs|sec|s|mins|min|m|hrs|hr|h|d|w)")
_UNITS = {
    "us": timedelta(microseconds=1),
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "sec": timedelta(seconds=1),
    "secs": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "min": timedelta(minutes=1),
    "mins": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "hr": timedelta(hours=1),
    "hrs": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WindowMode(str, Enum):
    LIVE = "live"
    HISTORICAL = "historical"


@dataclass(frozen=True)
class TimeWindow:
    """
    Live or historical time range a query is evaluated against.

    Attributes:
        mode: LIVE ignores start/end and follows the clock
        span: Width of the window
        start: Inclusive start (HISTORICAL only)
        end: Exclusive end (HISTORICAL only)
    """

    mode: WindowMode = WindowMode.LIVE
    span: timedelta = DEFAULT_SPAN
    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def live(cls, span: timedelta = DEFAULT_SPAN) -> "TimeWindow":
        return cls(mode=WindowMode.LIVE, span=span)

    @classmethod
    def historical(cls, start: datetime, end: datetime) -> "TimeWindow":
        if end <= start:
            raise ValueError(f"Window end {end} must be after start {start}")
        return cls(mode=WindowMode.HISTORICAL, span=end - start, start=start, end=end)

    @property
    def is_live(self) -> bool:
        return self.mode is WindowMode.LIVE

    def resolve(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """
        Return the concrete [start, end) bounds to bind into a query.

        LIVE windows end at now; HISTORICAL windows return their fixed bounds.
        """
        if self.mode is WindowMode.HISTORICAL:
            assert self.start is not None and self.end is not None
            return self.start, self.end
        now = now or utcnow()
        return now - self.span, now

    def shifted(self, delta: timedelta, now: datetime | None = None) -> "TimeWindow":
        """
        Return a HISTORICAL window moved by delta.

        From LIVE the window is anchored at now: [now + delta - span, now + delta).
        From HISTORICAL the existing bounds move by delta. The end never
        moves past now.
        """
        now = now or utcnow()
        if self.mode is WindowMode.LIVE:
            end = now + delta
        else:
            assert self.end is not None
            end = self.end + delta
        end = min(end, now)
        return TimeWindow(
            mode=WindowMode.HISTORICAL,
            span=self.span,
            start=end - self.span,
            end=end,
        )

    def with_span(self, span: timedelta) -> "TimeWindow":
        """Change the width; HISTORICAL windows keep their end."""
        if span <= timedelta(0):
            raise ValueError(f"Window span must be positive, got {span}")
        if self.mode is WindowMode.LIVE:
            return replace(self, span=span)
        assert self.end is not None
        return replace(self, span=span, start=self.end - span)

    def as_live(self) -> "TimeWindow":
        return TimeWindow.live(self.span)

    def describe(self) -> str:
        """Short human-readable form for status lines."""
        if self.mode is WindowMode.LIVE:
            return f"live (last {format_duration(self.span)})"
        assert self.start is not None and self.end is not None
        start = self.start.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        end = self.end.astimezone().strftime("%H:%M:%S")
        return f"{start} .. {end}"


def parse_duration(value: str) -> timedelta:
    """
    Parse a relative duration such as "10m", "1h30m", "-90s" or "1.5h".

    Raises:
        ValueError: If the string is not a duration.
    """
    text = value.strip().lower()
    sign = 1
    if text.startswith(("-", "+")):
        sign = -1 if text[0] == "-" else 1
        text = text[1:].strip()
    if not text:
        raise ValueError(f"Invalid duration: {value!r}")

    total = timedelta(0)
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if text[pos : match.start()].strip():
            raise ValueError(f"Invalid duration: {value!r}")
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or text[pos:].strip():
        raise ValueError(f"Invalid duration: {value!r}")
    return sign * total


def format_duration(delta: timedelta) -> str:
    """Format a duration compactly ("1h30m", "45s")."""
    seconds = int(abs(delta.total_seconds()))
    sign = "-" if delta < timedelta(0) else ""
    if seconds == 0:
        return "0s"
    parts = []
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
        if seconds >= size:
            parts.append(f"{seconds // size}{unit}")
            seconds %= size
    return sign + "".join(parts)


def parse_datetime_or_date(value: str) -> datetime:
    """
    Parse an ISO datetime or date; naive values are taken as local time.

    Raises:
        ValueError: If the value is neither a datetime nor a date.
    """
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as e:
        raise ValueError(
            f"Expected YYYY-MM-DD[THH:MM:SS[.ffffff][+HH:MM]] datetime or date, got {value!r}"
        ) from e
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def parse_time_bound(value: str, now: datetime | None = None) -> datetime:
    """
    Parse a window bound: "" means now, a datetime/date is absolute,
    anything else is a duration subtracted from now.
    """
    now = now or utcnow()
    if not value.strip():
        return now
    try:
        return parse_datetime_or_date(value)
    except ValueError:
        return now - abs(parse_duration(value))
