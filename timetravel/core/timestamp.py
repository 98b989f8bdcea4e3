"""
Timestamps for historic queries.

A timestamp is either an absolute instant (``2022-01-01T00:00:00Z``) or an
ISO 8601 duration relative to the moment it is evaluated (``PT0S`` is "now",
``P-1D`` is "one day ago"). Relative timestamps are keyed by their duration
written in one normal form, so ``-P1D`` and ``P-1D`` share the key ``P-1D`` and
every zero duration is reported back as "PT0S".
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import total_ordering


_DURATION_RE = re.compile(
    r"^(?P<sign>[-+])?P"
    r"(?:(?P<years>[-+]?\d+)Y)?"
    r"(?:(?P<months>[-+]?\d+)M)?"
    r"(?:(?P<weeks>[-+]?\d+)W)?"
    r"(?:(?P<days>[-+]?\d+)D)?"
    r"(?:T"
    r"(?:(?P<hours>[-+]?\d+)H)?"
    r"(?:(?P<minutes>[-+]?\d+)M)?"
    r"(?:(?P<seconds>[-+]?\d+(?:\.\d+)?)S)?"
    r")?$"
)

NOW_LITERAL = "PT0S"


@dataclass(frozen=True)
class Duration:
    """Signed calendar duration; years and months are kept apart from days."""

    years: int = 0
    months: int = 0
    weeks: int = 0
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: float = 0.0

    @property
    def is_zero(self) -> bool:
        return not any(
            (self.years, self.months, self.weeks, self.days, self.hours, self.minutes, self.seconds)
        )

    def apply(self, moment: datetime) -> datetime:
        """Shift ``moment`` by this duration."""
        moment = _shift_months(moment, self.years * 12 + self.months)
        return moment + timedelta(
            weeks=self.weeks,
            days=self.days,
            hours=self.hours,
            minutes=self.minutes,
            seconds=self.seconds,
        )


def _shift_months(moment: datetime, months: int) -> datetime:
    if not months:
        return moment
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def parse_duration(text: str) -> Duration:
    """Parse an ISO 8601 duration such as ``PT0S``, ``P-1D`` or ``-P1Y2M``."""
    match = _DURATION_RE.match(text)
    if not match or text.endswith("T"):
        raise ValueError(f"Invalid ISO 8601 duration: {text!r}")

    parts = match.groupdict()
    factor = -1 if parts.pop("sign") == "-" else 1
    if all(value is None for value in parts.values()):
        raise ValueError(f"Invalid ISO 8601 duration: {text!r}")

    values = {
        name: (float(value) if name == "seconds" else int(value)) * factor
        for name, value in parts.items()
        if value is not None
    }
    return Duration(**values)


def _parse_instant(text: str) -> datetime:
    value = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid ISO 8601 timestamp: {text!r}") from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_utc(moment: datetime) -> datetime:
    """Convert to aware UTC; naive values are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@total_ordering
class TimestampValue:
    """An absolute instant or a duration relative to now."""

    __slots__ = ("_instant", "_duration", "_key")

    def __init__(self, instant: datetime | None = None, duration: Duration | None = None):
        if (instant is None) == (duration is None):
            raise ValueError("A timestamp is either an instant or a duration")

        self._instant = None
        self._duration = duration
        if instant is not None:
            self._instant = to_utc(instant)
            self._key = self._instant.isoformat().replace("+00:00", "Z")
        elif duration.is_zero:
            self._key = NOW_LITERAL
        else:
            self._key = _format_duration(duration)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def parse(cls, value: str | datetime | TimestampValue) -> TimestampValue:
        """Parse an ISO 8601 instant or duration."""
        if isinstance(value, TimestampValue):
            return value
        if isinstance(value, datetime):
            return cls.from_datetime(value)
        if not isinstance(value, str):
            raise TypeError(f"Cannot parse timestamp from {type(value).__name__}")

        text = value.strip()
        if text.lstrip("+-").upper().startswith("P"):
            return cls(duration=parse_duration(text.upper()))
        return cls(instant=_parse_instant(text))

    @classmethod
    def from_datetime(cls, moment: datetime) -> TimestampValue:
        return cls(instant=moment)

    @classmethod
    def now(cls) -> TimestampValue:
        """The relative timestamp denoting the present."""
        return cls(duration=Duration())

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def key(self) -> str:
        """Canonical string key."""
        return self._key

    @property
    def is_relative(self) -> bool:
        return self._duration is not None

    @property
    def is_now(self) -> bool:
        return self._duration is not None and self._duration.is_zero

    @property
    def historic(self) -> bool:
        """True for every timestamp other than "now"."""
        return not self.is_now

    def to_datetime(self, now: datetime | None = None) -> datetime:
        """Resolve to an aware UTC datetime."""
        if self._instant is not None:
            return self._instant
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return self._duration.apply(now.astimezone(timezone.utc))

    # -------------------------------------------------------------------------
    # Comparison
    # -------------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if isinstance(other, str):
            try:
                other = TimestampValue.parse(other)
            except ValueError:
                return False
        if not isinstance(other, TimestampValue):
            return NotImplemented
        return self._key == other._key

    def __lt__(self, other: TimestampValue) -> bool:
        if not isinstance(other, TimestampValue):
            return NotImplemented
        now = datetime.now(timezone.utc)
        return self.to_datetime(now) < other.to_datetime(now)

    def __hash__(self) -> int:
        return hash(self._key)

    def __str__(self) -> str:
        return self._key

    def __repr__(self) -> str:
        return f"TimestampValue({self._key!r})"


def _format_duration(duration: Duration) -> str:
    date_part = "".join(
        f"{value}{unit}"
        for value, unit in (
            (duration.years, "Y"),
            (duration.months, "M"),
            (duration.weeks, "W"),
            (duration.days, "D"),
        )
        if value
    )
    seconds = duration.seconds
    if seconds == int(seconds):
        seconds = int(seconds)
    time_part = "".join(
        f"{value}{unit}"
        for value, unit in ((duration.hours, "H"), (duration.minutes, "M"), (seconds, "S"))
        if value
    )
    return "P" + date_part + ("T" + time_part if time_part else "")
