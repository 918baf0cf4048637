"""Sprint calendar: maps sprint numbers to two-week windows and back.

Sprints are numbered sequentially from a single anchor. Window boundaries are
computed on wall-clock time in a reference time zone, so a sprint that opens
at local midnight still opens at local midnight after a daylight-saving
transition.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

import pytz

from services.errors import ConfigurationError

# Sprint 62 opened on 2015-01-13, Vancouver time. Everything else is derived
# from this anchor and the period.
DEFAULT_ANCHOR_DATE = date(2015, 1, 13)
DEFAULT_ANCHOR_SPRINT = 62
DEFAULT_TIME_ZONE = "America/Vancouver"
DEFAULT_PERIOD_WEEKS = 2

TIMESTAMP_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%f%z",  # With fraction and offset (or Z)
    "%Y-%m-%dT%H:%M:%S%z",     # GitHub: 2015-01-27T18:30:00Z
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
]

Timestamp = Union[datetime, date, str]


def parse_timestamp(value: Optional[Timestamp]) -> Optional[datetime]:
    """Parse a GitHub/ISO timestamp.

    Returns None for empty or unparseable values; dates become midnight.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())

    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue

    return None


@dataclass(frozen=True)
class CalendarConfig:
    """Anchor and period of the sprint calendar."""

    anchor_date: date = DEFAULT_ANCHOR_DATE
    anchor_sprint_number: int = DEFAULT_ANCHOR_SPRINT
    time_zone: str = DEFAULT_TIME_ZONE
    period_weeks: int = DEFAULT_PERIOD_WEEKS

    def __post_init__(self):
        if not isinstance(self.anchor_date, date) or isinstance(self.anchor_date, datetime):
            raise ConfigurationError(f"Invalid calendar anchor date: {self.anchor_date!r}")
        if isinstance(self.anchor_sprint_number, bool) or not isinstance(self.anchor_sprint_number, int):
            raise ConfigurationError(
                f"Invalid anchor sprint number: {self.anchor_sprint_number!r}"
            )
        if isinstance(self.period_weeks, bool) or not isinstance(self.period_weeks, int) \
                or self.period_weeks < 1:
            raise ConfigurationError(f"Invalid sprint period: {self.period_weeks!r} weeks")
        try:
            pytz.timezone(self.time_zone)
        except pytz.UnknownTimeZoneError:
            raise ConfigurationError(f"Unknown time zone: {self.time_zone!r}")

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CalendarConfig":
        """Build from the `calendar` section of the config file.

        Keys: anchorDate (YYYY-MM-DD), anchorSprintNumber, timeZone, periodWeeks.
        Missing keys fall back to the defaults.
        """
        data = data or {}
        anchor_date = DEFAULT_ANCHOR_DATE
        if "anchorDate" in data:
            try:
                anchor_date = datetime.strptime(str(data["anchorDate"]), "%Y-%m-%d").date()
            except ValueError:
                raise ConfigurationError(
                    f"Invalid calendar anchor date: {data['anchorDate']!r}"
                )
        return cls(
            anchor_date=anchor_date,
            anchor_sprint_number=data.get("anchorSprintNumber", DEFAULT_ANCHOR_SPRINT),
            time_zone=data.get("timeZone", DEFAULT_TIME_ZONE),
            period_weeks=data.get("periodWeeks", DEFAULT_PERIOD_WEEKS),
        )


@dataclass(frozen=True)
class SprintWindow:
    """Half-open interval [start, stop) covered by one sprint."""

    number: int
    start: datetime
    stop: datetime

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "start": self.start.isoformat(),
            "stop": self.stop.isoformat(),
        }


class SprintCalendar:
    """Converts between sprint numbers and instants."""

    def __init__(self, config: Optional[CalendarConfig] = None):
        self.config = config or CalendarConfig()
        self.tz = pytz.timezone(self.config.time_zone)
        self.period = timedelta(weeks=self.config.period_weeks)
        self._anchor = datetime.combine(self.config.anchor_date, time())

    def localize(self, timestamp: Timestamp) -> datetime:
        """Return an aware datetime in the reference time zone.

        Naive values are taken as wall-clock time in the reference zone.
        """
        parsed = parse_timestamp(timestamp)
        if parsed is None:
            raise ValueError(f"Not a timestamp: {timestamp!r}")
        if parsed.tzinfo is None:
            return self.tz.localize(parsed)
        return parsed.astimezone(self.tz)

    def window_of(self, number: int) -> SprintWindow:
        """Window of a sprint; sprints before the anchor use the same formula."""
        offset = number - self.config.anchor_sprint_number
        start = self._anchor + offset * self.period
        return SprintWindow(
            number=number,
            start=self.tz.localize(start),
            stop=self.tz.localize(start + self.period),
        )

    def sprint_containing(self, timestamp: Timestamp) -> int:
        """Number of the sprint whose window contains `timestamp`."""
        wall_clock = self.localize(timestamp).replace(tzinfo=None)
        # timedelta // timedelta floors, which handles instants before the anchor
        return self.config.anchor_sprint_number + (wall_clock - self._anchor) // self.period

    def contains(self, window: SprintWindow, timestamp: Timestamp) -> bool:
        instant = self.localize(timestamp)
        return window.start <= instant < window.stop

    def current_sprint(self, now: Optional[Timestamp] = None) -> int:
        if now is None:
            now = datetime.now(pytz.utc)
        return self.sprint_containing(now)
