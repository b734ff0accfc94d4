"""
Business-day calendar and working-hour windows.

Weekends and configured holidays are non-working. Every translator window
carries an implicit lunch hour that is never counted as worked time:
ranges may span it, but never start or end inside it.
"""

import logging
import re
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .models import TimeRange, Translator, parse_hour, round_hours

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = (9.0, 17.0)

_SCHEDULE = re.compile(r"^\s*([0-9:h]+)\s*-\s*([0-9:h]+)\s*$")


def parse_schedule(
    text: Optional[str],
    default: Tuple[float, float] = DEFAULT_SCHEDULE
) -> Tuple[float, float]:
    """
    Parse a working-hours string such as '9h-17h', '7h30-15h30' or
    '07:00-15:00'. Empty or unreadable input yields the default window.
    """
    if not text:
        return default
    match = _SCHEDULE.match(text)
    if not match:
        logger.warning(f"Unreadable schedule {text!r}, using default")
        return default
    try:
        start, end = parse_hour(match.group(1)), parse_hour(match.group(2))
    except ValueError:
        logger.warning(f"Unreadable schedule {text!r}, using default")
        return default
    if end <= start:
        return default
    return start, end


class BusinessCalendar:
    """
    Pure queries over business days and working windows.

    Holidays are injected configuration; nothing here touches the ledger.
    """

    def __init__(
        self,
        holidays: Iterable[date] = (),
        lunch_start: float = 12.0,
        lunch_end: float = 13.0,
    ):
        self.holidays = frozenset(holidays)
        self.lunch = TimeRange(lunch_start, lunch_end)

    @classmethod
    def from_settings(cls, settings) -> "BusinessCalendar":
        return cls(
            holidays=settings.HOLIDAYS,
            lunch_start=settings.LUNCH_START,
            lunch_end=settings.LUNCH_END,
        )

    # ------------------------------------------------------------------
    # Days
    # ------------------------------------------------------------------

    def is_business_day(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self.holidays

    def next_business_day(self, day: date) -> date:
        """Smallest business day strictly after ``day``."""
        candidate = day + timedelta(days=1)
        while not self.is_business_day(candidate):
            candidate += timedelta(days=1)
        return candidate

    def previous_business_day(self, day: date) -> date:
        """Largest business day strictly before ``day``."""
        candidate = day - timedelta(days=1)
        while not self.is_business_day(candidate):
            candidate -= timedelta(days=1)
        return candidate

    def business_days(self, start: date, end: date) -> List[date]:
        """Business days in the inclusive range, ascending."""
        days = []
        current = start
        while current <= end:
            if self.is_business_day(current):
                days.append(current)
            current += timedelta(days=1)
        return days

    def days_between(self, start: date, end: date) -> int:
        """Inclusive calendar-day count; 0 for an inverted range."""
        if end < start:
            return 0
        return (end - start).days + 1

    def business_days_between(self, start: date, end: date) -> int:
        """Inclusive business-day count; 0 for an inverted range."""
        return len(self.business_days(start, end))

    # ------------------------------------------------------------------
    # Hours
    # ------------------------------------------------------------------

    def working_window(self, translator: Translator, day: date) -> TimeRange:
        """The translator's window for ``day`` (lunch still inside it)."""
        return translator.schedule

    def working_hours(self, span: TimeRange) -> float:
        """Hours of ``span`` that count as work (lunch excluded)."""
        return round_hours(span.duration - span.intersection(self.lunch))

    def usable_hours(self, translator: Translator, day: date) -> float:
        return self.working_hours(self.working_window(translator, day))

    def snap_start(self, hour: float) -> float:
        """Move a start that falls inside lunch to the end of lunch."""
        if self.lunch.start <= hour < self.lunch.end:
            return self.lunch.end
        return hour

    def snap_end(self, hour: float) -> float:
        """Move an end that falls inside lunch back to the start of lunch."""
        if self.lunch.start < hour <= self.lunch.end:
            return self.lunch.start
        return hour

    def advance(self, start: float, hours: float) -> float:
        """End of a block of ``hours`` starting at ``start``, skipping lunch."""
        start = self.snap_start(start)
        end = start + hours
        if start < self.lunch.start < end:
            end += self.lunch.end - self.lunch.start
        return round_hours(end)

    def rewind(self, end: float, hours: float) -> float:
        """Start of a block of ``hours`` ending at ``end``, skipping lunch."""
        end = self.snap_end(end)
        start = end - hours
        if start < self.lunch.end < end:
            start -= self.lunch.end - self.lunch.start
        return round_hours(start)

    def touches_lunch_edge(self, span: TimeRange) -> bool:
        """True if a range starts or ends inside lunch."""
        return self.snap_start(span.start) != span.start or self.snap_end(span.end) != span.end


def local_clock(timezone: str) -> Callable[[], datetime]:
    """Clock returning naive local time in ``timezone``."""
    zone = ZoneInfo(timezone)

    def now() -> datetime:
        return datetime.now(zone).replace(tzinfo=None)

    return now
