"""
Holiday calendar: fixed-date, derived moving, and manually declared holidays.

The calendar is a plain value object. One instance is built at startup from
settings and handed to the services that need it.
"""
from __future__ import annotations

import calendar as _cal
import datetime
import logging
from typing import Iterable, Optional

from dance_admin.models.holiday import HolidayKind, HolidayOut

logger = logging.getLogger(__name__)

MONDAY, THURSDAY = 0, 3

FIXED_HOLIDAYS = (
    (1, 1, "New Year's Day"),
    (7, 4, "Independence Day"),
    (11, 11, "Veterans Day"),
    (12, 25, "Christmas Day"),
)

# (month, weekday, nth); nth == -1 means the last one in the month
MOVING_HOLIDAYS = (
    (1, MONDAY, 3, "Martin Luther King Jr. Day"),
    (2, MONDAY, 3, "Presidents Day"),
    (5, MONDAY, -1, "Memorial Day"),
    (9, MONDAY, 1, "Labor Day"),
    (10, MONDAY, 2, "Columbus Day"),
    (11, THURSDAY, 4, "Thanksgiving"),
)


def nth_weekday(year: int, month: int, weekday: int, n: int) -> datetime.date:
    """The n-th ``weekday`` (Monday=0) of a month; ``n=-1`` gives the last."""
    if n == -1:
        last_day = _cal.monthrange(year, month)[1]
        last = datetime.date(year, month, last_day)
        return last - datetime.timedelta(days=(last.weekday() - weekday) % 7)
    first = datetime.date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + datetime.timedelta(days=offset + (n - 1) * 7)


class HolidayCalendar:
    def __init__(self, manual: Iterable[tuple[datetime.date, str]] = ()):
        self._manual: dict[datetime.date, str] = {}
        for day, name in manual:
            self._manual[day] = name

    @classmethod
    def from_settings(cls, settings) -> "HolidayCalendar":
        return cls((h.date, h.name) for h in settings.manual_holidays)

    def moving_holidays(self, year: int) -> dict[datetime.date, str]:
        return {nth_weekday(year, m, wd, n): name for m, wd, n, name in MOVING_HOLIDAYS}

    def _lookup(self, day: datetime.date) -> Optional[HolidayOut]:
        # Manual entries win over the federal calendar
        if day in self._manual:
            return HolidayOut(date=day, name=self._manual[day], kind=HolidayKind.MANUAL)
        for month, dom, name in FIXED_HOLIDAYS:
            if (day.month, day.day) == (month, dom):
                return HolidayOut(date=day, name=name, kind=HolidayKind.FIXED)
        name = self.moving_holidays(day.year).get(day)
        if name:
            return HolidayOut(date=day, name=name, kind=HolidayKind.MOVING)
        return None

    def is_holiday(self, day: datetime.date) -> bool:
        return self._lookup(day) is not None

    def name_of(self, day: datetime.date) -> Optional[str]:
        entry = self._lookup(day)
        return entry.name if entry else None

    def should_charge_fees(self, day: datetime.date) -> bool:
        return not self.is_holiday(day)

    def add_specific_holiday(self, day: datetime.date, name: str) -> str:
        """Register a manual holiday. Returns "added", "renamed" or "unchanged"."""
        current = self._manual.get(day)
        if current == name:
            return "unchanged"
        self._manual[day] = name
        if current is None:
            logger.info(f"Added holiday {name} on {day.isoformat()}")
            return "added"
        logger.info(f"Renamed holiday on {day.isoformat()} from {current} to {name}")
        return "renamed"

    def remove_specific_holiday(self, day: datetime.date) -> bool:
        removed = self._manual.pop(day, None) is not None
        if removed:
            logger.info(f"Removed manual holiday on {day.isoformat()}")
        return removed

    def specific_holidays(self) -> list[HolidayOut]:
        return [
            HolidayOut(date=d, name=n, kind=HolidayKind.MANUAL)
            for d, n in sorted(self._manual.items())
        ]

    def holidays_in(self, year: int) -> list[HolidayOut]:
        """Every holiday of a year, sorted by date."""
        days = {datetime.date(year, m, d) for m, d, _ in FIXED_HOLIDAYS}
        days.update(self.moving_holidays(year))
        days.update(d for d in self._manual if d.year == year)
        return [self._lookup(d) for d in sorted(days)]
