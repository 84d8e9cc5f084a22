"""ISO-8601 week bucketing for weekly rollups.

Week ids have the form ``YYYY_Www`` where ``YYYY`` is the ISO year, which
differs from the calendar year for a few days around January 1st.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple

from learning_progress.errors import DataValidationError

_WEEK_ID_RE = re.compile(r"^(\d{4})_W(\d{2})$")


class WeekKey(NamedTuple):
    year: int
    week: int

    @property
    def week_id(self) -> str:
        return f"{self.year:04d}_W{self.week:02d}"


def week_key(moment: datetime | date) -> WeekKey:
    """ISO year and week number containing ``moment``."""
    iso = moment.isocalendar()
    return WeekKey(iso.year, iso.week)


def week_id(moment: datetime | date) -> str:
    return week_key(moment).week_id


def current_week_id(now: datetime | None = None) -> str:
    return week_id(now or datetime.now(timezone.utc))


def parse_week_id(value: str) -> WeekKey:
    """Parse a ``YYYY_Www`` id, rejecting weeks that do not exist."""
    match = _WEEK_ID_RE.match(value)
    if not match:
        raise DataValidationError(f"Invalid week id: {value!r}")
    year, week = int(match.group(1)), int(match.group(2))
    try:
        date.fromisocalendar(year, week, 1)
    except ValueError:
        raise DataValidationError(f"Week {week} does not exist in ISO year {year}")
    return WeekKey(year, week)


def week_bounds(value: str) -> tuple[date, date]:
    """Monday and Sunday of the given week id."""
    key = parse_week_id(value)
    monday = date.fromisocalendar(key.year, key.week, 1)
    return monday, monday + timedelta(days=6)
