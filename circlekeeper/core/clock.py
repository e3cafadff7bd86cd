"""Injectable clock.

Every component takes a ``clock`` callable so tests can pin "now".
Timestamps are naive UTC throughout the engine and the database.
"""

from datetime import date, datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso_week(moment: datetime | date) -> tuple[int, int]:
    """Return (ISO year, ISO week number) for a moment.

    The ISO year can differ from the calendar year around New Year:
    2024-12-30 belongs to week 1 of 2025.
    """
    iso = moment.isocalendar()
    return iso[0], iso[1]
