"""
Occurrence calculator for recurring transaction templates.

Maps (timestamp, frequency) to the next occurrence timestamp using
calendar-aware arithmetic. Timestamps are integer milliseconds since the
Unix epoch; the calendar fields (day, month, year) are taken in the
configured calendar timezone (settings.CALENDAR_TIMEZONE).

Clamping rule:
    A monthly or yearly step that lands on a day-of-month that does not
    exist in the target month is clamped to that month's last day:

        Jan 31 + 1 month -> Feb 28 (Feb 29 in leap years)
        Mar 31 + 1 month -> Apr 30
        Feb 29 + 1 year  -> Feb 28 (non-leap target year)

    The time of day is preserved. The clamp is applied from the source date
    on every step, so a monthly chain started on Jan 31 continues from the
    clamped value (Jan 31 -> Feb 28 -> Mar 28).
"""

from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from pennybook.config import settings


class RecurringFrequency(str, Enum):
    """Closed set of cadences a template can repeat with."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


_STEPS = {
    RecurringFrequency.DAILY: relativedelta(days=1),
    RecurringFrequency.WEEKLY: relativedelta(days=7),
    RecurringFrequency.MONTHLY: relativedelta(months=1),
    RecurringFrequency.YEARLY: relativedelta(years=1),
}


def parse_frequency(value: Union[str, RecurringFrequency, None]) -> RecurringFrequency:
    """
    Coerce a stored frequency value into RecurringFrequency.

    Raises:
        ValueError: If value is missing or not one of daily/weekly/monthly/yearly
    """
    if isinstance(value, RecurringFrequency):
        return value
    if value is None:
        raise ValueError("Recurring frequency is missing")
    try:
        return RecurringFrequency(value)
    except ValueError:
        raise ValueError(
            f"Invalid recurring frequency: {value!r}. "
            "Must be one of daily, weekly, monthly, yearly"
        )


def calendar_timezone() -> tzinfo:
    """Timezone whose wall clock defines day/month/year boundaries."""
    return ZoneInfo(settings.CALENDAR_TIMEZONE)


def advance(
    timestamp_ms: int,
    frequency: Union[str, RecurringFrequency],
    tz: Optional[tzinfo] = None,
) -> int:
    """
    Return the occurrence that follows timestamp_ms for the given frequency.

    Args:
        timestamp_ms: Current occurrence, milliseconds since epoch
        frequency: daily, weekly, monthly or yearly
        tz: Calendar timezone (defaults to calendar_timezone())

    Returns:
        Next occurrence in milliseconds since epoch (always > timestamp_ms)

    Raises:
        ValueError: If frequency is not one of the four supported values
    """
    step = _STEPS[parse_frequency(frequency)]
    zone = tz or calendar_timezone()

    # Keep sub-second precision out of the float conversion
    seconds, millis = divmod(int(timestamp_ms), 1000)
    local = datetime.fromtimestamp(seconds, tz=zone)
    shifted = local + step

    return int(shifted.timestamp()) * 1000 + millis


def first_after(
    timestamp_ms: int,
    frequency: Union[str, RecurringFrequency],
    after_ms: int,
    tz: Optional[tzinfo] = None,
) -> int:
    """
    Walk the occurrence chain starting at timestamp_ms and return the first
    element strictly greater than after_ms.

    Returns timestamp_ms itself when it is already in the future.
    """
    freq = parse_frequency(frequency)
    zone = tz or calendar_timezone()

    cursor = int(timestamp_ms)
    while cursor <= after_ms:
        cursor = advance(cursor, freq, zone)
    return cursor


def now_ms() -> int:
    """Current wall-clock time in milliseconds since epoch."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)
