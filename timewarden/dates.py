"""Date normalization for the timew command line and JSON export.

Internally every timestamp is an integer number of seconds since the epoch.
Timewarrior stores whole seconds only, so sub-second precision is dropped
on the way in as well as on the way out.

Accepted string format::

    YYYY[-]MM[-]DDTHH[:]MM[:]SS[.fff](Z|+HH[:]MM|-HH[:]MM)

which covers both the ISO form used on the command line
(``2000-01-01T00:00:00Z``) and the compact form used by ``timew export``
(``20000101T000000Z``).
"""

import math
import re
from datetime import date, datetime, time, timedelta, timezone

from dateutil.tz import tzlocal

from timewarden.errors import FormatError, ValidationError

DateInput = str | datetime | date | int | float
DurationInput = timedelta | int | float
DateRange = tuple[DateInput] | tuple[DateInput, DateInput]
Bounds = tuple[int] | tuple[int, int]

DATE_PATTERN = re.compile(
    r"^(\d{4})-?(\d{2})-?(\d{2})T(\d{2}):?(\d{2}):?(\d{2})(\.\d{3})?"
    r"(Z|([+-])(\d{2}):?(\d{2}))\Z"
)

_COMMAND_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
_EXPORT_FORMAT = "%Y%m%dT%H%M%SZ"


def normalize_datestring(value: str | datetime) -> str:
    """Return a date string both ``timew`` and :func:`parse_date` understand.

    Milliseconds are stripped and the UTC offset designator is kept as given.

    Raises:
        FormatError: If a string does not match the accepted format
    """
    if isinstance(value, datetime):
        return _format_datetime(value)

    match = DATE_PATTERN.match(value)
    if match is None:
        raise FormatError(f"Could not parse date string {value!r}")

    year, month, day, hour, minute, second, _, zone, sign, utc_h, utc_m = (
        match.groups()
    )
    designator = "Z" if zone == "Z" else f"{sign}{utc_h}:{utc_m}"
    return f"{year}-{month}-{day}T{hour}:{minute}:{second}{designator}"


def parse_date(value: str) -> datetime:
    """Parse a date string into a timezone-aware datetime (whole seconds).

    Raises:
        FormatError: If the string does not match or names an impossible date
    """
    normalized = normalize_datestring(value)
    try:
        return datetime.fromisoformat(normalized.replace("Z", "+00:00"))
    except ValueError as e:
        raise FormatError(
            f"Date string normalization failed. Input: {value!r} "
            f"Output: {normalized!r}"
        ) from e


def to_timestamp(value: DateInput) -> int:
    """Convert any accepted date input to whole epoch seconds.

    Accepts:
    - str: Parsed with :func:`parse_date`
    - datetime: Aware datetimes as-is, naive ones in the local timezone
    - date: Midnight UTC of that day
    - int/float: Epoch seconds (fractions are floored)

    Raises:
        FormatError: If a string cannot be parsed
        TypeError: If the value is of any other type
    """
    if isinstance(value, bool):
        raise TypeError(f"Expected a date, got bool: {value!r}")
    if isinstance(value, str):
        return int(parse_date(value).timestamp())
    if isinstance(value, datetime):
        return math.floor(_aware(value).timestamp())
    if isinstance(value, date):
        return int(datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp())
    if isinstance(value, (int, float)):
        return math.floor(value)
    raise TypeError(
        f"Expected str, datetime, date, int or float, "
        f"got {type(value).__name__!r}: {value!r}"
    )


def to_duration(value: DurationInput) -> int:
    """Convert a timedelta or a number of seconds to whole seconds."""
    if isinstance(value, bool):
        raise TypeError(f"Expected a duration, got bool: {value!r}")
    if isinstance(value, timedelta):
        return math.floor(value.total_seconds())
    if isinstance(value, (int, float)):
        return math.floor(value)
    raise TypeError(
        f"Expected timedelta, int or float, got {type(value).__name__!r}: {value!r}"
    )


def timestamp_to_datetime(ts: int) -> datetime:
    """Convert epoch seconds to a UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def format_timestamp(ts: int) -> str:
    """Format epoch seconds for the command line (``2000-01-01T00:00:00Z``)."""
    return timestamp_to_datetime(ts).strftime(_COMMAND_FORMAT)


def serialize_timestamp(ts: int) -> str:
    """Format epoch seconds the way ``timew export`` does (``20000101T000000Z``)."""
    return timestamp_to_datetime(ts).strftime(_EXPORT_FORMAT)


def dates_are_equal(a: DateInput | None, b: DateInput | None) -> bool:
    """Compare two dates by epoch seconds; None only equals None."""
    if a is None or b is None:
        return a is None and b is None
    return to_timestamp(a) == to_timestamp(b)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=tzlocal())
    return value


def _format_datetime(value: datetime) -> str:
    value = _aware(value).replace(microsecond=0)
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        designator = "Z"
    else:
        sign = "-" if offset < timedelta(0) else "+"
        minutes = abs(offset) // timedelta(minutes=1)
        designator = f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"
    return value.strftime("%Y-%m-%dT%H:%M:%S") + designator


def coerce_range(time_range: DateRange) -> Bounds:
    """Normalize a ``(start,)`` or ``(start, end)`` range to epoch seconds.

    Raises:
        ValidationError: If the range has the wrong length or ends before it starts
    """
    if isinstance(time_range, (str, bytes)) or len(time_range) not in (1, 2):
        raise ValidationError(
            f"A range is (start,) or (start, end), got {time_range!r}"
        )
    if len(time_range) == 1:
        return (to_timestamp(time_range[0]),)

    start, end = to_timestamp(time_range[0]), to_timestamp(time_range[1])
    if end < start:
        raise ValidationError(
            f"Range end ({format_timestamp(end)}) is before its start "
            f"({format_timestamp(start)})"
        )
    return (start, end)


def format_range(bounds: Bounds) -> list[str]:
    """Command-line arguments for a range: ``<start>`` or ``<start> - <end>``."""
    if len(bounds) == 1:
        return [format_timestamp(bounds[0])]
    return [format_timestamp(bounds[0]), "-", format_timestamp(bounds[1])]
