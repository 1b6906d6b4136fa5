"""Time utility functions and the Timestamp value object."""

import functools
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

SECONDS_PER_DAY = 86400.0
MS_PER_DAY = 86400000

# Offsets between the Julian day count and the other decimal day counts
JULIAN_UNIX_EPOCH = 2440587.5
MJULIAN_OFFSET = 2400000.5
EXCEL_OFFSET = 2415018.5
MATLAB_OFFSET = 1721058.5
RFC868_OFFSET = 2208988800  # seconds between 1900-01-01 and 1970-01-01

_EPOCH = datetime(1970, 1, 1)

TIMEZONE_ABBREVIATIONS = {
    "Z": 0.0, "UT": 0.0, "UTC": 0.0, "GMT": 0.0, "WET": 0.0,
    "WEST": 1.0, "BST": 1.0, "CET": 1.0, "MEZ": 1.0,
    "CEST": 2.0, "MESZ": 2.0, "EET": 2.0, "EEST": 3.0, "MSK": 3.0,
    "IST": 5.5, "JST": 9.0, "AEST": 10.0, "AEDT": 11.0, "NZST": 12.0, "NZDT": 13.0,
    "NST": -3.5, "AST": -4.0, "ADT": -3.0,
    "EST": -5.0, "EDT": -4.0, "CST": -6.0, "CDT": -5.0,
    "MST": -7.0, "MDT": -6.0, "PST": -8.0, "PDT": -7.0,
    "AKST": -9.0, "AKDT": -8.0, "HST": -10.0,
}

_NUMERIC_TZ = re.compile(r'^([+-])(\d{1,2})(?::?(\d{2}))?$')


@functools.total_ordering
class Timestamp:
    """
    Absolute instant with a display timezone (hours east of GMT).

    Timestamps are immutable. Equality, ordering and hashing only consider the
    absolute instant, never the timezone, and the resolution is one millisecond.
    Adding or subtracting a number works in days.
    """

    __slots__ = ("_ms", "_tz")

    def __init__(self, unix_seconds: float, tz: float = 0.0):
        object.__setattr__(self, "_ms", int(round(unix_seconds * 1000.0)))
        object.__setattr__(self, "_tz", float(tz))

    def __setattr__(self, name, value):
        raise AttributeError("Timestamp is immutable")

    # --- constructors -------------------------------------------------

    @classmethod
    def from_components(cls, year: int, month: int, day: int, hour: int = 0, minute: int = 0,
                        second: float = 0.0, tz: float = 0.0) -> "Timestamp":
        """
        Build a timestamp from local calendar components.

        Args:
            year, month, day: Calendar date in the local timezone
            hour: 0-24, where 24 is only accepted as 24:00:00
            minute: 0-59
            second: 0 <= second < 60, may be decimal
            tz: Timezone of the components, in hours

        Returns:
            Timestamp: The matching instant

        Raises:
            ValueError: If any component is out of range
        """
        if not 0 <= hour <= 24 or not 0 <= minute <= 59 or not 0. <= second < 60.:
            raise ValueError(f"Invalid time {hour}:{minute}:{second}")
        if hour == 24 and (minute != 0 or second != 0.):
            raise ValueError(f"Invalid time {hour}:{minute}:{second}")
        days = (datetime(year, month, day) - _EPOCH).days
        local = days * SECONDS_PER_DAY + hour * 3600. + minute * 60. + second
        return cls(local - tz * 3600., tz)

    @classmethod
    def from_year_and_doy(cls, year: int, doy: float, tz: float = 0.0) -> "Timestamp":
        """Build a timestamp from a year and a decimal day of year (1.0 is January 1st, 00:00)."""
        days_in_year = (datetime(year + 1, 1, 1) - datetime(year, 1, 1)).days
        if not 1. <= doy < days_in_year + 1:
            raise ValueError(f"Invalid day of year {doy} for year {year}")
        days = (datetime(year, 1, 1) - _EPOCH).days
        local = (days + doy - 1.) * SECONDS_PER_DAY
        return cls(local - tz * 3600., tz)

    @classmethod
    def from_julian(cls, value: float, tz: float = 0.0) -> "Timestamp":
        """Julian day expressed in the given timezone."""
        return cls((value - JULIAN_UNIX_EPOCH) * SECONDS_PER_DAY - tz * 3600., tz)

    @classmethod
    def from_modified_julian(cls, value: float, tz: float = 0.0) -> "Timestamp":
        return cls.from_julian(value + MJULIAN_OFFSET, tz)

    @classmethod
    def from_excel(cls, value: float, tz: float = 0.0) -> "Timestamp":
        """Spreadsheet serial day (days since 1899-12-30)."""
        return cls.from_julian(value + EXCEL_OFFSET, tz)

    @classmethod
    def from_matlab(cls, value: float, tz: float = 0.0) -> "Timestamp":
        """Matlab datenum (days since year 0)."""
        return cls.from_julian(value + MATLAB_OFFSET, tz)

    @classmethod
    def from_rfc868(cls, value: float, tz: float = 0.0) -> "Timestamp":
        """Seconds since 1900-01-01T00:00 GMT; tz only sets the display timezone."""
        return cls(value - RFC868_OFFSET, tz)

    @classmethod
    def from_unix(cls, value: int, tz: float = 0.0) -> "Timestamp":
        """Integer seconds since 1970-01-01T00:00 GMT; tz only sets the display timezone."""
        return cls(float(value), tz)

    @classmethod
    def from_datetime(cls, dt: datetime, tz: Optional[float] = None) -> "Timestamp":
        """Convert a datetime; naive datetimes are interpreted in tz (default GMT)."""
        if dt.tzinfo is None:
            tz = 0.0 if tz is None else tz
            dt = dt.replace(tzinfo=timezone(timedelta(hours=tz)))
        elif tz is None:
            tz = dt.utcoffset().total_seconds() / 3600.
        return cls(dt.timestamp(), tz)

    @classmethod
    def from_iso(cls, iso_str: str, tz: float = 0.0) -> "Timestamp":
        """
        Parse an ISO 8601 string.

        Args:
            iso_str: ISO timestamp, such as "2020-03-01T10:30" or "2020-03-01T10:30:00Z"
            tz: Timezone to use when the string does not carry its own offset

        Returns:
            Timestamp: Parsed timestamp

        Raises:
            ValueError: If the format is invalid
        """
        if not iso_str or not isinstance(iso_str, str):
            raise ValueError("ISO string must be a non-empty string")
        iso_str = iso_str.strip()
        if iso_str.endswith('Z'):
            iso_str = iso_str[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(iso_str)
        except ValueError as e:
            raise ValueError(f"Invalid ISO 8601 format: {iso_str}. Error: {e}")
        return cls.from_datetime(dt, None if dt.tzinfo is not None else tz)

    # --- accessors ----------------------------------------------------

    @property
    def timezone(self) -> float:
        return self._tz

    @property
    def unix_seconds(self) -> float:
        return self._ms / 1000.

    def with_timezone(self, tz: float) -> "Timestamp":
        """Same instant, displayed in another timezone."""
        return Timestamp(self.unix_seconds, tz)

    def to_julian(self, gmt: bool = False) -> float:
        offset = 0. if gmt else self._tz / 24.
        return self._ms / MS_PER_DAY + JULIAN_UNIX_EPOCH + offset

    def to_modified_julian(self, gmt: bool = False) -> float:
        return self.to_julian(gmt) - MJULIAN_OFFSET

    def to_excel(self, gmt: bool = False) -> float:
        return self.to_julian(gmt) - EXCEL_OFFSET

    def to_matlab(self, gmt: bool = False) -> float:
        return self.to_julian(gmt) - MATLAB_OFFSET

    def to_rfc868(self) -> float:
        return self.unix_seconds + RFC868_OFFSET

    def to_unix(self) -> int:
        return self._ms // 1000

    def to_datetime(self) -> datetime:
        """Timezone-aware datetime in the display timezone."""
        tzinfo = timezone(timedelta(hours=self._tz))
        return datetime(1970, 1, 1, tzinfo=timezone.utc).astimezone(tzinfo) + timedelta(milliseconds=self._ms)

    def to_components(self) -> tuple[int, int, int, int, int, float]:
        """(year, month, day, hour, minute, second) in the display timezone."""
        local = _EPOCH + timedelta(milliseconds=self._ms + int(round(self._tz * 3600000)))
        second = local.second + local.microsecond / 1e6
        return local.year, local.month, local.day, local.hour, local.minute, second

    def to_iso(self, with_tz: bool = False) -> str:
        year, month, day, hour, minute, second = self.to_components()
        sec_str = f"{int(second):02d}" if second == int(second) else f"{second:06.3f}"
        iso = f"{year:04d}-{month:02d}-{day:02d}T{hour:02d}:{minute:02d}:{sec_str}"
        if with_tz:
            sign = '+' if self._tz >= 0 else '-'
            tz_minutes = int(round(abs(self._tz) * 60))
            iso += f"{sign}{tz_minutes // 60:02d}:{tz_minutes % 60:02d}"
        return iso

    # --- arithmetic and comparisons -----------------------------------

    def __add__(self, days: float) -> "Timestamp":
        if isinstance(days, Timestamp):
            return NotImplemented
        return Timestamp(self.unix_seconds + days * SECONDS_PER_DAY, self._tz)

    def __sub__(self, other):
        if isinstance(other, Timestamp):
            return (self._ms - other._ms) / MS_PER_DAY
        return Timestamp(self.unix_seconds - other * SECONDS_PER_DAY, self._tz)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        return self._ms == other._ms

    def __lt__(self, other: "Timestamp") -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        return self._ms < other._ms

    def __hash__(self) -> int:
        return hash(self._ms)

    def __repr__(self) -> str:
        return f"Timestamp('{self.to_iso(with_tz=True)}')"

    def __str__(self) -> str:
        return self.to_iso()


def parse_timezone(value: Optional[str]) -> Optional[float]:
    """
    Parse a timezone as found at the end of a timestamp.

    Accepts numeric offsets ("+1", "+1.", "+01:00", "-0530") and common
    abbreviations ("Z", "UTC", "CET", ...).

    Returns:
        float or None: Offset in hours, None if the timezone is not recognized
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    upper = value.upper()
    if upper in TIMEZONE_ABBREVIATIONS:
        return TIMEZONE_ABBREVIATIONS[upper]
    if match := _NUMERIC_TZ.match(value):
        hours = int(match.group(2)) + (int(match.group(3)) / 60. if match.group(3) else 0.)
        return -hours if match.group(1) == '-' else hours
    return safe_float(value)


def safe_int(value: Optional[str], default: Optional[int] = None) -> Optional[int]:
    """
    Safely convert a string to int, returning default on failure.

    Integral decimal notations ("12.0") are accepted, fractional ones are not.

    Args:
        value: String value to convert
        default: Default value if conversion fails

    Returns:
        int or None: Converted value or default
    """
    number = safe_float(value)
    if number is None or not number.is_integer():
        return default
    return int(number)


def safe_float(value: Optional[str], default: Optional[float] = None) -> Optional[float]:
    """
    Safely convert a string to float, returning default on failure.

    Args:
        value: String value to convert
        default: Default value if conversion fails

    Returns:
        float or None: Converted value or default
    """
    if value is None:
        return default
    value = value.strip()
    if value == "" or "_" in value or value.lower() in ("nan", "inf", "-inf", "+inf", "infinity"):
        return default

    try:
        return float(value)
    except (ValueError, TypeError):
        return default
