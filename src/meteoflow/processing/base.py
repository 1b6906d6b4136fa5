"""Arguments shared by all configurable processing stages (filters and generators)."""

import re
from enum import Enum
from typing import Iterable, Optional

from ..exceptions import ConfigurationError
from ..utils_time import Timestamp
from .restrictions import DateRange

TRUE_VALUES = ("1", "t", "true", "yes", "y", "on")
FALSE_VALUES = ("0", "f", "false", "no", "n", "off")

StageArgs = list[tuple[str, str]]


class ProcessingStage(Enum):
    """When a stage runs with respect to the temporal resampling."""

    FIRST = "first"
    SECOND = "second"
    BOTH = "both"


def parse_station_set(value: str) -> set[str]:
    """Station IDs separated by spaces or commas."""
    return {item for item in re.split(r'[\s,]+', value.strip()) if item}


def parse_time_restrictions(value: str, where: str, tz: float = 0.) -> list[DateRange]:
    """
    Parse periods such as ``2020-01-01T00:00 - 2020-02-01T00:00, 2020-06-01 - 2020-07-01``.

    Returns:
        list[DateRange]: Periods in ascending order

    Raises:
        ConfigurationError: If a period is malformed, reversed or overlaps another one
    """
    ranges = []
    for part in value.split(','):
        part = part.strip()
        if not part:
            continue
        start_text, sep, end_text = part.partition(' - ')
        if not sep:
            raise ConfigurationError(f"Invalid time restriction '{part}' for {where}: expected 'start - end'")
        try:
            start = Timestamp.from_iso(start_text, tz)
            end = Timestamp.from_iso(end_text, tz)
        except ValueError as e:
            raise ConfigurationError(f"Invalid time restriction '{part}' for {where}: {e}")
        if end < start:
            raise ConfigurationError(f"Time restriction '{part}' for {where} ends before it starts")
        ranges.append(DateRange(start, end))

    ranges.sort()
    for previous, current in zip(ranges, ranges[1:]):
        if current.start <= previous.end:
            raise ConfigurationError(f"Overlapping time restrictions for {where}")
    return ranges


class ConfiguredStage:
    """
    A named stage built from its (key, value) arguments.

    The generic ONLY, EXCLUDE and WHEN arguments are handled here; any other
    key must be listed in ``ARGS`` and keys in ``REQUIRED`` must be present.
    """

    ARGS: tuple[str, ...] = ()
    REQUIRED: tuple[str, ...] = ()
    section = "Filters"

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        self.name = name.strip().upper()
        self.only: set[str] = set()
        self.exclude: set[str] = set()
        self.restrictions: list[DateRange] = []
        self.args: dict[str, str] = {}

        for key, value in args:
            key = key.upper()
            if key == "ONLY":
                self.only = parse_station_set(value)
            elif key == "EXCLUDE":
                self.exclude = parse_station_set(value)
            elif key == "WHEN":
                self.restrictions = parse_time_restrictions(value, self.where, tz)
            elif key in self.ARGS:
                self.args[key] = value.strip()
            else:
                raise ConfigurationError(f"Unknown argument '{key}' for {self.where}")

        missing = [key for key in self.REQUIRED if key not in self.args]
        if missing:
            raise ConfigurationError(f"Missing argument(s) {', '.join(missing)} for {self.where}")

    @property
    def where(self) -> str:
        return f"[{self.section}] {self.name}"

    def applies_to(self, station_id: str) -> bool:
        if self.only and station_id not in self.only:
            return False
        return station_id not in self.exclude

    def active_at(self, date: Timestamp) -> bool:
        """Whether date is within the time restrictions (always true without restrictions)."""
        if not self.restrictions:
            return True
        return any(date_range.contains(date) for date_range in self.restrictions)

    def float_arg(self, key: str, default: Optional[float] = None) -> Optional[float]:
        raw = self.args.get(key)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError:
            raise ConfigurationError(f"Invalid value '{raw}' for argument {key} of {self.where}")

    def bool_arg(self, key: str, default: bool = False) -> bool:
        raw = self.args.get(key)
        if raw is None:
            return default
        if raw.lower() in TRUE_VALUES:
            return True
        if raw.lower() in FALSE_VALUES:
            return False
        raise ConfigurationError(f"Invalid value '{raw}' for argument {key} of {self.where}")

    def choice_arg(self, key: str, choices: Iterable[str], default: str) -> str:
        raw = self.args.get(key)
        if raw is None:
            return default
        value = raw.upper()
        if value not in choices:
            raise ConfigurationError(f"Unknown {key} '{raw}' for {self.where}")
        return value

    def __repr__(self) -> str:
        args = " ".join(f"{key}={value}" for key, value in self.args.items())
        return f"{type(self).__name__}({self.name}{' ' + args if args else ''})"
