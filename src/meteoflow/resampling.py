"""Temporal resampling of station series onto arbitrary instants."""

import bisect
import logging
import re
from typing import Optional, Sequence

from .config import MeteoConfig
from .exceptions import ConfigurationError
from .schema import NODATA, MeteoRecord, is_nodata
from .utils_time import SECONDS_PER_DAY, Timestamp

logger = logging.getLogger(__name__)

SECTION = "Interpolations1D"
DEFAULT_ALGORITHM = "LINEAR"
DEFAULT_WINDOW_SIZE = 86400.

RESAMPLING_ALGORITHMS: dict[str, type["ResamplingAlgorithm"]] = {}


def register_algorithm(name: str):
    def decorator(cls):
        RESAMPLING_ALGORITHMS[name] = cls
        return cls
    return decorator


class ResamplingAlgorithm:
    """
    Interpolation of one parameter at an instant from the surrounding samples.

    Only samples within the window (in days) of the requested instant are
    used. ``interpolate`` receives the position where the instant would be
    inserted in the series.
    """

    ARGS: tuple[str, ...] = ("WINDOW_SIZE",)

    def __init__(self, name: str, args: dict[str, str], window_size: float):
        self.name = name
        for key in args:
            if key not in self.ARGS:
                raise ConfigurationError(f"Unknown argument '{key}' for resampling algorithm {name}")
        if "WINDOW_SIZE" in args:
            window_size = _positive_float(args["WINDOW_SIZE"], f"{name}::WINDOW_SIZE")
        self.window = window_size / SECONDS_PER_DAY

    def interpolate(self, param: str, date: Timestamp, records: Sequence[MeteoRecord], pos: int) -> float:
        raise NotImplementedError

    def _previous(self, param: str, date: Timestamp, records: Sequence[MeteoRecord], pos: int,
                  skip: int = 0) -> Optional[MeteoRecord]:
        """Closest valid sample before date within the window, skipping the first ``skip`` ones."""
        for ii in range(pos - 1, -1, -1):
            if date - records[ii].date > self.window:
                break
            if records[ii].has(param):
                if skip == 0:
                    return records[ii]
                skip -= 1
        return None

    def _next(self, param: str, date: Timestamp, records: Sequence[MeteoRecord], pos: int,
              skip: int = 0) -> Optional[MeteoRecord]:
        """Closest valid sample after date within the window, skipping the first ``skip`` ones."""
        for ii in range(pos, len(records)):
            if records[ii].date - date > self.window:
                break
            if records[ii].has(param):
                if skip == 0:
                    return records[ii]
                skip -= 1
        return None

    def __repr__(self) -> str:
        return f"{self.name}(window={self.window * SECONDS_PER_DAY:g}s)"


@register_algorithm("NONE")
class NoResampling(ResamplingAlgorithm):
    """Values are only available at the exact timestamps of the samples."""

    def interpolate(self, param, date, records, pos):
        return NODATA


@register_algorithm("NEAREST")
class NearestNeighbour(ResamplingAlgorithm):
    """Closest valid sample; the average of both neighbours when they are equidistant."""

    def interpolate(self, param, date, records, pos):
        before = self._previous(param, date, records, pos)
        after = self._next(param, date, records, pos)
        if before is None and after is None:
            return NODATA
        if before is None:
            return after.get(param)
        if after is None:
            return before.get(param)
        delta_before = date - before.date
        delta_after = after.date - date
        if abs(delta_before - delta_after) < 1e-9:
            return (before.get(param) + after.get(param)) / 2.
        return before.get(param) if delta_before < delta_after else after.get(param)


@register_algorithm("LINEAR")
class LinearResampling(ResamplingAlgorithm):
    """Linear interpolation between the two neighbours; with EXTRAPOLATE, from the two closest ones on one side."""

    ARGS = ("WINDOW_SIZE", "EXTRAPOLATE")

    def __init__(self, name: str, args: dict[str, str], window_size: float):
        super().__init__(name, args, window_size)
        extrapolate = args.get("EXTRAPOLATE", "false").lower()
        if extrapolate not in ("true", "false", "1", "0", "yes", "no"):
            raise ConfigurationError(f"Invalid value '{extrapolate}' for {name}::EXTRAPOLATE")
        self.extrapolate = extrapolate in ("true", "1", "yes")

    def interpolate(self, param, date, records, pos):
        before = self._previous(param, date, records, pos)
        after = self._next(param, date, records, pos)
        if before is not None and after is not None:
            return _linear(before, after, param, date)
        if not self.extrapolate:
            return NODATA
        if before is not None:
            further = self._previous(param, date, records, pos, skip=1)
            return NODATA if further is None else _linear(further, before, param, date)
        if after is not None:
            further = self._next(param, date, records, pos, skip=1)
            return NODATA if further is None else _linear(after, further, param, date)
        return NODATA


@register_algorithm("HOLD")
class HoldLast(ResamplingAlgorithm):
    """Last valid sample before the requested instant."""

    def interpolate(self, param, date, records, pos):
        before = self._previous(param, date, records, pos)
        return NODATA if before is None else before.get(param)


def _linear(first: MeteoRecord, second: MeteoRecord, param: str, date: Timestamp) -> float:
    span = second.date - first.date
    if span == 0.:
        return first.get(param)
    weight = (date - first.date) / span
    return first.get(param) + weight * (second.get(param) - first.get(param))


def _positive_float(raw: str, key: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value '{raw}' for [{SECTION}] {key}")
    if value <= 0.:
        raise ConfigurationError(f"[{SECTION}] {key} must be strictly positive")
    return value


class Resampler:
    """
    Per-parameter resampling, configured in the [Interpolations1D] section::

        WINDOW_SIZE = 86400
        TA::RESAMPLE = LINEAR
        TA::LINEAR::EXTRAPOLATE = true
        PSUM::RESAMPLE = NEAREST
        PSUM::NEAREST::WINDOW_SIZE = 3600

    Parameters without a configured algorithm use linear interpolation.
    """

    def __init__(self, cfg: MeteoConfig):
        window = cfg.get("Interpolations1D", "WINDOW_SIZE")
        self.window_size = DEFAULT_WINDOW_SIZE if window is None else _positive_float(window, "WINDOW_SIZE")
        self.algorithms: dict[str, ResamplingAlgorithm] = {}
        for key, match in cfg.find_keys(SECTION, r"(\w+)::RESAMPLE"):
            param = match.group(1)
            self.algorithms[param] = self._build(cfg, param, cfg.get(SECTION, key).upper())
        self.default = RESAMPLING_ALGORITHMS[DEFAULT_ALGORITHM](DEFAULT_ALGORITHM, {}, self.window_size)

    def _build(self, cfg: MeteoConfig, param: str, name: str) -> ResamplingAlgorithm:
        cls = RESAMPLING_ALGORITHMS.get(name)
        if cls is None:
            raise ConfigurationError(f"Unknown resampling algorithm '{name}' for {param}")
        pattern = rf"{re.escape(param)}::{re.escape(name)}::(\w+)"
        args = {match.group(1): cfg.get(SECTION, key) for key, match in cfg.find_keys(SECTION, pattern)}
        return cls(name, args, self.window_size)

    @property
    def max_window(self) -> float:
        """Largest window of all algorithms, in days."""
        return max([self.default.window] + [algo.window for algo in self.algorithms.values()])

    def algorithm(self, param: str) -> ResamplingAlgorithm:
        return self.algorithms.get(param, self.default)

    def resample(self, date: Timestamp, records: Sequence[MeteoRecord]) -> Optional[MeteoRecord]:
        """
        Record of a station at date.

        Args:
            date: Requested instant
            records: Time-ordered station series

        Returns:
            MeteoRecord or None: The sample at date if there is one, with its
            missing values interpolated from the other samples; an
            interpolated record otherwise; None when no sample lies within the
            window of date
        """
        if not records:
            return None
        dates = [record.date for record in records]
        pos = bisect.bisect_left(dates, date)
        if pos < len(records) and records[pos].date == date:
            return self._complete(records[pos].clone(), records, pos)

        gaps = []
        if pos > 0:
            gaps.append(date - records[pos - 1].date)
        if pos < len(records):
            gaps.append(records[pos].date - date)
        if min(gaps) > self.max_window:
            return None

        neighbours = records[max(pos - 1, 0):pos + 1]
        params = sorted({param for record in neighbours for param in record.values})
        resampled = MeteoRecord(date=date, station=neighbours[0].station, resampled=True)
        for param in params:
            value = self.algorithm(param).interpolate(param, date, records, pos)
            resampled.set(param, NODATA if is_nodata(value) else value)
        return resampled

    def _complete(self, record: MeteoRecord, records: Sequence[MeteoRecord], pos: int) -> MeteoRecord:
        # the sample at pos has no value for these, so the neighbour search skips it
        for param in [param for param in record.values if not record.has(param)]:
            value = self.algorithm(param).interpolate(param, record.date, records, pos)
            if not is_nodata(value):
                record.set(param, value)
                record.resampled = True
        return record

    def __repr__(self) -> str:
        return f"Resampler(window={self.window_size:g}s, algorithms={self.algorithms})"
