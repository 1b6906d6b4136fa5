"""Facade over the filter stacks of all parameters and the resampling."""

import logging
from typing import Optional, Sequence

from ..config import MeteoConfig
from ..resampling import Resampler
from ..schema import MeteoRecord
from ..utils_time import Timestamp
from .stack import ALL_PARAMETERS, FlaggedValue, ProcessingStack

logger = logging.getLogger(__name__)


class MeteoProcessor:
    """
    Filter stacks of every parameter declared in [Filters], plus the resampler.

    The stack of ALL runs first, then the per-parameter stacks in name order.
    Filtering can be turned off with ``ENABLE_METEO_FILTERS = false``.
    """

    def __init__(self, cfg: MeteoConfig, resampler: Optional[Resampler] = None):
        tz = cfg.get_float("Input", "TIME_ZONE", 0.)
        self.enabled = cfg.get_bool("Filters", "ENABLE_METEO_FILTERS", True)
        params = {match.group(1) for _, match in cfg.find_keys("Filters", r"(\w+)::FILTER\d+")}
        order = ([ALL_PARAMETERS] if ALL_PARAMETERS in params else []) + sorted(params - {ALL_PARAMETERS})
        self.stacks: dict[str, ProcessingStack] = {param: ProcessingStack(param, cfg, tz) for param in order}
        self.resampler = resampler or Resampler(cfg)
        if not self.enabled and self.stacks:
            logger.info("Meteo filters are disabled, %d filter stack(s) will be ignored", len(self.stacks))

    def process(self, ivec: Sequence[Sequence[MeteoRecord]], second_pass: bool = False) -> list[list[MeteoRecord]]:
        """
        Filter all station series.

        Args:
            ivec: One time-ordered series per station, left untouched
            second_pass: Whether the series have already been resampled

        Returns:
            Filtered copies of the series
        """
        ovec = [[record.clone() for record in records] for records in ivec]
        if not self.enabled:
            return ovec
        for stack in self.stacks.values():
            stack.process(ovec, second_pass=second_pass)
        return ovec

    def check(self, ivec: Sequence[Sequence[MeteoRecord]], second_pass: bool = True) -> list[FlaggedValue]:
        """Values the filters would change, without modifying anything."""
        if not self.enabled:
            return []
        series = [list(records) for records in ivec]
        flagged = []
        for stack in self.stacks.values():
            flagged.extend(stack.process(series, second_pass=second_pass, check_only=True))
        return flagged

    def resample(self, date: Timestamp, records: Sequence[MeteoRecord]) -> Optional[MeteoRecord]:
        return self.resampler.resample(date, records)

    def __repr__(self) -> str:
        return f"MeteoProcessor(enabled={self.enabled}, stacks={list(self.stacks)}, {self.resampler!r})"
