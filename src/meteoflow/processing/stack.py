"""Ordered stack of filters for one parameter."""

import logging
import re
from typing import NamedTuple, Sequence

from ..config import MeteoConfig, iter_numbered_keys
from ..schema import MeteoRecord
from ..utils_time import Timestamp
from .filters import ProcessingBlock, create_filter
from .restrictions import RestrictionsIdx

logger = logging.getLogger(__name__)

# Parameter name of the stack applied to every parameter
ALL_PARAMETERS = "ALL"


class FlaggedValue(NamedTuple):
    """A value a filter would change."""

    station_id: str
    date: Timestamp
    param: str
    old: float
    new: float


def read_stage_args(cfg: MeteoConfig, section: str, param: str, number: int) -> list[tuple[str, str]]:
    """Arguments ``<PARAM>::ARG<n>::<KEY>`` of the n-th stage of a parameter."""
    pattern = rf"{re.escape(param.upper())}::ARG{number}::(\w+)"
    return [(match.group(1), cfg.get(section, key)) for key, match in cfg.find_keys(section, pattern)]


class ProcessingStack:
    """
    Filters of one parameter (or of all parameters), in configuration order.

    The filters are declared as ``TA::FILTER1 = MIN`` with their arguments as
    ``TA::ARG1::MIN = 230`` in the [Filters] section. They are built, and
    their arguments validated, when the stack is created.
    """

    def __init__(self, param: str, cfg: MeteoConfig, tz: float = 0.):
        self.param = param.upper()
        self.blocks: list[ProcessingBlock] = []
        for number, name in iter_numbered_keys(cfg, "Filters", self.param, "FILTER"):
            args = read_stage_args(cfg, "Filters", self.param, number)
            self.blocks.append(create_filter(name, args, tz))
        logger.debug("Built processing stack for %s: %s", self.param, self.blocks)

    def __len__(self) -> int:
        return len(self.blocks)

    def _parameters(self, records: Sequence[MeteoRecord]) -> list[str]:
        if self.param != ALL_PARAMETERS:
            return [self.param]
        params = set()
        for record in records:
            params.update(record.values)
        return sorted(params)

    def process(self, ivec: list[list[MeteoRecord]], second_pass: bool = False,
                check_only: bool = False) -> list[FlaggedValue]:
        """
        Apply the filters to every station series.

        Args:
            ivec: One time-ordered series per station, modified in place
            second_pass: Whether the series have already been resampled
            check_only: Run on copies and only report what would change

        Returns:
            list[FlaggedValue]: Values the filters would change (empty unless check_only)
        """
        work = [[record.clone() for record in records] for records in ivec] if check_only else ivec

        for block in self.blocks:
            if not block.runs_in(second_pass):
                continue
            for records in work:
                if not records or not block.applies_to(records[0].station.id):
                    continue
                if block.restrictions:
                    idx = RestrictionsIdx(records, block.restrictions)
                    ranges = list(idx)
                else:
                    ranges = [(0, len(records))]
                for param in self._parameters(records):
                    for start, end in ranges:
                        block.process(param, records[start:end])

        if not check_only:
            return []
        return self._diff(ivec, work)

    @staticmethod
    def _diff(original: list[list[MeteoRecord]], processed: list[list[MeteoRecord]]) -> list[FlaggedValue]:
        flagged = []
        for before_series, after_series in zip(original, processed):
            for before, after in zip(before_series, after_series):
                for param, new in after.values.items():
                    old = before.get(param)
                    if new != old:
                        flagged.append(FlaggedValue(before.station.id, before.date, param, old, new))
        return flagged
