"""Conversion of declared units to SI through per-column affine transforms."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ..meteolaws import T_WATER_FREEZING_PT
from ..schema import NODATA
from .base import remove_quotes, split_line

logger = logging.getLogger(__name__)

# unit -> (offset, multiplier), so that SI = raw * multiplier + offset
UNIT_TRANSFORMS = {
    '%': (0., 0.01),
    'PC': (0., 0.01),
    'CM': (0., 0.01),
    'C': (T_WATER_FREEZING_PT, 1.),
    'DEGC': (T_WATER_FREEZING_PT, 1.),
    'GRAD C': (T_WATER_FREEZING_PT, 1.),
    '°C': (T_WATER_FREEZING_PT, 1.),
    'HPA': (0., 100.),
    'MM': (0., 1e-3),
    'MV': (0., 1e-3),
    'MA': (0., 1e-3),
    'MIN': (0., 60.),
    'IN': (0., 0.0254),
    'FT': (0., 0.3048),
    'F': (T_WATER_FREEZING_PT - 160. / 9., 5. / 9.),
    'KM/H': (0., 1. / 3.6),
    'MPH': (0., 1.60934 / 3.6),
    'KT': (0., 1.852 / 3.6),
}

# Already SI, or dimensionless
NO_CONVERSION_UNITS = {
    'TS', 'RN', 'W/M2', 'M/S', 'K', 'M', 'N', 'V', 'VOLT', 'DEG', '°', 'KG/M2',
    '', '1', '-', '0 OR 1', '0/1', '??',
}


@dataclass(frozen=True)
class UnitsTransform:
    """Per-column offsets and multipliers; an empty vector means no conversion."""

    offsets: tuple[float, ...] = ()
    multipliers: tuple[float, ...] = ()

    @classmethod
    def from_vectors(cls, offsets: Optional[Sequence[float]] = None,
                     multipliers: Optional[Sequence[float]] = None) -> "UnitsTransform":
        return cls(tuple(offsets or ()), tuple(multipliers or ()))

    @property
    def is_empty(self) -> bool:
        return not self.offsets and not self.multipliers

    def check_size(self, nr_fields: int) -> Optional[str]:
        """Error message if a declared vector does not match the number of columns."""
        if (self.offsets and len(self.offsets) != nr_fields) or \
                (self.multipliers and len(self.multipliers) != nr_fields):
            return (f"the declared units_offset ({len(self.offsets)}) / units_multiplier ({len(self.multipliers)}) "
                    f"must match the number of columns ({nr_fields})")
        return None

    def apply(self, column: int, value: float) -> float:
        """Convert a raw value of a column to SI; NODATA is left untouched."""
        if value == NODATA:
            return value
        if self.multipliers:
            value *= self.multipliers[column]
        if self.offsets:
            value += self.offsets[column]
        return value


def parse_units(line: str, delimiter: str = ' ') -> UnitsTransform:
    """
    Build the transform from a units declaration, one unit per column.

    Units are matched case-insensitively after removing quotes. Unknown units
    are reported and left unconverted.

    Args:
        line: Units declaration, such as "- % C"
        delimiter: Separator between two units

    Returns:
        UnitsTransform: One (offset, multiplier) pair per declared unit
    """
    units = split_line(line, delimiter)
    offsets = [0.] * len(units)
    multipliers = [1.] * len(units)

    for ii, unit in enumerate(units):
        unit = remove_quotes(unit.upper()).strip()
        if unit in NO_CONVERSION_UNITS:
            continue
        if unit in UNIT_TRANSFORMS:
            offsets[ii], multipliers[ii] = UNIT_TRANSFORMS[unit]
        else:
            logger.warning("Can not parse unit '%s' in column %d, it will not be converted", unit, ii + 1)

    return UnitsTransform(tuple(offsets), tuple(multipliers))
