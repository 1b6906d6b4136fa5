"""Quality control filters and corrections applied to one parameter of a station series."""

import logging
import math
from typing import Optional, Sequence

from pyproj import Transformer
from pyproj.exceptions import CRSError, ProjError

from ..exceptions import ConfigurationError, ProcessingError
from ..meteolaws import T_WATER_FREEZING_PT
from ..schema import NODATA, MeteoRecord, is_nodata
from .base import ConfiguredStage, ProcessingStage, StageArgs

logger = logging.getLogger(__name__)

FILTERS: dict[str, type["ProcessingBlock"]] = {}


def register_filter(name: str):
    """Class decorator registering a filter under its configuration name."""
    def decorator(cls):
        FILTERS[name] = cls
        return cls
    return decorator


def create_filter(name: str, args: StageArgs, tz: float = 0.) -> "ProcessingBlock":
    """
    Instantiate a filter by name, validating its arguments.

    Raises:
        ConfigurationError: If the filter is unknown or its arguments are invalid
    """
    cls = FILTERS.get(name.strip().upper())
    if cls is None:
        raise ConfigurationError(f"Unknown filter '{name}'")
    return cls(name, args, tz)


class ProcessingBlock(ConfiguredStage):
    """
    Base class of the filters.

    ``process`` modifies the records in place. Filters without temporal
    dependency run in both stages; corrections and filters relying on past
    values run before the resampling only, so that they are not applied twice.
    """

    stage = ProcessingStage.BOTH

    def runs_in(self, second_pass: bool) -> bool:
        if self.stage is ProcessingStage.BOTH:
            return True
        return (self.stage is ProcessingStage.SECOND) == second_pass

    def process(self, param: str, records: Sequence[MeteoRecord]) -> None:
        raise NotImplementedError


@register_filter("MIN")
class FilterMin(ProcessingBlock):
    """Reject values below MIN, or reset them to MIN_RESET (default MIN) when SOFT."""

    ARGS = ("MIN", "SOFT", "MIN_RESET")
    REQUIRED = ("MIN",)

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        self.min = self.float_arg("MIN")
        self.soft = self.bool_arg("SOFT")
        self.min_reset = self.float_arg("MIN_RESET", self.min)

    def process(self, param: str, records: Sequence[MeteoRecord]) -> None:
        for record in records:
            value = record.get(param)
            if not is_nodata(value) and value < self.min:
                record.set(param, self.min_reset if self.soft else NODATA)


@register_filter("MAX")
class FilterMax(ProcessingBlock):
    """Reject values above MAX, or reset them to MAX_RESET (default MAX) when SOFT."""

    ARGS = ("MAX", "SOFT", "MAX_RESET")
    REQUIRED = ("MAX",)

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        self.max = self.float_arg("MAX")
        self.soft = self.bool_arg("SOFT")
        self.max_reset = self.float_arg("MAX_RESET", self.max)

    def process(self, param: str, records: Sequence[MeteoRecord]) -> None:
        for record in records:
            value = record.get(param)
            if not is_nodata(value) and value > self.max:
                record.set(param, self.max_reset if self.soft else NODATA)


@register_filter("MIN_MAX")
class FilterMinMax(ProcessingBlock):
    """Combination of MIN and MAX."""

    ARGS = ("MIN", "MAX", "SOFT", "MIN_RESET", "MAX_RESET")
    REQUIRED = ("MIN", "MAX")

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        self.min = self.float_arg("MIN")
        self.max = self.float_arg("MAX")
        if self.min > self.max:
            raise ConfigurationError(f"MIN must be smaller than MAX for {self.where}")
        self.soft = self.bool_arg("SOFT")
        self.min_reset = self.float_arg("MIN_RESET", self.min)
        self.max_reset = self.float_arg("MAX_RESET", self.max)

    def process(self, param: str, records: Sequence[MeteoRecord]) -> None:
        for record in records:
            value = record.get(param)
            if is_nodata(value):
                continue
            if value < self.min:
                record.set(param, self.min_reset if self.soft else NODATA)
            elif value > self.max:
                record.set(param, self.max_reset if self.soft else NODATA)


@register_filter("RATE")
class FilterRate(ProcessingBlock):
    """
    Reject values changing faster than allowed, in units per second.

    Either MAX (symmetric) or MAX_INCREASE and MAX_DECREASE must be given. Each
    value is compared with the last accepted one.
    """

    ARGS = ("MAX", "MAX_INCREASE", "MAX_DECREASE")
    stage = ProcessingStage.FIRST

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        if "MAX" in self.args:
            if "MAX_INCREASE" in self.args or "MAX_DECREASE" in self.args:
                raise ConfigurationError(f"MAX can not be combined with MAX_INCREASE or MAX_DECREASE for {self.where}")
            self.max_increase = self.max_decrease = abs(self.float_arg("MAX"))
        elif "MAX_INCREASE" in self.args and "MAX_DECREASE" in self.args:
            self.max_increase = abs(self.float_arg("MAX_INCREASE"))
            self.max_decrease = abs(self.float_arg("MAX_DECREASE"))
        else:
            raise ConfigurationError(f"Please provide either MAX or both MAX_INCREASE and MAX_DECREASE for {self.where}")

    def process(self, param: str, records: Sequence[MeteoRecord]) -> None:
        last = None
        for record in records:
            value = record.get(param)
            if is_nodata(value):
                continue
            if last is not None:
                seconds = (record.date - last.date) * 86400.
                rate = (value - last.get(param)) / seconds if seconds > 0 else 0.
                if rate > self.max_increase or rate < -self.max_decrease:
                    record.set(param, NODATA)
                    continue
            last = record


@register_filter("ADD")
class ProcAdd(ProcessingBlock):
    """Add the constant CST."""

    ARGS = ("CST",)
    REQUIRED = ("CST",)
    stage = ProcessingStage.FIRST

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        self.offset = self.float_arg("CST")

    def process(self, param: str, records: Sequence[MeteoRecord]) -> None:
        for record in records:
            value = record.get(param)
            if not is_nodata(value):
                record.set(param, value + self.offset)


@register_filter("MULT")
class ProcMult(ProcessingBlock):
    """Multiply by the constant CST."""

    ARGS = ("CST",)
    REQUIRED = ("CST",)
    stage = ProcessingStage.FIRST

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        self.factor = self.float_arg("CST")

    def process(self, param: str, records: Sequence[MeteoRecord]) -> None:
        for record in records:
            value = record.get(param)
            if not is_nodata(value):
                record.set(param, value * self.factor)


@register_filter("UNDERCATCH")
class ProcUndercatch(ProcessingBlock):
    """
    Precipitation gauge undercatch correction.

    Precipitation is multiplied by SNOW when the air temperature is at or below
    T_SNOW, by MIXED between T_SNOW and T_RAIN, and left unchanged above
    T_RAIN. Thresholds are given in Celsius (defaults -2 and 2). Values without
    an air temperature are left unchanged.
    """

    ARGS = ("SNOW", "MIXED", "T_SNOW", "T_RAIN")
    REQUIRED = ("SNOW", "MIXED")
    stage = ProcessingStage.FIRST

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        self.factor_snow = self.float_arg("SNOW")
        self.factor_mixed = self.float_arg("MIXED")
        self.t_snow = self.float_arg("T_SNOW", -2.) + T_WATER_FREEZING_PT
        self.t_rain = self.float_arg("T_RAIN", 2.) + T_WATER_FREEZING_PT
        if self.t_snow >= self.t_rain:
            raise ConfigurationError(f"T_SNOW must be lower than T_RAIN for {self.where}")

    def process(self, param: str, records: Sequence[MeteoRecord]) -> None:
        for record in records:
            value = record.get(param)
            ta = record.get("TA")
            if is_nodata(value) or is_nodata(ta) or value == 0.:
                continue
            if ta <= self.t_snow:
                record.set(param, value * self.factor_snow)
            elif ta < self.t_rain:
                record.set(param, value * self.factor_mixed)


WIND_COMPONENTS = (("U", "V"), ("VW_U", "VW_V"), ("WIND_U", "WIND_V"))


@register_filter("TRANSFORMWINDVECTOR")
class ProcTransformWindVector(ProcessingBlock):
    """
    Rotate wind directions from true north to the grid north of the projection
    COORDPARAM (an EPSG code).

    The filter is declared once, on DW or on one of the wind components (U/V,
    VW_U/VW_V or WIND_U/WIND_V). Both DW and the components found in a record
    are rotated by the meridian convergence at the station, so the wind speed
    is preserved.
    """

    ARGS = ("COORDPARAM",)
    REQUIRED = ("COORDPARAM",)
    stage = ProcessingStage.FIRST
    STEP = 1e-4  # degrees of latitude

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        code = self.args["COORDPARAM"].upper().removeprefix("EPSG:")
        try:
            self.transformer = Transformer.from_crs("EPSG:4326", f"EPSG:{code}", always_xy=True)
        except CRSError as e:
            raise ConfigurationError(f"Invalid COORDPARAM '{self.args['COORDPARAM']}' for {self.where}: {e}")
        self._convergence: dict[tuple[float, float], float] = {}

    def convergence(self, latitude: float, longitude: float) -> float:
        """Grid bearing of true north at a position, in degrees (positive clockwise)."""
        key = (latitude, longitude)
        if key not in self._convergence:
            step = self.STEP if latitude + self.STEP < 90. else -self.STEP
            try:
                x0, y0 = self.transformer.transform(longitude, latitude, errcheck=True)
                x1, y1 = self.transformer.transform(longitude, latitude + step, errcheck=True)
            except ProjError as e:
                raise ProcessingError(f"Could not project ({latitude}, {longitude})", self.where) from e
            if step < 0.:
                x1, y1 = 2. * x0 - x1, 2. * y0 - y1
            self._convergence[key] = math.degrees(math.atan2(x1 - x0, y1 - y0))
        return self._convergence[key]

    @staticmethod
    def _components(record: MeteoRecord) -> Optional[tuple[str, str]]:
        for u_param, v_param in WIND_COMPONENTS:
            if u_param in record.values and v_param in record.values:
                return u_param, v_param
        return None

    def process(self, param: str, records: Sequence[MeteoRecord]) -> None:
        on_components = any(param in pair for pair in WIND_COMPONENTS)
        if param != "DW" and not on_components:
            raise ConfigurationError(
                f"{self.where} can only be applied to DW or wind components, not to {param}")

        for record in records:
            position = record.station.position
            if is_nodata(position.latitude) or is_nodata(position.longitude):
                continue
            components = self._components(record)
            if on_components and components is None:
                raise ProcessingError(f"Both wind components are required to apply {self.name} on {param}",
                                      self.where)
            if abs(position.latitude) >= 90.:
                raise ProcessingError(f"Wind directions are undefined at latitude {position.latitude}", self.where)

            alpha = self.convergence(position.latitude, position.longitude)
            if record.has("DW"):
                record.set("DW", (record.get("DW") + alpha) % 360.)
            if components is not None:
                u_param, v_param = components
                u, v = record.get(u_param), record.get(v_param)
                if is_nodata(u) or is_nodata(v):
                    continue
                cos_a, sin_a = math.cos(math.radians(alpha)), math.sin(math.radians(alpha))
                record.set(u_param, u * cos_a + v * sin_a)
                record.set(v_param, v * cos_a - u * sin_a)
