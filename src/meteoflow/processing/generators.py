"""Data generators: fill missing values from parametrizations."""

import logging
from typing import Optional, Sequence

from .. import meteolaws
from ..config import MeteoConfig, Settings, get_settings, iter_numbered_keys
from ..exceptions import ConfigurationError, ProcessingError
from ..schema import MeteoRecord, is_nodata
from .base import ConfiguredStage, StageArgs
from .stack import read_stage_args

logger = logging.getLogger(__name__)

GENERATORS: dict[str, type["GeneratorAlgorithm"]] = {}


def register_generator(name: str):
    """Class decorator registering a generator under its configuration name."""
    def decorator(cls):
        GENERATORS[name] = cls
        return cls
    return decorator


def create_generator(name: str, args: StageArgs, tz: float = 0.) -> "GeneratorAlgorithm":
    """
    Instantiate a generator by name, validating its arguments.

    Raises:
        ConfigurationError: If the generator is unknown or its arguments are invalid
    """
    cls = GENERATORS.get(name.strip().upper())
    if cls is None:
        raise ConfigurationError(f"Unknown data generator '{name}'")
    return cls(name, args, tz)


class GeneratorAlgorithm(ConfiguredStage):
    """Base class of the generators; ``generate`` fills one missing value."""

    section = "Generators"

    def generate(self, param: str, record: MeteoRecord) -> bool:
        """
        Try to fill param in record.

        Returns:
            bool: Whether a value could be generated
        """
        raise NotImplementedError


@register_generator("CST")
class ConstantGenerator(GeneratorAlgorithm):
    """Constant VALUE."""

    ARGS = ("VALUE",)
    REQUIRED = ("VALUE",)

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        self.value = self.float_arg("VALUE")

    def generate(self, param: str, record: MeteoRecord) -> bool:
        record.set(param, self.value)
        return True


@register_generator("STD_PRESS")
class StandardPressureGenerator(GeneratorAlgorithm):
    """Standard atmospheric pressure at the station altitude."""

    def generate(self, param: str, record: MeteoRecord) -> bool:
        altitude = record.station.position.altitude
        if is_nodata(altitude):
            return False
        record.set(param, meteolaws.std_pressure(altitude))
        return True


@register_generator("TAU_CLD")
class TauCloudGenerator(GeneratorAlgorithm):
    """
    Atmospheric transmissivity, as 1 - cloudiness.

    The cloudiness comes from the CLD parameter (cloud cover in oktas, 9 meaning
    sky obstructed) when present, as CLD / 8 whatever the TYPE, since the TYPE
    parametrizations only convert a clearness index to a cloudiness. Otherwise
    it is derived from the ratio of the measured incoming short wave radiation
    to the clear sky radiation, using the TYPE parametrization (KASTEN, LHOMME
    or CRAWFORD). With USE_RSWR, a missing ISWR is estimated from RSWR and a
    snow or soil albedo.

    At night the last daytime cloudiness of the station is reused when it is
    less than one day old. This cache requires the records of a station to be
    processed in chronological order.
    """

    ARGS = ("TYPE", "USE_RSWR")

    def __init__(self, name: str, args: StageArgs, tz: float = 0.):
        super().__init__(name, args, tz)
        self.model = self.choice_arg("TYPE", meteolaws.CLOUDINESS_MODELS, "KASTEN")
        self.use_rswr = self.bool_arg("USE_RSWR")
        # station hash -> (julian date GMT, cloudiness)
        self.last_cloudiness: dict[str, tuple[float, float]] = {}

    def generate(self, param: str, record: MeteoRecord) -> bool:
        cld = record.get("CLD")
        if not is_nodata(cld):
            if cld == 9.:
                cld = 8.
            if cld < 0. or cld > 8.:
                raise ProcessingError(f"Cloud cover CLD should be between 0 and 8, got {cld}",
                                      where=record.station.id)
            record.set(param, 1. - cld / 8.)
            return True

        if is_nodata(record.get("TA")) or is_nodata(record.get("RH")):
            return False
        position = record.station.position
        if is_nodata(position.latitude) or is_nodata(position.longitude) or is_nodata(position.altitude):
            return False

        julian_gmt = record.date.to_julian(gmt=True)
        cloudiness, is_night = self._cloudiness(record, julian_gmt)
        if cloudiness is None and not is_night:
            return False

        station_hash = record.station.station_hash
        if is_night:
            cached = self.last_cloudiness.get(station_hash)
            if cached is None or julian_gmt - cached[0] >= 1.:
                return False
            cloudiness = cached[1]
        else:
            self.last_cloudiness[station_hash] = (julian_gmt, cloudiness)

        record.set(param, 1. - cloudiness)
        return True

    def _cloudiness(self, record: MeteoRecord, julian_gmt: float) -> tuple[Optional[float], bool]:
        """Cloudiness (None if it can not be computed) and whether it is night."""
        iswr, rswr, hs = record.get("ISWR"), record.get("RSWR"), record.get("HS")
        albedo = 0.5
        if not is_nodata(rswr) and not is_nodata(iswr):
            if iswr < meteolaws.DAY_ISWR_THRESH:
                return None, True
            albedo = min(0.99, max(0.01, rswr / iswr))
        else:
            if not is_nodata(hs):
                albedo = meteolaws.SNOW_ALBEDO if hs >= meteolaws.SNOW_THRESH else meteolaws.SOIL_ALBEDO
            if is_nodata(iswr):
                is_night = not is_nodata(rswr) and rswr / albedo < meteolaws.DAY_ISWR_THRESH
                if not self.use_rswr or is_nodata(rswr) or is_nodata(hs):
                    return None, is_night
                iswr = rswr / albedo

        if iswr < meteolaws.DAY_ISWR_THRESH:
            return None, True

        position = record.station.position
        clear_sky = meteolaws.clear_sky_iswr(position.latitude, position.longitude, position.altitude, julian_gmt)
        # sunrise and sunset give unreliable ratios
        if clear_sky < meteolaws.DAY_ISWR_THRESH:
            return None, True
        cloudiness = meteolaws.CLOUDINESS_MODELS[self.model](min(iswr / clear_sky, 1.))
        if cloudiness < 0. or cloudiness > 1.:
            return None, False
        return cloudiness, False


class DataGenerator:
    """
    Generators of every parameter, declared in the [Generators] section as
    ``TAU_CLD::GENERATOR1 = TAU_CLD`` with arguments ``TAU_CLD::ARG1::TYPE = LHOMME``.

    For each missing value, the generators of its parameter are tried in order
    until one succeeds.
    """

    def __init__(self, cfg: MeteoConfig, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        tz = cfg.get_float("Input", "TIME_ZONE", 0.)
        params = sorted({match.group(1) for _, match in cfg.find_keys("Generators", r"(\w+)::GENERATOR\d+")})
        self.algorithms: dict[str, list[GeneratorAlgorithm]] = {}
        for param in params:
            self.algorithms[param] = [
                create_generator(name, read_stage_args(cfg, "Generators", param, number), tz)
                for number, name in iter_numbered_keys(cfg, "Generators", param, "GENERATOR")
            ]

    def fill_missing(self, records: Sequence[MeteoRecord]) -> None:
        """Fill the missing values of one time-ordered station series, in place."""
        for param, algorithms in self.algorithms.items():
            for record in records:
                if record.has(param):
                    continue
                for algorithm in algorithms:
                    if not algorithm.applies_to(record.station.id) or not algorithm.active_at(record.date):
                        continue
                    if algorithm.generate(param, record):
                        if self.settings.data_qa_logs:
                            logger.debug("[DATA_QA] Generating %s::%s::%s %s", record.station.id, param,
                                         algorithm.name, record.date.to_iso())
                        break

    def fill_missing_all(self, ivec: Sequence[Sequence[MeteoRecord]]) -> None:
        for records in ivec:
            self.fill_missing(records)

    def __repr__(self) -> str:
        return f"DataGenerator({self.algorithms})"
