"""Configuration module for meteoflow."""

import configparser
import logging
import os
import re
from functools import lru_cache
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError
from .schema import NODATA, Coordinates

logger = logging.getLogger(__name__)

TRUE_VALUES = ("1", "t", "true", "yes", "y", "on")
FALSE_VALUES = ("0", "f", "false", "no", "n", "off")

DECIMAL_DATE_TYPES = ("EXCEL", "JULIAN", "MJULIAN", "MATLAB", "RFC868", "UNIX")

# Source keys that are looked up as CSV#_<KEY> first, then CSV_<KEY>
DATE_KEYS = ("DECIMALDATE_TYPE", "DATETIME_SPEC", "DATE_SPEC", "TIME_SPEC")


class Settings(BaseModel):
    """Process-wide settings."""

    data_qa_logs: bool = Field(
        default=False,
        description="Log every value filled in by a data generator"
    )
    index_stride: int = Field(
        default=2000,
        description="Number of data lines between two entries of the file position index"
    )
    buffer_days: float = Field(
        default=370.,
        description="Span of raw data kept in memory by the time series manager"
    )

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        qa_val = os.getenv("METEOFLOW_DATA_QA_LOGS", "off").lower()
        data_qa_logs = qa_val in ("on", "true", "1", "yes", "enabled")
        index_stride = int(os.getenv("METEOFLOW_INDEX_STRIDE", "2000"))
        buffer_days = float(os.getenv("METEOFLOW_BUFFER_DAYS", "370"))
        return cls(data_qa_logs=data_qa_logs, index_stride=index_stride, buffer_days=buffer_days)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()


class MeteoConfig:
    """
    INI configuration with typed accessors.

    Section names are case-insensitive and keys are upper-cased on reading.
    Values may reference environment variables as ``${VAR}``.
    """

    def __init__(self, path: Optional[str] = None):
        # keys such as TA::FILTER1 contain colons
        self._parser = configparser.ConfigParser(interpolation=None, strict=False, delimiters=("=",))
        self._parser.optionxform = str.upper
        self._path = None
        if path is not None:
            self.load(path)

    @classmethod
    def from_dict(cls, sections: dict[str, dict[str, Any]]) -> "MeteoConfig":
        """Build a configuration from an in-memory mapping of sections."""
        cfg = cls()
        for section, values in sections.items():
            for key, value in values.items():
                cfg.set(section, key, value)
        return cfg

    def load(self, path: str) -> None:
        """Read an INI file."""
        if not os.path.isfile(path):
            raise ConfigurationError(f"Configuration file '{path}' does not exist")
        logger.info("Loading configuration from %s", path)
        try:
            self._parser.read(path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Could not parse configuration file '{path}': {e}")
        self._path = path

    @property
    def path(self) -> Optional[str]:
        return self._path

    def set(self, section: str, key: str, value: Any) -> None:
        name = self._section(section) or section.upper()
        if not self._parser.has_section(name):
            self._parser.add_section(name)
        if isinstance(value, (list, tuple)):
            value = " ".join(str(v) for v in value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        self._parser.set(name, key.upper(), str(value))

    def sections(self) -> list[str]:
        return self._parser.sections()

    def _section(self, section: str) -> Optional[str]:
        for name in self._parser.sections():
            if name.upper() == section.upper():
                return name
        return None

    # --- typed accessors --------------------------------------------------

    def has_key(self, section: str, key: str) -> bool:
        name = self._section(section)
        return name is not None and self._parser.has_option(name, key.upper())

    def get(self, section: str, key: str, fallback: Optional[str] = None) -> Optional[str]:
        name = self._section(section)
        if name is None or not self._parser.has_option(name, key.upper()):
            return fallback
        return self._interpolate_env(self._parser.get(name, key.upper()).strip())

    def get_int(self, section: str, key: str, fallback: Optional[int] = None) -> Optional[int]:
        raw = self.get(section, key)
        if raw is None or raw == "":
            return fallback
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(f"Bad integer for [{section}] {key} = {raw!r}")

    def get_float(self, section: str, key: str, fallback: Optional[float] = None) -> Optional[float]:
        raw = self.get(section, key)
        if raw is None or raw == "":
            return fallback
        try:
            return float(raw)
        except ValueError:
            raise ConfigurationError(f"Bad float for [{section}] {key} = {raw!r}")

    def get_bool(self, section: str, key: str, fallback: bool = False) -> bool:
        raw = self.get(section, key)
        if raw is None or raw == "":
            return fallback
        value = raw.lower()
        if value in TRUE_VALUES:
            return True
        if value in FALSE_VALUES:
            return False
        raise ConfigurationError(f"Bad boolean for [{section}] {key} = {raw!r}")

    def get_list(self, section: str, key: str, separator: Optional[str] = None,
                 fallback: Optional[list[str]] = None) -> list[str]:
        """Split a value on the separator (any whitespace by default)."""
        raw = self.get(section, key)
        if raw is None:
            return fallback if fallback is not None else []
        return [item.strip() for item in raw.split(separator) if item.strip()]

    def get_float_list(self, section: str, key: str) -> list[float]:
        items = self.get_list(section, key)
        try:
            return [float(item) for item in items]
        except ValueError:
            raise ConfigurationError(f"Bad list of numbers for [{section}] {key} = {' '.join(items)!r}")

    def keys(self, section: str, prefix: str = "") -> list[str]:
        """Keys of a section starting with prefix, in file order."""
        name = self._section(section)
        if name is None:
            return []
        prefix = prefix.upper()
        return [key for key in self._parser.options(name) if key.startswith(prefix)]

    def find_keys(self, section: str, pattern: str) -> list[tuple[str, re.Match]]:
        """Keys of a section fully matching a regular expression, with their match objects."""
        regex = re.compile(pattern)
        hits = []
        for key in self.keys(section):
            if match := regex.fullmatch(key):
                hits.append((key, match))
        return hits

    @staticmethod
    def _interpolate_env(value: str) -> str:
        """Replace ``${VAR}`` tokens with the matching environment variable when it is set."""
        if "${" not in value:
            return value

        def _replace(match):
            return os.environ.get(match.group(1), match.group(0))
        return re.sub(r"\$\{([^}]+)\}", _replace, value)


def parse_position(spec: str) -> Coordinates:
    """
    Parse a station position.

    Args:
        spec: "latlon (lat, lon, alt)" or "xy (easting, northing, alt)"; the
            parentheses and commas are optional

    Returns:
        Coordinates: Parsed position

    Raises:
        ConfigurationError: If the position can not be parsed
    """
    match = re.fullmatch(r'\s*(latlon|xy)\s*\(?([^)]*)\)?\s*', spec, re.IGNORECASE)
    if not match:
        raise ConfigurationError(f"Invalid position specification '{spec}'")
    parts = [p for p in re.split(r'[\s,;]+', match.group(2).strip()) if p]
    if len(parts) not in (2, 3):
        raise ConfigurationError(f"Invalid position specification '{spec}'")
    try:
        numbers = [float(p) for p in parts]
    except ValueError:
        raise ConfigurationError(f"Invalid position specification '{spec}'")
    altitude = numbers[2] if len(numbers) == 3 else NODATA
    if match.group(1).lower() == "latlon":
        return Coordinates(latitude=numbers[0], longitude=numbers[1], altitude=altitude)
    return Coordinates(easting=numbers[0], northing=numbers[1], altitude=altitude)


def _delimiter(spec: str) -> str:
    if spec.upper() in ("SPACE", "TAB"):
        return " "
    if len(spec) != 1:
        raise ValueError("The CSV delimiter must be a single character or SPACE or TAB")
    return spec


class CsvSourceConfig(BaseModel):
    """Validated settings of one CSV source (one STATION# key)."""

    model_config = ConfigDict(frozen=True)

    station_idx: str
    file_path: str
    tz: float = 0.
    position: Coordinates = Field(default_factory=Coordinates)
    name: str = ""
    id: str = ""
    slope: float = NODATA
    azimuth: float = NODATA
    nodata: Optional[str] = None
    delimiter: str = ","
    header_delimiter: Optional[str] = None
    dequote: bool = False
    comments_mk: Optional[str] = None
    single_param_idx: Optional[int] = None
    header_repeat_mk: str = ""
    header_lines: int = 1
    columns_headers: Optional[int] = 1
    fields: list[str] = Field(default_factory=list)
    filter_id: str = ""
    skip_fields: list[int] = Field(default_factory=list)
    units_headers: Optional[int] = None
    units_offset: list[float] = Field(default_factory=list)
    units_multiplier: list[float] = Field(default_factory=list)
    units: str = ""
    decimaldate_type: Optional[str] = None
    datetime_spec: str = ""
    date_spec: str = ""
    time_spec: str = ""
    fallback_year: Optional[int] = None
    fallback_auto_wrap: bool = True
    special_headers: list[str] = Field(default_factory=list)
    filename_spec: str = ""

    @field_validator("delimiter")
    @classmethod
    def _check_delimiter(cls, value: str) -> str:
        return _delimiter(value)

    @field_validator("header_delimiter")
    @classmethod
    def _check_header_delimiter(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _delimiter(value)

    @field_validator("comments_mk")
    @classmethod
    def _check_comments_mk(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) != 1:
            raise ValueError("The comments marker must be a single character")
        return value

    @field_validator("decimaldate_type")
    @classmethod
    def _check_decimaldate_type(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.upper()
        if value not in DECIMAL_DATE_TYPES:
            raise ValueError(f"Unknown decimal date type '{value}'")
        return value

    @field_validator("skip_fields")
    @classmethod
    def _check_skip_fields(cls, value: list[int]) -> list[int]:
        if any(idx < 0 for idx in value):
            raise ValueError("Wrong format specification for fields to skip: first field is numbered field 1")
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> "CsvSourceConfig":
        if self.header_lines < 0:
            raise ValueError("The number of header lines can not be negative")
        if self.columns_headers is None and not self.fields:
            raise ValueError("Please provide either COLUMNS_HEADERS (make sure it is <= NR_HEADERS) or FIELDS")
        if self.units and (self.units_offset or self.units_multiplier):
            raise ValueError("It is not possible to define both UNITS and UNITS_OFFSET or UNITS_MULTIPLIER")
        if self.decimaldate_type and (self.datetime_spec or self.date_spec or self.time_spec):
            raise ValueError("It is not possible to define both DECIMALDATE_TYPE and other date / time specifications")
        if self.datetime_spec and (self.date_spec or self.time_spec):
            raise ValueError("It is not possible to define both DATETIME_SPEC and DATE_SPEC or TIME_SPEC")
        if bool(self.date_spec) != bool(self.time_spec):
            raise ValueError("Please define both DATE_SPEC and TIME_SPEC")
        return self

    @property
    def effective_header_delimiter(self) -> str:
        return self.header_delimiter if self.header_delimiter is not None else self.delimiter

    @classmethod
    def from_config(cls, cfg: MeteoConfig, station_idx: str, filename: str,
                    meteopath: str = "", tz: float = 0.) -> "CsvSourceConfig":
        """
        Resolve the settings of one source from the [Input] section.

        Per-station keys (CSV#_<KEY>) have priority over global ones (CSV_<KEY>).
        Date keys are resolved as a group: as soon as one per-station date key
        is set, none of the global date keys are used.

        Raises:
            ConfigurationError: If the settings are malformed or contradictory
        """
        pre = f"CSV{station_idx}_"

        def value(key: str) -> Optional[str]:
            if cfg.has_key("Input", pre + key):
                return cfg.get("Input", pre + key)
            return cfg.get("Input", "CSV_" + key)

        def key_of(key: str) -> str:
            return pre + key if cfg.has_key("Input", pre + key) else "CSV_" + key

        kwargs: dict[str, Any] = {
            "station_idx": station_idx,
            "file_path": os.path.join(meteopath, filename) if meteopath else filename,
            "tz": tz,
        }
        position = cfg.get("Input", f"POSITION{station_idx}") or cfg.get("Input", "POSITION")
        if position:
            kwargs["position"] = parse_position(position)

        for key in ("NAME", "ID", "NODATA", "DELIMITER", "HEADER_DELIMITER", "COMMENTS_MK",
                    "HEADER_REPEAT_MK", "FILTER_ID", "UNITS", "FILENAME_SPEC"):
            raw = value(key)
            if raw is not None and raw != "":
                kwargs[key.lower()] = raw
        for key in ("SLOPE", "AZIMUTH"):
            number = cfg.get_float("Input", key_of(key))
            if number is not None:
                kwargs[key.lower()] = number
        kwargs["dequote"] = cfg.get_bool("Input", key_of("DEQUOTE"))
        kwargs["fallback_auto_wrap"] = cfg.get_bool("Input", key_of("FALLBACK_AUTO_WRAP"), True)
        fallback_year = cfg.get_int("Input", key_of("FALLBACK_YEAR"))
        if fallback_year is not None:
            kwargs["fallback_year"] = fallback_year

        single_param_index = cfg.get_int("Input", key_of("SINGLE_PARAM_INDEX"))
        if single_param_index is not None:
            kwargs["single_param_idx"] = single_param_index - 1

        header_lines = cfg.get_int("Input", key_of("NR_HEADERS"), 1)
        columns_headers = cfg.get_int("Input", key_of("COLUMNS_HEADERS"), 1)
        kwargs["header_lines"] = header_lines
        kwargs["columns_headers"] = columns_headers if columns_headers <= header_lines else None
        kwargs["units_headers"] = cfg.get_int("Input", key_of("UNITS_HEADERS"))

        kwargs["fields"] = cfg.get_list("Input", key_of("FIELDS"))
        kwargs["skip_fields"] = [idx - 1 for idx in _int_list(cfg, key_of("SKIP_FIELDS"))]
        kwargs["units_offset"] = cfg.get_float_list("Input", key_of("UNITS_OFFSET"))
        kwargs["units_multiplier"] = cfg.get_float_list("Input", key_of("UNITS_MULTIPLIER"))
        kwargs["special_headers"] = cfg.get_list("Input", key_of("SPECIAL_HEADERS"))

        date_prefix = pre if any(cfg.has_key("Input", pre + key) for key in DATE_KEYS) else "CSV_"
        for key in DATE_KEYS:
            raw = cfg.get("Input", date_prefix + key)
            if raw:
                kwargs[key.lower()] = raw

        try:
            return cls(**kwargs)
        except ValidationError as e:
            raise ConfigurationError(_validation_message(e), where=kwargs["file_path"])


class CsvInputConfig(BaseModel):
    """Settings shared by all CSV sources, plus the per-source settings."""

    model_config = ConfigDict(frozen=True)

    meteopath: str = ""
    tz: float = 0.
    silent_errors: bool = False
    errors_to_nodata: bool = False
    sources: list[CsvSourceConfig] = Field(default_factory=list)

    @classmethod
    def from_config(cls, cfg: MeteoConfig) -> "CsvInputConfig":
        """
        Build the input configuration from the [Input] section.

        Sources are declared as STATION# keys, numbered from 1, each one naming
        a file relative to METEOPATH.
        """
        meteopath = cfg.get("Input", "METEOPATH", "")
        tz = cfg.get_float("Input", "TIME_ZONE", 0.)
        stations = sorted(cfg.find_keys("Input", r"STATION(\d+)"), key=lambda hit: int(hit[1].group(1)))
        if not stations:
            raise ConfigurationError("No STATION# keys declared in [Input]")

        sources = [
            CsvSourceConfig.from_config(cfg, match.group(1), cfg.get("Input", key), meteopath, tz)
            for key, match in stations
        ]
        return cls(
            meteopath=meteopath,
            tz=tz,
            silent_errors=cfg.get_bool("Input", "CSV_SILENT_ERRORS"),
            errors_to_nodata=cfg.get_bool("Input", "CSV_ERRORS_TO_NODATA"),
            sources=sources,
        )


def _int_list(cfg: MeteoConfig, key: str) -> list[int]:
    items = cfg.get_list("Input", key)
    if not all(re.fullmatch(r'[+-]?\d+', item) for item in items):
        raise ConfigurationError(f"Bad list of integers for [Input] {key} = {' '.join(items)!r}")
    return [int(item) for item in items]


def _validation_message(error: ValidationError) -> str:
    return "; ".join(str(detail.get("msg", "")).removeprefix("Value error, ") for detail in error.errors())


def iter_numbered_keys(cfg: MeteoConfig, section: str, param: str, kind: str) -> Iterable[tuple[int, str]]:
    """
    Numbered keys such as ``TA::FILTER1``, ``TA::FILTER2``, sorted by number.

    Returns:
        (number, value) pairs
    """
    pattern = rf"{re.escape(param.upper())}::{kind}(\d+)"
    hits = [(int(match.group(1)), cfg.get(section, key)) for key, match in cfg.find_keys(section, pattern)]
    return sorted(hits)
