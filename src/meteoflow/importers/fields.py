"""Column classification and date/time decoding plan of a tabular source."""

import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from ..exceptions import ConfigurationError
from ..schema import STANDARD_PARAMETERS
from ..utils_time import Timestamp, parse_timezone, safe_float, safe_int
from .datetime_spec import DateTimeSpec

DEFAULT_DATETIME_SPEC = "YYYY-MM-DDTHH24:MI:SS"
DEFAULT_DATE_SPEC = "YYYY-MM-DD"
DEFAULT_TIME_SPEC = "HH24:MI:SS"

# Prefixes of non standard column names -> canonical parameter.
# More specific prefixes must come before the shorter ones they start with.
FIELD_SYNONYMS = (
    (("TEMPERATURE_AIR", "AIRTEMP", "TEMPERATURA_ARIA"), "TA"),
    (("SOIL_TEMPERATURE", "SOILTEMP"), "TSG"),
    (("PRECIPITATION", "PRECIPITAZIONE", "PREC"), "PSUM"),
    (("REFLECTED_RADIATION", "RADIAZIONE_SOLARE_RIFLESSA"), "RSWR"),
    (("INCOMING_RADIATION", "INCOMINGSHORTWAVERADIATION", "RADIAZIONE_SOLARE_INCIDENTE"), "ISWR"),
    (("WIND_DIRECTION", "DIREZIONE_VENTO", "WD"), "DW"),
    (("RELATIVE_HUMIDITY", "RELATIVEHUMIDITY", "UMIDITA_RELATIVA", "UMIDIT_RELATIVA"), "RH"),
    (("WS_MAX",), "VW_MAX"),
    (("WIND_VELOCITY", "VELOCITA_VENTO", "VELOCIT_VENTO", "WS"), "VW"),
    (("PRESSURE", "STATIONPRESSURE"), "P"),
    (("INCOMING_LONGWAVE", "INCOMINGLONGWAVERADIATION"), "ILWR"),
    (("SNOWSURFACETEMPERATURE",), "TSS"),
)

# Role keywords -> DateTimeColumns attribute (or the special roles)
ROLE_KEYWORDS = {
    "TIMESTAMP": "timestamp", "TS": "timestamp", "DATETIME": "timestamp",
    "DATE": "date_str", "GIORNO": "date_str", "FECHA": "date_str",
    "TIME": "time_str", "ORA": "time_str", "HORA": "time_str",
    "SKIP": "skip",
    "YEAR": "year",
    "JDAY": "jdn", "JDN": "jdn", "YDAY": "jdn", "DAY_OF_YEAR": "jdn", "DOY": "jdn",
    "MONTH": "month",
    "DAY": "day",
    "NTIME": "ntime",
    "HOUR": "hours", "HOURS": "hours",
    "MINUTE": "minutes", "MINUTES": "minutes",
    "SECOND": "seconds", "SECONDS": "seconds",
    "ID": "id", "STATIONID": "id",
}
COMPONENT_ROLES = ("year", "jdn", "month", "day", "ntime", "hours", "minutes", "seconds")


def normalize_field_name(name: str) -> str:
    """Trim, upper-case and replace whitespace runs by a single '_'."""
    return re.sub(r'\s+', '_', name.strip().upper())


def identify_field(name: str) -> str:
    """Map a non standard column name to its canonical parameter, or return it unchanged."""
    for prefixes, canonical in FIELD_SYNONYMS:
        if name.startswith(prefixes):
            return canonical
    return name


def strip_accents(text: str) -> str:
    """Remove diacritics and replace the remaining non alphanumeric characters by '_'."""
    decomposed = unicodedata.normalize('NFKD', text)
    ascii_text = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r'[^A-Za-z0-9_]', '_', ascii_text.strip())


def canonical_parameter(raw: str) -> str:
    """Canonical parameter name of a free-form parameter label (file names, headers)."""
    param = raw.strip().upper()
    if param in STANDARD_PARAMETERS:
        return param
    return identify_field(strip_accents(param).upper())


class DateMode(Enum):
    """How timestamps are stored in the columns."""

    STRINGS = "strings"
    DECIMAL = "decimal"
    COMPONENTS = "components"


@dataclass
class FallbackYear:
    """
    Year to use when the source does not provide one.

    With auto-wrap, data are assumed to start in the previous year until the
    first date before October is seen (day of year < 273 or month < 10).
    """

    year: int
    auto_wrap: bool = True

    def __post_init__(self):
        self._user_auto_wrap = self.auto_wrap

    def for_doy(self, doy: float) -> int:
        if doy < 273.:
            self.auto_wrap = False
        return self.year - 1 if self.auto_wrap else self.year

    def for_month(self, month: int) -> int:
        if month < 10:
            self.auto_wrap = False
        return self.year - 1 if self.auto_wrap else self.year

    def reset(self) -> None:
        """Restore the user setting before a new pass over the source."""
        self.auto_wrap = self._user_auto_wrap

    @property
    def wraps(self) -> bool:
        return self._user_auto_wrap


@dataclass
class DateTimeColumns:
    """Column index of every date/time role, None when absent."""

    decimal_date: Optional[int] = None
    decimal_type: Optional[str] = None
    date_str: Optional[int] = None
    time_str: Optional[int] = None
    year: Optional[int] = None
    jdn: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None
    ntime: Optional[int] = None
    hours: Optional[int] = None
    minutes: Optional[int] = None
    seconds: Optional[int] = None

    @property
    def max_col(self) -> int:
        cols = [col for col in (self.decimal_date, self.date_str, self.time_str, self.year, self.jdn, self.month,
                                self.day, self.ntime, self.hours, self.minutes, self.seconds) if col is not None]
        return max(cols) if cols else -1

    def describe(self) -> str:
        roles = [f"{name}->{value}" for name, value in vars(self).items() if value is not None]
        return "[" + " ".join(roles) + "]"


@dataclass
class DecodePlan:
    """Role of every column of a source and the way its timestamps are decoded."""

    fields: list[str]
    skip: set[int]
    columns: DateTimeColumns
    mode: DateMode
    id_col: Optional[int] = None
    datetime_spec: Optional[DateTimeSpec] = None
    time_spec: Optional[DateTimeSpec] = None
    tz: float = 0.
    fallback: Optional[FallbackYear] = None
    header_fields: list[str] = field(default_factory=list)

    @property
    def max_dt_col(self) -> int:
        return self.columns.max_col

    @property
    def parameters(self) -> list[str]:
        """Names of the value columns, in column order."""
        return [name for ii, name in enumerate(self.fields) if ii not in self.skip]

    def parse_date(self, fields: Sequence[str]) -> Optional[Timestamp]:
        """
        Decode the timestamp of a row.

        Returns:
            Timestamp or None: None when any component is missing or ill-formed
        """
        try:
            if self.mode is DateMode.COMPONENTS:
                if self.columns.jdn is not None:
                    return self._parse_jdn_date(fields)
                return self._parse_components(fields)
            if self.mode is DateMode.DECIMAL:
                return self._parse_decimal(fields[self.columns.decimal_date])
            return self._parse_strings(fields[self.columns.date_str], fields[self.columns.time_str])
        except (ValueError, OverflowError):
            return None

    def _int(self, fields: Sequence[str], col: Optional[int]) -> Optional[int]:
        return 0 if col is None else safe_int(fields[col])

    def _float(self, fields: Sequence[str], col: Optional[int]) -> Optional[float]:
        return 0. if col is None else safe_float(fields[col])

    def _year(self, fields: Sequence[str], doy: Optional[float] = None, month: Optional[int] = None) -> Optional[int]:
        year = self._int(fields, self.columns.year)
        if year == 0 and self.fallback is not None:
            year = self.fallback.for_doy(doy) if doy is not None else self.fallback.for_month(month)
        return year

    def _parse_components(self, fields: Sequence[str]) -> Optional[Timestamp]:
        month = self._int(fields, self.columns.month)
        if month is None:
            return None
        year = self._year(fields, month=month)
        day = self._int(fields, self.columns.day)
        hour = self._int(fields, self.columns.hours)
        minute = self._int(fields, self.columns.minutes)
        second = self._float(fields, self.columns.seconds)
        if None in (year, day, hour, minute, second):
            return None
        if self.columns.ntime is not None:
            ntime = self._int(fields, self.columns.ntime)
            if ntime is None:
                return None
            hour, minute = divmod(ntime, 100)
        return Timestamp.from_components(year, month, day, hour, minute, second, self.tz)

    def _parse_jdn_date(self, fields: Sequence[str]) -> Optional[Timestamp]:
        # year + day of year + time string
        if self.columns.time_str is not None and self.time_spec is not None:
            jdn = self._float(fields, self.columns.jdn)
            if jdn is None:
                return None
            year = self._year(fields, doy=jdn)
            decoded = self.time_spec.decode(fields[self.columns.time_str])
            if year is None or decoded is None:
                return None
            values = decoded.values
            jdn += (values.get("hour", 0.) * 3600. + values.get("minute", 0.) * 60. + values.get("second", 0.)) / 86400.
            tz = self._timezone(decoded.tz)
            return None if tz is None else Timestamp.from_year_and_doy(year, jdn, tz)

        # year + integer day of year + numerical time, "952" for 09:52
        if self.columns.ntime is not None:
            jdn = self._int(fields, self.columns.jdn)
            if jdn is None:
                return None
            year = self._year(fields, doy=float(jdn))
            ntime = self._int(fields, self.columns.ntime)
            if year is None or ntime is None:
                return None
            hours, minutes = divmod(ntime, 100)
            return Timestamp.from_year_and_doy(year, jdn + (hours * 60. + minutes) / 1440., self.tz)

        # year + integer day of year + hours, minutes, seconds
        if self.columns.hours is not None:
            jdn = self._int(fields, self.columns.jdn)
            if jdn is None:
                return None
            year = self._year(fields, doy=float(jdn))
            hours = self._int(fields, self.columns.hours)
            minutes = self._int(fields, self.columns.minutes)
            seconds = self._float(fields, self.columns.seconds)
            if None in (year, hours, minutes, seconds):
                return None
            return Timestamp.from_year_and_doy(year, jdn + (hours * 3600. + minutes * 60. + seconds) / 86400., self.tz)

        # year + decimal day of year
        jdn = self._float(fields, self.columns.jdn)
        if jdn is None:
            return None
        year = self._year(fields, doy=jdn)
        return None if year is None else Timestamp.from_year_and_doy(year, jdn, self.tz)

    def _parse_decimal(self, text: str) -> Optional[Timestamp]:
        decimal_type = self.columns.decimal_type
        if decimal_type == "UNIX":
            value = safe_int(text)
            return None if value is None else Timestamp.from_unix(value, self.tz)
        value = safe_float(text)
        if value is None:
            return None
        if decimal_type == "EXCEL":
            return Timestamp.from_excel(value, self.tz)
        if decimal_type == "JULIAN":
            return Timestamp.from_julian(value, self.tz)
        if decimal_type == "MJULIAN":
            return Timestamp.from_modified_julian(value, self.tz)
        if decimal_type == "MATLAB":
            return Timestamp.from_matlab(value, self.tz)
        return Timestamp.from_rfc868(value, self.tz)

    def _parse_strings(self, date_text: str, time_text: str) -> Optional[Timestamp]:
        decoded = self.datetime_spec.decode(date_text)
        if decoded is None:
            return None
        values = dict(decoded.values)
        tz_text = decoded.tz
        if self.time_spec is not None:
            decoded_time = self.time_spec.decode(time_text)
            if decoded_time is None:
                return None
            values.update(decoded_time.values)
            tz_text = decoded_time.tz if decoded_time.tz is not None else tz_text

        components = []
        for slot in ("year", "month", "day", "hour", "minute"):
            value = values.get(slot, 0.)
            if not value.is_integer():
                return None
            components.append(int(value))
        tz = self._timezone(tz_text)
        if tz is None:
            return None
        return Timestamp.from_components(*components, second=values.get("second", 0.), tz=tz)

    def _timezone(self, tz_text: Optional[str]) -> Optional[float]:
        has_tz = (self.datetime_spec is not None and self.datetime_spec.has_tz) or \
                 (self.time_spec is not None and self.time_spec.has_tz)
        if not has_tz:
            return self.tz
        return parse_timezone(tz_text)


def classify_fields(header_fields: Sequence[str], user_fields: Sequence[str], *,
                    skip_fields: Sequence[int] = (),
                    decimal_type: Optional[str] = None,
                    datetime_spec: Optional[DateTimeSpec] = None,
                    time_spec: Optional[DateTimeSpec] = None,
                    single_field: Optional[str] = None,
                    single_param_idx: Optional[int] = None,
                    tz: float = 0.,
                    fallback: Optional[FallbackYear] = None) -> DecodePlan:
    """
    Derive the decode plan of a source from its column names.

    User provided field names have priority over the ones found in the headers.
    Role columns (date, time, components, ID, SKIP) are excluded from the value
    columns; the other names are mapped to canonical parameters.

    Args:
        header_fields: Column names found in the file headers
        user_fields: Column names given in the configuration
        skip_fields: 0-based indices of columns to ignore
        decimal_type: Decimal date encoding of the TIMESTAMP column, if any
        datetime_spec: Compiled combined (or date) specification given by the user
        time_spec: Compiled time specification given by the user
        single_field: Parameter name extracted from the file name or headers
        single_param_idx: 0-based column holding single_field
        tz: Timezone of the timestamps without their own timezone
        fallback: Year to use when no year column is present

    Returns:
        DecodePlan: The plan for this source

    Raises:
        ConfigurationError: If no names are available, the date/time layout is
            ambiguous or incomplete, or contradicts a single parameter declaration
    """
    user_provided = len(user_fields) > 0
    if not header_fields and not user_provided:
        raise ConfigurationError("No columns names could be found. Please either provide COLUMNS_HEADERS or FIELDS")

    fields = [normalize_field_name(name) for name in (user_fields if user_provided else header_fields)]
    dt_as_decimal = decimal_type is not None
    columns = DateTimeColumns(decimal_type=decimal_type)
    skip = set(skip_fields)
    id_col = None

    for ii, name in enumerate(fields):
        if not name:
            skip.add(ii)
            continue
        role = ROLE_KEYWORDS.get(name)
        if role is None:
            fields[ii] = identify_field(name)
            continue

        skip.add(ii)
        if role == "timestamp":
            if dt_as_decimal:
                columns.decimal_date = ii
            else:
                columns.date_str = columns.time_str = ii
        elif role == "id":
            id_col = ii
        elif role != "skip":
            setattr(columns, role, ii)

    dt_as_components = any(getattr(columns, role) is not None for role in COMPONENT_ROLES)
    if dt_as_components and dt_as_decimal:
        raise ConfigurationError("It is not possible to provide date/time as individual components and as a decimal date")
    if dt_as_components and single_field:
        raise ConfigurationError("It is not possible to provide date/time as individual components and declare SINGLE_PARAM_INDEX")

    if dt_as_components:
        mode = DateMode.COMPONENTS
        has_year = columns.year is not None or fallback is not None
        if columns.jdn is not None:
            is_set = has_year
        else:
            has_time = columns.ntime is not None or columns.hours is not None
            is_set = has_year and columns.month is not None and columns.day is not None and has_time
    elif dt_as_decimal:
        mode = DateMode.DECIMAL
        is_set = columns.decimal_date is not None
    else:
        mode = DateMode.STRINGS
        is_set = columns.date_str is not None and columns.time_str is not None
    if not is_set:
        raise ConfigurationError(
            "Please define how to parse the date and time information (as strings, decimal or components). "
            f"Identified fields: {columns.describe()}")

    if mode is DateMode.STRINGS:
        if columns.date_str == columns.time_str:
            if datetime_spec is None:
                datetime_spec = DateTimeSpec(DEFAULT_DATETIME_SPEC)
        else:
            if datetime_spec is None:
                datetime_spec = DateTimeSpec(DEFAULT_DATE_SPEC)
            if time_spec is None:
                time_spec = DateTimeSpec(DEFAULT_TIME_SPEC, time_only=True)
    elif columns.jdn is not None and columns.time_str is not None and time_spec is None:
        time_spec = DateTimeSpec(DEFAULT_TIME_SPEC, time_only=True)

    if single_field and not user_provided:
        if id_col is not None:
            raise ConfigurationError("It is not possible to set SINGLE_PARAM_INDEX when multiple stations are present within one single file with an ID field")
        _assign_single_field(fields, columns, single_field, single_param_idx)

    return DecodePlan(
        fields=fields,
        skip=skip,
        columns=columns,
        mode=mode,
        id_col=id_col,
        datetime_spec=datetime_spec,
        time_spec=time_spec,
        tz=tz,
        fallback=fallback,
        header_fields=[normalize_field_name(name) for name in header_fields],
    )


def _assign_single_field(fields: list[str], columns: DateTimeColumns, single_field: str,
                         single_param_idx: Optional[int]) -> None:
    """Rename the one value column of a single parameter source."""
    if single_param_idx is not None and single_param_idx < len(fields):
        fields[single_param_idx] = single_field
    elif columns.date_str == columns.time_str and len(fields) == 2:
        fields[1 if columns.date_str == 0 else 0] = single_field
    elif columns.date_str != columns.time_str and len(fields) == 3:
        pidx = next(ii for ii in range(3) if ii not in (columns.date_str, columns.time_str))
        fields[pidx] = single_field
