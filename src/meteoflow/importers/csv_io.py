"""Delimited text importer for meteorological time series."""

import logging
import os
from enum import Enum
from typing import BinaryIO, Optional

from ..config import CsvInputConfig, CsvSourceConfig, MeteoConfig, Settings, get_settings
from ..exceptions import AccessError, ConfigurationError, InvalidFormatError
from ..schema import NODATA, MeteoRecord, StationData, is_nodata
from ..utils_time import Timestamp, safe_float
from .base import ImportResult, decode_line, remove_quotes, split_line, strip_comments
from .datetime_spec import DateTimeSpec
from .fields import DecodePlan, FallbackYear, classify_fields, normalize_field_name
from .indexer import FileIndexer
from .metadata import StationMetadata, parse_headers_spec
from .units import UnitsTransform, parse_units

logger = logging.getLogger(__name__)

# Valid date transitions to look at before deciding on the file order
MIN_VALID_LINES = 10
# Lines to look at after the headers before giving up the order detection
MAX_SNIFF_LINES = 1000


class ParserState(Enum):
    """Where the header sniffing stands in a source."""

    READING_HEADERS = "reading_headers"
    CAPTURING_COLUMN_NAMES = "capturing_column_names"
    CAPTURING_UNITS = "capturing_units"
    AWAITING_FIRST_DATA = "awaiting_first_data"
    STREAMING = "streaming"
    EXHAUSTED = "exhausted"


class CsvParameters:
    """
    Everything needed to read one source: its settings, the decode plan found
    in its headers, its units and its station.

    The headers are read by ``sniff()``, which also looks at the first data
    lines in order to detect whether the timestamps are ascending.
    """

    def __init__(self, source: CsvSourceConfig):
        self.source = source
        self.file_path = source.file_path
        self.header_specs = parse_headers_spec(source.special_headers)

        datetime_spec = source.datetime_spec or source.date_spec
        self.datetime_spec = DateTimeSpec(datetime_spec) if datetime_spec else None
        self.time_spec = DateTimeSpec(source.time_spec, time_only=True) if source.time_spec else None
        self.fallback = FallbackYear(source.fallback_year, source.fallback_auto_wrap) \
            if source.fallback_year is not None else None

        if source.units:
            self.units = parse_units(source.units, ' ')
        else:
            self.units = UnitsTransform.from_vectors(source.units_offset, source.units_multiplier)

        self.plan: Optional[DecodePlan] = None
        self.station: Optional[StationData] = None
        self.nodata = "NAN"
        self.asc_order = True
        self.header_repeat_at_start = False
        self.header_fields: list[str] = []
        self.state = ParserState.READING_HEADERS

    @property
    def delimiter(self) -> str:
        return self.source.delimiter

    @property
    def filter_id(self) -> str:
        return self.source.filter_id or self.station.id

    def sniff(self) -> None:
        """
        Read the headers and the first data lines.

        Raises:
            AccessError: If the file can not be opened
            ConfigurationError: If the file is shorter than its headers, the
                columns can not be identified or no position is available
            InvalidFormatError: If the file name or a header does not match its
                metadata specification
        """
        source = self.source
        metadata = StationMetadata(self.file_path)
        if not os.path.isfile(self.file_path):
            raise AccessError(f"File '{self.file_path}' does not exist")
        if source.filename_spec:
            metadata.apply_filename(self.file_path, source.filename_spec)

        read_units = source.units_headers is not None and self.units.is_empty
        header_delimiter = source.effective_header_delimiter
        self.plan = None
        self.header_fields = []
        self.header_repeat_at_start = False
        self.state = ParserState.READING_HEADERS
        linenr = 0
        prev_dt: Optional[Timestamp] = None
        count_asc = count_dsc = 0

        try:
            with self._open() as fin:
                for _ in range(source.header_lines + MAX_SNIFF_LINES):
                    raw = fin.readline()
                    if not raw:
                        if self.header_repeat_at_start:
                            # the marker line was not counted
                            linenr += 1
                        if linenr > source.header_lines:
                            break
                        raise ConfigurationError(
                            f"Declaring {source.header_lines} header line(s) for file {self.file_path}, "
                            f"but it only contains {linenr} lines")
                    line = decode_line(raw).strip()
                    if source.header_repeat_mk and linenr < source.header_lines and not self.header_repeat_at_start \
                            and source.header_repeat_mk in line:
                        # not counted, so that special headers keep their logical line numbers
                        self.header_repeat_at_start = True
                        continue
                    linenr += 1
                    line = strip_comments(line, source.comments_mk).strip()
                    if not line:
                        continue

                    if linenr <= source.header_lines:
                        metadata.apply_header_line(line, linenr, self.header_specs, header_delimiter)
                        if linenr == source.columns_headers:
                            self.state = ParserState.CAPTURING_COLUMN_NAMES
                            self.header_fields = [remove_quotes(name) for name in split_line(line, self.delimiter)]
                        if read_units and linenr == source.units_headers:
                            self.state = ParserState.CAPTURING_UNITS
                            self.units = parse_units(line, self.delimiter)
                        continue

                    if self.plan is None:
                        self.state = ParserState.AWAITING_FIRST_DATA
                        self.plan = self._classify(metadata)
                        self.state = ParserState.STREAMING
                        continue

                    if source.dequote:
                        line = remove_quotes(line)
                    fields = split_line(line, self.delimiter)
                    if len(fields) > self.plan.max_dt_col:
                        dt = self.plan.parse_date(fields)
                        if dt is None:
                            continue
                        if prev_dt is not None:
                            if dt > prev_dt:
                                count_asc += 1
                            else:
                                count_dsc += 1
                        prev_dt = dt
                    if count_asc + count_dsc >= MIN_VALID_LINES:
                        break
        finally:
            if self.fallback is not None:
                self.fallback.reset()

        if self.plan is None:
            self.plan = self._classify(metadata)
        self.state = ParserState.EXHAUSTED
        self.asc_order = count_dsc <= count_asc
        self.nodata = source.nodata or metadata.nodata or "NAN"
        self.station = self._build_station(metadata)
        logger.debug("Sniffed %s: fields=%s asc_order=%s", self.file_path, self.plan.fields, self.asc_order)

    def _open(self) -> BinaryIO:
        try:
            return open(self.file_path, 'rb')
        except OSError as e:
            raise AccessError(f"Error opening file '{self.file_path}' for reading: {e}. "
                              "Please check file existence and permissions!")

    def _classify(self, metadata: StationMetadata) -> DecodePlan:
        return classify_fields(
            self.header_fields,
            self.source.fields,
            skip_fields=self.source.skip_fields,
            decimal_type=self.source.decimaldate_type,
            datetime_spec=self.datetime_spec,
            time_spec=self.time_spec,
            single_field=metadata.param,
            single_param_idx=self.source.single_param_idx,
            tz=self.source.tz,
            fallback=self.fallback,
        )

    def _build_station(self, metadata: StationMetadata) -> StationData:
        source = self.source
        position = metadata.coordinates(source.position)
        if not position.is_set():
            raise ConfigurationError(
                f"Missing geographic coordinates for '{self.file_path}', please consider providing the POSITION key")

        name = source.name or metadata.name or os.path.splitext(os.path.basename(self.file_path))[0]
        station_id = source.id or metadata.id or (f"ID{source.station_idx}" if source.station_idx else name)
        slope = source.slope if not is_nodata(source.slope) else metadata.get("slope")
        azimuth = source.azimuth if not is_nodata(source.azimuth) else metadata.get("azimuth")
        if not (slope == 0. or (not is_nodata(slope) and not is_nodata(azimuth))):
            slope = azimuth = NODATA
        return StationData(id=station_id, name=name, position=position, slope=slope, azimuth=azimuth)


class CsvIO:
    """
    Reader of all the delimited text sources declared in a configuration.

    Each source is sniffed once at construction. Reads keep a sparse index of
    file positions per file, so that later reads of an ascending file can start
    close to the requested date.
    """

    def __init__(self, input_config: CsvInputConfig, settings: Optional[Settings] = None):
        self.config = input_config
        self.settings = settings or get_settings()
        self.params: list[CsvParameters] = []
        self._indexers: dict[str, FileIndexer] = {}
        self.reinitialize()

    @classmethod
    def from_config(cls, cfg: MeteoConfig, settings: Optional[Settings] = None) -> "CsvIO":
        return cls(CsvInputConfig.from_config(cfg), settings)

    def reinitialize(self) -> None:
        """(Re)open all the sources: headers are sniffed again and the position indexes are dropped."""
        for indexer in self._indexers.values():
            indexer.invalidate()
        self._indexers = {}
        params = []
        for source in self.config.sources:
            source_params = CsvParameters(source)
            source_params.sniff()
            params.append(source_params)
        self.params = params

    def read_station_data(self) -> list[StationData]:
        """Stations of all sources, independently of any date."""
        return [params.station for params in self.params]

    def read_meteo_data(self, start: Timestamp, end: Timestamp) -> list[list[MeteoRecord]]:
        """
        Read all sources within [start, end].

        Returns:
            One time-ordered list of records per source, in the order of the sources
        """
        return [self.read_file(params, start, end).records for params in self.params]

    def indexer(self, file_path: str) -> FileIndexer:
        return self._indexers.setdefault(file_path, FileIndexer())

    def read_file(self, params: CsvParameters, start: Timestamp, end: Timestamp) -> ImportResult:
        """
        Read the records of one source within [start, end].

        Under the silent errors policy, rows that can not be read are logged,
        reported in the result warnings and dropped; under the errors to nodata
        policy, unparseable values become NODATA. Otherwise the first error
        aborts the read.

        Returns:
            ImportResult with the records in ascending order

        Raises:
            AccessError: If the file can not be opened
            InvalidFormatError: If a row can not be read and errors are not silent
        """
        plan = params.plan
        path = params.file_path
        nr_fields = len(plan.fields)
        size_error = params.units.check_size(nr_fields)
        if size_error:
            raise InvalidFormatError(f"In file '{path}', {size_error}")

        silent_errors = self.config.silent_errors
        warnings: list[str] = []
        records: list[MeteoRecord] = []
        indexer = self.indexer(path)
        stride = self.settings.index_stride
        source = params.source

        if params.fallback is not None:
            params.fallback.reset()
        wrapping = params.fallback is not None and params.fallback.wraps
        position = indexer.get_index(start) if params.asc_order and not wrapping else None

        if not os.path.isfile(path):
            raise AccessError(f"File '{path}' does not exist")
        with params._open() as fin:
            if position is not None:
                fin.seek(position.offset)
                linenr = position.linenr
            else:
                skip_count = source.header_lines + (1 if params.header_repeat_at_start else 0)
                for _ in range(skip_count):
                    fin.readline()
                linenr = skip_count

            while True:
                raw = fin.readline()
                if not raw:
                    break
                linenr += 1
                line = strip_comments(decode_line(raw), source.comments_mk)
                if source.dequote:
                    line = remove_quotes(line)
                line = line.strip()
                if not line:
                    continue
                if source.header_repeat_mk and source.header_repeat_mk in line:
                    linenr = self._skip_repeated_headers(fin, params, linenr, warnings)
                    continue

                fields = split_line(line, params.delimiter)
                if plan.id_col is not None:
                    if len(fields) <= plan.id_col:
                        raise InvalidFormatError(
                            f"File '{path}' declares station ID in column {plan.id_col + 1} but only has "
                            f"{len(fields)} columns at line {linenr}: '{line}'")
                    if fields[plan.id_col] != params.filter_id:
                        continue

                if len(fields) != nr_fields:
                    msg = (f"File '{path}' declares {nr_fields} columns but this does not match line {linenr} "
                           f"with {len(fields)} fields: '{line}'")
                    if not silent_errors:
                        raise InvalidFormatError(msg)
                    self._report(msg, warnings)
                    continue

                dt = plan.parse_date(fields)
                if dt is None:
                    msg = f"Date or time could not be read in file '{path}' at line {linenr}"
                    if not silent_errors:
                        raise InvalidFormatError(msg)
                    self._report(msg, warnings)
                    continue

                if linenr % stride == 0:
                    indexer.set_index(dt, fin.tell(), linenr)
                if params.asc_order:
                    if dt < start:
                        continue
                    if dt > end:
                        break
                else:
                    if dt < start:
                        break
                    if dt > end:
                        continue

                record = self._build_record(params, fields, dt, linenr, warnings)
                if record is not None:
                    records.append(record)

        if not params.asc_order:
            records.reverse()
        return ImportResult.success(records, warnings)

    def _skip_repeated_headers(self, fin: BinaryIO, params: CsvParameters, linenr: int, warnings: list[str]) -> int:
        """Skip a copy of the headers found among the data, checking its column names."""
        source = params.source
        for header_linenr in range(1, source.header_lines + 1):
            raw = fin.readline()
            if not raw:
                break
            linenr += 1
            if header_linenr != source.columns_headers or not params.header_fields:
                continue
            line = strip_comments(decode_line(raw), source.comments_mk).strip()
            names = [normalize_field_name(remove_quotes(name)) for name in split_line(line, params.delimiter)]
            if names != params.plan.header_fields:
                msg = (f"The repeated column headers at line {linenr} of file '{params.file_path}' "
                       "do not match the column headers of the file")
                if not self.config.silent_errors:
                    raise InvalidFormatError(msg)
                self._report(msg, warnings)
        return linenr

    def _build_record(self, params: CsvParameters, fields: list[str], dt: Timestamp, linenr: int,
                      warnings: list[str]) -> Optional[MeteoRecord]:
        plan = params.plan
        nodata_markers = {params.nodata, f'"{params.nodata}"', f"'{params.nodata}'"}
        values = {name: NODATA for name in plan.parameters}
        complete = True

        for ii, text in enumerate(fields):
            if ii in plan.skip:
                continue
            name = plan.fields[ii]
            if not text or text in nodata_markers:
                continue
            if text in ("NAN", "NULL"):
                values[name] = NODATA
                continue

            value = safe_float(text)
            if value is None:
                msg = f"Could not parse field '{text}' in file '{params.file_path}' at line {linenr}"
                if self.config.silent_errors:
                    self._report(msg, warnings)
                    complete = False
                    continue
                if not self.config.errors_to_nodata:
                    raise InvalidFormatError(msg)
                self._report(msg, warnings)
                value = NODATA
            values[name] = params.units.apply(ii, value)

        if not complete:
            return None
        return MeteoRecord(date=dt, station=params.station, values=values)

    @staticmethod
    def _report(msg: str, warnings: list[str]) -> None:
        logger.warning(msg)
        warnings.append(msg)
