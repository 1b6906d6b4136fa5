"""Orchestration of reading, filtering, resampling and data generation."""

import logging
from typing import Callable, Iterator, Optional

from .config import MeteoConfig, Settings, get_settings
from .exceptions import ConfigurationError
from .importers.csv_io import CsvIO
from .processing.generators import DataGenerator
from .processing.processor import MeteoProcessor
from .schema import MeteoRecord, StationData
from .utils_time import Timestamp

logger = logging.getLogger(__name__)

FlushCallback = Callable[[list[list[MeteoRecord]]], None]


class TimeSeriesManager:
    """
    Station series at arbitrary instants.

    Raw data are read in chunks of ``buffer_days`` around the requested
    instants and filtered once (first pass). Each request then resamples the
    buffer, applies the second pass filters to the resampled records and fills
    the values still missing with the data generators.
    """

    def __init__(self, cfg: MeteoConfig, settings: Optional[Settings] = None, csv_io: Optional[CsvIO] = None):
        self.settings = settings or get_settings()
        self.io = csv_io or CsvIO.from_config(cfg, self.settings)
        self.processor = MeteoProcessor(cfg)
        self.generator = DataGenerator(cfg, self.settings)
        self._filtered: list[list[MeteoRecord]] = []
        self._buffer_start: Optional[Timestamp] = None
        self._buffer_end: Optional[Timestamp] = None

    def get_stations(self) -> list[StationData]:
        return self.io.read_station_data()

    def get_meteo_data(self, start: Timestamp, end: Timestamp) -> list[list[MeteoRecord]]:
        """
        Filtered series at their original timestamps, with generated values.

        Returns:
            One time-ordered series per station
        """
        series = self.processor.process(self.io.read_meteo_data(start, end))
        self.generator.fill_missing_all(series)
        return series

    def get_meteo_data_at(self, date: Timestamp) -> list[MeteoRecord]:
        """
        One record per station at date.

        Stations without any sample within the resampling window of date are
        left out.
        """
        self._fill_buffer(date)
        resampled = []
        for records in self._filtered:
            record = self.processor.resample(date, records)
            if record is not None:
                resampled.append(record)

        second_pass = self.processor.process([[record] for record in resampled], second_pass=True)
        output = [series[0] for series in second_pass]
        for record in output:
            self.generator.fill_missing([record])
        return output

    def clear_cache(self) -> None:
        """Drop the buffered data; the next request reads the sources again."""
        self._filtered = []
        self._buffer_start = self._buffer_end = None

    def _fill_buffer(self, date: Timestamp) -> None:
        window = self.processor.resampler.max_window
        if self._buffer_start is not None and self._buffer_start <= date - window and date + window <= self._buffer_end:
            return
        start = date - window
        end = start + max(self.settings.buffer_days, 2. * window)
        logger.debug("Filling the raw data buffer from %s to %s", start, end)
        self._filtered = self.processor.process(self.io.read_meteo_data(start, end))
        self._buffer_start, self._buffer_end = start, end

    def iter_timeseries(self, start: Timestamp, end: Timestamp, sampling_rate_min: float,
                        output_buffer_size: int = 0,
                        on_flush: Optional[FlushCallback] = None) -> Iterator[tuple[Timestamp, list[MeteoRecord]]]:
        """
        Step from start to end (inclusive) every sampling_rate_min minutes.

        Yields the records of each timestep. The records are also accumulated
        per station (in order of first appearance); every output_buffer_size
        timesteps, and once at the end, the accumulated series are passed to
        on_flush and cleared.

        Raises:
            ConfigurationError: If the sampling rate is not strictly positive
        """
        if sampling_rate_min <= 0:
            raise ConfigurationError(f"The sampling rate must be strictly positive, got {sampling_rate_min}")
        step = sampling_rate_min / (24. * 60.)
        station_index: dict[str, int] = {}
        output: list[list[MeteoRecord]] = []
        count = 0

        date = start
        while date <= end:
            count += 1
            records = self.get_meteo_data_at(date)
            for record in records:
                station_id = record.station.id
                if station_id not in station_index:
                    station_index[station_id] = len(output)
                    output.append([])
                output[station_index[station_id]].append(record)
            yield date, records

            if output_buffer_size > 0 and count % output_buffer_size == 0:
                self._flush(output, on_flush)
            date = start + count * step

        self._flush(output, on_flush)

    def read_timeseries(self, start: Timestamp, end: Timestamp, sampling_rate_min: float) -> list[list[MeteoRecord]]:
        """Resampled series of every station from start to end."""
        collected: list[list[MeteoRecord]] = []

        def _collect(series: list[list[MeteoRecord]]) -> None:
            collected.extend([list(records) for records in series])

        for _ in self.iter_timeseries(start, end, sampling_rate_min, on_flush=_collect):
            pass
        return collected

    @staticmethod
    def _flush(output: list[list[MeteoRecord]], on_flush: Optional[FlushCallback]) -> None:
        if on_flush is not None:
            logger.info("Flushing output data of %d station(s)", len(output))
            on_flush(output)
        for series in output:
            series.clear()
