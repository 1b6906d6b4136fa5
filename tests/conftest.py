"""Shared fixtures for meteoflow tests."""

import pytest

from meteoflow.config import MeteoConfig, Settings
from meteoflow.schema import Coordinates, MeteoRecord, StationData
from meteoflow.utils_time import Timestamp

POSITION = "latlon (46.8, 9.81, 1560)"


@pytest.fixture
def write_csv(tmp_path):
    """Write a text file under tmp_path and return its path."""
    def _write(name: str, content: str, encoding: str = "utf-8") -> str:
        path = tmp_path / name
        path.write_bytes(content.encode(encoding))
        return str(path)
    return _write


@pytest.fixture
def input_config():
    """Build a MeteoConfig with one [Input] section declaring the given station files."""
    def _config(*paths: str, **keys) -> MeteoConfig:
        values = {"POSITION": POSITION}
        for idx, path in enumerate(paths, start=1):
            values[f"STATION{idx}"] = path
        values.update(keys)
        return MeteoConfig.from_dict({"Input": values})
    return _config


@pytest.fixture
def settings():
    return Settings(index_stride=2)


@pytest.fixture
def station():
    return StationData(
        id="WFJ2",
        name="Weissfluhjoch",
        position=Coordinates(latitude=46.8296, longitude=9.8092, altitude=2536.),
    )


@pytest.fixture
def make_series(station):
    """Hourly series starting 2020-01-01T00:00, one dict of values per record."""
    def _series(values: list[dict], start: Timestamp = None, step_hours: float = 1., st: StationData = None):
        start = start or Timestamp.from_components(2020, 1, 1)
        return [
            MeteoRecord(date=start + ii * step_hours / 24., station=st or station, values=dict(vals))
            for ii, vals in enumerate(values)
        ]
    return _series
