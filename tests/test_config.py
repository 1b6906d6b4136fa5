"""Tests for the configuration layer."""

import pytest

from meteoflow.config import (
    CsvInputConfig,
    CsvSourceConfig,
    MeteoConfig,
    Settings,
    iter_numbered_keys,
    parse_position,
)
from meteoflow.exceptions import ConfigurationError
from meteoflow.schema import NODATA


class TestSettings:
    """Test cases for process-wide settings."""

    def test_defaults(self):
        """Test default values."""
        settings = Settings()
        assert settings.data_qa_logs is False
        assert settings.index_stride == 2000
        assert settings.buffer_days == 370.

    def test_from_env(self, monkeypatch):
        """Test that environment variables override the defaults."""
        monkeypatch.setenv("METEOFLOW_DATA_QA_LOGS", "on")
        monkeypatch.setenv("METEOFLOW_INDEX_STRIDE", "50")
        settings = Settings.from_env()
        assert settings.data_qa_logs is True
        assert settings.index_stride == 50


class TestMeteoConfig:
    """Test cases for the INI reader."""

    def test_load_file(self, tmp_path):
        """Test reading keys with colons and case-insensitive sections."""
        path = tmp_path / "io.ini"
        path.write_text("[Input]\nmeteopath = /data\n\n[Filters]\nTA::filter1 = min_max\nTA::arg1::min = 230\n")
        cfg = MeteoConfig(str(path))
        assert cfg.path == str(path)
        assert cfg.get("input", "METEOPATH") == "/data"
        assert cfg.get("FILTERS", "ta::filter1") == "min_max"
        assert cfg.get_float("Filters", "TA::ARG1::MIN") == 230.

    def test_missing_file(self, tmp_path):
        """Test that a missing configuration file is rejected."""
        with pytest.raises(ConfigurationError, match="does not exist"):
            MeteoConfig(str(tmp_path / "missing.ini"))

    def test_typed_getters(self):
        """Test typed accessors and their fallbacks."""
        cfg = MeteoConfig.from_dict({"Input": {"A": "12", "B": "2.5", "C": "yes", "D": "1 2  3", "E": ["x", "y"]}})
        assert cfg.get_int("Input", "A") == 12
        assert cfg.get_float("Input", "B") == 2.5
        assert cfg.get_bool("Input", "C") is True
        assert cfg.get_list("Input", "D") == ["1", "2", "3"]
        assert cfg.get_float_list("Input", "D") == [1., 2., 3.]
        assert cfg.get("Input", "E") == "x y"
        assert cfg.get_int("Input", "MISSING", 7) == 7
        assert cfg.get_bool("Other", "C", True) is True

    @pytest.mark.parametrize("getter,value", [
        ("get_int", "1.5"),
        ("get_float", "abc"),
        ("get_bool", "maybe"),
        ("get_float_list", "1 a"),
    ])
    def test_bad_values(self, getter, value):
        """Test that malformed values are configuration errors."""
        cfg = MeteoConfig.from_dict({"Input": {"KEY": value}})
        with pytest.raises(ConfigurationError, match="KEY"):
            getattr(cfg, getter)("Input", "KEY")

    def test_environment_interpolation(self, monkeypatch):
        """Test ${VAR} references."""
        monkeypatch.setenv("METEO_ROOT", "/srv/meteo")
        cfg = MeteoConfig.from_dict({"Input": {"METEOPATH": "${METEO_ROOT}/csv", "OTHER": "${UNSET_VAR_XYZ}"}})
        assert cfg.get("Input", "METEOPATH") == "/srv/meteo/csv"
        assert cfg.get("Input", "OTHER") == "${UNSET_VAR_XYZ}"

    def test_find_keys(self):
        """Test regular expression key lookup."""
        cfg = MeteoConfig.from_dict({"Input": {"STATION1": "a", "STATION10": "b", "STATION_X": "c"}})
        hits = cfg.find_keys("Input", r"STATION(\d+)")
        assert sorted(match.group(1) for _, match in hits) == ["1", "10"]

    def test_numbered_keys(self):
        """Test that numbered keys are sorted numerically."""
        cfg = MeteoConfig.from_dict({"Filters": {"TA::FILTER10": "MAX", "TA::FILTER2": "MIN", "RH::FILTER1": "MIN"}})
        assert list(iter_numbered_keys(cfg, "Filters", "TA", "FILTER")) == [(2, "MIN"), (10, "MAX")]


class TestParsePosition:
    """Test cases for station positions."""

    def test_latlon(self):
        """Test a geographic position with altitude."""
        position = parse_position("latlon (46.8, 9.81, 1560)")
        assert (position.latitude, position.longitude, position.altitude) == (46.8, 9.81, 1560.)

    def test_xy_without_altitude(self):
        """Test a projected position without altitude."""
        position = parse_position("xy 780000 190000")
        assert position.easting == 780000.
        assert position.altitude == NODATA

    @pytest.mark.parametrize("spec", ["46.8, 9.81", "latlon (46.8)", "latlon (a, b, c)"])
    def test_invalid(self, spec):
        """Test malformed positions."""
        with pytest.raises(ConfigurationError):
            parse_position(spec)


class TestCsvConfig:
    """Test cases for source settings resolution."""

    def test_station_keys_override_global_keys(self):
        """Test CSV#_ keys over CSV_ keys."""
        cfg = MeteoConfig.from_dict({"Input": {
            "METEOPATH": "/data",
            "TIME_ZONE": "1",
            "POSITION": "latlon (46, 9, 1000)",
            "STATION1": "a.csv",
            "STATION2": "b.csv",
            "POSITION2": "latlon (47, 8, 500)",
            "CSV_DELIMITER": ";",
            "CSV2_DELIMITER": "TAB",
            "CSV_SKIP_FIELDS": "2 3",
            "CSV_SILENT_ERRORS": "true",
        }})
        config = CsvInputConfig.from_config(cfg)
        first, second = config.sources
        assert config.silent_errors is True
        assert first.file_path == "/data/a.csv"
        assert first.tz == 1.
        assert first.delimiter == ";"
        assert second.delimiter == " "
        assert first.skip_fields == [1, 2]
        assert second.position.latitude == 47.

    def test_station_order(self):
        """Test that sources follow the numeric order of their keys."""
        cfg = MeteoConfig.from_dict({"Input": {"STATION10": "b.csv", "STATION2": "a.csv"}})
        config = CsvInputConfig.from_config(cfg)
        assert [source.station_idx for source in config.sources] == ["2", "10"]

    def test_no_stations(self):
        """Test an input section without stations."""
        with pytest.raises(ConfigurationError, match="STATION"):
            CsvInputConfig.from_config(MeteoConfig.from_dict({"Input": {"METEOPATH": "/data"}}))

    def test_date_keys_resolved_as_group(self):
        """Test that a per-station date key hides all global date keys."""
        cfg = MeteoConfig.from_dict({"Input": {
            "STATION1": "a.csv",
            "CSV_DATE_SPEC": "DD.MM.YYYY",
            "CSV_TIME_SPEC": "HH24:MI",
            "CSV1_DATETIME_SPEC": "YYYYMMDDHH24MI",
        }})
        source = CsvSourceConfig.from_config(cfg, "1", "a.csv")
        assert source.datetime_spec == "YYYYMMDDHH24MI"
        assert source.date_spec == ""

    def test_columns_headers_beyond_headers(self):
        """Test that a column header line past the headers is ignored."""
        cfg = MeteoConfig.from_dict({"Input": {
            "STATION1": "a.csv", "CSV_NR_HEADERS": "1", "CSV_COLUMNS_HEADERS": "3", "CSV_FIELDS": "TIMESTAMP TA",
        }})
        source = CsvSourceConfig.from_config(cfg, "1", "a.csv")
        assert source.columns_headers is None

    @pytest.mark.parametrize("keys,message", [
        ({"CSV_DELIMITER": "::"}, "single character"),
        ({"CSV_COMMENTS_MK": "//"}, "single character"),
        ({"CSV_DECIMALDATE_TYPE": "EPOCH"}, "Unknown decimal date type"),
        ({"CSV_UNITS": "C", "CSV_UNITS_OFFSET": "0"}, "UNITS"),
        ({"CSV_DECIMALDATE_TYPE": "UNIX", "CSV_DATETIME_SPEC": "YYYY-MM-DD"}, "DECIMALDATE_TYPE"),
        ({"CSV_DATETIME_SPEC": "YYYY-MM-DD", "CSV_TIME_SPEC": "HH24:MI"}, "DATETIME_SPEC"),
        ({"CSV_DATE_SPEC": "YYYY-MM-DD"}, "both DATE_SPEC and TIME_SPEC"),
        ({"CSV_NR_HEADERS": "0"}, "COLUMNS_HEADERS"),
        ({"CSV_SKIP_FIELDS": "1 x"}, "integers"),
    ])
    def test_invalid_settings(self, keys, message):
        """Test contradictory or malformed source settings."""
        cfg = MeteoConfig.from_dict({"Input": {"STATION1": "a.csv", **keys}})
        with pytest.raises(ConfigurationError, match=message):
            CsvSourceConfig.from_config(cfg, "1", "a.csv")
