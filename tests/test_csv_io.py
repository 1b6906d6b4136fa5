"""Tests for the delimited text importer."""

import os

import pytest

from meteoflow.config import CsvInputConfig, CsvSourceConfig, Settings
from meteoflow.exceptions import AccessError, ConfigurationError, InvalidFormatError
from meteoflow.importers.csv_io import CsvIO, CsvParameters, ParserState
from meteoflow.schema import NODATA, Coordinates
from meteoflow.utils_time import Timestamp

START = Timestamp.from_components(2000, 1, 1)
END = Timestamp.from_components(2100, 1, 1)


def hourly_rows(count, start_hour=0, fmt="{ts},{ta},{rh}"):
    rows = []
    for ii in range(count):
        ts = Timestamp.from_components(2020, 1, 1) + (start_hour + ii) / 24.
        rows.append(fmt.format(ts=ts.to_iso(), ta=ii, rh=50 + ii))
    return rows


def read_all(csv_io, idx=0):
    return csv_io.read_file(csv_io.params[idx], START, END)


class TestCsvIOBasics:
    """Test cases for reading simple sources."""

    def test_read_simple_file(self, write_csv, input_config):
        """Test reading a source with a column header line."""
        path = write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + hourly_rows(5)) + "\n")
        csv_io = CsvIO.from_config(input_config(path))

        result = read_all(csv_io)
        assert len(result.records) == 5
        assert result.warnings == []
        first = result.records[0]
        assert first.date == Timestamp.from_components(2020, 1, 1)
        assert first.values == {"TA": 0., "RH": 50.}
        assert first.station.id == "ID1"
        assert first.station.name == "WFJ"
        assert first.station.position.altitude == 1560.

    def test_station_query(self, write_csv, input_config):
        """Test the station list, one per source."""
        path1 = write_csv("a.csv", "\n".join(["TIMESTAMP,TA,RH"] + hourly_rows(3)))
        path2 = write_csv("b.csv", "\n".join(["TIMESTAMP,TA,RH"] + hourly_rows(3)))
        csv_io = CsvIO.from_config(input_config(path1, path2, CSV2_ID="DAV", CSV2_NAME="Davos"))

        stations = csv_io.read_station_data()
        assert [station.id for station in stations] == ["ID1", "DAV"]
        assert stations[1].name == "Davos"
        assert len(csv_io.read_meteo_data(START, END)) == 2

    def test_window(self, write_csv, input_config):
        """Test that reads are bounded by the requested window."""
        path = write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + hourly_rows(10)))
        csv_io = CsvIO.from_config(input_config(path))

        start = Timestamp.from_components(2020, 1, 1, 3)
        end = Timestamp.from_components(2020, 1, 1, 5)
        records = csv_io.read_file(csv_io.params[0], start, end).records
        assert [record.get("TA") for record in records] == [3., 4., 5.]

    def test_missing_file(self, tmp_path, input_config):
        """Test that a missing file is an access error."""
        with pytest.raises(AccessError):
            CsvIO.from_config(input_config(str(tmp_path / "nope.csv")))

    def test_missing_position(self, write_csv):
        """Test that a source without coordinates is rejected."""
        path = write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + hourly_rows(2)))
        source = CsvSourceConfig(station_idx="1", file_path=path)
        with pytest.raises(ConfigurationError, match="POSITION"):
            CsvIO(CsvInputConfig(sources=[source]), Settings())

    def test_headers_shorter_than_declared(self, write_csv, input_config):
        """Test a file with fewer lines than its declared headers."""
        path = write_csv("WFJ.csv", "TIMESTAMP,TA\n")
        with pytest.raises(ConfigurationError, match="header line"):
            CsvIO.from_config(input_config(path, CSV_NR_HEADERS="3"))

    def test_sniff_states(self, write_csv):
        """Test the parser state after sniffing."""
        path = write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + hourly_rows(3)))
        source = CsvSourceConfig(station_idx="1", file_path=path, position=Coordinates(latitude=46., longitude=9.))
        params = CsvParameters(source)
        assert params.state is ParserState.READING_HEADERS
        params.sniff()
        assert params.state is ParserState.EXHAUSTED
        assert params.header_fields == ["TIMESTAMP", "TA", "RH"]


class TestCsvIOFormats:
    """Test cases for the supported text layouts."""

    def test_whitespace_delimiter_and_comments(self, write_csv, input_config):
        """Test whitespace separated columns with comments and blank lines."""
        content = "\n".join([
            "TIMESTAMP   TA  RH",
            "2020-01-01T00:00:00  1.5   80   # first",
            "",
            "# a comment line",
            "2020-01-01T01:00:00\t2.5\t81",
        ])
        path = write_csv("WFJ.dat", content)
        csv_io = CsvIO.from_config(input_config(path, CSV_DELIMITER="SPACE", CSV_COMMENTS_MK="#"))
        records = read_all(csv_io).records
        assert [record.get("TA") for record in records] == [1.5, 2.5]

    def test_dequote_and_semicolons(self, write_csv, input_config):
        """Test quoted values with a semicolon delimiter."""
        content = '"Date";"Time";"TA"\n"2020-01-01";"12:00:00";"3.5"\n'
        path = write_csv("WFJ.csv", content)
        csv_io = CsvIO.from_config(input_config(path, CSV_DELIMITER=";", CSV_DEQUOTE="true"))
        record = read_all(csv_io).records[0]
        assert record.date == Timestamp.from_components(2020, 1, 1, 12)
        assert record.get("TA") == 3.5

    def test_user_fields_and_date_specs(self, write_csv, input_config):
        """Test configured fields with custom date and time specifications."""
        content = "05.03.2021,10h07,1\n05.03.2021,10h17,2\n"
        path = write_csv("WFJ.csv", content)
        cfg = input_config(path, CSV_NR_HEADERS="0", CSV_FIELDS="DATE TIME HS",
                           CSV_DATE_SPEC="DD.MM.YYYY", CSV_TIME_SPEC="HH24hMI", TIME_ZONE="1")
        records = read_all(CsvIO.from_config(cfg)).records
        assert records[1].date == Timestamp.from_components(2021, 3, 5, 9, 17)
        assert records[1].date.timezone == 1.
        assert records[1].get("HS") == 2.

    def test_units_declaration(self, write_csv, input_config):
        """Test the UNITS key."""
        path = write_csv("WFJ.csv", "TIMESTAMP,RH,TA,VW\n2020-01-01T00:00:00,50,0,7\n")
        csv_io = CsvIO.from_config(input_config(path, CSV_UNITS="- % C -"))
        record = read_all(csv_io).records[0]
        assert record.get("RH") == pytest.approx(0.5)
        assert record.get("TA") == pytest.approx(273.15)
        assert record.get("VW") == pytest.approx(7.)

    def test_units_header_line(self, write_csv, input_config):
        """Test units read from a header line."""
        content = "TIMESTAMP,TA,HS\nTS,degC,cm\n2020-01-01T00:00:00,-5,120\n"
        path = write_csv("WFJ.csv", content)
        cfg = input_config(path, CSV_NR_HEADERS="2", CSV_UNITS_HEADERS="2")
        record = read_all(CsvIO.from_config(cfg)).records[0]
        assert record.get("TA") == pytest.approx(268.15)
        assert record.get("HS") == pytest.approx(1.2)

    def test_units_vectors_size_mismatch(self, write_csv, input_config):
        """Test that offset vectors must cover every column."""
        path = write_csv("WFJ.csv", "TIMESTAMP,TA\n2020-01-01T00:00:00,1\n")
        csv_io = CsvIO.from_config(input_config(path, CSV_UNITS_OFFSET="0 273.15 0"))
        with pytest.raises(InvalidFormatError, match="number of columns"):
            read_all(csv_io)

    def test_decimal_dates(self, write_csv, input_config):
        """Test a UNIX timestamp column."""
        path = write_csv("WFJ.csv", "TIMESTAMP,TA\n1577836800,1\n1577840400,2\n")
        csv_io = CsvIO.from_config(input_config(path, CSV_DECIMALDATE_TYPE="UNIX"))
        records = read_all(csv_io).records
        assert records[1].date == Timestamp.from_components(2020, 1, 1, 1)

    def test_nodata_markers(self, write_csv, input_config):
        """Test the nodata marker, quoted markers, NAN, NULL and empty fields."""
        content = "\n".join([
            "TIMESTAMP,TA,RH,HS",
            "2020-01-01T00:00:00,-9999,\"-9999\",1",
            "2020-01-01T01:00:00,NAN,NULL,",
        ])
        path = write_csv("WFJ.csv", content)
        csv_io = CsvIO.from_config(input_config(path, CSV_NODATA="-9999"))
        first, second = read_all(csv_io).records
        assert first.values == {"TA": NODATA, "RH": NODATA, "HS": 1.}
        assert second.values == {"TA": NODATA, "RH": NODATA, "HS": NODATA}

    def test_nodata_from_headers(self, write_csv, input_config):
        """Test a nodata marker extracted from the headers."""
        content = "nodata;-7777\nTIMESTAMP;TA\n2020-01-01T00:00:00;-7777\n"
        path = write_csv("WFJ.csv", content)
        cfg = input_config(path, CSV_DELIMITER=";", CSV_NR_HEADERS="2", CSV_COLUMNS_HEADERS="2",
                           CSV_SPECIAL_HEADERS="NODATA:1:2")
        assert read_all(CsvIO.from_config(cfg)).records[0].get("TA") == NODATA

    def test_latin1_and_bom(self, write_csv, input_config):
        """Test encodings other than plain UTF-8."""
        content = "TIMESTAMP,TA\n2020-01-01T00:00:00,1\n"
        path = write_csv("bom.csv", content, encoding="utf-8-sig")
        assert read_all(CsvIO.from_config(input_config(path))).records[0].get("TA") == 1.

        content = "name;Zürich\nTIMESTAMP;TA\n2020-01-01T00:00:00;2\n"
        path = write_csv("latin.csv", content, encoding="latin1")
        cfg = input_config(path, CSV_DELIMITER=";", CSV_NR_HEADERS="2", CSV_COLUMNS_HEADERS="2",
                           CSV_SPECIAL_HEADERS="NAME:1:2")
        csv_io = CsvIO.from_config(cfg)
        assert csv_io.read_station_data()[0].name == "Zürich"

    def test_station_id_filter(self, write_csv, input_config):
        """Test that rows of other stations are dropped."""
        content = "\n".join([
            "ID,TIMESTAMP,TA",
            "DAV,2020-01-01T00:00:00,1",
            "WFJ,2020-01-01T00:00:00,2",
            "DAV,2020-01-01T01:00:00,3",
        ])
        path = write_csv("multi.csv", content)
        csv_io = CsvIO.from_config(input_config(path, CSV_FILTER_ID="DAV"))
        assert [record.get("TA") for record in read_all(csv_io).records] == [1., 3.]

    def test_station_id_column_too_short(self, write_csv, input_config):
        """Test a row without the ID column."""
        content = "TIMESTAMP,TA,ID\n2020-01-01T00:00:00,1,DAV\n2020-01-01T01:00:00\n"
        path = write_csv("multi.csv", content)
        csv_io = CsvIO.from_config(input_config(path, CSV_FILTER_ID="DAV"))
        with pytest.raises(InvalidFormatError, match="station ID in column 3"):
            read_all(csv_io)


class TestCsvIOMetadata:
    """Test cases for station metadata."""

    def test_filename_metadata(self, write_csv, input_config):
        """Test a single parameter file described by its name."""
        content = "TIMESTAMP,VALUE\n2020-01-01T00:00:00,1.2\n"
        path = write_csv("H0118_Generoso-Calmasino_-_Precipitation.csv", content)
        csv_io = CsvIO.from_config(input_config(path, CSV_FILENAME_SPEC="{ID}_{NAME}-{SKIP}_-_{PARAM}"))

        station = csv_io.read_station_data()[0]
        assert station.id == "H0118"
        assert station.name == "Generoso"
        assert read_all(csv_io).records[0].values == {"PSUM": 1.2}

    def test_position_from_headers(self, write_csv):
        """Test coordinates extracted from the headers."""
        content = "# lat,46.5,lon,9.5,alt,1500\nTIMESTAMP,TA\n2020-01-01T00:00:00,1\n"
        path = write_csv("WFJ.csv", content)
        source = CsvSourceConfig(station_idx="1", file_path=path, header_lines=2, columns_headers=2,
                                 special_headers=["LAT:1:2", "LON:1:4", "ALT:1:6"])
        station = CsvIO(CsvInputConfig(sources=[source]), Settings()).read_station_data()[0]
        assert station.position.latitude == 46.5
        assert station.position.altitude == 1500.

    def test_metadata_column_past_end(self, write_csv, input_config):
        """Test that a metadata column beyond the fields of its line fails at initialization."""
        content = "station,WFJ\nTIMESTAMP,TA\n2020-01-01T00:00:00,1\n"
        path = write_csv("WFJ.csv", content)
        cfg = input_config(path, CSV_NR_HEADERS="2", CSV_COLUMNS_HEADERS="2", CSV_SPECIAL_HEADERS="NAME:1:5")
        with pytest.raises(ConfigurationError, match="column 5"):
            CsvIO.from_config(cfg)

    def test_slope_without_azimuth_dropped(self, write_csv, input_config):
        """Test that a slope is only kept with an azimuth, unless flat."""
        path = write_csv("WFJ.csv", "TIMESTAMP,TA\n2020-01-01T00:00:00,1\n")
        station = CsvIO.from_config(input_config(path, CSV_SLOPE="30")).read_station_data()[0]
        assert station.slope == NODATA
        station = CsvIO.from_config(input_config(path, CSV_SLOPE="30", CSV_AZIMUTH="180")).read_station_data()[0]
        assert (station.slope, station.azimuth) == (30., 180.)


class TestCsvIOErrorPolicies:
    """Test cases for row-level errors."""

    @pytest.fixture
    def bad_count_file(self, write_csv):
        rows = hourly_rows(4)
        rows[2] = rows[2].rsplit(",", 1)[0]
        return write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + rows))

    def test_field_count_mismatch_is_fatal(self, bad_count_file, input_config):
        """Test that a wrong number of fields aborts the read by default."""
        csv_io = CsvIO.from_config(input_config(bad_count_file))
        with pytest.raises(InvalidFormatError, match="line 4"):
            read_all(csv_io)

    def test_field_count_mismatch_silent(self, bad_count_file, input_config):
        """Test that silent errors skip the row and keep the others."""
        csv_io = CsvIO.from_config(input_config(bad_count_file, CSV_SILENT_ERRORS="true"))
        result = read_all(csv_io)
        assert [record.get("TA") for record in result.records] == [0., 1., 3.]
        assert len(result.warnings) == 1
        assert "line 4" in result.warnings[0]

    def test_undefined_date(self, write_csv, input_config):
        """Test an undecodable timestamp under both policies."""
        content = "TIMESTAMP,TA\n2020-01-01T00:00:00,1\n2020-13-01T00:00:00,2\n2020-01-01T02:00:00,3\n"
        path = write_csv("WFJ.csv", content)
        with pytest.raises(InvalidFormatError, match="Date or time"):
            read_all(CsvIO.from_config(input_config(path)))
        result = read_all(CsvIO.from_config(input_config(path, CSV_SILENT_ERRORS="true")))
        assert [record.get("TA") for record in result.records] == [1., 3.]

    @pytest.fixture
    def bad_value_file(self, write_csv):
        content = "TIMESTAMP,TA,RH\n2020-01-01T00:00:00,1,80\n2020-01-01T01:00:00,abc,81\n"
        return write_csv("WFJ.csv", content)

    def test_bad_value_fatal(self, bad_value_file, input_config):
        """Test that an unparseable value aborts the read by default."""
        with pytest.raises(InvalidFormatError, match="'abc'"):
            read_all(CsvIO.from_config(input_config(bad_value_file)))

    def test_bad_value_to_nodata(self, bad_value_file, input_config):
        """Test that errors to nodata keep the row."""
        result = read_all(CsvIO.from_config(input_config(bad_value_file, CSV_ERRORS_TO_NODATA="true")))
        assert result.records[1].values == {"TA": NODATA, "RH": 81.}
        assert len(result.warnings) == 1

    def test_bad_value_silent_has_priority(self, bad_value_file, input_config):
        """Test that silent errors drop the row even with errors to nodata."""
        cfg = input_config(bad_value_file, CSV_SILENT_ERRORS="true", CSV_ERRORS_TO_NODATA="true")
        result = read_all(CsvIO.from_config(cfg))
        assert len(result.records) == 1


class TestCsvIOOrderAndHeaders:
    """Test cases for record order, header repeats and the position index."""

    def test_descending_file(self, write_csv, input_config):
        """Test that descending sources are detected and returned in ascending order."""
        rows = list(reversed(hourly_rows(15)))
        path = write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + rows))
        csv_io = CsvIO.from_config(input_config(path))
        assert csv_io.params[0].asc_order is False

        start = Timestamp.from_components(2020, 1, 1, 4)
        end = Timestamp.from_components(2020, 1, 1, 7)
        records = csv_io.read_file(csv_io.params[0], start, end).records
        assert [record.get("TA") for record in records] == [4., 5., 6., 7.]

    def test_ascending_detection(self, write_csv, input_config):
        """Test that ascending sources are detected as such."""
        path = write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + hourly_rows(15)))
        assert CsvIO.from_config(input_config(path)).params[0].asc_order is True

    def test_header_repeat_mid_file(self, write_csv, input_config):
        """Test that a repeated header block is skipped and its column names checked."""
        headers = ["# station WFJ", "TIMESTAMP,TA,RH", "# units: ts,C,%"]
        lines = headers + hourly_rows(3) + ["[HEADER]"] + headers + hourly_rows(3, start_hour=3)
        path = write_csv("WFJ.csv", "\n".join(lines))
        cfg = input_config(path, CSV_NR_HEADERS="3", CSV_COLUMNS_HEADERS="2", CSV_HEADER_REPEAT_MK="[HEADER]")
        csv_io = CsvIO.from_config(cfg)
        assert csv_io.params[0].header_repeat_at_start is False

        result = read_all(csv_io)
        assert [record.get("TA") for record in result.records] == [0., 1., 2., 0., 1., 2.]
        assert result.warnings == []

    def test_header_repeat_at_start(self, write_csv, input_config):
        """Test a repeat marker on the first line, not counted as a header line."""
        lines = ["[HEADER]", "TIMESTAMP,TA,RH"] + hourly_rows(2)
        path = write_csv("WFJ.csv", "\n".join(lines))
        csv_io = CsvIO.from_config(input_config(path, CSV_HEADER_REPEAT_MK="[HEADER]"))
        assert csv_io.params[0].header_repeat_at_start is True
        assert csv_io.params[0].plan.parameters == ["TA", "RH"]
        assert len(read_all(csv_io).records) == 2

    def test_header_repeat_within_headers(self, write_csv, input_config):
        """Test a repeat marker after the first header line, not counted either."""
        lines = ["# station WFJ", "[HEADER]", "TIMESTAMP,TA,RH"] + hourly_rows(3)
        path = write_csv("WFJ.csv", "\n".join(lines))
        cfg = input_config(path, CSV_NR_HEADERS="2", CSV_COLUMNS_HEADERS="2", CSV_HEADER_REPEAT_MK="[HEADER]")
        csv_io = CsvIO.from_config(cfg)
        assert csv_io.params[0].header_repeat_at_start is True
        assert csv_io.params[0].header_fields == ["TIMESTAMP", "TA", "RH"]
        assert [record.get("TA") for record in read_all(csv_io).records] == [0., 1., 2.]

    def test_header_repeat_short_file(self, write_csv, input_config):
        """Test that the marker line is counted in the length of a file shorter than its headers."""
        path = write_csv("WFJ.csv", "[HEADER]\nTIMESTAMP,TA\n")
        with pytest.raises(ConfigurationError, match="only contains 2 lines"):
            CsvIO.from_config(input_config(path, CSV_NR_HEADERS="3", CSV_HEADER_REPEAT_MK="[HEADER]"))

    def test_dequoted_descending_file(self, write_csv, input_config):
        """Test the order detection on quoted timestamps."""
        rows = list(reversed(hourly_rows(15, fmt='"{ts}",{ta},{rh}')))
        path = write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + rows))
        csv_io = CsvIO.from_config(input_config(path, CSV_DEQUOTE="true"))
        assert csv_io.params[0].asc_order is False

        start = Timestamp.from_components(2020, 1, 1, 4)
        end = Timestamp.from_components(2020, 1, 1, 7)
        records = csv_io.read_file(csv_io.params[0], start, end).records
        assert [record.get("TA") for record in records] == [4., 5., 6., 7.]

    def test_header_repeat_mismatch(self, write_csv, input_config):
        """Test that a repeated header with other column names is an error."""
        lines = ["TIMESTAMP,TA,RH"] + hourly_rows(2) + ["[HEADER]", "TIMESTAMP,RH,TA"] + hourly_rows(2, start_hour=2)
        path = write_csv("WFJ.csv", "\n".join(lines))
        cfg = input_config(path, CSV_HEADER_REPEAT_MK="[HEADER]")
        with pytest.raises(InvalidFormatError, match="repeated column headers"):
            read_all(CsvIO.from_config(cfg))
        result = read_all(CsvIO.from_config(input_config(path, CSV_HEADER_REPEAT_MK="[HEADER]",
                                                         CSV_SILENT_ERRORS="true")))
        assert len(result.records) == 4
        assert len(result.warnings) == 1

    def test_position_index(self, write_csv, input_config, settings):
        """Test that later reads seek from the recorded positions and return the same records."""
        path = write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + hourly_rows(20)))
        csv_io = CsvIO.from_config(input_config(path), settings)
        full = read_all(csv_io).records
        indexer = csv_io.indexer(path)
        assert len(indexer) == 10

        start = Timestamp.from_components(2020, 1, 1, 12)
        position = indexer.get_index(start)
        assert position is not None
        assert position.offset < os.path.getsize(path)

        records = csv_io.read_file(csv_io.params[0], start, END).records
        assert [record.date for record in records] == [record.date for record in full[12:]]

    def test_reinitialize_invalidates_index(self, write_csv, input_config, settings):
        """Test that re-opening the sources drops the position index."""
        path = write_csv("WFJ.csv", "\n".join(["TIMESTAMP,TA,RH"] + hourly_rows(6)))
        csv_io = CsvIO.from_config(input_config(path), settings)
        read_all(csv_io)
        assert len(csv_io.indexer(path)) > 0
        csv_io.reinitialize()
        assert len(csv_io.indexer(path)) == 0
