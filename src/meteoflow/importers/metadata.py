"""Extraction of station metadata from header lines and file names."""

import logging
import os
from typing import Optional, Sequence

from ..exceptions import ConfigurationError, InvalidFormatError
from ..schema import NODATA, Coordinates, is_nodata
from ..utils_time import safe_float
from .base import remove_quotes, split_line
from .fields import canonical_parameter

logger = logging.getLogger(__name__)

FIELD_TYPES = ("NAME", "ID", "ALT", "LON", "LAT", "EASTING", "NORTHING", "SLOPE", "AZI", "NODATA", "PARAM", "SKIP")
NUMERIC_TYPES = {
    "ALT": "altitude",
    "LON": "longitude",
    "LAT": "latitude",
    "EASTING": "easting",
    "NORTHING": "northing",
    "SLOPE": "slope",
    "AZI": "azimuth",
}

HeaderSpecs = dict[int, list[tuple[int, str]]]


def parse_headers_spec(specs: Sequence[str]) -> HeaderSpecs:
    """
    Parse special headers specifications such as ``NAME:1:3``.

    Args:
        specs: "field_type:line:column" strings, lines and columns counting from 1

    Returns:
        dict: line number -> list of (column, field type)

    Raises:
        InvalidFormatError: If a specification is malformed
    """
    parsed: HeaderSpecs = {}
    for spec in specs:
        parts = [part.strip() for part in spec.split(':')]
        if len(parts) != 3:
            raise InvalidFormatError(f"Wrong format for Metadata specification '{spec}'")
        field_type = parts[0].upper()
        if field_type not in FIELD_TYPES:
            raise InvalidFormatError(f"Unknown parsing key '{field_type}' in Metadata specification '{spec}'")
        try:
            linenr, colnr = int(parts[1]), int(parts[2])
        except ValueError:
            raise InvalidFormatError(f"Wrong format for Metadata specification '{spec}'")
        if linenr <= 0 or colnr <= 0:
            raise InvalidFormatError(f"Line numbers and column numbers must be >0 in Metadata specification '{spec}'")
        parsed.setdefault(linenr, []).append((colnr, field_type))
    return parsed


class StationMetadata:
    """
    Station metadata gathered from the file name and the header lines.

    ID and NAME values are appended with '-' in the order they are found;
    the other fields keep the first value found.
    """

    def __init__(self, source: str):
        self.source = source
        self.id_parts: list[str] = []
        self.name_parts: list[str] = []
        self.numbers: dict[str, float] = {}
        self.nodata: Optional[str] = None
        self.param: Optional[str] = None

    @property
    def id(self) -> str:
        return "-".join(self.id_parts)

    @property
    def name(self) -> str:
        return "-".join(self.name_parts)

    def get(self, attribute: str) -> float:
        return self.numbers.get(attribute, NODATA)

    def assign(self, field_type: str, value: str) -> None:
        """
        Store a value according to its field type.

        Raises:
            InvalidFormatError: If a numeric field type holds a non numeric value
                or the field type is unknown
        """
        field_type = field_type.upper()
        if field_type == "ID":
            self.id_parts.append(value)
        elif field_type == "NAME":
            self.name_parts.append(value)
        elif field_type == "SKIP":
            return
        elif field_type == "NODATA":
            if self.nodata is None:
                self.nodata = value
        elif field_type == "PARAM":
            if self.param is None:
                self.param = canonical_parameter(value)
        elif field_type in NUMERIC_TYPES:
            number = safe_float(value)
            if number is None:
                raise InvalidFormatError(f"Could not extract metadata '{field_type}' from '{value}'", where=self.source)
            self.numbers.setdefault(NUMERIC_TYPES[field_type], number)
        else:
            raise InvalidFormatError(f"Unknown parsing key '{field_type}' when extracting metadata", where=self.source)

    def apply_header_line(self, line: str, linenr: int, specs: HeaderSpecs, delimiter: str) -> None:
        """
        Extract the metadata declared for one header line.

        Raises:
            ConfigurationError: If a specification refers to a column the line does not have
        """
        if linenr not in specs:
            return
        cells = split_line(line, delimiter)
        for colnr, field_type in specs[linenr]:
            if colnr > len(cells):
                raise ConfigurationError(
                    f"Metadata specification for '{field_type}' refers to column {colnr} but line {linenr} "
                    f"only has {len(cells)} fields", where=self.source)
            self.assign(field_type, remove_quotes(cells[colnr - 1]).strip())

    def apply_filename(self, path: str, filename_spec: str) -> None:
        """
        Extract metadata from the file name, such as ``{ID}_{NAME}-{SKIP}_-_{PARAM}``.

        Literal text between two variables delimits the first one; a leading
        literal must match the beginning of the file name. The extension is
        ignored.

        Raises:
            InvalidFormatError: If the file name does not match the specification
        """
        filename = os.path.splitext(os.path.basename(path))[0]
        mismatch = f"The filename pattern '{filename_spec}' does not match with the given filename ('{filename}') for metadata extraction"
        pos_fn = pos_mt = 0
        if not filename_spec.startswith('{'):
            start_var = filename_spec.find('{')
            if start_var == -1:
                raise InvalidFormatError("No variables defined for filename parsing", where=self.source)
            if filename[:start_var] != filename_spec[:start_var]:
                raise InvalidFormatError(mismatch, where=self.source)
            pos_fn = pos_mt = start_var

        while True:
            var_end = filename_spec.find('}', pos_mt)
            next_var = filename_spec.find('{', pos_mt + 1)
            if var_end == -1:
                if next_var != -1:
                    raise InvalidFormatError("Unclosed variable delimiter '}' in filename parsing", where=self.source)
                break

            if next_var == -1:
                value = filename[pos_fn:]
            else:
                pattern = filename_spec[var_end + 1:next_var]
                pattern_pos = filename.find(pattern, pos_fn)
                if pattern_pos == -1:
                    raise InvalidFormatError(mismatch, where=self.source)
                value = filename[pos_fn:pattern_pos]

            self.assign(filename_spec[pos_mt + 1:var_end], value)
            if next_var == -1:
                break
            pos_mt = next_var
            pos_fn += len(value) + len(pattern)

    def coordinates(self, configured: Coordinates) -> Coordinates:
        """Merge the configured position with the extracted one; configured values win."""
        merged = {}
        for attribute in ("latitude", "longitude", "altitude", "easting", "northing"):
            value = getattr(configured, attribute)
            merged[attribute] = self.get(attribute) if is_nodata(value) else value
        return Coordinates(epsg=configured.epsg, **merged)
