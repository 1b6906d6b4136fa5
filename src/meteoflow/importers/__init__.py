"""Importers package for meteoflow."""

from .base import ImportResult
from .csv_io import CsvIO, CsvParameters
