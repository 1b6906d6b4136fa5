"""Ingestion, quality control and resampling of meteorological time series."""

__version__ = "0.3.0"
