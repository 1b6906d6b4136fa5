"""
Exceptions for meteoflow operations.
"""

from typing import Optional


class MeteoFlowError(Exception):
    """Base exception for meteoflow errors."""

    def __init__(self, message: str, where: Optional[str] = None):
        super().__init__(message if where is None else f"{message} [{where}]")
        self.message = message
        self.where = where


class ConfigurationError(MeteoFlowError):
    """Malformed or contradictory configuration, detected at initialization."""

    pass


class AccessError(MeteoFlowError):
    """A data source could not be opened."""

    pass


class InvalidFormatError(MeteoFlowError):
    """Content that does not follow the declared format (spec strings, rows, fields)."""

    pass


class ProcessingError(MeteoFlowError):
    """A filter or generator received inconsistent input."""

    pass
