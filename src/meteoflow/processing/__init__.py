"""Filters, data generators and time restrictions applied to station series."""

from .base import ProcessingStage
from .filters import FILTERS, ProcessingBlock, create_filter
from .generators import GENERATORS, DataGenerator, GeneratorAlgorithm, create_generator
from .processor import MeteoProcessor
from .restrictions import DateRange, RestrictionsIdx
from .stack import FlaggedValue, ProcessingStack

__all__ = [
    "FILTERS",
    "GENERATORS",
    "DataGenerator",
    "DateRange",
    "FlaggedValue",
    "GeneratorAlgorithm",
    "MeteoProcessor",
    "ProcessingBlock",
    "ProcessingStack",
    "ProcessingStage",
    "RestrictionsIdx",
    "create_filter",
    "create_generator",
]
