"""Pydantic schema models for meteoflow."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .utils_time import Timestamp

NODATA = -999.0

# Canonical parameter names, in their conventional order
STANDARD_PARAMETERS = (
    "P", "TA", "RH", "TSG", "TSS", "HS", "VW", "DW", "VW_MAX",
    "RSWR", "ISWR", "ILWR", "TAU_CLD", "PSUM", "PSUM_PH",
)


def is_nodata(value: Optional[float]) -> bool:
    """Whether a value is missing (None or the sentinel)."""
    return value is None or value == NODATA


class Coordinates(BaseModel):
    """Geographic (lat/lon) and/or projected (easting/northing) position."""

    model_config = ConfigDict(frozen=True)

    latitude: float = NODATA
    longitude: float = NODATA
    altitude: float = NODATA
    easting: float = NODATA
    northing: float = NODATA
    epsg: Optional[int] = None

    def is_set(self) -> bool:
        """A position is usable when either lat/lon or easting/northing are known."""
        geographic = not is_nodata(self.latitude) and not is_nodata(self.longitude)
        projected = not is_nodata(self.easting) and not is_nodata(self.northing)
        return geographic or projected


class StationData(BaseModel):
    """Station identity, built once per source and never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    position: Coordinates = Field(default_factory=Coordinates)
    slope: float = NODATA
    azimuth: float = NODATA

    @property
    def station_hash(self) -> str:
        return f"{self.id}:{self.name}"


class MeteoRecord(BaseModel):
    """One timestamped observation of one station."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    date: Timestamp
    station: StationData
    values: dict[str, float] = Field(default_factory=dict)
    resampled: bool = False

    def get(self, param: str) -> float:
        """Value of a parameter, NODATA when absent."""
        return self.values.get(param, NODATA)

    def set(self, param: str, value: float) -> None:
        self.values[param] = value

    def has(self, param: str) -> bool:
        """Whether the parameter holds a real value."""
        return not is_nodata(self.values.get(param))

    def clone(self) -> "MeteoRecord":
        """Copy with its own value mapping; station and date are immutable and shared."""
        return self.model_copy(update={"values": dict(self.values)})
