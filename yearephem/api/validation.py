# yearephem/api/validation.py
# Request models for the astrology blueprint (pydantic v2).
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from yearephem.core.houses import HOUSE_SYSTEMS

DEFAULT_LATITUDE = 40.7128   # New York
DEFAULT_LONGITUDE = -74.006

class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

class YearEphemerisRequest(_Request):
    year: int = Field(..., ge=1900, le=2052)
    latitude: float = Field(DEFAULT_LATITUDE, ge=-90.0, le=90.0)
    longitude: float = Field(DEFAULT_LONGITUDE, ge=-180.0, le=180.0)
    sample_interval: float = Field(12.0, alias="sampleInterval", ge=1.0, le=168.0)
    include_samples: bool = Field(True, alias="includeSamples")

    @field_validator("year", mode="before")
    @classmethod
    def validate_year(cls, v):
        """Reject booleans and fractional years before int coercion hides them."""
        if isinstance(v, bool):
            raise ValueError("year must be an integer")
        if isinstance(v, float) and not v.is_integer():
            raise ValueError("year must be an integer")
        return v

class _InstantRequest(_Request):
    year: int
    month: int = Field(..., ge=1, le=12)
    day: int = Field(..., ge=1, le=31)
    hour: float = Field(12.0, ge=0.0, le=24.0)
    minute: float = Field(0.0, ge=0.0, lt=60.0)
    second: float = Field(0.0, ge=0.0, lt=61.0)
    topocentric: bool = True

class PlanetsRequest(_InstantRequest):
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0)

    @model_validator(mode="after")
    def validate_pair(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self

class ChartRequest(_InstantRequest):
    """Houses need a place: latitude and longitude are required here."""
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    house_system: str = Field("P", alias="houseSystem")

    @field_validator("house_system")
    @classmethod
    def validate_house_system(cls, v: str) -> str:
        code = v.strip().upper()
        if code not in HOUSE_SYSTEMS:
            raise ValueError(f"houseSystem must be one of {sorted(HOUSE_SYSTEMS)}")
        return code

class CurrentChartRequest(ChartRequest):
    """Chart for now unless year, month and day are all given; whole-sign houses."""
    year: Optional[int] = None
    month: Optional[int] = Field(None, ge=1, le=12)
    day: Optional[int] = Field(None, ge=1, le=31)
    house_system: str = Field("W", alias="houseSystem")

    @property
    def has_date(self) -> bool:
        return None not in (self.year, self.month, self.day)

__all__ = [
    "YearEphemerisRequest",
    "PlanetsRequest",
    "ChartRequest",
    "CurrentChartRequest",
    "DEFAULT_LATITUDE",
    "DEFAULT_LONGITUDE",
]
