"""
Core value types: readings, tokens and cache entries.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, computed_field

from glucolink.utils import HIGH_MMOL, LOW_MMOL


class GlucoseUnit(str, Enum):
    """Unit the sensor reported a value in."""

    MG_DL = "mg/dL"
    MMOL_L = "mmol/L"

    @classmethod
    def from_code(cls, code: int | None) -> "GlucoseUnit":
        # LibreLinkUp GlucoseUnits: 0 = mmol/L, 1 = mg/dL
        return cls.MG_DL if code == 1 else cls.MMOL_L


class Reading(BaseModel):
    """A single glucose measurement, always carrying both units."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    value_mg_per_dl: float
    value_mmol: float
    source_unit: GlucoseUnit = GlucoseUnit.MMOL_L

    @computed_field
    @property
    def is_high(self) -> bool:
        return self.value_mmol > HIGH_MMOL

    @computed_field
    @property
    def is_low(self) -> bool:
        return self.value_mmol < LOW_MMOL


@dataclass(frozen=True)
class AuthToken:
    """Bearer token issued by the login endpoint. Kept in memory only."""

    token: str
    issued_at: float

    def is_valid(self, now: float, ttl: float) -> bool:
        return now - self.issued_at < ttl


@dataclass(frozen=True)
class CacheEntry:
    """Last successfully fetched reading set. Replaced whole, never mutated."""

    readings: tuple[Reading, ...]
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_within(self, now: float, window: float) -> bool:
        # Negative age means the wall clock moved back since the fetch
        return 0 <= self.age(now) < window

    def is_fresh(self, now: float, fresh_window: float) -> bool:
        return self.is_within(now, fresh_window)
