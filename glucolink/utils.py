"""
Glucose unit conversion and range helpers.
"""

from typing import Literal

MGDL_PER_MMOL = 18.0182

# Target range bounds in mmol/L (72 and 180 mg/dL)
LOW_MMOL = 4.0
HIGH_MMOL = 10.0

RangeLevel = Literal["low", "normal", "high"]


def mgdl_to_mmol(value: float) -> float:
    return round(value / MGDL_PER_MMOL, 1)


def mmol_to_mgdl(value: float) -> float:
    return round(value * MGDL_PER_MMOL)


def classify_mmol(value: float) -> RangeLevel:
    """Classify a mmol/L value against the target range."""
    if value < LOW_MMOL:
        return "low"
    if value > HIGH_MMOL:
        return "high"
    return "normal"


def format_value(value_mmol: float, value_mg_per_dl: float, unit: str) -> str:
    """Format a reading for display in the preferred unit ("mmol" or "mgdl")."""
    if unit == "mgdl":
        return f"{value_mg_per_dl:.0f} mg/dL"
    return f"{value_mmol:.1f} mmol/L"
