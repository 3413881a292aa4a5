"""Pydantic schemas for what-if scenario modelling."""

import enum
from typing import Optional

from pydantic import BaseModel, Field


class DeltaMode(str, enum.Enum):
    PERCENT = "percent"     # new = base × (1 + value / 100)
    ABSOLUTE = "absolute"   # new = base + value


class FieldDelta(BaseModel):
    mode: DeltaMode
    value: float = Field(..., allow_inf_nan=False)

    class Config:
        extra = "forbid"


class ScenarioDefinition(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    # field name → delta, e.g. {"tariff_rate": {"mode": "absolute", "value": 0.05}}
    deltas: dict[str, FieldDelta] = Field(default_factory=dict)

    class Config:
        extra = "forbid"


class BaseData(BaseModel):
    """Snapshot of trade-cost inputs. ``tariff_rate`` is a fraction (0.10 = 10%)."""
    unit_price: float = Field(..., ge=0, allow_inf_nan=False)
    tariff_rate: float = Field(..., ge=0, allow_inf_nan=False)
    fx_rate: float = Field(..., gt=0, allow_inf_nan=False)
    freight_cost: float = Field(..., ge=0, allow_inf_nan=False)
    volume: Optional[float] = Field(None, ge=0, allow_inf_nan=False)

    class Config:
        extra = "forbid"


class ScenarioRequest(BaseModel):
    """Either ad hoc ``scenarios`` or a registry ``template``, not both."""
    base_data: BaseData
    scenarios: Optional[list[ScenarioDefinition]] = None
    template: Optional[str] = Field(None, max_length=50)

    class Config:
        extra = "forbid"
