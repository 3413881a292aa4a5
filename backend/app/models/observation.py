"""
Observation model: one dated value of a tracked metric.

Rows are written by the ingestion pipeline; the analytics core only reads them.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Float, Date, ForeignKey, Enum as SAEnum, UniqueConstraint,
)

from app.core.database import Base


class MetricType(str, enum.Enum):
    PRICE = "price"
    TARIFF = "tariff"
    FREIGHT = "freight"
    FX = "fx"


class Observation(Base):
    __tablename__ = "observations"
    __table_args__ = (
        UniqueConstraint("product_id", "metric", "observed_on", name="uq_observation_series_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(String(64), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    metric = Column(SAEnum(MetricType), nullable=False, default=MetricType.PRICE)
    observed_on = Column(Date, nullable=False, index=True)
    value = Column(Float, nullable=False)
    source = Column(String(100), nullable=True)
