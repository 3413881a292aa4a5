"""Anomaly & Alert models."""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, String, Float, DateTime, ForeignKey, Enum as SAEnum, JSON,
)
from sqlalchemy.orm import relationship

from app.core.database import Base


# ── Enums ────────────────────────────────────────────────────────────────

class AnomalyType(str, enum.Enum):
    PRICE_SPIKE = "price_spike"
    TARIFF_CHANGE = "tariff_change"
    FREIGHT_SURGE = "freight_surge"
    FX_VOLATILITY = "fx_volatility"


class AlertStatus(str, enum.Enum):
    NEW = "new"
    VIEWED = "viewed"
    RESOLVED = "resolved"


# ── Anomaly (detected deviation) ─────────────────────────────────────────

class Anomaly(Base):
    """A deviation event produced by the detection pipeline."""
    __tablename__ = "anomalies"

    id = Column(String(64), primary_key=True, index=True)
    type = Column(SAEnum(AnomalyType), nullable=False)
    product_id = Column(String(64), ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    severity = Column(String(20), nullable=False, default="medium")
    detected_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Raw detector output, e.g.
    # {"percentage_change": 42.0, "z_score": 3.1, "volume_surge": 2.5,
    #  "volatility": 4.2, "currency_risk": 1.5}
    details = Column(JSON, nullable=True)

    product = relationship("Product")
    alerts = relationship("Alert", back_populates="anomaly")


# ── Alert (tracked instance) ─────────────────────────────────────────────

class Alert(Base):
    """An anomaly under review. Risk fields stay null until scored."""
    __tablename__ = "alerts"

    id = Column(String(64), primary_key=True, index=True)
    anomaly_id = Column(String(64), ForeignKey("anomalies.id", ondelete="CASCADE"), nullable=True, index=True)
    status = Column(SAEnum(AlertStatus), default=AlertStatus.NEW, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Written only by the risk-score upsert
    risk_score = Column(Float, nullable=True)           # 0-100
    risk_level = Column(String(20), nullable=True)      # low | medium | high | critical
    risk_breakdown = Column(JSON, nullable=True)

    anomaly = relationship("Anomaly", back_populates="alerts")
