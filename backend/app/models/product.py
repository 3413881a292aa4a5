"""Product reference table: the unit every price/cost series hangs off."""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from app.core.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True, index=True)
    hs_code = Column(String(12), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    category = Column(String(100), nullable=False, index=True)   # sector, e.g. "Steel & Metals"
    created_at = Column(DateTime(timezone=True), server_default=func.now())
