"""
Shared pytest fixtures for the Tradewatch analytics test suite.

Provides an in-memory database, a FastAPI test client bound to it, and
small seeding helpers for products, price series and alerts.
"""

from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.rate_limit import limiter
from app.main import app
from app.models.alert import Alert, Anomaly, AnomalyType, AlertStatus
from app.models.observation import Observation, MetricType
from app.models.product import Product

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema for every test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    """FastAPI test client sharing the test session."""
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True


def add_product(db, product_id: str, category: str, hs_code: str = "7208.10"):
    db.add(Product(id=product_id, hs_code=hs_code, name=f"Product {product_id}", category=category))
    db.commit()


def add_price_series(db, product_id: str, values, end: date):
    """One observation per day, the last one dated ``end``."""
    n = len(values)
    for i, value in enumerate(values):
        db.add(Observation(
            product_id=product_id,
            metric=MetricType.PRICE,
            observed_on=end - timedelta(days=n - 1 - i),
            value=value,
            source="test",
        ))
    db.commit()


def add_alert(
    db,
    alert_id: str,
    anomaly_type=AnomalyType.PRICE_SPIKE,
    product_id=None,
    details=None,
    status=AlertStatus.NEW,
    detected_at=None,
    with_anomaly: bool = True,
):
    anomaly_id = None
    if with_anomaly:
        anomaly_id = f"anom-{alert_id}"
        db.add(Anomaly(
            id=anomaly_id,
            type=anomaly_type,
            product_id=product_id,
            severity="high",
            detected_at=detected_at or datetime(2024, 5, 1, 12, 0),
            details=details or {},
        ))
    db.add(Alert(id=alert_id, anomaly_id=anomaly_id, status=status))
    db.commit()
