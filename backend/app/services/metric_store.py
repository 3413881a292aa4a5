"""
Metric Store Adapter
────────────────────
The only module that talks to the database on behalf of the analytics
core. Everything it hands out is plain, pre-fetched data (dataclasses,
dicts of date → value) so the scoring / correlation / scenario code
never performs I/O itself.

The single write path is ``upsert_alert_risk``.
"""
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.alert import Alert, Anomaly, AlertStatus
from app.models.observation import Observation, MetricType
from app.models.product import Product

logger = logging.getLogger("tradewatch.services.metric_store")


@dataclass
class AlertContext:
    """Everything the risk scorer needs to know about one alert."""
    alert_id: str
    anomaly_id: Optional[str]
    anomaly_type: Optional[str] = None
    product_id: Optional[str] = None
    category: Optional[str] = None
    severity: Optional[str] = None
    detected_at: Optional[datetime] = None
    details: Dict[str, Any] = field(default_factory=dict)
    status: str = AlertStatus.NEW.value
    dependency_count: int = 0


@dataclass
class ProductInfo:
    id: str
    hs_code: str
    category: str
    name: Optional[str] = None


def load_alert_contexts(db: Session, include_resolved: bool = False) -> List[AlertContext]:
    """Alerts joined with their anomaly and product, ready for scoring."""
    q = (
        db.query(Alert, Anomaly, Product)
        .outerjoin(Anomaly, Alert.anomaly_id == Anomaly.id)
        .outerjoin(Product, Anomaly.product_id == Product.id)
    )
    if not include_resolved:
        q = q.filter(Alert.status != AlertStatus.RESOLVED)
    rows = q.order_by(Alert.id).all()

    # Open alerts per product: how many live issues depend on the same supply line
    dependency = Counter(
        anomaly.product_id for alert, anomaly, _ in rows
        if anomaly is not None and anomaly.product_id and alert.status != AlertStatus.RESOLVED
    )

    contexts = []
    for alert, anomaly, product in rows:
        if anomaly is None:
            contexts.append(AlertContext(
                alert_id=alert.id,
                anomaly_id=None,
                status=_enum_value(alert.status),
            ))
            continue
        contexts.append(AlertContext(
            alert_id=alert.id,
            anomaly_id=anomaly.id,
            anomaly_type=_enum_value(anomaly.type),
            product_id=anomaly.product_id,
            category=product.category if product else None,
            severity=anomaly.severity,
            detected_at=anomaly.detected_at,
            details=dict(anomaly.details or {}),
            status=_enum_value(alert.status),
            dependency_count=dependency.get(anomaly.product_id, 0),
        ))

    logger.debug("Loaded %d alert contexts (include_resolved=%s)", len(contexts), include_resolved)
    return contexts


def load_products(
    db: Session,
    product_ids: Optional[Iterable[str]] = None,
    category: Optional[str] = None,
) -> Dict[str, ProductInfo]:
    q = db.query(Product)
    if product_ids is not None:
        q = q.filter(Product.id.in_(list(product_ids)))
    if category:
        q = q.filter(Product.category == category)
    return {
        p.id: ProductInfo(id=p.id, hs_code=p.hs_code, category=p.category, name=p.name)
        for p in q.order_by(Product.id).all()
    }


def load_series(
    db: Session,
    start: date,
    end: date,
    product_ids: Optional[Iterable[str]] = None,
    metric: MetricType = MetricType.PRICE,
) -> Dict[str, Dict[date, float]]:
    """Return product_id -> {observed_on -> value} within [start, end]."""
    q = db.query(Observation.product_id, Observation.observed_on, Observation.value).filter(
        Observation.metric == metric,
        Observation.observed_on >= start,
        Observation.observed_on <= end,
    )
    if product_ids is not None:
        q = q.filter(Observation.product_id.in_(list(product_ids)))

    series: Dict[str, Dict[date, float]] = defaultdict(dict)
    for product_id, observed_on, value in q.order_by(Observation.product_id, Observation.observed_on).all():
        series[product_id][observed_on] = float(value)
    return dict(series)


def upsert_alert_risk(db: Session, scores: List[Dict[str, Any]]) -> int:
    """
    Write risk fields keyed by alert id.

    Only rows whose stored values differ are touched, so re-running with
    unchanged inputs writes nothing. Returns the number of rows changed.
    """
    if not scores:
        return 0

    by_id = {s["alert_id"]: s for s in scores}
    alerts = db.query(Alert).filter(Alert.id.in_(list(by_id))).all()

    changed = 0
    for alert in alerts:
        s = by_id[alert.id]
        if (
            alert.risk_score == s["composite_risk_score"]
            and alert.risk_level == s["risk_level"]
            and alert.risk_breakdown == s["risk_breakdown"]
        ):
            continue
        alert.risk_score = s["composite_risk_score"]
        alert.risk_level = s["risk_level"]
        alert.risk_breakdown = dict(s["risk_breakdown"])
        changed += 1

    if changed:
        db.commit()
    logger.info("Risk upsert: %d considered, %d changed", len(alerts), changed)
    return changed


def _enum_value(v):
    return v.value if hasattr(v, "value") else v
