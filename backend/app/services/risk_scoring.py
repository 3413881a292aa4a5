"""
Alert Risk Scoring Service
──────────────────────────
Computes a composite risk score per open alert from five sub-scores:
  1. Price deviation       (size of the price / tariff / freight move)
  2. Volume surge          (shipment volume multiple vs. normal)
  3. FX exposure           (currency volatility or currency risk)
  4. Supply-chain risk     (open alerts on the same product + critical sector)
  5. Historical volatility (detector z-score)

Each sub-score is normalized to 0-100 against a fixed ceiling; the
composite is the weighted sum. Weights, ceilings and the level ladder are
process-wide constants: changing them is a new RISK_MODEL_VERSION.
"""
import logging
import math
import statistics
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.models.alert import AnomalyType, AlertStatus
from app.services.metric_store import AlertContext, load_alert_contexts, upsert_alert_risk
from app.services.outcomes import BatchResult, ItemOutcome

logger = logging.getLogger("tradewatch.services.risk_scoring")

RISK_MODEL_VERSION = "2024.1"

# ─── Weights for composite score (sum to 1.0) ───
RISK_WEIGHTS = MappingProxyType({
    "price_deviation": 0.30,
    "volume_surge": 0.20,
    "fx_exposure": 0.20,
    "supply_chain_risk": 0.15,
    "historical_volatility": 0.15,
})

RISK_THRESHOLDS = (
    (80, "critical"),
    (60, "high"),
    (35, "medium"),
    (0, "low"),
)

RISK_LEVELS = ("low", "medium", "high", "critical")

# Input value that maps to a sub-score of 100
NORMALIZATION_CEILINGS = MappingProxyType({
    "price_spike_pct": 200.0,
    "tariff_change_pct": 100.0,
    "freight_surge_pct": 150.0,
    "volume_surge": 10.0,
    "fx_volatility": 10.0,
    "currency_risk": 5.0,
    "dependency_count": 20.0,
    "z_score": 6.0,
})

CRITICAL_SECTORS = frozenset({"Steel & Metals", "Electronics"})
CRITICAL_SECTOR_BONUS = 20.0

# Detail fields each anomaly type is expected to carry; absence marks the score partial
REQUIRED_INPUTS = MappingProxyType({
    AnomalyType.PRICE_SPIKE.value: ("percentage_change", "z_score"),
    AnomalyType.TARIFF_CHANGE.value: ("percentage_change",),
    AnomalyType.FREIGHT_SURGE.value: ("percentage_change", "z_score"),
    AnomalyType.FX_VOLATILITY.value: ("volatility", "z_score"),
})

_PRICE_CEILING_BY_TYPE = {
    AnomalyType.PRICE_SPIKE.value: "price_spike_pct",
    AnomalyType.TARIFF_CHANGE.value: "tariff_change_pct",
    AnomalyType.FREIGHT_SURGE.value: "freight_surge_pct",
}

# Sub-score above which it is called out in the prioritization reason
_NOTABLE_SUBSCORE = 40


def risk_level(score: float) -> str:
    for threshold, level in RISK_THRESHOLDS:
        if score >= threshold:
            return level
    return "low"


def _normalize(value: Optional[float], ceiling_key: str) -> float:
    if value is None:
        return 0.0
    return min(100.0, 100.0 * abs(value) / NORMALIZATION_CEILINGS[ceiling_key])


def _as_float(details: Dict[str, Any], key: str) -> Optional[float]:
    """Numeric detail value, or None when absent / non-numeric / non-finite."""
    raw = details.get(key)
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


# ══════════════════════════════════════════════════════════════════════════
#  COMPONENT SCORERS
# ══════════════════════════════════════════════════════════════════════════

def _price_deviation_score(ctx: AlertContext) -> float:
    ceiling = _PRICE_CEILING_BY_TYPE.get(ctx.anomaly_type)
    if ceiling is None:
        return 0.0
    return _normalize(_as_float(ctx.details, "percentage_change"), ceiling)


def _volume_surge_score(ctx: AlertContext) -> float:
    return _normalize(_as_float(ctx.details, "volume_surge"), "volume_surge")


def _fx_exposure_score(ctx: AlertContext) -> float:
    if ctx.anomaly_type == AnomalyType.FX_VOLATILITY.value:
        return _normalize(_as_float(ctx.details, "volatility"), "fx_volatility")
    return _normalize(_as_float(ctx.details, "currency_risk"), "currency_risk")


def _supply_chain_score(ctx: AlertContext) -> float:
    if not ctx.product_id:
        return 0.0
    score = _normalize(float(ctx.dependency_count), "dependency_count")
    if ctx.category in CRITICAL_SECTORS:
        score += CRITICAL_SECTOR_BONUS
    return min(100.0, score)


def _historical_volatility_score(ctx: AlertContext) -> float:
    return _normalize(_as_float(ctx.details, "z_score"), "z_score")


def _missing_inputs(ctx: AlertContext) -> List[str]:
    missing = [
        key for key in REQUIRED_INPUTS.get(ctx.anomaly_type, ())
        if _as_float(ctx.details, key) is None
    ]
    if not ctx.product_id:
        missing.append("product_id")
    return missing


def _prioritization_reason(level: str, breakdown: Dict[str, float], details: Dict[str, Any]) -> str:
    reasons = []
    if level == "critical":
        reasons.append("CRITICAL RISK")
    elif level == "high":
        reasons.append("HIGH RISK")

    if breakdown["price_deviation"] > _NOTABLE_SUBSCORE:
        pct = _as_float(details, "percentage_change") or 0.0
        reasons.append(f"Price deviation {pct:.1f}%")
    if breakdown["volume_surge"] > _NOTABLE_SUBSCORE:
        reasons.append("Significant volume surge")
    if breakdown["fx_exposure"] > _NOTABLE_SUBSCORE:
        reasons.append("High FX volatility exposure")
    if breakdown["supply_chain_risk"] > _NOTABLE_SUBSCORE:
        reasons.append("Critical supply chain dependency")
    if breakdown["historical_volatility"] > _NOTABLE_SUBSCORE:
        z = _as_float(details, "z_score") or 0.0
        reasons.append(f"High statistical deviation (Z-score: {z:.2f})")

    return " · ".join(reasons) or f"{level.capitalize()} priority risk"


# ══════════════════════════════════════════════════════════════════════════
#  MAIN SCORING FUNCTIONS
# ══════════════════════════════════════════════════════════════════════════

def composite_score(breakdown: Dict[str, float]) -> float:
    """Weighted sum of sub-scores, clamped to [0, 100] and rounded to 0.1."""
    total = sum(RISK_WEIGHTS[k] * breakdown[k] for k in RISK_WEIGHTS)
    return round(max(0.0, min(100.0, total)), 1)


def score_alert(ctx: AlertContext) -> ItemOutcome:
    """Score a single alert. Never raises for bad context; skips instead."""
    if ctx.anomaly_id is None:
        return ItemOutcome.skipped(ctx.alert_id, "missing_anomaly", "alert has no linked anomaly")
    if ctx.anomaly_type not in REQUIRED_INPUTS:
        return ItemOutcome.skipped(ctx.alert_id, "unknown_anomaly_type", str(ctx.anomaly_type))

    breakdown = {
        "price_deviation": round(_price_deviation_score(ctx), 1),
        "volume_surge": round(_volume_surge_score(ctx), 1),
        "fx_exposure": round(_fx_exposure_score(ctx), 1),
        "supply_chain_risk": round(_supply_chain_score(ctx), 1),
        "historical_volatility": round(_historical_volatility_score(ctx), 1),
    }
    composite = composite_score(breakdown)
    level = risk_level(composite)
    missing = _missing_inputs(ctx)

    return ItemOutcome.success(ctx.alert_id, {
        "alert_id": ctx.alert_id,
        "anomaly_id": ctx.anomaly_id,
        "anomaly_type": ctx.anomaly_type,
        "product_id": ctx.product_id,
        "detected_at": ctx.detected_at.isoformat() if ctx.detected_at else None,
        "composite_risk_score": composite,
        "risk_level": level,
        "risk_breakdown": breakdown,
        "ranking": 0,
        "prioritization_reason": _prioritization_reason(level, breakdown, ctx.details),
        "partial": bool(missing),
        "missing_inputs": missing,
        "model_version": RISK_MODEL_VERSION,
    })


def calculate_risk_scores(contexts: List[AlertContext], include_resolved: bool = False) -> BatchResult:
    """
    Score every alert and rank the results.

    Ranking: composite score descending, then most recent detection,
    then alert id. Alerts that cannot be scored are reported as skipped.
    """
    eligible = [
        c for c in contexts
        if include_resolved or c.status != AlertStatus.RESOLVED.value
    ]
    outcomes = [score_alert(c) for c in eligible]
    for o in outcomes:
        if not o.ok:
            logger.warning("Skipped alert %s: %s (%s)", o.key, o.skipped_reason, o.detail)

    detected = {c.alert_id: c.detected_at for c in eligible}
    scored = sorted((o for o in outcomes if o.ok), key=lambda o: o.key)
    scored.sort(key=lambda o: detected.get(o.key) or datetime.min, reverse=True)
    scored.sort(key=lambda o: o.value["composite_risk_score"], reverse=True)
    for i, o in enumerate(scored, start=1):
        o.value["ranking"] = i

    skipped = [o for o in outcomes if not o.ok]
    return BatchResult(outcomes=scored + skipped, total=len(eligible))


def filter_risk_scores(
    scores: List[Dict[str, Any]],
    min_score: Optional[float] = None,
    level: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Caller-side filters, always applied as: score → level → limit."""
    if level is not None and level not in RISK_LEVELS:
        raise ValidationError(f"Unknown risk level '{level}'; expected one of {', '.join(RISK_LEVELS)}")
    if limit is not None and limit < 0:
        raise ValidationError("limit must be non-negative")

    result = scores
    if min_score is not None:
        result = [s for s in result if s["composite_risk_score"] >= min_score]
    if level is not None:
        result = [s for s in result if s["risk_level"] == level]
    if limit is not None:
        result = result[:limit]
    return result


def analyze_risk(scores: List[Dict[str, Any]], top_n: int = 5) -> Dict[str, Any]:
    """Distribution, central tendency and top-N over already-ranked scores."""
    distribution = {level: 0 for level in RISK_LEVELS}
    for s in scores:
        distribution[s["risk_level"]] += 1

    values = [s["composite_risk_score"] for s in scores]
    mean = round(statistics.mean(values), 1) if values else None
    median = round(statistics.median(values), 1) if values else None

    return {
        "total": len(scores),
        "overall_risk_score": mean,
        "median_risk_score": median,
        "overall_risk_level": risk_level(mean) if mean is not None else None,
        "risk_distribution": distribution,
        "top_risks": scores[:top_n],
        "partial_count": sum(1 for s in scores if s["partial"]),
        "recommendations": _recommendations(scores, distribution, mean),
        "model_version": RISK_MODEL_VERSION,
    }


def _recommendations(scores: List[Dict[str, Any]], distribution: Dict[str, int], mean: Optional[float]) -> List[str]:
    if not scores:
        return []
    recs = []
    if distribution["critical"] > 0:
        recs.append(f"URGENT: {distribution['critical']} critical risk alerts require immediate attention")
    if distribution["high"] > 3:
        recs.append(f"{distribution['high']} high-risk alerts detected - implement risk mitigation strategies")
    if mean is not None and mean >= 60:
        recs.append("Overall risk profile is elevated - consider hedging and contingency planning")

    peak = {
        k: max(s["risk_breakdown"][k] for s in scores)
        for k in ("price_deviation", "fx_exposure", "volume_surge")
    }
    if peak["price_deviation"] > 50:
        recs.append("Price volatility is a primary risk factor - review supplier contracts and pricing models")
    if peak["fx_exposure"] > 50:
        recs.append("Currency volatility detected - implement FX hedging strategies")
    if peak["volume_surge"] > 50:
        recs.append("Volume surges detected - review demand forecasting and supply chain capacity")
    return recs


# ══════════════════════════════════════════════════════════════════════════
#  STORE-BACKED ENTRY POINTS
# ══════════════════════════════════════════════════════════════════════════

def compute_alert_risk_scores(db: Session, include_resolved: bool = False) -> BatchResult:
    contexts = load_alert_contexts(db, include_resolved=include_resolved)
    return calculate_risk_scores(contexts, include_resolved=include_resolved)


def get_risk_analysis(db: Session, top_n: int = 5) -> Dict[str, Any]:
    batch = compute_alert_risk_scores(db)
    analysis = analyze_risk(batch.values, top_n=top_n)
    analysis["skipped"] = batch.skipped
    analysis["partial"] = batch.partial
    return analysis


def update_alert_risk_scores(db: Session) -> int:
    """
    Recompute and persist risk fields for every open alert.

    Returns the number of alerts whose stored risk fields changed, so a
    second run over unchanged inputs returns 0.
    """
    batch = compute_alert_risk_scores(db)
    return upsert_alert_risk(db, batch.values)
