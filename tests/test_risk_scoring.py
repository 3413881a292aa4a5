"""Unit tests for the alert risk scorer (pure functions, no database)."""

from datetime import datetime

import pytest

from app.core.errors import ValidationError
from app.services.metric_store import AlertContext
from app.services.risk_scoring import (
    RISK_WEIGHTS,
    analyze_risk,
    calculate_risk_scores,
    composite_score,
    filter_risk_scores,
    risk_level,
    score_alert,
)


def _ctx(alert_id="A1", anomaly_type="price_spike", details=None, product_id="P1",
         category="Agriculture", dependency_count=1, status="new", detected_at=None):
    return AlertContext(
        alert_id=alert_id,
        anomaly_id=f"anom-{alert_id}",
        anomaly_type=anomaly_type,
        product_id=product_id,
        category=category,
        severity="high",
        detected_at=detected_at or datetime(2024, 5, 1),
        details=details if details is not None else {},
        status=status,
        dependency_count=dependency_count,
    )


def _score(alert_id, score, level, detected_at="2024-05-01T00:00:00"):
    return {
        "alert_id": alert_id,
        "composite_risk_score": score,
        "risk_level": level,
        "detected_at": detected_at,
        "partial": False,
        "risk_breakdown": {
            "price_deviation": 0, "volume_surge": 0, "fx_exposure": 0,
            "supply_chain_risk": 0, "historical_volatility": 0,
        },
    }


def test_weights_sum_to_one():
    assert sum(RISK_WEIGHTS.values()) == pytest.approx(1.0)


def test_weights_are_read_only():
    with pytest.raises(TypeError):
        RISK_WEIGHTS["price_deviation"] = 0.5


@pytest.mark.parametrize("score,expected", [
    (0, "low"), (34.9, "low"), (35, "medium"), (59.9, "medium"),
    (60, "high"), (79.9, "high"), (80, "critical"), (82, "critical"), (100, "critical"),
])
def test_risk_level_ladder(score, expected):
    assert risk_level(score) == expected


def test_price_spike_breakdown_and_composite():
    ctx = _ctx(
        details={"percentage_change": 100, "z_score": 3, "volume_surge": 5},
        category="Electronics",
        dependency_count=2,
    )
    outcome = score_alert(ctx)
    assert outcome.ok
    result = outcome.value
    assert result["risk_breakdown"] == {
        "price_deviation": 50.0,
        "volume_surge": 50.0,
        "fx_exposure": 0.0,
        "supply_chain_risk": 30.0,   # 2 open alerts → 10, plus critical-sector bonus
        "historical_volatility": 50.0,
    }
    assert result["composite_risk_score"] == 37.0
    assert result["risk_level"] == "medium"
    assert result["partial"] is False
    assert result["missing_inputs"] == []


def test_composite_reproduces_weighted_sum():
    outcome = score_alert(_ctx(details={"percentage_change": 77, "z_score": 2.2, "currency_risk": 1.3}))
    r = outcome.value
    expected = sum(RISK_WEIGHTS[k] * v for k, v in r["risk_breakdown"].items())
    assert r["composite_risk_score"] == pytest.approx(expected, abs=0.05)


def test_extreme_inputs_are_capped():
    ctx = _ctx(
        details={"percentage_change": 5000, "z_score": 40, "volume_surge": 99, "currency_risk": 50},
        category="Steel & Metals",
        dependency_count=100,
    )
    r = score_alert(ctx).value
    assert all(0 <= v <= 100 for v in r["risk_breakdown"].values())
    assert r["composite_risk_score"] == 100.0
    assert r["risk_level"] == "critical"
    assert r["prioritization_reason"].startswith("CRITICAL RISK")


def test_missing_required_input_marks_partial():
    r = score_alert(_ctx(anomaly_type="fx_volatility", details={"z_score": 2})).value
    assert r["risk_breakdown"]["fx_exposure"] == 0.0
    assert r["partial"] is True
    assert r["missing_inputs"] == ["volatility"]


def test_non_numeric_detail_is_treated_as_missing():
    r = score_alert(_ctx(details={"percentage_change": "n/a", "z_score": 2})).value
    assert r["risk_breakdown"]["price_deviation"] == 0.0
    assert "percentage_change" in r["missing_inputs"]


def test_missing_product_flags_supply_chain_input():
    r = score_alert(_ctx(product_id=None, details={"percentage_change": 10, "z_score": 1})).value
    assert r["risk_breakdown"]["supply_chain_risk"] == 0.0
    assert "product_id" in r["missing_inputs"]


def test_batch_skips_alert_without_anomaly():
    orphan = AlertContext(alert_id="A0", anomaly_id=None)
    batch = calculate_risk_scores([orphan, _ctx("A1", details={"percentage_change": 10, "z_score": 1})])
    assert [s["alert_id"] for s in batch.values] == ["A1"]
    assert batch.skipped == [{"key": "A0", "reason": "missing_anomaly", "detail": "alert has no linked anomaly"}]
    assert batch.partial is True


def test_resolved_alerts_excluded_by_default():
    contexts = [_ctx("A1"), _ctx("A2", status="resolved")]
    assert [s["alert_id"] for s in calculate_risk_scores(contexts).values] == ["A1"]
    assert len(calculate_risk_scores(contexts, include_resolved=True).values) == 2


def test_ranking_breaks_ties_by_most_recent_detection():
    details = {"percentage_change": 40, "z_score": 2}
    contexts = [
        _ctx("A1", details=details, detected_at=datetime(2024, 1, 1)),
        _ctx("A2", details=details, detected_at=datetime(2024, 3, 1)),
        _ctx("A3", details={"percentage_change": 180, "z_score": 5}, detected_at=datetime(2023, 1, 1)),
    ]
    ranked = calculate_risk_scores(contexts).values
    assert [s["alert_id"] for s in ranked] == ["A3", "A2", "A1"]
    assert [s["ranking"] for s in ranked] == [1, 2, 3]


def test_scoring_is_deterministic():
    contexts = [_ctx("A1", details={"percentage_change": 33, "z_score": 1.7, "volume_surge": 3})]
    assert calculate_risk_scores(contexts).values == calculate_risk_scores(contexts).values


def test_filters_apply_score_then_level_then_limit():
    scores = [
        _score("A1", 85, "critical"),
        _score("A2", 75, "high"),
        _score("A3", 70, "high"),
        _score("A4", 61, "high"),
        _score("A5", 40, "medium"),
    ]
    result = filter_risk_scores(scores, min_score=60, level="high", limit=2)
    assert [s["alert_id"] for s in result] == ["A2", "A3"]
    assert all(s["risk_level"] == "high" and s["composite_risk_score"] >= 60 for s in result)


def test_filter_rejects_unknown_level():
    with pytest.raises(ValidationError):
        filter_risk_scores([], level="extreme")


def test_analyze_risk_aggregates():
    scores = [
        _score("A1", 90, "critical"),
        _score("A2", 65, "high"),
        _score("A3", 40, "medium"),
        _score("A4", 10, "low"),
    ]
    analysis = analyze_risk(scores, top_n=2)
    assert analysis["risk_distribution"] == {"low": 1, "medium": 1, "high": 1, "critical": 1}
    assert analysis["overall_risk_score"] == 51.2
    assert analysis["median_risk_score"] == 52.5
    assert analysis["overall_risk_level"] == "medium"
    assert [s["alert_id"] for s in analysis["top_risks"]] == ["A1", "A2"]
    assert any(r.startswith("URGENT") for r in analysis["recommendations"])


def test_analyze_risk_empty():
    analysis = analyze_risk([])
    assert analysis["total"] == 0
    assert analysis["overall_risk_score"] is None
    assert analysis["top_risks"] == []


def test_composite_score_clamps():
    breakdown = {k: 100.0 for k in RISK_WEIGHTS}
    assert composite_score(breakdown) == 100.0
