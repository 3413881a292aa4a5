"""Unit tests for the scenario modeler."""

import json

import pytest

from app.core.errors import NotFoundError, ValidationError
from app.schemas.scenario import BaseData, ScenarioDefinition, ScenarioRequest
from app.services.scenario import (
    SCENARIO_TEMPLATES,
    ScenarioTemplate,
    get_template,
    impact_level,
    landed_cost,
    list_templates,
    model_scenarios,
    run_scenario_request,
)


@pytest.fixture
def base():
    return BaseData(unit_price=100, tariff_rate=0.10, fx_rate=1.0, freight_cost=5)


def scenario(name, **deltas):
    return ScenarioDefinition(
        name=name,
        deltas={field: {"mode": mode, "value": value} for field, (mode, value) in deltas.items()},
    )


def test_baseline_landed_cost(base):
    result = model_scenarios(base, [scenario("noop")])
    assert result["baseline"]["landed_cost"] == 115.0


def test_absolute_tariff_increase(base):
    result = model_scenarios(base, [scenario("Tariff +5pp", tariff_rate=("absolute", 0.05))])
    r = result["results"][0]
    assert r["landed_cost"] == 120.0
    assert r["delta_absolute"] == 5.0
    assert r["delta_percent"] == 4.35
    assert r["impact_level"] == "negligible"
    assert r["projected_values"]["tariff_rate"] == pytest.approx(0.15)
    assert result["partial"] is False


def test_zero_deltas_reproduce_baseline(base):
    result = model_scenarios(base, [
        scenario("zero pct", unit_price=("percent", 0), fx_rate=("percent", 0)),
        scenario("zero abs", freight_cost=("absolute", 0), tariff_rate=("absolute", 0)),
        scenario("empty"),
    ])
    for r in result["results"]:
        assert r["landed_cost"] == result["baseline"]["landed_cost"]
        assert r["delta_absolute"] == 0
        assert r["delta_percent"] == 0
        assert r["impact_level"] == "negligible"
        assert {k: r["projected_values"][k] for k in result["baseline"]["values"]} == result["baseline"]["values"]


def test_model_scenarios_is_pure(base):
    scenarios = [
        scenario("FX +12%", fx_rate=("percent", 12)),
        scenario("Freight x2", freight_cost=("percent", 100)),
    ]
    first = model_scenarios(base, scenarios)
    second = model_scenarios(base, scenarios)
    assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)
    assert base.unit_price == 100 and base.tariff_rate == 0.10


def test_percent_and_absolute_are_distinct(base):
    result = model_scenarios(base, [
        scenario("pct", freight_cost=("percent", 10)),
        scenario("abs", freight_cost=("absolute", 10)),
    ])
    pct, absolute = result["results"]
    assert pct["projected_values"]["freight_cost"] == pytest.approx(5.5)
    assert absolute["projected_values"]["freight_cost"] == 15.0


def test_deltas_do_not_compound_across_scenarios(base):
    result = model_scenarios(base, [
        scenario("first", unit_price=("percent", 50)),
        scenario("second", freight_cost=("absolute", 1)),
    ])
    second = result["results"][1]
    assert second["projected_values"]["unit_price"] == 100
    assert second["landed_cost"] == 116.0


@pytest.mark.parametrize("pct,expected", [
    (0, "negligible"), (4.99, "negligible"), (5, "moderate"), (-14.99, "moderate"),
    (15, "high"), (30, "high"), (30.01, "severe"), (-45, "severe"),
])
def test_impact_bands(pct, expected):
    assert impact_level(pct) == expected


def test_zero_baseline_fails_per_scenario_only():
    zero = BaseData(unit_price=0, tariff_rate=0.1, fx_rate=1.0, freight_cost=0)
    result = model_scenarios(zero, [scenario("a", freight_cost=("absolute", 3)), scenario("b")])
    assert result["results"] == []
    assert [s["reason"] for s in result["skipped"]] == ["computation_error", "computation_error"]
    assert result["partial"] is True
    assert result["baseline"]["landed_cost"] == 0
    assert result["sensitivity"] is None


def test_unknown_field_is_rejected(base):
    with pytest.raises(ValidationError):
        model_scenarios(base, [scenario("bad", price=("percent", 10))])


def test_delta_on_absent_field_is_rejected(base):
    with pytest.raises(ValidationError):
        model_scenarios(base, [scenario("volume", volume=("percent", -10))])


def test_empty_scenario_list_is_rejected(base):
    with pytest.raises(ValidationError):
        model_scenarios(base, [])


def test_volume_scales_total_landed_cost():
    data = BaseData(unit_price=100, tariff_rate=0.10, fx_rate=1.0, freight_cost=5, volume=10)
    result = model_scenarios(data, [scenario("less", volume=("percent", -50))])
    assert result["baseline"]["total_landed_cost"] == 1150.0
    assert result["results"][0]["total_landed_cost"] == 575.0
    assert result["results"][0]["delta_percent"] == 0


def test_best_and_worst_case(base):
    result = model_scenarios(base, [
        scenario("cheaper", fx_rate=("percent", -10)),
        scenario("flat"),
        scenario("dearer", fx_rate=("percent", 40)),
    ])
    assert result["best_case"] == "cheaper"
    assert result["worst_case"] == "dearer"
    assert any(r.startswith("CRITICAL") for r in result["recommendations"])


def test_sensitivity(base):
    s = model_scenarios(base, [scenario("noop")])["sensitivity"]
    assert s["most_sensitive_field"] in ("unit_price", "fx_rate")
    assert s["elasticities"]["freight_cost"] == pytest.approx(5 / 115, abs=1e-4)


def test_landed_cost_formula():
    assert landed_cost({"unit_price": 200, "tariff_rate": 0.25, "fx_rate": 4.5, "freight_cost": 30}) == pytest.approx(1155.0)


# ── Templates ───────────────────────────────────────────────────────

def test_template_lookup(base):
    scenarios = get_template("tariff_increase")
    result = model_scenarios(base, scenarios)
    assert [r["name"] for r in result["results"]] == ["Tariff +5pp", "Tariff +10pp", "Tariff +15pp"]
    assert result["results"][0]["landed_cost"] == 120.0


@pytest.mark.parametrize("key", ["unknown", "FX_SHOCK", "__class__", ""])
def test_unknown_template(key):
    with pytest.raises(NotFoundError):
        get_template(key)


def test_every_template_runs(base):
    data = BaseData(unit_price=100, tariff_rate=0.10, fx_rate=1.0, freight_cost=5, volume=1000)
    for key in ScenarioTemplate:
        result = model_scenarios(data, get_template(key.value))
        assert result["results"]
        assert result["partial"] is False


def test_template_registry_is_read_only():
    with pytest.raises(TypeError):
        SCENARIO_TEMPLATES[ScenarioTemplate.FX_SHOCK] = {}


def test_list_templates():
    templates = list_templates()
    assert set(templates) == {t.value for t in ScenarioTemplate}
    assert templates["fx_shock"]["scenarios"][0]["deltas"] == {"fx_rate": {"mode": "percent", "value": 10}}


def test_request_with_template_and_scenarios_is_rejected(base):
    with pytest.raises(ValidationError):
        run_scenario_request(ScenarioRequest(base_data=base, template="fx_shock", scenarios=[scenario("x")]))


def test_request_with_template(base):
    result = run_scenario_request(ScenarioRequest(base_data=base, template="fx_shock"))
    assert result["template"] == "fx_shock"
    assert len(result["results"]) == 4


# ── Float overflow ──────────────────────────────────────────────────

@pytest.mark.parametrize("overrides", [
    {"unit_price": 1e308, "fx_rate": 10},
    {"volume": 1e307},
])
def test_overflowing_baseline_is_rejected(overrides):
    data = BaseData(**{"unit_price": 100, "tariff_rate": 0.10, "fx_rate": 1.0, "freight_cost": 5, **overrides})
    with pytest.raises(ValidationError):
        model_scenarios(data, [scenario("noop")])


def test_overflowing_scenario_is_skipped():
    data = BaseData(unit_price=100, tariff_rate=0.10, fx_rate=1.0, freight_cost=5, volume=1000)
    result = model_scenarios(data, [
        scenario("volume blowup", volume=("percent", 1e307)),
        scenario("fine", freight_cost=("absolute", 1)),
    ])
    assert [r["name"] for r in result["results"]] == ["fine"]
    assert result["skipped"][0]["key"] == "volume blowup"
    assert result["skipped"][0]["reason"] == "computation_error"
    assert result["partial"] is True
    json.dumps(result, allow_nan=False)


def test_sensitivity_is_none_when_bump_overflows():
    data = BaseData(unit_price=1.78e308, tariff_rate=0, fx_rate=1.0, freight_cost=0)
    result = model_scenarios(data, [scenario("flat")])
    assert result["sensitivity"] is None
    assert result["results"][0]["delta_percent"] == 0
    json.dumps(result, allow_nan=False)
