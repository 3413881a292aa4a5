"""
Scenario Modelling Service
──────────────────────────
What-if analysis over a snapshot of trade-cost inputs:

  landed_cost = unit_price × (1 + tariff_rate) × fx_rate + freight_cost

Each scenario perturbs a copy of the snapshot (percentage or absolute
deltas, applied independently to the base values), recomputes landed
cost and classifies the move by |Δ%|:

  |Δ%| < 5      → negligible
  5  – 15      → moderate
  15 – 30      → high
  > 30         → severe

Pure: no clock, randomness or shared mutable state takes part, so the
same request always yields the same result.
"""
import enum
import logging
import math
from types import MappingProxyType
from typing import Any, Dict, List, Optional

from app.core.errors import ComputationError, NotFoundError, ValidationError
from app.schemas.scenario import BaseData, DeltaMode, FieldDelta, ScenarioDefinition, ScenarioRequest
from app.services.outcomes import BatchResult, ItemOutcome

logger = logging.getLogger("tradewatch.services.scenario")

BASE_FIELDS = ("unit_price", "tariff_rate", "fx_rate", "freight_cost", "volume")
# Fields that enter landed_cost; volume only scales the total
COST_FIELDS = ("unit_price", "tariff_rate", "fx_rate", "freight_cost")

SENSITIVITY_STEP_PCT = 1.0


# ══════════════════════════════════════════════════════════════════════════
#  TEMPLATE REGISTRY
# ══════════════════════════════════════════════════════════════════════════

class ScenarioTemplate(str, enum.Enum):
    FX_SHOCK = "fx_shock"
    TARIFF_INCREASE = "tariff_increase"
    SUPPLY_DISRUPTION = "supply_disruption"
    FREIGHT_SURGE = "freight_surge"
    COMPREHENSIVE = "comprehensive"


def _pct(value):
    return MappingProxyType({"mode": DeltaMode.PERCENT.value, "value": value})


def _abs(value):
    return MappingProxyType({"mode": DeltaMode.ABSOLUTE.value, "value": value})


SCENARIO_TEMPLATES = MappingProxyType({
    ScenarioTemplate.FX_SHOCK: MappingProxyType({
        "name": "FX Shock",
        "description": "Home currency moves ±10% / ±20% against the invoicing currency",
        "scenarios": (
            ("FX +10%", MappingProxyType({"fx_rate": _pct(10)})),
            ("FX -10%", MappingProxyType({"fx_rate": _pct(-10)})),
            ("FX +20%", MappingProxyType({"fx_rate": _pct(20)})),
            ("FX -20%", MappingProxyType({"fx_rate": _pct(-20)})),
        ),
    }),
    ScenarioTemplate.TARIFF_INCREASE: MappingProxyType({
        "name": "Tariff Increase",
        "description": "Applied tariff rate rises by 5, 10 or 15 percentage points",
        "scenarios": (
            ("Tariff +5pp", MappingProxyType({"tariff_rate": _abs(0.05)})),
            ("Tariff +10pp", MappingProxyType({"tariff_rate": _abs(0.10)})),
            ("Tariff +15pp", MappingProxyType({"tariff_rate": _abs(0.15)})),
        ),
    }),
    ScenarioTemplate.SUPPLY_DISRUPTION: MappingProxyType({
        "name": "Supply Disruption",
        "description": "Freight and supplier prices spike while available volume drops",
        "scenarios": (
            ("Moderate disruption", MappingProxyType({
                "freight_cost": _pct(50), "unit_price": _pct(10),
            })),
            ("Severe disruption", MappingProxyType({
                "freight_cost": _pct(100), "unit_price": _pct(25), "volume": _pct(-30),
            })),
        ),
    }),
    ScenarioTemplate.FREIGHT_SURGE: MappingProxyType({
        "name": "Freight Surge",
        "description": "Freight cost per unit rises 25%, 50% or 75%",
        "scenarios": (
            ("Freight +25%", MappingProxyType({"freight_cost": _pct(25)})),
            ("Freight +50%", MappingProxyType({"freight_cost": _pct(50)})),
            ("Freight +75%", MappingProxyType({"freight_cost": _pct(75)})),
        ),
    }),
    ScenarioTemplate.COMPREHENSIVE: MappingProxyType({
        "name": "Comprehensive Analysis",
        "description": "Best, base and worst case across FX, freight and tariff",
        "scenarios": (
            ("Best Case", MappingProxyType({"fx_rate": _pct(-10), "freight_cost": _pct(-20)})),
            ("Base Case", MappingProxyType({})),
            ("Worst Case", MappingProxyType({
                "fx_rate": _pct(20), "freight_cost": _pct(50), "tariff_rate": _abs(0.15),
            })),
        ),
    }),
})


def get_template(key: str) -> List[ScenarioDefinition]:
    """Fresh ScenarioDefinitions for a registry key; NotFoundError otherwise."""
    try:
        template = SCENARIO_TEMPLATES[ScenarioTemplate(key)]
    except ValueError:
        raise NotFoundError(
            f"Unknown scenario template '{key}'. Available: {', '.join(t.value for t in ScenarioTemplate)}"
        ) from None
    return [
        ScenarioDefinition(
            name=name,
            deltas={f: FieldDelta(mode=d["mode"], value=d["value"]) for f, d in deltas.items()},
        )
        for name, deltas in template["scenarios"]
    ]


def list_templates() -> Dict[str, Any]:
    """Registry contents for discovery, keyed by template key."""
    return {
        key.value: {
            "name": t["name"],
            "description": t["description"],
            "scenarios": [
                {"name": name, "deltas": {f: dict(d) for f, d in deltas.items()}}
                for name, deltas in t["scenarios"]
            ],
        }
        for key, t in SCENARIO_TEMPLATES.items()
    }


# ══════════════════════════════════════════════════════════════════════════
#  ENGINE
# ══════════════════════════════════════════════════════════════════════════

def landed_cost(values: Dict[str, Optional[float]]) -> float:
    return values["unit_price"] * (1 + values["tariff_rate"]) * values["fx_rate"] + values["freight_cost"]


def impact_level(delta_percent: float) -> str:
    magnitude = abs(delta_percent)
    if magnitude > 30:
        return "severe"
    if magnitude >= 15:
        return "high"
    if magnitude >= 5:
        return "moderate"
    return "negligible"


def _cost_breakdown(values: Dict[str, Optional[float]]) -> Dict[str, float]:
    goods = values["unit_price"] * values["fx_rate"]
    return {
        "goods_value": round(goods, 4),
        "tariff_amount": round(goods * values["tariff_rate"], 4),
        "freight_cost": round(values["freight_cost"], 4),
    }


def validate_scenarios(base: Dict[str, Optional[float]], scenarios: List[ScenarioDefinition]):
    """Reject deltas on unknown fields or fields absent from the snapshot."""
    if not scenarios:
        raise ValidationError("At least one scenario is required")
    for scenario in scenarios:
        for field in scenario.deltas:
            if field not in BASE_FIELDS:
                raise ValidationError(
                    f"Scenario '{scenario.name}': unknown field '{field}'. Allowed: {', '.join(BASE_FIELDS)}"
                )
            if base.get(field) is None:
                raise ValidationError(f"Scenario '{scenario.name}': field '{field}' is not present in base_data")


def apply_deltas(base: Dict[str, Optional[float]], deltas: Dict[str, FieldDelta]) -> Dict[str, Optional[float]]:
    """Copy of ``base`` with every delta applied to its base value."""
    projected = dict(base)
    for field in sorted(deltas):
        delta = deltas[field]
        if delta.mode == DeltaMode.PERCENT:
            projected[field] = base[field] * (1 + delta.value / 100)
        else:
            projected[field] = base[field] + delta.value
    return projected


def _snapshot(values: Dict[str, Optional[float]]) -> Dict[str, Any]:
    cost = landed_cost(values)
    volume = values.get("volume")
    return {
        "values": {f: values.get(f) for f in BASE_FIELDS},
        "landed_cost": round(cost, 4),
        "total_landed_cost": round(cost * volume, 4) if volume is not None else None,
        "cost_breakdown": _cost_breakdown(values),
    }


def _snapshot_is_finite(snap: Dict[str, Any]) -> bool:
    numbers = [snap["landed_cost"], *snap["cost_breakdown"].values()]
    numbers += [v for v in snap["values"].values() if v is not None]
    if snap["total_landed_cost"] is not None:
        numbers.append(snap["total_landed_cost"])
    return all(math.isfinite(n) for n in numbers)


def run_scenario(base: Dict[str, Optional[float]], scenario: ScenarioDefinition) -> ItemOutcome:
    try:
        base_cost = landed_cost(base)
        if base_cost == 0:
            raise ComputationError("baseline landed_cost is 0; percentage change is undefined")

        projected = apply_deltas(base, scenario.deltas)
        new_cost = landed_cost(projected)
        if not math.isfinite(new_cost):
            raise ComputationError("projected landed_cost is not finite")

        delta_abs = new_cost - base_cost
        delta_pct = round(delta_abs / base_cost * 100, 2)
        snap = _snapshot(projected)
        if not (_snapshot_is_finite(snap) and math.isfinite(delta_abs) and math.isfinite(delta_pct)):
            raise ComputationError("projected costs overflow the float range")
        return ItemOutcome.success(scenario.name, {
            "name": scenario.name,
            "projected_values": {**snap["values"], "landed_cost": snap["landed_cost"]},
            "landed_cost": snap["landed_cost"],
            "total_landed_cost": snap["total_landed_cost"],
            "cost_breakdown": snap["cost_breakdown"],
            "delta_absolute": round(delta_abs, 4),
            "delta_percent": delta_pct,
            "impact_level": impact_level(delta_pct),
        })
    except ComputationError as e:
        logger.warning("Scenario '%s' skipped: %s", scenario.name, e.message)
        return ItemOutcome.skipped(scenario.name, "computation_error", e.message)


def _sensitivity(base: Dict[str, Optional[float]]) -> Optional[Dict[str, Any]]:
    """Elasticity of landed cost to a +1% move in each cost field."""
    base_cost = landed_cost(base)
    if base_cost == 0 or not math.isfinite(base_cost):
        return None
    elasticities = {}
    for field in COST_FIELDS:
        bumped = apply_deltas(base, {field: FieldDelta(mode=DeltaMode.PERCENT, value=SENSITIVITY_STEP_PCT)})
        elasticity = (landed_cost(bumped) - base_cost) / base_cost * 100 / SENSITIVITY_STEP_PCT
        if not math.isfinite(elasticity):
            return None
        elasticities[field] = round(elasticity, 4)
    most = max(COST_FIELDS, key=lambda f: abs(elasticities[f]))
    return {"most_sensitive_field": most, "elasticities": elasticities}


def _recommendations(results: List[Dict[str, Any]], scenarios: List[ScenarioDefinition]) -> List[str]:
    if not results:
        return []
    recs = []
    worst = max(results, key=lambda r: r["delta_percent"])
    best = min(results, key=lambda r: r["delta_percent"])

    if worst["delta_percent"] > 20:
        recs.append(
            f"CRITICAL: Worst-case scenario '{worst['name']}' shows {worst['delta_percent']:.1f}% landed cost increase. "
            "Implement hedging and contingency plans immediately."
        )
    if best["delta_percent"] < -10:
        recs.append(
            f"OPPORTUNITY: Best-case scenario '{best['name']}' shows {abs(best['delta_percent']):.1f}% cost savings. "
            "Capitalize on favorable market conditions."
        )
    if worst["delta_percent"] - best["delta_percent"] > 20:
        recs.append("HIGH VOLATILITY: Scenario range indicates significant cost uncertainty. Consider hedging strategies.")

    touched = {s.name: set(s.deltas) for s in scenarios}
    severe = [r for r in results if r["impact_level"] in ("high", "severe")]
    if any("fx_rate" in touched.get(r["name"], ()) for r in severe):
        recs.append("FX Exposure: Implement currency hedging to protect against exchange rate volatility.")
    if any("freight_cost" in touched.get(r["name"], ()) for r in severe):
        recs.append("Freight Risk: Consider multi-modal transportation or alternative routes.")
    if any("tariff_rate" in touched.get(r["name"], ()) for r in severe):
        recs.append("Tariff Impact: Review FTA eligibility and preferential trade agreements.")

    recs.append(f"Cost Range: Budget for landed cost between {best['landed_cost']:.2f} and {worst['landed_cost']:.2f} per unit.")
    return recs


def model_scenarios(base_data: BaseData, scenarios: List[ScenarioDefinition]) -> Dict[str, Any]:
    """
    Run every scenario against ``base_data``.

    A scenario that cannot be computed is reported under ``skipped`` and
    the rest still return; ``partial`` tells the two states apart.
    """
    base = base_data.model_dump()
    validate_scenarios(base, scenarios)
    baseline = _snapshot(base)
    if not _snapshot_is_finite(baseline):
        raise ValidationError("base_data values are too large: baseline landed cost is not a finite number")

    outcomes = [run_scenario(base, s) for s in scenarios]
    batch = BatchResult(outcomes=outcomes, total=len(scenarios))
    results = batch.values

    best = min(results, key=lambda r: r["delta_absolute"])["name"] if results else None
    worst = max(results, key=lambda r: r["delta_absolute"])["name"] if results else None

    return {
        "baseline": baseline,
        "results": results,
        "skipped": batch.skipped,
        "partial": batch.partial,
        "best_case": best,
        "worst_case": worst,
        "sensitivity": _sensitivity(base),
        "recommendations": _recommendations(results, [s for s, o in zip(scenarios, outcomes) if o.ok]),
    }


def run_scenario_request(request: ScenarioRequest) -> Dict[str, Any]:
    """Resolve ad hoc scenarios or a template, then model them."""
    if request.template and request.scenarios:
        raise ValidationError("Provide either 'scenarios' or 'template', not both")
    if request.template:
        result = model_scenarios(request.base_data, get_template(request.template))
        result["template"] = request.template
        return result
    if not request.scenarios:
        raise ValidationError("base_data and scenarios (or a template) are required")
    return model_scenarios(request.base_data, request.scenarios)
