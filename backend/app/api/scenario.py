"""
Scenario Modelling API
──────────────────────
Endpoints:
  POST /api/analytics/scenario             Model ad hoc scenarios or a template against base_data
  GET  /api/analytics/scenario/templates   Template registry for discovery
"""

from fastapi import APIRouter, HTTPException
import logging

from app.core.errors import AnalyticsError
from app.schemas.scenario import ScenarioRequest
from app.services.scenario import list_templates, run_scenario_request

logger = logging.getLogger("tradewatch.api.scenario")
router = APIRouter(prefix="/api/analytics", tags=["Scenario Modelling"])


@router.post("/scenario")
def post_scenario(body: ScenarioRequest):
    """Landed-cost what-if analysis. Body: ``{base_data, scenarios}`` or ``{base_data, template}``."""
    try:
        return run_scenario_request(body)
    except AnalyticsError:
        raise
    except Exception as e:
        logger.error("Scenario error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to model scenarios")


@router.get("/scenario/templates")
def get_scenario_templates():
    return {"templates": list_templates()}
