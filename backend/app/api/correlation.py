"""
Correlation Analysis API
────────────────────────
Endpoints:
  GET  /api/analytics/correlation?type=all       Ranked pairwise product correlations
  GET  /api/analytics/correlation?type=sector    Sector composite correlations
  GET  /api/analytics/correlation?type=matrix    Symmetric matrix over productIds (≥2)
"""

from datetime import date
from fastapi import APIRouter, Depends, Query, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
import logging

from app.core.config import settings
from app.core.database import get_db
from app.core.errors import AnalyticsError, ValidationError
from app.services.correlation import (
    DEFAULT_WINDOW_DAYS,
    MAX_WINDOW_DAYS,
    MIN_WINDOW_DAYS,
    correlation_matrix_from_store,
    product_correlations,
    sector_correlations_from_store,
)

logger = logging.getLogger("tradewatch.api.correlation")
router = APIRouter(prefix="/api/analytics", tags=["Correlation"])


@router.get("/correlation")
def get_correlation(
    category: Optional[str] = Query(None, max_length=100),
    time_window: int = Query(DEFAULT_WINDOW_DAYS, alias="timeWindow", ge=MIN_WINDOW_DAYS, le=MAX_WINDOW_DAYS),
    type: str = Query("all", pattern="^(all|sector|matrix)$"),
    product_ids: Optional[str] = Query(None, alias="productIds", description="Comma-separated product ids"),
    min_abs: float = Query(0.0, alias="minAbs", ge=0, le=1),
    as_of: Optional[date] = Query(None, alias="asOf", description="Window end date (default: today)"),
    db: Session = Depends(get_db),
):
    """Pairwise Pearson correlations over a trailing window of daily prices."""
    end = as_of or date.today()
    deadline = settings.request_deadline_seconds
    try:
        if type == "sector":
            result = sector_correlations_from_store(db, end, time_window, deadline_seconds=deadline)
            return {**result, "type": "sector", "timeWindow": time_window}

        if type == "matrix":
            ids = [p.strip() for p in (product_ids or "").split(",") if p.strip()]
            if len(set(ids)) < 2:
                raise ValidationError("At least 2 product IDs required")
            matrix = correlation_matrix_from_store(db, ids, end, time_window, deadline_seconds=deadline)
            return {"matrix": matrix, "type": "matrix", "timeWindow": time_window}

        result = product_correlations(
            db, end, category=category, window_days=time_window,
            min_abs_coefficient=min_abs, deadline_seconds=deadline,
        )
        return {**result, "type": "all", "timeWindow": time_window}
    except (HTTPException, AnalyticsError):
        raise
    except Exception as e:
        logger.error("Correlation error (type=%s): %s", type, e)
        raise HTTPException(status_code=500, detail="Failed to analyze correlations")
