"""
Alert Risk Scoring API
──────────────────────
Endpoints:
  GET   /api/analytics/risk-scores     Ranked risk scores (mode=scores) or aggregate analysis (mode=analysis)
  POST  /api/analytics/risk-scores     Recompute and persist risk fields on every open alert
"""

from fastapi import APIRouter, Depends, Query, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
import logging

from app.core.database import get_db
from app.core.errors import AnalyticsError
from app.services.risk_scoring import (
    compute_alert_risk_scores,
    filter_risk_scores,
    get_risk_analysis,
    update_alert_risk_scores,
)

logger = logging.getLogger("tradewatch.api.risk_scores")
router = APIRouter(prefix="/api/analytics", tags=["Risk Scoring"])


@router.get("/risk-scores")
def get_risk_scores(
    min_score: Optional[float] = Query(None, alias="minScore", ge=0, le=100),
    risk_level: Optional[str] = Query(None, alias="riskLevel", pattern="^(low|medium|high|critical)$"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    mode: str = Query("scores", pattern="^(scores|analysis)$"),
    top: int = Query(5, ge=1, le=50, description="Top-N size for mode=analysis"),
    db: Session = Depends(get_db),
):
    """Composite risk scores per open alert, filtered by score → level → limit."""
    try:
        if mode == "analysis":
            return {"analysis": get_risk_analysis(db, top_n=top), "type": "analysis"}

        batch = compute_alert_risk_scores(db)
        scores = filter_risk_scores(batch.values, min_score=min_score, level=risk_level, limit=limit)
        return {
            "risk_scores": scores,
            "total": len(scores),
            "type": "scores",
            "partial": batch.partial,
            "skipped": batch.skipped,
        }
    except (HTTPException, AnalyticsError):
        raise
    except Exception as e:
        logger.error("Risk score error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to calculate risk scores")


@router.post("/risk-scores")
def refresh_risk_scores(db: Session = Depends(get_db)):
    """Idempotent upsert of risk fields; ``updated`` counts alerts whose stored values changed."""
    try:
        updated = update_alert_risk_scores(db)
        return {
            "success": True,
            "updated": updated,
            "message": f"Updated risk scores for {updated} alerts",
        }
    except AnalyticsError:
        raise
    except Exception as e:
        db.rollback()
        logger.error("Risk score update error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to update risk scores")
