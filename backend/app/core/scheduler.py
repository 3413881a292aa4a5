"""
Tradewatch background scheduler.
Uses APScheduler to periodically re-score open alerts.
"""
import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings

logger = logging.getLogger("tradewatch.scheduler")

scheduler = BackgroundScheduler()


def job_refresh_risk_scores():
    """Recompute and persist risk fields on every open alert."""
    logger.info("=== SCHEDULED JOB: risk score refresh started ===")
    try:
        from app.core.database import SessionLocal
        from app.services.risk_scoring import update_alert_risk_scores

        db = SessionLocal()
        try:
            changed = update_alert_risk_scores(db)
            logger.info(f"Risk score refresh complete: {changed} alerts changed")
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Risk score refresh job failed: {e}", exc_info=True)


def start_scheduler():
    """
    Register and start scheduled jobs.
    Called once at application startup; a no-op unless risk refresh is enabled.
    """
    if scheduler.running:
        logger.warning("Scheduler already running, skipping start")
        return
    if not settings.risk_refresh_enabled:
        logger.info("Risk refresh disabled, scheduler not started")
        return

    scheduler.add_job(
        job_refresh_risk_scores,
        IntervalTrigger(minutes=settings.risk_refresh_minutes),
        id="risk_refresh",
        name="Periodic alert risk score refresh",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()

    for job in scheduler.get_jobs():
        logger.info(f"  - {job.name} (next run: {job.next_run_time})")


def stop_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler status and next run times."""
    jobs = scheduler.get_jobs() if scheduler.running else []
    return {
        "running": scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": str(job.next_run_time) if job.next_run_time else None,
            }
            for job in jobs
        ],
    }
