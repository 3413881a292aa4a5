from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from app.core.config import settings
from app.core.database import init_db
from app.core.errors import setup_error_handlers
from app.core.scheduler import start_scheduler, stop_scheduler, get_scheduler_status
from app.core.rate_limit import setup_rate_limiting
from app.api import risk_scores, correlation, scenario
from app.services.risk_scoring import RISK_MODEL_VERSION

# ─── Logging ───
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-20s | %(levelname)-7s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tradewatch.main")


# ─── Lifecycle ───

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Tradewatch analytics API starting up…")
    init_db()
    start_scheduler()
    yield
    logger.info("Tradewatch analytics API shutting down…")
    stop_scheduler()


app = FastAPI(
    title="Tradewatch Analytics API",
    description="Risk scoring, correlation analysis and scenario modelling for trade anomaly monitoring",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(risk_scores.router)
app.include_router(correlation.router)
app.include_router(scenario.router)

setup_error_handlers(app)
setup_rate_limiting(app)


@app.get("/")
def root():
    return {
        "name": "Tradewatch Analytics API",
        "version": "1.0.0",
        "risk_model_version": RISK_MODEL_VERSION,
        "endpoints": {
            "risk_scores": "/api/analytics/risk-scores",
            "correlation": "/api/analytics/correlation",
            "scenario": "/api/analytics/scenario",
            "scenario_templates": "/api/analytics/scenario/templates",
            "docs": "/docs",
        },
    }


@app.get("/health")
def health():
    return {"status": "healthy", "scheduler": get_scheduler_status()}
