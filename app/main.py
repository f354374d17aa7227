"""
FactLedger FastAPI application entry point.

Pipeline: entities → gated generator calls → scored facts → aggregated record
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app import __version__
from app.config import get_settings
from app.db.session import SessionLocal, check_db_connection, engine
from app.llm.router import clear_generator_cache
from app.pipeline.progress import LoggingProgressObserver
from app.pipeline.rate_limits import FixedWindowRateLimiter
from app.services.aggregation import AggregationEngine
from app.services.cost_governor import CostGovernor
from app.storage.sql_store import SqlAnalysisStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _init_services(app: FastAPI) -> None:
    """Build the long-lived services once; anything already on app.state is kept."""
    settings = get_settings()
    state = app.state
    if getattr(state, "store", None) is None:
        state.store = SqlAnalysisStore(SessionLocal)
    if getattr(state, "limiter", None) is None:
        state.limiter = FixedWindowRateLimiter()
    if getattr(state, "governor", None) is None:
        state.governor = CostGovernor(state.store, settings)
    if getattr(state, "engine", None) is None:
        state.engine = AggregationEngine(
            state.store,
            state.limiter,
            state.governor,
            settings=settings,
            observer=LoggingProgressObserver(),
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("FactLedger starting")
    try:
        try:
            check_db_connection()
            logger.info("Database connection verified")
        except Exception as e:
            logger.critical("Database unreachable: %s", e)
            raise

        _init_services(app)
        logger.info("Analysis services ready")
        yield
    finally:
        logger.info("FactLedger shutting down")
        clear_generator_cache()
        engine.dispose()
        logger.info("Database connection pool closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Internal endpoints (token-authenticated)
    from app.api.analysis import router as analysis_router

    app.include_router(analysis_router, tags=["internal"])

    @app.get("/health")
    def health() -> dict:
        """Health check endpoint. Confirms DB connectivity."""
        from sqlalchemy import text

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return {
                "status": "ok",
                "version": __version__,
                "database": "connected",
            }
        except Exception:
            from fastapi.responses import JSONResponse

            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "version": __version__,
                    "database": "disconnected",
                },
            )

    return app


app = create_app()
