import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings

from app.api import (
    training,
    websocket,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("app.main")

app = FastAPI(title="Sales Call Trainer Backend", version="1.0.0")


@app.on_event("startup")
async def startup_event():
    logger.info("Sales Call Trainer Backend Starting...")

    # Validate configuration (don't raise in dev mode)
    from app.config import validate_config, ConfigValidationError

    try:
        result = validate_config(raise_on_error=settings.ENVIRONMENT == "production")
        for warning in result.get("warnings", []):
            logger.warning(f"Config warning: {warning}")
        if result.get("errors"):
            for error in result["errors"]:
                logger.error(f"Config error: {error}")
    except ConfigValidationError as e:
        logger.critical(f"FATAL: {e}")
        raise SystemExit(1)

    logger.info("Sales Call Trainer Backend Started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cancel every session timer and drop per-call state."""
    logger.info("Sales Call Trainer Backend Shutting Down...")

    try:
        from app.services.training_session import cleanup_all_sessions
        session_count = await cleanup_all_sessions()
        if session_count > 0:
            logger.info(f"Ended {session_count} active training sessions")
    except Exception as e:
        logger.error(f"Error ending training sessions: {e}")

    try:
        from app.agents.sales_engine import cleanup_all_sales_engines
        engine_count = cleanup_all_sales_engines()
        if engine_count > 0:
            logger.info(f"Cleaned up {engine_count} sales engines")
    except Exception as e:
        logger.error(f"Error cleaning up sales engines: {e}")

    try:
        from app.services.training_session import close_scoring_client
        await close_scoring_client()
    except Exception as e:
        logger.error(f"Error closing scoring client: {e}")

    logger.info("Sales Call Trainer Backend Shutdown Complete")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(training.router)
app.include_router(websocket.router)


@app.get("/")
async def root():
    return {"message": "Sales Call Trainer API", "status": "running", "version": "1.0.0"}


@app.get("/health")
async def health():
    """
    Health check endpoint.

    Returns configuration status and live resource counts
    (training sessions, sales engines, WebSocket clients).
    """
    from datetime import datetime
    from app.config import get_config_status
    from app.agents.sales_engine import get_sales_engine_count
    from app.services.training_session import get_active_session_count
    from app.api.websocket import get_connection_count

    config_status = get_config_status()
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
        "checks": {
            "config": config_status,
            "active_sessions": get_active_session_count(),
            "sales_engines": get_sales_engine_count(),
            "websocket_connections": get_connection_count(),
        },
    }

    # Sessions still run without a scorer, but nothing gets scored
    if not config_status.get("scoring_configured"):
        health_status["status"] = "degraded"

    return health_status


@app.get("/health/simple")
async def health_simple():
    """Simple health check for load balancers."""
    return {"status": "ok"}
