from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from salestrainer.config import settings
from salestrainer.database import init_db
from salestrainer.realtime.bridge import BridgeRegistry
from salestrainer.services.outcome_classifier import OutcomeClassifier
from salestrainer.utils.logger import logger

from salestrainer.api import (
    chat,
    health,
    sessions,
)

app = FastAPI(title="Sell Me a Pen Sales Trainer", version="1.0.0")
app.state.bridges = BridgeRegistry()


@app.on_event("startup")
async def startup_event():
    logger.info("Sales trainer starting...")

    # Validate configuration (don't raise in dev mode)
    from salestrainer.config import validate_config, ConfigValidationError

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

    init_db()
    logger.info("Database tables created/verified")
    logger.info("Sales trainer started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on shutdown."""
    logger.info("Sales trainer shutting down...")

    try:
        closed = await app.state.bridges.close_all()
        if closed > 0:
            logger.info(f"Closed {closed} live realtime sessions")
    except Exception as e:
        logger.error(f"Error closing realtime sessions: {e}")

    try:
        await OutcomeClassifier.close_client()
    except Exception as e:
        logger.error(f"Error closing classifier client: {e}")

    logger.info("Sales trainer shutdown complete")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health.router)
app.include_router(chat.router)
app.include_router(sessions.router)


@app.get("/")
async def root():
    return {"message": "Sell Me a Pen Sales Trainer API", "status": "running", "version": "1.0.0"}
