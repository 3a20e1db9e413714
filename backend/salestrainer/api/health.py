# backend/salestrainer/api/health.py
"""
Health endpoints.

/healthz is the cheap liveness probe; /health adds the database check,
configuration flags and the number of live realtime bridges;
/api/health/openai actually calls the OpenAI API with the configured key.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session
import httpx

from salestrainer.config import get_config_status, settings
from salestrainer.database import get_db
from salestrainer.utils.logger import logger

router = APIRouter(tags=["health"])

SERVICE_NAME = "sell-me-a-pen"


def check_database(db: Session) -> Dict[str, Any]:
    try:
        result = db.execute(text("SELECT 1 as test")).fetchone()
        return {
            "status": "healthy" if result else "unhealthy",
            "message": "Database connection successful",
        }
    except Exception as e:
        logger.error(f"[Health Check] Database failed: {e}")
        return {
            "status": "unhealthy",
            "message": "Database connection failed",
        }


async def check_openai() -> Dict[str, Any]:
    """Check OpenAI API connectivity and the configured key"""
    if not settings.OPENAI_API_KEY:
        return {"status": "unconfigured", "message": "OPENAI_API_KEY not configured"}

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(
                "https://api.openai.com/v1/models",
                headers={"Authorization": f"Bearer {settings.OPENAI_API_KEY}"},
            )
        if response.status_code == 200:
            return {"status": "healthy", "message": "OpenAI API accessible"}
        if response.status_code == 401:
            return {"status": "unhealthy", "message": "OpenAI API key rejected"}
        return {"status": "degraded", "message": f"OpenAI API returned {response.status_code}"}
    except httpx.TimeoutException:
        return {"status": "unhealthy", "message": "OpenAI API timed out"}
    except httpx.HTTPError as e:
        logger.error(f"[Health Check] OpenAI failed: {e}")
        return {"status": "unhealthy", "message": "OpenAI API unreachable"}


@router.get("/healthz")
async def healthz():
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health")
async def health(request: Request, db: Session = Depends(get_db)):
    database = check_database(db)
    bridges = getattr(request.app.state, "bridges", None)
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": database,
        "config": get_config_status(),
        "active_sessions": len(bridges) if bridges is not None else 0,
    }


@router.get("/api/health/openai")
async def health_openai():
    return await check_openai()
