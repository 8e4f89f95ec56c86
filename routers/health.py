"""
Health check endpoint for the Drive export service.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from config import config
from database import get_db
from utils.structured_logging import StructuredLogger

router = APIRouter(tags=["health"])

health_logger = StructuredLogger(service="health", logger_name="toolboard_drive.health")


@router.get("/health")
def general_health_check(db: Session = Depends(get_db)):
    """
    Returns:
        - status: healthy when the database answers, unhealthy otherwise (503)
        - connected_integrations: organizations with a connected Drive account
        - drive_mode: "mock" or "real"
        - timestamp: time of this check
    """
    now = datetime.now(timezone.utc)
    response = {
        "status": "healthy",
        "drive_mode": "mock" if config.USE_MOCK_DRIVE else "real",
        "timestamp": now.isoformat(),
    }

    try:
        db.execute(text("SELECT 1"))
        response["connected_integrations"] = (
            db.query(models.OrganizationIntegration)
            .filter(
                models.OrganizationIntegration.provider == "google_drive",
                models.OrganizationIntegration.status == "connected",
            )
            .count()
        )
    except SQLAlchemyError as e:
        health_logger.error(action="health_check", message="Database check failed", error=e)
        response["status"] = "unhealthy"
        response["error"] = "database unavailable"
        return JSONResponse(status_code=503, content=response)

    health_logger.info(
        action="health_check",
        status=response["status"],
        message="Health check passed",
        connected_integrations=response["connected_integrations"],
    )
    return response
