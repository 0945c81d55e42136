"""System routes: health check and demo data seeding."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.auth import get_optional_user
from helpdesk.cache import cache
from helpdesk.database import get_db
from helpdesk.seed import seed_database

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["System"])


@router.get("/health")
async def health(db: Session = Depends(get_db)):
    """Liveness plus a database round trip. Returns 503 when the database is unreachable."""
    checks = {"database": "ok", "cache": f"{len(cache)} entries"}
    status_code = 200
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check: database unavailable")
        checks["database"] = "unavailable"
        status_code = 503
    body = {
        "status": "ok" if status_code == 200 else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
    return JSONResponse(status_code=status_code, content=body)


@router.post("/seed")
async def seed_data(request: Request, current_user: Optional[models.UserModel] = Depends(get_optional_user), db: Session = Depends(get_db)):
    """Seed demo data for development (idempotent).

    Intended for development and test environments. Calling it again only
    fills tables that are still empty.
    """
    return seed_database(db=db, current_user=current_user, request=request)
