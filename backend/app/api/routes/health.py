from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import get_db

router = APIRouter()
logger = logging.getLogger(__name__)

REQUIRED_TABLES = (
    "establishments",
    "users",
    "roles",
    "permissions",
    "timetable_periods",
    "timetable_entries",
    "chat_rooms",
    "homework",
    "activities",
)


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/ready")
def health_ready(db: Session = Depends(get_db)) -> JSONResponse:
    db_ok = True
    db_error: str | None = None
    missing_tables: list[str] = []
    try:
        db.execute(text("SELECT 1"))
        table_names = set(inspect(db.connection()).get_table_names())
        missing_tables = [name for name in REQUIRED_TABLES if name not in table_names]
    except SQLAlchemyError as exc:
        logger.warning("Readiness check failed: %s", exc)
        db_ok = False
        db_error = str(exc)

    ready = db_ok and not missing_tables
    payload = {
        "status": "ok" if ready else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": {"ok": db_ok, "missing_tables": missing_tables, "error": db_error},
    }
    return JSONResponse(status_code=200 if ready else 503, content=payload)
