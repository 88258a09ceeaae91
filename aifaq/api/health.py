"""Liveness and readiness probes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from aifaq.core.database import get_engine, metadata

logger = logging.getLogger("aifaq.health")

router = APIRouter(tags=["health"])


def _not_ready(detail: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "error", "detail": detail})


@router.get("/healthz")
def healthz():
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Ready once the database answers and every table the app writes to exists."""
    engine = get_engine()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            existing = set(inspect(conn).get_table_names())
    except SQLAlchemyError as exc:
        logger.error("readyz.database_unreachable", extra={"error_message": str(exc)})
        return _not_ready("database unreachable")

    missing = sorted(set(metadata.tables) - existing)
    if missing:
        logger.warning("readyz.missing_tables", extra={"tables": missing})
        return _not_ready(f"missing tables: {', '.join(missing)}")
    return {"status": "ok"}
