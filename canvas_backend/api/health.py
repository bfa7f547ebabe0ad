"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..core.logging import get_logger

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health")
async def health(request: Request):
    db_ok = False
    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
            db_ok = True
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Health check database query failed", data={"error": str(e)})

    tracker = request.app.state.invocation_tracker
    return {
        "status": "ok" if db_ok else "degraded",
        "db_ok": db_ok,
        "in_flight": tracker.in_flight,
    }
