"""API router: aggregates all endpoint modules."""

from __future__ import annotations

from fastapi import APIRouter

from .admin import router as admin_router
from .agents import router as agents_router
from .artifacts import router as artifacts_router
from .health import router as health_router
from .tools import router as tools_router

router = APIRouter()
router.include_router(health_router)
router.include_router(artifacts_router)
router.include_router(tools_router)
router.include_router(agents_router)
router.include_router(admin_router)
