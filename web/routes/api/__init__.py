"""
API routes split by domain.

Each sub-module defines its own APIRouter which is composed
into the top-level router exposed by this package.
"""
from fastapi import APIRouter

from .health import router as health_router
from .webhooks import router as webhooks_router
from .automation import router as automation_router
from .mappings import router as mappings_router
from .changes import router as changes_router

router = APIRouter()

router.include_router(health_router, tags=["health"])
router.include_router(webhooks_router, tags=["webhooks"])
router.include_router(automation_router, tags=["automation"])
router.include_router(mappings_router, tags=["mappings"])
router.include_router(changes_router, tags=["changes"])
