"""API v1 router."""

from fastapi import APIRouter

from deskgate.api.v1.admin import router as admin_router
from deskgate.api.v1.sessions import router as sessions_router

router = APIRouter()

# Include sub-routers
router.include_router(sessions_router, prefix="/sessions", tags=["sessions"])
router.include_router(admin_router, prefix="/admin", tags=["admin"])
