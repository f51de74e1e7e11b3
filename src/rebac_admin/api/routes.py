"""Main API routes for the ReBAC admin backend."""

from fastapi import APIRouter

from .roles import router as roles_router
from .status import router as status_router

# Main API router
router = APIRouter()

# Include sub-routers
router.include_router(status_router, tags=["status"])
router.include_router(roles_router, tags=["roles"])
