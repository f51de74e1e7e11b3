"""Unauthenticated status and version endpoints."""

from fastapi import APIRouter

from ..config import get_settings
from .responses import respond

router = APIRouter()


@router.get("/status")
async def status():
    settings = get_settings()
    return respond(
        data={
            "status": "ok",
            "authorization_enabled": settings.authorization_enabled,
        },
        message="Service status",
    )


@router.get("/version")
async def version():
    settings = get_settings()
    return respond(
        data={"name": settings.app_name, "version": settings.app_version},
        message="Service version",
    )
