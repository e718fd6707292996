"""
API v1 Routes
"""

from fastapi import APIRouter

from . import gsc

router = APIRouter()

router.include_router(gsc.router)

__all__ = ["router"]
