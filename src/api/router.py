from fastapi import APIRouter

from src.api.endpoints import health, tryon

router = APIRouter()
router.include_router(health.router, tags=["health"])
router.include_router(tryon.router, tags=["tryon"])
