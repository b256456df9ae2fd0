from fastapi import APIRouter

from app.api.v1.endpoints.health import router as health_router
from app.api.v1.endpoints.moderation import router as moderation_router
from app.api.v1.endpoints.verification import router as verification_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(moderation_router, tags=["moderation"])
router.include_router(verification_router, tags=["verification"])
