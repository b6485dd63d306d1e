from fastapi import APIRouter

from .endpoints import health, webhooks

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(webhooks.router)
