from fastapi import APIRouter

from bookclub.api.routes.auth import router as auth_router
from bookclub.api.routes.health import router as health_router

router = APIRouter()

router.include_router(health_router)
router.include_router(auth_router)
