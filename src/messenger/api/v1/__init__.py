from fastapi import APIRouter

from . import realtime, routes
from .error_handlers import register_exception_handlers

router = APIRouter(prefix="/v1")
router.include_router(routes.router)
router.include_router(realtime.router)

__all__ = ["router", "register_exception_handlers"]
