from fastapi import APIRouter

from . import health, otp


def get_api_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health.router)
    router.include_router(otp.router)
    return router
