from fastapi import APIRouter

from bsaas_auth.api.v1.routers import auth, health

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)

__all__ = ["api_router"]
