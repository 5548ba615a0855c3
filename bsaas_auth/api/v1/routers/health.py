from fastapi import APIRouter
from fastapi.responses import JSONResponse

from bsaas_auth.core.health import live_payload, ready_payload
from bsaas_auth.core.limiter import limiter

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
@limiter.exempt
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
@limiter.exempt
async def health_ready() -> JSONResponse:
    payload = await ready_payload()
    return JSONResponse(payload, status_code=200 if payload["ready"] else 503)
