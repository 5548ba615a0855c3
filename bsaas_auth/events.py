import logging

from fastapi import FastAPI

from bsaas_auth.core.security import ensure_production_secrets
from bsaas_auth.core.settings import settings
from bsaas_auth.db.init_db import init_db
from bsaas_auth.db.session import dispose_engine
from bsaas_auth.utils.redis_client import close_redis_client

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup environment=%s", settings.environment)
        ensure_production_secrets()
        if settings.seed_admin_email and settings.seed_admin_password:
            await init_db()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        await dispose_engine()
        await close_redis_client()
