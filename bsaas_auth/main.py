from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from bsaas_auth import __version__
from bsaas_auth.api.v1 import api_router
from bsaas_auth.core.errors import register_exception_handlers
from bsaas_auth.core.limiter import limiter
from bsaas_auth.core.logging import configure_logging
from bsaas_auth.core.settings import settings
from bsaas_auth.events import register_event_handlers
from bsaas_auth.middlewares.request_context import RequestContextMiddleware
from bsaas_auth.middlewares.security_headers import SecurityHeadersMiddleware
from bsaas_auth.middlewares.trust_proxies import TrustedProxiesMiddleware

API_PREFIX = "/api/v1"


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="BSaaS Auth", version=__version__)
    register_exception_handlers(app)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    # Added last-to-first: proxies are resolved before the request context reads the client.
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(TrustedProxiesMiddleware, proxies_count=settings.proxies_count)
    app.add_middleware(
        SecurityHeadersMiddleware,
        enable_hsts=settings.enable_hsts,
        no_store_prefix=f"{API_PREFIX}/auth",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix=API_PREFIX)
    register_event_handlers(app)
    return app


app = create_app()
