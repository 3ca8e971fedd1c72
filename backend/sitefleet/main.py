import re

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sitefleet.core.config import get_settings
from sitefleet.core.logging import configure_logging
import sitefleet.models  # noqa: F401  # force model registration

from sitefleet.api.routes.media import router as media_router
from sitefleet.api.routes.provisioning import router as provisioning_router
from sitefleet.api.routes.stripe import router as stripe_router
from sitefleet.api.routes.subscription import router as subscription_router

logger = structlog.get_logger()


def create_application() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(title="sitefleet API")

    origins = [u for u in {settings.primary_base_url, settings.server_base_url} if u]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins + ["http://localhost:3000", "http://127.0.0.1:3000"],
        # tenant sites: https://<subdomain>.<SITE_DOMAIN>
        allow_origin_regex=rf"^https://[a-z0-9-]+\.{re.escape(settings.SITE_DOMAIN)}$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        logger.exception("request.unhandled_error", method=request.method, path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    @app.get("/")
    def root():
        return {
            "status": "ok",
            "service": "sitefleet",
            "primary": bool(settings.IS_PRIMARY_INSTANCE),
        }

    # Routers
    app.include_router(provisioning_router, prefix="/api")
    app.include_router(stripe_router, prefix="/api")
    app.include_router(subscription_router, prefix="/api")
    app.include_router(media_router, prefix="/api")

    return app


app = create_application()
