import logging
from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rockid.core.config import settings
from rockid.core import logging_config  # noqa: F401 - configures structlog on import
from rockid.core.errors import init_sentry, is_sentry_enabled
from rockid.api import entitlements, webhooks
from rockid.db import create_db_and_tables
from rockid.middleware.context import RequestContextMiddleware
from rockid.services.errors import EntitlementError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 50)
    logger.info("RockID Entitlements API Starting")
    logger.info(f"Webhook auth: {'CONFIGURED' if settings.REVENUECAT_BEARER_TOKEN else 'MISSING'}")
    logger.info("=" * 50)
    if not settings.REVENUECAT_BEARER_TOKEN:
        logger.error("REVENUECAT_BEARER_TOKEN is not set; all webhook deliveries will be rejected")

    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    logger.info(f"Error tracking: {'SENTRY' if is_sentry_enabled() else 'LOGS ONLY'}")
    create_db_and_tables()
    yield


app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)

app.add_middleware(cast(Any, RequestContextMiddleware))


@app.exception_handler(EntitlementError)
async def entitlement_error_handler(request: Request, exc: EntitlementError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(webhooks.router, prefix=settings.API_V1_STR, tags=["webhooks"])
app.include_router(entitlements.router, prefix=settings.API_V1_STR, tags=["entitlements"])


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}
