"""CareBase API application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from carebase.config import settings
from carebase.middleware.exceptions import register_exception_handlers
from carebase.middleware.tenant import TenantMiddleware
from carebase.routers import care_plans, health
from carebase.utils.cache import close_redis

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("carebase")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("CareBase API starting (%s, cache %s)", settings.environment,
                "on" if settings.cache_enabled else "off")
    yield
    await close_redis()
    logger.info("CareBase API stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="CareBase",
        description="Care agency back office: care plan authoring",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    # Added last runs first: CORS wraps the tenant middleware
    app.add_middleware(TenantMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.allowed_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(care_plans.router, prefix="/api/care-plans", tags=["care-plans"])
    return app


app = create_app()
