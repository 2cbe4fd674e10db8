"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketplace_core.api.errors import register_exception_handlers
from marketplace_core.api.routes import admin, health, notifications, offers, ratings
from marketplace_core.logging_config import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging()
    logger.info("marketplace_core_starting")
    yield
    logger.info("marketplace_core_stopping")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Marketplace Core",
        description="Offers, sale finalization, ratings and notifications for the student marketplace.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(offers.router)
    app.include_router(ratings.router)
    app.include_router(notifications.router)
    app.include_router(admin.router)

    return app


app = create_app()
