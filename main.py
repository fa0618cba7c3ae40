"""
BookSwap API — application entry point.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from api.routes import router as api_router
from auth.jwt import TokenIssuer
from auth.routes import router as auth_router
from config.settings import Settings, config
from database.session import create_executor, init_schema

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("sqlalchemy.engine", "asyncio", "aiosqlite"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s (%s)…", settings.app_name, settings.environment)
        app.state.settings = settings
        app.state.tokens = TokenIssuer(
            settings.jwt_secret,
            expiry_seconds=settings.jwt_expiry_seconds,
            algorithm=settings.jwt_algorithm,
        )
        app.state.executor = create_executor(settings)
        if settings.db_auto_create_schema:
            await init_schema(app.state.executor.engine)
        logger.info("Application ready to accept requests.")
        yield
        await app.state.executor.dispose()
        logger.info("Application shutdown complete.")

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        description="Peer-to-peer textbook marketplace API.",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(auth_router, prefix="/auth")
    app.include_router(api_router, prefix="/api")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
