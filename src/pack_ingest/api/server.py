"""FastAPI server setup."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..common import get_logger
from ..config import PackIngestConfig
from ..ingest.context import IngestContext, build_context

logger = get_logger(__name__)


def create_app(config: PackIngestConfig, context: Optional[IngestContext] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        config: Application configuration
        context: Prebuilt ingestion context; built from ``config`` when omitted
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.context.close()

    app = FastAPI(
        title="pack-ingest",
        lifespan=lifespan,
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.config = config
    app.state.context = context if context is not None else build_context(config)

    if config.api.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.api.cors_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    from .routes import health, packs

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(packs.router, prefix="/api", tags=["packs"])

    logger.info(
        "FastAPI application created",
        extra={"extra_fields": {"version": __version__, "cors": config.api.enable_cors}},
    )

    return app
