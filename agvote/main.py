"""
AG-Vote Core - Main Application Entry Point

FastAPI application serving the meeting lifecycle, motions and ballots.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from agvote import __version__
from agvote.core.config import settings
from agvote.core.database import async_session_maker, build_session_maker, engine, init_db
from agvote.core.metrics import metrics
from agvote.voting.events import EventEmitter
from agvote.voting.router import router as voting_router
from agvote.voting.services import SessionCoordinator

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    db_engine: AsyncEngine | None = None,
    emitter: EventEmitter | None = None,
    create_tables: bool = True,
) -> FastAPI:
    """
    Build the application.

    Tests pass their own engine and a disabled emitter.
    """
    target = db_engine or engine
    sessions = build_session_maker(db_engine) if db_engine else async_session_maker
    events = emitter or EventEmitter()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        # Startup
        if create_tables:
            await init_db(target)
        await events.connect()
        logger.info(f"{settings.app_name} started ({settings.environment})")
        yield
        # Shutdown
        await events.close()

    app = FastAPI(
        title="AG-Vote Core",
        description="Decision engine and ballot pipeline for general assemblies",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.coordinator = SessionCoordinator(sessions, emitter=events)

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health Check
    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.get("/metrics", tags=["system"])
    async def prometheus_metrics() -> Response:
        """Prometheus scrape endpoint."""
        return Response(content=metrics.export(), media_type=metrics.content_type)

    # Include Routers
    app.include_router(voting_router, prefix="/api/v1")

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("agvote.main:app", host="0.0.0.0", port=8000, reload=True)
