"""
FastAPI application initialization
"""

from typing import Optional
from fastapi import FastAPI
from api.routes import health, operations, webhooks
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.database import dispose_engine
from core.logging import setup_logging
from operations.runner import OperationRunner, build_runner
import logging

logger = logging.getLogger(__name__)


def create_app(runner: Optional[OperationRunner] = None, start_sync: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        runner: Pre-wired runner (tests); built from settings when omitted
        start_sync: Start the background sync loop on startup
    """
    app = FastAPI(
        title="Content Sync API",
        description="Hashnode migration, snapshots and bidirectional sync",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.add_middleware(RequestContextMiddleware)

    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(operations.router)

    @app.on_event("startup")
    async def startup_event():
        """Application startup event"""
        setup_logging()
        app.state.runner = runner or build_runner()
        logger.info("Starting Content Sync API")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
        if start_sync:
            await app.state.runner.start_sync()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Application shutdown event"""
        logger.info("Shutting down Content Sync API")
        await app.state.runner.stop_sync()
        if runner is None:
            await dispose_engine()

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Content Sync API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
            "endpoints": {
                "webhooks": "/webhooks/hashnode",
                "migrate": "/operations/migrate",
                "snapshots": "/snapshots",
                "sync": "/sync/status",
                "reports": "/reports/latest"
            }
        }

    return app


app = create_app()
