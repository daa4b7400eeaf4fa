"""
FastAPI application factory and API package.

Run with:
    uvicorn compliance_tracker.api:app --reload --port 8000

Or via main.py:
    python -m compliance_tracker.main --serve
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from compliance_tracker.config import get_settings
from compliance_tracker.api.routes import dashboard_router, health_router
from compliance_tracker.api.websocket import StoreNotifier
from compliance_tracker.errors import DashboardError
from compliance_tracker.store.store import DashboardStore

logger = logging.getLogger(__name__)


def create_app(store: DashboardStore | None = None) -> FastAPI:
    """
    Application factory — create and configure the FastAPI instance.

    When ``store`` is omitted, one is built from settings at startup and its
    slices are loaded from the configured repository.
    """
    settings = get_settings()

    application = FastAPI(
        title="Compliance Requirements Tracker API",
        description="State store backend for the compliance requirements dashboard",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS — allow the dashboard frontend (adjust origins in production)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(health_router, tags=["Health"])
    application.include_router(dashboard_router, prefix="/api/dashboard", tags=["Dashboard"])

    notifier = StoreNotifier()
    application.state.notifier = notifier
    application.state.store = store

    @application.exception_handler(DashboardError)
    async def dashboard_error_handler(request: Request, exc: DashboardError):
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @application.on_event("startup")
    async def startup():
        # Store dispatches run in the threadpool; the notifier needs the
        # server's loop to push WebSocket messages from there.
        notifier.set_loop(asyncio.get_running_loop())
        if application.state.store is None:
            application.state.store = DashboardStore(settings=settings)
            result = application.state.store.load()
            logger.info(
                f"Loaded {len(result.state.requirements)} requirements "
                f"({len(result.warnings)} warnings) from '{settings.storage_backend}' storage"
            )
        application.state.unsubscribe = application.state.store.subscribe(notifier.on_commit)
        logger.info(f"Starting {settings.app_name} API")

    @application.on_event("shutdown")
    async def shutdown():
        application.state.unsubscribe()
        application.state.store.close()

    return application


# Module-level instance for `uvicorn compliance_tracker.api:app`
app = create_app()
