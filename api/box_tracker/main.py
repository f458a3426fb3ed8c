# box_tracker/main.py
# Box Tracker API - box scanning, duplicate detection, pending reconciliation
from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from box_tracker import __version__
from box_tracker.errors import install_error_handlers
from box_tracker.logging_setup import setup_logging
from box_tracker.routers.dispatch import router as dispatch_router
from box_tracker.routers.scans import router as scans_router
from box_tracker.services import ScanService
from box_tracker.settings import Settings, settings as default_settings
from box_tracker.storage import RecordStore, SqlRecordStore, build_store
from box_tracker.utils import Clock

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RecordStore] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    settings = settings or default_settings

    # ---------------------------------------------------------
    # Lifespan: store open/close
    # ---------------------------------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        log_path = setup_logging(settings)
        svc = ScanService.from_settings(settings, store or build_store(settings), clock=clock)
        await svc.open()
        app.state.scan_service = svc
        logger.info("box tracker started: backend=%s tz=%s log=%s",
                    settings.STORAGE_BACKEND, settings.SCAN_TIMEZONE, log_path)
        yield
        await svc.close()
        logger.info("box tracker stopped")

    # ---------------------------------------------------------
    # FastAPI app + CORS
    # ---------------------------------------------------------
    app = FastAPI(
        title="Box Tracker API",
        version=__version__,
        description="Warehouse box scanning - duplicate detection, destination counts, dispatch reconciliation",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )
    install_error_handlers(app)

    app.include_router(scans_router)
    app.include_router(dispatch_router)

    @app.get("/health")
    async def health():
        """Health check endpoint with storage status."""
        svc: ScanService = app.state.scan_service
        result = {
            "status": "ok",
            "version": __version__,
            "storage_backend": settings.STORAGE_BACKEND,
            "pending_count": await svc.pending_count(),
        }
        if isinstance(svc.store, SqlRecordStore):
            db_health = await svc.store.health()
            result["database"] = db_health
            if db_health.get("status") != "healthy":
                result["status"] = "degraded"
        return result

    return app


app = create_app()
