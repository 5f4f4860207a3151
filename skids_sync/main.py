from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import logging

from skids_sync.core.config import settings
from skids_sync.routers import sync
from skids_sync.services.sync_engine import OfflineSyncEngine

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting offline sync engine...")

    if getattr(app.state, "sync_engine", None) is None:
        app.state.sync_engine = OfflineSyncEngine(settings)
    logger.info("✓ Sync engine ready (waiting for sign-in)")

    yield

    logger.info("Shutdown initiated...")
    await app.state.sync_engine.shutdown()
    logger.info("✓ Sync engine stopped")


def create_app(sync_engine: Optional[OfflineSyncEngine] = None) -> FastAPI:
    app = FastAPI(
        title="SKIDS Offline Sync",
        description="Offline-first cache and sync queue for the SKIDS parent app",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.sync_engine = sync_engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            settings.FRONTEND_URL,
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sync.router)  # Sync: /sync/* (offline-first)

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    return app


app = create_app()
