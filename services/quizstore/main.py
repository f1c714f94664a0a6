"""
Quiz Store - local storage and auto-save API
FastAPI surface over QuizStorageService (SQLite primary, JSON file fallback)

Install dependencies:
pip install -e .

Run server:
uvicorn quizstore.main:app --app-dir services --host 127.0.0.1 --port 8000
"""
from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.errors import StorageError
from .core.storage_service import QuizStorageService
from .dependencies import STATUS_BY_CODE
from .routers import autosave, drafts, quizzes, storage
from .settings import Settings, get_settings

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.started_at = time.time()
        service = QuizStorageService(settings)
        app.state.storage = service
        logger.info("Quiz Store API starting up...")
        primary = await service.initialize_storage()
        logger.info("Storage backend: %s", "SQLITE" if primary else "JSON FALLBACK")
        logger.info("Allowed origins: %s", settings.get_origins_list())
        try:
            yield
        finally:
            logger.info("Quiz Store API shutting down...")
            await service.close()

    app = FastAPI(title="Quiz Store", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request, exc: StorageError):
        logger.warning("Storage error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
            content={"detail": {"error": exc.message, "error_code": exc.code}},
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        service: QuizStorageService = app.state.storage
        return {
            "status": "healthy",
            "backend": service.adapter.active_backend,
            "sync_status": service.sync_status,
            "uptime_seconds": round(time.time() - app.state.started_at, 1),
        }

    app.include_router(quizzes.router)
    app.include_router(drafts.router)
    app.include_router(storage.router)
    app.include_router(autosave.router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="info")
