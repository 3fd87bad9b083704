"""
Memory FastAPI Application
==========================

REST API for the tiered memory and retrieval service.

Endpoints:
    GET  /api/health        - Health check
    *    /api/memory/...    - Memory routes (see memory_routes)

Usage:
    uvicorn src.api.main:app --reload --port 8000

    Or with CLI:
    python -m src.api.main
"""

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os
from typing import Optional

from src.knowledge.config import get_settings
from src.memory.service import MemoryService
from src.orchestrator.logging_config import setup_logging_from_config

from .memory_routes import router as memory_router

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def _cors_origins():
    # In production, set CORS_ORIGINS env var (comma-separated)
    origins = [
        "http://localhost:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:3001",
    ]
    extra = os.getenv("CORS_ORIGINS", "")
    if extra:
        origins.extend([o.strip() for o in extra.split(",") if o.strip()])
    return origins


def create_app(service: Optional[MemoryService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Pre-built memory service. When None, one is built from
            settings at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        owns_service = app.state.memory_service is None
        if owns_service:
            settings = get_settings()
            setup_logging_from_config(settings.logging)
            logger.info("Starting Memory API...")
            app.state.memory_service = MemoryService.from_settings(settings)
            logger.info("Memory service initialized")

        yield

        if owns_service:
            app.state.memory_service.close()
            app.state.memory_service = None
            logger.info("Shutting down Memory API...")

    app = FastAPI(
        title="Memory API",
        description="Tiered semantic memory: indexing, retrieval, routing and consolidation",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.memory_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(memory_router)

    @app.get("/api/health")
    async def health_check(request: Request):
        """
        Health check endpoint.

        Reports whether the service is up and whether consolidation
        (which needs a summarization model) is enabled.
        """
        memory_service = request.app.state.memory_service
        if memory_service is None:
            return {"status": "starting", "version": API_VERSION}

        return {
            "status": "healthy",
            "version": API_VERSION,
            "store": memory_service.settings.store.backend,
            "embedding_dimensions": memory_service.embedder.dimensions,
            "consolidation_enabled": memory_service.consolidation is not None,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=False,
    )
