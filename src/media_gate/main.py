# src/media_gate/main.py
"""Main entry point for the Media Gate service."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from media_gate.api.v1 import media_router, moderation_router
from media_gate.core.settings import settings
from media_gate.services.cdn import get_cdn_client
from media_gate.services.object_store import get_object_store_client
from media_gate.services.recovery import RecoverySweep
from media_gate.services.transcription import get_transcription_client
from media_gate.services.visual_analysis import get_visual_client
from media_gate.services.worker_pool import get_worker_pool

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Media Gate API",
    description="Upload-to-publish moderation pipeline for user media",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(media_router, prefix="/api/v1")
app.include_router(moderation_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    pool = get_worker_pool()
    await pool.start()
    if settings.recovery_enabled:
        sweep = RecoverySweep(pool)
        await sweep.start()
        app.state.recovery_sweep = sweep
    else:
        app.state.recovery_sweep = None
    logger.info("%s %s started with %d workers", settings.app_name, settings.app_version, pool.worker_count)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweep: RecoverySweep | None = getattr(app.state, "recovery_sweep", None)
    if sweep:
        await sweep.stop()
    await get_worker_pool().stop()
    for client in (
        get_object_store_client(),
        get_cdn_client(),
        get_visual_client(),
        get_transcription_client(),
    ):
        await client.close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("media_gate.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
