# src/securechat/main.py
"""Main entry point for the SecureChat application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from securechat.api.v1 import (
    auth_router,
    devices_router,
    files_router,
    groups_router,
    messages_router,
    realtime_router,
    users_router,
)
from securechat.core.settings import settings
from securechat.services.scheduler import MessageSweepWorker

logger = logging.getLogger(__name__)

app = FastAPI(
    title="SecureChat API",
    description="End-to-end encrypted direct and group messaging API",
    version=settings.app_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

app.add_middleware(GZipMiddleware)

app.include_router(auth_router, prefix="/api/v1")
app.include_router(users_router, prefix="/api/v1")
app.include_router(messages_router, prefix="/api/v1")
app.include_router(groups_router, prefix="/api/v1")
app.include_router(files_router, prefix="/api/v1")
app.include_router(devices_router, prefix="/api/v1")
app.include_router(realtime_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.sweeps_enabled:
        worker = MessageSweepWorker()
        await worker.start()
        app.state.sweep_worker = worker
        logger.info("Message sweeps started")
    else:
        app.state.sweep_worker = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: MessageSweepWorker | None = getattr(app.state, "sweep_worker", None)
    if worker:
        await worker.stop()


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
        "description": "End-to-end encrypted direct and group messaging API",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("securechat.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
