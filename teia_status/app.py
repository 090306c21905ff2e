"""HTTP surface exposing the latest status report."""

import structlog
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from .scheduler import get_checker


logger = structlog.get_logger(__name__)

app = FastAPI(title="Teia Status", version="0.1.0")


@app.on_event("startup")
async def startup_event():
    """Start periodic status checks."""
    await get_checker().start_checking()
    logger.info("Status service started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    await get_checker().stop()
    logger.info("Status service stopped")


@app.get("/")
async def root():
    """Liveness endpoint."""
    snapshot = get_checker().snapshot
    return {
        "status": "healthy",
        "service": "teia-status",
        "cycle": snapshot.cycle,
        "completed_at": snapshot.completed_at.isoformat() if snapshot.completed_at else None,
    }


@app.get("/status", response_class=PlainTextResponse)
async def status():
    """Most recent composite report, as markdown text."""
    return PlainTextResponse(get_checker().get_status())
