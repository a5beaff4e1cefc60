import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.v1.router import api_router
from app.core.config import settings
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    if not settings.TELNYX_API_KEY:
        logger.warning("TELNYX_API_KEY not configured. Numbers cannot be blocked or unblocked.")
    yield


app = FastAPI(
    title="Trial Engine API",
    description="Trial lifecycle and service suspension for restaurant voice assistants",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "service": "trial-engine", "version": "0.1.0", "env": settings.APP_ENV}
