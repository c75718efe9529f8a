import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from blobcord.api.dependencies import close_cdn_client
from blobcord.api.routes import download, files, upload
from blobcord.core.config import settings
from blobcord.core.database import Base, engine
from blobcord.core.logging_config import setup_logging
from blobcord.services.discord_client import close_discord_client

# Register both tables with Base.metadata
from blobcord.models import chunk, file  # noqa: F401

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: configure logging and create missing tables.
    Shutdown: close the blob-host and CDN HTTP clients.
    """
    setup_logging()
    # Schema migrations are not managed here; create_all only adds missing tables
    Base.metadata.create_all(bind=engine)
    logger.info("blobcord started")
    yield
    await close_discord_client()
    await close_cdn_client()


app = FastAPI(
    title="blobcord API",
    description="Encrypted chunked file storage on top of Discord attachments",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# All routes are prefixed with /api
app.include_router(upload.router, prefix="/api")
app.include_router(files.router, prefix="/api")
app.include_router(download.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint - API information"""
    return {"message": "blobcord API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check endpoint - used by monitoring/deployment tools"""
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("blobcord.main:app", host="0.0.0.0", port=settings.PORT)
