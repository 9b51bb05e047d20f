# cas_gateway/main.py
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from cas_gateway.core.config import settings
from cas_gateway.api.endpoints import files
from cas_gateway.services.bee_client import BeeStorageBackend
from cas_gateway.storage.gateway import build_gateway
import logging

# Configure basic logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One client and one gateway per process; both are safe to share between requests
    async with httpx.AsyncClient(base_url=str(settings.SWARM_BEE_API_URL)) as client:
        backend = BeeStorageBackend(
            client,
            probe_timeout=settings.PROBE_TIMEOUT_MS / 1000,
            deferred_upload=settings.SWARM_DEFERRED_UPLOAD,
        )
        app.state.gateway = build_gateway(settings, backend)
        logger.info(f"Storage gateway ready, Bee node at {settings.SWARM_BEE_API_URL}")
        yield
        app.state.gateway = None


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json", # Standard location for the OpenAPI schema
    lifespan=lifespan,
)

# The prefix ensures all routes start with /api/v1
app.include_router(files.router, prefix=f"{settings.API_V1_STR}/files", tags=["files"])

@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}
