# cas_gateway/api/dependencies.py
from fastapi import HTTPException, Request

from cas_gateway.storage.gateway import StorageGateway


def get_gateway(request: Request) -> StorageGateway:
    """Return the StorageGateway created at application startup."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Storage gateway is not initialized")
    return gateway
