"""
Content-addressed storage gateway.

Key components:
- validator: size / mime type / extension policy checks, run before anything is staged
- staging: scoped temporary buffers for in-flight uploads and downloads
- addressing: Swarm chunk-tree root hash (the content address)
- retry: retry/backoff/timeout driver for backend calls
- gateway: upload, download, network status and balance operations

The gateway talks to the network through the StorageBackend protocol in
backend.py; cas_gateway.services.bee_client provides the Bee node implementation.
"""
from cas_gateway.storage.addressing import ContentAddresser
from cas_gateway.storage.gateway import StorageGateway, build_gateway
from cas_gateway.storage.models import (
    AccountBalance,
    DownloadResult,
    NetworkStatus,
    NodeRef,
    RetryPolicy,
    UploadRequest,
    UploadResult,
    ValidationPolicy,
)
from cas_gateway.storage.retry import RetryExecutor
from cas_gateway.storage.staging import StagingHandle, TempFileManager

__all__ = [
    "AccountBalance",
    "ContentAddresser",
    "DownloadResult",
    "NetworkStatus",
    "NodeRef",
    "RetryExecutor",
    "RetryPolicy",
    "StagingHandle",
    "StorageGateway",
    "TempFileManager",
    "UploadRequest",
    "UploadResult",
    "ValidationPolicy",
    "build_gateway",
]
