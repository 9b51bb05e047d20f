# cas_gateway/api/endpoints/files.py
import logging
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Path, Query, Request, UploadFile
from fastapi.responses import Response

from cas_gateway.api.dependencies import get_gateway
from cas_gateway.api.models.files import (
    BatchUploadItem,
    BatchUploadResponse,
    FileInfo,
    FileInfoResponse,
    FileUploadResponse,
    NetworkInfo,
    NetworkStatusData,
    NetworkStatusResponse,
    NodeInfo,
    UploadedFile,
    WalletInfo,
)
from cas_gateway.storage.addressing import normalize_root_hash
from cas_gateway.storage.errors import (
    BackendError,
    BackendRejectedError,
    BalanceError,
    DownloadError,
    GatewayError,
    HashingError,
    IntegrityError,
    UploadError,
    ValidationError,
)
from cas_gateway.storage.gateway import StorageGateway
from cas_gateway.storage.models import UploadRequest, UploadResult

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_FILES_PER_REQUEST = 10


def status_code_for(error: GatewayError) -> int:
    """
    Map a gateway failure to an HTTP status code.

    Invalid input is 400, missing content 404, corrupted content 422,
    a backend refusing the request 502 and a backend that is unavailable
    after all retries 503.
    """
    if isinstance(error, (ValidationError, HashingError)):
        return 400
    if isinstance(error, IntegrityError):
        return 422
    if isinstance(error, DownloadError) and error.not_found:
        return 404
    if isinstance(error, (UploadError, DownloadError)):
        return 502 if isinstance(error.cause, BackendRejectedError) else 503
    if isinstance(error, BackendError):
        return 503 if error.transient else 502
    if isinstance(error, BalanceError):
        return 502
    return 500


def content_disposition(file_name: str) -> str:
    """
    Build an attachment Content-Disposition header value.

    Header values must be latin-1; a non-ASCII name is sent as an ASCII
    fallback plus an RFC 5987 ``filename*`` parameter carrying the UTF-8 name.
    """
    if file_name.isascii():
        return f'attachment; filename="{file_name}"'
    fallback = "".join(c if c.isascii() else "_" for c in file_name)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name, safe='')}"


def _download_url(request: Request, root_hash: str, file_name: Optional[str] = None) -> str:
    url = request.url_for("download_file", root_hash=root_hash)
    if file_name:
        url = url.include_query_params(filename=file_name)
    return str(url)


def _uploaded_file(request: Request, result: UploadResult) -> UploadedFile:
    return UploadedFile(
        rootHash=result.root_hash,
        txHash=result.transaction_ref,
        fileName=result.file_name,
        fileSize=result.byte_size,
        mimeType=result.mime_type,
        uploadedAt=result.uploaded_at,
        downloadUrl=_download_url(request, result.root_hash, result.file_name),
    )


@router.post("/upload", response_model=FileUploadResponse)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Upload a single file to Swarm.

    The file is validated against the size, mime type and extension policy
    before anything is sent to the network. The returned rootHash is the
    file's permanent content address.
    """
    try:
        data_bytes = await file.read()
        result = await gateway.upload(data_bytes, file.filename or "", file.content_type or "")
        return FileUploadResponse(data=_uploaded_file(request, result))

    except GatewayError as e:
        status_code = status_code_for(e)
        logger.log(logging.WARNING if status_code < 500 else logging.ERROR, f"Upload of {file.filename} failed: {e}")
        raise HTTPException(status_code=status_code, detail=f"Upload failed: {e.reason}")
    except Exception as e:
        logger.error(f"Unexpected error during upload: {e}")
        raise HTTPException(status_code=500, detail="Internal server error during upload")


@router.post("/upload-multiple", response_model=BatchUploadResponse)
async def upload_multiple_files(
    request: Request,
    files: List[UploadFile] = File(...),
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Upload up to 10 files concurrently. Each file reports its own outcome.
    """
    if len(files) > MAX_FILES_PER_REQUEST:
        raise HTTPException(status_code=400, detail=f"Too many files (maximum {MAX_FILES_PER_REQUEST})")

    try:
        requests = [
            UploadRequest(payload=await f.read(), name=f.filename or "", mime_type=f.content_type or "")
            for f in files
        ]
        outcomes = await gateway.upload_many(requests)
    except Exception as e:
        logger.error(f"Unexpected error during multiple upload: {e}")
        raise HTTPException(status_code=500, detail="Internal server error during upload")

    items = []
    for upload_request, outcome in zip(requests, outcomes):
        if isinstance(outcome, GatewayError):
            items.append(BatchUploadItem(fileName=upload_request.name, success=False, error=outcome.reason))
        else:
            items.append(BatchUploadItem(fileName=upload_request.name, success=True, data=_uploaded_file(request, outcome)))

    succeeded = sum(1 for item in items if item.success)
    return BatchUploadResponse(
        success=succeeded == len(items),
        message=f"{succeeded} of {len(items)} files uploaded successfully",
        data=items,
    )


# Must be registered before /{root_hash} so "status" is not taken for a hash
@router.get("/status/network", response_model=NetworkStatusResponse)
async def get_network_status(gateway: StorageGateway = Depends(get_gateway)):
    """
    Report reachable storage nodes and the signing wallet's balance.

    Never fails because of the backend: an unreachable node shows up as
    ``connected: false`` and an unreadable balance as ``wallet.error``.
    """
    status = await gateway.network_status()

    try:
        balance = await gateway.account_balance()
        wallet = WalletInfo(address=balance.wallet_address, bzzBalance=balance.bzz, nativeBalance=balance.native)
    except BalanceError as e:
        wallet = WalletInfo(error=e.reason)

    return NetworkStatusResponse(
        data=NetworkStatusData(
            network=NetworkInfo(
                connected=status.connected,
                nodeCount=status.node_count,
                nodes=[NodeInfo(address=n.address, fullNode=n.full_node) for n in status.nodes],
            ),
            wallet=wallet,
            timestamp=datetime.now(timezone.utc),
        )
    )


@router.get("/{root_hash}", name="download_file")
async def download_file(
    root_hash: str = Path(..., description="Content address of the file to download"),
    filename: Optional[str] = Query(default=None, description="File name to serve the content as"),
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Download a file from Swarm and return it as raw bytes.

    The content is re-hashed before it is returned; content that does not
    match the requested address is reported as 422, never served.
    """
    try:
        result = await gateway.download(root_hash, filename)

        return Response(
            content=result.payload,
            media_type=result.mime_type,
            headers={
                "Content-Length": str(result.byte_size),
                "Content-Disposition": content_disposition(result.file_name),
                "Cache-Control": "public, max-age=31536000",  # content addresses never change
                "X-Content-Root": normalize_root_hash(root_hash),
            }
        )

    except GatewayError as e:
        status_code = status_code_for(e)
        logger.log(logging.WARNING if status_code < 500 else logging.ERROR, f"Download of {root_hash} failed: {e}")
        raise HTTPException(status_code=status_code, detail=f"Download failed: {e.reason}")
    except Exception as e:
        logger.error(f"Unexpected error during download: {e}")
        raise HTTPException(status_code=500, detail="Internal server error during download")


async def _file_info(request: Request, root_hash: str, gateway: StorageGateway) -> FileInfoResponse:
    try:
        exists = await gateway.exists(root_hash)
    except GatewayError as e:
        logger.warning(f"Existence check for {root_hash} failed: {e}")
        raise HTTPException(status_code=status_code_for(e), detail=f"Existence check failed: {e.reason}")

    return FileInfoResponse(
        data=FileInfo(rootHash=root_hash, exists=exists, downloadUrl=_download_url(request, root_hash))
    )


@router.get("/{root_hash}/info", response_model=FileInfoResponse)
async def get_file_info(
    request: Request,
    root_hash: str = Path(..., description="Content address of the file"),
    gateway: StorageGateway = Depends(get_gateway),
):
    """Basic information about a stored file, including where to download it."""
    return await _file_info(request, root_hash, gateway)


@router.get("/{root_hash}/exists", response_model=FileInfoResponse)
async def check_file_exists(
    request: Request,
    root_hash: str = Path(..., description="Content address of the file"),
    gateway: StorageGateway = Depends(get_gateway),
):
    """Check with the Bee node whether a file is retrievable."""
    return await _file_info(request, root_hash, gateway)
