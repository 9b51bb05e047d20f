"""
StorageGateway: validated, retried, integrity-checked access to the backend.

upload:   validate -> stage -> hash -> deposit (upload policy) -> release
download: stage destination -> retrieve (download policy) -> re-hash and compare -> release

Staged resources are released on every exit path, including cancellation.
Deposits for the gateway's signing identity are submitted one at a time;
validation, staging and hashing of concurrent uploads still run in parallel.
A deposit's attempt timeout starts only once it holds its turn.
"""
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar, Union

from cas_gateway.core.config import Settings, split_csv
from cas_gateway.storage.addressing import ContentAddresser, is_valid_root_hash, normalize_root_hash
from cas_gateway.storage.backend import StorageBackend
from cas_gateway.storage.errors import (
    BackendError,
    BalanceError,
    DownloadError,
    GatewayError,
    IntegrityError,
    RetryExhaustedError,
    UploadError,
    ValidationError,
)
from cas_gateway.storage.media import detect_content_type_and_filename, mime_type_for_name
from cas_gateway.storage.models import (
    AccountBalance,
    DownloadResult,
    NetworkStatus,
    RetryPolicy,
    UploadRequest,
    UploadResult,
    ValidationPolicy,
)
from cas_gateway.storage.retry import RetryExecutor, SleepFunc
from cas_gateway.storage.staging import TempFileManager
from cas_gateway.storage.validator import is_filename_safe, validate

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _cause(error: RetryExhaustedError) -> Optional[GatewayError]:
    last = error.last_error
    return last if isinstance(last, GatewayError) else None


class StorageGateway:
    """
    Client-side gateway to a content-addressed storage network.

    All configuration is fixed at construction; build a new instance to
    reconfigure. Instances hold no per-call state apart from the deposit lock
    and are safe to share between concurrent requests.
    """

    def __init__(
        self,
        backend: StorageBackend,
        signing_identity: str,
        validation_policy: ValidationPolicy,
        upload_policy: RetryPolicy,
        download_policy: RetryPolicy,
        staging: Optional[TempFileManager] = None,
        addresser: Optional[ContentAddresser] = None,
        probe_timeout_ms: int = 10000,
        node_sample_size: int = 4,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.backend = backend
        self.signing_identity = signing_identity
        self.validation_policy = validation_policy
        self.upload_policy = upload_policy
        self.download_policy = download_policy
        self.staging = staging or TempFileManager()
        self.addresser = addresser or ContentAddresser()
        self.probe_timeout_ms = probe_timeout_ms
        self.node_sample_size = node_sample_size
        self._upload_executor = RetryExecutor(upload_policy, sleep=sleep)
        self._download_executor = RetryExecutor(download_policy, sleep=sleep)
        self._deposit_lock = asyncio.Lock()

    async def _hash(self, data: bytes) -> str:
        # Hashing is CPU bound; keep it off the event loop
        return await asyncio.to_thread(self.addresser.compute_root_hash, data)

    async def _probe(self, call: Callable[[], Awaitable[T]]) -> T:
        return await asyncio.wait_for(call(), timeout=self.probe_timeout_ms / 1000)

    async def upload(
        self,
        payload: bytes,
        name: str,
        mime_type: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> UploadResult:
        """
        Validate, address and deposit a payload.

        Args:
            payload: File contents
            name: Declared file name
            mime_type: Declared media type
            cancel_event: Setting this event abandons the upload

        Returns:
            UploadResult whose root_hash is the payload's content address

        Raises:
            ValidationError: The payload violates the upload policy (no network call is made)
            HashingError: The content address could not be computed
            UploadError: The backend failed on every attempt or rejected the deposit
            IntegrityError: The backend reported a different address than the one computed
            OperationCancelledError: ``cancel_event`` was set mid-flight
        """
        validate(name, len(payload), mime_type, self.validation_policy)
        logger.info(f"Processing upload: {name} ({len(payload)} bytes, {mime_type})")

        async with self.staging.staged_async(payload, name) as staged:
            root_hash = await self._hash(payload)
            logger.info(f"Generated root hash: {root_hash}")

            try:
                receipt = await self._upload_executor.execute(
                    lambda: self.backend.deposit(staged, self.signing_identity),
                    description=f"Upload of {name}",
                    cancel_event=cancel_event,
                    guard=self._deposit_lock,
                )
            except RetryExhaustedError as e:
                raise UploadError(attempts=e.attempts, last_reason=e.reason, cause=_cause(e)) from e
            except BackendError as e:
                raise UploadError(attempts=e.attempt or 1, last_reason=e.reason, cause=e) from e

        if receipt.reference != root_hash:
            logger.error(f"Backend stored {name} under {receipt.reference}, computed {root_hash}")
            raise IntegrityError(
                expected=root_hash,
                actual=receipt.reference,
                reason=f"Backend reported reference {receipt.reference} for content addressed {root_hash}",
            )

        logger.info(f"Upload successful! Root hash {root_hash}, transaction {receipt.transaction_ref}")
        return UploadResult(
            root_hash=root_hash,
            transaction_ref=receipt.transaction_ref,
            byte_size=len(payload),
            file_name=name,
            mime_type=mime_type,
            uploaded_at=datetime.now(timezone.utc),
        )

    async def upload_many(
        self,
        requests: Sequence[UploadRequest],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[Union[UploadResult, GatewayError]]:
        """
        Upload several files concurrently.

        Returns:
            One entry per request, in request order: the UploadResult, or the
            GatewayError that upload raised for that file
        """
        outcomes = await asyncio.gather(
            *(self.upload(r.payload, r.name, r.mime_type, cancel_event=cancel_event) for r in requests),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, GatewayError):
                raise outcome
        return list(outcomes)

    async def download(
        self,
        root_hash: str,
        suggested_name: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DownloadResult:
        """
        Retrieve content by address and verify it hashes back to that address.

        Args:
            root_hash: Content address (64 hex digits, optional 0x prefix)
            suggested_name: File name to report; its extension decides the mime type.
                Without it, type and name are sniffed from the payload.
            cancel_event: Setting this event abandons the download

        Raises:
            ValidationError: Malformed root hash or unsafe suggested name
            DownloadError: The backend failed on every attempt or rejected the request
            IntegrityError: The retrieved bytes do not hash to ``root_hash``
            OperationCancelledError: ``cancel_event`` was set mid-flight
        """
        if not is_valid_root_hash(root_hash):
            raise ValidationError(f"Invalid root hash: {root_hash!r}")
        if suggested_name is not None and not is_filename_safe(suggested_name):
            raise ValidationError(f"File name {suggested_name!r} is not allowed")
        root_hash = normalize_root_hash(root_hash)
        logger.info(f"Processing download: {root_hash}")

        async with self.staging.staged_async(b"", suggested_name or f"download_{root_hash[:8]}") as destination:
            async def retrieve() -> None:
                destination.reset()
                await self.backend.retrieve(root_hash, destination)

            try:
                await self._download_executor.execute(
                    retrieve, description=f"Download of {root_hash}", cancel_event=cancel_event
                )
            except RetryExhaustedError as e:
                raise DownloadError(root_hash, attempts=e.attempts, last_reason=e.reason, cause=_cause(e)) from e
            except BackendError as e:
                raise DownloadError(root_hash, attempts=e.attempt or 1, last_reason=e.reason, cause=e) from e

            payload = await asyncio.to_thread(destination.read_bytes)

        if not payload:
            raise IntegrityError(expected=root_hash, actual="", reason=f"Backend returned no data for {root_hash}")

        actual = await self._hash(payload)
        if actual != root_hash:
            logger.error(f"Integrity check failed for {root_hash}: content hashes to {actual}")
            raise IntegrityError(expected=root_hash, actual=actual)

        if suggested_name:
            file_name, mime_type = suggested_name, mime_type_for_name(suggested_name)
        else:
            mime_type, file_name = detect_content_type_and_filename(payload, root_hash)

        logger.info(f"Download successful for: {root_hash} ({len(payload)} bytes)")
        return DownloadResult(payload=payload, file_name=file_name, mime_type=mime_type, byte_size=len(payload))

    async def exists(self, root_hash: str) -> bool:
        """
        Ask the backend whether it can serve ``root_hash``. Single probe, no retry.

        Raises:
            ValidationError: Malformed root hash
            BackendError: The probe failed
        """
        if not is_valid_root_hash(root_hash):
            raise ValidationError(f"Invalid root hash: {root_hash!r}")
        try:
            return await self._probe(lambda: self.backend.exists(normalize_root_hash(root_hash)))
        except asyncio.TimeoutError:
            raise BackendError(f"Existence check for {root_hash} timed out after {self.probe_timeout_ms}ms") from None

    async def network_status(self) -> NetworkStatus:
        """Snapshot of reachable storage nodes. A failed probe reports ``connected=False``."""
        try:
            nodes = await self._probe(self.backend.list_nodes)
        except Exception as e:
            # Any failure, including a malformed backend response, means disconnected
            logger.error(f"Network status check failed: {e!r}")
            return NetworkStatus(connected=False, node_count=0, nodes=[])

        return NetworkStatus(
            connected=len(nodes) > 0,
            node_count=len(nodes),
            nodes=list(nodes[:self.node_sample_size]),
        )

    async def account_balance(self) -> AccountBalance:
        """
        Balance of the signing identity's wallet. Advisory, never retried.

        Raises:
            BalanceError: The balance could not be read
        """
        try:
            return await self._probe(self.backend.account_balance)
        except GatewayError as e:
            logger.error(f"Failed to get wallet balance: {e}")
            raise BalanceError(f"Failed to get wallet balance: {e.reason}") from e
        except asyncio.TimeoutError:
            logger.error("Failed to get wallet balance: timed out")
            raise BalanceError(f"Wallet balance request timed out after {self.probe_timeout_ms}ms") from None


def build_gateway(
    settings: Settings,
    backend: StorageBackend,
    sleep: SleepFunc = asyncio.sleep,
) -> StorageGateway:
    """Create a gateway from application settings."""
    validation_policy = ValidationPolicy.from_lists(
        max_size=settings.MAX_FILE_SIZE,
        mime_types=split_csv(settings.ALLOWED_FILE_TYPES),
        extensions=split_csv(settings.ALLOWED_FILE_EXTENSIONS),
    )
    upload_policy = RetryPolicy(
        max_attempts=settings.UPLOAD_MAX_ATTEMPTS,
        base_backoff_ms=settings.UPLOAD_BASE_BACKOFF_MS,
        timeout_ms=settings.UPLOAD_TIMEOUT_MS,
    )
    download_policy = RetryPolicy(
        max_attempts=settings.DOWNLOAD_MAX_ATTEMPTS,
        base_backoff_ms=settings.DOWNLOAD_BASE_BACKOFF_MS,
        timeout_ms=settings.DOWNLOAD_TIMEOUT_MS,
    )
    staging = TempFileManager(
        directory=Path(settings.STAGING_DIR) if settings.STAGING_DIR else None,
        in_memory=settings.STAGING_IN_MEMORY,
    )
    if not settings.SWARM_POSTAGE_BATCH_ID:
        logger.warning("SWARM_POSTAGE_BATCH_ID is not set; uploads will be rejected by the Bee node")

    return StorageGateway(
        backend=backend,
        signing_identity=settings.SWARM_POSTAGE_BATCH_ID,
        validation_policy=validation_policy,
        upload_policy=upload_policy,
        download_policy=download_policy,
        staging=staging,
        probe_timeout_ms=settings.PROBE_TIMEOUT_MS,
        node_sample_size=settings.NETWORK_STATUS_NODE_SAMPLE,
        sleep=sleep,
    )
