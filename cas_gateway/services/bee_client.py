# cas_gateway/services/bee_client.py
import asyncio
import httpx
import logging
from typing import Any, Dict, List, Optional

from cas_gateway.storage.backend import DepositReceipt
from cas_gateway.storage.errors import (
    BackendRejectedError,
    BackendUnavailableError,
    ContentNotFoundError,
)
from cas_gateway.storage.models import AccountBalance, NodeRef
from cas_gateway.storage.staging import StagingHandle

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull Bee's ``{"code": ..., "message": ...}`` error text, falling back to the status line."""
    try:
        body = response.json()
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
    except ValueError:
        pass
    return f"HTTP {response.status_code}"


def _raise_for_status(response: httpx.Response, context: str) -> None:
    """
    Translate a Bee error response into a BackendError.

    404 becomes ContentNotFoundError, 429 and 5xx become
    BackendUnavailableError (both retryable); any other 4xx is a
    BackendRejectedError, which is not.
    """
    status = response.status_code
    if status < 400:
        return

    message = f"{context}: {_error_message(response)}"
    if status == 404:
        raise ContentNotFoundError(message, status_code=status)
    if status == 429 or status >= 500:
        raise BackendUnavailableError(message, status_code=status)
    raise BackendRejectedError(message, status_code=status)


class BeeStorageBackend:
    """
    StorageBackend backed by a Swarm Bee node's HTTP API.

    Deposits go to ``POST /bytes`` so the reference Bee returns is the plain
    chunk-tree root of the payload (no manifest, no erasure coding, no
    encryption), which is the same address ContentAddresser computes.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        probe_timeout: float = 10.0,
        deferred_upload: bool = False,
    ):
        """
        Args:
            client: Async client whose ``base_url`` points at the Bee API
            probe_timeout: Seconds allowed for single-shot reads (peers, wallet, HEAD)
            deferred_upload: Let Bee acknowledge uploads before they are pushed to the network
        """
        self._client = client
        self.probe_timeout = probe_timeout
        self.deferred_upload = deferred_upload

    async def deposit(self, staged: StagingHandle, signing_identity: str) -> DepositReceipt:
        """
        Uploads staged data to Swarm, paid for by a postage batch.

        Args:
            staged: The staged payload
            signing_identity: The postage batch ID to stamp the upload with

        Returns:
            The Swarm reference plus the upload tag Bee assigned

        Raises:
            BackendRejectedError: If Bee refuses the batch or the request
            BackendUnavailableError: If Bee cannot be reached or fails transiently
        """
        headers = {
            "Swarm-Postage-Batch-Id": signing_identity.lower(),
            "Content-Type": "application/octet-stream",
            "Swarm-Deferred-Upload": "true" if self.deferred_upload else "false",
        }

        payload = await asyncio.to_thread(staged.read_bytes)
        try:
            # The retry executor owns the per-attempt deadline
            response = await self._client.post("bytes", content=payload, headers=headers, timeout=None)
        except httpx.TransportError as e:
            logger.error(f"Error uploading data to Swarm API: {e}")
            raise BackendUnavailableError(f"Upload error: {e}") from e

        _raise_for_status(response, "Upload error")

        try:
            reference = response.json().get("reference")
        except (ValueError, AttributeError) as e:
            raise BackendUnavailableError(f"Could not parse data upload response: {e}") from e
        if not reference:
            raise BackendUnavailableError("API Response missing 'reference' from upload")

        tag = response.headers.get("swarm-tag")
        logger.info(f"Successfully uploaded data to Swarm with reference: {reference} (tag {tag})")
        return DepositReceipt(reference=reference.lower(), transaction_ref=tag or reference.lower())

    async def retrieve(self, root_hash: str, destination: StagingHandle) -> None:
        """
        Streams data addressed by ``root_hash`` from Swarm into ``destination``.

        Raises:
            ContentNotFoundError: If Bee has no content for the reference (404)
            BackendUnavailableError: If Bee cannot be reached or fails transiently
            BackendRejectedError: If Bee rejects the reference
        """
        try:
            async with self._client.stream("GET", f"bytes/{root_hash.lower()}", timeout=None) as response:
                if response.status_code >= 400:
                    await response.aread()
                    _raise_for_status(response, f"Download error for {root_hash}")
                async for chunk in response.aiter_bytes():
                    destination.write(chunk)
        except httpx.TransportError as e:
            logger.error(f"Error downloading {root_hash} from Swarm API: {e}")
            raise BackendUnavailableError(f"Download error: {e}") from e

        logger.info(f"Successfully downloaded {destination.size} bytes from Swarm reference: {root_hash}")

    async def exists(self, root_hash: str) -> bool:
        """Checks whether Bee can serve ``root_hash`` using a HEAD request."""
        try:
            response = await self._client.head(f"bytes/{root_hash.lower()}", timeout=self.probe_timeout)
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Existence check failed: {e}") from e

        if response.status_code == 404:
            return False
        _raise_for_status(response, f"Existence check for {root_hash}")
        return True

    async def list_nodes(self) -> List[NodeRef]:
        """
        Fetches the peers the Bee node is currently connected to.

        Returns:
            A list of NodeRef, possibly empty

        Raises:
            BackendUnavailableError: If the request fails or the answer is malformed
        """
        try:
            response = await self._client.get("peers", timeout=self.probe_timeout)
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Error fetching peers: {e}") from e
        _raise_for_status(response, "Peers request")

        try:
            data = response.json()
        except ValueError as e:
            raise BackendUnavailableError(f"Could not parse peers response: {e}") from e

        if isinstance(data, dict) and "peers" in data:
            peers = data.get("peers")
        elif isinstance(data, list):
            # Handle case where API directly returns a list
            peers = data
        else:
            logger.warning(f"Unexpected data structure from peers API: {type(data)}")
            return []

        if not isinstance(peers, list):
            logger.warning(f"Peers API response 'peers' field is not a list: {type(peers)}")
            return []

        nodes = []
        for peer in peers:
            if isinstance(peer, dict) and peer.get("address"):
                nodes.append(NodeRef(address=peer["address"], full_node=peer.get("fullNode")))
        return nodes

    async def account_balance(self) -> AccountBalance:
        """
        Fetches wallet information from the configured Bee node.

        Returns:
            AccountBalance with the wallet address, BZZ balance (PLUR) and native token balance (wei)

        Raises:
            BackendError: If the request fails or the response is malformed
        """
        try:
            response = await self._client.get("wallet", timeout=self.probe_timeout)
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Error fetching wallet info: {e}") from e
        _raise_for_status(response, "Wallet request")

        try:
            wallet: Dict[str, Any] = response.json()
            wallet_address: Optional[str] = wallet.get("walletAddress")
            if not wallet_address:
                raise ValueError("API Response missing 'walletAddress' field")
            bzz_balance = int(wallet.get("bzzBalance") or 0)
            native_balance = int(wallet.get("nativeTokenBalance") or 0)
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Error parsing wallet response: {e}")
            raise BackendUnavailableError(f"Could not parse wallet response: {e}") from e

        logger.info(f"Successfully retrieved wallet info: {wallet_address}, balance: {bzz_balance}")
        return AccountBalance(
            wallet_address=wallet_address,
            bzz_balance_plur=bzz_balance,
            native_balance_wei=native_balance,
        )
