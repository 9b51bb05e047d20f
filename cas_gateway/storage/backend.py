"""Storage backend protocol consumed by the gateway. Implementation: BeeStorageBackend."""
from dataclasses import dataclass
from typing import List, Protocol

from cas_gateway.storage.models import AccountBalance, NodeRef
from cas_gateway.storage.staging import StagingHandle


@dataclass(frozen=True)
class DepositReceipt:
    """What the backend reports for an accepted deposit."""
    reference: str
    transaction_ref: str


class StorageBackend(Protocol):
    """Content-addressed storage network as seen by the gateway.

    Implementations raise BackendError subclasses; the ``transient`` flag on
    the raised error decides whether the gateway retries.
    """

    async def deposit(self, staged: StagingHandle, signing_identity: str) -> DepositReceipt:
        """Store the staged bytes, paid for by ``signing_identity``."""
        ...

    async def retrieve(self, root_hash: str, destination: StagingHandle) -> None:
        """Write the content addressed by ``root_hash`` into ``destination``."""
        ...

    async def exists(self, root_hash: str) -> bool:
        """Return True if the backend can serve ``root_hash``."""
        ...

    async def list_nodes(self) -> List[NodeRef]:
        """Currently reachable storage nodes."""
        ...

    async def account_balance(self) -> AccountBalance:
        """Balance of the identity the backend signs with."""
        ...
