# tests/conftest.py
import asyncio
from typing import Dict, List

import pytest

from cas_gateway.storage.addressing import ContentAddresser
from cas_gateway.storage.backend import DepositReceipt
from cas_gateway.storage.errors import ContentNotFoundError
from cas_gateway.storage.gateway import StorageGateway
from cas_gateway.storage.models import AccountBalance, NodeRef, RetryPolicy, ValidationPolicy
from cas_gateway.storage.staging import StagingHandle, TempFileManager

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


class FakeBackend:
    """In-memory StorageBackend that records calls and can be told to fail."""

    def __init__(self):
        self.addresser = ContentAddresser()
        self.store: Dict[str, bytes] = {}
        self.deposit_calls = 0
        self.retrieve_calls = 0
        self.identities: List[str] = []
        # Exceptions raised, in order, by the next deposit/retrieve calls
        self.deposit_failures: List[Exception] = []
        self.retrieve_failures: List[Exception] = []
        self.deposit_delay = 0.0
        self.retrieve_delay = 0.0
        self.corrupt_downloads = False
        self.reference_override = None
        self.active_deposits = 0
        self.max_concurrent_deposits = 0
        self.nodes = [NodeRef(address=f"{i:064x}", full_node=True) for i in range(6)]
        self.nodes_error = None
        self.balance = AccountBalance(
            wallet_address="0x1234567890abcdef1234567890abcdef12345678",
            bzz_balance_plur=25 * 10 ** 16,
            native_balance_wei=3 * 10 ** 17,
        )
        self.balance_error = None

    async def deposit(self, staged: StagingHandle, signing_identity: str) -> DepositReceipt:
        self.deposit_calls += 1
        self.identities.append(signing_identity)
        self.active_deposits += 1
        self.max_concurrent_deposits = max(self.max_concurrent_deposits, self.active_deposits)
        try:
            if self.deposit_delay:
                await asyncio.sleep(self.deposit_delay)
            if self.deposit_failures:
                raise self.deposit_failures.pop(0)
            data = staged.read_bytes()
            reference = self.addresser.compute_root_hash(data)
            self.store[reference] = data
            return DepositReceipt(
                reference=self.reference_override or reference,
                transaction_ref=f"tag-{self.deposit_calls}",
            )
        finally:
            self.active_deposits -= 1

    async def retrieve(self, root_hash: str, destination: StagingHandle) -> None:
        self.retrieve_calls += 1
        if self.retrieve_delay:
            await asyncio.sleep(self.retrieve_delay)
        if self.retrieve_failures:
            raise self.retrieve_failures.pop(0)
        if root_hash not in self.store:
            raise ContentNotFoundError(f"Data not found on Swarm at reference {root_hash}", status_code=404)
        data = self.store[root_hash]
        if self.corrupt_downloads:
            data = data[:-1] + bytes([data[-1] ^ 0xFF])
        destination.write(data)

    async def exists(self, root_hash: str) -> bool:
        return root_hash in self.store

    async def list_nodes(self) -> List[NodeRef]:
        if self.nodes_error:
            raise self.nodes_error
        return list(self.nodes)

    async def account_balance(self) -> AccountBalance:
        if self.balance_error:
            raise self.balance_error
        return self.balance

    @property
    def network_calls(self) -> int:
        return self.deposit_calls + self.retrieve_calls


class SleepRecorder:
    """Stand-in for asyncio.sleep that records backoff delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def recorded_sleep():
    return SleepRecorder()


@pytest.fixture
def staging_dir(tmp_path):
    return tmp_path / "staging"


@pytest.fixture
def staging(staging_dir):
    return TempFileManager(directory=staging_dir)


@pytest.fixture
def validation_policy():
    return ValidationPolicy.from_lists(
        max_size=10 * 1024 * 1024,
        mime_types=["image/png", "image/jpeg"],
        extensions=[".png", ".jpg", ".jpeg"],
    )


@pytest.fixture
def upload_policy():
    return RetryPolicy(max_attempts=3, base_backoff_ms=100, timeout_ms=1000)


@pytest.fixture
def download_policy():
    return RetryPolicy(max_attempts=3, base_backoff_ms=50, timeout_ms=1000)


@pytest.fixture
def gateway(backend, staging, validation_policy, upload_policy, download_policy, recorded_sleep):
    return StorageGateway(
        backend=backend,
        signing_identity="batch-0001",
        validation_policy=validation_policy,
        upload_policy=upload_policy,
        download_policy=download_policy,
        staging=staging,
        probe_timeout_ms=500,
        node_sample_size=4,
        sleep=recorded_sleep,
    )


@pytest.fixture
def png_payload():
    """70 bytes starting with a PNG signature."""
    return PNG_HEADER + bytes(range(62))
