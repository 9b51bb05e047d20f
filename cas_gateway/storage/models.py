# cas_gateway/storage/models.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, List, Optional

# 1 BZZ = 10^16 PLUR, 1 xDAI = 10^18 wei
PLUR_PER_BZZ = 10 ** 16
WEI_PER_NATIVE = 10 ** 18


@dataclass(frozen=True)
class UploadRequest:
    """One file handed to the gateway for upload."""
    payload: bytes
    name: str
    mime_type: str


@dataclass(frozen=True)
class UploadResult:
    root_hash: str
    transaction_ref: str
    byte_size: int
    file_name: str
    mime_type: str
    uploaded_at: datetime


@dataclass(frozen=True)
class DownloadResult:
    payload: bytes
    file_name: str
    mime_type: str
    byte_size: int


@dataclass(frozen=True)
class RetryPolicy:
    """Retry/backoff/timeout settings for one call site."""
    max_attempts: int
    base_backoff_ms: int
    timeout_ms: int

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_backoff_ms < 0:
            raise ValueError("base_backoff_ms must not be negative")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    def backoff_ms(self, attempt: int) -> int:
        """Delay that follows failed attempt number ``attempt`` (1-based)."""
        return self.base_backoff_ms * 2 ** (attempt - 1)


@dataclass(frozen=True)
class ValidationPolicy:
    max_size: int
    allowed_mime_types: FrozenSet[str]
    allowed_extensions: FrozenSet[str]

    @classmethod
    def from_lists(cls, max_size: int, mime_types: List[str], extensions: List[str]) -> "ValidationPolicy":
        """Build a policy, normalizing extensions to lower case without the leading dot."""
        return cls(
            max_size=max_size,
            allowed_mime_types=frozenset(mime_types),
            allowed_extensions=frozenset(ext.lower().lstrip(".") for ext in extensions),
        )


@dataclass(frozen=True)
class NodeRef:
    address: str
    full_node: Optional[bool] = None


@dataclass(frozen=True)
class NetworkStatus:
    connected: bool
    node_count: int
    nodes: List[NodeRef] = field(default_factory=list)


@dataclass(frozen=True)
class AccountBalance:
    wallet_address: str
    bzz_balance_plur: int
    native_balance_wei: int

    @property
    def bzz(self) -> float:
        return self.bzz_balance_plur / PLUR_PER_BZZ

    @property
    def native(self) -> float:
        return self.native_balance_wei / WEI_PER_NATIVE
