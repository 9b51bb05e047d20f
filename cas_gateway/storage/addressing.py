"""
Swarm content addressing.

A payload's address is the root of its chunk tree, the same value a Bee node
returns from ``POST /bytes``:

* the payload is cut into 4096-byte chunks;
* a chunk's address is ``keccak256(span || bmt_root(payload))`` where span is
  the number of payload bytes the chunk covers (8 bytes, little endian) and
  the BMT is a binary keccak256 Merkle tree over the zero-padded chunk split
  into 32-byte segments;
* intermediate chunks hold up to 128 child addresses and span the sum of
  their children; a single trailing address left over on a level is carried
  up to the next level unchanged.
"""
import logging
from typing import List, Tuple

from Crypto.Hash import keccak

from cas_gateway.storage.errors import HashingError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
SEGMENT_SIZE = 32
SPAN_SIZE = 8
BRANCHES = CHUNK_SIZE // SEGMENT_SIZE  # 128 references fit in one chunk
ROOT_HASH_HEX_LENGTH = 64
_HEX_DIGITS = frozenset("0123456789abcdef")


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def _zero_hashes() -> List[bytes]:
    # zero_hashes[n] is the BMT node over 2**n zero segments
    hashes = [bytes(SEGMENT_SIZE)]
    while len(hashes) < 8:
        hashes.append(keccak256(hashes[-1] + hashes[-1]))
    return hashes


_ZERO_HASHES = _zero_hashes()


def bmt_root(payload: bytes) -> bytes:
    """Binary Merkle tree root over one chunk payload, zero-padded to CHUNK_SIZE."""
    if len(payload) > CHUNK_SIZE:
        raise HashingError(f"Chunk payload of {len(payload)} bytes exceeds {CHUNK_SIZE}")

    data = payload.ljust(CHUNK_SIZE, b"\x00")
    level = [data[i:i + SEGMENT_SIZE] for i in range(0, CHUNK_SIZE, SEGMENT_SIZE)]
    depth = 0
    while len(level) > 1:
        zero = _ZERO_HASHES[depth]
        next_level = []
        for i in range(0, len(level), 2):
            left, right = level[i], level[i + 1]
            if left == zero and right == zero:
                next_level.append(_ZERO_HASHES[depth + 1])
            else:
                next_level.append(keccak256(left + right))
        level = next_level
        depth += 1
    return level[0]


def chunk_address(payload: bytes, span: int) -> bytes:
    """Address of a single chunk covering ``span`` bytes of the original data."""
    return keccak256(span.to_bytes(SPAN_SIZE, "little") + bmt_root(payload))


class ContentAddresser:
    """Computes and checks content addresses. Stateless and safe to share."""

    def compute_root_hash(self, data: bytes) -> str:
        """
        Compute the content address of ``data``.

        Args:
            data: The full payload

        Returns:
            Lower-case hex root hash (64 characters, no 0x prefix)

        Raises:
            HashingError: If the payload is empty or the tree cannot be built
        """
        if not data:
            raise HashingError("Cannot compute a content address for an empty payload")

        try:
            level: List[Tuple[bytes, int]] = []
            for offset in range(0, len(data), CHUNK_SIZE):
                piece = data[offset:offset + CHUNK_SIZE]
                level.append((chunk_address(piece, len(piece)), len(piece)))

            while len(level) > 1:
                next_level = []
                for i in range(0, len(level), BRANCHES):
                    group = level[i:i + BRANCHES]
                    if len(group) == 1:
                        next_level.append(group[0])
                        continue
                    span = sum(child_span for _, child_span in group)
                    refs = b"".join(ref for ref, _ in group)
                    next_level.append((chunk_address(refs, span), span))
                level = next_level
        except HashingError:
            raise
        except (ValueError, OverflowError, TypeError) as e:
            raise HashingError(f"Error generating Merkle tree: {e}") from e

        root_hash = level[0][0].hex()
        logger.debug(f"Computed root hash {root_hash} over {len(data)} bytes")
        return root_hash

    def verify(self, data: bytes, root_hash: str) -> bool:
        """True if ``data`` hashes to ``root_hash``. Empty data never verifies."""
        if not data:
            return False
        return self.compute_root_hash(data) == normalize_root_hash(root_hash)


def normalize_root_hash(root_hash: str) -> str:
    """Lower-case a root hash and strip an optional 0x prefix."""
    value = root_hash.strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    return value


def is_valid_root_hash(root_hash: str) -> bool:
    value = normalize_root_hash(root_hash)
    if len(value) != ROOT_HASH_HEX_LENGTH:
        return False
    return all(c in _HEX_DIGITS for c in value)
