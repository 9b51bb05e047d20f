# tests/test_content_addresser.py
import pytest
from Crypto.Hash import keccak

from cas_gateway.storage.addressing import (
    CHUNK_SIZE,
    ContentAddresser,
    bmt_root,
    chunk_address,
    is_valid_root_hash,
    keccak256,
    normalize_root_hash,
)
from cas_gateway.storage.errors import HashingError


def _keccak(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def _naive_chunk_address(payload: bytes, span: int) -> bytes:
    """Straightforward chunk address: hash every BMT node, no shortcuts."""
    data = payload.ljust(CHUNK_SIZE, b"\x00")
    level = [data[i:i + 32] for i in range(0, CHUNK_SIZE, 32)]
    while len(level) > 1:
        level = [_keccak(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
    return _keccak(span.to_bytes(8, "little") + level[0])


def _naive_parent(children):
    refs = b"".join(ref for ref, _ in children)
    span = sum(span for _, span in children)
    return _naive_chunk_address(refs, span), span


@pytest.fixture
def addresser():
    return ContentAddresser()


class TestKeccak:

    def test_empty_input_vector(self):
        assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"


class TestPublishedVectors:
    """Addresses published by the Swarm client libraries, independent of the helpers above."""

    # bee-js content-addressed chunk test: payload 0x010203, span 3
    BEE_JS_CAC_ADDRESS = "ca6357a08e317d15ec560fef34e4c45f8f19f01c372aa70f1da72bfa7f1a4338"

    def test_bee_js_chunk_address(self):
        assert chunk_address(bytes([1, 2, 3]), 3).hex() == self.BEE_JS_CAC_ADDRESS

    def test_bee_js_root_hash(self, addresser):
        assert addresser.compute_root_hash(bytes([1, 2, 3])) == self.BEE_JS_CAC_ADDRESS


class TestSingleChunk:
    """Payloads that fit in one chunk."""

    def test_matches_naive_computation(self, addresser):
        data = b"hello world"
        assert addresser.compute_root_hash(data) == _naive_chunk_address(data, len(data)).hex()

    def test_full_chunk(self, addresser):
        data = bytes(i % 251 for i in range(CHUNK_SIZE))
        assert addresser.compute_root_hash(data) == _naive_chunk_address(data, CHUNK_SIZE).hex()

    def test_zero_payload_uses_same_tree(self):
        """Skipping zero subtrees must not change the BMT root."""
        zeros = bytes(100)
        assert chunk_address(zeros, 100) == _naive_chunk_address(zeros, 100)

    def test_span_is_part_of_address(self):
        """Trailing zero bytes change the span, so they change the address."""
        assert chunk_address(b"abc", 3) != chunk_address(b"abc\x00", 4)

    def test_oversized_chunk_rejected(self):
        with pytest.raises(HashingError):
            bmt_root(bytes(CHUNK_SIZE + 1))


class TestChunkTree:
    """Payloads spanning several chunks."""

    def test_three_chunks(self, addresser):
        data = bytes(i % 256 for i in range(2 * CHUNK_SIZE + 10))
        leaves = [
            (_naive_chunk_address(data[o:o + CHUNK_SIZE], len(data[o:o + CHUNK_SIZE])), len(data[o:o + CHUNK_SIZE]))
            for o in range(0, len(data), CHUNK_SIZE)
        ]
        expected, span = _naive_parent(leaves)

        assert span == len(data)
        assert addresser.compute_root_hash(data) == expected.hex()

    def test_lone_trailing_reference_is_carried_up(self, addresser):
        """129 chunks: one full intermediate chunk plus one leaf carried unchanged."""
        data = b"".join(bytes([i % 256]) * CHUNK_SIZE for i in range(129))
        leaves = [
            (_naive_chunk_address(data[o:o + CHUNK_SIZE], CHUNK_SIZE), CHUNK_SIZE)
            for o in range(0, len(data), CHUNK_SIZE)
        ]
        full = _naive_parent(leaves[:128])
        expected, span = _naive_parent([full, leaves[128]])

        assert span == 129 * CHUNK_SIZE
        assert addresser.compute_root_hash(data) == expected.hex()


class TestComputeRootHash:

    def test_deterministic(self, addresser):
        data = b"\x89PNG" + bytes(5000)
        assert addresser.compute_root_hash(data) == ContentAddresser().compute_root_hash(data)

    def test_single_byte_change_changes_hash(self, addresser):
        data = bytearray(b"x" * 9000)
        original = addresser.compute_root_hash(bytes(data))
        data[8500] ^= 0x01
        assert addresser.compute_root_hash(bytes(data)) != original

    def test_output_format(self, addresser):
        root = addresser.compute_root_hash(b"abc")
        assert len(root) == 64
        assert root == root.lower()
        assert is_valid_root_hash(root)

    def test_empty_payload_raises(self, addresser):
        with pytest.raises(HashingError):
            addresser.compute_root_hash(b"")

    def test_verify(self, addresser):
        data = b"some content"
        root = addresser.compute_root_hash(data)

        assert addresser.verify(data, root)
        assert addresser.verify(data, "0x" + root.upper())
        assert not addresser.verify(data + b"!", root)
        assert not addresser.verify(b"", root)


class TestRootHashFormat:

    def test_normalize(self):
        assert normalize_root_hash(" 0xABCDEF ") == "abcdef"

    @pytest.mark.parametrize("value", [
        "a" * 64,
        "0x" + "A" * 64,
        "0123456789abcdef" * 4,
    ])
    def test_valid(self, value):
        assert is_valid_root_hash(value)

    @pytest.mark.parametrize("value", [
        "",
        "a" * 63,
        "a" * 65,
        "g" * 64,
        "a_" * 32,
        "status",
    ])
    def test_invalid(self, value):
        assert not is_valid_root_hash(value)
