"""
Unit tests for hashing, signatures and merkle proofs.
"""

import hashlib

import pytest
from eth_account import Account
from eth_utils import keccak

from chainswap.crypto import (
    Hash,
    Keccak256Hasher,
    MerkleTree,
    SHA256Hasher,
    Signature,
    get_create2_address,
    recover_digest_signer,
    sign_digest,
    to_bytes,
    verify_digest_signature,
    verify_merkle_proof,
)


class TestHash:
    """Test the Hash value type."""

    def test_length(self):
        """Test hashes are 32 bytes."""
        with pytest.raises(ValueError):
            Hash(b"\x00" * 31)

    def test_hex_round_trip(self):
        """Test hex conversion with and without prefix."""
        h = Hash(bytes(range(32)))
        assert Hash.from_hex(h.to_hex()) == h
        assert Hash.from_hex(h.to_hex()[2:]) == h

    def test_zero(self):
        """Test the zero hash."""
        assert Hash.zero().is_zero()
        assert Hash.zero().to_int() == 0

    def test_to_bytes(self):
        """Test normalizing inputs to bytes."""
        assert to_bytes("0x0102") == b"\x01\x02"
        assert to_bytes("ab") == b"ab"
        assert to_bytes(Hash.zero()) == b"\x00" * 32


class TestHashers:
    """Test SHA-256 and Keccak-256."""

    def test_sha256(self):
        """Test SHA-256 matches hashlib."""
        assert SHA256Hasher.hash(b"\xde\xad\xbe\xef").value == hashlib.sha256(b"\xde\xad\xbe\xef").digest()

    def test_keccak(self):
        """Test Keccak-256 matches eth_utils."""
        assert Keccak256Hasher.hash(b"abc").value == keccak(b"abc")

    def test_sorted_pair(self):
        """Test pair hashing is order independent."""
        a, b = Keccak256Hasher.hash(b"a"), Keccak256Hasher.hash(b"b")
        assert Keccak256Hasher.hash_pair_sorted(a, b) == Keccak256Hasher.hash_pair_sorted(b, a)

    def test_create2(self):
        """Test CREATE2 derivation against the EIP-1014 example."""
        address = get_create2_address(
            "0x0000000000000000000000000000000000000000",
            b"\x00" * 32,
            keccak(b"\x00"),
        )
        assert address == "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38"

    def test_create2_rejects_short_salt(self):
        """Test salts must be 32 bytes."""
        with pytest.raises(ValueError):
            get_create2_address("0x" + "00" * 20, b"\x00", keccak(b""))


class TestSignatures:
    """Test personal-message signatures over digests."""

    def setup_method(self):
        """Set up test fixtures."""
        self.account = Account.create()
        self.digest = keccak(b"state")

    def test_sign_and_recover(self):
        """Test recovering the signer."""
        signature = sign_digest(self.account, self.digest)
        assert recover_digest_signer(self.digest, signature) == self.account.address
        assert verify_digest_signature(self.digest, signature, self.account.address)

    def test_verify_wrong_signer(self):
        """Test verification against another address fails."""
        signature = sign_digest(self.account, self.digest)
        assert not verify_digest_signature(self.digest, signature, Account.create().address)

    def test_bytes_round_trip(self):
        """Test 65-byte encoding."""
        signature = sign_digest(self.account, self.digest)
        assert Signature.from_bytes(signature.to_bytes()) == signature
        assert Signature.from_hex(signature.to_hex()) == signature
        v, r, s = signature.to_tuple()
        assert v in (27, 28) and len(r) == 32 and len(s) == 32

    def test_invalid_recovery_id(self):
        """Test v must be 27 or 28."""
        with pytest.raises(ValueError):
            Signature(v=2, r=1, s=1)

    def test_legacy_recovery_id(self):
        """Test v of 0 or 1 is normalized."""
        signature = Signature.from_bytes(b"\x01" * 64 + b"\x00")
        assert signature.v == 27


class TestMerkleTree:
    """Test the sorted-pair merkle tree."""

    def setup_method(self):
        """Set up test fixtures."""
        self.leaves = [Keccak256Hasher.hash(bytes([i])) for i in range(5)]
        self.tree = MerkleTree(self.leaves)

    def test_empty_root(self):
        """Test an empty tree has the zero root."""
        assert MerkleTree([]).get_root().is_zero()

    def test_single_leaf(self):
        """Test a single leaf is its own root with an empty proof."""
        tree = MerkleTree(self.leaves[:1])
        assert tree.get_root() == self.leaves[0]
        assert tree.get_proof(self.leaves[0]).path == ()

    def test_every_leaf_proves(self):
        """Test each leaf has a valid proof, including the promoted odd leaf."""
        for leaf in self.leaves:
            proof = self.tree.get_proof(leaf)
            assert proof.verify()
            assert verify_merkle_proof(leaf, list(proof.path), self.tree.get_root())

    def test_unknown_leaf(self):
        """Test proofs for unknown leaves."""
        assert self.tree.get_proof(Hash.zero()) is None
        assert not self.tree.contains(Hash.zero())
        assert len(self.tree) == 5

    def test_tampered_proof(self):
        """Test a proof does not verify for another leaf."""
        proof = self.tree.get_proof(self.leaves[0])
        assert not verify_merkle_proof(self.leaves[1], list(proof.path), self.tree.get_root())
