"""
Cryptographic primitives for chainswap.

Hashing (SHA-256 for hash locks, Keccak-256 for EVM commitments), CREATE2
address derivation, personal-message signatures and transfer merkle trees.
"""

from .hashing import Hash, Keccak256Hasher, SHA256Hasher, get_create2_address, to_bytes
from .merkle import MerkleProof, MerkleTree, verify_merkle_proof
from .signatures import (
    Signature,
    recover_digest_signer,
    sign_digest,
    verify_digest_signature,
)

__all__ = [
    "Hash",
    "SHA256Hasher",
    "Keccak256Hasher",
    "get_create2_address",
    "to_bytes",
    "MerkleProof",
    "MerkleTree",
    "verify_merkle_proof",
    "Signature",
    "sign_digest",
    "recover_digest_signer",
    "verify_digest_signature",
]
