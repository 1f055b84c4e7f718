"""
Hash functions and address derivation for chainswap.

SHA-256 is the hash-lock hash; Keccak-256 is the EVM hash used for channel
ids, state hashes, merkle trees and CREATE2 address derivation.
"""

import hashlib
from dataclasses import dataclass
from typing import List, Union

from eth_utils import keccak, to_checksum_address


@dataclass(frozen=True)
class Hash:
    """Immutable 32-byte hash value."""

    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != 32:
            raise ValueError("Hash must be exactly 32 bytes")

    def __str__(self) -> str:
        return self.to_hex()

    def __repr__(self) -> str:
        return f"Hash('{self.to_hex()}')"

    def __lt__(self, other: "Hash") -> bool:
        return self.value < other.value

    @classmethod
    def from_hex(cls, hex_string: str) -> "Hash":
        """Create a Hash from a hexadecimal string, with or without 0x."""
        if hex_string.startswith(("0x", "0X")):
            hex_string = hex_string[2:]
        return cls(bytes.fromhex(hex_string))

    @classmethod
    def zero(cls) -> "Hash":
        """Create a zero hash (all zeros)."""
        return cls(b"\x00" * 32)

    def to_hex(self) -> str:
        """Convert hash to 0x-prefixed hexadecimal string."""
        return "0x" + self.value.hex()

    def to_int(self) -> int:
        """Convert hash to integer (big-endian)."""
        return int.from_bytes(self.value, byteorder="big")

    def is_zero(self) -> bool:
        return self.value == b"\x00" * 32


def to_bytes(data: Union[bytes, str, Hash]) -> bytes:
    """Normalize bytes, 0x-hex strings, plain strings or hashes to bytes."""
    if isinstance(data, Hash):
        return data.value
    if isinstance(data, str):
        if data.startswith(("0x", "0X")):
            return bytes.fromhex(data[2:])
        return data.encode("utf-8")
    return bytes(data)


class SHA256Hasher:
    """SHA-256 hasher used by hash locks."""

    @staticmethod
    def hash(data: Union[bytes, str]) -> Hash:
        """
        Hash data using SHA-256.

        Args:
            data: Data to hash (bytes, 0x-hex string or text)

        Returns:
            Hash object containing the SHA-256 digest
        """
        return Hash(hashlib.sha256(to_bytes(data)).digest())


class Keccak256Hasher:
    """Keccak-256 hasher matching the EVM ``keccak256`` opcode."""

    @staticmethod
    def hash(data: Union[bytes, str]) -> Hash:
        """
        Hash data using Keccak-256.

        Args:
            data: Data to hash (bytes, 0x-hex string or text)

        Returns:
            Hash object containing the Keccak-256 digest
        """
        return Hash(keccak(to_bytes(data)))

    @staticmethod
    def hash_pair_sorted(left: Hash, right: Hash) -> Hash:
        """Hash two nodes in ascending order, as OpenZeppelin MerkleProof does."""
        if right < left:
            left, right = right, left
        return Hash(keccak(left.value + right.value))

    @staticmethod
    def hash_list(items: List[bytes]) -> Hash:
        """Hash the concatenation of a list of byte strings."""
        return Hash(keccak(b"".join(items)))


def get_create2_address(deployer: str, salt: Union[bytes, Hash], init_code_hash: Union[bytes, Hash]) -> str:
    """
    Derive a CREATE2 contract address.

    Args:
        deployer: Address of the deploying factory
        salt: 32-byte salt
        init_code_hash: Keccak-256 of the contract init code

    Returns:
        Checksummed address the contract will be deployed to
    """
    salt_bytes = to_bytes(salt)
    code_hash = to_bytes(init_code_hash)
    if len(salt_bytes) != 32 or len(code_hash) != 32:
        raise ValueError("salt and init code hash must be 32 bytes")
    digest = keccak(b"\xff" + to_bytes(deployer) + salt_bytes + code_hash)
    return to_checksum_address(digest[12:])
