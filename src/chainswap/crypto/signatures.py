"""
Digital signatures over 32-byte digests.

Channel states and commitments are signed as Ethereum personal messages
(EIP-191) of their hash, which is what the on-chain adjudicators recover.
"""

from dataclasses import dataclass
from typing import Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_keys.exceptions import BadSignature
from eth_utils import to_checksum_address

from .hashing import Hash, to_bytes


@dataclass(frozen=True)
class Signature:
    """Recoverable secp256k1 signature split into ``(v, r, s)``."""

    v: int
    r: int
    s: int

    def __post_init__(self) -> None:
        if self.v not in (27, 28):
            raise ValueError(f"Invalid recovery id: {self.v}")
        if not (0 < self.r < 2**256 and 0 < self.s < 2**256):
            raise ValueError("Signature components out of range")

    @classmethod
    def from_bytes(cls, signature_bytes: bytes) -> "Signature":
        """Create from the 65-byte ``r || s || v`` encoding."""
        if len(signature_bytes) != 65:
            raise ValueError("Signature must be exactly 65 bytes")
        v = signature_bytes[64]
        if v < 27:
            v += 27
        return cls(
            v=v,
            r=int.from_bytes(signature_bytes[:32], "big"),
            s=int.from_bytes(signature_bytes[32:64], "big"),
        )

    @classmethod
    def from_hex(cls, hex_string: str) -> "Signature":
        return cls.from_bytes(to_bytes(hex_string))

    def to_bytes(self) -> bytes:
        return (
            self.r.to_bytes(32, "big") + self.s.to_bytes(32, "big") + bytes([self.v])
        )

    def to_hex(self) -> str:
        return "0x" + self.to_bytes().hex()

    def to_tuple(self) -> tuple:
        """Return ``(v, r, s)`` with r and s as bytes32, the Solidity struct layout."""
        return (self.v, self.r.to_bytes(32, "big"), self.s.to_bytes(32, "big"))


def sign_digest(account: LocalAccount, digest: Union[bytes, Hash]) -> Signature:
    """
    Sign a 32-byte digest as an Ethereum personal message.

    Args:
        account: Local account holding the private key
        digest: 32-byte hash to sign

    Returns:
        Recoverable signature
    """
    message = encode_defunct(primitive=to_bytes(digest))
    signed = account.sign_message(message)
    return Signature(v=signed.v, r=signed.r, s=signed.s)


def recover_digest_signer(digest: Union[bytes, Hash], signature: Signature) -> str:
    """Recover the checksummed address that produced a personal-message signature."""
    message = encode_defunct(primitive=to_bytes(digest))
    address = Account.recover_message(message, signature=signature.to_bytes())
    return to_checksum_address(address)


def verify_digest_signature(
    digest: Union[bytes, Hash], signature: Signature, expected_signer: str
) -> bool:
    """Check that a digest was signed by the expected address."""
    try:
        recovered = recover_digest_signer(digest, signature)
    except (BadSignature, ValueError):
        return False
    return recovered == to_checksum_address(expected_signer)
