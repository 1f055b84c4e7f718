"""
Swap participants.

An actor is a capability: it has an identity, signs states and can read its
balance on a ledger. Presentation of what an actor does is the observer's
job, not the actor's.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ..crypto import Hash, Signature, sign_digest
from .channel import ChannelState
from .encoding import hash_state
from .signatures import SignedState

if TYPE_CHECKING:
    from ..ledger.base import Ledger


class Actor(ABC):
    """Participant capability interface."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed address identifying the actor on every ledger."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable name."""

    @abstractmethod
    def sign_digest(self, digest: Union[bytes, Hash]) -> Signature:
        """Sign a 32-byte digest as a personal message."""

    def sign(self, state: ChannelState) -> SignedState:
        """Sign a channel state."""
        return SignedState(state=state, signature=self.sign_digest(hash_state(state)))

    async def balance_on(self, ledger: "Ledger", token: str) -> int:
        """Token balance of this actor on a ledger."""
        return await ledger.token_balance(token, self.address)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name}, {self.address})"


class WalletActor(Actor):
    """Actor backed by a local private key."""

    def __init__(self, account: LocalAccount, name: Optional[str] = None):
        self.account = account
        self._name = name or account.address[:10]

    @classmethod
    def create(cls, name: str) -> "WalletActor":
        """Actor with a freshly generated key."""
        return cls(Account.create(), name)

    @classmethod
    def from_key(cls, private_key: str, name: Optional[str] = None) -> "WalletActor":
        return cls(Account.from_key(private_key), name)

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def name(self) -> str:
        return self._name

    def sign_digest(self, digest: Union[bytes, Hash]) -> Signature:
        return sign_digest(self.account, digest)
