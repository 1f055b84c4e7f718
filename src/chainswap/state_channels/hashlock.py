"""
Hash-locked swap application.

The app data of a hash-locked channel is the tuple ``(bytes32 h, bytes
preImage)``. Before unlock the pre-image is empty; the unlock at turn 4
reveals a pre-image whose SHA-256 equals ``h`` and swaps the outcome.
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from ..errors import ValidationError
from ..logging import get_logger
from .channel import VariablePart

logger = get_logger(__name__)

UNLOCK_TURN = 4
SWAP_PARTICIPANTS = 2

_APP_DATA_TYPE = "(bytes32,bytes)"


@dataclass(frozen=True)
class HashLockedSwapData:
    """Commitment hash and (possibly empty) revealed pre-image."""

    h: bytes
    pre_image: bytes = b""

    def __post_init__(self) -> None:
        if len(self.h) != 32:
            raise ValidationError(
                "Hash lock commitment must be 32 bytes", field="h", value=self.h.hex()
            )

    @classmethod
    def commit(cls, secret: bytes) -> "HashLockedSwapData":
        """Locked data committing to ``sha256(secret)``."""
        return cls(h=hashlib.sha256(secret).digest())

    def reveal(self, pre_image: bytes) -> "HashLockedSwapData":
        return HashLockedSwapData(h=self.h, pre_image=pre_image)

    @property
    def is_locked(self) -> bool:
        return not self.pre_image

    def unlocks(self, h: bytes) -> bool:
        """True when the pre-image hashes to ``h``."""
        return hashlib.sha256(self.pre_image).digest() == h


class HashLockCodec:
    """ABI codec for hash-locked swap app data."""

    @staticmethod
    def encode(data: HashLockedSwapData) -> bytes:
        return encode([_APP_DATA_TYPE], [(data.h, data.pre_image)])

    @staticmethod
    def decode(app_data: bytes) -> HashLockedSwapData:
        try:
            ((h, pre_image),) = decode([_APP_DATA_TYPE], app_data)
        except DecodingError as e:
            raise ValidationError(
                "Malformed hash lock app data", field="app_data", cause=e
            ) from e
        return HashLockedSwapData(h=h, pre_image=pre_image)


class ConditionalApp(ABC):
    """Conditional-logic contract deciding application transitions."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Address used as ``appDefinition`` in channel states."""

    @abstractmethod
    async def valid_transition(
        self, a: VariablePart, b: VariablePart, turn_num_b: int, n_participants: int
    ) -> bool:
        """Return whether ``a -> b`` is a valid application transition."""


class HashLockedSwapApp(ConditionalApp):
    """In-process implementation of the hash-locked swap rules."""

    def __init__(self, address: str):
        self._address = to_checksum_address(address)

    @property
    def address(self) -> str:
        return self._address

    async def valid_transition(
        self, a: VariablePart, b: VariablePart, turn_num_b: int, n_participants: int
    ) -> bool:
        reason = self.check_transition(a, b, turn_num_b, n_participants)
        if reason is not None:
            logger.debug(f"Hash lock transition rejected: {reason}")
            return False
        return True

    def check_transition(
        self, a: VariablePart, b: VariablePart, turn_num_b: int, n_participants: int
    ) -> Optional[str]:
        """
        Check a transition and explain a rejection.

        The unlock always has to carry ``preImage`` with ``sha256(preImage) == h``,
        as the deployed contract requires. A state with an empty pre-image and
        an unchanged ``h`` is not a valid unlock.

        Returns:
            None when valid, otherwise the reason the transition is invalid
        """
        if turn_num_b != UNLOCK_TURN:
            return f"unlock must happen at turn {UNLOCK_TURN}, got {turn_num_b}"
        if n_participants != SWAP_PARTICIPANTS:
            return f"hash lock needs {SWAP_PARTICIPANTS} participants"

        try:
            data_a = HashLockCodec.decode(a.app_data)
            data_b = HashLockCodec.decode(b.app_data)
        except ValidationError:
            return "malformed app data"

        if data_b.h != data_a.h:
            return "commitment hash changed"
        if not data_b.unlocks(data_a.h):
            return "incorrect pre-image"

        return _check_swapped(a, b)


def _check_swapped(a: VariablePart, b: VariablePart) -> Optional[str]:
    if len(a.outcome.assets) != len(b.outcome.assets):
        return "asset count changed"
    for asset_a, asset_b in zip(a.outcome.assets, b.outcome.assets):
        if asset_a.asset_holder != asset_b.asset_holder:
            return "asset holder changed"
        if len(asset_a.allocations) != 2 or len(asset_b.allocations) != 2:
            return "outcome must have exactly two slots"
        for slot in (0, 1):
            if asset_a.allocations[slot].destination != asset_b.allocations[slot].destination:
                return f"destination of slot {slot} changed"
        if (
            asset_b.allocations[0].amount != asset_a.allocations[1].amount
            or asset_b.allocations[1].amount != asset_a.allocations[0].amount
        ):
            return "amounts not swapped"
    return None

