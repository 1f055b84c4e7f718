"""
Channel and channel-state records.

A channel is identified by its ledger, nonce and two participants. Its states
are immutable snapshots advanced one turn at a time by ``ChannelStateBuilder``.
Outcomes hold an ordered allocation per asset holder: slot 0 belongs to the
proposer (funder), slot 1 to the joiner (beneficiary).
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from ..errors import ProtocolViolation, ValidationError
from ..logging import get_logger

logger = get_logger(__name__)

ZERO_BYTES32 = "0x" + "00" * 32


def convert_address_to_bytes32(address: str) -> str:
    """Left-pad a 20-byte address to a 0x-prefixed bytes32 destination."""
    raw = to_checksum_address(address)[2:].lower()
    return "0x" + raw.rjust(64, "0")


def bytes32_to_address(destination: str) -> str:
    """Inverse of ``convert_address_to_bytes32`` for external destinations."""
    return to_checksum_address("0x" + destination[-40:])


@dataclass(frozen=True)
class Channel:
    """Two-party channel on one ledger."""

    chain_id: int
    nonce: int
    participants: Tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.participants) != 2:
            raise ValidationError(
                "A swap channel has exactly two participants",
                field="participants",
                value=len(self.participants),
                expected=2,
            )
        checksummed = tuple(to_checksum_address(p) for p in self.participants)
        if checksummed[0] == checksummed[1]:
            raise ValidationError(
                "Channel participants must be distinct", field="participants"
            )
        object.__setattr__(self, "participants", checksummed)
        if self.nonce < 0:
            raise ValidationError("Channel nonce must be non-negative", field="nonce")

    @property
    def channel_id(self) -> str:
        """keccak256(abi.encode(chainId, participants, nonce))."""
        digest = keccak(
            encode(
                ["uint256", "address[]", "uint256"],
                [self.chain_id, list(self.participants), self.nonce],
            )
        )
        return "0x" + digest.hex()

    @property
    def proposer(self) -> str:
        return self.participants[0]

    @property
    def joiner(self) -> str:
        return self.participants[1]

    def index_of(self, address: str) -> int:
        """Participant index of an address, raising if it is not a participant."""
        try:
            return self.participants.index(to_checksum_address(address))
        except ValueError:
            raise ValidationError(
                f"{address} is not a participant of channel {self.channel_id}",
                field="participants",
                channel_id=self.channel_id,
            )


@dataclass(frozen=True)
class Allocation:
    """Amount owed to one destination."""

    destination: str
    amount: int

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValidationError(
                "Allocation amount must be non-negative", field="amount", value=self.amount
            )
        if len(self.destination) != 66:
            raise ValidationError(
                "Allocation destination must be bytes32",
                field="destination",
                value=self.destination,
            )
        object.__setattr__(self, "destination", self.destination.lower())


@dataclass(frozen=True)
class AssetOutcome:
    """Ordered allocations held by one asset holder."""

    asset_holder: str
    allocations: Tuple[Allocation, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "asset_holder", to_checksum_address(self.asset_holder))
        object.__setattr__(self, "allocations", tuple(self.allocations))

    @property
    def total(self) -> int:
        return sum(a.amount for a in self.allocations)

    def swapped(self) -> "AssetOutcome":
        """Exchange the amounts of slot 0 and slot 1, keeping destinations."""
        if len(self.allocations) != 2:
            raise ValidationError(
                "Only two-slot allocations can be swapped",
                field="allocations",
                value=len(self.allocations),
                expected=2,
            )
        first, second = self.allocations
        return AssetOutcome(
            asset_holder=self.asset_holder,
            allocations=(
                Allocation(first.destination, second.amount),
                Allocation(second.destination, first.amount),
            ),
        )


@dataclass(frozen=True)
class Outcome:
    """Fund distribution plan of a channel state."""

    assets: Tuple[AssetOutcome, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "assets", tuple(self.assets))

    @classmethod
    def single(cls, asset_holder: str, allocations: Sequence[Allocation]) -> "Outcome":
        return cls(assets=(AssetOutcome(asset_holder, tuple(allocations)),))

    def swapped(self) -> "Outcome":
        """Swap every asset's two-slot allocation."""
        return Outcome(assets=tuple(asset.swapped() for asset in self.assets))

    def amount_at(self, slot: int, asset_index: int = 0) -> int:
        return self.assets[asset_index].allocations[slot].amount

    def destination_at(self, slot: int, asset_index: int = 0) -> str:
        return self.assets[asset_index].allocations[slot].destination

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assets": [
                {
                    "asset_holder": asset.asset_holder,
                    "allocations": [
                        {"destination": a.destination, "amount": a.amount}
                        for a in asset.allocations
                    ],
                }
                for asset in self.assets
            ]
        }


@dataclass(frozen=True)
class VariablePart:
    """Per-turn part of a state as seen by a conditional-logic app."""

    outcome: Outcome
    app_data: bytes


@dataclass(frozen=True)
class ChannelState:
    """Versioned snapshot of a channel."""

    channel: Channel
    turn_num: int
    is_final: bool
    challenge_duration: int
    outcome: Outcome
    app_definition: str
    app_data: bytes = b""

    def __post_init__(self) -> None:
        if self.turn_num < 0:
            raise ValidationError(
                "Turn number must be non-negative",
                field="turn_num",
                value=self.turn_num,
            )
        if self.challenge_duration <= 0:
            raise ValidationError(
                "Challenge duration must be positive",
                field="challenge_duration",
                value=self.challenge_duration,
            )
        object.__setattr__(self, "app_definition", to_checksum_address(self.app_definition))

    @property
    def channel_id(self) -> str:
        return self.channel.channel_id

    @property
    def variable_part(self) -> VariablePart:
        return VariablePart(outcome=self.outcome, app_data=self.app_data)

    def same_round(self, other: "ChannelState") -> bool:
        """Same channel and same turn number."""
        return self.channel == other.channel and self.turn_num == other.turn_num

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "chain_id": self.channel.chain_id,
            "nonce": self.channel.nonce,
            "participants": list(self.channel.participants),
            "turn_num": self.turn_num,
            "is_final": self.is_final,
            "challenge_duration": self.challenge_duration,
            "outcome": self.outcome.to_dict(),
            "app_definition": self.app_definition,
            "app_data": "0x" + self.app_data.hex(),
        }


class ChannelStateBuilder:
    """Builds initial states and advances them turn by turn."""

    @staticmethod
    def create(
        channel: Channel,
        outcome: Outcome,
        app_definition: str,
        app_data: bytes,
        challenge_duration: int,
    ) -> ChannelState:
        """Build the turn-0 state of a channel."""
        return ChannelState(
            channel=channel,
            turn_num=0,
            is_final=False,
            challenge_duration=challenge_duration,
            outcome=outcome,
            app_definition=app_definition,
            app_data=app_data,
        )

    @staticmethod
    def create_funded_outcome(
        asset_holder: str, proposer: str, joiner: str, amount: int
    ) -> Outcome:
        """Outcome with the full amount in the proposer's slot."""
        return Outcome.single(
            asset_holder,
            [
                Allocation(convert_address_to_bytes32(proposer), amount),
                Allocation(convert_address_to_bytes32(joiner), 0),
            ],
        )

    @staticmethod
    def next_turn(state: ChannelState, **changes: Any) -> ChannelState:
        """
        Advance a state by exactly one turn.

        Args:
            state: Current state
            **changes: Optional new ``outcome``, ``app_data`` or ``is_final``

        Returns:
            State at ``turn_num + 1`` sharing channel, app definition and
            challenge duration with ``state``
        """
        return ChannelStateBuilder.with_turn(state, state.turn_num + 1, **changes)

    @staticmethod
    def with_turn(state: ChannelState, turn_num: int, **changes: Any) -> ChannelState:
        """Copy a state to a later (or equal) turn number."""
        frozen = {"channel", "app_definition", "challenge_duration", "turn_num"}
        illegal = frozen.intersection(changes)
        if illegal:
            raise ProtocolViolation(
                f"Cannot change {', '.join(sorted(illegal))} between turns",
                channel_id=state.channel_id,
                turn_number=turn_num,
                field=sorted(illegal)[0],
            )
        if state.is_final:
            raise ProtocolViolation(
                "No state may follow a final state",
                channel_id=state.channel_id,
                turn_number=turn_num,
                field="is_final",
            )
        if turn_num < state.turn_num:
            raise ProtocolViolation(
                f"Turn number regression {state.turn_num} -> {turn_num}",
                channel_id=state.channel_id,
                turn_number=turn_num,
                field="turn_num",
            )
        return replace(state, turn_num=turn_num, **changes)

    @staticmethod
    def final_state(state: ChannelState, turn_num: Optional[int] = None) -> ChannelState:
        """Mark a state final, by default at the next turn."""
        target = state.turn_num + 1 if turn_num is None else turn_num
        return ChannelStateBuilder.with_turn(state, target, is_final=True)
