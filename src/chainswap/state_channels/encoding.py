"""
ABI encoding and hashing of channel states.

These functions produce exactly the bytes and hashes the on-chain
adjudicator computes, so signatures made off-chain verify on-chain.
"""

from typing import Any, List, Tuple

from eth_abi import decode, encode
from eth_utils import keccak

from .channel import (
    Allocation,
    AssetOutcome,
    ChannelState,
    Outcome,
    VariablePart,
)

ALLOCATION_OUTCOME_TYPE = 0

_OUTCOME_TYPE = "(address,bytes)[]"
_ALLOCATION_TYPE = "(bytes32,uint256)[]"
_LABELLED_TYPE = "(uint8,bytes)"
_STATE_TYPE = "(uint256,bool,bytes32,bytes32,bytes32)"


def _b32(value: str) -> bytes:
    return bytes.fromhex(value[2:])


def get_channel_id(state: ChannelState) -> str:
    return state.channel.channel_id


def encode_allocation(allocations: Tuple[Allocation, ...]) -> bytes:
    return encode(
        [_ALLOCATION_TYPE], [[(_b32(a.destination), a.amount) for a in allocations]]
    )


def encode_outcome(outcome: Outcome) -> bytes:
    """Encode an outcome as ``(address assetHolder, bytes assetOutcome)[]``."""
    items = []
    for asset in outcome.assets:
        labelled = encode(
            [_LABELLED_TYPE],
            [(ALLOCATION_OUTCOME_TYPE, encode_allocation(asset.allocations))],
        )
        items.append((asset.asset_holder, labelled))
    return encode([_OUTCOME_TYPE], [items])


def decode_outcome(data: bytes) -> Outcome:
    """Decode bytes produced by ``encode_outcome``."""
    (items,) = decode([_OUTCOME_TYPE], data)
    assets = []
    for asset_holder, labelled in items:
        ((outcome_type, allocation_bytes),) = decode([_LABELLED_TYPE], labelled)
        if outcome_type != ALLOCATION_OUTCOME_TYPE:
            raise ValueError(f"Unsupported asset outcome type {outcome_type}")
        (rows,) = decode([_ALLOCATION_TYPE], allocation_bytes)
        allocations = tuple(
            Allocation("0x" + destination.hex(), amount) for destination, amount in rows
        )
        assets.append(AssetOutcome(asset_holder, allocations))
    return Outcome(assets=tuple(assets))


def hash_outcome(outcome: Outcome) -> bytes:
    return keccak(encode_outcome(outcome))


def hash_app_part(state: ChannelState) -> bytes:
    """keccak256(abi.encode(challengeDuration, appDefinition, appData))."""
    return keccak(
        encode(
            ["uint256", "address", "bytes"],
            [state.challenge_duration, state.app_definition, state.app_data],
        )
    )


def hash_state(state: ChannelState) -> bytes:
    """Hash that participants sign for a state."""
    return keccak(
        encode(
            [_STATE_TYPE],
            [
                (
                    state.turn_num,
                    state.is_final,
                    _b32(state.channel_id),
                    hash_app_part(state),
                    hash_outcome(state.outcome),
                )
            ],
        )
    )


def fixed_part(state: ChannelState) -> Tuple[Any, ...]:
    """``(chainId, participants, channelNonce, appDefinition, challengeDuration)``."""
    return (
        state.channel.chain_id,
        list(state.channel.participants),
        state.channel.nonce,
        state.app_definition,
        state.challenge_duration,
    )


def variable_part(state: ChannelState) -> VariablePart:
    return state.variable_part


def variable_part_abi(part: VariablePart) -> Tuple[bytes, bytes]:
    """``(bytes outcome, bytes appData)`` as passed to ``validTransition``."""
    return (encode_outcome(part.outcome), part.app_data)


def challenge_message(state: ChannelState) -> bytes:
    """Digest a challenger signs to open a challenge on ``state``."""
    return keccak(encode(["bytes32", "string"], [hash_state(state), "forceMove"]))


def who_signed_what_for(states: List[ChannelState], signers: List[List[str]]) -> List[int]:
    """
    Map each participant to the index of the state they signed.

    Args:
        states: Consecutive states, oldest first
        signers: For each state, the participant addresses that signed it

    Returns:
        For each participant, the index into ``states`` of the latest state
        that participant signed
    """
    participants = states[0].channel.participants
    result = []
    for participant in participants:
        indices = [i for i, who in enumerate(signers) if participant in who]
        if not indices:
            raise ValueError(f"{participant} signed none of the states")
        result.append(max(indices))
    return result
