"""
State Channels - Hash-Locked Atomic Swaps

This module runs a two-channel atomic swap over hash-locked state channels:

- Channel states, outcomes and their on-chain encoding and hashing
- The hash-locked swap app and its transition rules
- Signature bookkeeping and ForceMove support proofs
- One protocol engine per leg and an orchestrator pairing the two legs
- Funding through a Nitro asset holder or a single-channel adjudicator
- On-chain dispute resolution when a counterparty stops cooperating
- A Vector-style channel variant with hashlock transfers
"""

from .actors import Actor, WalletActor
from .channel import (
    Allocation,
    AssetOutcome,
    Channel,
    ChannelState,
    ChannelStateBuilder,
    Outcome,
    VariablePart,
    bytes32_to_address,
    convert_address_to_bytes32,
)
from .channel_protocol import (
    TERMINAL_PHASES,
    ChallengeEvidence,
    LegPhase,
    SwapProtocolEngine,
)
from .dispute_resolution import ChallengeRecord, DisputeResolver, DisputeStatus
from .encoding import (
    challenge_message,
    decode_outcome,
    encode_outcome,
    fixed_part,
    hash_app_part,
    hash_outcome,
    hash_state,
)
from .funding import LegFunding, NinjaFunding, NitroFunding, funding_for
from .hashlock import (
    SWAP_PARTICIPANTS,
    UNLOCK_TURN,
    ConditionalApp,
    HashLockCodec,
    HashLockedSwapApp,
    HashLockedSwapData,
)
from .observer import LoggingObserver, SwapObserver
from .orchestrator import AtomicSwapOrchestrator, SwapResult
from .signatures import (
    SignatureLedger,
    SignedState,
    acceptable_who_signed_what,
    force_move_valid_transition,
    validate_support_proof,
)
from .vector import (
    CoreChannelState,
    CoreTransferState,
    FullTransferState,
    HashlockTransferState,
    VectorBalance,
    VectorChannel,
    VectorChannelClient,
    WithdrawData,
    get_channel_address,
)

__all__ = [
    # Actors
    "Actor",
    "WalletActor",
    # Channel states
    "Allocation",
    "AssetOutcome",
    "Channel",
    "ChannelState",
    "ChannelStateBuilder",
    "Outcome",
    "VariablePart",
    "bytes32_to_address",
    "convert_address_to_bytes32",
    # Encoding
    "challenge_message",
    "decode_outcome",
    "encode_outcome",
    "fixed_part",
    "hash_app_part",
    "hash_outcome",
    "hash_state",
    # Hash lock
    "SWAP_PARTICIPANTS",
    "UNLOCK_TURN",
    "ConditionalApp",
    "HashLockCodec",
    "HashLockedSwapApp",
    "HashLockedSwapData",
    # Signatures
    "SignatureLedger",
    "SignedState",
    "acceptable_who_signed_what",
    "force_move_valid_transition",
    "validate_support_proof",
    # Protocol
    "TERMINAL_PHASES",
    "ChallengeEvidence",
    "LegPhase",
    "SwapProtocolEngine",
    "AtomicSwapOrchestrator",
    "SwapResult",
    # Funding
    "LegFunding",
    "NinjaFunding",
    "NitroFunding",
    "funding_for",
    # Disputes
    "ChallengeRecord",
    "DisputeResolver",
    "DisputeStatus",
    # Observers
    "LoggingObserver",
    "SwapObserver",
    # Vector
    "CoreChannelState",
    "CoreTransferState",
    "FullTransferState",
    "HashlockTransferState",
    "VectorBalance",
    "VectorChannel",
    "VectorChannelClient",
    "WithdrawData",
    "get_channel_address",
]
