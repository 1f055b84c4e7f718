"""
Ledgers the swap runs on.

The engines only see the interfaces in ``base``. ``SimulatedLedger`` and its
contracts run in-process for tests and demos; the web3 adapters talk to
deployed contracts over JSON-RPC.
"""

from .base import (
    ChannelStorage,
    EventFilter,
    EventSubscription,
    Ledger,
    LedgerEvent,
    NinjaAdjudicator,
    NitroAdjudicator,
    TransactionReceipt,
    VectorChannelContracts,
    VectorChannelDispute,
    VectorTransferDispute,
)
from .simulated import DEFAULT_GAS_SCHEDULE, SimulatedLedger, SimulatedRevert, SimulatedToken
from .simulated_ninja import SimulatedNinjaAdjudicator
from .simulated_nitro import SimulatedNitroAdjudicator
from .simulated_vector import SimulatedVectorContracts
from .web3_ledger import (
    Web3HashLockedSwapApp,
    Web3Ledger,
    Web3NitroAdjudicator,
    Web3VectorChannelContracts,
)

__all__ = [
    # Interfaces
    "ChannelStorage",
    "EventFilter",
    "EventSubscription",
    "Ledger",
    "LedgerEvent",
    "NinjaAdjudicator",
    "NitroAdjudicator",
    "TransactionReceipt",
    "VectorChannelContracts",
    "VectorChannelDispute",
    "VectorTransferDispute",
    # Simulated
    "DEFAULT_GAS_SCHEDULE",
    "SimulatedLedger",
    "SimulatedRevert",
    "SimulatedToken",
    "SimulatedNinjaAdjudicator",
    "SimulatedNitroAdjudicator",
    "SimulatedVectorContracts",
    # Web3
    "Web3HashLockedSwapApp",
    "Web3Ledger",
    "Web3NitroAdjudicator",
    "Web3VectorChannelContracts",
]
