"""
chainswap - atomic swaps over hash-locked state channels.

Two parties swap tokens held on two ledgers by opening one hash-locked
channel on each ledger. The executor commits to a secret on the left channel,
reveals it on the right channel, and the responder reuses the revealed
pre-image to unlock the left channel. Either party can fall back to on-chain
challenges if the other stops responding.
"""

__version__ = "0.1.0"

from .config import LEFT_CHAIN_ID, RIGHT_CHAIN_ID, SWAP_AMOUNT, LegConfig, SwapConfig, SwapParameters
from .errors import (
    ChallengeTooEarly,
    ConfigurationError,
    FundingTimeout,
    InvalidTransition,
    LedgerSubmissionFailure,
    ProtocolViolation,
    SwapError,
    ValidationError,
)
from .state_channels import (
    AtomicSwapOrchestrator,
    DisputeResolver,
    HashLockedSwapApp,
    LegPhase,
    LoggingObserver,
    SwapObserver,
    SwapProtocolEngine,
    SwapResult,
    WalletActor,
)

__all__ = [
    "__version__",
    # Configuration
    "LEFT_CHAIN_ID",
    "RIGHT_CHAIN_ID",
    "SWAP_AMOUNT",
    "LegConfig",
    "SwapConfig",
    "SwapParameters",
    # Errors
    "SwapError",
    "ProtocolViolation",
    "InvalidTransition",
    "FundingTimeout",
    "ChallengeTooEarly",
    "LedgerSubmissionFailure",
    "ConfigurationError",
    "ValidationError",
    # Swap
    "AtomicSwapOrchestrator",
    "DisputeResolver",
    "HashLockedSwapApp",
    "LegPhase",
    "LoggingObserver",
    "SwapObserver",
    "SwapProtocolEngine",
    "SwapResult",
    "WalletActor",
]
