"""chainswap error handling.

Exception taxonomy for the swap protocol and retry helpers for the timing
errors that resolve by waiting.
"""

from .exceptions import (
    ChallengeTooEarly,
    ConfigurationError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    FundingTimeout,
    InvalidTransition,
    LedgerSubmissionFailure,
    ProtocolViolation,
    SwapError,
    ValidationError,
    is_fatal,
)
from .recovery import RetryPolicy, retry_async

__all__ = [
    # Exceptions
    "SwapError",
    "ProtocolViolation",
    "InvalidTransition",
    "FundingTimeout",
    "ChallengeTooEarly",
    "LedgerSubmissionFailure",
    "ConfigurationError",
    "ValidationError",
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorContext",
    "is_fatal",
    # Recovery
    "RetryPolicy",
    "retry_async",
]
