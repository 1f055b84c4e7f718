"""Exception hierarchy for chainswap.

This module defines the error taxonomy of the swap protocol. Every error
carries the channel id, turn number and offending field where they are known,
so a failure can always be reported against the leg that produced it.
"""

import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""

    PROTOCOL = "protocol"
    TIMING = "timing"
    LEDGER = "ledger"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    SYSTEM = "system"


@dataclass
class ErrorContext:
    """Context information for an error."""

    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)
    channel_id: Optional[str] = None
    turn_number: Optional[int] = None
    field: Optional[str] = None
    ledger_id: Optional[int] = None
    operation: Optional[str] = None
    tx_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "timestamp": self.timestamp,
            "channel_id": self.channel_id,
            "turn_number": self.turn_number,
            "field": self.field,
            "ledger_id": self.ledger_id,
            "operation": self.operation,
            "tx_hash": self.tx_hash,
            "metadata": self.metadata,
        }


class SwapError(Exception):
    """Base exception for all chainswap errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        retryable: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
        channel_id: Optional[str] = None,
        turn_number: Optional[int] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.context = context or ErrorContext()
        if channel_id is not None:
            self.context.channel_id = channel_id
        if turn_number is not None:
            self.context.turn_number = turn_number
        if field is not None:
            self.context.field = field
        self.cause = cause
        self.retryable = retryable
        self.metadata = metadata or {}
        self.timestamp = time.time()
        self.traceback = traceback.format_exc()

    @property
    def channel_id(self) -> Optional[str]:
        return self.context.channel_id

    @property
    def turn_number(self) -> Optional[int]:
        return self.context.turn_number

    @property
    def field(self) -> Optional[str]:
        return self.context.field

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
            "retryable": self.retryable,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [f"{self.__class__.__name__}: {self.message}"]

        if self.error_code:
            parts.append(f"Code: {self.error_code}")

        if self.context.channel_id:
            parts.append(f"Channel: {self.context.channel_id}")

        if self.context.turn_number is not None:
            parts.append(f"Turn: {self.context.turn_number}")

        if self.context.field:
            parts.append(f"Field: {self.context.field}")

        if self.retryable:
            parts.append("Retryable: Yes")

        return " | ".join(parts)


class ProtocolViolation(SwapError):
    """A state broke turn ordering or lacks a required signature."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        super().__init__(
            message, category=ErrorCategory.PROTOCOL, retryable=False, **kwargs
        )


class InvalidTransition(SwapError):
    """The conditional-logic app rejected a transition."""

    def __init__(self, message: str, reason: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        super().__init__(
            message, category=ErrorCategory.PROTOCOL, retryable=False, **kwargs
        )
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class FundingTimeout(SwapError):
    """The expected deposit was not observed in time."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            message, category=ErrorCategory.TIMING, retryable=True, **kwargs
        )
        self.timeout = timeout

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["timeout"] = self.timeout
        return data


class ChallengeTooEarly(SwapError):
    """An outcome push was attempted before the challenge window elapsed."""

    def __init__(
        self,
        message: str,
        finalizes_at: Optional[int] = None,
        now: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(
            message, category=ErrorCategory.TIMING, retryable=True, **kwargs
        )
        self.finalizes_at = finalizes_at
        self.now = now

    @property
    def retry_after(self) -> float:
        """Seconds to wait before the push can succeed."""
        if self.finalizes_at is None or self.now is None:
            return 0.0
        return float(max(0, self.finalizes_at - self.now))

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"finalizes_at": self.finalizes_at, "retry_after": self.retry_after})
        return data


class LedgerSubmissionFailure(SwapError):
    """A transaction reverted or the provider call failed."""

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        contract: Optional[str] = None,
        function: Optional[str] = None,
        revert_reason: Optional[str] = None,
        ledger_id: Optional[int] = None,
        **kwargs,
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            message, category=ErrorCategory.LEDGER, retryable=False, **kwargs
        )
        self.context.operation = function
        self.context.tx_hash = tx_hash
        self.context.ledger_id = ledger_id
        self.contract = contract
        self.function = function
        self.revert_reason = revert_reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "contract": self.contract,
                "function": self.function,
                "revert_reason": self.revert_reason,
            }
        )
        return data


class ConfigurationError(SwapError):
    """Configuration error."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.config_key = config_key

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data


class ValidationError(SwapError):
    """Validation error."""

    def __init__(
        self,
        message: str,
        value: Optional[Any] = None,
        expected: Optional[Any] = None,
        **kwargs,
    ):
        super().__init__(message, category=ErrorCategory.VALIDATION, **kwargs)
        self.value = value
        self.expected = expected

    def to_dict(self) -> Dict[str, Any]:
        """Convert validation error to dictionary."""
        data = super().to_dict()
        data.update(
            {
                "value": str(self.value) if self.value is not None else None,
                "expected": str(self.expected) if self.expected is not None else None,
            }
        )
        return data


def is_fatal(error: BaseException) -> bool:
    """Return True for errors that must abort a leg without retrying."""
    if isinstance(error, SwapError):
        return not error.retryable
    return True
