"""Retry mechanisms for timing errors.

Only errors flagged as retryable (funding timeouts, early outcome pushes) are
retried. Protocol and ledger errors propagate on the first occurrence.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from ..logging import get_logger
from .exceptions import ChallengeTooEarly, FundingTimeout, SwapError

logger = get_logger(__name__)


@dataclass
class RetryPolicy:
    """Retry policy configuration."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: List[type] = field(
        default_factory=lambda: [FundingTimeout, ChallengeTooEarly]
    )

    def get_delay(self, attempt: int) -> float:
        """Get delay for the given attempt."""
        if attempt <= 0:
            return 0.0

        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= random.uniform(0.5, 1.5)

        return delay

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Check whether an error raised on a given attempt may be retried."""
        if attempt >= self.max_retries:
            return False
        if isinstance(error, SwapError) and not error.retryable:
            return False
        return any(isinstance(error, exc) for exc in self.retryable_exceptions)


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    policy: Optional[RetryPolicy] = None,
    on_retry: Optional[Callable[[BaseException, int], Awaitable[None]]] = None,
) -> Any:
    """Run an async operation, retrying retryable errors.

    Args:
        operation: Zero-argument coroutine factory
        policy: Retry policy, defaults to ``RetryPolicy()``
        on_retry: Optional coroutine called with the error and attempt number
            before sleeping. When given it replaces the backoff sleep, which lets
            callers advance a test clock instead of waiting.

    Returns:
        Result of the first successful attempt
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            attempt += 1
            if not policy.should_retry(e, attempt):
                raise
            logger.warning(
                f"Retrying after {type(e).__name__} (attempt {attempt}/{policy.max_retries})"
            )
            if on_retry is not None:
                await on_retry(e, attempt)
            else:
                delay = policy.get_delay(attempt)
                if isinstance(e, ChallengeTooEarly):
                    delay = max(delay, e.retry_after)
                await asyncio.sleep(delay)
