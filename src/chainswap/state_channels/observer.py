"""
Optional observers of a swap run.

The protocol engine reports what happens (messages exchanged, transactions
submitted, phase changes) to an observer. ``LoggingObserver`` writes these to
the log and totals the gas each actor spent.
"""

from collections import defaultdict
from typing import TYPE_CHECKING, Dict

from ..logging import LogContext, get_logger

if TYPE_CHECKING:
    from ..ledger.base import TransactionReceipt
    from .actors import Actor

logger = get_logger("chainswap.swap")


class SwapObserver:
    """No-op observer; subclasses override the hooks they need."""

    def on_message(self, actor: "Actor", chain_id: int, message: str) -> None:
        pass

    def on_transaction(
        self, actor: "Actor", chain_id: int, description: str, receipt: "TransactionReceipt"
    ) -> None:
        pass

    def on_phase(self, channel_id: str, chain_id: int, phase: str) -> None:
        pass


class LoggingObserver(SwapObserver):
    """Logs every protocol step and accounts gas per actor and ledger."""

    def __init__(self):
        self.gas_by_actor: Dict[str, int] = defaultdict(int)
        self.gas_by_ledger: Dict[int, int] = defaultdict(int)

    def on_message(self, actor: "Actor", chain_id: int, message: str) -> None:
        logger.info(
            f"{actor.name}: {message}",
            context=LogContext(ledger_id=chain_id, actor=actor.name),
        )

    def on_transaction(
        self, actor: "Actor", chain_id: int, description: str, receipt: "TransactionReceipt"
    ) -> None:
        self.gas_by_actor[actor.name] += receipt.gas_used
        self.gas_by_ledger[chain_id] += receipt.gas_used
        logger.info(
            f"{actor.name}: spent {receipt.gas_used} gas {description}, "
            f"total {self.gas_by_actor[actor.name]}",
            context=LogContext(ledger_id=chain_id, actor=actor.name, operation=description),
            extra={"tx_hash": receipt.tx_hash, "block_number": receipt.block_number},
        )

    def on_phase(self, channel_id: str, chain_id: int, phase: str) -> None:
        logger.debug(
            f"Channel entered {phase}",
            context=LogContext(ledger_id=chain_id, channel_id=channel_id),
        )

    def total_gas(self) -> int:
        return sum(self.gas_by_actor.values())

    def log_totals(self) -> None:
        """Log the gas spent by every actor."""
        for name, gas in sorted(self.gas_by_actor.items()):
            logger.info(f"{name} spent {gas} gas in total", context=LogContext(actor=name))
        logger.info(f"Total gas spent by all actors: {self.total_gas()}")
