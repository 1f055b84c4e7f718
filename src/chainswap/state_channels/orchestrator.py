"""
Atomic swap orchestration across two ledgers.

The executor funds the long-window left leg with a fresh commitment; the
responder funds the short-window right leg with the same commitment. The
executor reveals the secret on the right leg, the responder mirrors it on the
left leg, and both legs are defunded concurrently once both unlocks verify.
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..config import SwapConfig
from ..errors import InvalidTransition, ProtocolViolation, SwapError
from ..ledger.base import TransactionReceipt
from ..logging import LogContext, get_logger
from .actors import Actor
from .channel_protocol import LegPhase, SwapProtocolEngine
from .dispute_resolution import DisputeResolver
from .hashlock import HashLockCodec, HashLockedSwapData
from .observer import SwapObserver

logger = get_logger(__name__)

SECRET_SIZE = 32


@dataclass
class SwapResult:
    """Outcome of one swap run."""

    left_channel_id: str
    right_channel_id: str
    h: bytes
    left_phase: LegPhase
    right_phase: LegPhase
    receipts: Dict[str, TransactionReceipt] = field(default_factory=dict)
    disputed: bool = False
    error: Optional[SwapError] = None

    @property
    def completed(self) -> bool:
        return self.left_phase == LegPhase.CONCLUDED and self.right_phase == LegPhase.CONCLUDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "left_channel_id": self.left_channel_id,
            "right_channel_id": self.right_channel_id,
            "h": "0x" + self.h.hex(),
            "left_phase": self.left_phase.value,
            "right_phase": self.right_phase.value,
            "disputed": self.disputed,
            "error": self.error.to_dict() if self.error is not None else None,
            "receipts": {name: r.tx_hash for name, r in self.receipts.items()},
        }


class AtomicSwapOrchestrator:
    """Runs the two legs of a swap in the order that keeps it atomic."""

    def __init__(self, config: SwapConfig, observer: Optional[SwapObserver] = None):
        config.validate()
        self.config = config
        self.observer = observer or SwapObserver()
        params = config.parameters
        self.left = SwapProtocolEngine(
            config.left,
            proposer=config.executor,
            joiner=config.responder,
            amount=params.left_amount,
            parameters=params,
            observer=self.observer,
        )
        self.right = SwapProtocolEngine(
            config.right,
            proposer=config.responder,
            joiner=config.executor,
            amount=params.right_amount,
            parameters=params,
            observer=self.observer,
        )

    @property
    def executor(self) -> Actor:
        return self.config.executor

    @property
    def responder(self) -> Actor:
        return self.config.responder

    def _result(
        self, h: bytes, disputed: bool = False, error: Optional[SwapError] = None
    ) -> SwapResult:
        receipts = {}
        for engine in (self.left, self.right):
            for name, receipt in engine.receipts.items():
                receipts[f"{engine.leg.name}:{name}"] = receipt
        return SwapResult(
            left_channel_id=self.left.channel_id,
            right_channel_id=self.right.channel_id,
            h=h,
            left_phase=self.left.phase,
            right_phase=self.right.phase,
            receipts=receipts,
            disputed=disputed,
            error=error,
        )

    async def fund(self, secret: bytes) -> bytes:
        """
        Fund the left leg with a commitment to ``secret``, then the right leg
        with the commitment read back from the left leg's app data.

        Returns:
            The commitment hash
        """
        await self.left.fund_channel(HashLockedSwapData.commit(secret).h)
        h = HashLockCodec.decode(self.left.initial_state.app_data).h
        await self.right.fund_channel(h)
        return h

    async def unlock(self, secret: bytes) -> None:
        """Executor reveals on the right leg; responder mirrors on the left."""
        self.right.unlock(self.executor, secret)
        revealed = HashLockCodec.decode(self.right.unlock_state.app_data)
        logger.info(
            "Responder extracted the pre-image from the right leg",
            context=LogContext(
                ledger_id=self.right.chain_id,
                channel_id=self.right.channel_id,
                actor=self.responder.name,
            ),
        )
        self.left.unlock(self.responder, revealed.pre_image, h=revealed.h)

    async def verify(self) -> None:
        """Both unlocks must verify before either leg is defunded."""
        await self.right.verify_unlock()
        await self.left.verify_unlock()

    async def defund(self) -> Dict[str, TransactionReceipt]:
        """
        Defund both legs concurrently.

        Both defunds run to completion; the first failure is raised afterwards.
        """
        results = await asyncio.gather(
            self.left.defund(), self.right.defund(), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return {self.left.leg.name: results[0], self.right.leg.name: results[1]}

    async def run(self, secret: Optional[bytes] = None) -> SwapResult:
        """
        Run the whole swap.

        Args:
            secret: Pre-image to commit to, random when omitted

        Returns:
            SwapResult describing both legs

        Raises:
            ProtocolViolation, InvalidTransition: abort the swap before any
                leg is defunded
            FundingTimeout: when a deposit is not observed in time
            LedgerSubmissionFailure: when a transaction reverts

        With ``auto_dispute`` set, a failure after a deposit was made settles
        every open leg through the dispute path instead of raising, and the
        error is kept on the result.
        """
        secret = os.urandom(SECRET_SIZE) if secret is None else secret
        context = LogContext(component="orchestrator", operation="swap")
        logger.info(
            f"Starting swap between chains {self.left.chain_id} and {self.right.chain_id}",
            context=context,
        )

        try:
            await self.fund(secret)
            await self.unlock(secret)
            await self.verify()
            await self.defund()
        except SwapError as e:
            if isinstance(e, (ProtocolViolation, InvalidTransition)):
                logger.error(f"Swap aborted: {e.message}", context=context)
            if not self.config.parameters.auto_dispute or not self._has_deposits():
                raise
            logger.warning(f"Falling back to the dispute path: {e.message}", context=context)
            await self.recover_open_legs()
            return self._result(self.left.h, disputed=True, error=e)

        logger.info("Swap complete", context=context)
        return self._result(self.left.h)

    def _has_deposits(self) -> bool:
        return any(self._deposited(engine) for engine in (self.left, self.right))

    @staticmethod
    def _deposited(engine: SwapProtocolEngine) -> bool:
        return engine.latest_state is not None and engine.latest_state.turn_num >= 2

    async def recover_leg(self, engine: SwapProtocolEngine, actor: Actor) -> TransactionReceipt:
        """
        Settle a leg through the dispute path.

        ``actor`` challenges with the latest proof the leg holds, waits out
        the challenge window and pushes the outcome.
        """
        resolver = DisputeResolver.for_leg(engine, self.observer)
        logger.warning(
            f"Recovering {engine.leg.name} leg through the dispute path",
            context=LogContext(
                ledger_id=engine.chain_id, channel_id=engine.channel_id, actor=actor.name
            ),
        )
        return await resolver.settle(engine, actor)

    async def recover_open_legs(self) -> Dict[str, TransactionReceipt]:
        """
        Settle every funded leg that has not concluded.

        A leg whose unlock both parties signed is settled by its joiner, any
        other leg is refunded by its proposer.
        """
        receipts = {}
        for engine in (self.right, self.left):
            if engine.is_concluded or not self._deposited(engine):
                continue
            unlocked = engine.unlock_state is not None and engine.signatures.is_supported(
                engine.unlock_state
            )
            actor = engine.joiner if unlocked else engine.proposer
            receipts[engine.leg.name] = await self.recover_leg(engine, actor)
        return receipts
