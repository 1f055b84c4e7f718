"""
Dispute Demo

This demo funds both legs of a swap and then lets the responder go silent:
- The executor challenges the left leg with its latest support proof
- An early outcome push is refused until the challenge window elapses
- The finalized outcome is pushed and the executor's deposit returned
- The open right leg is refunded to the responder through the same path
"""

import asyncio

from chainswap.config import LEFT_CHAIN_ID, RIGHT_CHAIN_ID, LegConfig, SwapConfig, SwapParameters
from chainswap.errors import ChallengeTooEarly, SwapError
from chainswap.ledger import SimulatedLedger, SimulatedNitroAdjudicator
from chainswap.logging import LogConfig, get_logger, setup_logging, shutdown_logging
from chainswap.state_channels import (
    AtomicSwapOrchestrator,
    DisputeResolver,
    HashLockedSwapApp,
    LegPhase,
    LoggingObserver,
    WalletActor,
)

logger = get_logger(__name__)

SECRET = b"dispute demo secret"


def deploy_leg(name: str, ledger: SimulatedLedger, holder: WalletActor, challenge_duration: int) -> LegConfig:
    token = ledger.deploy_token(holder.address, 100, f"{name.title()}Token")
    adjudicator = SimulatedNitroAdjudicator(ledger, token)
    app = HashLockedSwapApp(ledger.new_address("HashLockedSwap"))
    adjudicator.register_app(app)
    return LegConfig(name, ledger, adjudicator, app, token, challenge_duration=challenge_duration)


class DisputeDemo:
    """Refunds both deposits after the responder stops cooperating."""

    def __init__(self):
        self.executor = WalletActor.create("executor")
        self.responder = WalletActor.create("responder")
        parameters = SwapParameters(funding_timeout=5.0, conclude_timeout=5.0)
        self.config = SwapConfig.from_parameters(
            deploy_leg("left", SimulatedLedger(LEFT_CHAIN_ID), self.executor, 60),
            deploy_leg("right", SimulatedLedger(RIGHT_CHAIN_ID), self.responder, 30),
            self.executor,
            self.responder,
            parameters,
        )
        self.observer = LoggingObserver()
        self.orchestrator = AtomicSwapOrchestrator(self.config, observer=self.observer)

    async def refund_left_leg(self) -> None:
        """Challenge, wait out the window and push on the left leg."""
        engine = self.orchestrator.left
        resolver = DisputeResolver.for_leg(engine, self.observer)

        record = await resolver.challenge_leg(engine, self.executor)
        print(f"Challenged turn {record.state.turn_num}, finalizes at {record.finalizes_at}")

        try:
            await resolver.push_outcome_and_transfer_all(record, self.executor)
        except ChallengeTooEarly as e:
            print(f"Early push refused, retry after {e.retry_after}s")

        await resolver.wait_for_finalization(record)
        await resolver.push_outcome_and_transfer_all(record, self.executor)
        engine.enter_phase(LegPhase.OUTCOME_PUSHED)
        print(f"Left leg settled: {engine.phase.value}")

    async def run(self) -> None:
        print("=== Dispute Demo ===")
        h = await self.orchestrator.fund(SECRET)
        print(f"Both legs funded with commitment 0x{h.hex()}")
        print("Responder stops responding before the unlock")

        await self.refund_left_leg()

        receipts = await self.orchestrator.recover_open_legs()
        for name, receipt in receipts.items():
            print(f"Recovered {name} leg in tx {receipt.tx_hash}")

        left, right = self.config.left, self.config.right
        print(f"Executor left balance:   {await self.executor.balance_on(left.ledger, left.token)}")
        print(f"Responder right balance: {await self.responder.balance_on(right.ledger, right.token)}")
        self.observer.log_totals()


async def main():
    setup_logging(LogConfig(format_type="text"))
    try:
        await DisputeDemo().run()
    except SwapError as e:
        logger.error(f"Demo failed: {e.message}")
        raise
    finally:
        shutdown_logging()


if __name__ == "__main__":
    asyncio.run(main())
