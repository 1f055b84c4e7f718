"""
Atomic Swap Demo

This demo runs a cooperative swap between two simulated ledgers:
- Deploying a token, an adjudicator and the hash-locked swap app per chain
- Funding both legs with the same commitment
- Revealing the secret on the right leg and mirroring it on the left leg
- Concluding and defunding both channels
- Gas accounting per actor
"""

import asyncio
from typing import Dict

from chainswap.config import LEFT_CHAIN_ID, RIGHT_CHAIN_ID, LegConfig, SwapConfig, SwapParameters
from chainswap.errors import SwapError
from chainswap.ledger import SimulatedLedger, SimulatedNitroAdjudicator
from chainswap.logging import LogConfig, get_logger, setup_logging, shutdown_logging
from chainswap.state_channels import (
    AtomicSwapOrchestrator,
    HashLockedSwapApp,
    LoggingObserver,
    WalletActor,
)

logger = get_logger(__name__)

TOKEN_SUPPLY = 100


def deploy_leg(name: str, ledger: SimulatedLedger, holder: WalletActor, challenge_duration: int) -> LegConfig:
    """Deploy a token, an adjudicator and the swap app on one ledger."""
    token = ledger.deploy_token(holder.address, TOKEN_SUPPLY, f"{name.title()}Token")
    adjudicator = SimulatedNitroAdjudicator(ledger, token)
    app = HashLockedSwapApp(ledger.new_address("HashLockedSwap"))
    adjudicator.register_app(app)
    return LegConfig(
        name=name,
        ledger=ledger,
        adjudicator=adjudicator,
        app=app,
        token=token,
        challenge_duration=challenge_duration,
    )


class AtomicSwapDemo:
    """Cooperative swap between an executor and a responder."""

    def __init__(self):
        self.executor = WalletActor.create("executor")
        self.responder = WalletActor.create("responder")
        self.parameters = SwapParameters(funding_timeout=5.0, conclude_timeout=5.0)
        self.left = deploy_leg(
            "left",
            SimulatedLedger(LEFT_CHAIN_ID),
            self.executor,
            self.parameters.left_challenge_duration,
        )
        self.right = deploy_leg(
            "right",
            SimulatedLedger(RIGHT_CHAIN_ID),
            self.responder,
            self.parameters.right_challenge_duration,
        )
        self.config = SwapConfig.from_parameters(
            self.left, self.right, self.executor, self.responder, self.parameters
        )
        self.observer = LoggingObserver()

    async def balances(self) -> Dict[str, int]:
        return {
            f"{actor.name}@{leg.name}": await actor.balance_on(leg.ledger, leg.token)
            for actor in (self.executor, self.responder)
            for leg in (self.left, self.right)
        }

    async def run(self) -> None:
        print("=== Atomic Swap Demo ===")
        print(f"Executor:  {self.executor.address}")
        print(f"Responder: {self.responder.address}")
        print(f"Balances before: {await self.balances()}")

        orchestrator = AtomicSwapOrchestrator(self.config, observer=self.observer)
        result = await orchestrator.run()

        print(f"\nSwap completed: {result.completed}")
        print(f"Commitment: 0x{result.h.hex()}")
        print(f"Left channel:  {result.left_channel_id} ({result.left_phase.value})")
        print(f"Right channel: {result.right_channel_id} ({result.right_phase.value})")
        print(f"Balances after: {await self.balances()}")

        self.observer.log_totals()
        for name, gas in sorted(self.observer.gas_by_ledger.items()):
            print(f"Gas on chain {name}: {gas}")


async def main():
    setup_logging(LogConfig(format_type="colored"))
    try:
        await AtomicSwapDemo().run()
    except SwapError as e:
        logger.error(f"Demo failed: {e.message}")
        raise
    finally:
        shutdown_logging()


if __name__ == "__main__":
    asyncio.run(main())
