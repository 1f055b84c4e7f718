"""
Shared fixtures: two simulated ledgers (chain ids 66 and 99), a token and an
adjudicator with the hash-locked swap app on each, and the two swap parties.
"""

import pytest

from chainswap.config import LEFT_CHAIN_ID, RIGHT_CHAIN_ID, LegConfig, SwapConfig, SwapParameters
from chainswap.ledger import SimulatedLedger, SimulatedNitroAdjudicator
from chainswap.state_channels import HashLockedSwapApp, WalletActor

START_TIME = 1_700_000_000
TOKEN_SUPPLY = 100
SECRET = bytes.fromhex("deadbeef")


def build_leg(name: str, ledger: SimulatedLedger, holder: WalletActor, challenge_duration=None) -> LegConfig:
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


@pytest.fixture
def executor():
    return WalletActor.create("executor")


@pytest.fixture
def responder():
    return WalletActor.create("responder")


@pytest.fixture
def left_ledger():
    return SimulatedLedger(LEFT_CHAIN_ID, start_time=START_TIME)


@pytest.fixture
def right_ledger():
    return SimulatedLedger(RIGHT_CHAIN_ID, start_time=START_TIME)


@pytest.fixture
def left_leg(left_ledger, executor):
    return build_leg("left", left_ledger, executor, challenge_duration=60)


@pytest.fixture
def right_leg(right_ledger, responder):
    return build_leg("right", right_ledger, responder, challenge_duration=30)


@pytest.fixture
def parameters():
    return SwapParameters(funding_timeout=1.0, conclude_timeout=1.0)


@pytest.fixture
def swap_config(left_leg, right_leg, executor, responder, parameters):
    return SwapConfig(left_leg, right_leg, executor, responder, parameters)
