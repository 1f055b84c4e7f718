"""
Funding and defunding of one swap leg.

A Nitro leg approves the asset holder, deposits into it and concludes through
the adjudicator. A Ninja leg sends tokens straight to the counterfactual
address of its single-channel adjudicator and deploys that adjudicator only
when paying out.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Sequence, Tuple

from ..config import LegConfig
from ..crypto import Signature
from ..errors import ConfigurationError
from ..ledger.base import (
    EventFilter,
    LedgerEvent,
    NinjaAdjudicator,
    NitroAdjudicator,
    TransactionReceipt,
)
from .channel import ChannelState


class LegFunding(ABC):
    """How tokens get into and out of a leg's channel."""

    conclude_function: str = ""

    def __init__(self, leg: LegConfig):
        self.leg = leg

    @property
    def adjudicator(self):
        return self.leg.adjudicator

    @property
    def asset_holder_address(self) -> str:
        """Asset holder named in the channel outcome."""
        return self.adjudicator.asset_holder_address

    @property
    def conclude_contract(self) -> str:
        return self.adjudicator.address

    @abstractmethod
    def deposited_filter(self, channel_id: str) -> EventFilter:
        """Events showing that the channel received funds."""

    @abstractmethod
    def deposit(self, sender: str, channel_id: str, amount: int) -> AsyncIterator[Tuple[str, TransactionReceipt]]:
        """Submit the funding transactions, yielding a description and receipt for each."""

    @abstractmethod
    async def held_after(self, channel_id: str, event: LedgerEvent) -> int:
        """Channel holdings once ``event`` has been observed."""

    async def holdings(self, channel_id: str) -> int:
        return await self.adjudicator.holdings(channel_id)

    def concluded_filter(self, channel_id: str) -> EventFilter:
        return self.adjudicator.concluded_filter(channel_id)

    @abstractmethod
    async def conclude(
        self, sender: str, state: ChannelState, signatures: Sequence[Signature]
    ) -> TransactionReceipt:
        """Pay out a final state signed by every participant."""


class NitroFunding(LegFunding):
    """Allowance plus deposit into the asset holder."""

    conclude_function = "concludePushOutcomeAndTransferAll"

    def deposited_filter(self, channel_id: str) -> EventFilter:
        return self.adjudicator.deposited_filter(channel_id)

    async def deposit(self, sender: str, channel_id: str, amount: int) -> AsyncIterator[Tuple[str, TransactionReceipt]]:
        receipt = await self.leg.ledger.increase_allowance(
            self.leg.token, sender, self.adjudicator.asset_holder_address, amount
        )
        yield "increasing token allowance", receipt
        receipt = await self.adjudicator.deposit(sender, channel_id, 0, amount)
        yield "depositing tokens", receipt

    async def held_after(self, channel_id: str, event: LedgerEvent) -> int:
        return event.args["destinationHoldings"]

    async def conclude(
        self, sender: str, state: ChannelState, signatures: Sequence[Signature]
    ) -> TransactionReceipt:
        return await self.adjudicator.conclude_push_outcome_and_transfer_all(sender, state, signatures)


class NinjaFunding(LegFunding):
    """Plain token transfer to the channel's adjudicator address."""

    conclude_function = "createAndPayout"

    def deposited_filter(self, channel_id: str) -> EventFilter:
        return self.adjudicator.funded_filter(channel_id)

    async def deposit(self, sender: str, channel_id: str, amount: int) -> AsyncIterator[Tuple[str, TransactionReceipt]]:
        channel_address = self.adjudicator.get_channel_address(channel_id)
        receipt = await self.leg.ledger.transfer(self.adjudicator.token, sender, channel_address, amount)
        yield "transferring tokens to the channel", receipt

    async def held_after(self, channel_id: str, event: LedgerEvent) -> int:
        # Transfer events carry the amount sent, not the running balance
        return await self.holdings(channel_id)

    async def conclude(
        self, sender: str, state: ChannelState, signatures: Sequence[Signature]
    ) -> TransactionReceipt:
        return await self.adjudicator.create_and_payout(sender, state, signatures)


def funding_for(leg: LegConfig) -> LegFunding:
    """Funding strategy matching the leg's adjudicator."""
    if isinstance(leg.adjudicator, NitroAdjudicator):
        return NitroFunding(leg)
    if isinstance(leg.adjudicator, NinjaAdjudicator):
        return NinjaFunding(leg)
    raise ConfigurationError(
        f"{leg.name} leg has an unsupported adjudicator {type(leg.adjudicator).__name__}",
        config_key="adjudicator",
    )
