"""
Simulated adjudicator factory for single-channel adjudicators.

Channels are funded by plain token transfers to the counterfactual address
of their adjudicator. ``createAndPayout`` deploys the adjudicator at that
address and pays the final outcome out of whatever tokens it holds.
"""

from typing import List, Sequence, Set

from eth_utils import keccak, to_checksum_address

from ..crypto import Signature, get_create2_address, recover_digest_signer, to_bytes
from ..logging import LogContext, get_logger
from ..state_channels.channel import ChannelState, bytes32_to_address
from ..state_channels.encoding import hash_state
from ..state_channels.vector import get_minimal_proxy_init_code
from .base import LedgerEvent, NinjaAdjudicator, TransactionReceipt
from .simulated import SimulatedLedger, SimulatedRevert

logger = get_logger(__name__)


class SimulatedNinjaAdjudicator(NinjaAdjudicator):
    """Adjudicator factory and mastercopy on a ``SimulatedLedger``."""

    def __init__(self, ledger: SimulatedLedger, token: str):
        self._ledger = ledger
        self._token = to_checksum_address(token)
        self._address = ledger.new_address("AdjudicatorFactory")
        self._mastercopy = ledger.new_address("SingleChannelAdjudicator")
        self._proxy_code_hash = keccak(get_minimal_proxy_init_code(self._mastercopy))
        self._deployed: Set[str] = set()

    @property
    def address(self) -> str:
        return self._address

    @property
    def mastercopy_address(self) -> str:
        return self._mastercopy

    @property
    def token(self) -> str:
        return self._token

    @property
    def ledger(self) -> SimulatedLedger:
        return self._ledger

    def get_channel_address(self, channel_id: str) -> str:
        return get_create2_address(self._address, to_bytes(channel_id), self._proxy_code_hash)

    def is_deployed(self, channel_id: str) -> bool:
        return channel_id.lower() in self._deployed

    def _require_signed_by_all(self, state: ChannelState, signatures: Sequence[Signature]) -> None:
        participants = state.channel.participants
        if len(signatures) != len(participants):
            raise SimulatedRevert("Insufficient or excess signatures")
        digest = hash_state(state)
        for participant, signature in zip(participants, signatures):
            if recover_digest_signer(digest, signature) != participant:
                raise SimulatedRevert("Invalid signature")

    async def create_and_payout(
        self, sender: str, state: ChannelState, signatures: Sequence[Signature]
    ) -> TransactionReceipt:
        channel_id = state.channel_id.lower()
        channel_address = self.get_channel_address(channel_id)
        erc20 = self._ledger.token(self._token)

        async def action() -> List[LedgerEvent]:
            if channel_id in self._deployed:
                raise SimulatedRevert("Channel already deployed")
            if not state.is_final:
                raise SimulatedRevert("State must be final")
            self._require_signed_by_all(state, signatures)

            remaining = erc20.balance_of(channel_address)
            events = [
                LedgerEvent(name="Concluded", address=channel_address, args={"channelId": channel_id})
            ]
            for asset in state.outcome.assets:
                if asset.asset_holder.lower() != self._token.lower():
                    continue
                for allocation in asset.allocations:
                    payout = min(allocation.amount, remaining)
                    if payout == 0:
                        continue
                    remaining -= payout
                    events.append(
                        erc20.transfer(channel_address, bytes32_to_address(allocation.destination), payout)
                    )
            self._deployed.add(channel_id)
            logger.info(
                f"Deployed adjudicator {channel_address} and paid out turn {state.turn_num}",
                context=LogContext(
                    ledger_id=self._ledger.chain_id, channel_id=channel_id, turn_number=state.turn_num
                ),
            )
            return events

        return await self._ledger.execute(sender, self._address, "createAndPayout", action)
