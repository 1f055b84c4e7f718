"""
Simulated Nitro adjudicator and ERC20 asset holder.

Mirrors the on-chain rules closely enough for the swap to be exercised end to
end: deposits guarded by ``expectedHeld``, conclusion with a double-signed
final state, ForceMove challenges and outcome pushes after the challenge
window. Every call validates first and only then mutates state, so a revert
leaves the contracts untouched.
"""

from typing import Dict, List, Sequence, Set

from eth_utils import to_checksum_address

from ..crypto import Signature, recover_digest_signer
from ..logging import LogContext, get_logger
from ..state_channels.channel import ChannelState, bytes32_to_address
from ..state_channels.encoding import challenge_message, hash_outcome, hash_state
from ..state_channels.hashlock import ConditionalApp
from ..state_channels.signatures import validate_support_proof
from .base import ChannelStorage, LedgerEvent, NitroAdjudicator, TransactionReceipt
from .simulated import SimulatedLedger, SimulatedRevert

logger = get_logger(__name__)


class SimulatedNitroAdjudicator(NitroAdjudicator):
    """Adjudicator and single-token asset holder on a ``SimulatedLedger``."""

    def __init__(self, ledger: SimulatedLedger, token: str):
        self._ledger = ledger
        self.token = to_checksum_address(token)
        self._address = ledger.new_address("NitroAdjudicator")
        self._asset_holder = ledger.new_address("ERC20AssetHolder")
        self._holdings: Dict[str, int] = {}
        self._storage: Dict[str, ChannelStorage] = {}
        self._pushed: Set[str] = set()
        self._apps: Dict[str, ConditionalApp] = {}

    @property
    def address(self) -> str:
        return self._address

    @property
    def asset_holder_address(self) -> str:
        return self._asset_holder

    @property
    def ledger(self) -> SimulatedLedger:
        return self._ledger

    def register_app(self, app: ConditionalApp) -> None:
        """Make a conditional-logic app available to challenges."""
        self._apps[app.address] = app

    def _app(self, state: ChannelState) -> ConditionalApp:
        try:
            return self._apps[state.app_definition]
        except KeyError:
            raise SimulatedRevert(f"No app deployed at {state.app_definition}")

    def _stored(self, channel_id: str) -> ChannelStorage:
        return self._storage.get(channel_id.lower(), ChannelStorage())

    async def holdings(self, channel_id: str) -> int:
        return self._holdings.get(channel_id.lower(), 0)

    async def channel_storage(self, channel_id: str) -> ChannelStorage:
        stored = self._stored(channel_id)
        return ChannelStorage(
            turn_num_record=stored.turn_num_record,
            finalizes_at=stored.finalizes_at,
            state_hash=stored.state_hash,
            challenger=stored.challenger,
            outcome_hash=stored.outcome_hash,
        )

    async def deposit(
        self, sender: str, channel_id: str, expected_held: int, amount: int
    ) -> TransactionReceipt:
        channel_id = channel_id.lower()
        erc20 = self._ledger.token(self.token)

        async def action() -> List[LedgerEvent]:
            if self._stored(channel_id).is_finalized(self._ledger.now):
                raise SimulatedRevert("Channel finalized")
            held = self._holdings.get(channel_id, 0)
            if held < expected_held:
                raise SimulatedRevert("holdings < expectedHeld")
            if held >= expected_held + amount:
                raise SimulatedRevert("holdings already sufficient")
            amount_deposited = expected_held + amount - held
            transfer = erc20.transfer_from(self._asset_holder, sender, self._asset_holder, amount_deposited)
            self._holdings[channel_id] = held + amount_deposited
            return [
                transfer,
                LedgerEvent(
                    name="Deposited",
                    address=self._asset_holder,
                    args={
                        "destination": channel_id,
                        "amountDeposited": amount_deposited,
                        "destinationHoldings": self._holdings[channel_id],
                    },
                ),
            ]

        return await self._ledger.execute(sender, self._asset_holder, "deposit", action)

    def _require_signed_by_all(self, state: ChannelState, signatures: Sequence[Signature]) -> None:
        participants = state.channel.participants
        if len(signatures) != len(participants):
            raise SimulatedRevert("Insufficient or excess signatures")
        digest = hash_state(state)
        for participant, signature in zip(participants, signatures):
            if recover_digest_signer(digest, signature) != participant:
                raise SimulatedRevert("Invalid signature")

    def _transfer_all(self, state: ChannelState) -> List[LedgerEvent]:
        """Pay out the outcome in allocation order from the channel's holdings."""
        channel_id = state.channel_id.lower()
        erc20 = self._ledger.token(self.token)
        remaining = self._holdings.get(channel_id, 0)
        events = []
        for asset in state.outcome.assets:
            if asset.asset_holder != self._asset_holder:
                continue
            for allocation in asset.allocations:
                payout = min(allocation.amount, remaining)
                if payout == 0:
                    continue
                remaining -= payout
                events.append(
                    erc20.transfer(self._asset_holder, bytes32_to_address(allocation.destination), payout)
                )
                events.append(
                    LedgerEvent(
                        name="AssetTransferred",
                        address=self._asset_holder,
                        args={
                            "channelId": channel_id,
                            "destination": allocation.destination,
                            "amount": payout,
                        },
                    )
                )
        self._holdings[channel_id] = remaining
        self._pushed.add(channel_id)
        return events

    async def conclude_push_outcome_and_transfer_all(
        self, sender: str, state: ChannelState, signatures: Sequence[Signature]
    ) -> TransactionReceipt:
        channel_id = state.channel_id.lower()

        async def action() -> List[LedgerEvent]:
            now = self._ledger.now
            if self._stored(channel_id).is_finalized(now) or channel_id in self._pushed:
                raise SimulatedRevert("Channel finalized")
            if not state.is_final:
                raise SimulatedRevert("State must be final")
            self._require_signed_by_all(state, signatures)

            self._storage[channel_id] = ChannelStorage(
                turn_num_record=state.turn_num,
                finalizes_at=now,
                outcome_hash=hash_outcome(state.outcome),
            )
            events = [LedgerEvent(name="Concluded", address=self._address, args={"channelId": channel_id})]
            return events + self._transfer_all(state)

        return await self._ledger.execute(sender, self._address, "concludePushOutcomeAndTransferAll", action)

    async def challenge(
        self,
        sender: str,
        states: Sequence[ChannelState],
        signatures: Sequence[Signature],
        who_signed_what: Sequence[int],
        challenger_signature: Signature,
    ) -> TransactionReceipt:
        if not states:
            raise ValueError("A challenge needs at least one state")
        last = states[-1]
        channel_id = last.channel_id.lower()

        async def action() -> List[LedgerEvent]:
            now = self._ledger.now
            stored = self._stored(channel_id)
            if stored.is_finalized(now) or channel_id in self._pushed:
                raise SimulatedRevert("Channel finalized")
            if stored.is_open:
                if last.turn_num < stored.turn_num_record:
                    raise SimulatedRevert("turnNumRecord decreased")
            elif last.turn_num <= stored.turn_num_record:
                raise SimulatedRevert("turnNumRecord not increased")

            if len(signatures) != len(last.channel.participants):
                raise SimulatedRevert("Insufficient or excess signatures")
            if len(who_signed_what) != len(signatures) or any(
                not 0 <= i < len(states) for i in who_signed_what
            ):
                raise SimulatedRevert("Unacceptable whoSignedWhat array")
            signers = [
                recover_digest_signer(hash_state(states[index]), signature)
                for index, signature in zip(who_signed_what, signatures)
            ]
            reason = await validate_support_proof(states, signers, who_signed_what, self._app(last))
            if reason is not None:
                raise SimulatedRevert(reason)

            challenger = recover_digest_signer(challenge_message(last), challenger_signature)
            if challenger not in last.channel.participants:
                raise SimulatedRevert("Challenger is not a participant")

            finalizes_at = now + last.challenge_duration
            self._storage[channel_id] = ChannelStorage(
                turn_num_record=last.turn_num,
                finalizes_at=finalizes_at,
                state_hash=hash_state(last),
                challenger=challenger,
                outcome_hash=hash_outcome(last.outcome),
            )
            logger.info(
                f"Challenge registered at turn {last.turn_num}, finalizes at {finalizes_at}",
                context=LogContext(
                    ledger_id=self._ledger.chain_id, channel_id=channel_id, turn_number=last.turn_num
                ),
            )
            return [
                LedgerEvent(
                    name="ChallengeRegistered",
                    address=self._address,
                    args={
                        "channelId": channel_id,
                        "turnNumRecord": last.turn_num,
                        "finalizesAt": finalizes_at,
                        "challenger": challenger,
                        "isFinal": last.is_final,
                    },
                )
            ]

        return await self._ledger.execute(sender, self._address, "challenge", action)

    async def push_outcome_and_transfer_all(
        self, sender: str, state: ChannelState, storage: ChannelStorage
    ) -> TransactionReceipt:
        channel_id = state.channel_id.lower()

        async def action() -> List[LedgerEvent]:
            stored = self._stored(channel_id)
            if not stored.is_finalized(self._ledger.now):
                raise SimulatedRevert("Channel not finalized")
            if channel_id in self._pushed:
                raise SimulatedRevert("Outcome hash already exists")
            if (
                storage.turn_num_record != stored.turn_num_record
                or storage.finalizes_at != stored.finalizes_at
                or storage.state_hash != stored.state_hash
                or storage.challenger != stored.challenger
            ):
                raise SimulatedRevert("Channel storage does not match stored version")
            if hash_state(state) != stored.state_hash or hash_outcome(state.outcome) != stored.outcome_hash:
                raise SimulatedRevert("State does not match the finalized challenge")

            events = [
                LedgerEvent(
                    name="OutcomePushed",
                    address=self._address,
                    args={"channelId": channel_id, "turnNumRecord": stored.turn_num_record},
                )
            ]
            return events + self._transfer_all(state)

        return await self._ledger.execute(sender, self._address, "pushOutcomeAndTransferAll", action)
