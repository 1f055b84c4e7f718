"""
Dispute Resolution for Swap Channels

This module implements the on-chain fallback used when a counterparty stops
cooperating:
- ForceMove challenges with the latest supported states
- Waiting out the challenge window (advancing a test clock or sleeping)
- Pushing the finalized outcome and paying it out
- Vector channel and transfer disputes, transfer defunding and exit
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from ..crypto import Signature, recover_digest_signer
from ..errors import (
    ChallengeTooEarly,
    ConfigurationError,
    ProtocolViolation,
    RetryPolicy,
    SwapError,
    retry_async,
)
from ..ledger.base import (
    ChannelStorage,
    Ledger,
    NitroAdjudicator,
    TransactionReceipt,
    VectorChannelContracts,
)
from ..logging import LogContext, get_logger
from .actors import Actor
from .channel import ChannelState
from .channel_protocol import LegPhase, SwapProtocolEngine
from .encoding import challenge_message, hash_state
from .hashlock import ConditionalApp
from .observer import SwapObserver
from .signatures import validate_support_proof
from .vector import (
    VectorChannel,
    encode_hashlock_resolver,
    encode_hashlock_state,
    merkle_proof_for,
)

logger = get_logger(__name__)


class DisputeStatus(Enum):
    """Status of an on-chain challenge."""
    REGISTERED = "registered"
    FINALIZED = "finalized"
    OUTCOME_PUSHED = "outcome_pushed"


@dataclass
class ChallengeRecord:
    """A challenge registered on-chain."""
    channel_id: str
    chain_id: int
    challenger: str
    state: ChannelState
    storage: ChannelStorage
    receipt: TransactionReceipt
    status: DisputeStatus = DisputeStatus.REGISTERED
    push_receipt: Optional[TransactionReceipt] = None
    history: List[DisputeStatus] = field(default_factory=lambda: [DisputeStatus.REGISTERED])

    @property
    def finalizes_at(self) -> int:
        return self.storage.finalizes_at

    def advance(self, status: DisputeStatus) -> None:
        self.status = status
        self.history.append(status)


class DisputeResolver:
    """On-chain fallback for one ledger."""

    def __init__(
        self,
        ledger: Ledger,
        adjudicator: Optional[NitroAdjudicator] = None,
        app: Optional[ConditionalApp] = None,
        vector_contracts: Optional[VectorChannelContracts] = None,
        observer: Optional[SwapObserver] = None,
        advance_clock: bool = True,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.ledger = ledger
        self.adjudicator = adjudicator
        self.app = app
        self.vector_contracts = vector_contracts
        self.observer = observer or SwapObserver()
        self.advance_clock = advance_clock
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=3, base_delay=1.0, retryable_exceptions=[ChallengeTooEarly]
        )

    @classmethod
    def for_leg(
        cls, engine: SwapProtocolEngine, observer: Optional[SwapObserver] = None
    ) -> "DisputeResolver":
        """Resolver using the contracts and parameters of a swap leg."""
        return cls(
            ledger=engine.leg.ledger,
            adjudicator=engine.leg.adjudicator,
            app=engine.leg.app,
            observer=observer or engine.observer,
            advance_clock=engine.parameters.advance_clock,
        )

    def _nitro(self) -> NitroAdjudicator:
        if not isinstance(self.adjudicator, NitroAdjudicator):
            raise ConfigurationError(
                f"Challenges need a Nitro adjudicator, got {type(self.adjudicator).__name__}",
                config_key="adjudicator",
            )
        return self.adjudicator

    def _vector(self) -> VectorChannelContracts:
        if self.vector_contracts is None:
            raise ConfigurationError("No Vector contracts configured", config_key="vector_contracts")
        return self.vector_contracts

    async def challenge_channel(
        self,
        challenger: Actor,
        states: Sequence[ChannelState],
        signatures: Sequence[Signature],
        who_signed_what: Sequence[int],
        precheck: bool = True,
    ) -> ChallengeRecord:
        """
        Register a challenge on the last of ``states``.

        Args:
            challenger: Participant submitting and signing the challenge
            states: Consecutive states, oldest first
            signatures: One signature per participant, in participant order
            who_signed_what: Index into ``states`` of the state each participant signed
            precheck: Validate the support proof locally before submitting

        Returns:
            Record of the registered challenge

        Raises:
            ProtocolViolation: if the local precheck rejects the proof
            LedgerSubmissionFailure: if the adjudicator rejects the challenge
        """
        adjudicator = self._nitro()
        last = states[-1]
        context = LogContext(
            ledger_id=self.ledger.chain_id,
            channel_id=last.channel_id,
            turn_number=last.turn_num,
            actor=challenger.name,
            operation="challenge",
        )

        if precheck and self.app is not None:
            signers = [
                recover_digest_signer(hash_state(states[index]), signature)
                for index, signature in zip(who_signed_what, signatures)
            ]
            reason = await validate_support_proof(states, signers, who_signed_what, self.app)
            if reason is not None:
                error = ProtocolViolation(
                    f"Challenge would be rejected: {reason}",
                    channel_id=last.channel_id,
                    turn_number=last.turn_num,
                    field="signatures",
                )
                logger.error(error.message, context=context)
                raise error

        challenger_signature = challenger.sign_digest(challenge_message(last))
        receipt = await adjudicator.challenge(
            challenger.address, states, signatures, who_signed_what, challenger_signature
        )
        self.observer.on_transaction(challenger, self.ledger.chain_id, "calling challenge", receipt)

        storage = await adjudicator.channel_storage(last.channel_id)
        logger.info(
            f"Challenge registered, finalizes at {storage.finalizes_at}", context=context
        )
        return ChallengeRecord(
            channel_id=last.channel_id,
            chain_id=self.ledger.chain_id,
            challenger=challenger.address,
            state=last,
            storage=storage,
            receipt=receipt,
        )

    async def challenge_leg(self, engine: SwapProtocolEngine, challenger: Actor) -> ChallengeRecord:
        """Challenge with the latest support proof a leg holds."""
        evidence = engine.challenge_evidence()
        record = await self.challenge_channel(
            challenger, evidence.states, evidence.signatures, evidence.who_signed_what
        )
        engine.enter_phase(LegPhase.CHALLENGED)
        return record

    async def wait_for_finalization(self, record: ChallengeRecord) -> None:
        """Return once the challenge window of ``record`` has elapsed."""
        await self.ledger.wait_for_time(record.finalizes_at, self.advance_clock)
        record.advance(DisputeStatus.FINALIZED)

    async def push_outcome_and_transfer_all(
        self, record: ChallengeRecord, sender: Actor
    ) -> TransactionReceipt:
        """
        Push the outcome of a finalized challenge and pay it out.

        Raises:
            ChallengeTooEarly: if the challenge window has not elapsed yet
            LedgerSubmissionFailure: if the push reverts, e.g. the outcome was
                already pushed
        """
        adjudicator = self._nitro()
        now = await self.ledger.block_timestamp()
        storage = await adjudicator.channel_storage(record.channel_id)
        if not storage.is_finalized(now):
            raise ChallengeTooEarly(
                f"Challenge finalizes at {storage.finalizes_at}, now {now}",
                finalizes_at=storage.finalizes_at,
                now=now,
                channel_id=record.channel_id,
                turn_number=record.state.turn_num,
                field="finalizes_at",
            )

        receipt = await adjudicator.push_outcome_and_transfer_all(sender.address, record.state, storage)
        self.observer.on_transaction(
            sender, self.ledger.chain_id, "calling pushOutcomeAndTransferAll", receipt
        )
        record.push_receipt = receipt
        record.advance(DisputeStatus.OUTCOME_PUSHED)
        logger.info(
            "Pushed finalized outcome",
            context=LogContext(
                ledger_id=self.ledger.chain_id,
                channel_id=record.channel_id,
                turn_number=record.state.turn_num,
                actor=sender.name,
            ),
        )
        return receipt

    async def settle(self, engine: SwapProtocolEngine, actor: Actor) -> TransactionReceipt:
        """
        Take a leg to a paid-out outcome without the counterparty.

        A fully signed final state is concluded directly. Otherwise the leg is
        challenged, the window waited out and the outcome pushed.
        """
        evidence = engine.challenge_evidence()
        contested = evidence.contested_state
        if contested.is_final:
            funding = engine.funding
            receipt = await funding.conclude(actor.address, contested, evidence.signatures)
            self.observer.on_transaction(
                actor, self.ledger.chain_id, f"calling {funding.conclude_function}", receipt
            )
            engine.enter_phase(LegPhase.CONCLUDED)
            return receipt

        record = await self.challenge_leg(engine, actor)
        await self.wait_for_finalization(record)

        async def push() -> TransactionReceipt:
            return await self.push_outcome_and_transfer_all(record, actor)

        async def wait_again(error: SwapError, attempt: int) -> None:
            await self.ledger.wait_for_time(record.finalizes_at, self.advance_clock)

        receipt = await retry_async(push, self.retry_policy, on_retry=wait_again)
        engine.enter_phase(LegPhase.OUTCOME_PUSHED)
        return receipt

    async def dispute_vector_channel(self, channel: VectorChannel, sender: Actor) -> TransactionReceipt:
        """Start a dispute with the latest double-signed channel state."""
        if not channel.is_double_signed:
            raise ProtocolViolation(
                "Channel state is not double signed",
                channel_id=channel.channel_address,
                field="signatures",
            )
        receipt = await self._vector().dispute_channel(
            sender.address, channel.core, channel.alice_signature, channel.bob_signature
        )
        self.observer.on_transaction(sender, self.ledger.chain_id, "calling disputeChannel", receipt)
        return receipt

    async def dispute_transfer(
        self, channel: VectorChannel, transfer_id: bytes, sender: Actor
    ) -> TransactionReceipt:
        """
        Dispute one active transfer once the channel is in its defund phase.

        The consensus phase is waited out first.
        """
        contracts = self._vector()
        dispute = await contracts.channel_dispute(channel.channel_address)
        await self.ledger.wait_for_time(dispute.consensus_expiry, self.advance_clock)

        transfer = channel.transfer(transfer_id)
        proof = merkle_proof_for([t.core for t in channel.active_transfers], transfer_id)
        receipt = await contracts.dispute_transfer(sender.address, transfer.core, proof)
        self.observer.on_transaction(sender, self.ledger.chain_id, "calling disputeTransfer", receipt)
        return receipt

    async def defund_transfer(
        self,
        channel: VectorChannel,
        transfer_id: bytes,
        pre_image: bytes,
        responder: Actor,
        sender: Actor,
    ) -> List[TransactionReceipt]:
        """
        Resolve a disputed transfer on-chain, then exit its balance to the responder.

        Returns:
            Receipts of ``defundTransfer`` and ``exit``
        """
        contracts = self._vector()
        transfer = channel.transfer(transfer_id)
        core = transfer.core
        receipt = await contracts.defund_transfer(
            sender.address,
            core,
            encode_hashlock_state(transfer.state),
            encode_hashlock_resolver(pre_image),
            responder.sign_digest(core.initial_state_hash),
        )
        self.observer.on_transaction(sender, self.ledger.chain_id, "calling defundTransfer", receipt)

        owner = core.balance.to[1]
        exit_receipt = await contracts.exit(sender.address, channel.channel_address, core.asset_id, owner, owner)
        self.observer.on_transaction(sender, self.ledger.chain_id, "calling exit", exit_receipt)
        logger.info(
            "Defunded transfer and exited its balance",
            context=LogContext(
                ledger_id=self.ledger.chain_id,
                channel_id=channel.channel_address,
                actor=sender.name,
            ),
            extra={"transfer_id": "0x" + transfer_id.hex(), "owner": owner},
        )
        return [receipt, exit_receipt]
