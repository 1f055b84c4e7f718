"""
Swap Protocol Engine

This module drives one leg of an atomic swap through its channel lifecycle:
- Proposal (turn 0) and join (turn 1)
- Funding: deposit, proposer ack (turn 2), observed deposit (turn 3)
- Hash-locked unlock (turn 4)
- Collaborative defund with a final state (turn 5)

Every state is signed by an ``Actor`` and recorded in a ``SignatureLedger``;
turn numbers advance by exactly one per recognized transition.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from eth_utils import to_checksum_address

from ..config import LegConfig, SwapParameters
from ..crypto import Signature
from ..errors import (
    ConfigurationError,
    FundingTimeout,
    InvalidTransition,
    LedgerSubmissionFailure,
    ProtocolViolation,
    SwapError,
    is_fatal,
)
from ..ledger.base import EventSubscription, LedgerEvent, TransactionReceipt
from ..logging import LogContext, get_logger
from .actors import Actor
from .channel import Channel, ChannelState, ChannelStateBuilder, convert_address_to_bytes32
from .funding import LegFunding, funding_for
from .hashlock import SWAP_PARTICIPANTS, UNLOCK_TURN, HashLockCodec, HashLockedSwapData
from .observer import SwapObserver
from .signatures import SignatureLedger, SignedState

logger = get_logger(__name__)


class LegPhase(Enum):
    """Lifecycle phase of one swap leg."""
    NEW = "new"
    PROPOSED = "proposed"
    JOINED = "joined"
    AWAITING_DEPOSIT = "awaiting_deposit"
    PROPOSER_ACKED = "proposer_acked"
    FUNDED_OBSERVED = "funded_observed"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"
    FINALIZING = "finalizing"
    COUNTERSIGNED = "countersigned"
    CONCLUDED = "concluded"
    CHALLENGED = "challenged"
    OUTCOME_PUSHED = "outcome_pushed"
    ABORTED = "aborted"


TERMINAL_PHASES = {LegPhase.CONCLUDED, LegPhase.OUTCOME_PUSHED}


@dataclass(frozen=True)
class ChallengeEvidence:
    """States, signatures and signer mapping that support a challenge."""

    states: List[ChannelState]
    signatures: List[Signature]
    who_signed_what: List[int]

    @property
    def contested_state(self) -> ChannelState:
        return self.states[-1]


class SwapProtocolEngine:
    """Runs the channel protocol of one leg between a proposer and a joiner."""

    def __init__(
        self,
        leg: LegConfig,
        proposer: Actor,
        joiner: Actor,
        amount: int,
        parameters: Optional[SwapParameters] = None,
        observer: Optional[SwapObserver] = None,
    ):
        """Initialize the engine for one leg."""
        self.leg = leg
        self.proposer = proposer
        self.joiner = joiner
        self.amount = amount
        self.parameters = parameters or SwapParameters()
        self.observer = observer or SwapObserver()
        if leg.challenge_duration is None:
            raise ConfigurationError(
                f"{leg.name} leg has no challenge duration", config_key="challenge_duration"
            )
        self.signatures = SignatureLedger()
        self.channel = Channel(
            chain_id=leg.chain_id,
            nonce=self.parameters.channel_nonce,
            participants=(proposer.address, joiner.address),
        )
        self.phase = LegPhase.NEW
        self.initial_state: Optional[ChannelState] = None
        self.latest_state: Optional[ChannelState] = None
        self.unlock_state: Optional[ChannelState] = None
        self.final_state: Optional[ChannelState] = None
        self.error: Optional[SwapError] = None
        self.receipts: Dict[str, TransactionReceipt] = {}

    @property
    def funding(self) -> LegFunding:
        """Funding strategy of the leg's adjudicator."""
        return funding_for(self.leg)

    @property
    def channel_id(self) -> str:
        return self.channel.channel_id

    @property
    def chain_id(self) -> int:
        return self.channel.chain_id

    @property
    def h(self) -> bytes:
        """Commitment hash carried in the app data."""
        self._require_state(self.initial_state, "proposal")
        return HashLockCodec.decode(self.initial_state.app_data).h

    @property
    def is_concluded(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def _context(self, actor: Optional[Actor] = None, turn: Optional[int] = None) -> LogContext:
        return LogContext(
            ledger_id=self.chain_id,
            channel_id=self.channel_id,
            turn_number=turn,
            actor=actor.name if actor else None,
            component=self.leg.name,
        )

    def _enter(self, phase: LegPhase) -> None:
        self.phase = phase
        self.observer.on_phase(self.channel_id, self.chain_id, phase.value)
        logger.debug(f"{self.leg.name} leg entered {phase.value}", context=self._context())

    def enter_phase(self, phase: LegPhase) -> None:
        """Move the leg to a phase reached outside the engine (dispute path)."""
        self._enter(phase)

    def _require_phase(self, *phases: LegPhase) -> None:
        if self.phase not in phases:
            raise ProtocolViolation(
                f"{self.leg.name} leg is {self.phase.value}, expected "
                f"{' or '.join(p.value for p in phases)}",
                channel_id=self.channel_id,
                turn_number=self.latest_state.turn_num if self.latest_state else None,
                field="phase",
            )

    def _require_state(self, state: Optional[ChannelState], name: str) -> None:
        if state is None:
            raise ProtocolViolation(
                f"No {name} state on the {self.leg.name} leg",
                channel_id=self.channel_id,
                field=name,
            )

    def _abort(self, error: SwapError) -> None:
        if self.error is error:
            return
        self.error = error
        if not self.is_concluded:
            self._enter(LegPhase.ABORTED)
        logger.error(
            f"{self.leg.name} leg aborted: {error.message}",
            context=self._context(turn=error.turn_number),
            extra={"error": error.to_dict()},
        )

    def _fail(self, error: SwapError) -> SwapError:
        """Record a fatal error before it propagates."""
        if is_fatal(error):
            self._abort(error)
        return error

    def _track(self, actor: Actor, description: str, receipt: TransactionReceipt) -> None:
        self.receipts[description] = receipt
        self.observer.on_transaction(actor, self.chain_id, description, receipt)

    def receive(self, signed: SignedState, expected_signer: Optional[str] = None) -> str:
        """
        Accept a signed state for this leg.

        Args:
            signed: State and signature
            expected_signer: Participant that must have produced the signature

        Returns:
            Recovered signer address

        Raises:
            ProtocolViolation: if the state belongs to another channel, skips
                or repeats a turn out of order, follows a final state, or is
                signed by the wrong party. The leg is aborted first.
        """
        state = signed.state
        if state.channel != self.channel:
            raise self._fail(
                ProtocolViolation(
                    "State belongs to another channel",
                    channel_id=self.channel_id,
                    turn_number=state.turn_num,
                    field="channel",
                )
            )
        if self.latest_state is not None:
            latest = self.latest_state.turn_num
            if self.latest_state.is_final and state.turn_num > latest:
                raise self._fail(
                    ProtocolViolation(
                        f"Turn {state.turn_num} follows final turn {latest}",
                        channel_id=self.channel_id,
                        turn_number=state.turn_num,
                        field="is_final",
                    )
                )
            if state.turn_num not in (latest, latest + 1):
                raise self._fail(
                    ProtocolViolation(
                        f"Turn {state.turn_num} does not follow turn {latest}",
                        channel_id=self.channel_id,
                        turn_number=state.turn_num,
                        field="turn_num",
                    )
                )
        elif state.turn_num != 0:
            raise self._fail(
                ProtocolViolation(
                    "The first state of a channel must be turn 0",
                    channel_id=self.channel_id,
                    turn_number=state.turn_num,
                    field="turn_num",
                )
            )

        signer = signed.recover_signer()
        if expected_signer is not None and signer != to_checksum_address(expected_signer):
            raise self._fail(
                ProtocolViolation(
                    f"Turn {state.turn_num} must be signed by {expected_signer}, got {signer}",
                    channel_id=self.channel_id,
                    turn_number=state.turn_num,
                    field="signature",
                )
            )
        self.signatures.record(signed)
        if self.latest_state is None or state.turn_num > self.latest_state.turn_num:
            self.latest_state = state
        return signer

    def _sign(self, actor: Actor, state: ChannelState) -> SignedState:
        signed = actor.sign(state)
        self.receive(signed, actor.address)
        logger.info(
            f"{actor.name} signed turn {state.turn_num}",
            context=self._context(actor, state.turn_num),
        )
        return signed

    def propose(self, h: bytes) -> SignedState:
        """
        Build and sign the turn-0 state committing to ``h``.

        The full amount sits in the proposer's slot; the joiner's slot is empty.
        """
        self._require_phase(LegPhase.NEW)
        outcome = ChannelStateBuilder.create_funded_outcome(
            self.funding.asset_holder_address,
            self.proposer.address,
            self.joiner.address,
            self.amount,
        )
        state = ChannelStateBuilder.create(
            channel=self.channel,
            outcome=outcome,
            app_definition=self.leg.app.address,
            app_data=HashLockCodec.encode(HashLockedSwapData(h=h)),
            challenge_duration=self.leg.challenge_duration,
        )
        signed = self._sign(self.proposer, state)
        self.initial_state = state
        self._enter(LegPhase.PROPOSED)
        self.observer.on_message(
            self.proposer, self.chain_id, "I propose a hashlocked payment, sending PreFund0"
        )
        return signed

    def join(self) -> SignedState:
        """Joiner checks the proposal and countersigns it at turn 1."""
        self._require_phase(LegPhase.PROPOSED)
        state = self.initial_state
        try:
            if state.challenge_duration < self.parameters.min_challenge_duration:
                raise ProtocolViolation(
                    f"Challenge duration {state.challenge_duration}s is below the minimum "
                    f"{self.parameters.min_challenge_duration}s",
                    channel_id=self.channel_id,
                    turn_number=state.turn_num,
                    field="challenge_duration",
                )
            if state.outcome.destination_at(1) != convert_address_to_bytes32(self.joiner.address):
                raise ProtocolViolation(
                    "Joiner is not in the receiving slot",
                    channel_id=self.channel_id,
                    turn_number=state.turn_num,
                    field="outcome",
                )
            signed = self._sign(self.joiner, ChannelStateBuilder.next_turn(state))
        except SwapError as e:
            raise self._fail(e)
        self._enter(LegPhase.JOINED)
        self.observer.on_message(
            self.joiner, self.chain_id, "Sure thing. Your channel looks good. Sending PreFund1"
        )
        return signed

    def _deposit_subscription(self) -> EventSubscription:
        return self.leg.ledger.subscribe(self.funding.deposited_filter(self.channel_id))

    async def fund(self) -> str:
        """
        Proposer deposits and acknowledges; joiner observes the deposit.

        Returns:
            Channel id once the joiner has countersigned turn 3

        Raises:
            FundingTimeout: if the deposit is not observed within
                ``funding_timeout`` seconds; ``observe_deposit`` can be retried
            LedgerSubmissionFailure: if a funding transaction reverts
        """
        self._require_phase(LegPhase.JOINED)

        subscription = self._deposit_subscription()
        self._enter(LegPhase.AWAITING_DEPOSIT)
        try:
            async for description, receipt in self.funding.deposit(
                self.proposer.address, self.channel_id, self.amount
            ):
                self._track(self.proposer, description, receipt)

            self._sign(self.proposer, ChannelStateBuilder.next_turn(self.latest_state))
            self._enter(LegPhase.PROPOSER_ACKED)
            self.observer.on_message(
                self.proposer, self.chain_id, "I have made my deposit, and send PostFund2"
            )
        except SwapError as e:
            subscription.cancel()
            raise self._fail(e)
        return await self.observe_deposit(subscription)

    async def observe_deposit(self, subscription: Optional[EventSubscription] = None) -> str:
        """
        Joiner waits for the deposit and countersigns turn 3.

        Without a subscription the current holdings are checked first, so the
        call can be retried after a ``FundingTimeout``.
        """
        self._require_phase(LegPhase.PROPOSER_ACKED)
        funding = self.funding
        if subscription is None:
            subscription = self._deposit_subscription()
            held = await funding.holdings(self.channel_id)
        else:
            held = 0

        try:
            if held == 0:
                try:
                    event = await subscription.wait(self.parameters.funding_timeout)
                except asyncio.TimeoutError:
                    error = FundingTimeout(
                        f"No deposit observed within {self.parameters.funding_timeout}s",
                        timeout=self.parameters.funding_timeout,
                        channel_id=self.channel_id,
                        turn_number=self.latest_state.turn_num,
                        field="destinationHoldings",
                    )
                    logger.warning(error.message, context=self._context(self.joiner))
                    raise error
                held = await funding.held_after(self.channel_id, event)
                logger.info(
                    f"Observed {event.name} event, holdings {held}",
                    context=self._context(self.joiner),
                    extra={"tx_hash": event.tx_hash, "block_number": event.block_number},
                )
        finally:
            subscription.cancel()

        try:
            self._check_deposit(held)
            self._sign(self.joiner, ChannelStateBuilder.next_turn(self.latest_state))
        except SwapError as e:
            raise self._fail(e)
        self._enter(LegPhase.FUNDED_OBSERVED)
        self.observer.on_message(self.joiner, self.chain_id, "I see your deposit and send PostFund3")
        return self.channel_id

    def _check_deposit(self, held: int) -> None:
        expected = self.initial_state.outcome.amount_at(0)
        if held >= expected:
            return
        if self.parameters.enforce_deposit_amount:
            raise ProtocolViolation(
                f"Channel holds {held}, outcome allocates {expected}",
                channel_id=self.channel_id,
                turn_number=self.latest_state.turn_num,
                field="destinationHoldings",
            )
        logger.warning(
            f"Channel holds {held} but the outcome allocates {expected}",
            context=self._context(self.joiner),
        )

    async def fund_channel(self, h: bytes) -> str:
        """Propose, join and fund. Returns the channel id."""
        self.propose(h)
        self.join()
        return await self.fund()

    def unlock(self, holder: Actor, pre_image: bytes, h: Optional[bytes] = None) -> SignedState:
        """
        Reveal a pre-image at turn 4 and swap the outcome.

        The pre-image is not checked here; ``verify_unlock`` applies the app
        rules before any defund.

        Args:
            holder: Participant that knows the pre-image and signs the unlock
            pre_image: Revealed secret
            h: Commitment to carry, defaults to the channel's commitment
        """
        self._require_phase(LegPhase.FUNDED_OBSERVED)
        if holder.address not in self.channel.participants:
            raise ProtocolViolation(
                f"{holder.name} is not a participant",
                channel_id=self.channel_id,
                turn_number=UNLOCK_TURN,
                field="participants",
            )
        self._enter(LegPhase.UNLOCKING)
        try:
            data = HashLockedSwapData(h=self.h if h is None else h, pre_image=pre_image)
            state = ChannelStateBuilder.next_turn(
                self.latest_state,
                outcome=self.latest_state.outcome.swapped(),
                app_data=HashLockCodec.encode(data),
            )
            if state.turn_num != UNLOCK_TURN:
                raise ProtocolViolation(
                    f"Unlock must be turn {UNLOCK_TURN}",
                    channel_id=self.channel_id,
                    turn_number=state.turn_num,
                    field="turn_num",
                )
            signed = self._sign(holder, state)
        except SwapError as e:
            raise self._fail(e)
        self.unlock_state = state
        self._enter(LegPhase.UNLOCKED)
        self.observer.on_message(holder, self.chain_id, "Unlocking with the pre-image at turn 4")
        return signed

    async def verify_unlock(self) -> None:
        """
        Check the turn 0 -> turn 4 transition with the conditional-logic app.

        Raises:
            InvalidTransition: if the app rejects the unlock
        """
        self._require_state(self.unlock_state, "unlock")
        valid = await self.leg.app.valid_transition(
            self.initial_state.variable_part,
            self.unlock_state.variable_part,
            UNLOCK_TURN,
            SWAP_PARTICIPANTS,
        )
        if not valid:
            raise self._fail(
                InvalidTransition(
                    "Conditional-logic app rejected the unlock",
                    reason="validTransition returned false",
                    channel_id=self.channel_id,
                    turn_number=UNLOCK_TURN,
                    field="app_data",
                )
            )
        logger.info("Unlock is a valid transition", context=self._context(self.proposer, UNLOCK_TURN))

    async def defund(self) -> TransactionReceipt:
        """
        Finalize and conclude the channel on-chain.

        The proposer verifies the unlock, countersigns it and signs the final
        turn-5 state; the joiner countersigns and submits the conclusion.

        Returns:
            Receipt of ``concludePushOutcomeAndTransferAll``, or of
            ``createAndPayout`` on a single-channel adjudicator

        Raises:
            InvalidTransition: if the unlock is not a valid transition
            LedgerSubmissionFailure: if the conclusion reverts or its
                ``Concluded`` event is not observed within ``conclude_timeout``
        """
        self._require_phase(LegPhase.UNLOCKED)
        await self.verify_unlock()
        funding = self.funding

        try:
            self._sign(self.proposer, self.unlock_state)
            final = ChannelStateBuilder.final_state(self.unlock_state)
            self._sign(self.proposer, final)
            self._enter(LegPhase.FINALIZING)
            self.observer.on_message(
                self.proposer,
                self.chain_id,
                "I verified your unlock was valid; here's a final state to help you withdraw",
            )
            self._sign(self.joiner, final)
            self.final_state = final
            self._enter(LegPhase.COUNTERSIGNED)
            self.observer.on_message(self.joiner, self.chain_id, "Countersigning...")
        except SwapError as e:
            raise self._fail(e)

        subscription = self.leg.ledger.subscribe(funding.concluded_filter(self.channel_id))
        try:
            receipt = await funding.conclude(
                self.joiner.address, final, self.signatures.signatures_for(final)
            )
            self._track(self.joiner, f"calling {funding.conclude_function}", receipt)
            try:
                event = await subscription.wait(self.parameters.conclude_timeout)
            except asyncio.TimeoutError as e:
                raise LedgerSubmissionFailure(
                    f"Concluded event not observed within {self.parameters.conclude_timeout}s",
                    tx_hash=receipt.tx_hash,
                    contract=funding.conclude_contract,
                    function=funding.conclude_function,
                    ledger_id=self.chain_id,
                    channel_id=self.channel_id,
                    turn_number=final.turn_num,
                    cause=e,
                )
        except SwapError as e:
            raise self._fail(e)
        finally:
            subscription.cancel()

        self._on_concluded(event)
        return receipt

    def _on_concluded(self, event: LedgerEvent) -> None:
        self._enter(LegPhase.CONCLUDED)
        self.observer.on_message(self.joiner, self.chain_id, "Caught the Concluded event")
        logger.info(
            f"{self.leg.name} leg concluded",
            context=self._context(turn=self.final_state.turn_num),
            extra={"tx_hash": event.tx_hash, "block_number": event.block_number},
        )

    def challenge_evidence(self) -> ChallengeEvidence:
        """
        Latest support proof this leg can take on-chain.

        A state signed by every participant is its own proof. Otherwise the
        newest state signed by the participant whose turn it is, preceded by
        a state signed by the other participant, forms a two-state proof.

        Raises:
            ProtocolViolation: if no supported state exists
        """
        participants = self.channel.participants
        n = len(participants)
        for turn in reversed(self.signatures.turns(self.channel_id)):
            state = self.signatures.state_at(self.channel_id, turn)
            if self.signatures.is_supported(state):
                return ChallengeEvidence(
                    states=[state],
                    signatures=self.signatures.signatures_for(state),
                    who_signed_what=[0] * n,
                )
            if turn == 0:
                continue
            mover = participants[turn % n]
            other = participants[(turn - 1) % n]
            previous = self.signatures.state_at(self.channel_id, turn - 1)
            if previous is None:
                continue
            mover_sig = self.signatures.signature_of(state, mover)
            other_sig = self.signatures.signature_of(previous, other)
            if mover_sig is None or other_sig is None:
                continue
            who = [1 if p == mover else 0 for p in participants]
            sigs = [mover_sig if p == mover else other_sig for p in participants]
            return ChallengeEvidence(states=[previous, state], signatures=sigs, who_signed_what=who)

        raise ProtocolViolation(
            "No supported state to challenge with",
            channel_id=self.channel_id,
            field="signatures",
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "leg": self.leg.name,
            "channel_id": self.channel_id,
            "chain_id": self.chain_id,
            "phase": self.phase.value,
            "latest_turn": self.latest_state.turn_num if self.latest_state else None,
            "error": self.error.to_dict() if self.error else None,
        }
