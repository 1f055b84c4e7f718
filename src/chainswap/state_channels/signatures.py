"""
State signatures and support rules.

``SignatureLedger`` keeps the signatures collected for each round of a
channel and answers whether a state is supported. The ForceMove helpers
reproduce the adjudicator's checks so invalid challenges are caught before
they are submitted.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from eth_utils import to_checksum_address

from ..crypto import Signature, recover_digest_signer
from ..errors import ProtocolViolation
from ..logging import LogContext, get_logger
from .channel import ChannelState
from .encoding import hash_state
from .hashlock import ConditionalApp

logger = get_logger(__name__)


@dataclass(frozen=True)
class SignedState:
    """A state together with one participant's signature."""

    state: ChannelState
    signature: Signature

    @property
    def state_hash(self) -> bytes:
        return hash_state(self.state)

    def recover_signer(self) -> str:
        return recover_digest_signer(self.state_hash, self.signature)


class SignatureLedger:
    """Signatures collected per channel round."""

    def __init__(self):
        self._rounds: Dict[Tuple[str, int], ChannelState] = {}
        self._signatures: Dict[Tuple[str, int], Dict[str, Signature]] = {}
        self._final_turns: Dict[str, int] = {}

    def record(self, signed: SignedState) -> str:
        """
        Record a signed state.

        Args:
            signed: State and signature to record

        Returns:
            Address of the participant that signed

        Raises:
            ProtocolViolation: if the signer is not a participant, another
                state was already recorded for the same round, or the state
                comes after a final state of its channel
        """
        state = signed.state
        key = (state.channel_id, state.turn_num)
        signer = signed.recover_signer()
        if signer not in state.channel.participants:
            raise ProtocolViolation(
                f"State signed by non-participant {signer}",
                channel_id=state.channel_id,
                turn_number=state.turn_num,
                field="signature",
            )

        existing = self._rounds.get(key)
        if existing is not None and existing != state:
            raise ProtocolViolation(
                "Conflicting state for an already signed round",
                channel_id=state.channel_id,
                turn_number=state.turn_num,
                field="state",
            )

        final_turn = self._final_turns.get(state.channel_id)
        if final_turn is not None and state.turn_num > final_turn:
            raise ProtocolViolation(
                f"Turn {state.turn_num} follows final turn {final_turn}",
                channel_id=state.channel_id,
                turn_number=state.turn_num,
                field="is_final",
            )

        self._rounds[key] = state
        self._signatures.setdefault(key, {})[signer] = signed.signature
        if state.is_final:
            self._final_turns.setdefault(state.channel_id, state.turn_num)
        logger.debug(
            f"Recorded signature of {signer}",
            context=LogContext(
                channel_id=state.channel_id,
                turn_number=state.turn_num,
                ledger_id=state.channel.chain_id,
            ),
        )
        return signer

    def signers(self, state: ChannelState) -> List[str]:
        """Participants that signed exactly this state, in participant order."""
        key = (state.channel_id, state.turn_num)
        if self._rounds.get(key) != state:
            return []
        signed = self._signatures.get(key, {})
        return [p for p in state.channel.participants if p in signed]

    def signatures_for(self, state: ChannelState) -> List[Signature]:
        """Signatures on ``state`` in participant order."""
        signed = self._signatures.get((state.channel_id, state.turn_num), {})
        return [signed[p] for p in self.signers(state)]

    def signature_of(self, state: ChannelState, participant: str) -> Optional[Signature]:
        if to_checksum_address(participant) not in self.signers(state):
            return None
        return self._signatures[(state.channel_id, state.turn_num)][
            to_checksum_address(participant)
        ]

    def is_supported(self, state: ChannelState, required: Optional[Sequence[str]] = None) -> bool:
        """
        Check whether a state carries every required signature.

        Args:
            state: State to check
            required: Participants that must have signed, defaults to all

        Returns:
            True when every required participant signed this exact state
        """
        needed = state.channel.participants if required is None else required
        signers = set(self.signers(state))
        return all(to_checksum_address(p) in signers for p in needed)

    def state_at(self, channel_id: str, turn_num: int) -> Optional[ChannelState]:
        return self._rounds.get((channel_id, turn_num))

    def turns(self, channel_id: str) -> List[int]:
        return sorted(turn for cid, turn in self._rounds if cid == channel_id)


def acceptable_who_signed_what(
    who_signed_what: Sequence[int],
    largest_turn_num: int,
    n_participants: int,
    n_states: int,
) -> bool:
    """
    Check the round-robin signing rule of a support proof.

    Participant ``i`` moves on turns congruent to ``i`` modulo ``n``; each
    participant must have signed a state no older than their latest move.
    """
    if len(who_signed_what) != n_participants:
        return False
    for i, index in enumerate(who_signed_what):
        if not 0 <= index < n_states:
            return False
        offset = (n_participants + largest_turn_num - i) % n_participants
        if index + offset + 1 < n_states:
            return False
    return True


async def force_move_valid_transition(
    a: ChannelState, b: ChannelState, app: ConditionalApp
) -> Optional[str]:
    """
    Apply the adjudicator's transition rules between consecutive states.

    Returns:
        None when ``a -> b`` is valid, otherwise the reason it is not
    """
    n = len(a.channel.participants)
    if b.turn_num != a.turn_num + 1:
        return "turn numbers must increase by one"
    if a.channel != b.channel or a.app_definition != b.app_definition:
        return "fixed part changed"
    if a.challenge_duration != b.challenge_duration:
        return "challenge duration changed"
    if b.is_final:
        if a.outcome != b.outcome:
            return "final state changed the outcome"
        return None
    if a.is_final:
        return "transition from a final state"
    if b.turn_num < 2 * n:
        if a.outcome != b.outcome:
            return "outcome changed during setup"
        if a.app_data != b.app_data:
            return "app data changed during setup"
        return None
    if not await app.valid_transition(a.variable_part, b.variable_part, b.turn_num, n):
        return "app rejected the transition"
    return None


async def validate_support_proof(
    states: Sequence[ChannelState],
    signers: Sequence[str],
    who_signed_what: Sequence[int],
    app: ConditionalApp,
) -> Optional[str]:
    """
    Validate a list of consecutive states proving support of the last one.

    Args:
        states: Consecutive states, oldest first
        signers: Recovered signer of each signature, in participant order
        who_signed_what: For each participant, index of the state they signed
        app: Conditional-logic app of the channel

    Returns:
        None when the proof is valid, otherwise the reason it is not
    """
    if not states:
        return "no states"
    channel = states[0].channel
    n = len(channel.participants)
    if not acceptable_who_signed_what(who_signed_what, states[-1].turn_num, n, len(states)):
        return "unacceptable whoSignedWhat array"
    if len(signers) != n:
        return "one signature per participant is required"
    for participant, signer in zip(channel.participants, signers):
        if participant != signer:
            return f"invalid signature for {participant}"
    for a, b in zip(states, states[1:]):
        reason = await force_move_valid_transition(a, b, app)
        if reason is not None:
            return reason
    return None
