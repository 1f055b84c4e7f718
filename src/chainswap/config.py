"""
Swap configuration.

A swap is fully described by a ``SwapConfig``: the two legs (ledger,
adjudicator, app and token on each side), the two actors and the tunable
``SwapParameters``. Nothing is read from module-level state.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from .errors import ConfigurationError
from .logging import get_logger

if TYPE_CHECKING:
    from .ledger.base import Ledger, NinjaAdjudicator, NitroAdjudicator
    from .state_channels.actors import Actor
    from .state_channels.hashlock import ConditionalApp

logger = get_logger(__name__)

SWAP_AMOUNT = 2
LEFT_CHAIN_ID = 66
RIGHT_CHAIN_ID = 99


@dataclass
class SwapParameters:
    """Tunable amounts, windows and timeouts of a swap."""

    left_amount: int = SWAP_AMOUNT
    right_amount: int = SWAP_AMOUNT
    left_challenge_duration: int = 60
    right_challenge_duration: int = 30
    funding_timeout: float = 30.0
    conclude_timeout: float = 30.0
    enforce_deposit_amount: bool = False
    min_challenge_duration: int = 1
    challenge_safety_margin: int = 0
    advance_clock: bool = True
    auto_dispute: bool = False
    channel_nonce: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert parameters to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwapParameters":
        """Create parameters from dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown swap parameter(s): {', '.join(unknown)}", config_key=unknown[0]
            )
        return cls(**data)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "SwapParameters":
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read swap parameters from {path}: {e}", cause=e)
        return cls.from_dict(data)


@dataclass
class LegConfig:
    """One side of the swap: a ledger with its deployed contracts."""

    name: str
    ledger: "Ledger"
    adjudicator: Union["NitroAdjudicator", "NinjaAdjudicator"]
    app: "ConditionalApp"
    token: str
    challenge_duration: Optional[int] = None

    @property
    def chain_id(self) -> int:
        return self.ledger.chain_id


@dataclass
class SwapConfig:
    """Everything needed to run one atomic swap."""

    left: LegConfig
    right: LegConfig
    executor: "Actor"
    responder: "Actor"
    parameters: SwapParameters = field(default_factory=SwapParameters)

    def __post_init__(self) -> None:
        if self.left.challenge_duration is None:
            self.left.challenge_duration = self.parameters.left_challenge_duration
        if self.right.challenge_duration is None:
            self.right.challenge_duration = self.parameters.right_challenge_duration

    def validate(self) -> None:
        """
        Check the swap is safe to run.

        Raises:
            ConfigurationError: if the left window is not strictly longer than
                the right window plus the safety margin, an amount is not
                positive, or both actors share an identity
        """
        params = self.parameters
        margin = params.challenge_safety_margin
        if self.left.challenge_duration <= self.right.challenge_duration + margin:
            raise ConfigurationError(
                f"Left challenge duration {self.left.challenge_duration}s must exceed "
                f"right challenge duration {self.right.challenge_duration}s plus margin {margin}s",
                config_key="left_challenge_duration",
            )
        for key in ("left_amount", "right_amount"):
            if getattr(params, key) <= 0:
                raise ConfigurationError(f"{key} must be positive", config_key=key)
        for leg in (self.left, self.right):
            if leg.challenge_duration < params.min_challenge_duration:
                raise ConfigurationError(
                    f"{leg.name} challenge duration is below the minimum "
                    f"{params.min_challenge_duration}s",
                    config_key="min_challenge_duration",
                )
        if self.executor.address == self.responder.address:
            raise ConfigurationError(
                "Executor and responder must be different identities", config_key="responder"
            )
        if self.left.chain_id == self.right.chain_id:
            logger.warning(f"Both legs run on chain {self.left.chain_id}")

    @classmethod
    def from_parameters(
        cls,
        left: LegConfig,
        right: LegConfig,
        executor: "Actor",
        responder: "Actor",
        parameters: Optional[SwapParameters] = None,
    ) -> "SwapConfig":
        """Build and validate a config."""
        config = cls(left, right, executor, responder, parameters or SwapParameters())
        config.validate()
        return config
