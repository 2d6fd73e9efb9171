"""
Proposal Payloads

What a passed proposal does when executed. Payloads are immutable values
carried by the proposal record; the GovernanceExecutor dispatches on their
type.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

from ..config.loader import ParameterType
from ..exceptions import ValidationError
from ..treasury import NATIVE, AssetKind, TreasuryAsset


class ProposalType(IntEnum):
    """Kind of action a proposal carries."""
    RESOLUTION = 0    # Text only; nothing is executed
    TREASURY = 1      # Pay out treasury funds
    MINT = 2          # Mint new membership tokens
    PARAMETER = 3     # Change a governance parameter
    ACTION = 4        # Call a registered action


def _require_recipient(recipient: Any):
    if not isinstance(recipient, str) or not recipient:
        raise ValidationError(f"Invalid recipient: {recipient!r}")


def _require_positive(amount: Any, what: str):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"{what} must be a positive integer, got {amount!r}")


@dataclass(frozen=True)
class ResolutionPayload:
    """A non-binding resolution."""
    proposal_type = ProposalType.RESOLUTION

    def committed_funds(self) -> Optional[Tuple[TreasuryAsset, int]]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.proposal_type.name}


@dataclass(frozen=True)
class TreasuryPayload:
    """Transfer *amount* of *asset* from the treasury to *recipient*."""
    recipient: str
    amount: int
    asset: TreasuryAsset = NATIVE
    proposal_type = ProposalType.TREASURY

    def __post_init__(self):
        _require_recipient(self.recipient)
        _require_positive(self.amount, "Treasury amount")
        if not isinstance(self.asset, TreasuryAsset):
            raise ValidationError(f"Invalid treasury asset: {self.asset!r}")
        if self.asset.kind == AssetKind.NON_FUNGIBLE and self.amount != 1:
            raise ValidationError("A non-fungible transfer moves exactly one token")

    def committed_funds(self) -> Optional[Tuple[TreasuryAsset, int]]:
        return self.asset, self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.proposal_type.name,
            "recipient": self.recipient,
            "amount": self.amount,
            "asset": self.asset.to_dict(),
        }


@dataclass(frozen=True)
class MintPayload:
    """Mint *amount* new membership tokens to *recipient*."""
    recipient: str
    amount: int
    proposal_type = ProposalType.MINT

    def __post_init__(self):
        _require_recipient(self.recipient)
        _require_positive(self.amount, "Mint amount")

    def committed_funds(self) -> Optional[Tuple[TreasuryAsset, int]]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.proposal_type.name,
            "recipient": self.recipient,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class ParameterPayload:
    """Set governance *parameter* to *new_value*."""
    parameter: ParameterType
    new_value: int
    proposal_type = ProposalType.PARAMETER

    def __post_init__(self):
        try:
            object.__setattr__(self, "parameter", ParameterType(self.parameter))
        except ValueError:
            raise ValidationError(f"Unknown parameter: {self.parameter!r}")
        if isinstance(self.new_value, bool) or not isinstance(self.new_value, int):
            raise ValidationError(f"Parameter value must be an integer, got {self.new_value!r}")

    def committed_funds(self) -> Optional[Tuple[TreasuryAsset, int]]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.proposal_type.name,
            "parameter": self.parameter.name,
            "newValue": self.new_value,
        }


@dataclass(frozen=True)
class ActionPayload:
    """Invoke the action registered as *action* with keyword *params*."""
    action: str
    params: Dict[str, Any] = field(default_factory=dict)
    proposal_type = ProposalType.ACTION

    def __post_init__(self):
        if not isinstance(self.action, str) or not self.action:
            raise ValidationError("Action name is required")
        object.__setattr__(self, "params", dict(self.params))

    def committed_funds(self) -> Optional[Tuple[TreasuryAsset, int]]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.proposal_type.name,
            "action": self.action,
            "params": dict(self.params),
        }
