"""
MarketDAO

Governance framework in which the right to vote on a decision is a tradable
asset while that decision's election is open.
"""

from .config import DAOConfig, ParameterType, load_config
from .dao import MarketDAO
from .governance import (
    ActionPayload,
    MintPayload,
    ParameterPayload,
    ProposalStatus,
    ProposalType,
    ResolutionPayload,
    TreasuryPayload,
)
from .treasury import NATIVE, TreasuryAsset

__version__ = "1.0.0"

__all__ = [
    "DAOConfig",
    "MarketDAO",
    "NATIVE",
    "ParameterType",
    "ProposalStatus",
    "ProposalType",
    "TreasuryAsset",
    "ActionPayload",
    "MintPayload",
    "ParameterPayload",
    "ResolutionPayload",
    "TreasuryPayload",
    "load_config",
]
