"""
MarketDAO Governance

Provides:
  - ProposalStatus / Proposal / derive_sink        (proposals.py)
  - ProposalType and payload classes               (payloads.py)
  - GovernanceExecutor                             (execution.py)
  - ProposalEngine                                 (election.py)
  - ProposalFactory                                (factory.py)
"""

from .proposals import (
    Proposal,
    ProposalStatus,
    derive_sink,
)
from .payloads import (
    ActionPayload,
    MintPayload,
    ParameterPayload,
    ProposalType,
    ResolutionPayload,
    TreasuryPayload,
)
from .execution import GovernanceExecutor
from .election import ProposalEngine
from .factory import ProposalFactory

__all__ = [
    # Proposals
    "Proposal",
    "ProposalStatus",
    "derive_sink",
    # Payloads
    "ActionPayload",
    "MintPayload",
    "ParameterPayload",
    "ProposalType",
    "ResolutionPayload",
    "TreasuryPayload",
    # Engine
    "GovernanceExecutor",
    "ProposalEngine",
    "ProposalFactory",
]
