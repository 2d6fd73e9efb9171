"""
Proposal Factory

Validates and builds Proposal records. Every proposal shares the one
ProposalEngine; the factory only checks the proposer and payload and hands
the new record to the engine.
"""

from typing import Any, List, Optional

from ..logger import get_logger
from ..exceptions import Unauthorized
from ..tokens import VestingRegistry
from .election import ProposalEngine
from .execution import GovernanceExecutor
from .payloads import ResolutionPayload
from .proposals import Proposal

logger = get_logger(__name__)


class ProposalFactory:
    """Creates proposals on behalf of vested membership-token holders."""

    def __init__(
        self,
        engine: ProposalEngine,
        vesting: VestingRegistry,
        executor: GovernanceExecutor,
    ):
        self._engine = engine
        self._vesting = vesting
        self._executor = executor

    def create(self, proposer: str, description: str, payload: Optional[Any] = None) -> Proposal:
        """
        Create a proposal.

        Raises:
            Unauthorized:    proposer holds no vested membership tokens
            ValidationError: empty description or unexecutable payload
        """
        height = self._engine.height
        if self._vesting.vested_balance(proposer, height) < 1:
            raise Unauthorized(f"{proposer} holds no vested membership tokens")

        payload = payload if payload is not None else ResolutionPayload()
        self._executor.validate_payload(payload)

        proposal = Proposal(
            id=self._engine.proposal_count(),
            proposer=proposer,
            description=description,
            created_at=height,
            payload=payload,
        )
        self._engine.register(proposal)
        return proposal

    def proposal_count(self) -> int:
        return self._engine.proposal_count()

    def proposals(self) -> List[Proposal]:
        return self._engine.proposals()
