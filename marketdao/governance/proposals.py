"""
Governance Proposals

Defines proposal lifecycle states, vote-sink derivation and the Proposal
record. Records are plain data; all behaviour lives in ProposalEngine so
that one engine serves every proposal.
"""

import hashlib
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Set, Tuple

from ..logger import get_logger
from ..constants import SINK_DIGEST_SIZE, SINK_DOMAIN
from ..exceptions import ProposalLifecycleError, ValidationError
from ..tokens import VoteSink
from ..treasury import TreasuryAsset
from .payloads import ResolutionPayload

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class ProposalStatus(IntEnum):
    """Lifecycle stage."""
    PENDING = 0     # Collecting support
    ELECTION = 1    # Voting asset issued, votes being cast
    PASSED = 2      # Resolved in favour; awaiting execution
    FAILED = 3      # Resolved against, or quorum not met
    EXPIRED = 4     # Never reached the support threshold in time
    EXECUTED = 5    # Payload carried out


# Valid forward transitions
_VALID_TRANSITIONS: Dict[ProposalStatus, set] = {
    ProposalStatus.PENDING:  {ProposalStatus.ELECTION, ProposalStatus.EXPIRED},
    ProposalStatus.ELECTION: {ProposalStatus.PASSED, ProposalStatus.FAILED},
    ProposalStatus.PASSED:   {ProposalStatus.EXECUTED},
    # Terminal states
    ProposalStatus.FAILED:   set(),
    ProposalStatus.EXPIRED:  set(),
    ProposalStatus.EXECUTED: set(),
}


# ══════════════════════════════════════════════════════════════════════
#  VOTE SINKS
# ══════════════════════════════════════════════════════════════════════

def derive_sink(proposal_id: int, side: str, salt: str) -> VoteSink:
    """
    Deterministic vote destination for one side of one election.

    The address is a BLAKE2b digest of (proposal_id, side) keyed by the
    deployment salt, so sinks are unique per deployment and cannot be
    predicted without the salt.
    """
    key = hashlib.blake2b(SINK_DOMAIN + salt.encode(), digest_size=32).digest()
    digest = hashlib.blake2b(
        f"{proposal_id}:{side}".encode(),
        key=key,
        digest_size=SINK_DIGEST_SIZE,
    ).hexdigest()
    return VoteSink(proposal_id=proposal_id, side=side, address="0x" + digest)


# ══════════════════════════════════════════════════════════════════════
#  PROPOSAL
# ══════════════════════════════════════════════════════════════════════

@dataclass
class Proposal:
    """
    Governance proposal record.

    Fields:
        id:                   Unique monotonic identifier
        proposer:             Account that created the proposal
        description:          Human-readable description
        created_at:           Block height of creation
        payload:              What execution does (see payloads.py)
        support_total:        Σ support_by_account; frozen once triggered
        election_start/end:   Block heights; votes accepted while
                              start ≤ height < end
        voting_asset_id:      Ledger asset issued for this election
        snapshot_total_votes: Total vested supply at trigger
        claimed:              Holders that already claimed voting tokens
        locks:                Treasury reservations held by this proposal
    """
    id: int
    proposer: str
    description: str
    created_at: int
    payload: Any = field(default_factory=ResolutionPayload)
    status: ProposalStatus = ProposalStatus.PENDING
    support_total: int = 0
    support_by_account: Dict[str, int] = field(default_factory=dict)
    election_triggered: bool = False
    election_start: Optional[int] = None
    election_end: Optional[int] = None
    voting_asset_id: Optional[int] = None
    yes_sink: Optional[VoteSink] = None
    no_sink: Optional[VoteSink] = None
    snapshot_total_votes: int = 0
    claimed: Set[str] = field(default_factory=set)
    resolved_early: bool = False
    resolved_at: Optional[int] = None
    locks: List[Tuple[TreasuryAsset, int]] = field(default_factory=list)
    _history: List[Dict[str, Any]] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not isinstance(self.description, str) or not self.description.strip():
            raise ValidationError("Proposal description cannot be empty")
        if not self.proposer:
            raise ValidationError("Proposer is required")
        if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id < 0:
            raise ValidationError(f"Invalid proposal id: {self.id!r}")
        if self.payload is None:
            self.payload = ResolutionPayload()
        self._record_transition(ProposalStatus.PENDING, "created", self.created_at)

    # ── Properties ────────────────────────────────────────────────────

    @property
    def executed(self) -> bool:
        return self.status == ProposalStatus.EXECUTED

    @property
    def resolution(self) -> Optional[ProposalStatus]:
        """PASSED, FAILED or EXPIRED once resolved, else None."""
        if self.status == ProposalStatus.EXECUTED:
            return ProposalStatus.PASSED
        if self.status in (ProposalStatus.PASSED, ProposalStatus.FAILED, ProposalStatus.EXPIRED):
            return self.status
        return None

    @property
    def resolution_label(self) -> Optional[str]:
        resolution = self.resolution
        if resolution is None:
            return None
        label = resolution.name.capitalize()
        return label + "Early" if self.resolved_early else label

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            ProposalStatus.FAILED,
            ProposalStatus.EXPIRED,
            ProposalStatus.EXECUTED,
        )

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    def expiration_height(self, max_age: int) -> int:
        """First height at which a pending proposal counts as expired."""
        return self.created_at + max_age + 1

    def is_expired_at(self, height: int, max_age: int) -> bool:
        if self.status == ProposalStatus.EXPIRED:
            return True
        return self.status == ProposalStatus.PENDING and height - self.created_at > max_age

    def election_open_at(self, height: int) -> bool:
        return (
            self.status == ProposalStatus.ELECTION
            and self.election_start <= height < self.election_end
        )

    def election_ended_at(self, height: int) -> bool:
        return self.election_triggered and height >= self.election_end

    # ── State transitions ─────────────────────────────────────────────

    def _record_transition(self, new_status: ProposalStatus, reason: str, height: Optional[int]):
        self._history.append({
            "from": self.status.name if self._history else "INIT",
            "to": new_status.name,
            "reason": reason,
            "height": height,
            "timestamp": time.time(),
        })

    def transition_to(self, new_status: ProposalStatus, reason: str = "", height: Optional[int] = None):
        """
        Advance proposal to *new_status*.

        Raises ProposalLifecycleError on invalid transitions.
        """
        allowed = _VALID_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise ProposalLifecycleError(
                f"Cannot transition from {self.status.name} → {new_status.name}. "
                f"Allowed: {[s.name for s in allowed]}"
            )
        old = self.status
        self._record_transition(new_status, reason, height)
        self.status = new_status
        logger.info(f"Proposal #{self.id}: {old.name} → {new_status.name} | {reason}")

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "proposer": self.proposer,
            "description": self.description,
            "createdAt": self.created_at,
            "payload": self.payload.to_dict(),
            "status": self.status.name,
            "supportTotal": self.support_total,
            "electionTriggered": self.election_triggered,
            "electionStart": self.election_start,
            "electionEnd": self.election_end,
            "votingTokenId": self.voting_asset_id,
            "yesSink": str(self.yes_sink) if self.yes_sink else None,
            "noSink": str(self.no_sink) if self.no_sink else None,
            "snapshotTotalVotes": self.snapshot_total_votes,
            "claimedCount": len(self.claimed),
            "executed": self.executed,
            "resolution": self.resolution_label,
            "resolvedAt": self.resolved_at,
            "historyLength": len(self._history),
        }

    def __repr__(self) -> str:
        return f"<Proposal #{self.id} status={self.status.name} support={self.support_total}>"
