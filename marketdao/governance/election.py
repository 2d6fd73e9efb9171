"""
Proposal Engine

One behaviour module shared by every Proposal record:
  - Support accumulation and the automatic election trigger
  - Voting-asset issuance and vote-sink routing
  - Lazy voting-token claims (frozen at the election start)
  - Early termination on every vote, quorum check at the natural end
  - Treasury fund locking / release and execution dispatch

All time-based transitions are lazy: an overdue proposal is acted upon the
next time a call touches it.
"""

import copy
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..logger import get_logger
from ..config.loader import DAOConfig
from ..constants import BASIS_POINTS, SINK_TAG_NO, SINK_TAG_YES
from ..exceptions import (
    AlreadyClaimed,
    ElectionClosed,
    InsufficientVestedBalance,
    NotYetElection,
    ProposalExpired,
    ProposalLifecycleError,
    ProposalNotFound,
    ValidationError,
)
from ..tokens import Ledger, VestingRegistry, VoteSink
from ..treasury import Treasury
from .execution import GovernanceExecutor
from .proposals import Proposal, ProposalStatus, derive_sink

logger = get_logger(__name__)


class ProposalEngine:
    """
    Lifecycle engine for all proposals.

    Thresholds (integer basis-point math):
        trigger:   support_total × 10000 ≥ support_threshold_bp × vested_supply
        early:     yes > snapshot // 2  →  PASSED
                   no  > snapshot // 2  →  FAILED
        quorum:    yes + no ≥ quorum_percentage_bp × snapshot // 10000
        natural:   PASSED iff quorum met and yes > no
    """

    def __init__(
        self,
        ledger: Ledger,
        vesting: VestingRegistry,
        treasury: Treasury,
        executor: GovernanceExecutor,
        config: DAOConfig,
        height_fn: Callable[[], int],
    ):
        """
        Args:
            height_fn: Callable() → int, the current block height
        """
        self._ledger = ledger
        self._vesting = vesting
        self._treasury = treasury
        self._executor = executor
        self._config = config
        self._height_fn = height_fn
        self._proposals: Dict[int, Proposal] = {}

        ledger.authorize_minter(self)

    # ── Registry ──────────────────────────────────────────────────────

    @property
    def height(self) -> int:
        return self._height_fn()

    def register(self, proposal: Proposal):
        if proposal.id in self._proposals:
            raise ValidationError(f"Proposal #{proposal.id} already exists")
        self._proposals[proposal.id] = proposal
        logger.info(f"Proposal #{proposal.id} created by {proposal.proposer}: {proposal.description}")

    def get(self, proposal_id: int) -> Proposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFound(f"No proposal #{proposal_id}")
        return proposal

    def proposal_count(self) -> int:
        return len(self._proposals)

    def proposals(self) -> List[Proposal]:
        return [self._proposals[pid] for pid in sorted(self._proposals)]

    # ── Support ───────────────────────────────────────────────────────

    def _require_pending(self, proposal: Proposal, height: int):
        if proposal.is_expired_at(height, self._config.max_proposal_age):
            raise ProposalExpired(
                f"Proposal #{proposal.id} expired at height "
                f"{proposal.expiration_height(self._config.max_proposal_age)}"
            )
        if proposal.status != ProposalStatus.PENDING:
            raise ProposalLifecycleError(
                f"Proposal #{proposal.id} support is frozen (status={proposal.status.name})"
            )

    def add_support(self, proposal_id: int, holder: str, amount: int) -> Proposal:
        """
        Commit *amount* of *holder*'s vested weight to the proposal.

        Cumulative support per holder may not exceed their vested balance.
        Triggers the election when the threshold is reached.
        """
        _require_positive(amount, "Support")
        proposal = self.get(proposal_id)
        height = self.height
        self._require_pending(proposal, height)

        vested = self._vesting.vested_balance(holder, height)
        current = proposal.support_by_account.get(holder, 0)
        if current + amount > vested:
            raise InsufficientVestedBalance(
                f"{holder} vested balance {vested} < total support {current + amount}"
            )

        proposal.support_by_account[holder] = current + amount
        proposal.support_total += amount
        logger.info(
            f"Proposal #{proposal.id}: {holder} +{amount} support "
            f"(total {proposal.support_total})"
        )

        if self.can_trigger_election(proposal_id):
            self._trigger(proposal, height)
        return proposal

    def remove_support(self, proposal_id: int, holder: str, amount: int) -> Proposal:
        _require_positive(amount, "Support")
        proposal = self.get(proposal_id)
        height = self.height
        self._require_pending(proposal, height)

        current = proposal.support_by_account.get(holder, 0)
        if amount > current:
            raise ValidationError(
                f"{holder} cannot remove {amount} support; only {current} committed"
            )
        if amount == current:
            del proposal.support_by_account[holder]
        else:
            proposal.support_by_account[holder] = current - amount
        proposal.support_total -= amount
        logger.info(
            f"Proposal #{proposal.id}: {holder} -{amount} support "
            f"(total {proposal.support_total})"
        )
        return proposal

    # ── Election trigger ──────────────────────────────────────────────

    def can_trigger_election(self, proposal_id: int) -> bool:
        proposal = self.get(proposal_id)
        height = self.height
        if proposal.status != ProposalStatus.PENDING:
            return False
        if proposal.is_expired_at(height, self._config.max_proposal_age):
            return False
        vested_supply = self._vesting.total_vested_supply(height)
        if vested_supply <= 0:
            return False
        return (
            proposal.support_total * BASIS_POINTS
            >= self._config.support_threshold_bp * vested_supply
        )

    def trigger_election(self, proposal_id: int) -> Proposal:
        """Trigger an election whose threshold was reached without a support change."""
        proposal = self.get(proposal_id)
        height = self.height
        self._require_pending(proposal, height)
        if not self.can_trigger_election(proposal_id):
            raise ProposalLifecycleError(
                f"Proposal #{proposal.id} support {proposal.support_total} is below "
                f"the threshold ({self._config.support_threshold_bp} bp)"
            )
        self._trigger(proposal, height)
        return proposal

    def _trigger(self, proposal: Proposal, height: int):
        """Freeze support, lock funds and issue the voting asset."""
        committed = proposal.payload.committed_funds()
        if committed is not None:
            asset, amount = committed
            self._treasury.lock(asset, amount)
            proposal.locks.append((asset, amount))

        snapshot = self._vesting.total_vested_supply(height)
        asset_id = self._ledger.allocate_asset()
        salt = self._config.sink_salt
        proposal.yes_sink = derive_sink(proposal.id, SINK_TAG_YES, salt)
        proposal.no_sink = derive_sink(proposal.id, SINK_TAG_NO, salt)
        proposal.voting_asset_id = asset_id
        proposal.election_triggered = True
        proposal.election_start = height
        proposal.election_end = height + self._config.election_duration
        proposal.snapshot_total_votes = snapshot

        self._vesting.extend_retention(self._config.election_duration)
        self._ledger.register_voting_asset(
            asset_id,
            proposal.yes_sink,
            proposal.no_sink,
            guard=partial(self._guard_voting_transfer, proposal.id),
            on_vote=partial(self._on_vote, proposal.id),
        )
        proposal.transition_to(
            ProposalStatus.ELECTION,
            f"support {proposal.support_total}/{snapshot}, voting asset {asset_id}",
            height,
        )

    # ── Claims ────────────────────────────────────────────────────────

    def claim_voting_tokens(self, proposal_id: int, holder: str) -> int:
        """
        Mint *holder*'s voting tokens for the election; once per holder.

        The amount is the holder's vested balance excluding anything that
        vested after the election started.
        """
        proposal = self.get(proposal_id)
        height = self.height
        self._require_open(proposal, height)
        if holder in proposal.claimed:
            raise AlreadyClaimed(f"{holder} already claimed for proposal #{proposal.id}")

        amount = self._vesting.eligible_balance(holder, height, since=proposal.election_start)
        if amount <= 0:
            raise InsufficientVestedBalance(
                f"{holder} has no voting power for proposal #{proposal.id}"
            )

        proposal.claimed.add(holder)
        self._ledger.mint(proposal.voting_asset_id, holder, amount, minter=self)
        logger.info(f"Proposal #{proposal.id}: {holder} claimed {amount} voting tokens")
        return amount

    def claimable_amount(self, proposal_id: int, holder: str) -> int:
        proposal = self.get(proposal_id)
        height = self.height
        if not proposal.election_open_at(height) or holder in proposal.claimed:
            return 0
        return self._vesting.eligible_balance(
            holder, height, since=proposal.election_start, prune=False
        )

    def has_claimed(self, proposal_id: int, holder: str) -> bool:
        return holder in self.get(proposal_id).claimed

    # ── Voting ────────────────────────────────────────────────────────

    def is_election_active(self, proposal_id: int) -> bool:
        return self.get(proposal_id).election_open_at(self.height)

    def vote_totals(self, proposal_id: int) -> Tuple[int, int]:
        """(yes, no) balances of the election's sinks."""
        proposal = self.get(proposal_id)
        if not proposal.election_triggered:
            return 0, 0
        asset_id = proposal.voting_asset_id
        return (
            self._ledger.balance_of(proposal.yes_sink, asset_id),
            self._ledger.balance_of(proposal.no_sink, asset_id),
        )

    def _require_open(self, proposal: Proposal, height: int):
        if not proposal.election_triggered:
            raise NotYetElection(f"Proposal #{proposal.id} has no election yet")
        if not proposal.election_open_at(height):
            raise ElectionClosed(
                f"Election for proposal #{proposal.id} is closed "
                f"(status={proposal.status.name}, end={proposal.election_end})"
            )

    def _guard_voting_transfer(self, proposal_id: int):
        proposal = self.get(proposal_id)
        self._require_open(proposal, self.height)

    def _on_vote(self, proposal_id: int, sink: VoteSink):
        proposal = self.get(proposal_id)
        logger.debug(f"Proposal #{proposal.id}: vote received at {sink}")
        self._check_early(proposal, self.height)

    # ── Resolution ────────────────────────────────────────────────────

    def check_early_termination(self, proposal_id: int) -> bool:
        """Resolve the election now if one side holds a majority of the snapshot."""
        proposal = self.get(proposal_id)
        return self._check_early(proposal, self.height)

    def _check_early(self, proposal: Proposal, height: int) -> bool:
        if not proposal.election_open_at(height):
            return False
        yes, no = self.vote_totals(proposal.id)
        half = proposal.snapshot_total_votes // 2
        if yes > half:
            self._resolve(proposal, ProposalStatus.PASSED, height, early=True,
                          reason=f"yes {yes} > {half}")
            return True
        if no > half:
            self._resolve(proposal, ProposalStatus.FAILED, height, early=True,
                          reason=f"no {no} > {half}")
            return True
        return False

    def resolve(self, proposal_id: int) -> Optional[ProposalStatus]:
        """
        Resolve the proposal if it is due; idempotent.

        Returns the resolution (PASSED / FAILED / EXPIRED), or None while
        the election is still open without a majority.
        """
        proposal = self.get(proposal_id)
        height = self.height
        if proposal.resolution is not None:
            return proposal.resolution

        if proposal.status == ProposalStatus.PENDING:
            if proposal.is_expired_at(height, self._config.max_proposal_age):
                self._resolve(proposal, ProposalStatus.EXPIRED, height, early=False,
                              reason="maximum proposal age exceeded")
                return proposal.resolution
            raise NotYetElection(f"Proposal #{proposal.id} has no election yet")

        if not proposal.election_ended_at(height):
            self._check_early(proposal, height)
            return proposal.resolution

        yes, no = self.vote_totals(proposal.id)
        quorum = self._config.quorum_percentage_bp * proposal.snapshot_total_votes // BASIS_POINTS
        quorum_met = yes + no >= quorum
        if quorum_met and yes > no:
            status = ProposalStatus.PASSED
        else:
            status = ProposalStatus.FAILED
        self._resolve(
            proposal, status, height, early=False,
            reason=f"yes={yes} no={no} quorum={quorum} met={quorum_met}",
        )
        return proposal.resolution

    def _resolve(
        self,
        proposal: Proposal,
        status: ProposalStatus,
        height: int,
        early: bool,
        reason: str,
    ):
        proposal.resolved_early = early
        proposal.resolved_at = height
        proposal.transition_to(status, reason, height)
        if status != ProposalStatus.PASSED:
            self._release_locks(proposal)

    def _release_locks(self, proposal: Proposal):
        for asset, amount in proposal.locks:
            self._treasury.unlock(asset, amount)
        proposal.locks = []

    # ── Execution ─────────────────────────────────────────────────────

    def execute(self, proposal_id: int) -> Dict[str, Any]:
        """
        Execute a passed proposal, resolving an ended election first.

        A failed payload leaves the proposal PASSED and retryable.
        """
        proposal = self.get(proposal_id)
        if proposal.status == ProposalStatus.ELECTION:
            self.resolve(proposal_id)
        return self._executor.execute(proposal)

    # ── Snapshots ─────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        return {"proposals": {pid: _copy_proposal(p) for pid, p in self._proposals.items()}}

    def revert(self, snapshot: Dict[str, Any]):
        """Restore saved state in place so held Proposal references stay valid."""
        saved = snapshot["proposals"]
        for proposal_id in list(self._proposals):
            if proposal_id not in saved:
                del self._proposals[proposal_id]
        for proposal_id, saved_proposal in saved.items():
            current = self._proposals.get(proposal_id)
            if current is None:
                self._proposals[proposal_id] = saved_proposal
            else:
                current.__dict__.update(saved_proposal.__dict__)

    def to_dict(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for proposal in self._proposals.values():
            counts[proposal.status.name] = counts.get(proposal.status.name, 0) + 1
        return {"proposalCount": len(self._proposals), "byStatus": counts}

    def __repr__(self) -> str:
        return f"<ProposalEngine proposals={len(self._proposals)}>"


def _require_positive(amount: int, action: str):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"{action} amount must be a positive integer, got {amount!r}")


def _copy_proposal(proposal: Proposal) -> Proposal:
    """Copy a proposal's mutable containers; payloads and sinks are frozen and shared."""
    saved = copy.copy(proposal)
    saved.support_by_account = dict(proposal.support_by_account)
    saved.claimed = set(proposal.claimed)
    saved.locks = list(proposal.locks)
    saved._history = list(proposal._history)
    return saved
