"""
Governance Test Suite

Coverage:
  - Support accumulation, automatic trigger, expiry
  - Voting-token claims (frozen at election start), vote sinks
  - Early termination, quorum at the natural end, idempotent resolve
  - Treasury fund locking across concurrently pending proposals
  - Execution dispatch (treasury / mint / parameter / action), retry,
    re-entrancy guard
"""

import os
import sys
import threading

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from marketdao.config import DAOConfig, ParameterType
from marketdao.constants import MEMBERSHIP_TOKEN_ID, SINK_TAG_NO, SINK_TAG_YES
from marketdao.dao import MarketDAO
from marketdao.exceptions import (
    AlreadyClaimed,
    ElectionClosed,
    ExecutionFailed,
    FundsUnavailable,
    InsufficientBalance,
    InsufficientVestedBalance,
    NotYetElection,
    ProposalExpired,
    ProposalLifecycleError,
    ProposalNotFound,
    ReentrantCallError,
    Unauthorized,
    ValidationError,
)
from marketdao.governance import (
    ActionPayload,
    MintPayload,
    ParameterPayload,
    ProposalStatus,
    TreasuryPayload,
    derive_sink,
)
from marketdao.tokens import VoteSink
from marketdao.treasury import NATIVE


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

ALICE = "0xPQ" + "A1" * 32
BOB = "0xPQ" + "B2" * 32
CAROL = "0xPQ" + "C3" * 32
DAVE = "0xPQ" + "D4" * 32


def make_dao(holders=None, treasury=0, transfer_fn=None, start_height=0, **config):
    dao = MarketDAO(
        DAOConfig(**config),
        initial_holders={ALICE: 100} if holders is None else holders,
        transfer_fn=transfer_fn,
        start_height=start_height,
    )
    if treasury:
        dao.deposit(NATIVE, treasury)
    return dao


def pass_proposal(dao, pid, voter=ALICE):
    """Support, claim and vote yes with *voter*'s whole balance."""
    dao.add_support(pid, voter, dao.vested_balance(voter))
    dao.claim_voting_tokens(pid, voter)
    dao.vote(pid, voter, approve=True)
    assert dao.get_proposal(pid).status == ProposalStatus.PASSED


def start_election(holders, support=20, **config):
    """DAO whose proposal #0 is in ELECTION at height 0, triggered by ALICE."""
    dao = make_dao(holders, **config)
    pid = dao.create_proposal(ALICE, "Adopt the charter")
    dao.add_support(pid, ALICE, support)
    assert dao.get_proposal(pid).status == ProposalStatus.ELECTION
    return dao, pid


# ══════════════════════════════════════════════════════════════════════
#  SCENARIOS
# ══════════════════════════════════════════════════════════════════════


class TestScenarios:
    """End-to-end behaviours of the governance lifecycle."""

    def test_support_threshold_triggers_election(self):
        dao = make_dao({ALICE: 100}, support_threshold_bp=2000)
        pid = dao.create_proposal(ALICE, "Fund the audit")
        dao.add_support(pid, ALICE, 25)
        proposal = dao.get_proposal(pid)
        assert proposal.election_triggered
        assert proposal.status == ProposalStatus.ELECTION
        assert proposal.snapshot_total_votes == 100

    def test_purchase_vests_after_period(self):
        dao = make_dao(vesting_period=100, token_price=1, start_height=1000)
        dao.purchase_tokens(BOB, 10)
        assert dao.vested_balance(BOB) == 0
        dao.advance_blocks(100)
        assert dao.vested_balance(BOB) == 10

    def test_majority_terminates_early(self):
        dao, pid = start_election({ALICE: 60, BOB: 40}, election_duration=50)
        dao.claim_voting_tokens(pid, BOB)
        dao.advance_blocks(10)
        dao.claim_voting_tokens(pid, ALICE)
        proposal = dao.get_proposal(pid)

        dao.transfer(ALICE, proposal.yes_sink, proposal.voting_asset_id, 60)
        assert proposal.status == ProposalStatus.PASSED
        assert proposal.resolved_early
        assert proposal.resolution_label == "PassedEarly"

        with pytest.raises(ElectionClosed):
            dao.transfer(BOB, proposal.no_sink, proposal.voting_asset_id, 40)

    def test_locked_funds_shared_across_proposals(self):
        dao = make_dao({ALICE: 100}, treasury=10)
        first = dao.create_proposal(ALICE, "Grant A", TreasuryPayload(BOB, 6))
        second = dao.create_proposal(ALICE, "Grant B", TreasuryPayload(CAROL, 6))

        dao.add_support(first, ALICE, 25)
        assert dao.treasury.locked(NATIVE) == 6
        assert dao.treasury.available(NATIVE) == 4

        with pytest.raises(FundsUnavailable, match="Requested 6 of native but only 4 available"):
            dao.add_support(second, ALICE, 25)
        proposal = dao.get_proposal(second)
        assert proposal.status == ProposalStatus.PENDING
        assert proposal.support_total == 0
        assert proposal.support_by_account == {}
        assert dao.treasury.locked(NATIVE) == 6

    def test_support_after_max_age_expires(self):
        dao = make_dao({ALICE: 100, BOB: 100}, start_height=1000, max_proposal_age=100)
        pid = dao.create_proposal(ALICE, "Slow burn")
        dao.add_support(pid, ALICE, 10)
        dao.set_block_height(1100)
        dao.add_support(pid, BOB, 10)
        dao.set_block_height(1101)
        with pytest.raises(ProposalExpired):
            dao.add_support(pid, ALICE, 1)
        assert dao.get_proposal(pid).support_total == 20


# ══════════════════════════════════════════════════════════════════════
#  PROPOSALS & SUPPORT
# ══════════════════════════════════════════════════════════════════════


class TestProposalCreation:

    def test_ids_are_sequential(self):
        dao = make_dao()
        assert dao.create_proposal(ALICE, "one") == 0
        assert dao.create_proposal(ALICE, "two") == 1
        assert dao.proposal_count() == 2
        assert [p.description for p in dao.proposals()] == ["one", "two"]

    def test_non_holder_cannot_propose(self):
        dao = make_dao()
        with pytest.raises(Unauthorized, match="no vested membership tokens"):
            dao.create_proposal(BOB, "Let me in")

    def test_unvested_holder_cannot_propose(self):
        dao = make_dao(token_price=1, vesting_period=10)
        dao.purchase_tokens(BOB, 5)
        with pytest.raises(Unauthorized):
            dao.create_proposal(BOB, "Too early")
        dao.advance_blocks(10)
        assert dao.create_proposal(BOB, "Now vested") == 0

    def test_empty_description(self):
        dao = make_dao()
        with pytest.raises(ValidationError, match="description cannot be empty"):
            dao.create_proposal(ALICE, "   ")
        assert dao.proposal_count() == 0

    def test_unknown_proposal(self):
        dao = make_dao()
        with pytest.raises(ProposalNotFound, match="#42"):
            dao.add_support(42, ALICE, 1)

    def test_to_dict(self):
        dao = make_dao()
        pid = dao.create_proposal(ALICE, "Serialize me", TreasuryPayload(BOB, 1))
        data = dao.get_proposal(pid).to_dict()
        assert data["status"] == "PENDING"
        assert data["payload"]["type"] == "TREASURY"
        assert data["resolution"] is None


class TestSupport:
    """Support accounting before the election."""

    def test_support_bounded_by_vested_balance(self):
        dao = make_dao({ALICE: 100, BOB: 10})
        pid = dao.create_proposal(ALICE, "Bounded")
        dao.add_support(pid, BOB, 6)
        with pytest.raises(InsufficientVestedBalance, match="total support 11"):
            dao.add_support(pid, BOB, 5)

    def test_unvested_tokens_do_not_support(self):
        dao = make_dao({ALICE: 100}, token_price=1, vesting_period=10)
        dao.purchase_tokens(BOB, 50)
        pid = dao.create_proposal(ALICE, "Vesting")
        with pytest.raises(InsufficientVestedBalance):
            dao.add_support(pid, BOB, 1)

    def test_total_equals_sum_of_accounts(self):
        dao = make_dao({ALICE: 100, BOB: 100, CAROL: 100})
        pid = dao.create_proposal(ALICE, "Sum")
        dao.add_support(pid, ALICE, 10)
        dao.add_support(pid, BOB, 20)
        dao.remove_support(pid, ALICE, 4)
        dao.add_support(pid, CAROL, 5)
        proposal = dao.get_proposal(pid)
        assert proposal.support_total == sum(proposal.support_by_account.values()) == 31

    def test_remove_all_support_clears_account(self):
        dao = make_dao({ALICE: 100, BOB: 100})
        pid = dao.create_proposal(ALICE, "Undo")
        dao.add_support(pid, BOB, 10)
        dao.remove_support(pid, BOB, 10)
        assert dao.get_proposal(pid).support_by_account == {}

    def test_remove_more_than_committed(self):
        dao = make_dao({ALICE: 100, BOB: 100})
        pid = dao.create_proposal(ALICE, "Undo")
        dao.add_support(pid, BOB, 3)
        with pytest.raises(ValidationError, match="only 3 committed"):
            dao.remove_support(pid, BOB, 4)

    def test_support_frozen_after_trigger(self):
        dao, pid = start_election({ALICE: 100})
        before = dao.get_proposal(pid).support_total
        with pytest.raises(ProposalLifecycleError, match="frozen"):
            dao.add_support(pid, ALICE, 1)
        with pytest.raises(ProposalLifecycleError, match="frozen"):
            dao.remove_support(pid, ALICE, 1)
        assert dao.get_proposal(pid).support_total == before

    def test_remove_support_after_expiry(self):
        dao = make_dao({ALICE: 100}, max_proposal_age=5)
        pid = dao.create_proposal(ALICE, "Expiring")
        dao.add_support(pid, ALICE, 1)
        dao.advance_blocks(6)
        with pytest.raises(ProposalExpired):
            dao.remove_support(pid, ALICE, 1)

    def test_below_threshold_stays_pending(self):
        dao = make_dao({ALICE: 100})
        pid = dao.create_proposal(ALICE, "Quiet")
        dao.add_support(pid, ALICE, 19)
        assert dao.get_proposal(pid).status == ProposalStatus.PENDING
        assert not dao.can_trigger_election(pid)
        with pytest.raises(ProposalLifecycleError, match="below the threshold"):
            dao.trigger_election(pid)

    def test_manual_trigger_after_threshold_change(self):
        dao = make_dao({ALICE: 100})
        waiting = dao.create_proposal(ALICE, "Waiting")
        dao.add_support(waiting, ALICE, 15)
        lower = dao.create_proposal(
            ALICE, "Lower the bar", ParameterPayload(ParameterType.SUPPORT_THRESHOLD, 1000)
        )
        pass_proposal(dao, lower)
        dao.execute(lower)

        assert dao.config.support_threshold_bp == 1000
        assert dao.can_trigger_election(waiting)
        dao.trigger_election(waiting)
        assert dao.get_proposal(waiting).status == ProposalStatus.ELECTION


# ══════════════════════════════════════════════════════════════════════
#  ELECTIONS
# ══════════════════════════════════════════════════════════════════════


class TestVoteSinks:

    def test_deterministic(self):
        assert derive_sink(3, SINK_TAG_YES, "salt") == derive_sink(3, SINK_TAG_YES, "salt")

    def test_distinct_per_side_proposal_and_salt(self):
        yes = derive_sink(3, SINK_TAG_YES, "salt")
        assert yes.address != derive_sink(3, SINK_TAG_NO, "salt").address
        assert yes.address != derive_sink(4, SINK_TAG_YES, "salt").address
        assert yes.address != derive_sink(3, SINK_TAG_YES, "pepper").address

    def test_address_shape(self):
        sink = derive_sink(0, SINK_TAG_NO, "salt")
        assert isinstance(sink, VoteSink)
        assert sink.address.startswith("0x")
        assert len(sink.address) == 42

    def test_sinks_are_not_holders(self):
        dao, pid = start_election({ALICE: 100})
        dao.claim_voting_tokens(pid, ALICE)
        dao.vote(pid, ALICE, approve=False, amount=10)
        assert dao.governance_token_holders() == [ALICE]


class TestClaims:
    """Lazy voting-token issuance."""

    def test_claim_before_trigger(self):
        dao = make_dao()
        pid = dao.create_proposal(ALICE, "Not yet")
        with pytest.raises(NotYetElection):
            dao.claim_voting_tokens(pid, ALICE)
        with pytest.raises(NotYetElection):
            dao.vote(pid, ALICE, approve=True)

    def test_claim_mints_vested_balance(self):
        dao, pid = start_election({ALICE: 70, BOB: 30})
        assert dao.claimable_amount(pid, BOB) == 30
        assert dao.claim_voting_tokens(pid, BOB) == 30
        proposal = dao.get_proposal(pid)
        assert dao.balance_of(BOB, proposal.voting_asset_id) == 30
        assert dao.has_claimed(pid, BOB)
        assert dao.claimable_amount(pid, BOB) == 0

    def test_claim_twice(self):
        dao, pid = start_election({ALICE: 70, BOB: 30})
        dao.claim_voting_tokens(pid, BOB)
        with pytest.raises(AlreadyClaimed):
            dao.claim_voting_tokens(pid, BOB)

    def test_claim_without_power(self):
        dao, pid = start_election({ALICE: 100})
        with pytest.raises(InsufficientVestedBalance, match="no voting power"):
            dao.claim_voting_tokens(pid, DAVE)
        assert not dao.has_claimed(pid, DAVE)

    def test_claim_after_natural_end(self):
        dao, pid = start_election({ALICE: 70, BOB: 30}, election_duration=50)
        dao.advance_blocks(50)
        assert not dao.is_election_active(pid)
        with pytest.raises(ElectionClosed):
            dao.claim_voting_tokens(pid, BOB)

    def test_vesting_during_election_grants_no_power(self):
        dao = make_dao({ALICE: 100, BOB: 5}, token_price=1, vesting_period=10, election_duration=50)
        dao.purchase_tokens(BOB, 20)                   # unlocks at height 10
        dao.set_block_height(5)
        pid = dao.create_proposal(ALICE, "Frozen power")
        dao.add_support(pid, ALICE, 25)
        assert dao.get_proposal(pid).snapshot_total_votes == 105

        dao.set_block_height(15)
        assert dao.vested_balance(BOB) == 25
        assert dao.claimable_amount(pid, BOB) == 5
        assert dao.claim_voting_tokens(pid, BOB) == 5

    def test_frequent_purchases_keep_power_vested_before_start(self):
        dao = make_dao({ALICE: 100}, token_price=1, vesting_period=5, election_duration=50)
        for height in range(11):                       # BOB's units unlock at 5..15
            dao.set_block_height(height)
            if height == 5:
                pid = dao.create_proposal(ALICE, "Many schedules")
                dao.add_support(pid, ALICE, 25)
            dao.purchase_tokens(BOB, 1)

        dao.set_block_height(16)
        assert dao.vested_balance(BOB) == 11
        assert dao.claimable_amount(pid, BOB) == 1
        assert dao.claim_voting_tokens(pid, BOB) == 1

    def test_purchase_during_election_grants_no_power(self):
        dao, pid = start_election({ALICE: 100}, token_price=1, vesting_period=5)
        dao.purchase_tokens(CAROL, 40)
        dao.advance_blocks(10)
        assert dao.vested_balance(CAROL) == 40
        with pytest.raises(InsufficientVestedBalance):
            dao.claim_voting_tokens(pid, CAROL)

    def test_claimed_power_never_exceeds_snapshot(self):
        dao = make_dao({ALICE: 50, BOB: 50}, token_price=1, vesting_period=3, election_duration=40)
        dao.purchase_tokens(CAROL, 30)
        dao.purchase_tokens(DAVE, 30)
        pid = dao.create_proposal(ALICE, "Snapshot")
        dao.add_support(pid, ALICE, 50)
        snapshot = dao.get_proposal(pid).snapshot_total_votes
        dao.advance_blocks(10)
        claimed = 0
        for holder in (ALICE, BOB, CAROL, DAVE):
            claimed += dao.claimable_amount(pid, holder)
        assert claimed <= snapshot


class TestVoting:
    """Votes are transfers into the election's sinks."""

    def test_voting_tokens_are_tradable(self):
        dao, pid = start_election({ALICE: 60, BOB: 40})
        proposal = dao.get_proposal(pid)
        dao.claim_voting_tokens(pid, ALICE)
        dao.transfer(ALICE, CAROL, proposal.voting_asset_id, 30)
        dao.vote(pid, CAROL, approve=True)
        assert dao.vote_totals(pid) == (30, 0)
        assert proposal.status == ProposalStatus.ELECTION
        dao.vote(pid, ALICE, approve=True)
        assert proposal.status == ProposalStatus.PASSED

    def test_majority_no_fails_early(self):
        dao, pid = start_election({ALICE: 40, BOB: 60})
        dao.claim_voting_tokens(pid, BOB)
        dao.vote(pid, BOB, approve=False)
        proposal = dao.get_proposal(pid)
        assert proposal.status == ProposalStatus.FAILED
        assert proposal.resolution_label == "FailedEarly"

    def test_exactly_half_does_not_terminate(self):
        dao, pid = start_election({ALICE: 50, BOB: 50})
        dao.claim_voting_tokens(pid, ALICE)
        dao.vote(pid, ALICE, approve=True)
        assert dao.get_proposal(pid).status == ProposalStatus.ELECTION
        assert not dao.check_early_termination(pid)

    def test_trading_closed_after_resolution(self):
        dao, pid = start_election({ALICE: 60, BOB: 40})
        proposal = dao.get_proposal(pid)
        dao.claim_voting_tokens(pid, ALICE)
        dao.claim_voting_tokens(pid, BOB)
        dao.vote(pid, ALICE, approve=True)
        with pytest.raises(ElectionClosed):
            dao.transfer(BOB, CAROL, proposal.voting_asset_id, 1)

    def test_votes_after_natural_end_rejected(self):
        dao, pid = start_election({ALICE: 30, BOB: 70}, election_duration=50)
        dao.claim_voting_tokens(pid, ALICE)
        dao.advance_blocks(50)
        with pytest.raises(ElectionClosed):
            dao.vote(pid, ALICE, approve=True)
        assert dao.vote_totals(pid) == (0, 0)

    def test_cannot_send_votes_to_other_election(self):
        dao = make_dao({ALICE: 100})
        first = dao.create_proposal(ALICE, "First")
        second = dao.create_proposal(ALICE, "Second")
        dao.add_support(first, ALICE, 30)
        dao.add_support(second, ALICE, 30)
        dao.claim_voting_tokens(first, ALICE)
        one, two = dao.get_proposal(first), dao.get_proposal(second)
        with pytest.raises(ValidationError, match="only accepts"):
            dao.transfer(ALICE, two.yes_sink, one.voting_asset_id, 10)


class TestResolution:
    """Natural end, quorum and idempotent resolve."""

    def test_natural_end_passes_with_quorum(self):
        dao, pid = start_election({ALICE: 30, BOB: 30, CAROL: 40}, quorum_percentage_bp=2500)
        dao.claim_voting_tokens(pid, ALICE)
        dao.claim_voting_tokens(pid, BOB)
        dao.vote(pid, ALICE, approve=True, amount=20)
        dao.vote(pid, BOB, approve=False, amount=10)
        assert dao.resolve(pid) is None

        dao.set_block_height(dao.get_proposal(pid).election_end)
        assert dao.resolve(pid) == ProposalStatus.PASSED
        proposal = dao.get_proposal(pid)
        assert not proposal.resolved_early
        assert proposal.resolution_label == "Passed"

    def test_natural_end_without_quorum_fails(self):
        dao, pid = start_election({ALICE: 30, BOB: 30, CAROL: 40}, quorum_percentage_bp=2500)
        dao.claim_voting_tokens(pid, ALICE)
        dao.vote(pid, ALICE, approve=True, amount=24)
        dao.set_block_height(dao.get_proposal(pid).election_end)
        assert dao.resolve(pid) == ProposalStatus.FAILED

    def test_quorum_boundary_is_inclusive(self):
        dao, pid = start_election({ALICE: 30, BOB: 30, CAROL: 40}, quorum_percentage_bp=2500)
        dao.claim_voting_tokens(pid, ALICE)
        dao.vote(pid, ALICE, approve=True, amount=25)
        dao.set_block_height(dao.get_proposal(pid).election_end)
        assert dao.resolve(pid) == ProposalStatus.PASSED

    def test_tie_fails(self):
        dao, pid = start_election({ALICE: 30, BOB: 30, CAROL: 40})
        dao.claim_voting_tokens(pid, ALICE)
        dao.claim_voting_tokens(pid, BOB)
        dao.vote(pid, ALICE, approve=True, amount=20)
        dao.vote(pid, BOB, approve=False, amount=20)
        dao.set_block_height(dao.get_proposal(pid).election_end)
        assert dao.resolve(pid) == ProposalStatus.FAILED

    def test_resolve_is_idempotent(self):
        dao, pid = start_election({ALICE: 100})
        dao.claim_voting_tokens(pid, ALICE)
        dao.vote(pid, ALICE, approve=True)
        history = dao.get_proposal(pid).history
        assert dao.resolve(pid) == ProposalStatus.PASSED
        assert dao.resolve(pid) == ProposalStatus.PASSED
        assert dao.get_proposal(pid).history == history

    def test_resolve_live_pending(self):
        dao = make_dao()
        pid = dao.create_proposal(ALICE, "Live")
        with pytest.raises(NotYetElection):
            dao.resolve(pid)

    def test_resolve_records_expiry(self):
        dao = make_dao(max_proposal_age=10)
        pid = dao.create_proposal(ALICE, "Stale")
        dao.advance_blocks(11)
        assert dao.resolve(pid) == ProposalStatus.EXPIRED
        assert dao.get_proposal(pid).is_terminal
        with pytest.raises(ProposalExpired):
            dao.add_support(pid, ALICE, 50)

    def test_failed_election_releases_locks(self):
        dao = make_dao({ALICE: 100}, treasury=10)
        pid = dao.create_proposal(ALICE, "Spend", TreasuryPayload(BOB, 6))
        dao.add_support(pid, ALICE, 100)
        assert dao.treasury.locked(NATIVE) == 6
        dao.claim_voting_tokens(pid, ALICE)
        dao.vote(pid, ALICE, approve=False)
        assert dao.get_proposal(pid).status == ProposalStatus.FAILED
        assert dao.treasury.locked(NATIVE) == 0
        assert dao.treasury.total_balance(NATIVE) == 10

    def test_single_terminal_resolution(self):
        dao, pid = start_election({ALICE: 100})
        dao.claim_voting_tokens(pid, ALICE)
        dao.vote(pid, ALICE, approve=True)
        dao.execute(pid)
        terminal = [h["to"] for h in dao.get_proposal(pid).history
                    if h["to"] in ("PASSED", "FAILED", "EXPIRED")]
        assert terminal == ["PASSED"]


# ══════════════════════════════════════════════════════════════════════
#  EXECUTION
# ══════════════════════════════════════════════════════════════════════


class TestExecution:

    def test_treasury_payout(self):
        dao = make_dao({ALICE: 100}, treasury=10)
        pid = dao.create_proposal(ALICE, "Pay Bob", TreasuryPayload(BOB, 6))
        pass_proposal(dao, pid)
        changes = dao.execute(pid)
        assert changes["treasury_transfer"]["recipient"] == BOB
        assert dao.treasury.total_balance(NATIVE) == 4
        assert dao.treasury.locked(NATIVE) == 0
        proposal = dao.get_proposal(pid)
        assert proposal.executed
        assert proposal.resolution == ProposalStatus.PASSED

    def test_execute_twice(self):
        dao = make_dao()
        pid = dao.create_proposal(ALICE, "Once")
        pass_proposal(dao, pid)
        dao.execute(pid)
        with pytest.raises(ProposalLifecycleError, match="already executed"):
            dao.execute(pid)

    def test_execute_not_passed(self):
        dao = make_dao()
        pid = dao.create_proposal(ALICE, "Pending")
        with pytest.raises(ProposalLifecycleError, match="not PASSED"):
            dao.execute(pid)

    def test_execute_failed(self):
        dao, pid = start_election({ALICE: 100})
        dao.claim_voting_tokens(pid, ALICE)
        dao.vote(pid, ALICE, approve=False)
        with pytest.raises(ProposalLifecycleError):
            dao.execute(pid)

    def test_execute_resolves_ended_election(self):
        dao, pid = start_election({ALICE: 30, BOB: 30, CAROL: 40})
        dao.claim_voting_tokens(pid, ALICE)
        dao.vote(pid, ALICE, approve=True, amount=30)
        dao.set_block_height(dao.get_proposal(pid).election_end)
        dao.execute(pid)
        assert dao.get_proposal(pid).status == ProposalStatus.EXECUTED

    def test_failed_payout_is_retryable(self):
        attempts = []

        def flaky(asset, recipient, amount):
            attempts.append(amount)
            return len(attempts) > 1

        dao = make_dao({ALICE: 100}, treasury=10, transfer_fn=flaky)
        pid = dao.create_proposal(ALICE, "Flaky", TreasuryPayload(BOB, 6))
        pass_proposal(dao, pid)

        with pytest.raises(ExecutionFailed):
            dao.execute(pid)
        proposal = dao.get_proposal(pid)
        assert proposal.status == ProposalStatus.PASSED
        assert dao.treasury.locked(NATIVE) == 6
        assert dao.treasury.total_balance(NATIVE) == 10

        dao.execute(pid)
        assert proposal.executed
        assert dao.treasury.total_balance(NATIVE) == 4
        assert attempts == [6, 6]

    def test_mint_requires_flag(self):
        dao = make_dao()
        with pytest.raises(ValidationError, match="Minting is disabled"):
            dao.create_proposal(ALICE, "Print", MintPayload(BOB, 50))

    def test_mint(self):
        dao = make_dao(allow_minting=True)
        pid = dao.create_proposal(ALICE, "Print", MintPayload(BOB, 50))
        pass_proposal(dao, pid)
        dao.execute(pid)
        assert dao.balance_of(BOB) == 50
        assert dao.ledger.total_supply(MEMBERSHIP_TOKEN_ID) == 150
        assert dao.vested_balance(BOB) == 50

    def test_mint_disabled_before_execution(self):
        dao = make_dao({ALICE: 100}, allow_minting=True)
        mint = dao.create_proposal(ALICE, "Print", MintPayload(BOB, 50))
        flags = dao.create_proposal(ALICE, "Stop printing", ParameterPayload(ParameterType.FLAGS, 4))
        pass_proposal(dao, flags)
        dao.execute(flags)
        assert not dao.config.allow_minting

        dao.add_support(mint, ALICE, 100)
        dao.claim_voting_tokens(mint, ALICE)
        dao.vote(mint, ALICE, approve=True)
        with pytest.raises(ExecutionFailed, match="minting is disabled"):
            dao.execute(mint)
        assert dao.balance_of(BOB) == 0

    def test_parameter_change(self):
        dao = make_dao()
        pid = dao.create_proposal(ALICE, "Longer", ParameterPayload(ParameterType.ELECTION_DURATION, 80))
        pass_proposal(dao, pid)
        changes = dao.execute(pid)
        assert changes["ELECTION_DURATION"] == {"old": 50, "new": 80}
        assert dao.config.election_duration == 80
        assert dao.vesting.retention >= 80

    def test_invalid_parameter_rejected_at_creation(self):
        dao = make_dao()
        with pytest.raises(ValidationError, match="quorum_percentage_bp"):
            dao.create_proposal(ALICE, "Bad", ParameterPayload(ParameterType.QUORUM_PERCENTAGE, 0))

    def test_registered_action(self):
        calls = []
        dao = make_dao()
        dao.register_action("announce", lambda **params: calls.append(params) or "ok")
        pid = dao.create_proposal(ALICE, "Announce", ActionPayload("announce", {"text": "hi"}))
        pass_proposal(dao, pid)
        changes = dao.execute(pid)
        assert calls == [{"text": "hi"}]
        assert changes["action"] == {"name": "announce", "result": "ok"}

    def test_action_params_are_passed_by_reference(self):
        guard = threading.Lock()
        calls = []
        dao = make_dao()
        dao.register_action("announce", lambda **params: calls.append(params["guard"]))
        pid = dao.create_proposal(ALICE, "Guarded", ActionPayload("announce", {"guard": guard}))
        dao.add_support(pid, ALICE, 100)
        dao.claim_voting_tokens(pid, ALICE)
        with pytest.raises(InsufficientBalance):
            dao.vote(pid, ALICE, approve=True, amount=101)
        assert dao.vote_totals(pid) == (0, 0)
        dao.vote(pid, ALICE, approve=True)
        assert dao.get_proposal(pid).status == ProposalStatus.PASSED
        dao.execute(pid)
        assert calls == [guard]
        assert dao.get_proposal(pid).payload.params["guard"] is guard

    def test_unregistered_action(self):
        dao = make_dao()
        with pytest.raises(ValidationError, match="No action registered"):
            dao.create_proposal(ALICE, "Ghost", ActionPayload("ghost"))

    def test_action_error_is_wrapped(self):
        def boom():
            raise RuntimeError("boom")

        dao = make_dao()
        dao.register_action("boom", boom)
        pid = dao.create_proposal(ALICE, "Explode", ActionPayload("boom"))
        pass_proposal(dao, pid)
        with pytest.raises(ExecutionFailed, match="boom") as exc_info:
            dao.execute(pid)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert dao.get_proposal(pid).status == ProposalStatus.PASSED

    def test_reentrant_execute(self):
        target = []
        dao = make_dao()
        dao.register_action("again", lambda: dao.execute(target[0]))
        pid = dao.create_proposal(ALICE, "Recursive", ActionPayload("again"))
        target.append(pid)
        pass_proposal(dao, pid)
        with pytest.raises(ReentrantCallError):
            dao.execute(pid)
        assert dao.get_proposal(pid).status == ProposalStatus.PASSED
        assert dao.executor.execution_count() == 0

    def test_history(self):
        dao = make_dao()
        pid = dao.create_proposal(ALICE, "Full cycle")
        pass_proposal(dao, pid)
        dao.execute(pid)
        steps = [(h["from"], h["to"]) for h in dao.get_proposal(pid).history]
        assert steps == [
            ("INIT", "PENDING"),
            ("PENDING", "ELECTION"),
            ("ELECTION", "PASSED"),
            ("PASSED", "EXECUTED"),
        ]
