"""
MarketDAO

Wires the ledger, vesting registry, treasury and proposal engine together,
owns the block-height clock and exposes the external entry points. Every
mutating entry point runs as one transaction: component state is
snapshotted first and reverted if the call raises.
"""

import functools
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from .logger import get_logger
from .config.loader import DAOConfig, ParameterType
from .constants import DAO_ACCOUNT, MEMBERSHIP_TOKEN_ID
from .exceptions import (
    InsufficientBalance,
    NotYetElection,
    PurchasesDisabledError,
    Unauthorized,
    ValidationError,
)
from .governance import (
    GovernanceExecutor,
    Proposal,
    ProposalEngine,
    ProposalFactory,
    ProposalStatus,
)
from .tokens import Ledger, TransferEvent, VestingRegistry, VoteSink
from .treasury import NATIVE, Treasury, TreasuryAsset

logger = get_logger(__name__)


def transactional(method):
    """Run *method* inside the DAO transaction (all-or-nothing)."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._transaction():
            return method(self, *args, **kwargs)
    return wrapper


class MarketDAO:
    """
    Governance DAO with tradable per-election voting tokens.

    Example:
        dao = MarketDAO(DAOConfig(token_price=10), initial_holders={"alice": 100})
        pid = dao.create_proposal("alice", "Fund the audit", TreasuryPayload("bob", 5))
        dao.add_support(pid, "alice", 25)        # triggers the election
        dao.claim_voting_tokens(pid, "alice")
        dao.vote(pid, "alice", approve=True)      # early PASSED
        dao.execute(pid)
    """

    def __init__(
        self,
        config: Optional[DAOConfig] = None,
        initial_holders: Optional[Dict[str, int]] = None,
        transfer_fn: Optional[Callable[[TreasuryAsset, str, int], Any]] = None,
        start_height: int = 0,
    ):
        """
        Args:
            config:          Governance parameters (defaults if None)
            initial_holders: Genesis membership balances, fully vested.
                             Tokens given to DAO_ACCOUNT are sold on purchase
                             when mint_on_purchase is off.
            transfer_fn:     Outbound leg of treasury payouts
            start_height:    Initial block height
        """
        self.config = config or DAOConfig()
        self.config.validate()
        if isinstance(start_height, bool) or not isinstance(start_height, int) or start_height < 0:
            raise ValidationError(f"Invalid start height: {start_height!r}")
        self._height = start_height
        self._lock = threading.RLock()
        self._tx_depth = 0

        self.ledger = Ledger(vested_balance_fn=self._transferable_balance)
        self.vesting = VestingRegistry(
            self.ledger,
            get_vesting_period=lambda: self.config.vesting_period,
            retention=self.config.election_duration,
        )
        self.treasury = Treasury(transfer_fn=transfer_fn)
        self.executor = GovernanceExecutor(
            self.ledger,
            self.treasury,
            self.config,
            set_parameter_fn=self._apply_parameter,
        )
        self.engine = ProposalEngine(
            self.ledger,
            self.vesting,
            self.treasury,
            self.executor,
            self.config,
            height_fn=lambda: self._height,
        )
        self.factory = ProposalFactory(self.engine, self.vesting, self.executor)

        if initial_holders:
            self._mint_genesis(initial_holders)

        logger.info(
            f"MarketDAO '{self.config.name}' ready at height {self._height} "
            f"(supply {self.ledger.total_supply(MEMBERSHIP_TOKEN_ID)})"
        )

    def _mint_genesis(self, initial_holders: Dict[str, int]):
        self.ledger.authorize_minter(self)
        try:
            for holder, amount in initial_holders.items():
                self.ledger.mint(MEMBERSHIP_TOKEN_ID, holder, amount, minter=self)
        finally:
            self.ledger.revoke_minter(self)

    # ── Transactions ──────────────────────────────────────────────────

    @contextmanager
    def _transaction(self):
        with self._lock:
            if self._tx_depth:
                # Nested calls join the outer transaction
                self._tx_depth += 1
                try:
                    yield
                finally:
                    self._tx_depth -= 1
                return

            snapshot = self._snapshot()
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                self._revert(snapshot)
                raise
            finally:
                self._tx_depth = 0

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "height": self._height,
            "config": replace(self.config),
            "ledger": self.ledger.snapshot(),
            "vesting": self.vesting.snapshot(),
            "treasury": self.treasury.snapshot(),
            "engine": self.engine.snapshot(),
            "executor": self.executor.snapshot(),
        }

    def _revert(self, snapshot: Dict[str, Any]):
        self._height = snapshot["height"]
        self.config.restore(snapshot["config"])
        self.ledger.revert(snapshot["ledger"])
        self.vesting.revert(snapshot["vesting"])
        self.treasury.revert(snapshot["treasury"])
        self.engine.revert(snapshot["engine"])
        self.executor.revert(snapshot["executor"])
        logger.debug("Transaction reverted")

    # ── Block height ──────────────────────────────────────────────────

    @property
    def block_height(self) -> int:
        return self._height

    def advance_blocks(self, blocks: int = 1) -> int:
        if isinstance(blocks, bool) or not isinstance(blocks, int) or blocks < 0:
            raise ValidationError(f"Block count must be a non-negative integer, got {blocks!r}")
        with self._lock:
            self._height += blocks
            return self._height

    def set_block_height(self, height: int) -> int:
        """Jump to *height*; the clock never moves backwards."""
        if isinstance(height, bool) or not isinstance(height, int) or height < self._height:
            raise ValidationError(f"Height must be an integer ≥ {self._height}, got {height!r}")
        with self._lock:
            self._height = height
            return self._height

    # ── Membership tokens ─────────────────────────────────────────────

    def _transferable_balance(self, account: str) -> int:
        return self.vesting.vested_balance(account, self._height)

    def balance_of(self, account: Any, asset_id: int = MEMBERSHIP_TOKEN_ID) -> int:
        return self.ledger.balance_of(account, asset_id)

    def vested_balance(self, holder: str) -> int:
        with self._lock:
            return self.vesting.vested_balance(holder, self._height)

    def total_vested_supply(self) -> int:
        return self.vesting.total_vested_supply(self._height)

    def has_claimable_vesting(self, holder: str) -> bool:
        return self.vesting.has_claimable_vesting(holder, self._height)

    @transactional
    def claim_vested_tokens(self, holder: str) -> int:
        return self.vesting.claim_vested(holder, self._height)

    def governance_token_holders(self) -> List[str]:
        """Accounts holding membership tokens, excluding the DAO itself."""
        return [h for h in self.ledger.holders() if h != DAO_ACCOUNT]

    def available_tokens_for_purchase(self) -> Optional[int]:
        """
        Tokens a buyer can acquire right now.

        0 when purchases are disabled, None (unlimited) when purchases mint,
        otherwise the DAO's own transferable membership balance.
        """
        if self.config.token_price == 0:
            return 0
        if self.config.mint_on_purchase:
            return None
        with self._lock:
            return self.vesting.vested_balance(DAO_ACCOUNT, self._height)

    @transactional
    def purchase_tokens(self, buyer: str, payment: int) -> int:
        """
        Buy membership tokens for *payment* native units; returns the
        number of tokens bought. Bought tokens vest after vesting_period.
        """
        price = self.config.token_price
        if price == 0:
            raise PurchasesDisabledError("Direct token purchase is disabled")
        if isinstance(payment, bool) or not isinstance(payment, int) or payment <= 0:
            raise ValidationError(f"Payment must be a positive integer, got {payment!r}")
        if payment % price:
            raise ValidationError(f"Payment {payment} is not a multiple of the token price {price}")
        if not isinstance(buyer, str) or not buyer or buyer == DAO_ACCOUNT:
            raise ValidationError(f"Invalid buyer: {buyer!r}")
        if (
            self.config.restrict_purchases_to_holders
            and self.ledger.balance_of(buyer, MEMBERSHIP_TOKEN_ID) == 0
        ):
            raise Unauthorized(f"{buyer} must already hold membership tokens to purchase")

        amount = payment // price
        height = self._height
        if self.config.mint_on_purchase:
            self.vesting.purchase(buyer, amount, height)
        else:
            available = self.vesting.vested_balance(DAO_ACCOUNT, height)
            if available < amount:
                raise InsufficientBalance(
                    f"DAO holds {available} tokens for sale, {amount} requested"
                )
            self.ledger.transfer(DAO_ACCOUNT, buyer, MEMBERSHIP_TOKEN_ID, amount)
            self.vesting.add_schedule(buyer, amount, height)

        self.treasury.deposit(NATIVE, payment)
        logger.info(f"{buyer} purchased {amount} tokens for {payment}")
        return amount

    # ── Treasury ──────────────────────────────────────────────────────

    @transactional
    def deposit(self, asset: TreasuryAsset, amount: int):
        self.treasury.deposit(asset, amount)

    # ── Proposals ─────────────────────────────────────────────────────

    @transactional
    def create_proposal(self, proposer: str, description: str, payload: Optional[Any] = None) -> int:
        return self.factory.create(proposer, description, payload).id

    def get_proposal(self, proposal_id: int) -> Proposal:
        return self.engine.get(proposal_id)

    def proposals(self) -> List[Proposal]:
        return self.factory.proposals()

    def proposal_count(self) -> int:
        return self.factory.proposal_count()

    @transactional
    def add_support(self, proposal_id: int, holder: str, amount: int) -> Proposal:
        return self.engine.add_support(proposal_id, holder, amount)

    @transactional
    def remove_support(self, proposal_id: int, holder: str, amount: int) -> Proposal:
        return self.engine.remove_support(proposal_id, holder, amount)

    def can_trigger_election(self, proposal_id: int) -> bool:
        with self._lock:
            return self.engine.can_trigger_election(proposal_id)

    @transactional
    def trigger_election(self, proposal_id: int) -> Proposal:
        return self.engine.trigger_election(proposal_id)

    # ── Elections ─────────────────────────────────────────────────────

    @transactional
    def claim_voting_tokens(self, proposal_id: int, holder: str) -> int:
        return self.engine.claim_voting_tokens(proposal_id, holder)

    def claimable_amount(self, proposal_id: int, holder: str) -> int:
        with self._lock:
            return self.engine.claimable_amount(proposal_id, holder)

    def has_claimed(self, proposal_id: int, holder: str) -> bool:
        return self.engine.has_claimed(proposal_id, holder)

    def is_election_active(self, proposal_id: int) -> bool:
        return self.engine.is_election_active(proposal_id)

    def vote_totals(self, proposal_id: int) -> Tuple[int, int]:
        return self.engine.vote_totals(proposal_id)

    @transactional
    def transfer(self, sender: Any, recipient: Any, asset_id: int, amount: int) -> TransferEvent:
        return self.ledger.transfer(sender, recipient, asset_id, amount)

    @transactional
    def vote(self, proposal_id: int, holder: str, approve: bool, amount: Optional[int] = None) -> TransferEvent:
        """Send *amount* (default: all) of *holder*'s voting tokens to a sink."""
        proposal = self.engine.get(proposal_id)
        if not proposal.election_triggered:
            raise NotYetElection(f"Proposal #{proposal_id} has no election yet")
        sink: VoteSink = proposal.yes_sink if approve else proposal.no_sink
        if amount is None:
            amount = self.ledger.balance_of(holder, proposal.voting_asset_id)
        return self.ledger.transfer(holder, sink, proposal.voting_asset_id, amount)

    # ── Resolution / execution ────────────────────────────────────────

    @transactional
    def check_early_termination(self, proposal_id: int) -> bool:
        return self.engine.check_early_termination(proposal_id)

    @transactional
    def resolve(self, proposal_id: int) -> Optional[ProposalStatus]:
        return self.engine.resolve(proposal_id)

    @transactional
    def execute(self, proposal_id: int) -> Dict[str, Any]:
        return self.engine.execute(proposal_id)

    def register_action(self, name: str, action_fn: Callable[..., Any]):
        self.executor.register_action(name, action_fn)

    def _apply_parameter(self, parameter: ParameterType, value: int) -> int:
        old = self.config.set_parameter(parameter, value)
        if ParameterType(parameter) == ParameterType.ELECTION_DURATION:
            self.vesting.extend_retention(value)
        return old

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.config.name,
            "blockHeight": self._height,
            "config": self.config.to_dict(),
            "ledger": self.ledger.to_dict(),
            "vesting": self.vesting.to_dict(),
            "treasury": self.treasury.to_dict(),
            "governance": self.engine.to_dict(),
        }

    def __repr__(self) -> str:
        return (
            f"<MarketDAO '{self.config.name}' height={self._height} "
            f"proposals={self.engine.proposal_count()}>"
        )
