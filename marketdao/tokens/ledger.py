"""
Multi-Asset Ledger

Balance table keyed by (account, asset_id) with per-asset total supply:
  - asset 0 is the membership token (permanent, transferable)
  - assets 1..N are per-election voting tokens, minted only by claim
  - transfers into an election's yes/no sink call back into the election
    synchronously, behind a re-entrancy guard
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from ..logger import get_logger
from ..constants import FIRST_VOTING_TOKEN_ID, MEMBERSHIP_TOKEN_ID
from ..exceptions import (
    InsufficientBalance,
    InsufficientVestedBalance,
    ReentrantCallError,
    Unauthorized,
    ValidationError,
)

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  VOTE SINKS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class VoteSink:
    """
    Opaque routing destination for one side of one election.

    Sinks are tagged values rather than accounts: no account string ever
    compares equal to a VoteSink, so nobody controls a sink's balance.
    """
    proposal_id: int
    side: str
    address: str

    def __str__(self) -> str:
        return f"sink:{self.address}"


@dataclass(frozen=True)
class _VotingRoute:
    asset_id: int
    yes_sink: VoteSink
    no_sink: VoteSink
    guard: Callable[[], None]
    on_vote: Callable[[VoteSink], None]

    def accepts(self, sink: VoteSink) -> bool:
        return sink == self.yes_sink or sink == self.no_sink


# ══════════════════════════════════════════════════════════════════════
#  EVENTS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransferEvent:
    """Emitted on every successful transfer."""
    asset_id: int
    sender: str
    recipient: Hashable
    amount: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Transfer",
            "assetId": self.asset_id,
            "from": self.sender,
            "to": str(self.recipient),
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class MintEvent:
    """Emitted on every successful mint."""
    asset_id: int
    recipient: str
    amount: int
    minter: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Mint",
            "assetId": self.asset_id,
            "to": self.recipient,
            "amount": self.amount,
            "minter": self.minter,
            "timestamp": self.timestamp,
        }


def _require_amount(amount: int, action: str):
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{action} amount must be an integer, got {amount!r}")
    if amount <= 0:
        raise ValidationError(f"{action} amount must be positive")


# ══════════════════════════════════════════════════════════════════════
#  LEDGER
# ══════════════════════════════════════════════════════════════════════

class Ledger:
    """
    Multi-asset balance ledger.

    Mirrors ERC-1155 semantics:
        - balance_of(account, asset_id) → int
        - total_supply(asset_id) → int
        - transfer(sender, recipient, asset_id, amount)
        - mint(asset_id, recipient, amount, minter)   (authorized minters only)

    Membership transfers are gated by the injected vested-balance callback;
    voting-asset transfers are gated by the owning election.
    """

    def __init__(self, vested_balance_fn: Optional[Callable[[str], int]] = None):
        """
        Args:
            vested_balance_fn: Callable(account) → int, the account's
                transferable membership balance. None means fully vested.
        """
        self._vested_balance_fn = vested_balance_fn

        self._balances: Dict[Tuple[Hashable, int], int] = {}
        self._supply: Dict[int, int] = {}
        self._holders: Dict[str, None] = {}  # ordered set of membership holders
        self._next_asset_id = FIRST_VOTING_TOKEN_ID
        self._routes: Dict[int, _VotingRoute] = {}
        self._events: List[Any] = []

        self._minters: set = set()
        self._in_vote_hook = False

    # ── Read-only views ───────────────────────────────────────────────

    def balance_of(self, account: Hashable, asset_id: int) -> int:
        return self._balances.get((account, asset_id), 0)

    def total_supply(self, asset_id: int) -> int:
        return self._supply.get(asset_id, 0)

    def holders(self) -> List[str]:
        """Accounts with a non-zero membership balance, in order of arrival."""
        return list(self._holders)

    def is_voting_asset(self, asset_id: int) -> bool:
        return asset_id in self._routes

    @property
    def next_asset_id(self) -> int:
        return self._next_asset_id

    @property
    def events(self) -> List[Any]:
        return list(self._events)

    # ── Minter authorization ──────────────────────────────────────────

    def authorize_minter(self, minter: object):
        """Allow *minter* (a subsystem object) to mint."""
        self._minters.add(minter)

    def revoke_minter(self, minter: object):
        self._minters.discard(minter)

    def is_minter(self, minter: object) -> bool:
        return minter in self._minters

    # ── Voting assets ─────────────────────────────────────────────────

    def allocate_asset(self) -> int:
        """Reserve a fresh voting asset id."""
        asset_id = self._next_asset_id
        self._next_asset_id += 1
        return asset_id

    def register_voting_asset(
        self,
        asset_id: int,
        yes_sink: VoteSink,
        no_sink: VoteSink,
        guard: Callable[[], None],
        on_vote: Callable[[VoteSink], None],
    ):
        """
        Bind a voting asset to its election.

        Args:
            guard:   called before any transfer of the asset; raises when
                     the election is not accepting transfers
            on_vote: called after a transfer into one of the sinks
        """
        if asset_id == MEMBERSHIP_TOKEN_ID or asset_id >= self._next_asset_id:
            raise ValidationError(f"Asset {asset_id} was not allocated as a voting asset")
        if asset_id in self._routes:
            raise ValidationError(f"Voting asset {asset_id} already registered")
        if yes_sink == no_sink:
            raise ValidationError("Yes and no sinks must differ")
        self._routes[asset_id] = _VotingRoute(asset_id, yes_sink, no_sink, guard, on_vote)

    # ── Guards ────────────────────────────────────────────────────────

    def _require_not_in_hook(self):
        if self._in_vote_hook:
            raise ReentrantCallError("Ledger re-entered from a vote hook")

    # ── Balance mutation ──────────────────────────────────────────────

    def _credit(self, account: Hashable, asset_id: int, amount: int):
        key = (account, asset_id)
        self._balances[key] = self._balances.get(key, 0) + amount
        if asset_id == MEMBERSHIP_TOKEN_ID:
            self._holders[account] = None

    def _debit(self, account: Hashable, asset_id: int, amount: int):
        key = (account, asset_id)
        remaining = self._balances.get(key, 0) - amount
        if remaining:
            self._balances[key] = remaining
        else:
            self._balances.pop(key, None)
            if asset_id == MEMBERSHIP_TOKEN_ID:
                self._holders.pop(account, None)

    # ── Core operations ───────────────────────────────────────────────

    def transfer(
        self,
        sender: Hashable,
        recipient: Hashable,
        asset_id: int,
        amount: int,
    ) -> TransferEvent:
        """
        Move *amount* of *asset_id* from *sender* to *recipient*.

        A transfer into a VoteSink is a vote: it is irrevocable and, once
        balances are committed, the owning election re-checks early
        termination before this call returns.
        """
        self._require_not_in_hook()
        _require_amount(amount, "Transfer")

        if isinstance(sender, VoteSink):
            raise Unauthorized(f"{sender} is a vote sink; votes cannot be moved")
        if not recipient:
            raise ValidationError(f"Cannot transfer to {recipient!r}")
        if sender == recipient:
            raise ValidationError("Cannot transfer to self")

        route = self._routes.get(asset_id)
        if isinstance(recipient, VoteSink):
            if route is None or not route.accepts(recipient):
                raise ValidationError(
                    f"{recipient} only accepts the voting asset of proposal "
                    f"#{recipient.proposal_id}, not asset {asset_id}"
                )

        bal = self.balance_of(sender, asset_id)
        if bal < amount:
            raise InsufficientBalance(
                f"{sender} balance {bal} < transfer amount {amount} (asset {asset_id})"
            )

        if asset_id == MEMBERSHIP_TOKEN_ID and self._vested_balance_fn is not None:
            vested = self._vested_balance_fn(sender)
            if vested < amount:
                raise InsufficientVestedBalance(
                    f"{sender} vested balance {vested} < transfer amount {amount}"
                )

        if route is not None:
            route.guard()

        self._debit(sender, asset_id, amount)
        self._credit(recipient, asset_id, amount)

        event = TransferEvent(
            asset_id=asset_id,
            sender=sender,
            recipient=recipient,
            amount=amount,
        )
        self._events.append(event)
        logger.debug(f"Transfer: {sender} → {recipient} {amount} of asset {asset_id}")

        if isinstance(recipient, VoteSink):
            self._in_vote_hook = True
            try:
                route.on_vote(recipient)
            finally:
                self._in_vote_hook = False

        return event

    def mint(
        self,
        asset_id: int,
        recipient: str,
        amount: int,
        minter: object,
    ) -> MintEvent:
        """Create *amount* new units of *asset_id* for *recipient*."""
        self._require_not_in_hook()
        if minter not in self._minters:
            raise Unauthorized(f"{type(minter).__name__} is not an authorized minter")
        _require_amount(amount, "Mint")
        if isinstance(recipient, VoteSink) or not recipient:
            raise ValidationError(f"Cannot mint to {recipient!r}")
        if asset_id != MEMBERSHIP_TOKEN_ID and asset_id not in self._routes:
            raise ValidationError(f"Asset {asset_id} is not a registered voting asset")

        self._supply[asset_id] = self.total_supply(asset_id) + amount
        self._credit(recipient, asset_id, amount)

        event = MintEvent(
            asset_id=asset_id,
            recipient=recipient,
            amount=amount,
            minter=type(minter).__name__,
        )
        self._events.append(event)
        logger.debug(f"Mint: {amount} of asset {asset_id} → {recipient}")
        return event

    # ── Snapshots ─────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """Capture state for revert()."""
        return {
            "balances": dict(self._balances),
            "supply": dict(self._supply),
            "holders": dict(self._holders),
            "next_asset_id": self._next_asset_id,
            "routes": dict(self._routes),
            "events": len(self._events),
        }

    def revert(self, snapshot: Dict[str, Any]):
        self._balances = snapshot["balances"]
        self._supply = snapshot["supply"]
        self._holders = snapshot["holders"]
        self._next_asset_id = snapshot["next_asset_id"]
        self._routes = snapshot["routes"]
        del self._events[snapshot["events"]:]
        self._in_vote_hook = False

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "membershipSupply": self.total_supply(MEMBERSHIP_TOKEN_ID),
            "holders": len(self._holders),
            "votingAssets": sorted(self._routes),
            "nextAssetId": self._next_asset_id,
        }

    def __repr__(self) -> str:
        return (
            f"<Ledger supply={self.total_supply(MEMBERSHIP_TOKEN_ID)} "
            f"voting_assets={len(self._routes)}>"
        )
