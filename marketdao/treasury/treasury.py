"""
DAO Treasury

Custody of native currency and external assets, with per-asset locked
counters. A lock reserves funds for a proposal whose election is running;
every lock is checked against the global locked total for that asset, so
two pending proposals can never both reserve the same funds.
"""

import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional

from ..logger import get_logger
from ..exceptions import (
    ExecutionFailed,
    FundsUnavailable,
    InsufficientBalance,
    ValidationError,
)

logger = get_logger(__name__)


class AssetKind(IntEnum):
    """Kind of asset held by the treasury."""
    NATIVE = 0          # Chain currency
    FUNGIBLE = 1        # ERC-20 style token
    NON_FUNGIBLE = 2    # ERC-721 style token (balance 0 or 1)
    MULTI_TOKEN = 3     # ERC-1155 style token


@dataclass(frozen=True)
class TreasuryAsset:
    """Identifies one treasury-held asset."""
    kind: AssetKind = AssetKind.NATIVE
    token: str = ""
    token_id: int = 0

    def __post_init__(self):
        if self.kind == AssetKind.NATIVE:
            if self.token or self.token_id:
                raise ValidationError("Native asset takes no token address or id")
            return
        if not self.token:
            raise ValidationError(f"{self.kind.name} asset requires a token address")
        if self.kind == AssetKind.FUNGIBLE and self.token_id:
            raise ValidationError("Fungible asset takes no token id")
        if self.token_id < 0:
            raise ValidationError("Token id cannot be negative")

    @classmethod
    def native(cls) -> "TreasuryAsset":
        return cls()

    @classmethod
    def fungible(cls, token: str) -> "TreasuryAsset":
        return cls(AssetKind.FUNGIBLE, token)

    @classmethod
    def non_fungible(cls, token: str, token_id: int) -> "TreasuryAsset":
        return cls(AssetKind.NON_FUNGIBLE, token, token_id)

    @classmethod
    def multi_token(cls, token: str, token_id: int) -> "TreasuryAsset":
        return cls(AssetKind.MULTI_TOKEN, token, token_id)

    def __str__(self) -> str:
        if self.kind == AssetKind.NATIVE:
            return "native"
        if self.kind == AssetKind.FUNGIBLE:
            return self.token
        return f"{self.token}#{self.token_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.name, "token": self.token, "tokenId": self.token_id}


NATIVE = TreasuryAsset.native()


@dataclass(frozen=True)
class TreasuryTransfer:
    """An outbound treasury payment."""
    asset: TreasuryAsset
    recipient: str
    amount: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset.to_dict(),
            "recipient": self.recipient,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


class Treasury:
    """
    DAO treasury with fund locking.

    available(asset) = total_balance(asset) − locked(asset)
    """

    def __init__(self, transfer_fn: Optional[Callable[[TreasuryAsset, str, int], Any]] = None):
        """
        Args:
            transfer_fn: Callable(asset, recipient, amount) performing the
                external leg of a payout. Returning False or raising fails
                the payout. None records payouts in the outbox only.
        """
        self._transfer_fn = transfer_fn
        self._balances: Dict[TreasuryAsset, int] = {}
        self._locked: Dict[TreasuryAsset, int] = {}
        self._outbox: List[TreasuryTransfer] = []

    # ── Views ─────────────────────────────────────────────────────────

    def total_balance(self, asset: TreasuryAsset = NATIVE) -> int:
        return self._balances.get(asset, 0)

    def locked(self, asset: TreasuryAsset = NATIVE) -> int:
        return self._locked.get(asset, 0)

    def available(self, asset: TreasuryAsset = NATIVE) -> int:
        return self.total_balance(asset) - self.locked(asset)

    def assets(self) -> List[TreasuryAsset]:
        return [a for a, bal in self._balances.items() if bal > 0]

    @property
    def outbox(self) -> List[TreasuryTransfer]:
        return list(self._outbox)

    # ── Inflows ───────────────────────────────────────────────────────

    def deposit(self, asset: TreasuryAsset, amount: int):
        """Record assets received by the DAO."""
        _require_positive(amount, "Deposit")
        if asset.kind == AssetKind.NON_FUNGIBLE:
            if amount != 1 or self.total_balance(asset) != 0:
                raise ValidationError(f"Non-fungible {asset} can only be held once")
        self._balances[asset] = self.total_balance(asset) + amount
        logger.debug(f"Treasury: deposit {amount} of {asset}")

    # ── Locking ───────────────────────────────────────────────────────

    def lock(self, asset: TreasuryAsset, amount: int):
        """Reserve *amount*; fails if it exceeds the unlocked balance."""
        _require_positive(amount, "Lock")
        available = self.available(asset)
        if amount > available:
            raise FundsUnavailable(
                f"Requested {amount} of {asset} but only {available} available "
                f"(total={self.total_balance(asset)}, locked={self.locked(asset)})"
            )
        self._locked[asset] = self.locked(asset) + amount
        logger.info(f"Treasury: locked {amount} of {asset} (now {self._locked[asset]})")

    def unlock(self, asset: TreasuryAsset, amount: int):
        """Release a reservation (proposal failed or expired)."""
        _require_positive(amount, "Unlock")
        current = self.locked(asset)
        if amount > current:
            raise ValidationError(f"Cannot unlock {amount} of {asset}; only {current} locked")
        self._set_locked(asset, current - amount)
        logger.info(f"Treasury: unlocked {amount} of {asset}")

    def debit_and_unlock(self, asset: TreasuryAsset, amount: int, recipient: str) -> TreasuryTransfer:
        """
        Pay out a locked reservation to *recipient*.

        Balance and lock are reduced before the external transfer runs; if
        the transfer fails both are restored and ExecutionFailed is raised.
        """
        _require_positive(amount, "Payout")
        if not recipient:
            raise ValidationError("Payout recipient is required")
        current_lock = self.locked(asset)
        if amount > current_lock:
            raise ValidationError(f"Payout {amount} of {asset} exceeds locked {current_lock}")
        balance = self.total_balance(asset)
        if amount > balance:
            raise InsufficientBalance(f"Treasury holds {balance} of {asset}, payout {amount}")

        self._balances[asset] = balance - amount
        self._set_locked(asset, current_lock - amount)

        try:
            if self._transfer_fn is not None and self._transfer_fn(asset, recipient, amount) is False:
                raise ExecutionFailed(f"Transfer of {amount} {asset} to {recipient} was rejected")
        except Exception as exc:
            self._balances[asset] = balance
            self._locked[asset] = current_lock
            logger.warning(f"Treasury: payout of {amount} {asset} to {recipient} failed: {exc}")
            if isinstance(exc, ExecutionFailed):
                raise
            raise ExecutionFailed(f"Transfer of {amount} {asset} to {recipient} failed: {exc}") from exc

        transfer = TreasuryTransfer(asset=asset, recipient=recipient, amount=amount)
        self._outbox.append(transfer)
        logger.info(f"Treasury: paid {amount} of {asset} → {recipient}")
        return transfer

    def _set_locked(self, asset: TreasuryAsset, amount: int):
        if amount:
            self._locked[asset] = amount
        else:
            self._locked.pop(asset, None)

    # ── Snapshots ─────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        return {
            "balances": dict(self._balances),
            "locked": dict(self._locked),
            "outbox": len(self._outbox),
        }

    def revert(self, snapshot: Dict[str, Any]):
        self._balances = snapshot["balances"]
        self._locked = snapshot["locked"]
        del self._outbox[snapshot["outbox"]:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balances": {str(a): b for a, b in self._balances.items()},
            "locked": {str(a): v for a, v in self._locked.items()},
            "payouts": len(self._outbox),
        }

    def __repr__(self) -> str:
        return f"<Treasury native={self.total_balance(NATIVE)} locked={self.locked(NATIVE)}>"


def _require_positive(amount: int, action: str):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"{action} amount must be a positive integer, got {amount!r}")
