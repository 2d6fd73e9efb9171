"""
Vesting Registry

Newly purchased membership tokens exist immediately but are locked until an
unlock height. Each holder carries at most MAX_VESTING_SCHEDULES pending
unlock heights; expired schedules are pruned the next time the holder is
touched. A DAO-wide unvested counter is kept incrementally so that the total
vested supply is O(1) regardless of holder count.
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List

from ..logger import get_logger
from ..constants import MAX_VESTING_SCHEDULES, MEMBERSHIP_TOKEN_ID
from ..exceptions import TooManySchedules, ValidationError
from .ledger import Ledger

logger = get_logger(__name__)


@dataclass(frozen=True)
class VestingSchedule:
    """A locked amount that becomes usable at *unlock_height*."""
    holder: str
    amount: int
    unlock_height: int

    def is_vested(self, height: int) -> bool:
        return self.unlock_height <= height

    def to_dict(self) -> Dict[str, Any]:
        return {
            "holder": self.holder,
            "amount": self.amount,
            "unlockHeight": self.unlock_height,
        }


class VestingRegistry:
    """
    Per-holder vesting schedules plus the global unvested-supply counter.

    Responsibilities:
        - Create / merge schedules on purchase
        - Prune expired schedules opportunistically (bounded by the cap)
        - Report vested balances and the O(1) total vested supply
        - Remember recently matured schedules so election claims can
          exclude amounts that vested after the election started
    """

    def __init__(
        self,
        ledger: Ledger,
        get_vesting_period: Callable[[], int],
        max_schedules: int = MAX_VESTING_SCHEDULES,
        retention: int = 0,
    ):
        """
        Args:
            ledger:             Ledger holding membership balances
            get_vesting_period: Callable() → int, blocks until a purchase vests
            max_schedules:      Cap on concurrent unlock heights per holder
            retention:          Blocks a matured schedule is remembered
        """
        self._ledger = ledger
        self._get_vesting_period = get_vesting_period
        self.max_schedules = max_schedules
        self.retention = retention

        self._schedules: Dict[str, List[VestingSchedule]] = {}
        self._matured: Dict[str, List[VestingSchedule]] = {}
        self._total_unvested = 0

        ledger.authorize_minter(self)

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def total_unvested_supply(self) -> int:
        return self._total_unvested

    @property
    def vesting_period(self) -> int:
        return self._get_vesting_period()

    def schedules(self, holder: str) -> List[VestingSchedule]:
        return list(self._schedules.get(holder, []))

    def schedule_count(self, holder: str) -> int:
        return len(self._schedules.get(holder, []))

    def unvested_balance(self, holder: str, height: int) -> int:
        return sum(
            s.amount for s in self._schedules.get(holder, [])
            if not s.is_vested(height)
        )

    def vested_balance(self, holder: str, height: int, prune: bool = True) -> int:
        """
        Membership balance usable for transfers and governance at *height*.

        With *prune* (the default) expired schedules are removed first and
        the global counter is decremented by their amount.
        """
        if prune:
            self._prune(holder, height)
        balance = self._ledger.balance_of(holder, MEMBERSHIP_TOKEN_ID)
        return max(0, balance - self.unvested_balance(holder, height))

    def total_vested_supply(self, height: int) -> int:
        """
        Total membership supply minus the unvested counter.

        Schedules that expired but were not pruned yet still count as
        unvested, so this never overstates the vested supply.
        """
        return self._ledger.total_supply(MEMBERSHIP_TOKEN_ID) - self._total_unvested

    def has_claimable_vesting(self, holder: str, height: int) -> bool:
        return any(s.is_vested(height) for s in self._schedules.get(holder, []))

    def eligible_balance(
        self,
        holder: str,
        height: int,
        since: int,
        prune: bool = True,
    ) -> int:
        """
        Vested balance at *height* excluding anything that vested after
        *since* (the start of an election).
        """
        vested = self.vested_balance(holder, height, prune=prune)
        late = sum(
            s.amount for s in self._matured.get(holder, [])
            if s.unlock_height > since
        )
        late += sum(
            s.amount for s in self._schedules.get(holder, [])
            if since < s.unlock_height <= height
        )
        return max(0, vested - late)

    # ── Mutations ─────────────────────────────────────────────────────

    def add_schedule(self, holder: str, amount: int, height: int):
        """
        Lock *amount* of *holder*'s membership tokens until
        height + vesting_period. Tokens are not minted here.

        Returns the resulting (possibly merged) schedule, or None when the
        vesting period is zero.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(f"Vesting amount must be a positive integer, got {amount!r}")
        period = self.vesting_period
        if period <= 0:
            return None
        return self._insert(holder, amount, height + period, height)

    def purchase(self, holder: str, amount: int, height: int):
        """Schedule vesting for *amount* and mint it to *holder*."""
        schedule = self.add_schedule(holder, amount, height)
        self._ledger.mint(MEMBERSHIP_TOKEN_ID, holder, amount, minter=self)
        return schedule

    def claim_vested(self, holder: str, height: int) -> int:
        """Prune *holder*'s expired schedules; returns the amount released."""
        released = self._prune(holder, height)
        if released:
            logger.info(f"Vesting: released {released} tokens for {holder}")
        return released

    def extend_retention(self, blocks: int):
        """Matured schedules are kept for the longest election seen."""
        self.retention = max(self.retention, blocks)

    def _insert(
        self,
        holder: str,
        amount: int,
        unlock_height: int,
        height: int,
    ) -> VestingSchedule:
        self._prune(holder, height)
        schedules = self._schedules.setdefault(holder, [])

        for i, existing in enumerate(schedules):
            if existing.unlock_height == unlock_height:
                merged = replace(existing, amount=existing.amount + amount)
                schedules[i] = merged
                self._total_unvested += amount
                logger.debug(
                    f"Vesting: merged {amount} into {holder}'s schedule at {unlock_height}"
                )
                return merged

        if len(schedules) >= self.max_schedules:
            raise TooManySchedules(
                f"{holder} already has {len(schedules)} vesting schedules "
                f"(max {self.max_schedules})"
            )

        schedule = VestingSchedule(holder=holder, amount=amount, unlock_height=unlock_height)
        schedules.append(schedule)
        schedules.sort(key=lambda s: s.unlock_height)
        self._total_unvested += amount
        logger.debug(f"Vesting: {amount} for {holder} unlocks at {unlock_height}")
        return schedule

    def _prune(self, holder: str, height: int) -> int:
        schedules = self._schedules.get(holder)
        released = 0
        if schedules:
            remaining = [s for s in schedules if not s.is_vested(height)]
            matured = [s for s in schedules if s.is_vested(height)]
            if matured:
                released = sum(s.amount for s in matured)
                self._total_unvested -= released
                self._matured.setdefault(holder, []).extend(matured)
                if remaining:
                    self._schedules[holder] = remaining
                else:
                    del self._schedules[holder]
        self._trim_matured(holder, height)
        return released

    def _trim_matured(self, holder: str, height: int):
        matured = self._matured.get(holder)
        if not matured:
            return
        # Records are kept at their own unlock heights until they fall out of
        # the retention window; an open election never starts before it.
        horizon = height - self.retention
        matured = sorted(
            (s for s in matured if s.unlock_height > horizon),
            key=lambda s: s.unlock_height,
        )
        if matured:
            self._matured[holder] = matured
        else:
            del self._matured[holder]

    # ── Snapshots ─────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        return {
            "schedules": {h: list(s) for h, s in self._schedules.items()},
            "matured": {h: list(s) for h, s in self._matured.items()},
            "total_unvested": self._total_unvested,
            "retention": self.retention,
        }

    def revert(self, snapshot: Dict[str, Any]):
        self._schedules = snapshot["schedules"]
        self._matured = snapshot["matured"]
        self._total_unvested = snapshot["total_unvested"]
        self.retention = snapshot["retention"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalUnvestedSupply": self._total_unvested,
            "holdersWithSchedules": len(self._schedules),
            "maxSchedules": self.max_schedules,
            "retention": self.retention,
        }

    def __repr__(self) -> str:
        return f"<VestingRegistry unvested={self._total_unvested}>"
