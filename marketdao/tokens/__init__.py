"""
MarketDAO Token Layer

Provides:
  - Ledger          : multi-asset balances (membership + voting assets)
  - VoteSink        : opaque per-election vote destinations
  - VestingRegistry : bounded unlock schedules and the vested-supply counter
"""

from .ledger import (
    Ledger,
    MintEvent,
    TransferEvent,
    VoteSink,
)
from .vesting import (
    VestingRegistry,
    VestingSchedule,
)

__all__ = [
    # Ledger
    "Ledger",
    "MintEvent",
    "TransferEvent",
    "VoteSink",
    # Vesting
    "VestingRegistry",
    "VestingSchedule",
]
