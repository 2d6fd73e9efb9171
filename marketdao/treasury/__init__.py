"""
MarketDAO Treasury

Provides:
  - Treasury         : custody with per-asset fund locking
  - TreasuryAsset    : native / fungible / non-fungible / multi-token ids
  - TreasuryTransfer : record of an outbound payout
"""

from .treasury import (
    NATIVE,
    AssetKind,
    Treasury,
    TreasuryAsset,
    TreasuryTransfer,
)

__all__ = [
    "NATIVE",
    "AssetKind",
    "Treasury",
    "TreasuryAsset",
    "TreasuryTransfer",
]
