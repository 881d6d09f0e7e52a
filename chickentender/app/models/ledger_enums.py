"""
Ledger enumerations.
"""

import enum


class LedgerEntryKind(str, enum.Enum):
    """Kind of operation that produced a ledger entry."""
    ORDER_SETTLEMENT = "ORDER_SETTLEMENT"  # Logged order, conserving
    COIN_TRANSFER = "COIN_TRANSFER"  # Peer-to-peer, conserving
    FORCED_ADJUSTMENT = "FORCED_ADJUSTMENT"  # Admin set balance, not conserving


CONSERVING_KINDS = (LedgerEntryKind.ORDER_SETTLEMENT, LedgerEntryKind.COIN_TRANSFER)
