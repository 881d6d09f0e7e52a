"""
Ledger database models.

Immutable record of every coin-balance change.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String
from sqlalchemy.orm import relationship
from chickentender.app.db.session import Base
from chickentender.app.models.ledger_enums import LedgerEntryKind


class LedgerEntry(Base):
    """
    Ledger Entry model.

    One entry per economic operation (settlement, transfer, forced
    adjustment), listing the previous and new balance of every affected
    user. For conserving kinds the line deltas sum to zero.
    NO updates or deletions allowed.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    description = Column(String(255), nullable=False)
    kind = Column(Enum(LedgerEntryKind), nullable=False, index=True)

    # Linkage (settled order, when there is one)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=True, index=True)

    # Timestamps (Immutable - no updated_at)
    date = Column(DateTime, nullable=False, index=True)

    lines = relationship(
        "LedgerEntryLine",
        back_populates="entry",
        order_by="LedgerEntryLine.id",
        lazy="selectin",
    )

    @property
    def net_delta(self) -> int:
        return sum(line.delta for line in self.lines)

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, kind='{self.kind.value}', lines={len(self.lines)})>"


class LedgerEntryLine(Base):
    """One user's balance before and after a ledger entry."""
    __tablename__ = "ledger_entry_lines"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    entry_id = Column(Integer, ForeignKey('ledger_entries.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    previous_value = Column(Integer, nullable=False)
    new_value = Column(Integer, nullable=False)

    entry = relationship("LedgerEntry", back_populates="lines")
    user = relationship("User", lazy="selectin")

    @property
    def delta(self) -> int:
        return self.new_value - self.previous_value

    def __repr__(self):
        return f"<LedgerEntryLine(user_id={self.user_id}, {self.previous_value} -> {self.new_value})>"
