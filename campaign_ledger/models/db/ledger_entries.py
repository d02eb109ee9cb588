from __future__ import annotations
"""SQLAlchemy model for immutable ledger entries (one per balance change)."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, Text, DateTime, Numeric, Enum, ForeignKey, CheckConstraint, Index, event
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
from sqlalchemy.sql import func
from campaign_ledger.database import Base
from .enums import EntryDirection, EntryCategory, ReferenceType

class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    direction: Mapped[EntryDirection] = mapped_column(Enum(EntryDirection), nullable=False)
    category: Mapped[EntryCategory] = mapped_column(Enum(EntryCategory), nullable=False, index=True)
    reference_type: Mapped[ReferenceType] = mapped_column(Enum(ReferenceType), nullable=False)
    reference_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    balance_before: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    user: Mapped["User"] = relationship("User", back_populates="ledger_entries")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ledger_entry_amount_positive"),
        CheckConstraint("balance_after >= 0", name="ledger_entry_balance_non_negative"),
        Index("ix_ledger_entries_reference", "reference_type", "reference_id"),
    )

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction == EntryDirection.CREDIT else -self.amount


@event.listens_for(LedgerEntry, "before_update")
def _reject_entry_update(mapper, connection, target):  # noqa: ARG001
    raise ValueError("Ledger entries are append-only")


@event.listens_for(LedgerEntry, "before_delete")
def _reject_entry_delete(mapper, connection, target):  # noqa: ARG001
    raise ValueError("Ledger entries are append-only")
